import pytest

from libraryau.auth import (
    AccountState,
    AdminService,
    Permission,
    Role,
    StaticIdentity,
    has_permission,
    permissions_for,
    state_of,
)
from libraryau.errors import EntityNotFound, PermissionDenied, ValidationFailed
from libraryau.models import AdministratorAccount, EntityKind
from libraryau.session import LibrarySession


@pytest.fixture
def admins(repo, config):
    return AdminService(repo, config)


@pytest.fixture
def root(admins):
    return admins.sign_up("root", "root@school.edu", "Root")


@pytest.fixture
def staff(admins):
    return admins.sign_up("staff", "staff@school.edu", "Staff")


def test_state_machine():
    assert state_of(None) is AccountState.UNAUTHENTICATED
    assert state_of(AdministratorAccount(email="a@b.co", display_name="A")) is AccountState.PENDING_APPROVAL
    assert state_of(AdministratorAccount(email="a@b.co", display_name="A", is_approved=True)) is AccountState.ACTIVE


def test_role_permissions():
    assert Permission.MANAGE_ADMINS not in Role.ADMIN.permissions
    assert Permission.MANAGE_SETTINGS not in Role.ADMIN.permissions
    assert Permission.MANAGE_LOANS in Role.ADMIN.permissions
    assert Role.SUPER_ADMIN.permissions == frozenset(Permission)


def test_pending_account_has_no_permissions(staff):
    assert staff.is_pending_approval
    assert permissions_for(staff) == frozenset()
    assert not has_permission(staff, Permission.MANAGE_BOOKS)


def test_bootstrap_email_becomes_super_admin(root):
    assert root.is_super_admin and root.is_active
    assert has_permission(root, Permission.MANAGE_ADMINS)


def test_sign_up_validation(admins, staff):
    with pytest.raises(ValidationFailed):
        admins.sign_up("x", "not-an-email", "X")
    with pytest.raises(ValidationFailed):
        admins.sign_up("y", "y@school.edu", "  ")
    with pytest.raises(ValidationFailed):
        admins.sign_up("staff", "other@school.edu", "Again")


def test_sign_up_requires_account_id(admins, repo):
    with pytest.raises(ValidationFailed) as exc:
        admins.sign_up("  ", "x@school.edu", "X")
    assert exc.value.field == "id"
    assert repo.query(EntityKind.ADMIN) == []


def test_super_admin_approves_pending_account(admins, root, staff):
    approved = admins.approve(root, staff.id)
    assert approved.is_active
    assert has_permission(approved, Permission.MANAGE_BOOKS)
    assert not has_permission(approved, Permission.MANAGE_ADMINS)
    assert admins.pending_accounts(root) == []


def test_regular_admin_cannot_approve(admins, root, staff):
    admins.approve(root, staff.id)
    other = admins.sign_up("other", "other@school.edu", "Other")
    actor = admins.get_account(staff.id)
    with pytest.raises(PermissionDenied) as exc:
        admins.approve(actor, other.id)
    assert exc.value.permission == Permission.MANAGE_ADMINS.value


def test_pending_account_cannot_approve_itself(admins, staff):
    with pytest.raises(PermissionDenied):
        admins.approve(staff, staff.id)


def test_super_admin_cannot_change_own_role(admins, root):
    with pytest.raises(PermissionDenied):
        admins.set_super_admin(root, root.id, False)


def test_promote_and_demote(admins, root, staff):
    promoted = admins.set_super_admin(root, staff.id, True)
    assert promoted.is_super_admin and promoted.is_approved

    demoted = admins.set_super_admin(root, staff.id, False)
    assert not demoted.is_super_admin
    assert demoted.is_active


def test_revoke_approval(admins, root, staff):
    admins.approve(root, staff.id)
    revoked = admins.revoke_approval(root, staff.id)
    assert revoked.is_pending_approval

    admins.set_super_admin(root, staff.id, True)
    with pytest.raises(ValidationFailed):
        admins.revoke_approval(root, staff.id)


def test_unknown_target(admins, root):
    with pytest.raises(EntityNotFound):
        admins.approve(root, "ghost")


# ------------------------- Oturum ------------------------- #

@pytest.fixture
def identity():
    return StaticIdentity()


@pytest.fixture
def session(repo, identity, config, service):
    return LibrarySession(repo, identity, config, lending=service)


def test_signed_out_session_is_denied(session):
    with pytest.raises(PermissionDenied):
        session.add_template("Dune", "Frank Herbert")


def test_pending_admin_session_is_denied(session, identity, staff):
    identity.sign_in(staff.id)
    with pytest.raises(PermissionDenied):
        session.add_borrower("Ali", "Demir", "2023005", "ali@school.edu")


def test_approved_admin_can_lend_but_not_change_settings(session, identity, admins, root, staff):
    admins.approve(root, staff.id)
    identity.sign_in(staff.id)

    t = session.add_template("Dune", "Frank Herbert")
    c = session.register_copies(t.id)[0]
    b = session.add_borrower("Ali", "Demir", "2023005", "ali@school.edu")
    loan = session.borrow(c.id, b.id)
    assert session.return_loan(loan.id).is_returned

    with pytest.raises(PermissionDenied):
        session.update_settings(max_loans=5)
    with pytest.raises(PermissionDenied):
        session.pending_admins()


def test_revoked_approval_applies_to_next_call(session, identity, admins, root, staff):
    admins.approve(root, staff.id)
    identity.sign_in(staff.id)
    session.add_template("Dune", "Frank Herbert")

    admins.revoke_approval(root, staff.id)
    with pytest.raises(PermissionDenied):
        session.add_template("Emma", "Jane Austen")


def test_super_admin_session(session, identity, root, staff, repo):
    identity.sign_in(root.id)
    assert [a.id for a in session.pending_admins()] == [staff.id]
    session.approve_admin(staff.id)
    assert repo.get(EntityKind.ADMIN, staff.id).is_active

    updated = session.update_settings(max_loans=5)
    assert updated.max_loans_per_borrower == 5

    with pytest.raises(PermissionDenied):
        session.set_super_admin(root.id, False)


def test_session_trash_permissions(session, identity, admins, root, staff):
    admins.approve(root, staff.id)
    identity.sign_in(staff.id)
    b = session.add_borrower("Ali", "Demir", "2023005", "ali@school.edu")
    result = session.soft_delete(EntityKind.BORROWER, b.id)
    assert result.entity.is_deleted
    assert not session.restore(EntityKind.BORROWER, b.id).is_deleted
