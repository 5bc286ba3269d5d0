"""LibraryAU - okul kütüphanesi ödünç çekirdeği

Bu paket şu modülleri içerir:
- Barkod kimliği (barcode.py)
- Varlık modeli (models.py)
- Depo cephesi ve SQLite deposu (repository.py, database.py)
- Ödünç kuralları ve servis (rules.py, lending.py)
- Yönetici yetkilendirmesi ve oturum (auth.py, session.py)
- Katalog yükleme ve ISBN sorgusu (seed.py, isbn_lookup.py)
- CLI arayüzü (cli.py)
"""

from libraryau.errors import LibraryError
from libraryau.lending import LendingService
from libraryau.repository import InMemoryRepository, Repository

__version__ = "1.0.0"

__all__ = ["LendingService", "LibraryError", "InMemoryRepository", "Repository", "__version__"]
