"""CA identities, serial indices and their storage."""

from .ca import CertificateAuthority
from .hierarchy import CAIdentity, HierarchyState, TrustHierarchy
from .index import SerialIndex, SerialReservation
from .storage import FileStorage, MemoryStorage, StorageBackend

__all__ = [
    "CertificateAuthority",
    "TrustHierarchy",
    "CAIdentity",
    "HierarchyState",
    "SerialIndex",
    "SerialReservation",
    "StorageBackend",
    "FileStorage",
    "MemoryStorage",
]
