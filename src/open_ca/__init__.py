"""Open CA - a two-tier certificate authority with CRL and OCSP publication."""

from .authority import CertificateAuthority, FileStorage, MemoryStorage, TrustHierarchy
from .config import CAConfig
from .core import (
    CertClass,
    DistinguishedName,
    IssuedCertificate,
    OCSPStatus,
    RevocationReason,
    generate_keypair,
)
from .issuer import IssuanceEngine, RevocationManager
from .validator import ChainValidator, verify_chain

__version__ = "0.1.0"

__all__ = [
    # Authority
    "CertificateAuthority",
    "TrustHierarchy",
    "FileStorage",
    "MemoryStorage",
    # Config
    "CAConfig",
    # Core
    "CertClass",
    "DistinguishedName",
    "IssuedCertificate",
    "OCSPStatus",
    "RevocationReason",
    "generate_keypair",
    # Issuer
    "IssuanceEngine",
    "RevocationManager",
    # Validator
    "ChainValidator",
    "verify_chain",
]
