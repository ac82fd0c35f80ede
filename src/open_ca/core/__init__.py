"""Core functionality for open-ca."""

from .crypto import (
    certificate_from_pem,
    certificate_to_pem,
    generate_keypair,
    private_key_from_pem,
    private_key_to_pem,
)
from .errors import (
    OpenCAError,
    ConfigurationError,
    NotBootstrappedError,
    AlreadyInitializedError,
    PolicyNotFoundError,
    ValidationError,
    MissingRequiredFieldError,
    MismatchedFieldError,
    DuplicateSubjectError,
    ValidityError,
    InvalidInputError,
    StateError,
    DuplicateSerialError,
    AlreadyRevokedError,
    SignerUnusableError,
    ResponderNotRunningError,
    CryptoError,
    NotFoundError,
    CertificateError,
    CertificateExpiredError,
    CertificateNotYetValidError,
    CertificateRevokedError,
    InvalidCertificateSignatureError,
    RevocationCheckError,
    UntrustedIssuerError,
)
from .models import (
    CertClass,
    CertStatus,
    CRLArtifact,
    CRLEntry,
    DistinguishedName,
    IssuedCertificate,
    OCSPResult,
    OCSPStatus,
    RevocationReason,
    SerialRecord,
)

__all__ = [
    # Crypto
    "generate_keypair",
    "private_key_to_pem",
    "private_key_from_pem",
    "certificate_to_pem",
    "certificate_from_pem",
    # Errors
    "OpenCAError",
    "ConfigurationError",
    "NotBootstrappedError",
    "AlreadyInitializedError",
    "PolicyNotFoundError",
    "ValidationError",
    "MissingRequiredFieldError",
    "MismatchedFieldError",
    "DuplicateSubjectError",
    "ValidityError",
    "InvalidInputError",
    "StateError",
    "DuplicateSerialError",
    "AlreadyRevokedError",
    "SignerUnusableError",
    "ResponderNotRunningError",
    "CryptoError",
    "NotFoundError",
    "CertificateError",
    "CertificateExpiredError",
    "CertificateNotYetValidError",
    "CertificateRevokedError",
    "InvalidCertificateSignatureError",
    "RevocationCheckError",
    "UntrustedIssuerError",
    # Models
    "CertClass",
    "CertStatus",
    "CRLArtifact",
    "CRLEntry",
    "DistinguishedName",
    "IssuedCertificate",
    "OCSPResult",
    "OCSPStatus",
    "RevocationReason",
    "SerialRecord",
]
