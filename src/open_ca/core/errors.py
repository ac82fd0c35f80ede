"""Exception hierarchy for open-ca."""

from typing import Optional


class OpenCAError(Exception):
    """Base exception for all open-ca errors."""

    pass


# Configuration errors
class ConfigurationError(OpenCAError):
    """Base exception for configuration and lifecycle errors."""

    pass


class NotBootstrappedError(ConfigurationError):
    """The CA hierarchy has not reached the state the operation needs."""

    pass


class AlreadyInitializedError(ConfigurationError):
    """A CA identity already exists at the configured storage location."""

    pass


class PolicyNotFoundError(ConfigurationError):
    """No policy rule exists for the requested certificate class."""

    pass


# Validation errors
class ValidationError(OpenCAError):
    """Base exception for rejected requests."""

    pass


class MissingRequiredFieldError(ValidationError):
    """A distinguished-name field required by policy is empty."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Missing required subject field: {field}")


class MismatchedFieldError(ValidationError):
    """A distinguished-name field does not match the issuer's value."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Subject field does not match issuer: {field}")


class DuplicateSubjectError(ValidationError):
    """A live certificate already carries the requested name."""

    def __init__(self, name: str, serial: Optional[int] = None):
        self.name = name
        self.serial = serial
        detail = f" (serial {serial:#x})" if serial is not None else ""
        super().__init__(f"A valid certificate named {name!r} already exists{detail}")


class ValidityError(ValidationError):
    """Requested validity period is not acceptable."""

    pass


class InvalidInputError(ValidationError):
    """Operator input is empty or out of range."""

    pass


# State errors
class StateError(OpenCAError):
    """Base exception for index state violations."""

    pass


class DuplicateSerialError(StateError):
    """A record with this serial already exists."""

    def __init__(self, serial: int):
        self.serial = serial
        super().__init__(f"Serial {serial:#x} already present in index")


class AlreadyRevokedError(StateError):
    """The certificate has already been revoked."""

    def __init__(self, serial: int):
        self.serial = serial
        super().__init__(f"Certificate {serial:#x} is already revoked")


class SignerUnusableError(StateError):
    """The OCSP signer certificate is expired or revoked."""

    pass


class ResponderNotRunningError(StateError):
    """The OCSP responder was queried while stopped."""

    pass


# Crypto errors
class CryptoError(OpenCAError):
    """Key generation, key loading or signing failed."""

    pass


# Lookup errors
class NotFoundError(OpenCAError):
    """No record exists for the requested serial or name."""

    def __init__(self, serial: "int | str"):
        self.serial = serial
        if isinstance(serial, int):
            super().__init__(f"No certificate with serial {serial:#x}")
        else:
            super().__init__(f"No live certificate named {serial!r}")


# Certificate verification errors
class CertificateError(OpenCAError):
    """Base exception for certificate verification errors."""

    pass


class CertificateExpiredError(CertificateError):
    """Certificate has expired."""

    pass


class CertificateNotYetValidError(CertificateError):
    """Certificate is not yet valid."""

    pass


class CertificateRevokedError(CertificateError):
    """Certificate has been revoked."""

    pass


class InvalidCertificateSignatureError(CertificateError):
    """Certificate signature is invalid."""

    pass


class RevocationCheckError(CertificateError):
    """Revocation status could not be determined."""

    pass


class UntrustedIssuerError(CertificateError):
    """Certificate issuer is not trusted."""

    pass
