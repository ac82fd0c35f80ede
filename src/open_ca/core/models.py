"""Core data models for open-ca."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import NameOID
from pydantic import BaseModel, Field, field_validator


# Subject attribute order used when building names (matches OpenSSL's req order)
_NAME_OIDS: dict[str, x509.ObjectIdentifier] = {
    "country": NameOID.COUNTRY_NAME,
    "state": NameOID.STATE_OR_PROVINCE_NAME,
    "locality": NameOID.LOCALITY_NAME,
    "organization": NameOID.ORGANIZATION_NAME,
    "organizational_unit": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "common_name": NameOID.COMMON_NAME,
    "email": NameOID.EMAIL_ADDRESS,
}

DN_FIELDS: tuple[str, ...] = tuple(_NAME_OIDS)


class CertClass(str, Enum):
    """Certificate classes governed by policy."""

    ROOT = "root"
    INTERMEDIATE = "intermediate"
    SERVER = "server"
    USER = "user"
    OCSP_SIGNER = "ocsp_signer"


LEAF_CLASSES = frozenset({CertClass.SERVER, CertClass.USER, CertClass.OCSP_SIGNER})


class CertStatus(str, Enum):
    """Lifecycle status of an index record."""

    VALID = "valid"
    REVOKED = "revoked"


class RevocationReason(str, Enum):
    """RFC 5280 CRL reason codes."""

    UNSPECIFIED = "unspecified"
    KEY_COMPROMISE = "key_compromise"
    CA_COMPROMISE = "ca_compromise"
    AFFILIATION_CHANGED = "affiliation_changed"
    SUPERSEDED = "superseded"
    CESSATION_OF_OPERATION = "cessation_of_operation"
    CERTIFICATE_HOLD = "certificate_hold"
    PRIVILEGE_WITHDRAWN = "privilege_withdrawn"
    AA_COMPROMISE = "aa_compromise"

    def to_x509(self) -> x509.ReasonFlags:
        return x509.ReasonFlags[self.value]

    @classmethod
    def from_x509(cls, flag: Optional[x509.ReasonFlags]) -> "RevocationReason":
        if flag is None:
            return cls.UNSPECIFIED
        return cls(flag.name)


class OCSPStatus(str, Enum):
    """OCSP certificate status values."""

    GOOD = "good"
    REVOKED = "revoked"
    UNKNOWN = "unknown"


class DistinguishedName(BaseModel):
    """Structured subject or issuer name."""

    country: Optional[str] = Field(default=None, description="Two letter country code")
    state: Optional[str] = Field(default=None, description="State or province")
    locality: Optional[str] = Field(default=None, description="Locality / city")
    organization: Optional[str] = Field(default=None, description="Organization")
    organizational_unit: Optional[str] = Field(default=None, description="Organizational unit")
    common_name: Optional[str] = Field(default=None, description="Common name")
    email: Optional[str] = Field(default=None, description="Email address")

    model_config = {"frozen": True}

    @field_validator(*DN_FIELDS, mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat empty and whitespace-only values as absent."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("country")
    @classmethod
    def two_letter_country(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and len(v) != 2:
            raise ValueError("country must be a 2 letter code")
        return v

    def get(self, field: str) -> Optional[str]:
        return getattr(self, field)

    def with_defaults(self, defaults: "DistinguishedName") -> "DistinguishedName":
        """Return a copy with unset fields filled from ``defaults``."""
        merged = {f: self.get(f) or defaults.get(f) for f in DN_FIELDS}
        return DistinguishedName(**merged)

    @property
    def identity(self) -> str:
        """Normalised unique name used for live-certificate uniqueness."""
        return (self.common_name or "").strip().casefold()

    def to_x509_name(self) -> x509.Name:
        return x509.Name(
            [
                x509.NameAttribute(oid, value)
                for field, oid in _NAME_OIDS.items()
                if (value := self.get(field)) is not None
            ]
        )

    @classmethod
    def from_x509_name(cls, name: x509.Name) -> "DistinguishedName":
        values = {}
        for field, oid in _NAME_OIDS.items():
            attrs = name.get_attributes_for_oid(oid)
            if attrs:
                values[field] = attrs[0].value
        return cls(**values)

    @classmethod
    def parse(cls, value: "str | DistinguishedName | dict") -> "DistinguishedName":
        """Accept a DN, a field dict, or a bare common name."""
        if isinstance(value, DistinguishedName):
            return value
        if isinstance(value, dict):
            return cls(**value)
        return cls(common_name=value)

    def rfc4514(self) -> str:
        return self.to_x509_name().rfc4514_string()

    def __str__(self) -> str:
        return self.rfc4514()


class SerialRecord(BaseModel):
    """A ledger entry for one issued certificate."""

    serial: int = Field(description="Certificate serial number")
    cert_class: CertClass = Field(description="Policy class the certificate was issued under")
    subject: str = Field(description="RFC 4514 subject string")
    common_name: str = Field(description="Subject common name")
    not_before: datetime
    not_after: datetime
    status: CertStatus = Field(default=CertStatus.VALID)
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[RevocationReason] = None

    model_config = {"frozen": True}

    @property
    def identity(self) -> str:
        return self.common_name.strip().casefold()

    @property
    def is_revoked(self) -> bool:
        return self.status is CertStatus.REVOKED

    def is_live(self) -> bool:
        """Live records count towards the unique-name constraint."""
        return self.status is CertStatus.VALID

    def is_expired(self, now: datetime) -> bool:
        return now > self.not_after

    def revoke(self, reason: RevocationReason, at: datetime) -> "SerialRecord":
        return self.model_copy(
            update={
                "status": CertStatus.REVOKED,
                "revoked_at": at,
                "revocation_reason": reason,
            }
        )


class IssuedCertificate(BaseModel):
    """Result of an issuance: certificate, ledger record and chain."""

    certificate: x509.Certificate
    record: SerialRecord
    chain: tuple[x509.Certificate, ...] = Field(
        description="Issuing certificate first, root certificate last"
    )
    private_key: Optional[Any] = Field(
        default=None, description="Generated key, when the CA created it for the requester"
    )

    model_config = {"arbitrary_types_allowed": True}

    @property
    def serial(self) -> int:
        return self.record.serial

    def certificate_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def chain_pem(self, include_root: bool = True) -> bytes:
        chain = self.chain if include_root else self.chain[:-1]
        return b"".join(c.public_bytes(serialization.Encoding.PEM) for c in chain)

    def private_key_pem(self, passphrase: Optional[bytes] = None) -> Optional[bytes]:
        if self.private_key is None:
            return None
        encryption = (
            serialization.BestAvailableEncryption(passphrase)
            if passphrase
            else serialization.NoEncryption()
        )
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption,
        )


class CRLEntry(BaseModel):
    """One revoked certificate listed in a CRL."""

    serial: int
    revoked_at: datetime
    reason: RevocationReason

    model_config = {"frozen": True}


class CRLArtifact(BaseModel):
    """A signed CRL and the entries it was built from."""

    crl_number: int
    this_update: datetime
    next_update: datetime
    entries: tuple[CRLEntry, ...]
    crl: x509.CertificateRevocationList

    model_config = {"arbitrary_types_allowed": True}

    @property
    def der(self) -> bytes:
        return self.crl.public_bytes(serialization.Encoding.DER)

    @property
    def pem(self) -> bytes:
        return self.crl.public_bytes(serialization.Encoding.PEM)

    def serials(self) -> set[int]:
        return {entry.serial for entry in self.entries}


class OCSPResult(BaseModel):
    """Status of a single certificate plus the encoded OCSP response."""

    serial: int
    status: OCSPStatus
    produced_at: datetime
    next_update: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    reason: Optional[RevocationReason] = None
    der: bytes = Field(default=b"", description="DER encoded OCSP response")

    def is_good(self) -> bool:
        return self.status is OCSPStatus.GOOD

    def is_revoked(self) -> bool:
        return self.status is OCSPStatus.REVOKED
