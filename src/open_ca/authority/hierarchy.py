"""Root and intermediate CA identities and their bootstrap sequence."""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterator, Optional

from cryptography import x509

from ..config import CAConfig
from ..core import crypto
from ..core.errors import (
    AlreadyInitializedError,
    CryptoError,
    InvalidInputError,
    NotBootstrappedError,
    ValidityError,
)
from ..core.models import CertClass, DistinguishedName, SerialRecord
from ..policy.catalog import PolicyCatalog, PolicyRule
from .index import SerialIndex
from .storage import MemoryStorage, StorageBackend

logger = logging.getLogger(__name__)


class HierarchyState(str, Enum):
    UNINITIALIZED = "uninitialized"
    ROOT_READY = "root_ready"
    OPERATIONAL = "operational"


def build_extensions(
    builder: x509.CertificateBuilder,
    rule: PolicyRule,
    subject_public_key,
    issuer_certificate: Optional[x509.Certificate],
) -> x509.CertificateBuilder:
    """Add the extensions every class carries: constraints, usages and key ids."""
    builder = builder.add_extension(rule.basic_constraints(), critical=True)
    builder = builder.add_extension(rule.key_usage_extension(), critical=True)
    eku = rule.extended_key_usage_extension()
    if eku is not None:
        builder = builder.add_extension(eku, critical=rule.eku_critical)
    builder = builder.add_extension(
        x509.SubjectKeyIdentifier.from_public_key(subject_public_key), critical=False
    )
    if issuer_certificate is not None:
        ski = issuer_certificate.extensions.get_extension_for_class(x509.SubjectKeyIdentifier)
        builder = builder.add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value),
            critical=False,
        )
    if rule.ocsp_no_check:
        builder = builder.add_extension(x509.OCSPNoCheck(), critical=False)
    return builder


class CAIdentity:
    """A CA (or OCSP signer) certificate bound to its stored key, policy and index."""

    def __init__(
        self,
        name: str,
        certificate: x509.Certificate,
        storage: StorageBackend,
        passphrase: Optional[bytes] = None,
        policy: Optional[PolicyCatalog] = None,
        index: Optional[SerialIndex] = None,
    ):
        """Initialize identity.

        Args:
            name: Storage name ("root", "intermediate" or "ocsp")
            certificate: The identity's certificate
            storage: Backend holding the private key
            passphrase: Passphrase protecting the stored key
            policy: Policy catalog governing what this CA signs
            index: Serial index of certificates this CA issued
        """
        self.name = name
        self.certificate = certificate
        self.policy = policy
        self.index = index
        self._storage = storage
        self._passphrase = passphrase

    @property
    def subject(self) -> DistinguishedName:
        return DistinguishedName.from_x509_name(self.certificate.subject)

    @property
    def serial(self) -> int:
        return self.certificate.serial_number

    @property
    def not_after(self) -> datetime:
        return self.certificate.not_valid_after_utc

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        """Time left before this identity's certificate expires."""
        now = now or datetime.now(timezone.utc)
        return self.not_after - now

    def is_valid_at(self, now: datetime) -> bool:
        return self.certificate.not_valid_before_utc <= now <= self.not_after

    @contextmanager
    def signing_key(self) -> Iterator[crypto.PrivateKey]:
        """Load the private key for the duration of one signing operation."""
        key = crypto.private_key_from_pem(self._storage.load_key(self.name), self._passphrase)
        try:
            yield key
        finally:
            del key

    def certificate_pem(self) -> bytes:
        return crypto.certificate_to_pem(self.certificate)


class TrustHierarchy:
    """Two-level chain: a self-signed root and the intermediate it certifies.

    State moves ``uninitialized -> root_ready -> operational`` and is
    derived from storage, so a hierarchy reloaded from disk resumes where
    it left off.
    """

    def __init__(self, config: Optional[CAConfig] = None, storage: Optional[StorageBackend] = None):
        """Initialize hierarchy.

        Args:
            config: CA configuration (defaults if not provided)
            storage: Storage backend (in-memory if not provided)
        """
        self.config = config or CAConfig()
        self.storage = storage or MemoryStorage()
        self.root: Optional[CAIdentity] = None
        self.intermediate: Optional[CAIdentity] = None
        self._load()

    def _new_index(self, level: str) -> SerialIndex:
        return SerialIndex(
            level,
            self.storage,
            serial_start=self.config.serial_start,
            crl_number_start=self.config.crl_number_start,
        )

    def _load_identity(self, name: str, policy: PolicyCatalog) -> Optional[CAIdentity]:
        pem = self.storage.load_identity_cert(name)
        if pem is None:
            return None
        return CAIdentity(
            name,
            crypto.certificate_from_pem(pem),
            self.storage,
            passphrase=self.config.passphrase_bytes,
            policy=policy,
            index=self._new_index(name),
        )

    def _load(self) -> None:
        self.root = self._load_identity("root", PolicyCatalog.root())
        if self.root is not None:
            self.intermediate = self._load_identity("intermediate", PolicyCatalog.intermediate())

    @property
    def state(self) -> HierarchyState:
        if self.root is None:
            return HierarchyState.UNINITIALIZED
        if self.intermediate is None:
            return HierarchyState.ROOT_READY
        return HierarchyState.OPERATIONAL

    def require_operational(self) -> CAIdentity:
        """Return the intermediate, or fail if bootstrap is incomplete.

        Raises:
            NotBootstrappedError: If the hierarchy is not operational
        """
        if self.state is not HierarchyState.OPERATIONAL:
            raise NotBootstrappedError(
                f"CA hierarchy is {self.state.value}; bootstrap root and intermediate first"
            )
        return self.intermediate

    def _store_key(self, name: str, key: crypto.PrivateKey) -> None:
        self.storage.save_key(name, crypto.private_key_to_pem(key, self.config.passphrase_bytes))

    def bootstrap_root(
        self, subject: "DistinguishedName | str", validity_days: Optional[int] = None
    ) -> CAIdentity:
        """Create the self-signed root CA.

        Args:
            subject: Root subject (defaults from config are merged beneath it)
            validity_days: Root lifetime (config.root_days if not provided)

        Raises:
            AlreadyInitializedError: If a root already exists in storage
            ValidationError: If the subject violates root policy
        """
        if self.root is not None or self.storage.has_identity("root"):
            raise AlreadyInitializedError("Existing root CA detected; refusing to overwrite it")
        days = self.config.root_days if validity_days is None else validity_days
        if days <= 0:
            raise ValidityError("Root validity must be a positive number of days")

        subject = DistinguishedName.parse(subject).with_defaults(self.config.subject_defaults)
        policy = PolicyCatalog.root()
        rule = policy.resolve(CertClass.ROOT, subject)
        policy.validate_subject(subject, rule, subject)

        key = crypto.generate_keypair(**self.config.key_params(ca=True))
        index = self._new_index("root")
        now = datetime.now(timezone.utc)

        with index.reserve() as reservation:
            name = subject.to_x509_name()
            builder = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(reservation.serial)
                .not_valid_before(now)
                .not_valid_after(now + timedelta(days=days))
            )
            builder = build_extensions(builder, rule, key.public_key(), None)
            certificate = crypto.self_sign(key, builder, f"root CA {subject}")

            reservation.commit(record_for(certificate, CertClass.ROOT, subject))
            self._store_key("root", key)
            self.storage.save_identity_cert("root", crypto.certificate_to_pem(certificate))
        del key

        self.root = CAIdentity(
            "root",
            certificate,
            self.storage,
            passphrase=self.config.passphrase_bytes,
            policy=policy,
            index=index,
        )
        logger.info("Bootstrapped root CA %s valid for %d days", subject, days)
        return self.root

    def bootstrap_intermediate(
        self,
        subject: "DistinguishedName | str",
        validity_days: Optional[int] = None,
        root: Optional[CAIdentity] = None,
    ) -> CAIdentity:
        """Create the intermediate CA and have the root certify it.

        Args:
            subject: Intermediate subject; must satisfy the root's strict policy
            validity_days: Intermediate lifetime (config.intermediate_days if not provided)
            root: Root identity (the hierarchy's own root if not provided)

        Raises:
            NotBootstrappedError: If there is no root
            AlreadyInitializedError: If an intermediate already exists
            ValidityError: If the lifetime exceeds the root's remaining validity
            ValidationError: If the subject violates root policy
        """
        root = root or self.root
        if root is None:
            raise NotBootstrappedError("Root CA must be bootstrapped before the intermediate")
        if self.intermediate is not None or self.storage.has_identity("intermediate"):
            raise AlreadyInitializedError("Existing intermediate CA detected; refusing to overwrite it")

        days = self.config.intermediate_days if validity_days is None else validity_days
        if days <= 0:
            raise ValidityError("Intermediate validity must be a positive number of days")
        now = datetime.now(timezone.utc)
        not_after = now + timedelta(days=days)
        if not_after > root.not_after:
            raise ValidityError(
                f"Intermediate validity of {days} days exceeds root's remaining "
                f"{root.remaining(now).days} days"
            )

        subject = DistinguishedName.parse(subject).with_defaults(self.config.subject_defaults)
        rule = root.policy.resolve(CertClass.INTERMEDIATE, root.subject)
        root.policy.validate_subject(subject, rule, root.subject)

        key = crypto.generate_keypair(**self.config.key_params(ca=True))
        csr = crypto.sign_csr(
            key,
            x509.CertificateSigningRequestBuilder().subject_name(subject.to_x509_name()),
            f"intermediate CA {subject}",
        )
        if not csr.is_signature_valid:
            raise CryptoError(f"Intermediate CSR signature invalid for {subject}")

        with root.index.reserve() as reservation:
            builder = (
                x509.CertificateBuilder()
                .subject_name(csr.subject)
                .issuer_name(root.certificate.subject)
                .public_key(csr.public_key())
                .serial_number(reservation.serial)
                .not_valid_before(now)
                .not_valid_after(not_after)
            )
            builder = build_extensions(builder, rule, csr.public_key(), root.certificate)
            with root.signing_key() as root_key:
                certificate = crypto.sign_certificate(
                    root_key, builder, f"intermediate CA {subject}"
                )

            reservation.commit(record_for(certificate, CertClass.INTERMEDIATE, subject))
            pem = crypto.certificate_to_pem(certificate)
            self.storage.save_certificate("root", reservation.serial, pem)
            self._store_key("intermediate", key)
            self.storage.save_identity_cert("intermediate", pem)
        del key

        self.intermediate = CAIdentity(
            "intermediate",
            certificate,
            self.storage,
            passphrase=self.config.passphrase_bytes,
            policy=PolicyCatalog.intermediate(),
            index=self._new_index("intermediate"),
        )
        logger.info("Bootstrapped intermediate CA %s valid for %d days", subject, days)
        return self.intermediate

    def chain_of(self, include_root: bool = True) -> tuple[x509.Certificate, ...]:
        """Leaf-to-root CA chain: intermediate first, then (optionally) root.

        The ``include_root=False`` variant suits deployments that install the
        root on clients out of band.
        """
        intermediate = self.require_operational()
        if include_root:
            return (intermediate.certificate, self.root.certificate)
        return (intermediate.certificate,)

    def chain_pem(self, include_root: bool = True) -> bytes:
        return b"".join(crypto.certificate_to_pem(c) for c in self.chain_of(include_root))

    def verify(self) -> bool:
        """Check the intermediate chain-verifies against the root."""
        intermediate = self.require_operational()
        now = datetime.now(timezone.utc)
        return intermediate.is_valid_at(now) and crypto.is_issued_by(
            intermediate.certificate, self.root.certificate
        )


def record_for(
    certificate: x509.Certificate, cert_class: CertClass, subject: DistinguishedName
) -> SerialRecord:
    if not subject.common_name:
        raise InvalidInputError("Certificate subject has no common name")
    return SerialRecord(
        serial=certificate.serial_number,
        cert_class=cert_class,
        subject=certificate.subject.rfc4514_string(),
        common_name=subject.common_name,
        not_before=certificate.not_valid_before_utc,
        not_after=certificate.not_valid_after_utc,
    )

