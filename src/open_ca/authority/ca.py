"""High-level certificate authority combining hierarchy, issuance and revocation."""

import logging
import os
from pathlib import Path
from typing import Optional

from ..config import CAConfig
from ..core.errors import AlreadyInitializedError, InvalidInputError, NotFoundError
from ..core.models import (
    CertClass,
    CRLArtifact,
    DistinguishedName,
    IssuedCertificate,
    RevocationReason,
    SerialRecord,
)
from ..issuer.engine import IssuanceEngine, KeyInput
from ..issuer.ocsp import OCSPResponder
from ..issuer.revocation import RevocationManager
from .hierarchy import CAIdentity, HierarchyState, TrustHierarchy
from .storage import FileStorage, MemoryStorage, StorageBackend

logger = logging.getLogger(__name__)


class CertificateAuthority:
    """Two-tier CA: a root that certifies one intermediate, which issues leaves.

    Example:
        >>> ca = CertificateAuthority(CAConfig(algorithm="EC"))
        >>> ca.bootstrap("Test Root", "Test Intermediate")
        >>> issued = ca.issue_server("app.example.com")
        >>> ca.revoke(issued.serial, RevocationReason.KEY_COMPROMISE)
        >>> crl = ca.publish_crl()
    """

    def __init__(self, config: Optional[CAConfig] = None, storage: Optional[StorageBackend] = None):
        """Initialize certificate authority.

        Args:
            config: CA configuration (defaults if not provided)
            storage: Storage backend (file storage under config.storage_dir,
                otherwise in-memory, if not provided)
        """
        self.config = config or CAConfig()
        if storage is None:
            storage = (
                FileStorage(self.config.storage_dir)
                if self.config.storage_dir is not None
                else MemoryStorage()
            )
        self.hierarchy = TrustHierarchy(self.config, storage)
        self.engine = IssuanceEngine(self.hierarchy)
        self.revocation = RevocationManager(self.hierarchy, self.engine)

    @classmethod
    def from_config(cls, config_path: str | Path) -> "CertificateAuthority":
        """Create a CA from a YAML configuration file."""
        return cls(CAConfig.from_yaml(config_path))

    @property
    def state(self) -> HierarchyState:
        return self.hierarchy.state

    def bootstrap(
        self,
        root_subject: "DistinguishedName | str",
        intermediate_subject: "DistinguishedName | str",
        root_days: Optional[int] = None,
        intermediate_days: Optional[int] = None,
    ) -> tuple[CAIdentity, CAIdentity]:
        """Create whatever part of the hierarchy is missing.

        A hierarchy left at ``root_ready`` (root stored, intermediate not)
        resumes with the intermediate step.

        Raises:
            AlreadyInitializedError: If the hierarchy is already operational
        """
        if self.state is HierarchyState.OPERATIONAL:
            raise AlreadyInitializedError("CA hierarchy is already operational")
        if self.state is HierarchyState.UNINITIALIZED:
            self.hierarchy.bootstrap_root(root_subject, root_days)
        else:
            logger.info("Root CA present; resuming bootstrap at the intermediate")
        self.hierarchy.bootstrap_intermediate(intermediate_subject, intermediate_days)
        return self.hierarchy.root, self.hierarchy.intermediate

    @staticmethod
    def _subject(common_name: str, subject: Optional[DistinguishedName]) -> DistinguishedName:
        if not common_name or not common_name.strip():
            raise InvalidInputError("Common name must not be empty")
        base = subject or DistinguishedName()
        return base.model_copy(update={"common_name": common_name.strip()})

    def issue_server(
        self,
        fqdn: str,
        subject: Optional[DistinguishedName] = None,
        subject_alt_names: Optional[list[str]] = None,
        validity_days: Optional[int] = None,
        key: Optional[KeyInput] = None,
    ) -> IssuedCertificate:
        """Issue a server certificate for ``fqdn`` (SANs ``fqdn`` and ``*.fqdn``)."""
        return self.engine.issue(
            CertClass.SERVER,
            self._subject(fqdn, subject),
            key=key,
            subject_alt_names=subject_alt_names,
            validity_days=validity_days,
        )

    def issue_user(
        self,
        name: str,
        subject: Optional[DistinguishedName] = None,
        validity_days: Optional[int] = None,
        key: Optional[KeyInput] = None,
    ) -> IssuedCertificate:
        return self.engine.issue(
            CertClass.USER, self._subject(name, subject), key=key, validity_days=validity_days
        )

    def revoke(
        self, serial: int, reason: RevocationReason = RevocationReason.UNSPECIFIED
    ) -> SerialRecord:
        return self.revocation.revoke(serial, reason)

    def revoke_by_name(
        self, common_name: str, reason: RevocationReason = RevocationReason.UNSPECIFIED
    ) -> SerialRecord:
        """Revoke the live certificate carrying ``common_name``.

        Raises:
            InvalidInputError: If the name is empty
            NotFoundError: If no live certificate carries the name
        """
        if not common_name or not common_name.strip():
            raise InvalidInputError("Common name must not be empty")
        record = self.hierarchy.require_operational().index.find_live(common_name)
        if record is None:
            raise NotFoundError(common_name)
        return self.revoke(record.serial, reason)

    def publish_crl(self) -> CRLArtifact:
        return self.revocation.publish_crl()

    def latest_crl(self) -> Optional[CRLArtifact]:
        return self.revocation.latest_crl()

    def setup_ocsp(self, common_name: str, validity_days: Optional[int] = None) -> OCSPResponder:
        return self.revocation.setup_ocsp(common_name, validity_days)

    def responder(self) -> OCSPResponder:
        return self.revocation.responder()

    def status(self, serial: int) -> SerialRecord:
        """Index record for a certificate the intermediate issued.

        Raises:
            NotFoundError: If the serial was never issued
        """
        record = self.hierarchy.require_operational().index.get(serial)
        if record is None:
            raise NotFoundError(serial)
        return record

    def certificates(self) -> tuple[SerialRecord, ...]:
        """Every certificate the intermediate issued, ordered by serial."""
        return self.hierarchy.require_operational().index.snapshot()

    def chain_pem(self, include_root: bool = True) -> bytes:
        return self.hierarchy.chain_pem(include_root)

    def export(
        self,
        issued: IssuedCertificate,
        directory: str | Path,
        name: Optional[str] = None,
        passphrase: Optional[bytes] = None,
    ) -> dict[str, Path]:
        """Write an issued certificate, its key and the CA chains to a directory.

        Files written: ``<name>.key.pem`` (when the CA generated the key),
        ``<name>.cert.pem``, ``ca-chain.cert.pem`` and
        ``ca-chain-noroot.cert.pem``.

        Args:
            issued: Result of an issuance
            directory: Destination directory (created if missing)
            name: File stem (the certificate's common name if not provided)
            passphrase: Encrypts the exported key when set

        Returns:
            Mapping of artifact kind ("key", "cert", "chain", "chain_noroot") to path
        """
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        stem = name or issued.record.common_name
        if not stem or "/" in stem or stem in (".", ".."):
            raise InvalidInputError(f"Unusable export file name: {stem!r}")

        paths = {
            "cert": directory / f"{stem}.cert.pem",
            "chain": directory / "ca-chain.cert.pem",
            "chain_noroot": directory / "ca-chain-noroot.cert.pem",
        }
        paths["cert"].write_bytes(issued.certificate_pem())
        paths["chain"].write_bytes(issued.chain_pem(include_root=True))
        paths["chain_noroot"].write_bytes(issued.chain_pem(include_root=False))

        key_pem = issued.private_key_pem(passphrase)
        if key_pem is not None:
            paths["key"] = directory / f"{stem}.key.pem"
            fd = os.open(paths["key"], os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(key_pem)

        logger.info("Exported certificate %#x to %s", issued.serial, directory)
        return paths
