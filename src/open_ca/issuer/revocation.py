"""Revocation, CRL publication and OCSP signer management."""

import logging
import threading
from datetime import timedelta
from typing import Optional

from ..authority.hierarchy import CAIdentity, TrustHierarchy
from ..core import crypto
from ..core.errors import DuplicateSubjectError, InvalidInputError, NotBootstrappedError
from ..core.models import (
    CertClass,
    CRLArtifact,
    DistinguishedName,
    RevocationReason,
    SerialRecord,
)
from .crl import CRLPublisher
from .engine import IssuanceEngine
from .ocsp import OCSPResponder

logger = logging.getLogger(__name__)


class RevocationManager:
    """Single entry point for revoking certificates and publishing their status.

    Revocation only updates the index. CRL publication is a separate,
    explicit step; the OCSP responder reads the index directly, so it sees a
    revocation on the very next query.
    """

    def __init__(self, hierarchy: TrustHierarchy, engine: Optional[IssuanceEngine] = None):
        """Initialize manager.

        Args:
            hierarchy: Trust hierarchy whose intermediate index is managed
            engine: Engine used to issue OCSP signer certificates
        """
        self.hierarchy = hierarchy
        self.engine = engine or IssuanceEngine(hierarchy)
        self.crl = CRLPublisher(hierarchy)
        self._responder: Optional[OCSPResponder] = None
        self._lock = threading.Lock()

    def revoke(
        self, serial: int, reason: RevocationReason = RevocationReason.UNSPECIFIED
    ) -> SerialRecord:
        """Revoke a certificate issued by the intermediate.

        Returns:
            The revoked record

        Raises:
            NotFoundError: If the serial was never issued
            AlreadyRevokedError: If the certificate is already revoked
        """
        intermediate = self.hierarchy.require_operational()
        return intermediate.index.revoke(serial, RevocationReason(reason))

    def publish_crl(self) -> CRLArtifact:
        return self.crl.publish()

    def latest_crl(self) -> Optional[CRLArtifact]:
        return self.crl.latest()

    def _live_signers(self) -> list[SerialRecord]:
        index = self.hierarchy.require_operational().index
        return [
            r for r in index.snapshot() if r.cert_class is CertClass.OCSP_SIGNER and r.is_live()
        ]

    def setup_ocsp(self, common_name: str, validity_days: Optional[int] = None) -> OCSPResponder:
        """Issue a fresh OCSP signer certificate and build a responder around it.

        The new signer is issued and stored first. Only then is any previous
        live signer revoked as superseded and its responder stopped, so a
        failed setup leaves the current signer untouched. The returned
        responder is not started.

        Args:
            common_name: Signer common name (usually the responder host name)
            validity_days: Signer lifetime (config.cert_days if not provided)

        Raises:
            NotBootstrappedError: If the hierarchy is not operational
            DuplicateSubjectError: If a non-signer live certificate holds the name
            ValidityError: If the requested lifetime is not positive
        """
        if not common_name or not common_name.strip():
            raise InvalidInputError("OCSP signer common name must not be empty")
        intermediate = self.hierarchy.require_operational()
        subject = DistinguishedName(common_name=common_name)

        with self._lock:
            previous = [r.serial for r in self._live_signers()]
            holder = intermediate.index.find_live(subject.identity, exclude=previous)
            if holder is not None:
                raise DuplicateSubjectError(subject.common_name, holder.serial)

            config = self.hierarchy.config
            storage = self.hierarchy.storage
            stored = storage.load_identity_cert("ocsp")
            stored_key = storage.load_key("ocsp") if stored is not None else None
            key = crypto.generate_keypair(**config.key_params(ca=True))
            issued = self.engine.issue(
                CertClass.OCSP_SIGNER,
                subject,
                key=key,
                validity_days=validity_days,
                replacing=previous,
            )
            try:
                storage.save_key("ocsp", crypto.private_key_to_pem(key, config.passphrase_bytes))
                storage.save_identity_cert("ocsp", issued.certificate_pem())
            except Exception:
                logger.error("Storing OCSP signer %#x failed; revoking it", issued.serial)
                if stored is not None:
                    storage.save_key("ocsp", stored_key)
                    storage.save_identity_cert("ocsp", stored)
                intermediate.index.revoke(issued.serial, RevocationReason.CESSATION_OF_OPERATION)
                raise
            finally:
                del key

            if self._responder is not None:
                self._responder.stop()
            for serial in previous:
                intermediate.index.revoke(serial, RevocationReason.SUPERSEDED)
                logger.info("Superseded OCSP signer %#x", serial)

            self._responder = self._responder_for(issued.certificate)
            logger.info("OCSP signer %#x ready for %s", issued.serial, subject.common_name)
            return self._responder

    def _responder_for(self, certificate) -> OCSPResponder:
        config = self.hierarchy.config
        signer = CAIdentity(
            "ocsp", certificate, self.hierarchy.storage, passphrase=config.passphrase_bytes
        )
        return OCSPResponder(
            self.hierarchy, signer, timedelta(hours=config.ocsp_response_hours)
        )

    def responder(self) -> OCSPResponder:
        """The responder for the current signer, reloaded from storage if needed.

        Raises:
            NotBootstrappedError: If no OCSP signer has been set up
        """
        with self._lock:
            if self._responder is None:
                pem = self.hierarchy.storage.load_identity_cert("ocsp")
                if pem is None:
                    raise NotBootstrappedError("No OCSP signer has been set up")
                self._responder = self._responder_for(crypto.certificate_from_pem(pem))
            return self._responder
