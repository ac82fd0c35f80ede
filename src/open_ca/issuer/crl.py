"""CRL generation for the intermediate CA."""

import logging
import threading
from contextlib import suppress
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.x509 import ExtensionNotFound

from ..authority.hierarchy import TrustHierarchy
from ..core import crypto
from ..core.models import CRLArtifact, CRLEntry, RevocationReason

logger = logging.getLogger(__name__)


def _revoked_entry(entry: CRLEntry) -> x509.RevokedCertificate:
    builder = (
        x509.RevokedCertificateBuilder()
        .serial_number(entry.serial)
        .revocation_date(entry.revoked_at)
    )
    # RFC 5280 5.3.1: the unspecified code is expressed by omitting the extension
    if entry.reason is not RevocationReason.UNSPECIFIED:
        builder = builder.add_extension(x509.CRLReason(entry.reason.to_x509()), critical=False)
    return builder.build()


def artifact_from_crl(crl: x509.CertificateRevocationList) -> CRLArtifact:
    """Rebuild a CRLArtifact from a parsed CRL."""
    entries = []
    for revoked in crl:
        flag = None
        with suppress(ExtensionNotFound):
            flag = revoked.extensions.get_extension_for_class(x509.CRLReason).value.reason
        entries.append(
            CRLEntry(
                serial=revoked.serial_number,
                revoked_at=revoked.revocation_date_utc,
                reason=RevocationReason.from_x509(flag),
            )
        )
    number = crl.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number
    return CRLArtifact(
        crl_number=number,
        this_update=crl.last_update_utc,
        next_update=crl.next_update_utc,
        entries=tuple(sorted(entries, key=lambda e: e.serial)),
        crl=crl,
    )


class CRLPublisher:
    """Builds, signs and stores the intermediate's CRL."""

    def __init__(self, hierarchy: TrustHierarchy):
        """Initialize publisher.

        Args:
            hierarchy: Trust hierarchy whose intermediate signs the CRL
        """
        self.hierarchy = hierarchy
        self._lock = threading.Lock()

    def publish(self, now: Optional[datetime] = None) -> CRLArtifact:
        """Rebuild the CRL from the index and sign it.

        Every revocation that completed before the call is listed. Each call
        consumes a fresh CRL number, so successive artifacts are strictly
        increasing even when their entries are identical.

        Args:
            now: thisUpdate timestamp (current time if not provided)

        Returns:
            The signed CRL artifact

        Raises:
            NotBootstrappedError: If the hierarchy is not operational
            CryptoError: If signing fails
        """
        intermediate = self.hierarchy.require_operational()
        now = now or datetime.now(timezone.utc)
        next_update = now + timedelta(days=self.hierarchy.config.crl_days)

        with self._lock:
            entries = tuple(
                CRLEntry(
                    serial=record.serial,
                    revoked_at=record.revoked_at,
                    reason=record.revocation_reason or RevocationReason.UNSPECIFIED,
                )
                for record in intermediate.index.revoked()
            )
            crl_number = intermediate.index.next_crl_number()

            ski = intermediate.certificate.extensions.get_extension_for_class(
                x509.SubjectKeyIdentifier
            )
            builder = (
                x509.CertificateRevocationListBuilder()
                .issuer_name(intermediate.certificate.subject)
                .last_update(now)
                .next_update(next_update)
                .add_extension(x509.CRLNumber(crl_number), critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski.value),
                    critical=False,
                )
            )
            for entry in entries:
                builder = builder.add_revoked_certificate(_revoked_entry(entry))

            with intermediate.signing_key() as key:
                crl = crypto.sign_crl(key, builder, f"CRL {crl_number:#x} of {intermediate.subject}")

            artifact = CRLArtifact(
                crl_number=crl_number,
                this_update=now,
                next_update=next_update,
                entries=entries,
                crl=crl,
            )
            self.hierarchy.storage.save_crl("intermediate", artifact.der)

        logger.info(
            "Published CRL %#x with %d entries, next update %s",
            crl_number,
            len(entries),
            next_update.isoformat(),
        )
        return artifact

    def latest(self) -> Optional[CRLArtifact]:
        """Return the last published CRL, or None if none was published."""
        der = self.hierarchy.storage.load_crl("intermediate")
        if der is None:
            return None
        return artifact_from_crl(x509.load_der_x509_crl(der))
