"""Certificate chain validation."""

import logging
from datetime import datetime, timezone
from typing import Optional

from cryptography import x509

from ..core.crypto import is_issued_by
from ..core.errors import (
    CertificateError,
    CertificateExpiredError,
    CertificateNotYetValidError,
    CertificateRevokedError,
    InvalidCertificateSignatureError,
    RevocationCheckError,
    UntrustedIssuerError,
)
from ..trust.ocsp import OCSPClient

logger = logging.getLogger(__name__)


def _is_ca(certificate: x509.Certificate) -> bool:
    try:
        return certificate.extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        return False


class ChainValidator:
    """Validates certificate chains against a set of trusted roots."""

    def __init__(
        self,
        roots: list[x509.Certificate],
        check_ocsp: bool = False,
        ocsp_client: Optional[OCSPClient] = None,
    ):
        """Initialize validator.

        Args:
            roots: Trusted root certificates
            check_ocsp: Whether to check OCSP for revocation
            ocsp_client: Optional OCSP client (creates default if not provided)
        """
        self.roots = list(roots)
        self.check_ocsp = check_ocsp
        self.ocsp_client = (ocsp_client or OCSPClient()) if check_ocsp else None

    def validate(
        self,
        leaf: x509.Certificate,
        intermediates: list[x509.Certificate],
        now: Optional[datetime] = None,
        crl: Optional[x509.CertificateRevocationList] = None,
    ) -> None:
        """Validate a chain (synchronous, no OCSP check).

        Args:
            leaf: End-entity certificate
            intermediates: CA certificates in leaf-to-root order (root optional)
            now: Validation time (default: current UTC time)
            crl: CRL issued by the leaf's issuer, checked when given

        Raises:
            UntrustedIssuerError: If the chain does not end at a trusted root
            CertificateExpiredError: If a certificate has expired
            CertificateNotYetValidError: If a certificate is not yet valid
            InvalidCertificateSignatureError: If a signature does not verify
            CertificateRevokedError: If the CRL lists the leaf
        """
        if now is None:
            now = datetime.now(timezone.utc)

        path = [leaf, *(c for c in intermediates if c not in self.roots)]

        # Check validity periods
        for cert in path:
            if now < cert.not_valid_before_utc:
                raise CertificateNotYetValidError(
                    f"Certificate {cert.subject.rfc4514_string()} not yet valid "
                    f"(not_before: {cert.not_valid_before_utc})"
                )
            if now > cert.not_valid_after_utc:
                raise CertificateExpiredError(
                    f"Certificate {cert.subject.rfc4514_string()} expired "
                    f"(not_after: {cert.not_valid_after_utc})"
                )

        # Verify each link
        for child, parent in zip(path, path[1:]):
            if not _is_ca(parent):
                raise UntrustedIssuerError(
                    f"Issuer {parent.subject.rfc4514_string()} is not a CA certificate"
                )
            if not is_issued_by(child, parent):
                raise InvalidCertificateSignatureError(
                    f"Signature of {child.subject.rfc4514_string()} does not verify "
                    f"against {parent.subject.rfc4514_string()}"
                )

        # Anchor at a trusted root
        top = path[-1]
        if top in self.roots:
            return self._check_crl(leaf, path, crl)
        anchors = [r for r in self.roots if r.subject == top.issuer]
        if not anchors:
            raise UntrustedIssuerError(f"Certificate issuer not trusted: {top.issuer.rfc4514_string()}")
        for root in anchors:
            if is_issued_by(top, root):
                if now > root.not_valid_after_utc:
                    raise CertificateExpiredError(
                        f"Root {root.subject.rfc4514_string()} expired "
                        f"(not_after: {root.not_valid_after_utc})"
                    )
                return self._check_crl(leaf, [*path, root], crl)
        raise InvalidCertificateSignatureError(
            f"Signature of {top.subject.rfc4514_string()} does not verify against any trusted root"
        )

    @staticmethod
    def _check_crl(
        leaf: x509.Certificate,
        path: list[x509.Certificate],
        crl: Optional[x509.CertificateRevocationList],
    ) -> None:
        if crl is None:
            return
        issuer = next((c for c in path[1:] if c.subject == crl.issuer), None)
        if issuer is None or crl.issuer != leaf.issuer:
            raise RevocationCheckError("CRL was not issued by the certificate's issuer")
        if not crl.is_signature_valid(issuer.public_key()):
            raise RevocationCheckError("CRL signature verification failed")
        if crl.get_revoked_certificate_by_serial_number(leaf.serial_number) is not None:
            raise CertificateRevokedError(f"Certificate {leaf.serial_number:#x} has been revoked")

    async def validate_with_ocsp(
        self,
        leaf: x509.Certificate,
        intermediates: list[x509.Certificate],
        now: Optional[datetime] = None,
    ) -> None:
        """Validate a chain including an OCSP revocation check of the leaf.

        Raises:
            CertificateRevokedError: If the responder reports the leaf revoked
            RevocationCheckError: If the check fails and the client fails closed
        """
        self.validate(leaf, intermediates, now)
        if not (self.check_ocsp and self.ocsp_client and intermediates):
            return
        if await self.ocsp_client.is_revoked(leaf, intermediates[0]):
            raise CertificateRevokedError(f"Certificate {leaf.serial_number:#x} has been revoked")

    def is_valid(self, leaf: x509.Certificate, intermediates: list[x509.Certificate]) -> bool:
        """Check if a chain is valid.

        Returns:
            True if the chain is valid, False otherwise
        """
        try:
            self.validate(leaf, intermediates)
            return True
        except CertificateError as e:
            logger.debug("Chain rejected: %s", e)
            return False


def verify_chain(
    leaf: x509.Certificate,
    intermediates: list[x509.Certificate],
    roots: list[x509.Certificate],
) -> bool:
    """Boolean chain check of ``leaf`` through ``intermediates`` to ``roots``."""
    return ChainValidator(roots).is_valid(leaf, intermediates)
