"""CRL (Certificate Revocation List) support for batch revocation checking."""

import logging
import time
from typing import Optional

import httpx
from cryptography import x509

from ..core.errors import RevocationCheckError

logger = logging.getLogger(__name__)


def crl_url_of(certificate: x509.Certificate) -> Optional[str]:
    """First URI distribution point named by the certificate."""
    try:
        points = certificate.extensions.get_extension_for_class(x509.CRLDistributionPoints)
    except x509.ExtensionNotFound:
        return None
    for point in points.value:
        for name in point.full_name or ():
            if isinstance(name, x509.UniformResourceIdentifier):
                return name.value
    return None


def load_crl(data: bytes) -> x509.CertificateRevocationList:
    """Parse a DER or PEM CRL."""
    try:
        if data.lstrip().startswith(b"-----BEGIN"):
            return x509.load_pem_x509_crl(data)
        return x509.load_der_x509_crl(data)
    except ValueError as e:
        raise RevocationCheckError(f"Malformed CRL: {e}") from e


class CRLClient:
    """Client for downloading and checking CRLs."""

    def __init__(
        self,
        cache_ttl: int = 3600,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
        fail_open: bool = True,
    ):
        """Initialize CRL client.

        Args:
            cache_ttl: Cache TTL in seconds (default: 1 hour)
            timeout: Download timeout in seconds
            http_client: Optional HTTP client to use
            fail_open: Treat an undeterminable status as not revoked
        """
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self.fail_open = fail_open
        self._http_client = http_client
        self._memory_cache: dict[str, tuple[x509.CertificateRevocationList, float]] = {}

    async def _get(self, url: str) -> bytes:
        if self._http_client is not None:
            response = await self._http_client.get(url)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url)
        response.raise_for_status()
        return response.content

    async def download_crl(self, crl_url: str, issuer: x509.Certificate) -> x509.CertificateRevocationList:
        """Download a CRL and verify it was signed by ``issuer``.

        Args:
            crl_url: CRL distribution point URL
            issuer: Certificate of the CA expected to sign the CRL

        Returns:
            The verified CRL

        Raises:
            RevocationCheckError: If the download fails or the CRL is not the issuer's
        """
        # Check memory cache first
        if crl_url in self._memory_cache:
            crl, cached_at = self._memory_cache[crl_url]
            if time.time() - cached_at < self.cache_ttl:
                return crl

        try:
            data = await self._get(crl_url)
        except httpx.HTTPError as e:
            raise RevocationCheckError(f"CRL download failed: {e}") from e

        crl = load_crl(data)
        if crl.issuer != issuer.subject:
            raise RevocationCheckError(
                f"CRL issued by {crl.issuer.rfc4514_string()}, "
                f"expected {issuer.subject.rfc4514_string()}"
            )
        if not crl.is_signature_valid(issuer.public_key()):
            raise RevocationCheckError("CRL signature verification failed")

        self._memory_cache[crl_url] = (crl, time.time())
        logger.debug("Cached CRL from %s with %d entries", crl_url, len(crl))
        return crl

    async def is_revoked(
        self,
        certificate: x509.Certificate,
        issuer: x509.Certificate,
        crl_url: Optional[str] = None,
    ) -> bool:
        """Check if a certificate is listed in its issuer's CRL.

        Args:
            certificate: Certificate to check
            issuer: Certificate of the issuing CA
            crl_url: CRL URL (taken from the certificate if not provided)

        Returns:
            True if revoked, False otherwise (including on failure when failing open)
        """
        try:
            url = crl_url or crl_url_of(certificate)
            if not url:
                raise RevocationCheckError("Certificate names no CRL distribution point")
            crl = await self.download_crl(url, issuer)
        except RevocationCheckError as e:
            if not self.fail_open:
                raise
            logger.warning("CRL check for %#x failed open: %s", certificate.serial_number, e)
            return False
        return crl.get_revoked_certificate_by_serial_number(certificate.serial_number) is not None

    def clear_cache(self):
        """Clear CRL cache."""
        self._memory_cache.clear()
