"""OCSP (Online Certificate Status Protocol) client for real-time revocation checking."""

import logging
import os
import time
from typing import Optional

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509 import ocsp
from cryptography.x509.oid import AuthorityInformationAccessOID, ExtendedKeyUsageOID

from ..core.crypto import is_issued_by, verify_signature
from ..core.errors import RevocationCheckError
from ..core.models import OCSPResult, OCSPStatus, RevocationReason

logger = logging.getLogger(__name__)

_STATUS = {
    ocsp.OCSPCertStatus.GOOD: OCSPStatus.GOOD,
    ocsp.OCSPCertStatus.REVOKED: OCSPStatus.REVOKED,
    ocsp.OCSPCertStatus.UNKNOWN: OCSPStatus.UNKNOWN,
}


def ocsp_url_of(certificate: x509.Certificate) -> Optional[str]:
    """OCSP responder URL from the certificate's authority information access."""
    try:
        aia = certificate.extensions.get_extension_for_class(x509.AuthorityInformationAccess)
    except x509.ExtensionNotFound:
        return None
    for description in aia.value:
        if description.access_method == AuthorityInformationAccessOID.OCSP:
            return description.access_location.value
    return None


def build_request(
    certificate: x509.Certificate,
    issuer: x509.Certificate,
    nonce: Optional[bytes] = None,
    algorithm: Optional[hashes.HashAlgorithm] = None,
) -> bytes:
    """DER encoded OCSP request for one certificate."""
    builder = ocsp.OCSPRequestBuilder().add_certificate(
        certificate, issuer, algorithm or hashes.SHA1()
    )
    if nonce is not None:
        builder = builder.add_extension(x509.OCSPNonce(nonce), critical=False)
    return builder.build().public_bytes(serialization.Encoding.DER)


def _is_delegated_signer(responder: x509.Certificate, issuer: x509.Certificate) -> bool:
    try:
        eku = responder.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
    except x509.ExtensionNotFound:
        return False
    return ExtendedKeyUsageOID.OCSP_SIGNING in eku and is_issued_by(responder, issuer)


def parse_response(
    data: bytes,
    certificate: x509.Certificate,
    issuer: x509.Certificate,
    nonce: Optional[bytes] = None,
) -> OCSPResult:
    """Parse and verify a DER OCSP response about ``certificate``.

    The response must be signed by ``issuer`` itself or by a delegated
    signer that ``issuer`` certified for OCSP signing.

    Raises:
        RevocationCheckError: If the response is unsuccessful, unsigned by a
            trusted responder, about another certificate, or has a wrong nonce
    """
    try:
        response = ocsp.load_der_ocsp_response(data)
    except ValueError as e:
        raise RevocationCheckError(f"Malformed OCSP response: {e}") from e
    if response.response_status is not ocsp.OCSPResponseStatus.SUCCESSFUL:
        raise RevocationCheckError(f"OCSP responder answered {response.response_status.name}")

    responder = issuer
    if response.certificates:
        delegated = response.certificates[0]
        if not _is_delegated_signer(delegated, issuer):
            raise RevocationCheckError("OCSP response signed by an unauthorized responder")
        responder = delegated
    if not verify_signature(
        responder.public_key(),
        response.signature,
        response.tbs_response_bytes,
        response.signature_hash_algorithm,
    ):
        raise RevocationCheckError("OCSP response signature verification failed")

    if response.serial_number != certificate.serial_number:
        raise RevocationCheckError("OCSP response is about a different certificate")

    if nonce is not None:
        try:
            echoed = response.extensions.get_extension_for_class(x509.OCSPNonce).value.nonce
        except x509.ExtensionNotFound:
            echoed = None
        if echoed != nonce:
            raise RevocationCheckError("OCSP response nonce does not match the request")

    status = _STATUS[response.certificate_status]
    revoked = status is OCSPStatus.REVOKED
    return OCSPResult(
        serial=response.serial_number,
        status=status,
        produced_at=response.produced_at_utc,
        next_update=response.next_update_utc,
        revoked_at=response.revocation_time_utc if revoked else None,
        reason=RevocationReason.from_x509(response.revocation_reason) if revoked else None,
        der=data,
    )


class OCSPClient:
    """Client for querying OCSP responders."""

    def __init__(
        self,
        timeout: int = 5,
        cache_ttl: int = 300,
        http_client: Optional[httpx.AsyncClient] = None,
        fail_open: bool = True,
    ):
        """Initialize OCSP client.

        Args:
            timeout: Request timeout in seconds
            cache_ttl: Cache TTL in seconds
            http_client: Optional HTTP client to use
            fail_open: Treat an undeterminable status as not revoked
        """
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.fail_open = fail_open
        self._http_client = http_client
        self._cache: dict[tuple[str, int], tuple[OCSPResult, float]] = {}

    async def _post(self, url: str, body: bytes) -> bytes:
        headers = {"Content-Type": "application/ocsp-request"}
        if self._http_client is not None:
            response = await self._http_client.post(url, content=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, content=body, headers=headers)
        response.raise_for_status()
        return response.content

    async def check_revocation(
        self,
        certificate: x509.Certificate,
        issuer: x509.Certificate,
        ocsp_url: Optional[str] = None,
    ) -> OCSPResult:
        """Query the responder for a certificate's status.

        Args:
            certificate: Certificate to check
            issuer: Certificate of the CA that issued it
            ocsp_url: Responder URL (taken from the certificate if not provided)

        Returns:
            Verified OCSPResult

        Raises:
            RevocationCheckError: If the query fails or the response is untrusted
        """
        url = ocsp_url or ocsp_url_of(certificate)
        if not url:
            raise RevocationCheckError("Certificate carries no OCSP responder URL")

        # Check cache
        cache_key = (url, certificate.serial_number)
        if cache_key in self._cache:
            result, cached_at = self._cache[cache_key]
            if time.time() - cached_at < self.cache_ttl:
                return result

        nonce = os.urandom(16)
        try:
            data = await self._post(url, build_request(certificate, issuer, nonce))
        except httpx.HTTPError as e:
            raise RevocationCheckError(f"OCSP query failed: {e}") from e

        result = parse_response(data, certificate, issuer, nonce)
        self._cache[cache_key] = (result, time.time())
        return result

    async def is_revoked(
        self,
        certificate: x509.Certificate,
        issuer: x509.Certificate,
        ocsp_url: Optional[str] = None,
    ) -> bool:
        """Check if a certificate is revoked.

        Returns:
            True if revoked, False otherwise (including on failure when failing open)

        Raises:
            RevocationCheckError: If the check fails and the client fails closed
        """
        try:
            result = await self.check_revocation(certificate, issuer, ocsp_url)
        except RevocationCheckError as e:
            if not self.fail_open:
                raise
            logger.warning("OCSP check for %#x failed open: %s", certificate.serial_number, e)
            return False
        return result.is_revoked()

    def clear_cache(self):
        """Clear the OCSP response cache."""
        self._cache.clear()
