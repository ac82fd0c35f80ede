"""OCSP responder signing status answers for intermediate-issued certificates."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509 import ocsp

from ..authority.hierarchy import CAIdentity, TrustHierarchy
from ..core import crypto
from ..core.errors import ResponderNotRunningError, SignerUnusableError
from ..core.models import OCSPResult, OCSPStatus, RevocationReason, SerialRecord

logger = logging.getLogger(__name__)

# RFC 8954 caps the nonce at 32 octets
MAX_NONCE_LENGTH = 32


def unsuccessful(status: ocsp.OCSPResponseStatus) -> bytes:
    """DER for an unsigned error response."""
    return ocsp.OCSPResponseBuilder.build_unsuccessful(status).public_bytes(
        serialization.Encoding.DER
    )


def _nonce_of(request: ocsp.OCSPRequest) -> Optional[bytes]:
    for extension in request.extensions:
        if extension.oid == x509.OCSPNonce.oid:
            nonce = extension.value.nonce
            if not 0 < len(nonce) <= MAX_NONCE_LENGTH:
                raise ValueError(f"Nonce length {len(nonce)} outside 1..{MAX_NONCE_LENGTH}")
            return nonce
    return None


class OCSPResponder:
    """Answers status queries from the live intermediate index.

    Responses are signed by a delegated signer certificate (OCSPSigning EKU,
    issued by the intermediate). The responder refuses to start, and refuses
    each query, while that certificate is expired or revoked.
    """

    def __init__(
        self,
        hierarchy: TrustHierarchy,
        signer: CAIdentity,
        response_validity: Optional[timedelta] = None,
    ):
        """Initialize responder.

        Args:
            hierarchy: Operational trust hierarchy
            signer: Delegated OCSP signer identity
            response_validity: nextUpdate offset (config.ocsp_response_hours if not provided)
        """
        self.hierarchy = hierarchy
        self.signer = signer
        self.response_validity = response_validity or timedelta(
            hours=hierarchy.config.ocsp_response_hours
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def _check_signer(self, now: datetime) -> None:
        intermediate = self.hierarchy.require_operational()
        problem = None
        record = intermediate.index.get(self.signer.serial)
        if not crypto.is_issued_by(self.signer.certificate, intermediate.certificate):
            problem = "was not issued by the intermediate CA"
        elif not self.signer.is_valid_at(now):
            problem = "is outside its validity period"
        elif record is None:
            problem = "is not recorded in the intermediate index"
        elif record.is_revoked:
            problem = "has been revoked"
        if problem:
            logger.warning("OCSP signer %#x %s", self.signer.serial, problem)
            raise SignerUnusableError(f"OCSP signer certificate {self.signer.serial:#x} {problem}")

    def start(self) -> None:
        """Begin answering queries.

        Raises:
            SignerUnusableError: If the signer certificate is expired or revoked
        """
        self._check_signer(datetime.now(timezone.utc))
        self._running = True
        logger.info("OCSP responder started with signer %#x", self.signer.serial)

    def stop(self) -> None:
        if self._running:
            logger.info("OCSP responder stopped")
        self._running = False

    def _require_running(self) -> None:
        if not self._running:
            raise ResponderNotRunningError("OCSP responder is not running")

    def query(
        self, serial: int, hash_algorithm: Optional[hashes.HashAlgorithm] = None
    ) -> OCSPResult:
        """Status of one serial, read from the index at call time.

        Args:
            serial: Certificate serial number
            hash_algorithm: CertID hash (SHA-1 if not provided)

        Returns:
            OCSPResult; ``unknown`` for serials this CA never issued

        Raises:
            ResponderNotRunningError: If the responder is stopped
            SignerUnusableError: If the signer became unusable
        """
        self._require_running()
        now = datetime.now(timezone.utc)
        self._check_signer(now)

        record = self.hierarchy.intermediate.index.get(serial)
        logger.debug("OCSP query for %#x: %s", serial, record.status.value if record else "unknown")
        response = self._sign(serial, record, hash_algorithm or hashes.SHA1(), now, nonce=None)
        if record is None:
            status = OCSPStatus.UNKNOWN
        else:
            status = OCSPStatus.REVOKED if record.is_revoked else OCSPStatus.GOOD
        revoked = status is OCSPStatus.REVOKED
        return OCSPResult(
            serial=serial,
            status=status,
            produced_at=now,
            next_update=now + self.response_validity,
            revoked_at=record.revoked_at if revoked else None,
            reason=record.revocation_reason if revoked else None,
            der=response.public_bytes(serialization.Encoding.DER),
        )

    def respond(self, request_der: bytes) -> bytes:
        """Answer a DER encoded OCSP request with a DER encoded response.

        Malformed requests and requests naming another issuer get unsigned
        error responses. Serials this CA never issued get a signed
        ``unknown`` status. A nonce in the request is echoed.
        """
        try:
            request = ocsp.load_der_ocsp_request(request_der)
            nonce = _nonce_of(request)
            algorithm = request.hash_algorithm
        except (ValueError, UnsupportedAlgorithm) as e:
            logger.debug("Malformed OCSP request: %s", e)
            return unsuccessful(ocsp.OCSPResponseStatus.MALFORMED_REQUEST)

        if not self._running:
            return unsuccessful(ocsp.OCSPResponseStatus.TRY_LATER)
        now = datetime.now(timezone.utc)
        try:
            self._check_signer(now)
        except SignerUnusableError:
            return unsuccessful(ocsp.OCSPResponseStatus.TRY_LATER)

        intermediate = self.hierarchy.intermediate
        expected = crypto.issuer_hashes(intermediate.certificate, algorithm)
        if (request.issuer_name_hash, request.issuer_key_hash) != expected:
            logger.debug("OCSP request for %#x names another issuer", request.serial_number)
            return unsuccessful(ocsp.OCSPResponseStatus.UNAUTHORIZED)

        serial = request.serial_number
        record = intermediate.index.get(serial)
        response = self._sign(serial, record, algorithm, now, nonce)
        logger.debug("OCSP response for %#x: %s", serial, record.status.value if record else "unknown")
        return response.public_bytes(serialization.Encoding.DER)

    def _sign(
        self,
        serial: int,
        record: Optional[SerialRecord],
        algorithm: hashes.HashAlgorithm,
        now: datetime,
        nonce: Optional[bytes],
    ) -> ocsp.OCSPResponse:
        revocation_time = None
        revocation_reason = None
        if record is None:
            status = ocsp.OCSPCertStatus.UNKNOWN
        elif record.is_revoked:
            status = ocsp.OCSPCertStatus.REVOKED
            revocation_time = record.revoked_at
            reason = record.revocation_reason
            if reason and reason is not RevocationReason.UNSPECIFIED:
                revocation_reason = reason.to_x509()
        else:
            status = ocsp.OCSPCertStatus.GOOD

        name_hash, key_hash = crypto.issuer_hashes(self.hierarchy.intermediate.certificate, algorithm)
        builder = (
            ocsp.OCSPResponseBuilder()
            .add_response_by_hash(
                issuer_name_hash=name_hash,
                issuer_key_hash=key_hash,
                serial_number=serial,
                algorithm=algorithm,
                cert_status=status,
                this_update=now,
                next_update=now + self.response_validity,
                revocation_time=revocation_time,
                revocation_reason=revocation_reason,
            )
            .responder_id(ocsp.OCSPResponderEncoding.HASH, self.signer.certificate)
            .certificates([self.signer.certificate])
        )
        if nonce is not None:
            builder = builder.add_extension(x509.OCSPNonce(nonce), critical=False)

        with self.signer.signing_key() as key:
            return crypto.sign_ocsp_response(key, builder, f"OCSP status of {serial:#x}")
