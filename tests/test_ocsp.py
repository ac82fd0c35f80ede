"""Tests for the OCSP responder and client."""

import asyncio

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509 import ocsp

from open_ca import CAConfig, CertificateAuthority, MemoryStorage, OCSPStatus, RevocationReason
from open_ca.core import crypto
from open_ca.core.errors import (
    NotBootstrappedError,
    ResponderNotRunningError,
    RevocationCheckError,
    SignerUnusableError,
    ValidityError,
)
from open_ca.core.models import CertClass, CertStatus
from open_ca.integrations.fastapi import create_app
from open_ca.trust import OCSPClient
from open_ca.trust.ocsp import build_request, parse_response


def _authority(**overrides) -> CertificateAuthority:
    ca = CertificateAuthority(CAConfig(algorithm="EC", **overrides))
    ca.bootstrap("Test Root", "Test Intermediate")
    return ca


def _started_responder(ca: CertificateAuthority):
    responder = ca.setup_ocsp("ocsp.example.com")
    responder.start()
    return responder


def test_responder_needs_signer():
    """Test there is no responder before an OCSP signer is set up."""
    ca = _authority()

    with pytest.raises(NotBootstrappedError):
        ca.responder()


def test_query_good_then_revoked():
    """Test a revocation is visible to the very next query."""
    ca = _authority()
    responder = _started_responder(ca)
    issued = ca.issue_server("app.example.com")

    assert responder.query(issued.serial).status is OCSPStatus.GOOD

    ca.revoke(issued.serial, RevocationReason.KEY_COMPROMISE)
    result = responder.query(issued.serial)

    assert result.is_revoked()
    assert result.reason is RevocationReason.KEY_COMPROMISE
    assert result.revoked_at == ca.status(issued.serial).revoked_at


def test_query_unknown_serial():
    """Test serials this CA never issued get a signed unknown status."""
    ca = _authority()
    responder = _started_responder(ca)

    result = responder.query(0xDEAD)

    assert result.status is OCSPStatus.UNKNOWN
    assert result.revoked_at is None
    response = ocsp.load_der_ocsp_response(result.der)
    assert response.response_status is ocsp.OCSPResponseStatus.SUCCESSFUL
    assert response.certificate_status is ocsp.OCSPCertStatus.UNKNOWN
    assert response.serial_number == 0xDEAD
    assert crypto.verify_signature(
        responder.signer.certificate.public_key(),
        response.signature,
        response.tbs_response_bytes,
        response.signature_hash_algorithm,
    )


def test_query_response_is_signed_by_delegated_signer():
    """Test the encoded response verifies against the intermediate's delegated signer."""
    ca = _authority()
    responder = _started_responder(ca)
    issued = ca.issue_server("app.example.com")

    result = responder.query(issued.serial)
    parsed = parse_response(result.der, issued.certificate, ca.hierarchy.intermediate.certificate)

    assert parsed.status is OCSPStatus.GOOD
    response = ocsp.load_der_ocsp_response(result.der)
    assert response.certificates == [responder.signer.certificate]
    assert response.responder_key_hash is not None


def test_query_requires_running_responder():
    """Test a stopped responder answers nothing."""
    ca = _authority()
    responder = ca.setup_ocsp("ocsp.example.com")

    with pytest.raises(ResponderNotRunningError):
        responder.query(0x1000)

    responder.start()
    responder.stop()
    with pytest.raises(ResponderNotRunningError):
        responder.query(0x1000)


def test_revoked_signer_cannot_start():
    """Test the responder refuses to start on a revoked signer."""
    ca = _authority()
    responder = ca.setup_ocsp("ocsp.example.com")
    ca.revoke(responder.signer.serial, RevocationReason.KEY_COMPROMISE)

    with pytest.raises(SignerUnusableError):
        responder.start()


def test_signer_revoked_while_running():
    """Test queries stop once the running signer is revoked."""
    ca = _authority()
    responder = _started_responder(ca)
    issued = ca.issue_user("alice")
    ca.revoke(responder.signer.serial, RevocationReason.KEY_COMPROMISE)

    with pytest.raises(SignerUnusableError):
        responder.query(issued.serial)
    request = build_request(issued.certificate, ca.hierarchy.intermediate.certificate)
    response = ocsp.load_der_ocsp_response(responder.respond(request))
    assert response.response_status is ocsp.OCSPResponseStatus.TRY_LATER


def test_setup_ocsp_supersedes_previous_signer():
    """Test a new signer revokes the previous one as superseded."""
    ca = _authority()
    first = _started_responder(ca)

    second = ca.setup_ocsp("ocsp.example.com")

    assert not first.running
    assert second.signer.serial != first.signer.serial
    old = ca.status(first.signer.serial)
    assert old.status is CertStatus.REVOKED
    assert old.revocation_reason is RevocationReason.SUPERSEDED
    assert ca.status(second.signer.serial).cert_class is CertClass.OCSP_SIGNER
    assert ca.responder() is second


def test_failed_setup_keeps_current_signer():
    """Test a setup that fails to issue leaves the running signer in place."""
    ca = _authority()
    first = _started_responder(ca)

    with pytest.raises(ValidityError):
        ca.setup_ocsp("ocsp2.example.com", validity_days=0)

    assert ca.status(first.signer.serial).status is CertStatus.VALID
    assert first.running
    assert ca.responder() is first
    assert first.query(first.signer.serial).status is OCSPStatus.GOOD


class _FlakyStorage(MemoryStorage):
    """Memory storage whose next OCSP certificate write fails once."""

    fail_next = False

    def save_identity_cert(self, name: str, pem: bytes) -> None:
        if self.fail_next and name == "ocsp":
            self.fail_next = False
            raise OSError("disk full")
        super().save_identity_cert(name, pem)


def test_setup_storage_failure_restores_previous_signer():
    """Test a signer that cannot be stored is revoked and the old one kept."""
    storage = _FlakyStorage()
    ca = CertificateAuthority(CAConfig(algorithm="EC"), storage)
    ca.bootstrap("Test Root", "Test Intermediate")
    first = _started_responder(ca)
    stored = storage.load_identity_cert("ocsp")

    storage.fail_next = True
    with pytest.raises(OSError):
        ca.setup_ocsp("ocsp.example.com")

    signers = [r for r in ca.certificates() if r.cert_class is CertClass.OCSP_SIGNER]
    assert [r.status for r in signers] == [CertStatus.VALID, CertStatus.REVOKED]
    assert signers[0].serial == first.signer.serial
    assert storage.load_identity_cert("ocsp") == stored
    assert ca.responder() is first and first.running


def test_respond_to_der_request_echoes_nonce():
    """Test a standard OCSP request round trip with a nonce."""
    ca = _authority()
    responder = _started_responder(ca)
    issued = ca.issue_server("app.example.com")
    issuer = ca.hierarchy.intermediate.certificate
    nonce = b"0123456789abcdef"

    der = responder.respond(build_request(issued.certificate, issuer, nonce))
    result = parse_response(der, issued.certificate, issuer, nonce)

    assert result.status is OCSPStatus.GOOD
    assert result.serial == issued.serial
    assert result.next_update is not None


def test_respond_with_sha256_cert_id():
    """Test CertIDs hashed with SHA-256 are answered."""
    ca = _authority()
    responder = _started_responder(ca)
    issued = ca.issue_user("alice")
    issuer = ca.hierarchy.intermediate.certificate

    der = responder.respond(build_request(issued.certificate, issuer, algorithm=hashes.SHA256()))
    response = ocsp.load_der_ocsp_response(der)

    assert response.response_status is ocsp.OCSPResponseStatus.SUCCESSFUL
    assert isinstance(response.hash_algorithm, hashes.SHA256)


def test_respond_unknown_serial_and_foreign_issuer():
    """Test unknown serials and requests the responder is not authoritative for."""
    ca = _authority()
    responder = _started_responder(ca)
    issuer = ca.hierarchy.intermediate.certificate

    name_hash, key_hash = crypto.issuer_hashes(issuer, hashes.SHA1())
    unknown = (
        ocsp.OCSPRequestBuilder()
        .add_certificate_by_hash(name_hash, key_hash, 0xDEAD, hashes.SHA1())
        .add_extension(x509.OCSPNonce(b"unknown-nonce"), critical=False)
        .build()
        .public_bytes(serialization.Encoding.DER)
    )
    response = ocsp.load_der_ocsp_response(responder.respond(unknown))
    assert response.response_status is ocsp.OCSPResponseStatus.SUCCESSFUL
    assert response.certificate_status is ocsp.OCSPCertStatus.UNKNOWN
    assert response.serial_number == 0xDEAD
    assert (response.issuer_name_hash, response.issuer_key_hash) == (name_hash, key_hash)
    assert response.extensions.get_extension_for_class(x509.OCSPNonce).value.nonce == b"unknown-nonce"

    other = _authority()
    foreign = other.issue_server("app.example.com")
    request = build_request(foreign.certificate, other.hierarchy.intermediate.certificate)
    response = ocsp.load_der_ocsp_response(responder.respond(request))
    assert response.response_status is ocsp.OCSPResponseStatus.UNAUTHORIZED


def test_respond_malformed_request():
    """Test garbage input gets a malformedRequest response."""
    ca = _authority()
    responder = _started_responder(ca)

    response = ocsp.load_der_ocsp_response(responder.respond(b"not an ocsp request"))

    assert response.response_status is ocsp.OCSPResponseStatus.MALFORMED_REQUEST


def test_parse_response_rejects_wrong_nonce():
    """Test the client notices a replayed response."""
    ca = _authority()
    responder = _started_responder(ca)
    issued = ca.issue_user("alice")
    issuer = ca.hierarchy.intermediate.certificate

    der = responder.respond(build_request(issued.certificate, issuer, b"first-nonce"))

    with pytest.raises(RevocationCheckError):
        parse_response(der, issued.certificate, issuer, b"other-nonce")


def test_parse_response_rejects_foreign_issuer():
    """Test a response signed under another hierarchy is not trusted."""
    ca = _authority()
    responder = _started_responder(ca)
    issued = ca.issue_user("alice")
    other = _authority()

    der = responder.respond(build_request(issued.certificate, ca.hierarchy.intermediate.certificate))

    with pytest.raises(RevocationCheckError):
        parse_response(der, issued.certificate, other.hierarchy.intermediate.certificate)


def test_ocsp_client_over_http():
    """Test the async client against the HTTP responder."""
    ca = _authority(ocsp_url="http://testserver/ocsp")
    ca.setup_ocsp("ocsp.example.com")
    app = create_app(ca)
    app.state.ocsp_service.start()
    issued = ca.issue_server("app.example.com")
    issuer = ca.hierarchy.intermediate.certificate

    async def check():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            client = OCSPClient(http_client=http)
            good = await client.check_revocation(issued.certificate, issuer)
            client.clear_cache()
            ca.revoke(issued.serial, RevocationReason.PRIVILEGE_WITHDRAWN)
            revoked = await client.is_revoked(issued.certificate, issuer)
            return good, revoked

    good, revoked = asyncio.run(check())

    assert good.status is OCSPStatus.GOOD
    assert revoked is True


def test_ocsp_client_fail_closed():
    """Test a client configured to fail closed raises when the responder is down."""
    ca = _authority()
    ca.setup_ocsp("ocsp.example.com")
    app = create_app(ca)
    issued = ca.issue_server("app.example.com")
    issuer = ca.hierarchy.intermediate.certificate

    async def check(fail_open: bool):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            client = OCSPClient(http_client=http, fail_open=fail_open)
            return await client.is_revoked(issued.certificate, issuer, "http://testserver/ocsp")

    assert asyncio.run(check(fail_open=True)) is False
    with pytest.raises(RevocationCheckError):
        asyncio.run(check(fail_open=False))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
