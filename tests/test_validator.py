"""Tests for chain validation."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from open_ca import CAConfig, CertificateAuthority, ChainValidator, RevocationReason, verify_chain
from open_ca.core.errors import (
    CertificateExpiredError,
    CertificateNotYetValidError,
    CertificateRevokedError,
    InvalidCertificateSignatureError,
    RevocationCheckError,
    UntrustedIssuerError,
)
from open_ca.integrations.fastapi import create_app
from open_ca.trust import CRLClient, OCSPClient


def _authority(**overrides) -> CertificateAuthority:
    ca = CertificateAuthority(CAConfig(algorithm="EC", **overrides))
    ca.bootstrap("Test Root", "Test Intermediate")
    return ca


def test_valid_chain():
    """Test a leaf chains through the intermediate to the trusted root."""
    ca = _authority()
    issued = ca.issue_server("app.example.com")
    validator = ChainValidator([ca.hierarchy.root.certificate])

    validator.validate(issued.certificate, list(issued.chain))
    assert validator.is_valid(issued.certificate, [ca.hierarchy.intermediate.certificate])


def test_untrusted_root():
    """Test a chain from another hierarchy is rejected."""
    ca = _authority()
    other = _authority()
    issued = ca.issue_server("app.example.com")
    validator = ChainValidator([other.hierarchy.root.certificate])

    with pytest.raises(InvalidCertificateSignatureError):
        validator.validate(issued.certificate, [ca.hierarchy.intermediate.certificate])

    stranger = CertificateAuthority(CAConfig(algorithm="EC"))
    stranger.bootstrap("Stranger Root", "Stranger Intermediate")
    with pytest.raises(UntrustedIssuerError):
        ChainValidator([stranger.hierarchy.root.certificate]).validate(
            issued.certificate, [ca.hierarchy.intermediate.certificate]
        )


def test_wrong_intermediate():
    """Test a leaf presented with another CA's intermediate."""
    ca = _authority()
    other = _authority()
    issued = ca.issue_server("app.example.com")

    with pytest.raises(InvalidCertificateSignatureError):
        ChainValidator([ca.hierarchy.root.certificate]).validate(
            issued.certificate, [other.hierarchy.intermediate.certificate]
        )


def test_validity_windows():
    """Test expired and not-yet-valid chains."""
    ca = _authority()
    issued = ca.issue_server("app.example.com", validity_days=30)
    validator = ChainValidator([ca.hierarchy.root.certificate])
    intermediates = [ca.hierarchy.intermediate.certificate]
    now = datetime.now(timezone.utc)

    with pytest.raises(CertificateExpiredError):
        validator.validate(issued.certificate, intermediates, now=now + timedelta(days=31))
    with pytest.raises(CertificateNotYetValidError):
        validator.validate(issued.certificate, intermediates, now=now - timedelta(days=1))


def test_crl_check():
    """Test a revoked leaf is caught by the issuer's CRL."""
    ca = _authority()
    issued = ca.issue_server("app.example.com")
    validator = ChainValidator([ca.hierarchy.root.certificate])
    intermediates = [ca.hierarchy.intermediate.certificate]

    validator.validate(issued.certificate, intermediates, crl=ca.publish_crl().crl)

    ca.revoke(issued.serial, RevocationReason.KEY_COMPROMISE)
    with pytest.raises(CertificateRevokedError):
        validator.validate(issued.certificate, intermediates, crl=ca.publish_crl().crl)

    other = _authority()
    with pytest.raises(RevocationCheckError):
        validator.validate(issued.certificate, intermediates, crl=other.publish_crl().crl)


def test_verify_chain_boolean():
    """Test the boolean wrapper."""
    ca = _authority()
    other = _authority()
    issued = ca.issue_user("alice")
    intermediates = [ca.hierarchy.intermediate.certificate]

    assert verify_chain(issued.certificate, intermediates, [ca.hierarchy.root.certificate])
    assert not verify_chain(issued.certificate, intermediates, [other.hierarchy.root.certificate])


def test_validate_with_ocsp():
    """Test the asynchronous OCSP revocation check."""
    ca = _authority(ocsp_url="http://testserver/ocsp")
    ca.setup_ocsp("ocsp.example.com")
    app = create_app(ca)
    app.state.ocsp_service.start()
    issued = ca.issue_server("app.example.com")
    intermediates = [ca.hierarchy.intermediate.certificate]

    async def check():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            validator = ChainValidator(
                [ca.hierarchy.root.certificate],
                check_ocsp=True,
                ocsp_client=OCSPClient(http_client=http, cache_ttl=0),
            )
            await validator.validate_with_ocsp(issued.certificate, intermediates)
            ca.revoke(issued.serial, RevocationReason.KEY_COMPROMISE)
            with pytest.raises(CertificateRevokedError):
                await validator.validate_with_ocsp(issued.certificate, intermediates)

    asyncio.run(check())


def test_crl_client():
    """Test CRL download, signature check and lookup."""
    ca = _authority(crl_url="http://testserver/crl")
    app = create_app(ca)
    issued = ca.issue_server("app.example.com")
    kept = ca.issue_server("kept.example.com")
    ca.revoke(issued.serial, RevocationReason.KEY_COMPROMISE)
    ca.publish_crl()
    issuer = ca.hierarchy.intermediate.certificate
    other = _authority()

    async def check():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
            client = CRLClient(http_client=http, fail_open=False)
            revoked = await client.is_revoked(issued.certificate, issuer)
            good = await client.is_revoked(kept.certificate, issuer)
            client.clear_cache()
            with pytest.raises(RevocationCheckError):
                await client.download_crl("http://testserver/crl", other.hierarchy.intermediate.certificate)
            return revoked, good

    revoked, good = asyncio.run(check())

    assert revoked is True
    assert good is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
