"""End-to-end test for open-ca."""

import pytest

from open_ca import (
    CAConfig,
    CertificateAuthority,
    OCSPStatus,
    RevocationReason,
    verify_chain,
)
from open_ca.authority import HierarchyState


def test_end_to_end_flow():
    """Test the complete flow: bootstrap, issue, query, revoke, query, publish."""

    # 1. Bootstrap root and intermediate
    ca = CertificateAuthority(CAConfig(algorithm="EC"))
    root = ca.hierarchy.bootstrap_root("Test Root", validity_days=9215)
    intermediate = ca.hierarchy.bootstrap_intermediate("Test Intermediate", validity_days=7300)
    assert ca.state is HierarchyState.OPERATIONAL

    # 2. Set up the OCSP signer and start answering
    responder = ca.setup_ocsp("ocsp.example.com")
    responder.start()

    # 3. Issue a server certificate
    issued = ca.issue_server("app.example.com", validity_days=3650)
    assert verify_chain(issued.certificate, [intermediate.certificate], [root.certificate])

    # 4. OCSP says good
    assert responder.query(issued.serial).status is OCSPStatus.GOOD

    # 5. Revoke it
    ca.revoke(issued.serial, reason=RevocationReason.KEY_COMPROMISE)

    # 6. OCSP says revoked
    result = responder.query(issued.serial)
    assert result.status is OCSPStatus.REVOKED
    assert result.reason is RevocationReason.KEY_COMPROMISE

    # 7. The CRL lists exactly that serial and reason
    artifact = ca.publish_crl()
    assert len(artifact.entries) == 1
    entry = artifact.entries[0]
    assert entry.serial == issued.serial
    assert entry.reason is RevocationReason.KEY_COMPROMISE


def test_reissue_after_revocation():
    """Test a name can be reused once its live certificate is revoked."""
    ca = CertificateAuthority(CAConfig(algorithm="EC"))
    ca.bootstrap("Test Root", "Test Intermediate")

    first = ca.issue_server("app.example.com")
    ca.revoke(first.serial, RevocationReason.SUPERSEDED)
    second = ca.issue_server("app.example.com")

    assert ca.publish_crl().serials() == {first.serial}
    assert ca.status(second.serial).is_live()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
