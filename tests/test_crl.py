"""Tests for CRL publication."""

from datetime import timedelta

import pytest
from cryptography import x509

from open_ca import CAConfig, CertificateAuthority, RevocationReason
from open_ca.core.errors import AlreadyRevokedError, NotBootstrappedError, NotFoundError
from open_ca.core.models import CRLEntry


def _authority(**overrides) -> CertificateAuthority:
    ca = CertificateAuthority(CAConfig(algorithm="EC", **overrides))
    ca.bootstrap("Test Root", "Test Intermediate")
    return ca


def test_publish_requires_operational_hierarchy():
    """Test publication before bootstrap."""
    ca = CertificateAuthority(CAConfig(algorithm="EC"))

    with pytest.raises(NotBootstrappedError):
        ca.publish_crl()


def test_empty_crl():
    """Test a CRL with nothing revoked is still signed and numbered."""
    ca = _authority()

    artifact = ca.publish_crl()

    assert artifact.entries == ()
    assert artifact.crl_number == 0x1000
    assert len(artifact.crl) == 0
    assert artifact.crl.issuer == ca.hierarchy.intermediate.certificate.subject
    assert artifact.crl.is_signature_valid(ca.hierarchy.intermediate.certificate.public_key())


def test_crl_lists_revoked_certificates_with_reasons():
    """Test revoked serials appear with their reason codes."""
    ca = _authority()
    compromised = ca.issue_server("a.example.com")
    retired = ca.issue_server("b.example.com")
    unspecified = ca.issue_user("carol")
    kept = ca.issue_user("dave")
    ca.revoke(compromised.serial, RevocationReason.KEY_COMPROMISE)
    ca.revoke(retired.serial, RevocationReason.CESSATION_OF_OPERATION)
    ca.revoke(unspecified.serial)

    artifact = ca.publish_crl()

    assert artifact.serials() == {compromised.serial, retired.serial, unspecified.serial}
    assert kept.serial not in artifact.serials()
    revoked = artifact.crl.get_revoked_certificate_by_serial_number(compromised.serial)
    reason = revoked.extensions.get_extension_for_class(x509.CRLReason).value.reason
    assert reason is x509.ReasonFlags.key_compromise
    plain = artifact.crl.get_revoked_certificate_by_serial_number(unspecified.serial)
    with pytest.raises(x509.ExtensionNotFound):
        plain.extensions.get_extension_for_class(x509.CRLReason)


def test_republish_increments_number_with_same_entries():
    """Test two publications with no revocation in between."""
    ca = _authority()
    issued = ca.issue_server("app.example.com")
    ca.revoke(issued.serial, RevocationReason.KEY_COMPROMISE)

    first = ca.publish_crl()
    second = ca.publish_crl()

    assert second.crl_number > first.crl_number
    assert second.entries == first.entries
    number = second.crl.extensions.get_extension_for_class(x509.CRLNumber).value.crl_number
    assert number == second.crl_number


def test_revoke_does_not_republish():
    """Test revocation and publication are separate steps."""
    ca = _authority()
    issued = ca.issue_server("app.example.com")
    before = ca.publish_crl()

    ca.revoke(issued.serial)

    assert ca.latest_crl().crl_number == before.crl_number
    assert ca.latest_crl().entries == ()
    assert ca.publish_crl().serials() == {issued.serial}


def test_next_update_follows_config():
    """Test nextUpdate is thisUpdate plus the configured CRL lifetime."""
    ca = _authority(crl_days=7)

    artifact = ca.publish_crl()

    assert artifact.next_update - artifact.this_update == timedelta(days=7)


def test_latest_round_trips_through_storage():
    """Test the stored CRL is parsed back into an artifact."""
    ca = _authority()
    assert ca.latest_crl() is None
    issued = ca.issue_user("alice")
    ca.revoke(issued.serial, RevocationReason.AFFILIATION_CHANGED)
    published = ca.publish_crl()

    latest = ca.latest_crl()

    assert latest.crl_number == published.crl_number
    assert latest.der == published.der
    assert latest.entries == (
        CRLEntry(
            serial=issued.serial,
            revoked_at=latest.entries[0].revoked_at,
            reason=RevocationReason.AFFILIATION_CHANGED,
        ),
    )


def test_revoke_errors():
    """Test unknown and repeated revocations."""
    ca = _authority()
    issued = ca.issue_user("alice")

    with pytest.raises(NotFoundError):
        ca.revoke(0xDEAD)
    ca.revoke(issued.serial)
    with pytest.raises(AlreadyRevokedError):
        ca.revoke(issued.serial)


def test_revoke_by_name():
    """Test revoking the live certificate that carries a common name."""
    ca = _authority()
    ca.issue_user("alice")
    issued = ca.issue_server("app.example.com")

    record = ca.revoke_by_name(" App.Example.com", RevocationReason.KEY_COMPROMISE)

    assert record.serial == issued.serial
    assert record.revocation_reason is RevocationReason.KEY_COMPROMISE
    assert ca.status(issued.serial).is_revoked
    with pytest.raises(NotFoundError):
        ca.revoke_by_name("app.example.com")
    with pytest.raises(NotFoundError):
        ca.revoke_by_name("nobody")

    reissued = ca.issue_server("app.example.com")
    assert ca.revoke_by_name("app.example.com").serial == reissued.serial


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
