"""Tests for root and intermediate bootstrap."""

import pytest
from cryptography import x509

from open_ca import CAConfig, DistinguishedName, TrustHierarchy
from open_ca.authority import HierarchyState, MemoryStorage
from open_ca.core.errors import (
    AlreadyInitializedError,
    MismatchedFieldError,
    NotBootstrappedError,
    ValidityError,
)
from open_ca.core.models import CertClass


def _config() -> CAConfig:
    return CAConfig(algorithm="EC")


def test_state_progression():
    """Test uninitialized -> root_ready -> operational."""
    hierarchy = TrustHierarchy(_config())
    assert hierarchy.state is HierarchyState.UNINITIALIZED
    with pytest.raises(NotBootstrappedError):
        hierarchy.require_operational()

    hierarchy.bootstrap_root("Test Root")
    assert hierarchy.state is HierarchyState.ROOT_READY

    hierarchy.bootstrap_intermediate("Test Intermediate")
    assert hierarchy.state is HierarchyState.OPERATIONAL
    assert hierarchy.require_operational() is hierarchy.intermediate


def test_root_is_self_signed_ca():
    """Test the root certificate's name, constraints and serial."""
    hierarchy = TrustHierarchy(_config())
    root = hierarchy.bootstrap_root("Test Root", validity_days=9215)

    cert = root.certificate
    assert cert.subject == cert.issuer
    assert root.subject.common_name == "Test Root"
    assert cert.serial_number == 0x1000
    constraints = cert.extensions.get_extension_for_class(x509.BasicConstraints)
    assert constraints.critical and constraints.value.ca
    assert root.index.get(0x1000).cert_class is CertClass.ROOT


def test_bootstrap_root_twice_fails():
    """Test an existing root is never overwritten."""
    hierarchy = TrustHierarchy(_config())
    root = hierarchy.bootstrap_root("Test Root")

    with pytest.raises(AlreadyInitializedError):
        hierarchy.bootstrap_root("Another Root")
    assert hierarchy.root is root


def test_intermediate_requires_root():
    """Test the intermediate cannot be created first."""
    hierarchy = TrustHierarchy(_config())

    with pytest.raises(NotBootstrappedError):
        hierarchy.bootstrap_intermediate("Test Intermediate")


def test_intermediate_validity_bounded_by_root():
    """Test a 200 day intermediate under a 100 day root fails and 50 days succeeds."""
    hierarchy = TrustHierarchy(_config())
    hierarchy.bootstrap_root("Test Root", validity_days=100)

    with pytest.raises(ValidityError):
        hierarchy.bootstrap_intermediate("Test Intermediate", validity_days=200)
    assert hierarchy.state is HierarchyState.ROOT_READY
    assert len(hierarchy.root.index) == 1

    intermediate = hierarchy.bootstrap_intermediate("Test Intermediate", validity_days=50)
    assert intermediate.not_after <= hierarchy.root.not_after


def test_intermediate_must_match_root_organization():
    """Test the root's strict policy is applied to the intermediate subject."""
    hierarchy = TrustHierarchy(_config())
    hierarchy.bootstrap_root(
        DistinguishedName(country="GB", organization="Acme Ltd", common_name="Acme Root")
    )

    with pytest.raises(MismatchedFieldError):
        hierarchy.bootstrap_intermediate(
            DistinguishedName(country="GB", organization="Other Ltd", common_name="Acme Issuing")
        )
    assert hierarchy.state is HierarchyState.ROOT_READY


def test_intermediate_is_signed_by_root():
    """Test the intermediate chains to the root and is recorded in the root index."""
    hierarchy = TrustHierarchy(_config())
    root = hierarchy.bootstrap_root("Test Root")
    intermediate = hierarchy.bootstrap_intermediate("Test Intermediate")

    assert hierarchy.verify() is True
    intermediate.certificate.verify_directly_issued_by(root.certificate)
    constraints = intermediate.certificate.extensions.get_extension_for_class(x509.BasicConstraints)
    assert constraints.value.ca and constraints.value.path_length == 0

    record = root.index.get(intermediate.serial)
    assert record.cert_class is CertClass.INTERMEDIATE
    assert record.common_name == "Test Intermediate"
    assert len(intermediate.index) == 0


def test_subject_defaults_are_merged():
    """Test configured defaults fill fields the request leaves empty."""
    config = CAConfig(
        algorithm="EC",
        subject_defaults=DistinguishedName(country="US", state="Oregon", organization="Acme"),
    )
    hierarchy = TrustHierarchy(config)
    root = hierarchy.bootstrap_root("Acme Root")
    intermediate = hierarchy.bootstrap_intermediate("Acme Intermediate")

    assert root.subject.organization == "Acme"
    assert intermediate.subject.country == "US"


def test_chain_of():
    """Test chains are ordered intermediate first, root last."""
    hierarchy = TrustHierarchy(_config())
    root = hierarchy.bootstrap_root("Test Root")
    intermediate = hierarchy.bootstrap_intermediate("Test Intermediate")

    assert hierarchy.chain_of() == (intermediate.certificate, root.certificate)
    assert hierarchy.chain_of(include_root=False) == (intermediate.certificate,)
    assert len(x509.load_pem_x509_certificates(hierarchy.chain_pem())) == 2


def test_state_is_restored_from_storage():
    """Test a hierarchy reloaded from the same storage resumes where it stopped."""
    storage = MemoryStorage()
    TrustHierarchy(_config(), storage).bootstrap_root("Test Root")

    resumed = TrustHierarchy(_config(), storage)
    assert resumed.state is HierarchyState.ROOT_READY

    resumed.bootstrap_intermediate("Test Intermediate")
    assert TrustHierarchy(_config(), storage).state is HierarchyState.OPERATIONAL


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
