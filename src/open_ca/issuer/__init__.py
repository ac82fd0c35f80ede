"""Issuance and revocation services run by the intermediate CA."""

from .crl import CRLPublisher
from .engine import IssuanceEngine, IssuanceRequest
from .ocsp import OCSPResponder
from .revocation import RevocationManager

__all__ = [
    "IssuanceEngine",
    "IssuanceRequest",
    "CRLPublisher",
    "OCSPResponder",
    "RevocationManager",
]
