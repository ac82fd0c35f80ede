"""Revocation checking against published CRLs and OCSP responders."""

from .crl import CRLClient
from .ocsp import OCSPClient

__all__ = ["CRLClient", "OCSPClient"]
