"""Relying-party chain validation."""

from .chain import ChainValidator, verify_chain

__all__ = ["ChainValidator", "verify_chain"]
