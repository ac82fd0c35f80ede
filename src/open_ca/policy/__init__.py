"""Naming and extension policy."""

from .catalog import CALevel, FieldMode, PolicyCatalog, PolicyRule

__all__ = ["PolicyCatalog", "PolicyRule", "FieldMode", "CALevel"]
