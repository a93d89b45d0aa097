"""Versioned store, its soft-delete projection and the compactor."""

from cdc_engine.store.compactor import CompactionPass, CompactionResult, Compactor
from cdc_engine.store.projector import SoftDeleteProjector
from cdc_engine.store.versioned_store import VersionedStore, resolve_current

__all__ = [
    "CompactionPass",
    "CompactionResult",
    "Compactor",
    "SoftDeleteProjector",
    "VersionedStore",
    "resolve_current",
]
