"""Core state containers."""

from core.sequence_store import SequenceStore

__all__ = ["SequenceStore"]
