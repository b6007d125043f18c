"""Run state store implementations."""

from specflow.storage.backends.filesystem import RunStateStore

__all__ = ["RunStateStore"]
