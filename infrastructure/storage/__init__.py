"""Storage infrastructure package."""

from .json_store import JSONStore, RegistryJournal, write_run_report

__all__ = ["JSONStore", "RegistryJournal", "write_run_report"]
