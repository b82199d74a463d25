"""Teardown reconciler interface."""

from abc import ABC, abstractmethod
from core.models.config import RunContext
from core.models.resource import ResourceRegistry
from core.models.workflow import TeardownReport


class ITeardownService(ABC):
    """Interface for releasing every ephemeral resource of a run."""

    @abstractmethod
    async def reconcile(self, context: RunContext, registry: ResourceRegistry) -> TeardownReport:
        """Delete everything recorded or tagged for the run; never raises for step failures."""
        pass
