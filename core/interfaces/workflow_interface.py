"""Workflow orchestrator interface."""

from abc import ABC, abstractmethod
from core.models.config import RunContext
from core.models.workflow import RunResult


class IWorkflowOrchestrator(ABC):
    """Interface for running one certificate run end to end."""

    @abstractmethod
    async def run(self, context: RunContext) -> RunResult:
        """Validate, provision, certify every domain and always tear down.

        Raises:
            ValidationError: If the configuration is unusable (nothing was created)
        """
        pass

    @abstractmethod
    async def teardown_only(self, context: RunContext) -> RunResult:
        """Re-run the teardown reconciler for an earlier run tag."""
        pass
