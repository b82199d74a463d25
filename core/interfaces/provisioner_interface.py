"""Infrastructure provisioner interface."""

from abc import ABC, abstractmethod
from core.models.config import RunContext
from core.models.instance import ProvisionedInstance
from core.models.resource import ResourceRegistry


class IProvisionerService(ABC):
    """Interface for creating the ephemeral host and its scaffolding."""

    @abstractmethod
    async def provision(self, context: RunContext, registry: ResourceRegistry) -> ProvisionedInstance:
        """Create key pair, identity, network and instance, then wait until ready.

        Args:
            context: Run configuration
            registry: Receives a handle for every resource as it is created

        Returns:
            ProvisionedInstance reachable on port 22

        Raises:
            ProvisioningError: On any provider failure or reachability timeout
        """
        pass
