"""DNS challenge coordinator interface."""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence
from core.models.certificate import DomainRecord
from core.models.resource import ResourceRegistry


class IDNSChallengeService(ABC):
    """Interface for publishing and retracting challenge records."""

    @abstractmethod
    async def resolve_zones(self, domains: Sequence[str]) -> Dict[str, str]:
        """Map every domain to the hosted zone id that will hold its record.

        Raises:
            ValidationError: If a domain has no resolvable hosted zone
        """
        pass

    @abstractmethod
    async def publish(self, domain: str, address: str, registry: ResourceRegistry) -> DomainRecord:
        """Create or overwrite the A record and wait for propagation.

        Raises:
            ChallengeError: If the record could not be published
        """
        pass

    @abstractmethod
    async def retract(self, domain: str, address: Optional[str] = None) -> bool:
        """Delete the A record without waiting. Returns False if absent or repointed.

        Raises:
            ChallengeError: If the delete call failed
        """
        pass
