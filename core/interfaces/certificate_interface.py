"""Certificate issuer and publisher interfaces."""

from abc import ABC, abstractmethod
from core.models.certificate import CertificateArtifact, PublishedCertificate
from core.models.workflow import IssuanceState


class ICertificateIssuerService(ABC):
    """Interface for driving the issuance agent on the instance."""

    @abstractmethod
    async def prepare_agent(self) -> None:
        """Make sure the issuance agent is installed."""
        pass

    @abstractmethod
    async def artifact_exists(self, domain: str) -> bool:
        """Whether a certificate for ``domain`` is already on the instance."""
        pass

    @abstractmethod
    async def issue(self, domain: str) -> IssuanceState:
        """Issue a certificate for a domain with no artifact on the instance.

        Raises:
            IssuanceError: If the agent failed or could not be reached
        """
        pass

    @abstractmethod
    async def collect_artifact(self, domain: str) -> CertificateArtifact:
        """Read the certificate files back from the instance."""
        pass


class ICertificatePublisherService(ABC):
    """Interface for upserting certificates into the trust store."""

    @abstractmethod
    async def publish(self, artifact: CertificateArtifact) -> PublishedCertificate:
        """Delete any entry with the derived name, then create it.

        Raises:
            PublicationError: If the create step failed
        """
        pass
