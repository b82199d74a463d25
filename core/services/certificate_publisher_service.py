"""Certificate publisher: upserts bundles into the IAM server certificate store."""

import logging

from core.interfaces.certificate_interface import ICertificatePublisherService
from core.models.certificate import CertificateArtifact, PublishedCertificate
from core.models.errors import PublicationError
from infrastructure.aws.errors import is_not_found
from infrastructure.aws.iam_client import IAMClient


class CertificatePublisherService(ICertificatePublisherService):
    """Delete-then-create, since the store has no update verb."""

    def __init__(self, iam_client: IAMClient, base_path: str = "/"):
        self.iam_client = iam_client
        self.base_path = base_path
        self.logger = logging.getLogger(__name__)

    async def publish(self, artifact: CertificateArtifact) -> PublishedCertificate:
        certificate = PublishedCertificate.from_artifact(artifact, self.base_path)

        try:
            await self.iam_client.delete_server_certificate(certificate.name)
            self.logger.info(f"Removed previous certificate {certificate.name}")
        except Exception as e:
            if is_not_found(e):
                self.logger.debug(f"No previous certificate named {certificate.name}")
            else:
                self.logger.warning(f"Ignoring failure removing {certificate.name}: {str(e)}")

        try:
            metadata = await self.iam_client.upload_server_certificate(
                name=certificate.name,
                certificate_body=certificate.certificate_body,
                private_key=certificate.private_key,
                certificate_chain=certificate.chain,
                path=certificate.path,
            )
        except Exception as e:
            raise PublicationError(
                f"Could not upload certificate {certificate.name}: {str(e)}", domain=artifact.domain
            ) from e

        certificate.arn = metadata.get("Arn")
        certificate.certificate_id = metadata.get("ServerCertificateId")
        self.logger.info(f"Published {certificate.name} at {certificate.path} ({certificate.arn})")
        return certificate
