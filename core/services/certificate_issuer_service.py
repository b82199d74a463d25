"""Certificate issuer: drives certbot on the ephemeral instance."""

import logging
import shlex
from typing import List

from core.interfaces.certificate_interface import ICertificateIssuerService
from core.models.certificate import CertificateArtifact
from core.models.config import IssuanceSettings
from core.models.errors import IssuanceError, PublicationError
from core.models.workflow import IssuanceState
from infrastructure.remote.ssm_shell import SSMRemoteShell


INSTALL_COMMAND = (
    "export DEBIAN_FRONTEND=noninteractive && "
    "apt-get update -q && apt-get install -y -q certbot"
)


class CertificateIssuerService(ICertificateIssuerService):
    """Runs the issuance agent once per domain on the instance."""

    def __init__(self, shell: SSMRemoteShell, settings: IssuanceSettings, command_timeout: int = 900):
        self.shell = shell
        self.settings = settings
        self.command_timeout = command_timeout
        self.logger = logging.getLogger(__name__)
        self.invocations: List[str] = []

    def artifact_dir(self, domain: str) -> str:
        return f"{self.settings.certificate_root}/{domain}"

    def build_command(self, domain: str) -> str:
        args = [
            "certbot", "certonly",
            "--standalone",
            "--preferred-challenges", self.settings.challenge.certbot_name,
            "--non-interactive",
            "--agree-tos",
            "-m", self.settings.contact_email,
            "-d", domain,
        ]
        if self.settings.staging:
            args.append("--staging")
        return " ".join(shlex.quote(a) for a in args)

    async def prepare_agent(self) -> None:
        try:
            present = await self.shell.run("command -v certbot")
            if present.ok:
                self.logger.info(f"certbot present at {present.stdout.strip()}")
                return

            self.logger.info("Installing certbot")
            await self.shell.run(INSTALL_COMMAND, timeout=self.command_timeout, check=True)
        except Exception as e:
            raise IssuanceError(f"Could not install certbot: {str(e)}") from e

    async def artifact_exists(self, domain: str) -> bool:
        try:
            return await self.shell.path_exists(f"{self.artifact_dir(domain)}/cert.pem")
        except Exception as e:
            raise IssuanceError(f"Could not check for a certificate for {domain}: {str(e)}", domain=domain) from e

    async def issue(self, domain: str) -> IssuanceState:
        """Run certbot for a domain that has no certificate yet.

        Callers check ``artifact_exists`` first; a domain that already has a
        certificate must not reach this method.
        """
        if not self.settings.enabled:
            return IssuanceState.DISABLED

        self.logger.info(f"Requesting certificate for {domain} ({self.settings.challenge.value})")
        self.invocations.append(domain)
        try:
            result = await self.shell.run(
                self.build_command(domain), working_directory="/tmp", timeout=self.command_timeout
            )
        except Exception as e:
            raise IssuanceError(f"certbot could not be run for {domain}: {str(e)}", domain=domain) from e
        if not result.ok:
            detail = (result.stderr or result.stdout).strip()[-500:]
            raise IssuanceError(
                f"certbot failed for {domain} ({result.status}, exit {result.exit_code}): {detail}",
                domain=domain,
            )

        if not await self.artifact_exists(domain):
            raise IssuanceError(f"certbot reported success but {domain} has no certificate", domain=domain)
        return IssuanceState.ISSUED

    async def collect_artifact(self, domain: str) -> CertificateArtifact:
        path = self.artifact_dir(domain)
        try:
            body = await self.shell.read_file(f"{path}/cert.pem")
            key = await self.shell.read_file(f"{path}/privkey.pem")
            chain = await self.shell.read_file(f"{path}/chain.pem")
        except Exception as e:
            raise PublicationError(f"Could not read certificate files for {domain}: {str(e)}", domain=domain) from e

        if "BEGIN CERTIFICATE" not in body or "PRIVATE KEY" not in key:
            raise PublicationError(f"Certificate files for {domain} are incomplete", domain=domain)

        return CertificateArtifact(
            domain=domain, certificate_body=body, private_key=key, chain=chain, path=path
        )
