"""Error taxonomy for certificate runs."""

from typing import Optional


class CertificateRunError(Exception):
    """Base class for every failure a run can report."""

    def __init__(self, message: str, domain: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.domain = domain

    @property
    def error_type(self) -> str:
        return type(self).__name__


class ValidationError(CertificateRunError):
    """Configuration is unusable; raised before any resource exists."""


class ProvisioningError(CertificateRunError):
    """Network, identity or compute provisioning failed, or the instance
    never became reachable. Fatal to the run; teardown still runs."""


class ChallengeError(CertificateRunError):
    """Publishing or retracting a challenge DNS record failed."""


class IssuanceError(CertificateRunError):
    """The issuance agent failed for a domain."""


class PublicationError(CertificateRunError):
    """Uploading a certificate to the trust store failed."""


class TeardownError(CertificateRunError):
    """A teardown step failed; later steps still run."""
