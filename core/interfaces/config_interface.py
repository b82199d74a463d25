"""Configuration service interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from core.models.config import RunContext


class IConfigService(ABC):
    """Interface for configuration management."""

    @abstractmethod
    def load_run_context(
        self,
        config_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        validate: bool = True,
    ) -> RunContext:
        """Load the run configuration from file, environment and overrides.

        Args:
            config_path: Path to the YAML configuration file
            overrides: Dotted-key overrides applied last (e.g. ``{"aws.region": "eu-west-1"}``)
            validate: Reject contexts that cannot start a run (teardown-only skips this)

        Returns:
            RunContext

        Raises:
            ValidationError: If the configuration is unusable
        """
        pass
