"""Configuration service implementation."""

import os
import yaml
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional

from core.interfaces.config_interface import IConfigService
from core.models.config import (
    AWSSettings,
    ChallengeType,
    IssuanceSettings,
    LogLevel,
    RunContext,
    TimingSettings,
    generate_run_tag,
)
from core.models.errors import ValidationError


ENV_MAPPINGS = {
    "CERTRUN_AWS_REGION": "aws.region",
    "CERTRUN_RUN_TAG": "run_tag",
    "CERTRUN_CONTACT_EMAIL": "issuance.contact_email",
    "CERTRUN_DOMAINS": "domains",
    "CERTRUN_ISSUANCE_ENABLED": "issuance.enabled",
    "CERTRUN_LOG_LEVEL": "log_level",
    "CERTRUN_RUN_MODE": "aws.run_mode",
}


class ConfigService(IConfigService):
    """Builds a RunContext from YAML, environment variables and CLI overrides."""

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.logger = logging.getLogger(__name__)
        self._environ = os.environ if environ is None else environ
        self._raw_config: Dict[str, Any] = {}

    def _handle_error(self, operation: str, error: Exception) -> None:
        """Centralized error handling and logging."""
        self.logger.error(f"Error {operation}: {str(error)}")
        raise error

    def load_run_context(
        self,
        config_path: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        validate: bool = True,
    ) -> RunContext:
        try:
            raw_config = self._read_yaml(config_path) if config_path else {}
            self._apply_environment_overrides(raw_config)
            for key, value in (overrides or {}).items():
                if value is not None:
                    self._set_nested_value(raw_config, key, value)

            self._raw_config = raw_config
            context = self._parse_run_context(raw_config)
        except (ValidationError, FileNotFoundError) as e:
            self._handle_error("loading run configuration", e)
        except (ValueError, TypeError, yaml.YAMLError) as e:
            self._handle_error(
                "loading run configuration", ValidationError(f"Invalid configuration: {str(e)}")
            )

        errors = context.validate() if validate else []
        if errors:
            raise ValidationError(f"Config validation failed: {'; '.join(errors)}")
        return context

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Raw setting by dotted key path (e.g. 'aws.region')."""
        value: Any = self._raw_config
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def _read_yaml(self, config_file_path: str) -> Dict[str, Any]:
        config_path = Path(config_file_path).expanduser()

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_file_path}")

        with open(config_path, "r", encoding="utf-8") as file:
            raw_config = yaml.safe_load(file)

        if raw_config is None:
            return {}
        if not isinstance(raw_config, dict):
            raise ValidationError("Configuration file must contain a mapping")
        return raw_config

    def _apply_environment_overrides(self, config: Dict[str, Any]) -> None:
        """Apply environment variable overrides to configuration."""
        for env_var, config_key in ENV_MAPPINGS.items():
            env_value = self._environ.get(env_var)
            if env_value is None:
                continue
            if config_key == "domains":
                value: Any = [d.strip() for d in env_value.split(",") if d.strip()]
            elif env_value.lower() in ["true", "false"]:
                value = env_value.lower() == "true"
            else:
                value = env_value
            self._set_nested_value(config, config_key, value)

    def _set_nested_value(self, config: Dict[str, Any], key_path: str, value: Any) -> None:
        """Set a nested value in configuration dictionary."""
        keys = key_path.split(".")
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _parse_run_context(self, raw_config: Dict[str, Any]) -> RunContext:
        """Parse raw configuration into a RunContext."""
        return RunContext(
            domains=self._parse_domains(raw_config.get("domains", [])),
            run_tag=raw_config.get("run_tag") or generate_run_tag(),
            name=raw_config.get("name", "certificate-run"),
            aws=self._parse_aws(raw_config.get("aws") or {}),
            issuance=self._parse_issuance(raw_config.get("issuance") or {}),
            timing=self._parse_timing(raw_config.get("timing") or {}),
            trust_store_path=(raw_config.get("trust_store") or {}).get("path", "/"),
            journal_dir=raw_config.get("journal_dir", "runs"),
            report_dir=raw_config.get("report_dir", "reports"),
            log_level=self._parse_log_level(raw_config.get("log_level", "INFO")),
        )

    def _parse_domains(self, domains: Any) -> tuple:
        if isinstance(domains, str):
            domains = [d for d in domains.split(",")]
        if not isinstance(domains, list):
            raise ValidationError("'domains' must be a list")
        return tuple(str(d).strip().lower().rstrip(".") for d in domains if str(d).strip())

    def _parse_aws(self, aws_data: Dict[str, Any]) -> AWSSettings:
        defaults = AWSSettings()
        return AWSSettings(
            region=aws_data.get("region", defaults.region),
            image_id=aws_data.get("image_id"),
            image_name=aws_data.get("image_name", defaults.image_name),
            image_owner=str(aws_data.get("image_owner", defaults.image_owner)),
            instance_type=aws_data.get("instance_type", defaults.instance_type),
            public_key_file=aws_data.get("public_key_file", defaults.public_key_file),
            vpc_cidr=aws_data.get("vpc_cidr", defaults.vpc_cidr),
            subnet_cidr=aws_data.get("subnet_cidr"),
            availability_zone=aws_data.get("availability_zone"),
            role_arn=aws_data.get("role_arn"),
            run_mode=aws_data.get("run_mode", defaults.run_mode),
        )

    def _parse_issuance(self, issuance_data: Dict[str, Any]) -> IssuanceSettings:
        defaults = IssuanceSettings()
        challenge = issuance_data.get("challenge", defaults.challenge.value)
        try:
            challenge_type = ChallengeType(challenge)
        except ValueError:
            raise ValidationError(
                f"Unsupported challenge {challenge!r}; use one of "
                f"{', '.join(c.value for c in ChallengeType)}"
            )
        return IssuanceSettings(
            enabled=bool(issuance_data.get("enabled", defaults.enabled)),
            contact_email=issuance_data.get("contact_email") or "",
            challenge=challenge_type,
            certificate_root=issuance_data.get("certificate_root", defaults.certificate_root).rstrip("/"),
            staging=bool(issuance_data.get("staging", defaults.staging)),
        )

    def _parse_timing(self, timing_data: Dict[str, Any]) -> TimingSettings:
        known = TimingSettings.__dataclass_fields__.keys()
        unknown = [k for k in timing_data if k not in known]
        if unknown:
            self.logger.warning(f"Ignoring unknown timing settings: {', '.join(unknown)}")
        return TimingSettings(**{k: int(v) for k, v in timing_data.items() if k in known})

    def _parse_log_level(self, log_level_str: str) -> LogLevel:
        """Parse log level string into LogLevel enum."""
        try:
            return LogLevel[str(log_level_str).upper()]
        except KeyError:
            return LogLevel.INFO

    def describe(self, context: RunContext) -> List[str]:
        """Human-readable lines summarising a context (for --dry-run)."""
        return [
            f"run tag:        {context.run_tag}",
            f"region:         {context.aws.region} ({context.aws.zone})",
            f"domains:        {', '.join(context.domains)}",
            f"issuance:       {'enabled' if context.issuance.enabled else 'disabled'}"
            f" ({context.issuance.challenge.value}, contact {context.issuance.contact_email or '-'})",
            f"instance:       {context.aws.instance_type} / "
            f"{context.aws.image_id or context.aws.image_name}",
            f"ingress ports:  {', '.join(str(p) for p in context.ingress_ports)}",
            f"trust store:    {context.trust_store_path}",
        ]
