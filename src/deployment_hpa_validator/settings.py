"""Centralized webhook settings using pydantic-settings.

This module provides a single source of truth for all webhook configuration.
Values are resolved in priority order from constructor arguments, environment
variables and an optional YAML file (``CONFIG_FILE``, or
``configs/<ENVIRONMENT>.yaml`` when present). The resulting record is frozen:
configuration is immutable once the server is constructed.
"""

import os
import re
from pathlib import Path
from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from deployment_hpa_validator.constants import (
    DEFAULT_CERT_CHECK_INTERVAL_SECONDS,
    DEFAULT_PORT,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
    DEFAULT_SKIP_LABELS,
    DEFAULT_SKIP_NAMESPACES,
    DEFAULT_TLS_CERT_FILE,
    DEFAULT_TLS_KEY_FILE,
    ENV_DEVELOPMENT,
    ENV_PRODUCTION,
    VALID_ENVIRONMENTS,
)
from deployment_hpa_validator.errors import configuration_error

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(value: Any) -> Any:
    """Parse ``"10s"``, ``"5m"``, ``"250ms"`` or a bare number into seconds."""
    if isinstance(value, str):
        match = _DURATION_PATTERN.match(value)
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        return float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    return value


def default_config_file() -> Path:
    """Resolve the YAML configuration file for the current environment."""
    explicit = os.getenv("CONFIG_FILE")
    if explicit:
        return Path(explicit)
    environment = os.getenv("ENVIRONMENT", ENV_DEVELOPMENT).lower()
    return Path("configs") / f"{environment}.yaml"


class Settings(BaseSettings):
    """Webhook configuration loaded from the environment and YAML files.

    All settings have sensible defaults for an in-cluster deployment with
    cert-manager mounted certificates.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Server
    port: int = Field(
        default=DEFAULT_PORT,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("port", "WEBHOOK_PORT"),
        description="HTTPS port for the admission webhook",
    )
    request_timeout_seconds: float = Field(
        default=DEFAULT_REQUEST_TIMEOUT_SECONDS,
        gt=0,
        validation_alias=AliasChoices(
            "request_timeout_seconds", "timeout", "WEBHOOK_TIMEOUT"
        ),
        description="Maximum time spent validating a single admission request",
    )
    shutdown_timeout_seconds: float = Field(
        default=DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
        gt=0,
        description="Grace period for in-flight requests on shutdown",
    )

    # TLS
    tls_cert_file: str = Field(
        default=DEFAULT_TLS_CERT_FILE, min_length=1, description="TLS certificate path"
    )
    tls_key_file: str = Field(
        default=DEFAULT_TLS_KEY_FILE, min_length=1, description="TLS private key path"
    )
    tls_ca_file: str = Field(
        default="", description="CA bundle used to verify the serving certificate"
    )
    cert_check_interval_seconds: float = Field(
        default=DEFAULT_CERT_CHECK_INTERVAL_SECONDS,
        gt=0,
        validation_alias=AliasChoices(
            "cert_check_interval_seconds", "cert_check_interval", "CERT_CHECK_INTERVAL"
        ),
        description="Interval between certificate reload checks",
    )

    # Logging
    log_level: str = Field(default="info", description="debug, info, warn or error")
    log_format: str = Field(default="json", description="json or text")
    log_health_probes: bool = Field(
        default=False, description="Log health probe and metrics requests"
    )

    # Validation scope
    skip_namespaces: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_SKIP_NAMESPACES),
        description="Namespaces admitted without validation (appended to defaults)",
    )
    skip_labels: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_SKIP_LABELS),
        description="key=value labels that exempt an object (appended to defaults)",
    )

    # Monitoring
    metrics_enabled: bool = Field(default=True, description="Serve /metrics")
    health_enabled: bool = Field(
        default=True, description="Serve /health, /healthz, /readyz and /livez"
    )

    # Environment
    environment: str = Field(
        default=ENV_DEVELOPMENT, description="development, staging or production"
    )
    cluster_name: str = Field(default="", description="Cluster name for diagnostics")
    failure_policy: str = Field(
        default="Fail", description="Fail or Ignore, mirrored from the webhook config"
    )
    version: str = Field(default="", description="Build version reported by /health")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=default_config_file()),
        )

    @field_validator(
        "request_timeout_seconds",
        "shutdown_timeout_seconds",
        "cert_check_interval_seconds",
        mode="before",
    )
    @classmethod
    def _parse_durations(cls, value: Any) -> Any:
        return parse_duration(value)

    @field_validator("skip_namespaces", "skip_labels", mode="before")
    @classmethod
    def _append_to_defaults(cls, value: Any, info: ValidationInfo) -> list[str]:
        if isinstance(value, str):
            value = value.split(",")
        defaults = (
            DEFAULT_SKIP_NAMESPACES
            if info.field_name == "skip_namespaces"
            else DEFAULT_SKIP_LABELS
        )
        merged = list(defaults)
        for item in value or []:
            item = str(item).strip()
            if item and item not in merged:
                merged.append(item)
        return merged

    @field_validator("environment")
    @classmethod
    def _check_environment(cls, value: str) -> str:
        value = value.lower()
        if value not in VALID_ENVIRONMENTS:
            raise ValueError(
                f"invalid environment {value!r} (valid: {', '.join(VALID_ENVIRONMENTS)})"
            )
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value == "warning":
            value = "warn"
        if value not in ("debug", "info", "warn", "error"):
            raise ValueError(f"invalid log level {value!r}")
        return value

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "text"):
            raise ValueError(f"invalid log format {value!r}")
        return value

    @field_validator("failure_policy")
    @classmethod
    def _check_failure_policy(cls, value: str) -> str:
        if value not in ("Fail", "Ignore"):
            raise ValueError(f"invalid failure policy {value!r}")
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == ENV_PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == ENV_DEVELOPMENT

    def should_skip_namespace(self, namespace: str) -> bool:
        """Whether objects in this namespace are admitted without validation."""
        return namespace in self.skip_namespaces

    def should_skip_by_labels(self, labels: dict[str, str] | None) -> bool:
        """Whether any configured ``key=value`` skip label is present."""
        if not labels:
            return False
        for skip_label in self.skip_labels:
            key, sep, value = skip_label.partition("=")
            if sep and labels.get(key) == value:
                return True
        return False

    def summary(self) -> dict[str, Any]:
        """Configuration summary for startup logging."""
        return {
            "port": self.port,
            "tls_cert_file": self.tls_cert_file,
            "tls_key_file": self.tls_key_file,
            "tls_ca_file": self.tls_ca_file,
            "request_timeout_seconds": self.request_timeout_seconds,
            "cert_check_interval_seconds": self.cert_check_interval_seconds,
            "log_level": self.log_level,
            "log_format": self.log_format,
            "skip_namespaces": self.skip_namespaces,
            "skip_labels": self.skip_labels,
            "metrics_enabled": self.metrics_enabled,
            "health_enabled": self.health_enabled,
            "environment": self.environment,
            "cluster_name": self.cluster_name,
            "failure_policy": self.failure_policy,
        }


def load_settings(**overrides: Any) -> Settings:
    """
    Load and validate settings.

    Args:
        **overrides: Values taking precedence over environment and YAML

    Returns:
        Validated, immutable settings

    Raises:
        WebhookError: Configuration-kind error if validation fails
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        raise configuration_error("webhook settings", e) from e
