"""
Configuration module for provisionctl.

Runtime settings load from environment variables. Infrastructure settings
(the values substituted into the LMS blueprint) load from environment
variables named after each field in upper case, or from a YAML/JSON file
keyed by field name.
"""

import json
import os
from dataclasses import MISSING, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml


@dataclass(frozen=True)
class InfraConfig:
    """
    Flat, immutable set of values the LMS blueprint substitutes into specs.

    Every value is passed through literally; nothing is derived from other
    fields.
    """

    project_id: str
    region: str
    zone: str
    vpc_name: str
    subnet_name: str
    subnet_range: str
    node_sa_email: str
    gke_pod_range: str
    gke_svc_range: str
    gke_master_ipv4_range: str
    cloud_build_sa_email: str
    master_authorized_networks: str
    moodle_mysql_managed_peering_range: str
    moodle_filestore_managed_peering_range: str
    nat_config: str
    nat_router: str
    gke_name: str
    mysql_instance_name: str
    mysql_root_password: str = field(repr=False)  # Never log password
    mysql_db: str
    redis_name: str
    filestore_name: str

    mysql_moodle_db_charset: str = "utf8mb4"
    mysql_moodle_db_collation: str = "utf8mb4_unicode_ci"
    gke_min_nodes: str = "1"
    gke_max_nodes: str = "2"
    gke_machine_type: str = "e2-standard-2"
    redis_size: str = "1"
    filestore_size: str = "2.5TB"
    artifact_repo_name: str = "moodle-filestore"
    ingress_address_name: str = "moodle-ingress-ip"

    @classmethod
    def required_fields(cls) -> List[str]:
        """Names of the fields that have no default."""
        return [
            f.name
            for f in fields(cls)
            if f.default is MISSING and f.default_factory is MISSING
        ]

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "InfraConfig":
        """
        Build from a mapping keyed by field name.

        Raises:
            ValueError: If required values are missing or keys are unknown.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

        missing = [
            name
            for name in cls.required_fields()
            if values.get(name) in (None, "")
        ]
        if missing:
            raise ValueError(
                f"Missing required configuration values: {', '.join(missing)}"
            )

        return cls(**{k: str(v) for k, v in values.items() if v is not None})

    @classmethod
    def from_env(cls) -> "InfraConfig":
        """Load from environment variables (PROJECT_ID, REGION, ...)."""
        values = {}
        for f in fields(cls):
            value = os.getenv(f.name.upper())
            if value is not None:
                values[f.name] = value

        missing = [
            name.upper() for name in cls.required_fields() if not values.get(name)
        ]
        if missing:
            raise ValueError(
                f"Environment variables must be set: {', '.join(missing)}"
            )
        return cls.from_mapping(values)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InfraConfig":
        """Load from a YAML (.yaml/.yml) or JSON file keyed by field name."""
        path = Path(path)
        with open(path, "r") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping of configuration keys")
        return cls.from_mapping(data)


@dataclass
class ReconcilerConfig:
    """Reconciler runtime configuration."""

    provider: str = "gcloud"
    match_mode: str = "exact"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            provider=os.getenv("PROVIDER", "gcloud"),
            match_mode=os.getenv("MATCH_MODE", "exact").lower(),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@dataclass
class ProviderConfig:
    """Provider configuration overrides."""

    # Provider-specific configurations keyed by provider name
    provider_configs: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        provider_configs = {}
        raw = os.getenv("PROVIDER_CONFIGS")
        if raw:
            try:
                provider_configs = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ValueError(f"PROVIDER_CONFIGS is not valid JSON: {e}") from e
            if not isinstance(provider_configs, dict):
                raise ValueError("PROVIDER_CONFIGS must be a JSON object")

        return cls(provider_configs=provider_configs)

    def get_provider_config(self, provider_name: str) -> Dict[str, Any]:
        """Get configuration overrides for a specific provider."""
        return self.provider_configs.get(provider_name, {})


@dataclass
class Config:
    """Main configuration object."""

    reconciler: ReconcilerConfig
    providers: ProviderConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            reconciler=ReconcilerConfig.from_env(),
            providers=ProviderConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            reconciler=ReconcilerConfig(),
            providers=ProviderConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
