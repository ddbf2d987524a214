"""
Harness configuration

HarnessConfig is an explicit, immutable value handed to the harness and
the store factory. Where the values come from is a separate concern: a
ConfigProvider answers ``get(name)`` for a HarnessConfig field name, and
load_config() turns whatever the provider knows into a validated config.

Providers:
- EnvConfigProvider: process environment (REPRO_*, S3_*, and the Azure
  connection string under its usual names)
- YamlSecretsProvider: a local developer secrets file
- MappingConfigProvider: an in-memory dict (tests, CLI overrides)
- ChainedConfigProvider: several providers, later ones win
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional

import yaml

from limbo_repro.conditions import ConditionSyntaxError, tag_less_than
from limbo_repro.errors import ConfigurationError

BACKENDS = ("memory", "azure", "s3")
MEMORY_UPLOAD_MODES = ("split", "atomic")

DEFAULT_SECRETS_FILE = Path("~/.config/limbo-repro/secrets.yaml")


@dataclass(frozen=True)
class HarnessConfig:
    """Everything the harness and the store factory need"""

    backend: str = "memory"
    connection_string: Optional[str] = None
    container: str = "repro"
    source_key: str = "aabbccdd-1122-3344-5566-778899aabbcc.txt"
    source_content: str = "Original content"
    destination_prefix_length: int = 2
    tag_name: str = "LocalId"
    racing_local_id: str = "123"
    overwrite_local_id: str = "456"
    # S3-compatible backends
    s3_endpoint: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_region: str = "us-east-1"
    verify_ssl: bool = False
    # In-memory backend: "split" reproduces the streamed upload race,
    # "atomic" behaves like a correct store
    memory_upload_mode: str = "split"

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"Unknown backend {self.backend!r}, expected one of {', '.join(BACKENDS)}"
            )
        if self.backend == "azure" and not self.connection_string:
            raise ConfigurationError(
                "The azure backend needs a connection string "
                "(AzureStorageConnectionString)"
            )
        if self.memory_upload_mode not in MEMORY_UPLOAD_MODES:
            raise ConfigurationError(
                f"Unknown memory upload mode {self.memory_upload_mode!r}"
            )
        if not 0 < self.destination_prefix_length < len(self.source_key):
            raise ConfigurationError(
                "destination_prefix_length must be shorter than the source key"
            )
        if not self.container:
            raise ConfigurationError("container must not be empty")
        for local_id in (self.racing_local_id, self.overwrite_local_id):
            try:
                tag_less_than(self.tag_name, local_id)
            except ConditionSyntaxError as e:
                raise ConfigurationError(f"Cannot build a tag condition: {e}") from e

    @property
    def destination_key(self) -> str:
        """First characters of the source key as a folder, then the key itself"""
        return f"{self.source_key[:self.destination_prefix_length]}/{self.source_key}"

    def replace(self, **changes) -> "HarnessConfig":
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "HarnessConfig":
        """Build a config from loosely typed values (strings from env or YAML)"""
        known = {f.name: f for f in dataclasses.fields(cls)}
        unknown = sorted(set(values) - set(known))
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")

        kwargs = {}
        for name, value in values.items():
            if value is None:
                continue
            kwargs[name] = _convert(name, known[name].default, value)
        return cls(**kwargs)


def _convert(name: str, default: Any, value: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off", ""):
            return False
        raise ConfigurationError(f"{name}: expected a boolean, got {value!r}")
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"{name}: expected an integer, got {value!r}") from exc
    return str(value)


# --------------------------------------------------------------------------------------
# Providers
# --------------------------------------------------------------------------------------


class ConfigProvider:
    """Answers configuration lookups by HarnessConfig field name"""

    def get(self, name: str) -> Optional[str]:
        raise NotImplementedError

    def collect(self) -> Dict[str, Any]:
        values = {}
        for field in dataclasses.fields(HarnessConfig):
            value = self.get(field.name)
            if value is not None:
                values[field.name] = value
        return values


class MappingConfigProvider(ConfigProvider):
    def __init__(self, values: Mapping[str, Any]):
        self.values = dict(values)

    def get(self, name):
        return self.values.get(name)


class EnvConfigProvider(ConfigProvider):
    """
    Reads REPRO_<FIELD> for every field, plus the conventional names used
    by the Azure and S3 tooling.
    """

    ALIASES = {
        "connection_string": (
            "AzureStorageConnectionString",
            "AZURE_STORAGE_CONNECTION_STRING",
        ),
        "s3_endpoint": ("S3_ENDPOINT",),
        "s3_access_key": ("S3_ACCESS_KEY",),
        "s3_secret_key": ("S3_SECRET_KEY",),
        "s3_region": ("S3_REGION",),
        "verify_ssl": ("S3_VERIFY_SSL",),
    }

    def __init__(self, environ: Optional[Mapping[str, str]] = None, prefix: str = "REPRO_"):
        self.environ = os.environ if environ is None else environ
        self.prefix = prefix

    def get(self, name):
        for var in (self.prefix + name.upper(),) + self.ALIASES.get(name, ()):
            value = self.environ.get(var)
            if value:
                return value
        return None


class YamlSecretsProvider(ConfigProvider):
    """
    Local developer secrets kept out of the repository, e.g.

        backend: azure
        AzureStorageConnectionString: "DefaultEndpointsProtocol=https;..."

    A missing file is treated as empty.
    """

    ALIASES = {"AzureStorageConnectionString": "connection_string"}

    def __init__(self, path):
        self.path = Path(path).expanduser()
        self._values = None

    def _load(self) -> Dict[str, Any]:
        if self._values is None:
            if not self.path.exists():
                self._values = {}
            else:
                try:
                    with open(self.path) as f:
                        data = yaml.safe_load(f) or {}
                except yaml.YAMLError as exc:
                    raise ConfigurationError(f"Cannot parse {self.path}: {exc}") from exc
                if not isinstance(data, dict):
                    raise ConfigurationError(f"{self.path} must hold a mapping")
                self._values = {self.ALIASES.get(k, k): v for k, v in data.items()}
        return self._values

    def get(self, name):
        return self._load().get(name)


class ChainedConfigProvider(ConfigProvider):
    """Asks every provider; the last one that has a value wins"""

    def __init__(self, providers: Iterable[ConfigProvider]):
        self.providers = list(providers)

    def get(self, name):
        found = None
        for provider in self.providers:
            value = provider.get(name)
            if value is not None:
                found = value
        return found


def default_provider(secrets_file=None) -> ConfigProvider:
    """Environment first, then the developer secrets file"""
    path = secrets_file or os.environ.get("REPRO_SECRETS_FILE") or DEFAULT_SECRETS_FILE
    return ChainedConfigProvider([EnvConfigProvider(), YamlSecretsProvider(path)])


def load_config(provider: Optional[ConfigProvider] = None, **overrides) -> HarnessConfig:
    """Resolve a HarnessConfig; keyword overrides beat every provider"""
    provider = provider or default_provider()
    values = provider.collect()
    values.update({k: v for k, v in overrides.items() if v is not None})
    return HarnessConfig.from_mapping(values)
