"""
OMNILAUNCH Configuration System

Curve economics, messenger budgets, transport fees and log output, loaded
from YAML files and environment variables and checked against a bundled
JSON schema.

Configuration Sources (in order of precedence):
    1. Environment variables (OMNILAUNCH_*)
    2. Runtime overrides
    3. User config file (~/.omnilaunch/config.yaml)
    4. Project config file (./omnilaunch.yaml)
    5. Default values

The curve and messenger sections are shared configuration: both chains'
administrators must load the same values. A mismatch is a deployment error,
not something the protocol detects at runtime.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field, fields, is_dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

T = TypeVar("T")

ETHER = 10**18

SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "config.schema.json"

DEFAULT_PATHS = (
    Path("omnilaunch.yaml"),
    Path("config") / "omnilaunch.yaml",
    Path.home() / ".omnilaunch" / "config.yaml",
)


class ConfigError(Exception):
    pass


class ValidationError(ConfigError):
    pass


_TRUE = ("true", "1", "yes", "on")


@dataclass
class ConfigValue(Generic[T]):
    """
    One setting: a default, an optional environment override, a validator
    and change callbacks.

    The environment variable is read on every ``get`` so tests and operators
    can change it without reloading.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[Optional[T], T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        raw = os.environ.get(self.env_var) if self.env_var else None
        if raw is not None:
            return self._parse_env(raw)
        return self.default if self._value is None else self._value

    def set(self, value: T) -> None:
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value}")
        previous, self._value = self._value, value
        for callback in self._callbacks:
            callback(previous, value)

    def is_valid(self) -> bool:
        return self.validator is None or self.validator(self.get())

    def _parse_env(self, raw: str) -> T:
        kind = type(self.default)
        if kind is bool:
            return raw.strip().lower() in _TRUE  # type: ignore
        try:
            return kind(raw)  # type: ignore
        except ValueError:
            raise ConfigError(f"{self.env_var}={raw!r} is not a valid {kind.__name__}")

    def on_change(self, callback: Callable[[Optional[T], T], None]) -> None:
        self._callbacks.append(callback)


@dataclass
class CurveConfig:
    """Bonding curve and sale economics. All amounts in wei."""
    floor_price: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=ETHER // 10_000,
        env_var="OMNILAUNCH_CURVE_FLOOR_PRICE",
        description="Price of one whole token at sold=0",
        validator=lambda x: x > 0,
    ))
    step_price: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=ETHER // 10_000,
        env_var="OMNILAUNCH_CURVE_STEP_PRICE",
        description="Price increase per completed increment",
        validator=lambda x: x >= 0,
    ))
    increment: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10_000 * ETHER,
        env_var="OMNILAUNCH_CURVE_INCREMENT",
        description="Tokens sold per price step",
        validator=lambda x: x > 0,
    ))
    token_limit: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=500_000 * ETHER,
        env_var="OMNILAUNCH_CURVE_TOKEN_LIMIT",
        description="Maximum tokens distributed through the curve",
        validator=lambda x: x > 0,
    ))
    total_supply: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1_000_000 * ETHER,
        env_var="OMNILAUNCH_CURVE_TOTAL_SUPPLY",
        description="Tokens minted per launch",
        validator=lambda x: x > 0,
    ))
    target: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3 * ETHER,
        env_var="OMNILAUNCH_CURVE_TARGET",
        description="Native currency raised that graduates a sale",
        validator=lambda x: x > 0,
    ))
    creation_fee: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=ETHER // 10,
        env_var="OMNILAUNCH_CREATION_FEE",
        description="Fee charged by create(); also funds the launch broadcast",
        validator=lambda x: x >= 0,
    ))


@dataclass
class MessengerConfig:
    """Cross-chain messenger budgets, shared by both sides of a connection."""
    create_token_gas: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=200_000,
        env_var="OMNILAUNCH_GAS_CREATE_TOKEN",
        description="Enforced receive gas for CREATE_TOKEN",
        validator=lambda x: x > 0,
    ))
    bridge_tokens_gas: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=200_000,
        env_var="OMNILAUNCH_GAS_BRIDGE_TOKENS",
        description="Enforced receive gas for BRIDGE_TOKENS",
        validator=lambda x: x > 0,
    ))
    liquidity_created_gas: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=100_000,
        env_var="OMNILAUNCH_GAS_LIQUIDITY_CREATED",
        description="Enforced receive gas for LIQUIDITY_CREATED",
        validator=lambda x: x > 0,
    ))
    max_native_value: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="OMNILAUNCH_MAX_NATIVE_VALUE",
        description="Native value ceiling delivered with any message",
        validator=lambda x: x >= 0,
    ))
    max_message_size: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10_000,
        env_var="OMNILAUNCH_MAX_MESSAGE_SIZE",
        description="Largest accepted wire message in bytes",
        validator=lambda x: 0 < x <= 1_000_000,
    ))
    calldata_gas_per_byte: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=16,
        env_var="OMNILAUNCH_CALLDATA_GAS",
        description="Metered gas per inbound payload byte",
        validator=lambda x: x >= 0,
    ))


@dataclass
class TransportConfig:
    """Fee model of the in-memory transport."""
    base_fee: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=ETHER // 10_000,
        env_var="OMNILAUNCH_TRANSPORT_BASE_FEE",
        description="Flat per-message fee in wei",
        validator=lambda x: x >= 0,
    ))
    byte_fee: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10**9,
        env_var="OMNILAUNCH_TRANSPORT_BYTE_FEE",
        description="Fee per payload byte in wei",
        validator=lambda x: x >= 0,
    ))
    gas_price: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10**9,
        env_var="OMNILAUNCH_TRANSPORT_GAS_PRICE",
        description="Destination gas price in wei",
        validator=lambda x: x >= 0,
    ))


@dataclass
class ObservabilityConfig:
    """Log output of every component."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="OMNILAUNCH_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="OMNILAUNCH_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))




def _settings(section: Any, prefix: str = "") -> Iterator[Tuple[str, ConfigValue]]:
    """Every ConfigValue below ``section`` with its dotted path, in field order."""
    for f in fields(section):
        path = f"{prefix}{f.name}"
        value = getattr(section, f.name)
        if isinstance(value, ConfigValue):
            yield path, value
        elif is_dataclass(value):
            yield from _settings(value, path + ".")


@dataclass
class LaunchpadConfig:
    """Root configuration: one section per concern."""
    curve: CurveConfig = field(default_factory=CurveConfig)
    messenger: MessengerConfig = field(default_factory=MessengerConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def setting(self, path: str) -> ConfigValue:
        """The ConfigValue at a dotted path such as ``curve.target``."""
        for candidate, value in _settings(self):
            if candidate == path:
                return value
        raise ConfigError(f"Invalid config path: {path}")

    def to_dict(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {}
        for path, value in _settings(self):
            section, _, name = path.rpartition(".")
            document.setdefault(section, {})[name] = value.get()
        return document

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def apply(self, document: Dict[str, Any]) -> None:
        """
        Check a config document against the schema, then apply it.

        Nothing is applied when any part of the document is invalid.
        """
        errors = validate_document(document)
        if errors:
            raise ValidationError("; ".join(errors))
        for section, values in document.items():
            for name, value in values.items():
                self.setting(f"{section}.{name}").set(value)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LaunchpadConfig":
        """A fresh config with a YAML file applied over the defaults."""
        config = cls()
        config.apply(load_document(path))
        return config


# =============================================================================
# DOCUMENT LOADING AND SCHEMA VALIDATION
# =============================================================================

@lru_cache(maxsize=1)
def _schema_validator() -> Draft202012Validator:
    with open(SCHEMA_PATH) as f:
        return Draft202012Validator(json.load(f))


def validate_document(document: Any) -> List[str]:
    """Schema errors of a config document as ``<json path>: <message>``; empty when valid."""
    return [f"{e.json_path}: {e.message}" for e in _schema_validator().iter_errors(document)]


def load_document(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML config document. An empty file is an empty document."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")
    with open(path) as f:
        document = yaml.safe_load(f)
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValidationError(f"Configuration root must be a mapping: {path}")
    return document


# =============================================================================
# MANAGER
# =============================================================================

class ConfigManager:
    """Process-wide owner of the active LaunchpadConfig."""

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._config = LaunchpadConfig()
                instance._loaded = []
                instance._watchers = []
                cls._instance = instance
            return cls._instance

    @property
    def config(self) -> LaunchpadConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        path = Path(path)
        self._config.apply(load_document(path))
        if path not in self._loaded:
            self._loaded.append(path)

    def load_defaults(self) -> None:
        """Apply whichever default config files exist; later paths override earlier ones."""
        for path in DEFAULT_PATHS:
            if path.exists():
                self.load_from_file(path)

    def get(self, path: str) -> Any:
        """Example: ``get("messenger.max_message_size")``."""
        return self._config.setting(path).get()

    def set(self, path: str, value: Any) -> None:
        """Runtime override. Example: ``set("curve.target", 5 * ETHER)``."""
        self._config.setting(path).set(value)

    def watch(self, callback: Callable[[LaunchpadConfig], None]) -> None:
        """Called with the config after every reload."""
        self._watchers.append(callback)

    def reload(self) -> None:
        for path in self._loaded:
            if path.exists():
                self._config.apply(load_document(path))
        for watcher in self._watchers:
            watcher(self._config)

    def reset(self) -> None:
        """Back to defaults: loaded files and runtime overrides are dropped."""
        self._config = LaunchpadConfig()
        self._loaded = []

    def validate(self) -> List[str]:
        """Effective values, environment included, that fail their validator."""
        errors: List[str] = []
        for path, value in _settings(self._config):
            try:
                if not value.is_valid():
                    errors.append(f"{path}: validation failed for value {value.get()}")
            except ConfigError as e:
                errors.append(f"{path}: {e}")
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Type, default, description and env var of every setting, by section."""
        properties: Dict[str, Any] = {}
        for path, value in _settings(self._config):
            section, _, name = path.rpartition(".")
            entry = {
                "type": type(value.default).__name__,
                "default": str(value.default),
                "description": value.description,
            }
            if value.env_var:
                entry["env_var"] = value.env_var
            properties.setdefault(section, {})[name] = entry
        return {"properties": properties}


def get_config() -> LaunchpadConfig:
    """The active configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
