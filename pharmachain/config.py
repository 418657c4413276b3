"""
PharmaChain Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (PHARMACHAIN_*)
    2. Runtime overrides
    3. User config file (~/.pharmachain/config.yaml)
    4. Project config file (./pharmachain.yaml)
    5. Default values
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml
from jsonschema import Draft202012Validator

from pharmachain.core import load_json, load_yaml, schema_path
from pharmachain.observability import Layer, LogLevel, get_logger

T = TypeVar("T")

logger = get_logger("config", Layer.CONFIG)

CONFIG_SCHEMA = "config.schema.json"


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding,
    validation, and change callbacks.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """Get the current value. A malformed environment value is ignored."""
        if self.env_var and self.env_var in os.environ:
            raw = os.environ[self.env_var]
            try:
                return self._coerce(raw)
            except ValueError:
                logger.warning(
                    "Ignoring malformed environment value",
                    env_var=self.env_var,
                    value=raw,
                )

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

        old_value = self._value
        self._value = value

        for callback in self._callbacks:
            callback(old_value, value)

    def env_error(self) -> Optional[str]:
        """Why the bound environment value cannot be used, or None."""
        if self.env_var and self.env_var in os.environ:
            try:
                self._coerce(os.environ[self.env_var])
            except ValueError as e:
                return f"{self.env_var}: {e}"
        return None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        else:
            return value  # type: ignore

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


@dataclass
class PolicyConfig:
    """Lifecycle policies enforced by the supply-chain controller."""
    enforce_forward_progression: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="PHARMACHAIN_ENFORCE_FORWARD",
        description="Reject scans that move status backwards or sideways",
    ))
    require_manufacturer_role: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="PHARMACHAIN_REQUIRE_MANUFACTURER",
        description="Only MANUFACTURER holders may register products",
    ))
    lock_after_delivery: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="PHARMACHAIN_LOCK_AFTER_DELIVERY",
        description="Reject further scans once a product is DELIVERED",
    ))


@dataclass
class ValidationConfig:
    """Input limits applied by the product registry."""
    max_text_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=256,
        env_var="PHARMACHAIN_MAX_TEXT_LENGTH",
        description="Maximum length of product name and batch number",
        validator=lambda x: 0 < x <= 4096,
    ))
    max_certificate_ref_length: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=512,
        env_var="PHARMACHAIN_MAX_CERT_REF_LENGTH",
        description="Maximum length of the certificate reference",
        validator=lambda x: 0 < x <= 4096,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="PHARMACHAIN_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in {level.value for level in LogLevel},
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="PHARMACHAIN_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class PharmaChainConfig:
    """Root configuration aggregating all sections."""
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.dump(self.to_dict(), default_flow_style=False)

    def apply(self, data: Dict[str, Any]) -> None:
        """Apply a nested dict of values (as loaded from YAML)."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], path: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {path}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{path}{key}.")
                else:
                    raise ConfigError(f"Invalid config value at {path}{key}")

        apply_to_config(self, data, "")


def config_file_errors(data: Any) -> List[str]:
    """Validate a loaded config document against the bundled schema."""
    validator = Draft202012Validator(load_json(schema_path(CONFIG_SCHEMA)))
    return [f"{e.json_path}: {e.message}" for e in validator.iter_errors(data)]


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = PharmaChainConfig()
        self._config_paths: List[Path] = []
        self._watchers: List[Callable[[PharmaChainConfig], None]] = []
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next access starts from defaults."""
        with cls._lock:
            cls._instance = None

    @property
    def config(self) -> PharmaChainConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        data = load_yaml(path)

        if not data:
            return

        errors = config_file_errors(data)
        if errors:
            raise ConfigValidationError(f"invalid config file: {path}: {errors[0]}")

        self._config.apply(data)
        if path not in self._config_paths:
            self._config_paths.append(path)
        logger.info("Loaded configuration", path=str(path))

    def load_defaults(self) -> None:
        """Load default configuration files if they exist."""
        default_paths = [
            Path("pharmachain.yaml"),
            Path("config/pharmachain.yaml"),
            Path.home() / ".pharmachain" / "config.yaml",
        ]

        for path in default_paths:
            if path.exists():
                try:
                    self.load_from_file(path)
                except ConfigError as exc:
                    logger.warning("Ignoring invalid default config", path=str(path), error=str(exc))

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: manager.set("policy.enforce_forward_progression", True)
        """
        parts = path.split(".")
        obj: Any = self._config

        for part in parts[:-1]:
            obj = getattr(obj, part, None)
            if obj is None:
                raise ConfigError(f"Invalid config path: {path}")

        attr = getattr(obj, parts[-1], None)
        if isinstance(attr, ConfigValue):
            attr.set(value)
        else:
            raise ConfigError(f"Invalid config path: {path}")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: manager.get("observability.log_level")
        """
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)

        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def watch(self, callback: Callable[[PharmaChainConfig], None]) -> None:
        """Register a callback for configuration reloads."""
        self._watchers.append(callback)

    def reload(self) -> None:
        """Reload configuration from all loaded files."""
        for path in self._config_paths:
            if path.exists():
                self.load_from_file(path)

        for watcher in self._watchers:
            watcher(self._config)

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except (TypeError, ValueError) as e:
                    errors.append(f"{path}: {e}")
                env_error = obj.env_error()
                if env_error:
                    errors.append(f"{path}: {env_error}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> PharmaChainConfig:
    """Get the current process-wide configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
