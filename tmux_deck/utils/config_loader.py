"""
Configuration Loader Module

Handles loading and validation of the tmux-deck configuration file and
environment overrides.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .file_utils import FileUtils

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV = "TMUX_DECK_CONFIG_DIR"
DEFAULT_CONFIG_DIR = Path("~/.config/tmux-deck")
DEFAULT_LOG_FILE = "~/.cache/tmux-deck/tmux-deck.log"
CONFIG_NAME = "config"
DECK_SCHEMA = "deck"

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Environment variable -> config field path
ENV_OVERRIDES = {
    "TMUX_DECK_AGENT_COMMAND": "agent.command",
    "TMUX_DECK_REFRESH_INTERVAL": "refresh.interval",
    "TMUX_DECK_LOG_LEVEL": "logging.level",
}

ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)')


class ConfigError(ValueError):
    """Configuration file could not be parsed or failed validation."""
    pass


@dataclass
class ConfigValidationRule:
    """Configuration validation rule."""
    field_path: str
    required: bool = True
    field_type: Union[type, tuple] = str
    default_value: Any = None
    allowed_values: Optional[List[Any]] = None
    min_value: Optional[Union[int, float]] = None
    max_value: Optional[Union[int, float]] = None


@dataclass
class ConfigSchema:
    """Configuration schema definition."""
    name: str
    version: str
    rules: List[ConfigValidationRule] = field(default_factory=list)

    def add_rule(self, **kwargs) -> 'ConfigSchema':
        """Add validation rule."""
        self.rules.append(ConfigValidationRule(**kwargs))
        return self


@dataclass
class DeckConfig:
    """Effective runtime configuration."""
    agent_command: str = "claude"
    capture_lines: int = 15
    refresh_interval: float = 2.0
    start_agent_in_new_sessions: bool = True
    tmux_socket: Optional[str] = None
    resolve_wrapped_commands: bool = True
    preview_lines: int = 15
    github_enabled: bool = True
    log_level: str = "INFO"
    log_file: str = DEFAULT_LOG_FILE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DeckConfig':
        """Build from validated, defaults-filled config data."""
        agent = data.get("agent", {})
        refresh = data.get("refresh", {})
        tmux = data.get("tmux", {})
        preview = data.get("preview", {})
        github = data.get("github", {})
        logging_section = data.get("logging", {})
        return cls(
            agent_command=agent.get("command", cls.agent_command),
            capture_lines=agent.get("capture_lines", cls.capture_lines),
            start_agent_in_new_sessions=agent.get("start_in_new_sessions", cls.start_agent_in_new_sessions),
            resolve_wrapped_commands=agent.get("resolve_wrapped_commands", cls.resolve_wrapped_commands),
            refresh_interval=float(refresh.get("interval", cls.refresh_interval)),
            tmux_socket=tmux.get("socket") or None,
            preview_lines=preview.get("lines", cls.preview_lines),
            github_enabled=github.get("enabled", cls.github_enabled),
            log_level=logging_section.get("level", cls.log_level),
            log_file=logging_section.get("file", cls.log_file),
        )

    @property
    def log_path(self) -> Path:
        return Path(os.path.expanduser(self.log_file))


class ConfigLoader:
    """
    Configuration loader with validation and schema support.

    Features:
    - JSON and YAML configuration support
    - Schema validation with detailed error reporting
    - Environment variable substitution and overrides
    - Default value handling
    """

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize config loader.

        Args:
            config_dir: Directory containing configuration files; defaults to
                $TMUX_DECK_CONFIG_DIR or ~/.config/tmux-deck
        """
        if config_dir is None:
            config_dir = Path(os.environ.get(CONFIG_DIR_ENV) or DEFAULT_CONFIG_DIR)
        self.config_dir = Path(os.path.expanduser(str(config_dir)))

        self._schemas: Dict[str, ConfigSchema] = {}
        self._initialize_builtin_schemas()

    def find_config_file(self, config_name: str = CONFIG_NAME) -> Optional[Path]:
        """Return the first existing config file: .yaml, .yml, then .json."""
        for suffix in (".yaml", ".yml", ".json"):
            candidate = self.config_dir / f"{config_name}{suffix}"
            if candidate.exists():
                return candidate
        return None

    def load_config(self,
                    config_name: str = CONFIG_NAME,
                    schema_name: Optional[str] = DECK_SCHEMA) -> Dict[str, Any]:
        """
        Load configuration file with optional schema validation.

        A missing file is not an error and yields an empty (then
        defaults-filled) configuration.

        Args:
            config_name: Name of config file (without extension)
            schema_name: Name of schema to validate against

        Returns:
            Dict containing configuration

        Raises:
            ConfigError: If the file is unreadable or fails validation
        """
        config_data: Optional[Dict[str, Any]] = {}
        config_path = self.find_config_file(config_name)

        if config_path is not None:
            if config_path.suffix == ".json":
                config_data = FileUtils.read_json(config_path)
            else:
                config_data = FileUtils.read_yaml(config_path)
            if config_data is None:
                raise ConfigError(f"Could not parse config file {config_path}")
            if not isinstance(config_data, dict):
                raise ConfigError(f"Config file {config_path} must contain a mapping")
            logger.debug(f"Loaded config: {config_path}")
        else:
            logger.debug(f"No config file in {self.config_dir}, using defaults")

        config_data = self._substitute_environment_variables(config_data)
        self._apply_environment_overrides(config_data)

        if schema_name:
            errors = self.validate_config(config_data, schema_name)
            if errors:
                raise ConfigError("; ".join(errors))

        return config_data

    def load_deck_config(self) -> DeckConfig:
        """
        Load the effective DeckConfig.

        An invalid config file is logged and defaults are used instead.
        """
        try:
            return DeckConfig.from_dict(self.load_config())
        except ConfigError as e:
            logger.error(f"Invalid configuration, using defaults: {e}")
            return DeckConfig()

    def register_schema(self, schema: ConfigSchema) -> None:
        """Register a configuration schema."""
        self._schemas[schema.name] = schema
        logger.debug(f"Registered schema: {schema.name} (v{schema.version})")

    def validate_config(self, config_data: Dict[str, Any], schema_name: str) -> List[str]:
        """
        Validate configuration against schema, filling defaults in place.

        Args:
            config_data: Configuration to validate
            schema_name: Name of schema to validate against

        Returns:
            List of validation errors (empty when valid)
        """
        if schema_name not in self._schemas:
            return [f"Schema not found: {schema_name}"]

        schema = self._schemas[schema_name]
        validation_errors = []

        for rule in schema.rules:
            value = self._get_nested_value(config_data, rule.field_path)

            if value is None:
                if rule.default_value is not None:
                    self._set_nested_value(config_data, rule.field_path, rule.default_value)
                elif rule.required:
                    validation_errors.append(f"Required field missing: {rule.field_path}")
                continue

            if isinstance(value, bool) and rule.field_type is not bool:
                validation_errors.append(f"Field {rule.field_path} must not be a boolean")
                continue

            if not isinstance(value, rule.field_type):
                expected = getattr(rule.field_type, "__name__", "number")
                validation_errors.append(
                    f"Field {rule.field_path} must be {expected}, got {type(value).__name__}"
                )
                continue

            if rule.allowed_values and value not in rule.allowed_values:
                validation_errors.append(
                    f"Field {rule.field_path} must be one of {rule.allowed_values}, got {value}"
                )

            if rule.min_value is not None and value < rule.min_value:
                validation_errors.append(
                    f"Field {rule.field_path} must be >= {rule.min_value}, got {value}"
                )

            if rule.max_value is not None and value > rule.max_value:
                validation_errors.append(
                    f"Field {rule.field_path} must be <= {rule.max_value}, got {value}"
                )

        for error in validation_errors:
            logger.warning(f"Config validation ({schema_name}): {error}")

        return validation_errors

    def _get_nested_value(self, data: Dict[str, Any], path: str) -> Any:
        """Get nested value using dot notation."""
        current: Any = data
        for key in path.split('.'):
            if not isinstance(current, dict) or key not in current:
                return None
            current = current[key]
        return current

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: Any) -> None:
        """Set nested value using dot notation."""
        keys = path.split('.')
        current = data
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _apply_environment_overrides(self, data: Dict[str, Any]) -> None:
        for env_var, field_path in ENV_OVERRIDES.items():
            raw = os.environ.get(env_var)
            if raw is None or raw == "":
                continue
            value: Any = raw
            if field_path == "refresh.interval":
                try:
                    value = float(raw)
                except ValueError:
                    logger.warning(f"Ignoring {env_var}={raw!r}: not a number")
                    continue
            elif field_path == "logging.level":
                value = raw.upper()
            self._set_nested_value(data, field_path, value)

    def _substitute_environment_variables(self, data: Any) -> Any:
        """Recursively substitute environment variables in configuration."""
        if isinstance(data, dict):
            return {k: self._substitute_environment_variables(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [self._substitute_environment_variables(item) for item in data]
        elif isinstance(data, str):
            def replace_env_var(match):
                var_name = match.group(1) or match.group(2)
                return os.environ.get(var_name, match.group(0))

            return ENV_VAR_PATTERN.sub(replace_env_var, data)
        else:
            return data

    def _initialize_builtin_schemas(self) -> None:
        """Initialize built-in configuration schemas."""
        deck_schema = ConfigSchema(DECK_SCHEMA, "1.0")
        deck_schema.add_rule(
            field_path="agent.command",
            field_type=str,
            default_value="claude"
        ).add_rule(
            field_path="agent.capture_lines",
            field_type=int,
            default_value=15,
            min_value=1,
            max_value=500
        ).add_rule(
            field_path="agent.start_in_new_sessions",
            field_type=bool,
            default_value=True
        ).add_rule(
            field_path="agent.resolve_wrapped_commands",
            field_type=bool,
            default_value=True
        ).add_rule(
            field_path="refresh.interval",
            field_type=(int, float),
            default_value=2.0,
            min_value=0.5,
            max_value=60
        ).add_rule(
            field_path="preview.lines",
            field_type=int,
            default_value=15,
            min_value=0,
            max_value=200
        ).add_rule(
            field_path="github.enabled",
            field_type=bool,
            default_value=True
        ).add_rule(
            field_path="tmux.socket",
            required=False,
            field_type=str
        ).add_rule(
            field_path="logging.level",
            field_type=str,
            default_value="INFO",
            allowed_values=LOG_LEVELS
        ).add_rule(
            field_path="logging.file",
            field_type=str,
            default_value=DEFAULT_LOG_FILE
        )

        self.register_schema(deck_schema)
