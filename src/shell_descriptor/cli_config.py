"""
Configuration management for shell-descriptor.

Settings are layered: dataclass defaults, then an optional config file,
then SHELL_DESCRIPTOR_* environment variables.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.console import Console

from .error_handling import ErrorCategory, get_error_handler

try:
    import yaml

    HAS_YAML = True
except ImportError:
    HAS_YAML = False

console = Console(stderr=True)

OUTPUT_FORMATS = ("console", "json")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
CONFIG_SECTIONS = ("loader", "output", "logging")
DEFAULT_ERROR_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

PROJECT_CONFIG_NAMES = (
    ".shell-descriptor.json",
    ".shell-descriptor.yaml",
    ".shell-descriptor.yml",
)
USER_CONFIG_NAMES = ("config.json", "config.yaml")


@dataclass
class LoaderConfig:
    """Descriptor loading and validation limits."""

    max_file_size_mb: int = 1
    allowed_file_extensions: List[str] = field(
        default_factory=lambda: [".nix", ".toml", ".json"]
    )
    sources_file: str = "nix/sources.json"
    strip_pkgs_prefix: bool = True
    max_dependencies: int = 10000

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


@dataclass
class OutputConfig:
    output_format: str = "console"
    quiet: bool = False
    verbose: bool = False


@dataclass
class LoggingConfig:
    log_level: str = "WARNING"
    log_format: str = DEFAULT_ERROR_LOG_FORMAT
    enable_sensitive_data_masking: bool = True


@dataclass
class ComprehensiveConfig:
    """All configuration sections."""

    loader: LoaderConfig = field(default_factory=LoaderConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @property
    def effective_log_level(self) -> str:
        """--verbose style output lowers the default WARNING level to INFO."""
        if self.output.verbose and self.logging.log_level == "WARNING":
            return "INFO"
        return self.logging.log_level


_global_config: Optional[ComprehensiveConfig] = None


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Check a configuration for values the loader cannot work with.

    Every message starts with the dotted setting name, which is how
    load_config finds the setting to reset.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: Validation errors (empty if valid)
    """
    errors = []
    loader = config.loader

    if not isinstance(loader.max_file_size_mb, int) or loader.max_file_size_mb <= 0:
        errors.append("loader.max_file_size_mb must be a positive integer")
    if not isinstance(loader.max_dependencies, int) or loader.max_dependencies <= 0:
        errors.append("loader.max_dependencies must be positive")
    if not loader.sources_file:
        errors.append("loader.sources_file must be a non-empty path")
    bad_extensions = [
        ext for ext in loader.allowed_file_extensions if not str(ext).startswith(".")
    ]
    if bad_extensions:
        errors.append(
            "loader.allowed_file_extensions entries must start with '.': "
            + ", ".join(map(str, bad_extensions))
        )

    if config.output.output_format not in OUTPUT_FORMATS:
        errors.append(
            f"output.output_format must be one of: {', '.join(OUTPUT_FORMATS)}"
        )
    if str(config.logging.log_level).upper() not in LOG_LEVELS:
        errors.append(f"logging.log_level must be one of: {', '.join(LOG_LEVELS)}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Read a JSON or YAML config file; problems are reported, not raised."""
    suffix = config_path.suffix.lower()
    if not config_path.exists() or suffix not in (".json", ".yaml", ".yml"):
        return None
    if suffix != ".json" and not HAS_YAML:
        console.print("⚠️  PyYAML not installed, skipping YAML config", style="yellow")
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            return json.load(f) if suffix == ".json" else yaml.safe_load(f)
    except (OSError, ValueError) as e:
        console.print(f"⚠️  Error loading config from {config_path}: {e}", style="yellow")
    return None


def find_config_file() -> Optional[Path]:
    """The project config in the working directory wins over the user config."""
    user_dir = Path.home() / ".config" / "shell-descriptor"
    candidates = [Path.cwd() / name for name in PROJECT_CONFIG_NAMES]
    candidates += [user_dir / name for name in USER_CONFIG_NAMES]
    return next((path for path in candidates if path.exists()), None)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def _env_int(value: str) -> int:
    return int(value)


# (variable, section, setting, converter)
_ENV_OVERRIDES: Tuple[Tuple[str, str, str, Callable[[str], Any]], ...] = (
    ("SHELL_DESCRIPTOR_MAX_FILE_SIZE_MB", "loader", "max_file_size_mb", _env_int),
    ("SHELL_DESCRIPTOR_MAX_DEPENDENCIES", "loader", "max_dependencies", _env_int),
    ("SHELL_DESCRIPTOR_SOURCES_FILE", "loader", "sources_file", str),
    ("SHELL_DESCRIPTOR_STRIP_PKGS_PREFIX", "loader", "strip_pkgs_prefix", _env_bool),
    ("SHELL_DESCRIPTOR_OUTPUT_FORMAT", "output", "output_format", str.lower),
    ("SHELL_DESCRIPTOR_QUIET", "output", "quiet", _env_bool),
    ("SHELL_DESCRIPTOR_VERBOSE", "output", "verbose", _env_bool),
    ("SHELL_DESCRIPTOR_LOG_LEVEL", "logging", "log_level", str.upper),
    (
        "SHELL_DESCRIPTOR_MASK_SENSITIVE_DATA",
        "logging",
        "enable_sensitive_data_masking",
        _env_bool,
    ),
)


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Apply SHELL_DESCRIPTOR_* environment variables on top of config."""
    for variable, section_name, key, convert in _ENV_OVERRIDES:
        raw = os.environ.get(variable)
        if not raw:
            continue
        try:
            value = convert(raw)
        except ValueError:
            console.print(f"⚠️  Invalid value for {variable}, ignoring", style="yellow")
            get_error_handler().warning(
                ErrorCategory.CONFIGURATION,
                f"Invalid value for {variable}, ignoring",
                "cli_config",
                "load_environment_overrides",
                details={"variable": variable},
            )
            continue
        setattr(getattr(config, section_name), key, value)


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    if not isinstance(section_data, dict):
        console.print(
            f"⚠️  Config section {section_name} must be a mapping", style="yellow"
        )
        return

    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {key}", style="yellow"
            )


def apply_config_data(config: ComprehensiveConfig, file_config: Dict[str, Any]) -> None:
    for section_name in CONFIG_SECTIONS:
        if section_name in file_config:
            apply_config_section(
                getattr(config, section_name), file_config[section_name], section_name
            )


def _restore_invalid_defaults(
    config: ComprehensiveConfig, validation_errors: List[str]
) -> None:
    defaults = ComprehensiveConfig()
    for error in validation_errors:
        setting = error.split(" ", 1)[0]
        section_name, _, key = setting.partition(".")
        section = getattr(config, section_name, None)
        if section is not None and hasattr(section, key):
            setattr(section, key, getattr(getattr(defaults, section_name), key))


def load_config() -> ComprehensiveConfig:
    """Build the configuration from defaults, config file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    config = ComprehensiveConfig()

    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if isinstance(file_config, dict):
            apply_config_data(config, file_config)

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        get_error_handler().warning(
            ErrorCategory.CONFIGURATION,
            "Invalid settings restored to defaults",
            "cli_config",
            "load_config",
            details={"errors": validation_errors},
        )
        _restore_invalid_defaults(config, validation_errors)

    _global_config = config
    return config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Sample config file content with every setting at its default."""
    return json.dumps(ComprehensiveConfig().to_dict(), indent=2) + "\n"
