"""
Configuration management for the transcript agent.

WHAT THIS FILE DOES:
-------------------
Loads configuration from YAML with sensible defaults: which reasoning
provider to use, where the context directory lives, and where notes are
filed when no project claims them.

CONFIG FILE LOCATION:
--------------------
Default: ~/.transcript-agent/config.yaml

CONFIG FORMAT:
-------------
```yaml
reasoning:
  provider: "anthropic"
  model: "claude-sonnet-4-20250514"
  api_key_env: "ANTHROPIC_API_KEY"

routing:
  default_destination: "~/notes"
  structure: "month"
  filename_options: ["date", "time", "subject"]

interactive:
  enabled: false

context_directory: "~/.transcript-agent/context"
log_level: "WARNING"
```
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, get_args

import yaml

from .schemas import FilenameOption, FilesystemStructure


# =============================================================================
# CONFIGURATION DATA CLASSES
# =============================================================================

@dataclass
class ReasoningConfig:
    """Which model drives the loop."""
    provider: str = "anthropic"
    model: str = "claude-sonnet-4-20250514"
    api_key_env: Optional[str] = "ANTHROPIC_API_KEY"
    base_url: Optional[str] = None
    max_tokens: int = 4096
    temperature: float = 0.3

    def to_dict(self) -> dict:
        result = {
            "provider": self.provider,
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if self.api_key_env:
            result["api_key_env"] = self.api_key_env
        if self.base_url:
            result["base_url"] = self.base_url
        return result


@dataclass
class RoutingConfig:
    """Where notes go when no project matches."""
    default_destination: str = "~/notes"
    structure: str = "month"  # "none", "year", "month", "day"
    filename_options: list[str] = field(default_factory=lambda: ["date", "time", "subject"])


@dataclass
class InteractiveConfig:
    """Whether to ask a human about unknown names."""
    enabled: bool = False


@dataclass
class Config:
    """
    Complete configuration for the transcript agent.

    It can be loaded from a YAML file or created with defaults.
    """
    reasoning: ReasoningConfig = field(default_factory=ReasoningConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    interactive: InteractiveConfig = field(default_factory=InteractiveConfig)
    context_directory: str = "~/.transcript-agent/context"
    log_level: str = "WARNING"

    @property
    def context_path(self) -> Path:
        """Get context directory, expanding ~ if present."""
        return Path(self.context_directory).expanduser()


# =============================================================================
# CONFIGURATION LOADING
# =============================================================================

DEFAULT_PATHS = [
    Path.home() / ".transcript-agent" / "config.yaml",
    Path("./transcript-agent.yaml"),
    Path("./transcript-agent.yml"),
]


def _parse_config(data: dict) -> Config:
    """Parse a complete configuration from dict. Unknown keys are ignored."""
    config = Config()

    if "reasoning" in data:
        reasoning_data = data["reasoning"] or {}
        provider = reasoning_data.get("provider", "anthropic")
        config.reasoning = ReasoningConfig(
            provider=provider,
            model=reasoning_data.get("model", config.reasoning.model if provider == "anthropic" else ""),
            api_key_env=reasoning_data.get("api_key_env", f"{provider.upper()}_API_KEY"),
            base_url=reasoning_data.get("base_url"),
            max_tokens=reasoning_data.get("max_tokens", 4096),
            temperature=reasoning_data.get("temperature", 0.3),
        )

    if "routing" in data:
        routing_data = data["routing"] or {}
        structure = routing_data.get("structure", "month")
        filename_options = list(routing_data.get("filename_options", ["date", "time", "subject"]))

        if structure not in get_args(FilesystemStructure):
            raise ValueError(
                f"Invalid routing structure: '{structure}'. "
                f"Must be one of: {', '.join(get_args(FilesystemStructure))}"
            )
        unknown = [o for o in filename_options if o not in get_args(FilenameOption)]
        if unknown:
            raise ValueError(
                f"Invalid routing filename option(s): {', '.join(map(str, unknown))}. "
                f"Must be from: {', '.join(get_args(FilenameOption))}"
            )

        config.routing = RoutingConfig(
            default_destination=routing_data.get("default_destination", "~/notes"),
            structure=structure,
            filename_options=filename_options,
        )

    if "interactive" in data:
        interactive_data = data["interactive"] or {}
        config.interactive = InteractiveConfig(enabled=interactive_data.get("enabled", False))

    if "context_directory" in data:
        config.context_directory = data["context_directory"]

    if "log_level" in data:
        config.log_level = str(data["log_level"]).upper()

    return config


def load_config(path: Optional[Path] = None) -> Config:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to config file. If None, tries default locations:
              1. ~/.transcript-agent/config.yaml
              2. ./transcript-agent.yaml
              3. ./transcript-agent.yml
              4. Falls back to defaults

    Raises:
        FileNotFoundError: If an explicit path doesn't exist
        ValueError: If a routing value is not one of the allowed choices
    """
    if path:
        return load_config_from_file(path)

    config_path = get_config_path()
    if config_path:
        return load_config_from_file(config_path)

    return Config()


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a specific file.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If a routing value is not one of the allowed choices
    """
    path = Path(path).expanduser()

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    return _parse_config(data)


def save_config(config: Config, path: Path) -> None:
    """Save configuration to a YAML file."""
    data = {
        "reasoning": config.reasoning.to_dict(),
        "routing": {
            "default_destination": config.routing.default_destination,
            "structure": config.routing.structure,
            "filename_options": list(config.routing.filename_options),
        },
        "interactive": {
            "enabled": config.interactive.enabled,
        },
        "context_directory": config.context_directory,
        "log_level": config.log_level,
    }

    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


def get_config_path() -> Optional[Path]:
    """Path to the active config file, or None if using defaults."""
    for path in DEFAULT_PATHS:
        if path.exists():
            return path
    return None
