"""
Configuration management and loading.

Handles target, timing, browser and diagnostics settings.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_TARGET_URL = "https://chatgpt.com/codex/settings/usage"
DEFAULT_ROUTE_MARKER = "/codex/settings/usage"
DEFAULT_EXPECTED_HOST = "chatgpt.com"
DEFAULT_STORAGE_DIR = "~/.ai-usage-scout/sessions"


@dataclass(frozen=True)
class TargetConfig:
    """The dashboard route the navigator keeps the session on."""
    url: str = DEFAULT_TARGET_URL
    route_marker: str = DEFAULT_ROUTE_MARKER
    expected_host: str = DEFAULT_EXPECTED_HOST

    def __post_init__(self):
        """Validate the target route."""
        if not self.url.startswith(("http://", "https://")):
            raise ValueError("target url must be an absolute http(s) URL")
        if not self.route_marker:
            raise ValueError("route_marker cannot be empty")
        if not self.expected_host:
            raise ValueError("expected_host cannot be empty")


@dataclass(frozen=True)
class TimingConfig:
    """Polling intervals and grace periods, in seconds.

    The grace periods are empirically tuned against the live dashboard.
    """
    poll_interval: float = 0.5
    workspace_wait: float = 0.5
    force_navigate_wait: float = 0.5
    scroll_wait: float = 0.6
    history_wait_interval: float = 0.4
    header_visible_grace: float = 2.5
    dashboard_signal_grace: float = 6.5
    chart_hydration_grace: float = 6.0
    idle_timeout: float = 600.0
    fetch_timeout: float = 60.0
    probe_timeout: float = 30.0

    def __post_init__(self):
        """Validate every timing value is positive."""
        for f in fields(self):
            if getattr(self, f.name) <= 0:
                raise ValueError(f"{f.name} must be > 0")


@dataclass(frozen=True)
class BrowserConfig:
    """Headless browser launch settings."""
    headless: bool = True
    storage_dir: str = DEFAULT_STORAGE_DIR
    viewport_width: int = 1200
    viewport_height: int = 1600

    def __post_init__(self):
        """Validate viewport dimensions."""
        if self.viewport_width <= 0 or self.viewport_height <= 0:
            raise ValueError("viewport dimensions must be > 0")

    @property
    def storage_path(self) -> Path:
        return Path(self.storage_dir).expanduser()


@dataclass(frozen=True)
class DiagnosticsConfig:
    """Where failure artifacts are written. None means the system temp dir."""
    directory: Optional[str] = None


@dataclass(frozen=True)
class ScoutConfig:
    """Complete scout configuration."""
    target: TargetConfig = field(default_factory=TargetConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    diagnostics: DiagnosticsConfig = field(default_factory=DiagnosticsConfig)


def default_config() -> ScoutConfig:
    """Return the built-in configuration."""
    return ScoutConfig()


def load_scout_config(path: Optional[str] = None) -> ScoutConfig:
    """Load and validate scout configuration from a YAML file.

    Strict validation rejects unknown keys so that a typo in a timing
    name never silently falls back to a default.

    Args:
        path: Path to YAML configuration file. None returns the defaults.

    Returns:
        Validated ScoutConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return default_config()

    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Scout config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {'target', 'timing', 'browser', 'diagnostics'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    target = TargetConfig(**_parse_section(raw_config, 'target', TargetConfig, str))
    timing = TimingConfig(**_parse_section(raw_config, 'timing', TimingConfig, (int, float)))
    browser = BrowserConfig(**_parse_browser(raw_config))
    diagnostics = DiagnosticsConfig(**_parse_section(raw_config, 'diagnostics', DiagnosticsConfig, (str, type(None))))

    return ScoutConfig(
        target=target,
        timing=timing,
        browser=browser,
        diagnostics=diagnostics
    )


def _parse_section(raw_config: Dict, name: str, section_cls: type, value_types) -> Dict[str, Any]:
    """Validate one flat section against the fields of its dataclass.

    Args:
        raw_config: Top-level configuration mapping
        name: Section name, used in error messages
        section_cls: Dataclass whose fields are the allowed keys
        value_types: Accepted value type(s) for every key

    Returns:
        Keyword arguments for section_cls

    Raises:
        ValueError: If the section is malformed
    """
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    allowed_keys = {f.name for f in fields(section_cls)}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    parsed = {}
    for key, value in data.items():
        # bool is an int subclass; never accept it for numeric settings
        if isinstance(value, bool) or not isinstance(value, value_types):
            raise ValueError(f"'{key}' in {name} has invalid type {type(value).__name__}")
        parsed[key] = float(value) if value_types == (int, float) else value
    return parsed


def _parse_browser(raw_config: Dict) -> Dict[str, Any]:
    """Validate the browser section, which mixes value types."""
    data = raw_config.get('browser') or {}
    if not isinstance(data, dict):
        raise ValueError("'browser' must be a dictionary")

    expected_types = {
        'headless': bool,
        'storage_dir': str,
        'viewport_width': int,
        'viewport_height': int,
    }
    unknown_keys = set(data.keys()) - set(expected_types)
    if unknown_keys:
        raise ValueError(f"Unknown keys in browser: {unknown_keys}")

    for key, value in data.items():
        expected = expected_types[key]
        if expected is int and isinstance(value, bool):
            raise ValueError(f"'{key}' in browser must be an integer")
        if not isinstance(value, expected):
            raise ValueError(f"'{key}' in browser must be of type {expected.__name__}")
    return dict(data)
