"""Configuration loader for the Vite critical CSS generator."""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from dotenv import load_dotenv
from loguru import logger


DEFAULT_SITES_DIR = "config/sites"
SITE_CONFIG_FILENAME = "config.yaml"


class ConfigError(Exception):
    """Raised when a configuration file is missing, unparsable or incomplete."""
    pass


@dataclass
class BaseVariant:
    """Environment specific base URL of a site."""

    base: str
    condition: Union[str, List[str]]

    def matches(self, environment: str) -> bool:
        # A string condition is a host CMS expression: applicationContext == "Production"
        return environment in self.condition


@dataclass
class SiteConfig:
    """Critical CSS relevant parts of a host CMS site configuration."""

    identifier: str
    base: Optional[str] = None
    base_variants: List[BaseVariant] = field(default_factory=list)
    critical_css_enabled: bool = False
    entry_point_for_pid: Dict[str, str] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, identifier: str, data: Dict[str, Any]) -> "SiteConfig":
        variants = []
        for raw in data.get("baseVariants") or []:
            if not isinstance(raw, dict) or not raw.get("base"):
                continue
            condition = raw.get("condition") or []
            if not isinstance(condition, str):
                condition = [str(item) for item in condition]
            variants.append(BaseVariant(base=str(raw["base"]), condition=condition))

        critical_cfg = (data.get("viteCritical") or {}).get("criticalCss") or {}
        if not isinstance(critical_cfg, dict):
            critical_cfg = {}

        entry_points = critical_cfg.get("entryPointForPid") or {}
        settings = critical_cfg.get("settings") or {}

        return cls(
            identifier=identifier,
            base=data.get("base") or None,
            base_variants=variants,
            critical_css_enabled=as_bool(critical_cfg.get("enable"), False),
            entry_point_for_pid={str(k): str(v) for k, v in entry_points.items()},
            settings=settings if isinstance(settings, dict) else {},
        )


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load the global configuration from a YAML file.

    Args:
        config_path: Path to config file. If None, uses default locations.

    Returns:
        Dictionary with configuration values.

    Raises:
        ConfigError: If the file is missing, unparsable or not a mapping.
    """
    # Load environment variables first
    load_dotenv()

    # Find config file
    if config_path is None:
        for loc in ("critical.yaml", "critical.yml"):
            if Path(loc).exists():
                config_path = loc
                break

    if config_path is None or not Path(config_path).exists():
        raise ConfigError("Configuration file not found. Please provide critical.yaml")

    config = _read_yaml(Path(config_path))
    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigError(f"Configuration in {config_path} must be a mapping")

    logger.info("Loaded configuration from {}", config_path)

    # Substitute environment variables
    return _substitute_env_vars(config)


def _read_yaml(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing YAML configuration ({path}): {e}") from e
    except OSError as e:
        raise ConfigError(f"Error reading configuration ({path}): {e}") from e


def _substitute_env_vars(obj: Any) -> Any:
    """Recursively substitute environment variables in config.

    Supports syntax: ${VAR_NAME} or ${VAR_NAME:default_value}
    """
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return _substitute_env_string(obj)
    else:
        return obj


def _substitute_env_string(value: str) -> str:
    """Substitute environment variables in a string."""
    pattern = r'\$\{([^}]+)\}'

    def replace(match):
        var_expr = match.group(1)
        if ':' in var_expr:
            var_name, default = var_expr.split(':', 1)
            return os.getenv(var_name, default)
        else:
            return os.getenv(var_expr, match.group(0))

    return re.sub(pattern, replace, value)


def as_bool(value: Any, default: bool) -> bool:
    """Interpret YAML booleans and their common string spellings."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    normalized = str(value).strip().lower()
    if normalized in {"true", "yes", "on", "1"}:
        return True
    if normalized in {"false", "no", "off", "0"}:
        return False
    return default


def get_sites_dir(config: Dict[str, Any]) -> Path:
    """Directory holding one sub-directory per site configuration."""
    return Path(config.get("SITES_CONFIG_DIR") or DEFAULT_SITES_DIR)


def load_site_config(sites_dir: Union[str, Path], site: str) -> SiteConfig:
    """Load `{sites_dir}/{site}/config.yaml` into a SiteConfig."""
    config_path = Path(sites_dir) / site / SITE_CONFIG_FILENAME
    if not config_path.exists():
        raise ConfigError(f"No {SITE_CONFIG_FILENAME} found for site: {site} ({config_path})")

    data = _read_yaml(config_path) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Site configuration in {config_path} must be a mapping")

    logger.debug("Loaded site config from {}", config_path)
    return SiteConfig.from_dict(site, _substitute_env_vars(data))


def discover_sites(sites_dir: Union[str, Path]) -> List[str]:
    """Return the identifiers of all sites that ship a config.yaml."""
    root = Path(sites_dir)
    if not root.is_dir():
        logger.warning("Sites directory not found: {}", root)
        return []

    return sorted(
        child.name
        for child in root.iterdir()
        if child.is_dir() and (child / SITE_CONFIG_FILENAME).exists()
    )
