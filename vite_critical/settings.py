"""Resolution of the effective critical CSS settings for one site."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from vite_critical.config_loader import ConfigError, SiteConfig, as_bool


DEFAULT_BROWSER_ARGS = (
    "--no-sandbox",
    "--disable-gpu",
    "--disable-dev-shm-usage",
    "--ignore-certificate-errors",
    "--allow-insecure-localhost",
)

# key -> (global config key, minimal default)
SCALAR_DEFAULTS: Dict[str, Tuple[str, Any]] = {
    "width": ("WIDTH", 1300),
    "height": ("HEIGHT", 900),
    "render_wait_time": ("RENDER_WAIT_TIME", 300),
    "timeout": ("TIMEOUT", 30000),
    "max_base64_length": ("MAX_BASE64_LENGTH", 1000),
}

FLAG_DEFAULTS: Dict[str, Tuple[str, bool]] = {
    "block_js_requests": ("BLOCK_JS_REQUESTS", True),
    "remove_important": ("REMOVE_IMPORTANT", False),
    "force_font_display": ("FORCE_FONT_DISPLAY", True),
    "strip_comments": ("STRIP_COMMENTS", True),
}

LIST_KEYS: Dict[str, str] = {
    "force_include": "FORCE_INCLUDE",
    "selectors_remove": "SELECTORS_REMOVE",
    "properties_remove": "PROPERTIES_REMOVE",
    "browser_args": "PUPPETEER_ARGS",
}


@dataclass(frozen=True)
class EffectiveSettings:
    """Global defaults merged with one site's overrides."""

    site: str
    environment: str
    base_url: str
    width: int = 1300
    height: int = 900
    render_wait_time: int = 300
    timeout: int = 30000
    max_base64_length: int = 1000
    block_js_requests: bool = True
    remove_important: bool = False
    force_font_display: bool = True
    strip_comments: bool = True
    force_include: Tuple[str, ...] = ()
    selectors_remove: Tuple[str, ...] = ()
    properties_remove: Tuple[str, ...] = ()
    browser_args: Tuple[str, ...] = DEFAULT_BROWSER_ARGS


def select_base_url(site_config: SiteConfig, environment: str) -> str:
    """Pick the first base variant matching the environment, else the plain base."""
    for variant in site_config.base_variants:
        if variant.matches(environment):
            return variant.base

    if site_config.base:
        return site_config.base

    raise ConfigError(
        f"No base URL for site '{site_config.identifier}' in environment '{environment}'"
    )


def _first_defined(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    return [str(value)]


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid integer for {key}: {value!r}") from e


def merge_lists(global_values: Any, site_values: Any) -> Tuple[str, ...]:
    """Concatenate global and site values, keeping order and duplicates."""
    return tuple(_as_list(global_values) + _as_list(site_values))


def resolve_settings(
    global_config: Dict[str, Any],
    site_config: SiteConfig,
    environment: str,
) -> Optional[EffectiveSettings]:
    """Build the EffectiveSettings for one site.

    Returns None when critical CSS is disabled for the site.

    Raises:
        ConfigError: If no base URL can be determined or a value is malformed.
    """
    if not site_config.critical_css_enabled:
        logger.warning("Critical CSS is disabled for site '{}'", site_config.identifier)
        return None

    base_url = select_base_url(site_config, environment)
    overrides = site_config.settings

    values: Dict[str, Any] = {}
    for field_name, (key, default) in SCALAR_DEFAULTS.items():
        raw = _first_defined(overrides.get(key), global_config.get(key), default)
        values[field_name] = _as_int(raw, key)

    for field_name, (key, default) in FLAG_DEFAULTS.items():
        raw = _first_defined(overrides.get(key), global_config.get(key))
        values[field_name] = as_bool(raw, default)

    for field_name, key in LIST_KEYS.items():
        values[field_name] = merge_lists(global_config.get(key), overrides.get(key))

    if not values["browser_args"]:
        values["browser_args"] = DEFAULT_BROWSER_ARGS

    settings = EffectiveSettings(
        site=site_config.identifier,
        environment=environment,
        base_url=base_url,
        **values,
    )
    logger.info("Resolved settings for site '{}' ({}): base_url={}", settings.site, environment, base_url)
    return settings


def parse_pid_list(value: Optional[str]) -> List[str]:
    """Split a comma separated PID list, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in str(value).split(",") if part.strip()]


def unique_pids(entry_points: Dict[str, str]) -> Sequence[str]:
    """All PIDs referenced by a template -> PID list mapping, in first-seen order."""
    seen: Dict[str, None] = {}
    for pid_list in entry_points.values():
        for pid in parse_pid_list(pid_list):
            seen.setdefault(pid, None)
    return list(seen)
