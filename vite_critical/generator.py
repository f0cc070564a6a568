"""Critical and deferred CSS generation for one target or for every configured site."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from loguru import logger

from vite_critical.config_loader import ConfigError, discover_sites, get_sites_dir, load_site_config
from vite_critical.css_pipeline import process_critical_css
from vite_critical.css_tree import CssProcessingError
from vite_critical.deferred import compute_deferred, read_css_sources
from vite_critical.manifest import (
    ARTIFACT_DIR,
    BuildManifest,
    ManifestEntry,
    ManifestLookupError,
    artifact_filename,
    collect_css_sources,
    entry_name,
    extract_hash,
    find_entry,
    flush_manifest,
    load_manifest,
    manifest_path,
    record_artifact,
)
from vite_critical.renderer import build_renderer
from vite_critical.settings import EffectiveSettings, parse_pid_list, resolve_settings, unique_pids
from vite_critical.slugs import SlugResolver, build_slug_resolver


DEFAULT_OUTPUT_PATH = "public/assets/"

# Excluded from the CMS page cache hash, so the page renders uncached and without inlined critical CSS
CACHE_BYPASS_MARKER = "tx_vitecritical_css[omit]=1"


def relative_output_path(output_path: Union[str, Path]) -> str:
    """Output root as seen from the web root (`public/assets/` -> `assets/`)."""
    return re.sub(r"^public/", "", str(output_path).replace("\\", "/"))


def resolve_output_root(config: Dict[str, Any], output_path: Optional[str] = None) -> Path:
    return Path(output_path or config.get("VITE_OUTPUT_PATH") or DEFAULT_OUTPUT_PATH)


def build_render_url(base_url: str, path: str = "") -> str:
    """Base URL plus page path, with the cache bypass marker appended."""
    url = base_url.rstrip("/") + "/" + path.lstrip("/")
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{CACHE_BYPASS_MARKER}"


def write_artifact(output_root: Union[str, Path], filename: str, css: str) -> str:
    """Write a generated stylesheet; returns its manifest path."""
    target = Path(output_root) / ARTIFACT_DIR / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(css, encoding="utf-8")
    logger.info("Saved {}", target)
    return f"{ARTIFACT_DIR}/{filename}"


def _new_results(mode: str) -> Dict[str, Any]:
    return {
        "mode": mode,
        "status": "running",
        "started_at": datetime.now(timezone.utc).isoformat(),
        "completed_at": None,
        "sites_processed": 0,
        "sites_skipped": 0,
        "units_planned": 0,
        "units_generated": 0,
        "units_failed": 0,
        "units_skipped": 0,
        "artifacts": [],
        "errors": [],
    }


def _finish(results: Dict[str, Any]) -> Dict[str, Any]:
    if results["units_failed"] and not results["units_generated"]:
        status = "failed"
    elif results["units_failed"] or results["units_skipped"]:
        status = "partial" if results["units_generated"] else "skipped"
    elif not results["units_generated"]:
        status = "skipped"
    elif results["errors"]:
        # Unit generated, but a secondary artifact (deferred CSS) or a site failed
        status = "partial"
    else:
        status = "completed"

    results["status"] = status
    results["completed_at"] = datetime.now(timezone.utc).isoformat()
    return results


def _log_unit_error(
    results: Dict[str, Any],
    error: Union[str, Exception],
    counter: Optional[str] = "units_failed",
    count: int = 1,
    site: Optional[str] = None,
    template: Optional[str] = None,
    pid: Optional[str] = None,
    url: Optional[str] = None,
) -> None:
    logger.error("Skipping site={} template={} pid={} url={}: {}", site, template, pid, url, error)
    results["errors"].append(
        {"site": site, "template": template, "pid": pid, "url": url, "error": str(error)}
    )
    if counter:
        results[counter] += count


def _prepare_entry(
    manifest: BuildManifest,
    config: Dict[str, Any],
    site: str,
    template: str,
    output_root: Path,
) -> Tuple[ManifestEntry, Optional[str], str]:
    """Locate the manifest entry of a template and load its CSS sources."""
    name = entry_name(site, template, config.get("ENTRY_NAME_SUFFIX") or "")
    entry = find_entry(manifest, name)
    if entry is None:
        raise ManifestLookupError(f"No matching entry found for {name} in the Vite manifest")

    content_hash = extract_hash(entry)
    if content_hash:
        logger.info("Extracted file hash for {}: {}", name, content_hash)

    sources = collect_css_sources(entry, output_root)
    if not sources:
        raise ManifestLookupError(f"No CSS files found for {name}")

    return entry, content_hash, read_css_sources(sources)


def run_single(
    config: Dict[str, Any],
    site: str,
    template: str,
    environment: str,
    output_path: Optional[str] = None,
    renderer=None,
) -> Dict[str, Any]:
    """Generate critical and deferred CSS for one site template.

    Args:
        config: Global configuration
        site: Site identifier
        template: Template name; the manifest entry is `{site}_{template}`
        environment: Environment used to pick the base URL
        output_path: Build output root, defaults to VITE_OUTPUT_PATH
        renderer: Render delegate, defaults to a PageRenderer from config

    Returns:
        Dictionary with run status, counters, artifacts and errors.

    Raises:
        ConfigError: If the site cannot be configured or is disabled.
        ManifestLookupError: If the manifest file is missing or unreadable.
    """
    output_root = resolve_output_root(config, output_path)
    results = _new_results("single")
    results["units_planned"] = 1

    site_config = load_site_config(get_sites_dir(config), site)
    settings = resolve_settings(config, site_config, environment)
    if settings is None:
        raise ConfigError(f"Critical CSS is disabled in the configuration of site '{site}'")

    manifest = load_manifest(manifest_path(output_root))
    context = {"site": site, "template": template}

    try:
        entry, content_hash, css_text = _prepare_entry(manifest, config, site, template, output_root)
    except ManifestLookupError as e:
        _log_unit_error(results, e, counter="units_skipped", **context)
        return _finish(results)

    url = build_render_url(settings.base_url)
    renderer = renderer or build_renderer(config)
    try:
        raw_css = renderer.render(url, css_text, settings)
        critical_css = process_critical_css(
            raw_css, settings, entry.assets, relative_output_path(output_root)
        )
        critical_path = write_artifact(
            output_root, artifact_filename(site, template, "critical", content_hash), critical_css
        )
    except Exception as e:
        _log_unit_error(results, e, url=url, **context)
        return _finish(results)

    record_artifact(entry, "critical", critical_path)
    results["artifacts"].append(critical_path)
    logger.info("Critical CSS generated for {}_{}", site, template)

    try:
        deferred_css = compute_deferred(critical_css, css_text)
        deferred_path = write_artifact(
            output_root, artifact_filename(site, template, "deferred", content_hash), deferred_css
        )
    except (CssProcessingError, OSError) as e:
        logger.error("Error generating deferred CSS for {}_{}: {}", site, template, e)
        results["errors"].append({**context, "pid": None, "url": url, "error": str(e)})
    else:
        record_artifact(entry, "deferred", deferred_path)
        results["artifacts"].append(deferred_path)

    flush_manifest(manifest)
    results["units_generated"] = 1
    return _finish(results)


def _process_pid(
    results: Dict[str, Any],
    renderer,
    settings: EffectiveSettings,
    entry: ManifestEntry,
    content_hash: Optional[str],
    css_text: str,
    output_root: Path,
    template: str,
    pid: str,
    slug: Optional[str],
) -> None:
    context = {"site": settings.site, "template": template, "pid": pid}
    if slug is None:
        _log_unit_error(results, "No slug resolved", counter="units_skipped", **context)
        return

    url = build_render_url(settings.base_url, slug)
    try:
        logger.info("Processing: {} / {} / pid {} ({})", settings.site, template, pid, url)
        raw_css = renderer.render(url, css_text, settings)
        critical_css = process_critical_css(
            raw_css, settings, entry.assets, relative_output_path(output_root)
        )
        filename = artifact_filename(settings.site, template, "critical", content_hash, pid=pid)
        path = write_artifact(output_root, filename, critical_css)
    except Exception as e:
        _log_unit_error(results, e, url=url, **context)
        return

    record_artifact(entry, "critical", path, pid=pid)
    results["artifacts"].append(path)
    results["units_generated"] += 1


def _process_site(
    results: Dict[str, Any],
    config: Dict[str, Any],
    manifest: BuildManifest,
    site: str,
    environment: str,
    output_root: Path,
    renderer,
    slug_resolver: SlugResolver,
) -> None:
    try:
        site_config = load_site_config(get_sites_dir(config), site)
        settings = resolve_settings(config, site_config, environment)
    except ConfigError as e:
        _log_unit_error(results, e, counter="sites_skipped", site=site)
        return

    if settings is None:
        results["sites_skipped"] += 1
        return
    if not site_config.entry_point_for_pid:
        logger.warning("No entryPointForPid configured for site '{}'", site)
        results["sites_skipped"] += 1
        return

    results["sites_processed"] += 1
    slugs = slug_resolver.resolve(site, unique_pids(site_config.entry_point_for_pid))

    for template, pid_list in site_config.entry_point_for_pid.items():
        pids = parse_pid_list(pid_list)
        results["units_planned"] += len(pids)

        try:
            entry, content_hash, css_text = _prepare_entry(manifest, config, site, template, output_root)
        except ManifestLookupError as e:
            _log_unit_error(
                results, e, counter="units_skipped", count=len(pids), site=site, template=template
            )
            continue

        for pid in pids:
            _process_pid(
                results,
                renderer,
                settings,
                entry,
                content_hash,
                css_text,
                output_root,
                template,
                pid,
                slugs.get(pid),
            )


def run_batch(
    config: Dict[str, Any],
    environment: str,
    output_path: Optional[str] = None,
    renderer=None,
    slug_resolver: Optional[SlugResolver] = None,
) -> Dict[str, Any]:
    """Generate per-page critical CSS for every enabled site.

    Failures are contained to the unit (pid), template or site they occur in.
    The manifest is written exactly once, after the loop, also when the loop
    is aborted by an unexpected exception.

    Raises:
        ManifestLookupError: If the manifest file is missing or unreadable.
    """
    output_root = resolve_output_root(config, output_path)
    results = _new_results("batch")

    manifest = load_manifest(manifest_path(output_root))
    renderer = renderer or build_renderer(config)
    slug_resolver = slug_resolver or build_slug_resolver(config)

    sites = discover_sites(get_sites_dir(config))
    logger.info("Batch run over {} site(s) for environment '{}'", len(sites), environment)

    try:
        for site in sites:
            try:
                _process_site(
                    results, config, manifest, site, environment, output_root, renderer, slug_resolver
                )
            except Exception as e:
                _log_unit_error(results, e, counter="sites_skipped", site=site)
    finally:
        flush_manifest(manifest)

    return _finish(results)
