"""Vite build manifest lookup and artifact bookkeeping."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger


MANIFEST_RELATIVE_PATH = Path(".vite") / "manifest.json"
ARTIFACT_DIR = "assets"
HASH_PLACEHOLDER = "nohash"
ARTIFACT_KINDS = ("critical", "deferred")

_HASH_PATTERN = re.compile(r"-(\w+)\.(css|js)$")


class ManifestLookupError(Exception):
    """Raised when the manifest or one of its entries cannot be used."""
    pass


@dataclass
class ManifestEntry:
    """One chunk of the Vite manifest.

    `raw` keeps the entry as read from disk so unknown keys survive a flush.
    """

    key: str
    file: str
    name: Optional[str] = None
    src: Optional[str] = None
    is_entry: bool = False
    is_dynamic_entry: bool = False
    css: List[str] = field(default_factory=list)
    assets: List[str] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)
    dynamic_imports: List[str] = field(default_factory=list)
    critical: Optional[str] = None
    deferred: Optional[str] = None
    critical_by_pid: Dict[str, str] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, key: str, item: Dict[str, Any]) -> "ManifestEntry":
        return cls(
            key=key,
            file=str(item.get("file") or ""),
            name=item.get("name"),
            src=item.get("src"),
            is_entry=bool(item.get("isEntry", False)),
            is_dynamic_entry=bool(item.get("isDynamicEntry", False)),
            css=list(item.get("css") or []),
            assets=list(item.get("assets") or []),
            imports=list(item.get("imports") or []),
            dynamic_imports=list(item.get("dynamicImports") or []),
            critical=item.get("critical") or None,
            deferred=item.get("deferred") or None,
            critical_by_pid={str(k): str(v) for k, v in (item.get("criticalByPid") or {}).items()},
            raw=dict(item),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.raw)
        if self.critical:
            data["critical"] = self.critical
        if self.deferred:
            data["deferred"] = self.deferred
        if self.critical_by_pid:
            data["criticalByPid"] = dict(self.critical_by_pid)
        return data

    def is_css(self) -> bool:
        return self.file.endswith(".css")


@dataclass
class BuildManifest:
    path: Path
    entries: Dict[str, ManifestEntry]
    flush_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {key: entry.to_dict() for key, entry in self.entries.items()}


def manifest_path(output_root: Union[str, Path]) -> Path:
    return Path(output_root) / MANIFEST_RELATIVE_PATH


def load_manifest(path: Union[str, Path]) -> BuildManifest:
    """Read the manifest JSON from disk."""
    path = Path(path)
    if not path.exists():
        raise ManifestLookupError(f"Manifest file not found at {path}")

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ManifestLookupError(f"Unable to read manifest {path}: {e}") from e

    if not isinstance(data, dict):
        raise ManifestLookupError(f"Manifest {path} is not a JSON object")

    entries = {
        str(key): ManifestEntry.from_dict(str(key), item)
        for key, item in data.items()
        if isinstance(item, dict)
    }
    logger.info("Loaded Vite manifest from {} ({} entries)", path, len(entries))
    return BuildManifest(path=path, entries=entries)


def entry_name(site: str, template: str, suffix: str = "") -> str:
    """Logical manifest name for a site template, e.g. `acme_home`."""
    name = f"{site}_{template}"
    if suffix and not name.endswith(suffix):
        name += suffix
    return name


def find_entry(manifest: BuildManifest, name: str) -> Optional[ManifestEntry]:
    """Exact match on the entry's `name` field."""
    for entry in manifest.entries.values():
        if entry.name == name:
            return entry
    return None


def extract_hash(entry: ManifestEntry) -> Optional[str]:
    """Content hash embedded in the entry's build filename."""
    match = _HASH_PATTERN.search(entry.file) if entry.file else None
    if not match:
        logger.warning("No content hash found in '{}' ({})", entry.file, entry.name)
        return None
    return match.group(1)


def collect_css_sources(entry: ManifestEntry, output_root: Union[str, Path]) -> List[Path]:
    files = list(entry.css)
    if entry.is_css():
        files.append(entry.file)
    return [Path(output_root) / file for file in files]


def artifact_filename(
    site: str,
    template: str,
    kind: str,
    content_hash: Optional[str],
    pid: Optional[str] = None,
) -> str:
    """`{site}_{template}[-pid]-{kind}-{hash}.css`"""
    if kind not in ARTIFACT_KINDS:
        raise ValueError(f"Unknown artifact kind: {kind}")
    pid_part = f"-{pid}" if pid else ""
    return f"{site}_{template}{pid_part}-{kind}-{content_hash or HASH_PLACEHOLDER}.css"


def record_artifact(entry: ManifestEntry, kind: str, path: str, pid: Optional[str] = None) -> None:
    """Store a generated artifact path on the in-memory entry."""
    if kind not in ARTIFACT_KINDS:
        raise ValueError(f"Unknown artifact kind: {kind}")

    if pid is not None:
        if kind != "critical":
            raise ValueError("Only critical artifacts are tracked per pid")
        entry.critical_by_pid[str(pid)] = path
    elif kind == "critical":
        entry.critical = path
    else:
        entry.deferred = path
    logger.debug("Recorded {} artifact for '{}' (pid={}): {}", kind, entry.name, pid, path)


def flush_manifest(manifest: BuildManifest, path: Optional[Union[str, Path]] = None) -> Path:
    """Rewrite the whole manifest file."""
    target = Path(path) if path is not None else manifest.path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(manifest.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8")
    manifest.flush_count += 1
    logger.info("manifest.json updated: {}", target)
    return target
