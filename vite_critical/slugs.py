"""Resolution of page ids (PIDs) to URL paths through the host CMS."""

import json
import shlex
import subprocess
from typing import Any, Dict, List, Optional, Sequence, Union

from loguru import logger


DEFAULT_SLUG_COMMAND = "vendor/bin/typo3 vite-critical:getslugs"


class ExternalToolError(Exception):
    """Raised when the slug resolution command fails."""
    pass


class SlugResolver:
    """Base interface: map PIDs of a site to URL paths (leading slash)."""

    def resolve(self, site: str, pids: Sequence[str]) -> Dict[str, str]:
        raise NotImplementedError


class CommandSlugResolver(SlugResolver):
    """Runs `{command} --site {site} --pids {1,2,3}` and parses its JSON output."""

    def __init__(
        self,
        command: Union[str, Sequence[str]] = DEFAULT_SLUG_COMMAND,
        cwd: Optional[str] = None,
        timeout_seconds: float = 60,
    ):
        self.command: List[str] = shlex.split(command) if isinstance(command, str) else list(command)
        self.cwd = cwd
        self.timeout_seconds = timeout_seconds

    def _run(self, site: str, pids: Sequence[str]) -> Dict[str, str]:
        args = [*self.command, "--site", site, "--pids", ",".join(pids)]
        logger.debug("Resolving slugs: {}", " ".join(args))

        try:
            completed = subprocess.run(
                args,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ExternalToolError(f"Slug command could not run: {e}") from e

        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()
            raise ExternalToolError(f"Slug command failed ({completed.returncode}): {detail}")

        try:
            payload: Any = json.loads(completed.stdout)
        except ValueError as e:
            raise ExternalToolError(f"Slug command returned invalid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise ExternalToolError(f"Slug command returned {type(payload).__name__}, expected an object")

        return {str(pid): path for pid, path in payload.items() if isinstance(path, str)}

    def resolve(self, site: str, pids: Sequence[str]) -> Dict[str, str]:
        """Resolve PIDs; any failure yields an empty mapping."""
        if not pids:
            return {}
        try:
            slugs = self._run(site, pids)
        except ExternalToolError as e:
            logger.warning("No slugs resolved for site '{}' (pids={}): {}", site, ",".join(pids), e)
            return {}

        missing = [pid for pid in pids if pid not in slugs]
        if missing:
            logger.warning("Slugs missing for site '{}': pids {}", site, ",".join(missing))
        logger.info("Resolved {} slug(s) for site '{}'", len(slugs), site)
        return slugs


def build_slug_resolver(config: Dict[str, Any]) -> SlugResolver:
    return CommandSlugResolver(
        command=config.get("SLUG_COMMAND") or DEFAULT_SLUG_COMMAND,
        cwd=config.get("PROJECT_ROOT") or None,
        timeout_seconds=float(config.get("SLUG_TIMEOUT") or 60),
    )
