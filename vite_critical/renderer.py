"""Render delegate: loads the target page and asks the critical-path extractor for CSS."""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests
from loguru import logger
from playwright.sync_api import Error as PlaywrightError, sync_playwright, TimeoutError as PlaywrightTimeout
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from vite_critical.config_loader import as_bool
from vite_critical.settings import EffectiveSettings


DEFAULT_EXTRACTOR_URL = "http://127.0.0.1:3000/critical"


class RenderError(Exception):
    """Raised when no critical CSS could be produced for a URL."""
    pass


@dataclass(frozen=True)
class RenderOptions:
    """Options forwarded to the critical-path extractor."""

    width: int
    height: int
    render_wait_time: int
    timeout: int
    block_js_requests: bool
    force_include: Tuple[str, ...] = ()
    strip_comments: bool = True
    max_base64_length: int = 1000
    properties_remove: Tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, settings: EffectiveSettings) -> "RenderOptions":
        return cls(
            width=settings.width,
            height=settings.height,
            render_wait_time=settings.render_wait_time,
            timeout=settings.timeout,
            block_js_requests=settings.block_js_requests,
            force_include=settings.force_include,
            strip_comments=settings.strip_comments,
            max_base64_length=settings.max_base64_length,
            properties_remove=settings.properties_remove,
        )

    def as_payload(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "renderWaitTime": self.render_wait_time,
            "timeout": self.timeout,
            "blockJSRequests": self.block_js_requests,
            "forceInclude": list(self.force_include),
            "stripComments": self.strip_comments,
            "maxEmbeddedBase64Length": self.max_base64_length,
            "propertiesToRemove": list(self.properties_remove),
        }


class CriticalPathExtractor:
    """Base interface for critical-path extraction services."""

    def extract(self, url: str, css: str, options: RenderOptions) -> str:
        raise NotImplementedError


class HttpCriticalPathExtractor(CriticalPathExtractor):
    """Extractor reached over HTTP: POST the URL, CSS and options, get CSS text back."""

    def __init__(
        self,
        endpoint: str = DEFAULT_EXTRACTOR_URL,
        timeout_seconds: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(requests.ConnectionError),
        reraise=True
    )
    def _post(self, payload: Dict[str, Any], timeout: float) -> requests.Response:
        return self.session.post(self.endpoint, json=payload, timeout=timeout)

    def extract(self, url: str, css: str, options: RenderOptions) -> str:
        payload = {"url": url, "cssString": css, **options.as_payload()}
        # Leave the extractor its own timeout plus the render wait before giving up
        timeout = self.timeout_seconds or (options.timeout + options.render_wait_time) / 1000.0 + 5

        try:
            response = self._post(payload, timeout)
        except requests.Timeout as e:
            raise RenderError(f"Critical-path extractor timed out for {url}") from e
        except requests.RequestException as e:
            raise RenderError(f"Critical-path extractor unreachable for {url}: {e}") from e

        if not response.ok:
            raise RenderError(
                f"Critical-path extractor returned HTTP {response.status_code} for {url}: {response.text[:200]}"
            )

        critical_css = response.text
        if not critical_css.strip():
            raise RenderError(f"Critical-path extractor returned no CSS for {url}")

        logger.info("Critical CSS extracted for {} ({} chars)", url, len(critical_css))
        return critical_css


class PageRenderer:
    """Loads a page in headless Chromium, then delegates critical CSS extraction.

    A browser is launched for every render call and always closed again.
    """

    def __init__(
        self,
        extractor: CriticalPathExtractor,
        executable_path: Optional[str] = None,
        headless: bool = True,
    ):
        self.extractor = extractor
        self.executable_path = executable_path
        self.headless = headless

        self.playwright = None
        self.browser = None

    def start(self, browser_args: Tuple[str, ...]):
        """Start the browser."""
        logger.info("Starting browser...")
        self.playwright = sync_playwright().start()

        launch_kwargs: Dict[str, Any] = {"headless": self.headless, "args": list(browser_args)}
        if self.executable_path:
            launch_kwargs["executable_path"] = self.executable_path
        self.browser = self.playwright.chromium.launch(**launch_kwargs)

    def stop(self):
        """Stop the browser and cleanup."""
        if self.browser:
            try:
                self.browser.close()
            except PlaywrightError as e:
                logger.debug("Browser close failed: {}", e)
        if self.playwright:
            try:
                self.playwright.stop()
            except PlaywrightError as e:
                logger.debug("Playwright stop failed: {}", e)
        self.browser = None
        self.playwright = None
        logger.info("Browser stopped")

    def _load_page(self, url: str, settings: EffectiveSettings) -> int:
        context = self.browser.new_context(viewport={"width": settings.width, "height": settings.height})
        try:
            page = context.new_page()
            page.set_default_timeout(settings.timeout)

            if settings.block_js_requests:
                page.route(
                    "**/*",
                    lambda route: route.abort()
                    if route.request.resource_type == "script"
                    else route.continue_(),
                )

            logger.info("Loading page: {}", url)
            response = page.goto(url, wait_until="networkidle", timeout=settings.timeout)
            status = response.status if response is not None else 0
            if 200 <= status < 300 and settings.render_wait_time > 0:
                page.wait_for_timeout(settings.render_wait_time)
            return status
        finally:
            context.close()

    def render(self, url: str, css: str, settings: EffectiveSettings) -> str:
        """Return raw critical CSS for `url`.

        Raises:
            RenderError: On navigation failure, a non-2xx response or an
                extractor failure.
        """
        try:
            self.start(settings.browser_args)
            status = self._load_page(url, settings)
        except PlaywrightTimeout as e:
            raise RenderError(f"Timed out loading {url}") from e
        except PlaywrightError as e:
            raise RenderError(f"Navigation failed for {url}: {e}") from e
        finally:
            self.stop()

        if not 200 <= status < 300:
            raise RenderError(f"Unexpected HTTP status {status} for {url}")

        logger.info("Page loaded ({}), extracting critical CSS...", status)
        return self.extractor.extract(url, css, RenderOptions.from_settings(settings))


def build_renderer(config: Dict[str, Any]) -> PageRenderer:
    """Default render delegate from the global configuration."""
    timeout = config.get("EXTRACTOR_TIMEOUT")
    extractor = HttpCriticalPathExtractor(
        endpoint=config.get("EXTRACTOR_URL") or DEFAULT_EXTRACTOR_URL,
        timeout_seconds=float(timeout) if timeout else None,
    )
    return PageRenderer(
        extractor=extractor,
        executable_path=config.get("BROWSER_EXECUTABLE") or None,
        headless=as_bool(config.get("HEADLESS"), True),
    )
