"""
Diagram Renderer
================

Render Mermaid source to PNG, JPEG or SVG inside a pooled headless browser.

Each render borrows one browser from the pool, opens a page sized by the
DiagramAnalyzer, loads the Mermaid library, waits for the in-page completion
flag and extracts the result. The page is always closed and the browser
always released, also when the caller cancels the render.
"""

import asyncio
import base64
import io
import time
from pathlib import Path
from typing import Any, Optional, Tuple

import jinja2
from PIL import Image  # type: ignore
from playwright.async_api import Browser, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from mermaid_docs.config.logging import get_logger
from mermaid_docs.config.settings import Settings, get_settings
from mermaid_docs.core.rendering.browser_pool import BrowserPool
from mermaid_docs.core.rendering.diagram_analyzer import DiagramAnalyzer
from mermaid_docs.core.rendering.errors import (
    DiagramNotFound,
    DiagramRenderError,
    DiagramRenderFailed,
    RenderTimeout,
)
from mermaid_docs.models.schemas import (
    ComplexityLevel,
    DiagramAnalysis,
    DiagramInfo,
    ImageFormat,
    RenderedDiagram,
)

logger = get_logger(__name__)

CONTAINER_SELECTOR = "#diagram-container"
SVG_SELECTOR = "#diagram-container svg"
PLACEHOLDER_MARKER = "diagram-render-error"

LIBRARY_READY_CHECK = (
    "() => typeof window.mermaid !== 'undefined' && typeof window.mermaid.render === 'function'"
)
RENDER_COMPLETE_CHECK = "() => window.renderComplete === true"
RENDER_ERROR_QUERY = "() => window.renderError"


class MermaidRenderer:
    """Playwright-based Mermaid renderer."""

    def __init__(
        self,
        browser_pool: BrowserPool,
        analyzer: Optional[DiagramAnalyzer] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.browser_pool = browser_pool
        self.analyzer = analyzer or DiagramAnalyzer()
        self.logger: Any = logger.bind(component="mermaid_renderer")
        self._setup_jinja2_environment()

    def _setup_jinja2_environment(self) -> None:
        template_dir = Path(__file__).parent / "templates"
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            autoescape=True,
        )

    def stage_timeout(self, analysis: DiagramAnalysis) -> float:
        """Seconds allowed for each of the two in-page waits."""
        if analysis.complexity is ComplexityLevel.VERY_COMPLEX:
            return self.settings.very_complex_render_timeout
        return self.settings.render_timeout

    def build_html(self, source: str, analysis: DiagramAnalysis) -> str:
        """Render page embedding the source and the analyzer's Mermaid config."""
        template = self.env.get_template("diagram.html.j2")
        return template.render(
            script_url=self.settings.mermaid_script_url,
            source=source,
            config=analysis.render_library_config,
            diagram_type=analysis.type.value,
            placeholder_marker=PLACEHOLDER_MARKER,
            placeholder_width=max(analysis.estimated_dimensions.width, 320),
        )

    async def render(
        self,
        source: str,
        image_format: ImageFormat = ImageFormat.PNG,
        page_size: Optional[str] = "A4",
        index: int = 0,
    ) -> RenderedDiagram:
        """
        Render one diagram.

        Args:
            source: Mermaid diagram source
            image_format: Output format
            page_size: Page size used to bound the diagram dimensions
            index: Position of the diagram in its document

        Returns:
            RenderedDiagram; ``fallback`` is set when Mermaid rejected the source
            and the page drew the error placeholder instead

        Raises:
            PoolExhausted: If no browser can be borrowed
            BrowserLaunchError: If a browser could not be launched
            RenderTimeout: If the library or the render did not finish in time
            DiagramNotFound: If the page produced no diagram element
            DiagramRenderFailed: On any other page failure
        """
        image_format = ImageFormat(image_format)
        analysis = self.analyzer.analyze(source, page_size)
        timeout = self.stage_timeout(analysis)

        self.logger.info(
            "Rendering diagram",
            index=index,
            diagram_type=analysis.type.value,
            complexity=analysis.complexity.value,
            format=image_format.value,
        )

        browser = await self.browser_pool.acquire()
        page: Optional[Page] = None
        try:
            viewport = analysis.recommended_viewport
            page = await browser.new_page(
                viewport={"width": viewport.width, "height": viewport.height},
                device_scale_factor=viewport.device_scale_factor,
            )
            page.set_default_timeout(timeout * 1000)

            await self._load(page, self.build_html(source, analysis), timeout)
            await self._wait_stage(page, LIBRARY_READY_CHECK, RenderTimeout.LIBRARY_READY, timeout)
            await self._wait_stage(
                page, RENDER_COMPLETE_CHECK, RenderTimeout.RENDER_COMPLETE, timeout
            )

            image_data, width, height, placeholder = await self._extract(page, image_format)
            render_error = await page.evaluate(RENDER_ERROR_QUERY)
            if placeholder and not render_error:
                render_error = "Mermaid drew its error placeholder"

            if render_error:
                self.logger.warning(
                    "Mermaid rejected diagram, returning placeholder",
                    index=index,
                    error=render_error,
                )

            return RenderedDiagram(
                info=DiagramInfo(index=index, source=source, diagram_type=analysis.type),
                image_data=image_data,
                format=image_format,
                width=width,
                height=height,
                fallback=bool(render_error),
                error_message=render_error or None,
            )

        except DiagramRenderError:
            raise
        except Exception as e:
            self.logger.error("Diagram render failed", index=index, error=str(e))
            raise DiagramRenderFailed(f"Failed to render Mermaid diagram: {e}") from e
        finally:
            cleanup = asyncio.ensure_future(self._cleanup(browser, page))
            try:
                await asyncio.shield(cleanup)
            except asyncio.CancelledError:
                self.logger.debug("Render cancelled, cleanup continues in background")
                raise

    async def _load(self, page: Page, html: str, timeout: float) -> None:
        started = time.monotonic()
        try:
            await page.set_content(html, wait_until="domcontentloaded", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            elapsed = time.monotonic() - started
            self.logger.warning("Render page did not load", elapsed=round(elapsed, 3))
            raise RenderTimeout(RenderTimeout.PAGE_LOAD, timeout, elapsed)
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            # The library-ready wait below decides whether the script arrived.
            self.logger.debug("Network did not go idle before timeout")

    async def _wait_stage(self, page: Page, check: str, stage: str, timeout: float) -> None:
        started = time.monotonic()
        try:
            await page.wait_for_function(check, timeout=timeout * 1000)
        except PlaywrightTimeoutError:
            elapsed = time.monotonic() - started
            self.logger.warning("Render wait timed out", stage=stage, elapsed=round(elapsed, 3))
            raise RenderTimeout(stage, timeout, elapsed)

    async def _extract(
        self, page: Page, image_format: ImageFormat
    ) -> Tuple[str, int, int, bool]:
        """Encoded image, its size, and whether the page drew the error placeholder."""
        svg = await page.query_selector(SVG_SELECTOR)
        if svg is None:
            raise DiagramNotFound("Rendered diagram element not found")

        markup = await svg.evaluate("el => el.outerHTML")
        placeholder = is_placeholder_svg(markup)

        if image_format.is_vector:
            box = await svg.bounding_box()
            width, height = (int(box["width"]), int(box["height"])) if box else (0, 0)
            encoded = base64.b64encode(markup.encode("utf-8")).decode("ascii")
            return encoded, width, height, placeholder

        container = await page.query_selector(CONTAINER_SELECTOR)
        if container is None:
            raise DiagramNotFound("Diagram container not found")

        screenshot = await container.screenshot(type=image_format.value)
        width, height = image_size(screenshot)
        return base64.b64encode(screenshot).decode("ascii"), width, height, placeholder

    async def _cleanup(self, browser: Browser, page: Optional[Page]) -> None:
        if page is not None:
            try:
                await page.close()
            except Exception as e:
                self.logger.debug("Failed to close render page", error=str(e))
        try:
            await self.browser_pool.release(browser)
        except Exception as e:
            self.logger.warning("Failed to release browser", error=str(e))


def image_size(data: bytes) -> Tuple[int, int]:
    """Pixel size of a raster image, (0, 0) if it cannot be read."""
    try:
        with Image.open(io.BytesIO(data)) as image:  # type: ignore[attr-defined]
            return image.size
    except Exception as e:
        logger.debug("Could not read image size", error=str(e))
        return 0, 0


def is_placeholder_svg(markup: str) -> bool:
    """True if SVG markup is the in-page error placeholder."""
    return PLACEHOLDER_MARKER in markup
