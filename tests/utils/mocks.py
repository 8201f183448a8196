"""
Test Mocks
==========

Stand-ins for Playwright browsers and pages, plus small data builders.
"""

import base64
import io
from typing import Any, Iterable, List, Optional
from unittest.mock import AsyncMock, MagicMock

from PIL import Image  # type: ignore

from mermaid_docs.config.settings import Settings
from mermaid_docs.core.rendering.browser_pool import BrowserPool
from mermaid_docs.core.rendering.diagram_renderer import CONTAINER_SELECTOR, SVG_SELECTOR
from mermaid_docs.models.schemas import DiagramInfo, DiagramType, ImageFormat, RenderedDiagram

__all__ = [
    "SVG_MARKUP",
    "make_png",
    "make_page",
    "make_browser",
    "make_pool",
    "make_rendered",
]

SVG_MARKUP = '<svg id="diagram-svg" xmlns="http://www.w3.org/2000/svg"><g></g></svg>'


def make_png(width: int = 120, height: int = 80) -> bytes:
    """Real PNG bytes so Pillow can read the size back."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "white").save(buffer, format="PNG")
    return buffer.getvalue()


def make_page(
    screenshot: Optional[bytes] = None,
    svg_markup: str = SVG_MARKUP,
    render_error: Optional[str] = None,
    pdf: bytes = b"%PDF-1.4 test document",
    svg_present: bool = True,
) -> MagicMock:
    """Page whose Mermaid render already completed."""
    page = MagicMock(name="page")
    page.set_content = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.wait_for_function = AsyncMock()
    page.close = AsyncMock()
    page.set_default_timeout = MagicMock()
    page.evaluate = AsyncMock(return_value=render_error)
    page.pdf = AsyncMock(return_value=pdf)

    svg = MagicMock(name="svg")
    svg.evaluate = AsyncMock(return_value=svg_markup)
    svg.bounding_box = AsyncMock(return_value={"x": 0, "y": 0, "width": 100.4, "height": 50.0})

    container = MagicMock(name="container")
    container.screenshot = AsyncMock(return_value=screenshot or make_png())

    async def query_selector(selector: str) -> Any:
        if selector == SVG_SELECTOR:
            return svg if svg_present else None
        if selector == CONTAINER_SELECTOR:
            return container
        return None

    page.query_selector = AsyncMock(side_effect=query_selector)
    page.svg = svg
    page.container = container
    return page


def make_browser(page: Optional[MagicMock] = None) -> MagicMock:
    """Connected browser opening ``page`` on new_page."""
    browser = MagicMock(name="browser")
    browser.is_connected = MagicMock(return_value=True)
    browser.on = MagicMock()
    browser.close = AsyncMock()
    browser.contexts = []
    browser.new_page = AsyncMock(return_value=page if page is not None else make_page())
    return browser


def make_pool(
    settings: Settings, browsers: Iterable[MagicMock], pool_size: Optional[int] = None
) -> BrowserPool:
    """Real BrowserPool whose launches hand out the given mock browsers."""
    pool = BrowserPool(pool_size=pool_size, settings=settings)
    launched: List[MagicMock] = list(browsers)
    pool._launch = AsyncMock(side_effect=launched)  # type: ignore[method-assign]
    return pool


def make_rendered(
    source: str = "graph TD\nA-->B",
    index: int = 0,
    image_format: ImageFormat = ImageFormat.PNG,
    data: bytes = b"rendered-image",
    fallback: bool = False,
    error_message: Optional[str] = None,
) -> RenderedDiagram:
    return RenderedDiagram(
        info=DiagramInfo(index=index, source=source, diagram_type=DiagramType.FLOWCHART),
        image_data=base64.b64encode(data).decode("ascii"),
        format=image_format,
        width=120,
        height=80,
        fallback=fallback,
        error_message=error_message,
    )
