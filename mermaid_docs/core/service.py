"""
Diagram Service
===============

Composition root for the rendering core. Owns one BrowserPool, one
ContentCache and one MermaidRenderer, and adds what long-lived hosts need:

- cache-first rendering with bounded concurrency in front of the fail-fast pool
- tiered overall timeouts per operation kind
- idle reclamation that tears the pool down between bursts of activity
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Optional, TypeVar

from playwright.async_api import Browser

from mermaid_docs.config.logging import get_logger
from mermaid_docs.config.settings import Settings, get_settings
from mermaid_docs.core.cache.content_cache import ContentCache
from mermaid_docs.core.rendering.browser_pool import BrowserPool
from mermaid_docs.core.rendering.diagram_analyzer import DiagramAnalyzer
from mermaid_docs.core.rendering.diagram_renderer import MermaidRenderer
from mermaid_docs.models.schemas import (
    CacheStats,
    DiagramAnalysis,
    ImageFormat,
    OperationKind,
    RenderedDiagram,
)

logger = get_logger(__name__)

T = TypeVar("T")


class OperationTimeout(Exception):
    """An operation exceeded its overall timeout."""

    def __init__(self, kind: OperationKind, timeout: float):
        super().__init__(f"{kind.value.capitalize()} timed out after {timeout:.0f}s")
        self.kind = kind
        self.timeout = timeout


class DiagramService:
    """Pool, cache and renderer wired together for one host process."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        browser_pool: Optional[BrowserPool] = None,
        cache: Optional[ContentCache] = None,
        renderer: Optional[MermaidRenderer] = None,
    ):
        self.settings = settings or get_settings()
        self.browser_pool = browser_pool or BrowserPool(settings=self.settings)
        self.analyzer = DiagramAnalyzer()
        self.cache = cache if cache is not None else (
            ContentCache(self.settings) if self.settings.cache_enabled else None
        )
        self.renderer = renderer or MermaidRenderer(
            self.browser_pool, self.analyzer, settings=self.settings
        )
        self.logger: Any = logger.bind(component="diagram_service")

        self._render_slots = asyncio.Semaphore(self.settings.pool_concurrency)
        self._active_operations = 0
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._idle_task: Optional["asyncio.Task[None]"] = None

    async def __aenter__(self) -> "DiagramService":
        if self.cache is not None:
            await self.cache.load_persisted()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    def analyze(self, source: str, page_size: Optional[str] = None) -> DiagramAnalysis:
        return self.analyzer.analyze(source, page_size or self.settings.default_page_size)

    async def render_diagram(
        self,
        source: str,
        image_format: ImageFormat = ImageFormat.PNG,
        page_size: Optional[str] = None,
        index: int = 0,
        use_cache: bool = True,
    ) -> RenderedDiagram:
        """
        Render a diagram, serving repeats from the cache.

        Placeholder renders (Mermaid rejected the source) are returned but
        not cached.
        """
        image_format = ImageFormat(image_format)
        page_size = page_size or self.settings.default_page_size
        cache = self.cache if use_cache else None
        key = cache.key_for(source, image_format.value, page_size) if cache is not None else None

        if cache is not None and key is not None:
            cached = await cache.get(key)
            if cached is not None:
                self.logger.debug("Diagram served from cache", index=index, key=key[:12])
                return cached.model_copy(
                    update={"info": cached.info.model_copy(update={"index": index})}
                )

        async with self._render_slots:
            rendered = await self.renderer.render(source, image_format, page_size, index=index)

        if cache is not None and key is not None and not rendered.fallback:
            await cache.set(key, rendered)
        return rendered

    @asynccontextmanager
    async def browser(self) -> AsyncGenerator[Browser, None]:
        """Borrow a pooled browser for work other than diagram rendering."""
        async with self._render_slots:
            async with self.browser_pool.get_browser() as browser:
                yield browser

    async def run_operation(self, kind: OperationKind, operation: Awaitable[T]) -> T:
        """
        Run an operation under its tiered timeout and the idle tracker.

        Raises:
            OperationTimeout: If the operation does not finish in time
        """
        timeout = self.operation_timeout(kind)
        self._begin_activity()
        try:
            return await asyncio.wait_for(operation, timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.error("Operation timed out", kind=kind.value, timeout=timeout)
            raise OperationTimeout(kind, timeout)
        finally:
            self._end_activity()

    def operation_timeout(self, kind: OperationKind) -> float:
        if kind is OperationKind.VALIDATION:
            return self.settings.validation_timeout
        elif kind is OperationKind.EXTRACTION:
            return self.settings.extraction_timeout
        elif kind is OperationKind.CONVERSION:
            return self.settings.conversion_timeout
        raise ValueError(f"Unknown operation kind: {kind}")

    def cache_stats(self) -> CacheStats:
        return self.cache.get_stats() if self.cache is not None else CacheStats()

    async def clear_cache(self) -> None:
        if self.cache is not None:
            await self.cache.clear()

    async def shutdown(self) -> None:
        """Cancel idle tracking and close every pooled browser."""
        self._cancel_idle_shutdown()
        if self._idle_task is not None and not self._idle_task.done():
            await self._idle_task
        await self.browser_pool.destroy_all()

    @property
    def idle_shutdown_pending(self) -> bool:
        return self._idle_handle is not None

    def _begin_activity(self) -> None:
        self._active_operations += 1
        self._cancel_idle_shutdown()

    def _end_activity(self) -> None:
        self._active_operations -= 1
        if self._active_operations == 0:
            self._schedule_idle_shutdown()

    def _schedule_idle_shutdown(self) -> None:
        delay = self.settings.idle_shutdown_seconds
        if delay <= 0:
            return
        self._cancel_idle_shutdown()
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(delay, self._on_idle)

    def _cancel_idle_shutdown(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle(self) -> None:
        self._idle_handle = None
        if self._active_operations or self.browser_pool.size == 0:
            return
        self.logger.info("Idle timeout reached, closing browser pool")
        self._idle_task = asyncio.ensure_future(self._idle_teardown())

    async def _idle_teardown(self) -> None:
        try:
            await self.browser_pool.destroy_all()
        except Exception as e:
            self.logger.warning("Idle teardown failed", error=str(e))
