"""
Unit Tests for Diagram Service
==============================

Cache-first rendering, operation timeouts and idle reclamation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from mermaid_docs.core.cache.content_cache import ContentCache
from mermaid_docs.core.service import DiagramService, OperationTimeout
from mermaid_docs.models.schemas import ImageFormat, OperationKind

from tests.utils.mocks import make_browser, make_pool, make_rendered

SOURCE = "graph TD\nA-->B"


def idle_pool(size: int = 1) -> MagicMock:
    pool = MagicMock(name="pool")
    pool.size = size
    pool.destroy_all = AsyncMock()
    return pool


class TestRenderDiagram:
    """Test cache-first rendering."""

    @pytest.mark.asyncio
    async def test_repeat_render_served_from_cache(self, diagram_service, mock_renderer):
        first = await diagram_service.render_diagram(SOURCE, ImageFormat.PNG, "A4", index=0)
        second = await diagram_service.render_diagram(SOURCE, ImageFormat.PNG, "A4", index=4)

        assert mock_renderer.render.await_count == 1
        assert second.image_data == first.image_data
        assert second.info.index == 4
        assert diagram_service.cache_stats().hits == 1

    @pytest.mark.asyncio
    async def test_page_size_and_format_are_part_of_the_key(self, diagram_service, mock_renderer):
        await diagram_service.render_diagram(SOURCE, ImageFormat.PNG, "A4")
        await diagram_service.render_diagram(SOURCE, ImageFormat.PNG, "Legal")
        await diagram_service.render_diagram(SOURCE, ImageFormat.SVG, "A4")

        assert mock_renderer.render.await_count == 3

    @pytest.mark.asyncio
    async def test_cache_can_be_bypassed(self, diagram_service, mock_renderer):
        await diagram_service.render_diagram(SOURCE, use_cache=False)
        await diagram_service.render_diagram(SOURCE, use_cache=False)

        assert mock_renderer.render.await_count == 2
        assert diagram_service.cache_stats().total_entries == 0

    @pytest.mark.asyncio
    async def test_placeholder_renders_are_not_cached(self, diagram_service, mock_renderer):
        mock_renderer.render.side_effect = None
        mock_renderer.render.return_value = make_rendered(fallback=True, error_message="bad")

        await diagram_service.render_diagram(SOURCE)
        await diagram_service.render_diagram(SOURCE)

        assert mock_renderer.render.await_count == 2

    @pytest.mark.asyncio
    async def test_default_page_size(self, diagram_service, mock_renderer, test_settings):
        await diagram_service.render_diagram(SOURCE)

        args = mock_renderer.render.await_args
        assert args.args[2] == test_settings.default_page_size

    @pytest.mark.asyncio
    async def test_renders_without_cache(self, settings_factory, mock_renderer):
        settings = settings_factory(cache_enabled=False)
        service = DiagramService(settings, browser_pool=idle_pool(), renderer=mock_renderer)

        assert service.cache is None
        await service.render_diagram(SOURCE)
        await service.render_diagram(SOURCE)

        assert mock_renderer.render.await_count == 2
        assert service.cache_stats().total_entries == 0

    @pytest.mark.asyncio
    async def test_clear_cache(self, diagram_service):
        await diagram_service.render_diagram(SOURCE)

        await diagram_service.clear_cache()

        assert diagram_service.cache_stats().total_entries == 0


class TestRenderConcurrency:
    """Test that callers queue in front of the fail-fast pool."""

    @pytest.mark.asyncio
    async def test_renders_beyond_pool_size_wait(self, settings_factory):
        settings = settings_factory(browser_pool_size=1)
        active = 0
        peak = 0

        async def slow_render(source, image_format, page_size, index=0):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return make_rendered(source=source, index=index)

        renderer = MagicMock(render=AsyncMock(side_effect=slow_render))
        service = DiagramService(settings, browser_pool=idle_pool(), renderer=renderer)

        await asyncio.gather(*(service.render_diagram(f"graph TD\nA{i}-->B") for i in range(4)))

        assert peak == 1
        assert renderer.render.await_count == 4

    @pytest.mark.asyncio
    async def test_browser_borrowing_releases(self, test_settings):
        browser = make_browser()
        pool = make_pool(test_settings, [browser])
        service = DiagramService(test_settings, browser_pool=pool, cache=ContentCache(test_settings))

        async with service.browser() as borrowed:
            assert borrowed is browser
            assert pool.in_use_count == 1

        assert pool.in_use_count == 0


class TestOperations:
    """Test tiered timeouts."""

    def test_timeouts_by_kind(self, diagram_service, test_settings):
        assert diagram_service.operation_timeout(OperationKind.VALIDATION) == 30
        assert diagram_service.operation_timeout(OperationKind.EXTRACTION) == 120
        assert diagram_service.operation_timeout(OperationKind.CONVERSION) == 300

    @pytest.mark.asyncio
    async def test_operation_result(self, diagram_service):
        assert await diagram_service.run_operation(
            OperationKind.VALIDATION, asyncio.sleep(0, result="done")
        ) == "done"

    @pytest.mark.asyncio
    async def test_operation_timeout(self, settings_factory):
        settings = settings_factory(validation_timeout=0.05)
        service = DiagramService(settings, browser_pool=idle_pool(), renderer=MagicMock())

        with pytest.raises(OperationTimeout) as exc_info:
            await service.run_operation(OperationKind.VALIDATION, asyncio.sleep(1))

        assert exc_info.value.kind is OperationKind.VALIDATION
        assert "Validation timed out" in str(exc_info.value)


class TestIdleShutdown:
    """Test idle reclamation of the browser pool."""

    @pytest.mark.asyncio
    async def test_pool_torn_down_after_idle_period(self, settings_factory):
        pool = idle_pool()
        service = DiagramService(
            settings_factory(idle_shutdown_seconds=0.05), browser_pool=pool, renderer=MagicMock()
        )

        await service.run_operation(OperationKind.VALIDATION, asyncio.sleep(0))
        assert service.idle_shutdown_pending

        await asyncio.sleep(0.15)

        pool.destroy_all.assert_awaited_once()
        assert not service.idle_shutdown_pending

    @pytest.mark.asyncio
    async def test_new_activity_cancels_pending_teardown(self, settings_factory):
        pool = idle_pool()
        service = DiagramService(
            settings_factory(idle_shutdown_seconds=0.1), browser_pool=pool, renderer=MagicMock()
        )

        await service.run_operation(OperationKind.VALIDATION, asyncio.sleep(0))
        await asyncio.sleep(0.05)
        await service.run_operation(OperationKind.VALIDATION, asyncio.sleep(0.1))

        await asyncio.sleep(0.02)
        pool.destroy_all.assert_not_awaited()

        await service.shutdown()
        pool.destroy_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_pool_is_left_alone(self, settings_factory):
        pool = idle_pool(size=0)
        service = DiagramService(
            settings_factory(idle_shutdown_seconds=0.01), browser_pool=pool, renderer=MagicMock()
        )

        await service.run_operation(OperationKind.VALIDATION, asyncio.sleep(0))
        await asyncio.sleep(0.05)

        pool.destroy_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_idle_shutdown(self, diagram_service):
        await diagram_service.run_operation(OperationKind.VALIDATION, asyncio.sleep(0))

        assert not diagram_service.idle_shutdown_pending

    @pytest.mark.asyncio
    async def test_context_manager_shuts_down(self, settings_factory):
        pool = idle_pool()
        async with DiagramService(settings_factory(), browser_pool=pool, renderer=MagicMock()):
            pass

        pool.destroy_all.assert_awaited_once()
