"""
Test Configuration
==================

Pytest configuration with shared fixtures: isolated settings, mocked
Playwright objects and a DiagramService wired to a mock renderer.
"""

from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from mermaid_docs.config.settings import Settings
from mermaid_docs.core.cache.content_cache import ContentCache
from mermaid_docs.core.service import DiagramService

from tests.utils.mocks import make_browser, make_page, make_pool, make_rendered


@pytest.fixture
def settings_factory(tmp_path: Path) -> Callable[..., Settings]:
    """Build Settings isolated from the environment and the user's cache."""

    def factory(**overrides: Any) -> Settings:
        values: Dict[str, Any] = {
            "environment": "testing",
            "log_level": "DEBUG",
            "browser_pool_size": 2,
            "cache_dir": tmp_path / "cache",
            "cache_persist": False,
            "idle_shutdown_seconds": 0,
            "render_timeout": 5.0,
            "very_complex_render_timeout": 9.0,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def test_settings(settings_factory: Callable[..., Settings]) -> Settings:
    return settings_factory()


@pytest.fixture
def mock_page() -> MagicMock:
    return make_page()


@pytest.fixture
def mock_browser(mock_page: MagicMock) -> MagicMock:
    return make_browser(mock_page)


@pytest.fixture
def mock_renderer() -> MagicMock:
    """Renderer answering every source with a small PNG."""
    renderer = MagicMock(name="renderer")

    async def render(
        source: str, image_format: Any = "png", page_size: Any = None, index: int = 0
    ) -> Any:
        return make_rendered(source=source, index=index, image_format=image_format)

    renderer.render = AsyncMock(side_effect=render)
    return renderer


@pytest_asyncio.fixture
async def diagram_service(
    test_settings: Settings, mock_browser: MagicMock, mock_renderer: MagicMock
) -> AsyncGenerator[DiagramService, None]:
    """DiagramService with a mock renderer and a pool of mock browsers."""
    service = DiagramService(
        test_settings,
        browser_pool=make_pool(test_settings, [mock_browser]),
        cache=ContentCache(test_settings),
        renderer=mock_renderer,
    )
    yield service
    await service.shutdown()
