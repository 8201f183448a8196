"""
Rendering Errors
================

Error taxonomy for the diagram rendering core.

Per-diagram failures (RenderTimeout, DiagramNotFound, DiagramRenderFailed) are
converted into inline placeholders by the document layer. InfrastructureError
subclasses mean no diagram can render and propagate to the caller.
"""

from typing import Any, Dict, Optional


class DiagramRenderError(Exception):
    """Base exception for diagram rendering failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InfrastructureError(DiagramRenderError):
    """The rendering infrastructure itself is unavailable."""

    pass


class PoolExhausted(InfrastructureError):
    """Every pooled browser is on loan and the pool is at its cap."""

    def __init__(self, pool_size: int):
        super().__init__(
            f"Browser pool exhausted ({pool_size} of {pool_size} instances in use)",
            {"pool_size": pool_size},
        )
        self.pool_size = pool_size


class BrowserLaunchError(InfrastructureError):
    """A browser instance could not be launched."""

    pass


class RenderTimeout(DiagramRenderError):
    """One of the bounded in-page waits expired."""

    PAGE_LOAD = "page_load"
    LIBRARY_READY = "library_ready"
    RENDER_COMPLETE = "render_complete"

    def __init__(self, stage: str, timeout: float, elapsed: float):
        super().__init__(
            f"Timed out after {elapsed:.1f}s waiting for {stage} (limit {timeout:.0f}s)",
            {"stage": stage, "timeout": timeout, "elapsed": round(elapsed, 3)},
        )
        self.stage = stage
        self.timeout = timeout
        self.elapsed = elapsed


class DiagramNotFound(DiagramRenderError):
    """The render page produced no diagram element to extract."""

    pass


class DiagramRenderFailed(DiagramRenderError):
    """Any other page-level failure while rendering a diagram."""

    pass
