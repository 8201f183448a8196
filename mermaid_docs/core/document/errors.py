"""
Conversion Errors
=================

Errors raised by the document layer for unusable input. They propagate to the
front ends, which report them as hard failures.
"""

from pathlib import Path
from typing import Any, Dict, Optional


class ConversionError(Exception):
    """Base exception for document conversion failures."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InputNotFoundError(ConversionError):
    """The input Markdown file does not exist."""

    def __init__(self, path: Path):
        super().__init__(f"Input file not found: {path}", {"path": str(path)})
        self.path = path


class InputTooLargeError(ConversionError):
    """The input Markdown exceeds the configured size limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Input is {size} bytes, larger than the {limit} byte limit",
            {"size": size, "limit": limit},
        )
        self.size = size
        self.limit = limit


class InputDecodeError(ConversionError):
    """The input Markdown file is not valid UTF-8."""

    def __init__(self, path: Path, reason: str):
        super().__init__(
            f"Input file is not valid UTF-8: {path} ({reason})",
            {"path": str(path), "reason": reason},
        )
        self.path = path


class HTMLGenerationError(ConversionError):
    """Markdown could not be turned into a printable HTML page."""

    pass


class PDFGenerationError(ConversionError):
    """The browser failed to print the HTML page to PDF."""

    pass
