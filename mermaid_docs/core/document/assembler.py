"""
Document Assembler
==================

Extract fenced Mermaid blocks from Markdown, render each one through the
DiagramService and substitute the result back into the document.

A diagram that fails on its own (timeout, nothing rendered, page failure) is
replaced by failure markup and the document carries on. Infrastructure
failures abort the whole document.
"""

import html
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

from mermaid_docs.config.logging import get_logger
from mermaid_docs.core.rendering.errors import DiagramRenderError, InfrastructureError
from mermaid_docs.core.service import DiagramService
from mermaid_docs.models.schemas import (
    AssembledDocument,
    DiagramOutcome,
    ImageFormat,
    RenderedDiagram,
)

logger = get_logger(__name__)

MERMAID_BLOCK_PATTERN = re.compile(r"```mermaid[ \t]*\r?\n(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class DiagramBlock:
    """A fenced Mermaid block located in a Markdown document."""

    index: int
    source: str
    start: int
    end: int


def extract_diagram_blocks(markdown: str) -> List[DiagramBlock]:
    """Find every fenced Mermaid block, in document order, with trimmed source."""
    return [
        DiagramBlock(index=i, source=match.group(1).strip(), start=match.start(), end=match.end())
        for i, match in enumerate(MERMAID_BLOCK_PATTERN.finditer(markdown))
    ]


class DiagramSubstitution(ABC):
    """Markup written in place of a diagram block."""

    image_format: ImageFormat = ImageFormat.PNG

    @abstractmethod
    def image(self, block: DiagramBlock, rendered: RenderedDiagram) -> str:
        """Markup for a rendered diagram."""
        pass

    @abstractmethod
    def failure(self, block: DiagramBlock, error: str) -> str:
        """Markup for a diagram that could not be rendered."""
        pass


class HTMLImageSubstitution(DiagramSubstitution):
    """Inline data-URL images for HTML and PDF output."""

    def image(self, block: DiagramBlock, rendered: RenderedDiagram) -> str:
        css_class = "mermaid-diagram mermaid-fallback" if rendered.fallback else "mermaid-diagram"
        return (
            f'\n<div class="{css_class}">\n'
            f'    <img src="{rendered.data_url}" alt="Mermaid Diagram {block.index + 1}" />\n'
            "</div>\n"
        )

    def failure(self, block: DiagramBlock, error: str) -> str:
        return (
            '\n<div class="mermaid-error">\n'
            "    <h4>Mermaid Diagram Error</h4>\n"
            f"    <pre><code>{_escape_lines(block.source)}</code></pre>\n"
            f"    <p><em>{html.escape(error)}</em></p>\n"
            "</div>\n"
        )


class DocumentAssembler:
    """Render and substitute every diagram of a Markdown document."""

    def __init__(self, service: DiagramService):
        self.service = service
        self.logger: Any = logger.bind(component="document_assembler")

    async def assemble(
        self,
        markdown: str,
        substitution: Optional[DiagramSubstitution] = None,
        image_format: Optional[ImageFormat] = None,
        page_size: Optional[str] = None,
        use_cache: bool = True,
    ) -> AssembledDocument:
        """
        Replace each Mermaid block with rendered or failure markup.

        Args:
            markdown: Markdown document
            substitution: Markup strategy, inline HTML images by default
            image_format: Diagram format, the substitution's own format by default
            page_size: Page size bounding diagram dimensions
            use_cache: Serve repeated diagrams from the content cache

        Raises:
            InfrastructureError: If the browser pool cannot serve renders
        """
        substitution = substitution or HTMLImageSubstitution()
        image_format = ImageFormat(image_format or substitution.image_format)
        blocks = extract_diagram_blocks(markdown)
        outcomes: List[DiagramOutcome] = []
        pieces: List[str] = []
        cursor = 0

        for block in blocks:
            pieces.append(markdown[cursor:block.start])
            cursor = block.end

            outcome = await self._render_block(block, image_format, page_size, use_cache)
            outcomes.append(outcome)

            if outcome.rendered is not None:
                pieces.append(substitution.image(block, outcome.rendered))
            else:
                pieces.append(substitution.failure(block, outcome.error or "Unknown error"))

        pieces.append(markdown[cursor:])
        document = AssembledDocument(markdown="".join(pieces), diagrams=outcomes)

        self.logger.info(
            "Document assembled",
            diagrams=document.diagram_count,
            failed=document.failed_diagram_count,
            status=document.status.value,
        )
        return document

    async def _render_block(
        self,
        block: DiagramBlock,
        image_format: ImageFormat,
        page_size: Optional[str],
        use_cache: bool,
    ) -> DiagramOutcome:
        try:
            rendered = await self.service.render_diagram(
                block.source,
                image_format,
                page_size,
                index=block.index,
                use_cache=use_cache,
            )
        except InfrastructureError:
            raise
        except DiagramRenderError as e:
            self.logger.warning(
                "Failed to render Mermaid diagram", index=block.index, error=e.message
            )
            return DiagramOutcome(index=block.index, source=block.source, error=e.message)

        return DiagramOutcome(
            index=block.index,
            source=block.source,
            rendered=rendered,
            error=rendered.error_message,
        )


def _escape_lines(text: str) -> str:
    # One physical line, so blank lines in the source cannot end the HTML block.
    return html.escape(text).replace("\n", "&#10;")
