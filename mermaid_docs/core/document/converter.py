"""
Markdown Converter
==================

High level operations shared by the MCP server and the CLI: Markdown to PDF
and Confluence, batch conversion of files, diagram extraction and syntax
validation.

Every operation reports a completed or degraded status. Input problems and
infrastructure failures are raised to the caller.
"""

import asyncio
import base64
import time
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

from mermaid_docs.config.logging import get_logger
from mermaid_docs.core.document.assembler import DocumentAssembler
from mermaid_docs.core.document.confluence_exporter import ConfluenceExporter
from mermaid_docs.core.document.errors import (
    ConversionError,
    InputDecodeError,
    InputNotFoundError,
    InputTooLargeError,
)
from mermaid_docs.core.document.html_generator import HTMLGenerator
from mermaid_docs.core.document.pdf_exporter import PDFExporter
from mermaid_docs.core.rendering.errors import DiagramRenderError, InfrastructureError
from mermaid_docs.core.service import DiagramService, OperationTimeout
from mermaid_docs.models.schemas import (
    AssembledDocument,
    BatchItem,
    BatchItemResult,
    BatchResult,
    BatchSummary,
    ConversionMetadata,
    ConversionResult,
    ExtractedDiagram,
    ImageFormat,
    OperationKind,
    OutputFormat,
    ValidationResult,
)

logger = get_logger(__name__)

PathLike = Union[str, Path]

PDF_SUFFIX = ".pdf"
CONFLUENCE_SUFFIX = ".confluence.json"

BATCH_DEFAULT_CONCURRENCY = 3
BATCH_MAX_CONCURRENCY = 10


def diagram_warnings(document: AssembledDocument) -> List[str]:
    return [
        f"Diagram {outcome.index + 1}: {outcome.error or 'rendered as placeholder'}"
        for outcome in document.diagrams
        if outcome.failed
    ]


def default_output_path(input_path: Path, suffix: str) -> Path:
    """``docs/guide.md`` becomes ``docs/guide<suffix>``."""
    return input_path.with_name(input_path.stem + suffix)


class MarkdownConverter:
    """Markdown conversion operations on top of a DiagramService."""

    def __init__(self, service: DiagramService):
        self.service = service
        self.settings = service.settings
        self.assembler = DocumentAssembler(service)
        self.html_generator = HTMLGenerator(self.settings)
        self.pdf_exporter = PDFExporter(service)
        self.confluence_exporter = ConfluenceExporter(service)
        self.logger: Any = logger.bind(component="markdown_converter")

    async def convert_markdown_to_pdf(
        self,
        markdown: str,
        title: Optional[str] = None,
        page_size: Optional[str] = None,
        output_path: Optional[PathLike] = None,
        use_cache: bool = True,
    ) -> ConversionResult:
        """
        Convert Markdown with Mermaid diagrams to PDF.

        The PDF is written to ``output_path`` when given, otherwise returned
        base64 encoded.

        Raises:
            InputTooLargeError: If the Markdown exceeds the input limit
            InfrastructureError: If the browser pool cannot serve the request
            PDFGenerationError: If the page could not be printed
        """
        self._check_size(len(markdown.encode("utf-8")))
        started = time.monotonic()

        assembled = await self.assembler.assemble(
            markdown, page_size=page_size, use_cache=use_cache
        )
        html = await self.html_generator.generate(assembled.markdown, title, page_size)
        pdf = await self.pdf_exporter.export(html, page_size)

        result = ConversionResult(
            status=assembled.status,
            metadata=self._metadata(assembled, len(pdf), started),
            warnings=diagram_warnings(assembled),
        )

        if output_path is not None:
            path = Path(output_path)
            await asyncio.to_thread(self._write_bytes, path, pdf)
            result.output_path = str(path)
        else:
            result.pdf_base64 = base64.b64encode(pdf).decode("ascii")

        self.logger.info(
            "Markdown converted to PDF",
            status=result.status.value,
            diagrams=result.metadata.diagram_count,
            failed=result.metadata.failed_diagram_count,
            size=result.metadata.file_size,
        )
        return result

    async def convert_file_to_file(
        self,
        input_path: PathLike,
        output_path: Optional[PathLike] = None,
        title: Optional[str] = None,
        page_size: Optional[str] = None,
        use_cache: bool = True,
    ) -> ConversionResult:
        """Convert a Markdown file to a PDF file, ``<name>.pdf`` beside it by default."""
        source = Path(input_path)
        markdown = await self.read_input(source)
        target = Path(output_path) if output_path else default_output_path(source, PDF_SUFFIX)
        return await self.convert_markdown_to_pdf(markdown, title, page_size, target, use_cache)

    async def convert_markdown_to_confluence(
        self,
        markdown: str,
        title: Optional[str] = None,
        space_key: Optional[str] = None,
        page_size: Optional[str] = None,
        output_path: Optional[PathLike] = None,
        use_cache: bool = True,
    ) -> ConversionResult:
        """
        Convert Markdown to a Confluence storage-format page.

        The page JSON is written to ``output_path`` when given and always
        returned on the result.
        """
        self._check_size(len(markdown.encode("utf-8")))
        started = time.monotonic()

        document, assembled = await self.confluence_exporter.export(
            markdown, title, space_key, page_size, use_cache
        )
        payload = document.model_dump_json(indent=2)

        result = ConversionResult(
            status=assembled.status,
            metadata=self._metadata(assembled, len(payload.encode("utf-8")), started),
            warnings=diagram_warnings(assembled),
            confluence=document,
        )

        if output_path is not None:
            path = Path(output_path)
            await asyncio.to_thread(self._write_bytes, path, payload.encode("utf-8"))
            result.output_path = str(path)

        self.logger.info(
            "Markdown converted to Confluence",
            status=result.status.value,
            attachments=len(document.attachments),
        )
        return result

    async def convert_file_to_confluence(
        self,
        input_path: PathLike,
        output_path: Optional[PathLike] = None,
        title: Optional[str] = None,
        space_key: Optional[str] = None,
        page_size: Optional[str] = None,
        use_cache: bool = True,
    ) -> ConversionResult:
        """Convert a Markdown file to ``<name>.confluence.json`` beside it by default."""
        source = Path(input_path)
        markdown = await self.read_input(source)
        target = (
            Path(output_path) if output_path else default_output_path(source, CONFLUENCE_SUFFIX)
        )
        return await self.convert_markdown_to_confluence(
            markdown, title, space_key, page_size, target, use_cache
        )

    async def convert_batch(
        self,
        items: Sequence[BatchItem],
        concurrency: int = BATCH_DEFAULT_CONCURRENCY,
        continue_on_error: bool = False,
    ) -> BatchResult:
        """
        Convert several Markdown files, ``concurrency`` of them at a time.

        Each file runs under the conversion timeout and its failure is
        recorded on its own result. Unless ``continue_on_error`` is set, the
        groups after the first group with a failure are skipped.

        Raises:
            ValueError: If concurrency is outside 1..BATCH_MAX_CONCURRENCY
        """
        if not 1 <= concurrency <= BATCH_MAX_CONCURRENCY:
            raise ValueError(f"concurrency must be between 1 and {BATCH_MAX_CONCURRENCY}")

        started = time.monotonic()
        results: List[BatchItemResult] = []

        for start in range(0, len(items), concurrency):
            group = items[start : start + concurrency]
            results.extend(await asyncio.gather(*(self._convert_batch_item(i) for i in group)))
            if not continue_on_error and any(not result.success for result in results):
                break

        failed = sum(1 for result in results if not result.success)
        summary = BatchSummary(
            total=len(items),
            successful=len(results) - failed,
            failed=failed,
            skipped=len(items) - len(results),
            processing_time=round(time.monotonic() - started, 3),
        )

        self.logger.info(
            "Batch conversion finished",
            total=summary.total,
            successful=summary.successful,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        return BatchResult(
            success=summary.successful == summary.total, results=results, summary=summary
        )

    async def _convert_batch_item(self, item: BatchItem) -> BatchItemResult:
        if item.output_format is OutputFormat.CONFLUENCE:
            operation = self.convert_file_to_confluence(
                item.input_path, item.output_path, item.title, page_size=item.page_size
            )
        else:
            operation = self.convert_file_to_file(
                item.input_path, item.output_path, item.title, item.page_size
            )

        try:
            result = await self.service.run_operation(OperationKind.CONVERSION, operation)
        except OperationTimeout as e:
            error = str(e)
        except (ConversionError, DiagramRenderError) as e:
            error = e.message
        else:
            return BatchItemResult(
                input_path=item.input_path,
                success=True,
                status=result.status,
                output_path=result.output_path,
                warnings=result.warnings,
            )

        self.logger.warning("Batch file failed", input_path=item.input_path, error=error)
        return BatchItemResult(input_path=item.input_path, success=False, error=error)

    async def extract_diagrams(
        self,
        markdown: str,
        image_format: ImageFormat = ImageFormat.PNG,
        page_size: Optional[str] = None,
    ) -> List[ExtractedDiagram]:
        """Render every diagram of a document on its own."""
        self._check_size(len(markdown.encode("utf-8")))
        assembled = await self.assembler.assemble(
            markdown, image_format=ImageFormat(image_format), page_size=page_size
        )

        diagrams: List[ExtractedDiagram] = []
        for outcome in assembled.diagrams:
            rendered = outcome.rendered
            diagrams.append(
                ExtractedDiagram(
                    index=outcome.index,
                    code=outcome.source,
                    image_base64=rendered.image_data if rendered else None,
                    format=ImageFormat(image_format),
                    fallback=rendered.fallback if rendered else False,
                    error=outcome.error,
                )
            )
        return diagrams

    async def validate_syntax(self, source: str) -> ValidationResult:
        """
        Check Mermaid syntax by rendering to SVG.

        Raises:
            InfrastructureError: If no browser is available to validate with
        """
        if not source.strip():
            return ValidationResult(valid=False, error="Diagram source is empty")

        diagram_type = self.service.analyze(source).type
        try:
            rendered = await self.service.render_diagram(source, ImageFormat.SVG)
        except InfrastructureError:
            raise
        except DiagramRenderError as e:
            return ValidationResult(valid=False, error=e.message, diagram_type=diagram_type)

        if rendered.fallback:
            return ValidationResult(
                valid=False,
                error=rendered.error_message or "Diagram syntax error",
                diagram_type=diagram_type,
            )
        return ValidationResult(valid=True, diagram_type=diagram_type)

    async def read_input(self, path: Path) -> str:
        """
        Read a Markdown input file.

        Raises:
            InputNotFoundError: If the file does not exist
            InputTooLargeError: If the file exceeds the input limit
            InputDecodeError: If the file is not valid UTF-8
        """
        if not path.is_file():
            raise InputNotFoundError(path)
        self._check_size(path.stat().st_size)
        try:
            return await asyncio.to_thread(path.read_text, "utf-8")
        except UnicodeDecodeError as e:
            raise InputDecodeError(path, str(e)) from e

    def _check_size(self, size: int) -> None:
        if size > self.settings.max_input_bytes:
            raise InputTooLargeError(size, self.settings.max_input_bytes)

    def _metadata(
        self, assembled: AssembledDocument, file_size: int, started: float
    ) -> ConversionMetadata:
        return ConversionMetadata(
            file_size=file_size,
            diagram_count=assembled.diagram_count,
            failed_diagram_count=assembled.failed_diagram_count,
            processing_time=round(time.monotonic() - started, 3),
        )

    @staticmethod
    def _write_bytes(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
