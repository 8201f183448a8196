"""
Command Line Interface
======================

``mermaid-docs convert|extract|validate``

Exit codes: 0 when everything rendered, 2 when the output was produced with
diagram placeholders, 1 on a hard failure.
"""

import argparse
import asyncio
import base64
import sys
from pathlib import Path
from typing import List, Optional

from mermaid_docs.config.logging import get_logger
from mermaid_docs.config.settings import get_settings
from mermaid_docs.core.document.assembler import extract_diagram_blocks
from mermaid_docs.core.document.converter import MarkdownConverter
from mermaid_docs.core.document.errors import ConversionError
from mermaid_docs.core.rendering.errors import DiagramRenderError
from mermaid_docs.core.service import DiagramService, OperationTimeout
from mermaid_docs.models.schemas import ConversionStatus, ImageFormat, OperationKind

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DEGRADED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mermaid-docs",
        description="Convert Markdown with Mermaid diagrams to PDF or Confluence",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    convert = subparsers.add_parser("convert", help="Convert a Markdown file")
    convert.add_argument("input", type=Path, help="Markdown file")
    convert.add_argument("-o", "--output", type=Path, help="Output file")
    convert.add_argument("--to", choices=["pdf", "confluence"], default="pdf", help="Output format")
    convert.add_argument("--page-size", choices=["A4", "Letter", "Legal"], help="Page size")
    convert.add_argument("--title", help="Document title")
    convert.add_argument("--space-key", help="Confluence space key")
    convert.add_argument("--no-cache", action="store_true", help="Render every diagram afresh")

    extract = subparsers.add_parser("extract", help="Render each diagram of a Markdown file")
    extract.add_argument("input", type=Path, help="Markdown file")
    extract.add_argument(
        "--format", choices=[fmt.value for fmt in ImageFormat], default="png", help="Image format"
    )
    extract.add_argument(
        "--output-dir", type=Path, help="Directory for images, <name>_diagrams by default"
    )

    validate = subparsers.add_parser("validate", help="Validate Mermaid syntax")
    validate.add_argument("file", type=Path, help="Mermaid source or Markdown file")

    return parser


def status_exit_code(status: ConversionStatus) -> int:
    return EXIT_DEGRADED if status is ConversionStatus.DEGRADED else EXIT_OK


async def run_convert(service: DiagramService, args: argparse.Namespace) -> int:
    converter = MarkdownConverter(service)
    if args.to == "confluence":
        operation = converter.convert_file_to_confluence(
            args.input,
            output_path=args.output,
            title=args.title,
            space_key=args.space_key,
            page_size=args.page_size,
            use_cache=not args.no_cache,
        )
    else:
        operation = converter.convert_file_to_file(
            args.input,
            output_path=args.output,
            title=args.title,
            page_size=args.page_size,
            use_cache=not args.no_cache,
        )

    result = await service.run_operation(OperationKind.CONVERSION, operation)

    print(f"Wrote {result.output_path}")
    print(
        f"Diagrams: {result.metadata.diagram_count}, "
        f"failed: {result.metadata.failed_diagram_count}, "
        f"time: {result.metadata.processing_time:.2f}s"
    )
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    return status_exit_code(result.status)


async def run_extract(service: DiagramService, args: argparse.Namespace) -> int:
    converter = MarkdownConverter(service)
    image_format = ImageFormat(args.format)
    markdown = await converter.read_input(args.input)
    diagrams = await service.run_operation(
        OperationKind.EXTRACTION, converter.extract_diagrams(markdown, image_format)
    )

    output_dir = args.output_dir or args.input.with_name(f"{args.input.stem}_diagrams")
    output_dir.mkdir(parents=True, exist_ok=True)

    failed = 0
    for diagram in diagrams:
        if diagram.image_base64 is None:
            failed += 1
            print(f"Diagram {diagram.index + 1}: {diagram.error}", file=sys.stderr)
            continue
        if diagram.fallback:
            failed += 1
            print(f"Diagram {diagram.index + 1}: rendered as placeholder", file=sys.stderr)

        path = output_dir / f"diagram_{diagram.index + 1}.{image_format.value}"
        path.write_bytes(base64.b64decode(diagram.image_base64))
        print(f"Wrote {path}")

    print(f"Diagrams: {len(diagrams)}, failed: {failed}")
    return EXIT_DEGRADED if failed else EXIT_OK


async def run_validate(service: DiagramService, args: argparse.Namespace) -> int:
    converter = MarkdownConverter(service)
    content = await converter.read_input(args.file)
    blocks = extract_diagram_blocks(content)
    sources = [block.source for block in blocks] if blocks else [content]

    invalid = 0
    for number, source in enumerate(sources, start=1):
        result = await service.run_operation(
            OperationKind.VALIDATION, converter.validate_syntax(source)
        )
        diagram_type = result.diagram_type.value if result.diagram_type else "unknown"
        if result.valid:
            print(f"Diagram {number} ({diagram_type}): valid")
        else:
            invalid += 1
            print(f"Diagram {number} ({diagram_type}): invalid: {result.error}")

    return EXIT_FAILURE if invalid else EXIT_OK


COMMANDS = {
    "convert": run_convert,
    "extract": run_extract,
    "validate": run_validate,
}


async def run(args: argparse.Namespace) -> int:
    async with DiagramService(get_settings()) as service:
        try:
            return await COMMANDS[args.command](service, args)
        except OperationTimeout as e:
            print(f"Error: {e}", file=sys.stderr)
        except (ConversionError, DiagramRenderError) as e:
            logger.error("Command failed", command=args.command, error=e.message)
            print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILURE


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line."""
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
