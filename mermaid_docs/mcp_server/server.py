"""
MCP Server Implementation
=========================

Model Context Protocol server exposing Markdown and Mermaid conversion tools
over stdio: convert_markdown_to_pdf, convert_markdown_file_to_pdf,
convert_markdown_to_confluence, convert_multiple_files, extract_mermaid_diagrams,
validate_mermaid_syntax, get_cache_stats and clear_cache.

Every rendering tool runs under the service's tiered timeout; a batch applies
it to each file. Tools answer with JSON text carrying a ``success`` flag; hard
failures answer ``success: false`` instead of raising through the protocol.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.types import LoggingLevel, TextContent, Tool

from mermaid_docs.config.logging import get_logger
from mermaid_docs.config.settings import Settings, get_settings
from mermaid_docs.core.document.converter import (
    BATCH_DEFAULT_CONCURRENCY,
    BATCH_MAX_CONCURRENCY,
    MarkdownConverter,
)
from mermaid_docs.core.document.errors import ConversionError
from mermaid_docs.core.rendering.errors import DiagramRenderError
from mermaid_docs.core.service import DiagramService, OperationTimeout
from mermaid_docs.models.schemas import BatchItem, ConversionResult, ImageFormat, OperationKind

logger = get_logger(__name__)

SERVER_NAME = "mermaid-docs-mcp"

PAGE_SIZE_SCHEMA = {
    "type": "string",
    "enum": ["A4", "Letter", "Legal"],
    "description": "Page size for the PDF and diagram sizing",
    "default": "A4",
}


def tool_definitions() -> List[Tool]:
    """List of tools advertised by the server."""
    return [
        Tool(
            name="convert_markdown_to_pdf",
            description="Convert Markdown content with Mermaid diagrams to PDF",
            inputSchema={
                "type": "object",
                "properties": {
                    "markdown": {
                        "type": "string",
                        "description": "Markdown content with ```mermaid blocks",
                    },
                    "title": {"type": "string", "description": "Document title"},
                    "page_size": PAGE_SIZE_SCHEMA,
                    "output_path": {
                        "type": "string",
                        "description": "Write the PDF here instead of returning it base64 encoded",
                    },
                },
                "required": ["markdown"],
            },
        ),
        Tool(
            name="convert_markdown_file_to_pdf",
            description="Convert a Markdown file with Mermaid diagrams to a PDF file",
            inputSchema={
                "type": "object",
                "properties": {
                    "input_path": {"type": "string", "description": "Markdown file path"},
                    "output_path": {
                        "type": "string",
                        "description": "PDF path, defaults to the input name with .pdf",
                    },
                    "title": {"type": "string", "description": "Document title"},
                    "page_size": PAGE_SIZE_SCHEMA,
                },
                "required": ["input_path"],
            },
        ),
        Tool(
            name="convert_markdown_to_confluence",
            description="Convert Markdown with Mermaid diagrams to Confluence storage format",
            inputSchema={
                "type": "object",
                "properties": {
                    "markdown": {"type": "string", "description": "Markdown content"},
                    "input_path": {
                        "type": "string",
                        "description": "Markdown file path, used when markdown is omitted",
                    },
                    "output_path": {
                        "type": "string",
                        "description": "Where to write the page JSON",
                    },
                    "title": {"type": "string", "description": "Page title"},
                    "space_key": {"type": "string", "description": "Confluence space key"},
                },
            },
        ),
        Tool(
            name="convert_multiple_files",
            description="Convert several Markdown files to PDF or Confluence in one batch",
            inputSchema={
                "type": "object",
                "properties": {
                    "files": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "input_path": {"type": "string"},
                                "output_path": {"type": "string"},
                                "format": {"type": "string", "enum": ["pdf", "confluence"]},
                                "title": {"type": "string"},
                                "page_size": PAGE_SIZE_SCHEMA,
                            },
                            "required": ["input_path"],
                        },
                    },
                    "concurrency": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": BATCH_MAX_CONCURRENCY,
                        "default": BATCH_DEFAULT_CONCURRENCY,
                    },
                    "continue_on_error": {
                        "type": "boolean",
                        "description": "Keep converting after a file fails",
                        "default": False,
                    },
                },
                "required": ["files"],
            },
        ),
        Tool(
            name="extract_mermaid_diagrams",
            description="Render every Mermaid diagram of a Markdown document to an image",
            inputSchema={
                "type": "object",
                "properties": {
                    "markdown": {"type": "string", "description": "Markdown content"},
                    "format": {
                        "type": "string",
                        "enum": [fmt.value for fmt in ImageFormat],
                        "default": "png",
                    },
                    "page_size": PAGE_SIZE_SCHEMA,
                },
                "required": ["markdown"],
            },
        ),
        Tool(
            name="validate_mermaid_syntax",
            description="Check whether Mermaid diagram source renders",
            inputSchema={
                "type": "object",
                "properties": {
                    "mermaid_code": {"type": "string", "description": "Mermaid diagram source"},
                },
                "required": ["mermaid_code"],
            },
        ),
        Tool(
            name="get_cache_stats",
            description="Report diagram cache and browser pool statistics",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="clear_cache",
            description="Drop every cached diagram render",
            inputSchema={
                "type": "object",
                "properties": {
                    "confirm": {"type": "boolean", "description": "Must be true"},
                },
                "required": ["confirm"],
            },
        ),
    ]


def text_response(payload: Dict[str, Any]) -> List[TextContent]:
    return [TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]


def error_response(error: str, **extra: Any) -> List[TextContent]:
    return text_response(
        {
            "success": False,
            "error": error,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
    )


def conversion_payload(result: ConversionResult) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "success": True,
        "status": result.status.value,
        "metadata": result.metadata.model_dump(),
        "warnings": result.warnings,
    }
    if result.output_path:
        payload["output_path"] = result.output_path
    if result.pdf_base64:
        payload["pdf_base64"] = result.pdf_base64
    return payload


class MermaidDocsMCPServer:
    """MCP Server for Markdown and Mermaid conversion."""

    def __init__(self, service: DiagramService, settings: Optional[Settings] = None) -> None:
        self.settings = settings or service.settings
        self.service = service
        self.converter = MarkdownConverter(service)
        self.logger: Any = logger.bind(component="mcp_server")
        self.server = Server(SERVER_NAME)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[List[TextContent]]]] = {
            "convert_markdown_to_pdf": self._handle_convert_markdown_to_pdf,
            "convert_markdown_file_to_pdf": self._handle_convert_markdown_file_to_pdf,
            "convert_markdown_to_confluence": self._handle_convert_markdown_to_confluence,
            "convert_multiple_files": self._handle_convert_multiple_files,
            "extract_mermaid_diagrams": self._handle_extract_mermaid_diagrams,
            "validate_mermaid_syntax": self._handle_validate_mermaid_syntax,
            "get_cache_stats": self._handle_get_cache_stats,
            "clear_cache": self._handle_clear_cache,
        }
        self._setup_tools()
        self._setup_handlers()

    def _setup_tools(self) -> None:
        """Setup MCP tools."""

        @self.server.list_tools()
        async def handle_list_tools() -> List[Tool]:
            return tool_definitions()

        @self.server.call_tool()
        async def handle_call_tool(  # type: ignore[misc]
            name: str, arguments: Dict[str, Any]
        ) -> List[TextContent]:
            return await self.call_tool(name, arguments)

    def _setup_handlers(self) -> None:
        """Setup additional MCP handlers."""

        @self.server.set_logging_level()
        async def handle_set_logging_level(level: LoggingLevel) -> None:  # type: ignore[misc]
            self.logger.info("Logging level changed", level=level)

    async def get_tools(self) -> List[Tool]:
        """Get list of available MCP tools (public API)."""
        return tool_definitions()

    async def call_tool(self, name: str, arguments: Optional[Dict[str, Any]]) -> List[TextContent]:
        """Run a tool and turn every failure into a ``success: false`` response."""
        arguments = arguments or {}
        handler = self._handlers.get(name)
        if handler is None:
            self.logger.error("Tool not found", tool=name)
            return error_response(f"Unknown tool: {name}")

        self.logger.info("Tool called", tool=name, arguments=sorted(arguments))
        try:
            return await handler(arguments)
        except OperationTimeout as e:
            return error_response(str(e), kind=e.kind.value)
        except (ConversionError, DiagramRenderError) as e:
            self.logger.error("Tool execution failed", tool=name, error=e.message)
            return error_response(e.message, details=e.details)
        except ValueError as e:
            return error_response(f"Invalid arguments: {e}")
        except Exception as e:
            error_msg = f"Tool execution failed: {e}"
            self.logger.error("Tool execution error", tool=name, error=error_msg)
            return error_response(error_msg)

    async def _handle_convert_markdown_to_pdf(self, arguments: Dict[str, Any]) -> List[TextContent]:
        markdown = require(arguments, "markdown")
        result = await self.service.run_operation(
            OperationKind.CONVERSION,
            self.converter.convert_markdown_to_pdf(
                markdown,
                title=arguments.get("title"),
                page_size=arguments.get("page_size"),
                output_path=arguments.get("output_path"),
            ),
        )
        return text_response(conversion_payload(result))

    async def _handle_convert_markdown_file_to_pdf(
        self, arguments: Dict[str, Any]
    ) -> List[TextContent]:
        input_path = require(arguments, "input_path")
        result = await self.service.run_operation(
            OperationKind.CONVERSION,
            self.converter.convert_file_to_file(
                input_path,
                output_path=arguments.get("output_path"),
                title=arguments.get("title"),
                page_size=arguments.get("page_size"),
            ),
        )
        return text_response(conversion_payload(result))

    async def _handle_convert_markdown_to_confluence(
        self, arguments: Dict[str, Any]
    ) -> List[TextContent]:
        markdown = arguments.get("markdown")
        input_path = arguments.get("input_path")
        options = {
            "output_path": arguments.get("output_path"),
            "title": arguments.get("title"),
            "space_key": arguments.get("space_key"),
        }

        if markdown:
            operation = self.converter.convert_markdown_to_confluence(markdown, **options)
        elif input_path:
            operation = self.converter.convert_file_to_confluence(input_path, **options)
        else:
            raise ValueError("markdown or input_path is required")

        result = await self.service.run_operation(OperationKind.CONVERSION, operation)
        payload = conversion_payload(result)
        if result.confluence is not None:
            payload["document"] = result.confluence.to_api_payload()
            payload["attachments"] = [
                attachment.model_dump() for attachment in result.confluence.attachments
            ]
        return text_response(payload)

    async def _handle_convert_multiple_files(
        self, arguments: Dict[str, Any]
    ) -> List[TextContent]:
        files = arguments.get("files")
        if not isinstance(files, list) or not files:
            raise ValueError("files must be a non-empty list")
        if not all(isinstance(entry, dict) for entry in files):
            raise ValueError("every file entry must be an object")

        items = [
            BatchItem(
                input_path=entry.get("input_path", ""),
                output_path=entry.get("output_path"),
                output_format=entry.get("format", "pdf"),
                title=entry.get("title"),
                page_size=entry.get("page_size"),
            )
            for entry in files
        ]
        result = await self.converter.convert_batch(
            items,
            concurrency=int(arguments.get("concurrency", BATCH_DEFAULT_CONCURRENCY)),
            continue_on_error=bool(arguments.get("continue_on_error", False)),
        )
        return text_response(result.model_dump(mode="json"))

    async def _handle_extract_mermaid_diagrams(
        self, arguments: Dict[str, Any]
    ) -> List[TextContent]:
        markdown = require(arguments, "markdown")
        image_format = ImageFormat(arguments.get("format", self.settings.default_image_format))
        diagrams = await self.service.run_operation(
            OperationKind.EXTRACTION,
            self.converter.extract_diagrams(markdown, image_format, arguments.get("page_size")),
        )
        return text_response(
            {
                "success": True,
                "count": len(diagrams),
                "diagrams": [diagram.model_dump(mode="json") for diagram in diagrams],
            }
        )

    async def _handle_validate_mermaid_syntax(
        self, arguments: Dict[str, Any]
    ) -> List[TextContent]:
        code = require(arguments, "mermaid_code")
        result = await self.service.run_operation(
            OperationKind.VALIDATION, self.converter.validate_syntax(code)
        )
        return text_response({"success": True, **result.model_dump(mode="json")})

    async def _handle_get_cache_stats(self, arguments: Dict[str, Any]) -> List[TextContent]:
        stats = self.service.cache_stats()
        return text_response(
            {
                "success": True,
                "cache_enabled": self.service.cache is not None,
                "cache": stats.model_dump(),
                "browser_pool": self.service.browser_pool.get_stats(),
            }
        )

    async def _handle_clear_cache(self, arguments: Dict[str, Any]) -> List[TextContent]:
        if arguments.get("confirm") is not True:
            raise ValueError("confirm must be true to clear the cache")

        cleared = self.service.cache_stats().total_entries
        await self.service.clear_cache()
        self.logger.info("Cache cleared by request", entries=cleared)
        return text_response(
            {"success": True, "message": "Cache cleared", "cleared_entries": cleared}
        )

    async def serve(self) -> None:
        """Run the MCP server over stdio until the client disconnects."""
        from mcp.server.stdio import stdio_server

        async with stdio_server() as (read_stream, write_stream):
            self.logger.info("MCP server starting with stdio transport")
            await self.server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=self.settings.app_version,
                    capabilities=self.server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )


def require(arguments: Dict[str, Any], name: str) -> str:
    value = arguments.get(name)
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} is required")
    return value


async def main() -> None:
    """Main entry point for MCP server."""
    settings = get_settings()
    async with DiagramService(settings) as service:
        await MermaidDocsMCPServer(service).serve()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
