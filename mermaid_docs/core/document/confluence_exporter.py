"""
Confluence Exporter
===================

Convert Markdown into a Confluence storage-format page.

Rendered diagrams become ``ac:image`` references to PNG attachments, other
fenced code becomes ``code`` macros and diagrams that could not be rendered
become a ``warning`` macro followed by their source. Storage markup is
spliced in after Markdown rendering through placeholder tokens, since the
Markdown parser does not pass namespaced tags through as HTML blocks.
"""

import base64
import html
import re
from typing import Any, Dict, List, Optional, Tuple

from markdown_it import MarkdownIt

from mermaid_docs.config.logging import get_logger
from mermaid_docs.core.document.assembler import (
    DiagramBlock,
    DiagramSubstitution,
    DocumentAssembler,
)
from mermaid_docs.core.document.html_generator import (
    DEFAULT_TITLE,
    create_markdown_parser,
    extract_title,
)
from mermaid_docs.core.service import DiagramService
from mermaid_docs.models.schemas import (
    AssembledDocument,
    ConfluenceAttachment,
    ConfluenceDocument,
    ImageFormat,
    RenderedDiagram,
)

logger = get_logger(__name__)

PLACEHOLDER_PREFIX = "CONFLUENCEDIAGRAMPLACEHOLDER"
PLACEHOLDER_PATTERN = re.compile(rf"(?:<p>)?{PLACEHOLDER_PREFIX}(\d+)END(?:</p>)?")


def attachment_filename(index: int) -> str:
    return f"mermaid_diagram_{index + 1}.png"


def cdata(text: str) -> str:
    """Wrap text in CDATA, splitting any terminator it contains."""
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def code_macro(code: str, language: Optional[str] = None) -> str:
    parameter = (
        f'<ac:parameter ac:name="language">{html.escape(language)}</ac:parameter>'
        if language
        else ""
    )
    return (
        '<ac:structured-macro ac:name="code">'
        f"{parameter}"
        f"<ac:plain-text-body>{cdata(code)}</ac:plain-text-body>"
        "</ac:structured-macro>"
    )


def warning_macro(message: str) -> str:
    return (
        '<ac:structured-macro ac:name="warning">'
        f"<ac:rich-text-body><p>{html.escape(message)}</p></ac:rich-text-body>"
        "</ac:structured-macro>"
    )


def image_reference(filename: str, alt: str) -> str:
    return (
        f'<ac:image ac:alt="{html.escape(alt)}">'
        f'<ri:attachment ri:filename="{html.escape(filename)}" />'
        "</ac:image>"
    )


class ConfluenceSubstitution(DiagramSubstitution):
    """Collects attachments and storage markup while a document is assembled."""

    image_format = ImageFormat.PNG

    def __init__(self) -> None:
        self.attachments: List[ConfluenceAttachment] = []
        self.replacements: Dict[str, str] = {}

    def image(self, block: DiagramBlock, rendered: RenderedDiagram) -> str:
        if rendered.fallback:
            return self.failure(block, rendered.error_message or "Diagram syntax error")

        filename = attachment_filename(block.index)
        self.attachments.append(
            ConfluenceAttachment(
                filename=filename,
                content_type=rendered.format.mime_type,
                data_base64=rendered.image_data,
                size=len(base64.b64decode(rendered.image_data)),
            )
        )
        return self._placeholder(
            block, image_reference(filename, f"Mermaid Diagram {block.index + 1}")
        )

    def failure(self, block: DiagramBlock, error: str) -> str:
        markup = warning_macro(f"Mermaid diagram could not be rendered: {error}") + code_macro(
            block.source, "mermaid"
        )
        return self._placeholder(block, markup)

    def splice(self, body: str) -> str:
        """Replace placeholder paragraphs with their storage markup."""
        return PLACEHOLDER_PATTERN.sub(
            lambda match: self.replacements.get(match.group(1), match.group(0)), body
        )

    def _placeholder(self, block: DiagramBlock, markup: str) -> str:
        self.replacements[str(block.index)] = markup
        return f"\n\n{PLACEHOLDER_PREFIX}{block.index}END\n\n"


def _render_fence(self: Any, tokens: Any, idx: int, options: Any, env: Any) -> str:
    token = tokens[idx]
    language = token.info.strip().split()[0] if token.info.strip() else None
    return code_macro(token.content.rstrip("\n"), language) + "\n"


def _render_code_block(self: Any, tokens: Any, idx: int, options: Any, env: Any) -> str:
    return code_macro(tokens[idx].content.rstrip("\n")) + "\n"


def create_storage_parser() -> MarkdownIt:
    """Markdown parser emitting Confluence storage XHTML."""
    md = create_markdown_parser()
    md.add_render_rule("fence", _render_fence)
    md.add_render_rule("code_block", _render_code_block)
    return md


class ConfluenceExporter:
    """Markdown to Confluence storage format converter."""

    def __init__(self, service: DiagramService):
        self.service = service
        self.assembler = DocumentAssembler(service)
        self.markdown = create_storage_parser()
        self.logger: Any = logger.bind(component="confluence_exporter")

    async def export(
        self,
        markdown: str,
        title: Optional[str] = None,
        space_key: Optional[str] = None,
        page_size: Optional[str] = None,
        use_cache: bool = True,
    ) -> Tuple[ConfluenceDocument, AssembledDocument]:
        """
        Build a Confluence page from Markdown.

        Returns:
            The page with its diagram attachments, and the assembled document
            carrying per-diagram outcomes

        Raises:
            InfrastructureError: If the browser pool cannot serve renders
        """
        substitution = ConfluenceSubstitution()
        assembled = await self.assembler.assemble(
            markdown, substitution, page_size=page_size, use_cache=use_cache
        )
        body = substitution.splice(self.markdown.render(assembled.markdown))

        document = ConfluenceDocument(
            title=title or extract_title(markdown) or DEFAULT_TITLE,
            space_key=space_key,
            body=body,
            attachments=substitution.attachments,
        )

        self.logger.info(
            "Confluence page generated",
            title=document.title,
            attachments=len(document.attachments),
            failed=assembled.failed_diagram_count,
        )
        return document, assembled
