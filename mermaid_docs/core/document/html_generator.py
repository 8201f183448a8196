"""
HTML Generator
==============

Convert assembled Markdown into a printable HTML page.

Markdown is parsed with markdown-it-py (CommonMark plus tables and
strikethrough, raw HTML allowed so substituted diagram markup passes through)
and wrapped in the Jinja2 document template.
"""

from pathlib import Path
from typing import Any, Optional

import jinja2
from markdown_it import MarkdownIt

from mermaid_docs.config.logging import get_logger
from mermaid_docs.config.settings import Settings, get_settings
from mermaid_docs.core.document.errors import HTMLGenerationError
from mermaid_docs.models.schemas import PageSize

logger = get_logger(__name__)

DOCUMENT_TEMPLATE = "document.html.j2"
DEFAULT_TITLE = "Markdown Document"


def create_markdown_parser() -> MarkdownIt:
    return MarkdownIt("commonmark", {"html": True, "linkify": False}).enable(
        ["table", "strikethrough"]
    )


class HTMLGenerator:
    """Jinja2-based HTML page generator for Markdown documents."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.markdown = create_markdown_parser()
        self.logger: Any = logger.bind(generator="document_html")
        self._setup_jinja2_environment()

    def _setup_jinja2_environment(self) -> None:
        """Setup Jinja2 template environment."""
        template_dir = Path(__file__).parent / "templates"
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(template_dir)),
            autoescape=jinja2.select_autoescape(["html", "xml", "j2"]),
            enable_async=True,
        )

    def render_body(self, markdown: str) -> str:
        return self.markdown.render(markdown)

    async def generate(
        self, markdown: str, title: Optional[str] = None, page_size: Optional[str] = None
    ) -> str:
        """
        Generate a complete HTML page from Markdown.

        Args:
            markdown: Markdown with diagram blocks already substituted
            title: Document title, taken from the first heading when omitted
            page_size: Page size for the print stylesheet

        Returns:
            Generated HTML string

        Raises:
            HTMLGenerationError: If HTML generation fails
        """
        try:
            body = self.render_body(markdown)
            template = self.env.get_template(DOCUMENT_TEMPLATE)
            html = await template.render_async(
                title=title or extract_title(markdown) or DEFAULT_TITLE,
                page_size=PageSize.parse(page_size or self.settings.default_page_size).value,
                body=body,
            )

            self.logger.debug("HTML generation completed", html_length=len(html))
            return html

        except jinja2.TemplateError as e:
            error_msg = f"Template rendering failed: {e}"
            self.logger.error("HTML generation failed", error=error_msg)
            raise HTMLGenerationError(error_msg) from e


def extract_title(markdown: str) -> Optional[str]:
    """Text of the first level-one heading, if any."""
    for line in markdown.splitlines():
        stripped = line.strip()
        if stripped.startswith("# "):
            return stripped[2:].strip() or None
    return None
