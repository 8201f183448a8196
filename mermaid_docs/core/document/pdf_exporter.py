"""
PDF Exporter
============

Print an HTML page to PDF with a browser borrowed from the shared pool.
"""

from typing import Any, Optional

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from mermaid_docs.config.logging import get_logger
from mermaid_docs.core.document.errors import PDFGenerationError
from mermaid_docs.core.rendering.errors import DiagramRenderError
from mermaid_docs.core.service import DiagramService
from mermaid_docs.models.schemas import PageSize

logger = get_logger(__name__)


class PDFExporter:
    """Playwright-based PDF generation from HTML content."""

    def __init__(self, service: DiagramService):
        self.service = service
        self.settings = service.settings
        self.logger: Any = logger.bind(component="pdf_exporter")

    async def export(self, html: str, page_size: Optional[str] = None) -> bytes:
        """
        Print HTML to PDF.

        Raises:
            InfrastructureError: If no browser could be borrowed
            PDFGenerationError: If the page could not be printed
        """
        page_format = PageSize.parse(page_size or self.settings.default_page_size).value
        timeout_ms = self.settings.render_timeout * 1000

        async with self.service.browser() as browser:
            page: Optional[Page] = None
            try:
                page = await browser.new_page()
                await page.set_content(html, wait_until="load", timeout=timeout_ms)
                try:
                    await page.wait_for_load_state("networkidle", timeout=timeout_ms)
                except PlaywrightTimeoutError:
                    self.logger.debug("Network did not go idle before printing")

                pdf = await page.pdf(
                    format=page_format,
                    margin=self.settings.pdf_margins,
                    print_background=self.settings.pdf_print_background,
                )
                self.logger.info("PDF generated", page_format=page_format, size=len(pdf))
                return pdf

            except DiagramRenderError:
                raise
            except Exception as e:
                self.logger.error("PDF generation failed", error=str(e))
                raise PDFGenerationError(f"PDF generation failed: {e}") from e
            finally:
                if page is not None:
                    try:
                        await page.close()
                    except Exception as e:
                        self.logger.debug("Failed to close PDF page", error=str(e))
