"""
Unit Tests for Confluence Exporter
==================================

Storage-format output: attachments, code macros and warning macros.
"""

import base64

import pytest

from mermaid_docs.core.document.confluence_exporter import (
    PLACEHOLDER_PREFIX,
    ConfluenceExporter,
    cdata,
    code_macro,
)
from mermaid_docs.core.rendering.errors import DiagramNotFound

from tests.utils.mocks import make_rendered

DOCUMENT = """# Architecture

Overview paragraph.

```mermaid
graph TD
A-->B
```

```python
print("hello")
```
"""


class TestConfluenceExporter:
    """Test Markdown to storage format conversion."""

    @pytest.mark.asyncio
    async def test_diagram_becomes_attachment_reference(self, diagram_service):
        document, assembled = await ConfluenceExporter(diagram_service).export(DOCUMENT)

        assert document.title == "Architecture"
        assert '<ri:attachment ri:filename="mermaid_diagram_1.png" />' in document.body
        assert PLACEHOLDER_PREFIX not in document.body
        assert assembled.failed_diagram_count == 0

        attachment = document.attachments[0]
        assert attachment.filename == "mermaid_diagram_1.png"
        assert attachment.content_type == "image/png"
        assert base64.b64decode(attachment.data_base64) == b"rendered-image"
        assert attachment.size == len(b"rendered-image")

    @pytest.mark.asyncio
    async def test_other_fences_become_code_macros(self, diagram_service):
        document, _ = await ConfluenceExporter(diagram_service).export(DOCUMENT)

        assert '<ac:structured-macro ac:name="code">' in document.body
        assert '<ac:parameter ac:name="language">python</ac:parameter>' in document.body
        assert '<![CDATA[print("hello")]]>' in document.body
        assert "<h1>Architecture</h1>" in document.body

    @pytest.mark.asyncio
    async def test_failed_diagram_becomes_warning(self, diagram_service, mock_renderer):
        mock_renderer.render.side_effect = DiagramNotFound("Rendered diagram element not found")

        document, assembled = await ConfluenceExporter(diagram_service).export(DOCUMENT)

        assert '<ac:structured-macro ac:name="warning">' in document.body
        assert "Rendered diagram element not found" in document.body
        assert '<ac:parameter ac:name="language">mermaid</ac:parameter>' in document.body
        assert "<![CDATA[graph TD\nA-->B]]>" in document.body
        assert document.attachments == []
        assert assembled.failed_diagram_count == 1

    @pytest.mark.asyncio
    async def test_placeholder_render_becomes_warning(self, diagram_service, mock_renderer):
        mock_renderer.render.side_effect = None
        mock_renderer.render.return_value = make_rendered(fallback=True, error_message="Lexical error")

        document, _ = await ConfluenceExporter(diagram_service).export(DOCUMENT)

        assert "Lexical error" in document.body
        assert document.attachments == []

    @pytest.mark.asyncio
    async def test_title_and_space_key(self, diagram_service):
        document, _ = await ConfluenceExporter(diagram_service).export(
            DOCUMENT, title="Custom", space_key="DOCS"
        )

        payload = document.to_api_payload()
        assert payload["title"] == "Custom"
        assert payload["space"] == {"key": "DOCS"}
        assert payload["body"]["storage"]["representation"] == "storage"
        assert payload["body"]["storage"]["value"] == document.body
        assert document.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_many_diagrams_keep_their_own_attachments(self, diagram_service):
        markdown = "\n".join(f"```mermaid\ngraph TD\nN{i}-->M{i}\n```\n" for i in range(12))

        document, _ = await ConfluenceExporter(diagram_service).export(markdown)

        positions = []
        for number in range(1, 13):
            reference = f'ri:filename="mermaid_diagram_{number}.png"'
            assert document.body.count(reference) == 1
            positions.append(document.body.index(reference))
        assert positions == sorted(positions)
        assert PLACEHOLDER_PREFIX not in document.body
        assert "</ac:image>0" not in document.body
        assert len(document.attachments) == 12


class TestMacros:
    """Test storage markup helpers."""

    def test_cdata_splits_terminator(self):
        assert cdata("a]]>b") == "<![CDATA[a]]]]><![CDATA[>b]]>"

    def test_code_macro_without_language(self):
        macro = code_macro("x = 1")

        assert "ac:parameter" not in macro
        assert "<![CDATA[x = 1]]>" in macro
