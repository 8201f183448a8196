"""
Unit Tests for Command Line Interface
=====================================

Subcommands against a DiagramService with a mock renderer.
"""

from unittest.mock import AsyncMock, patch

import pytest

from mermaid_docs import cli
from mermaid_docs.core.document.pdf_exporter import PDFExporter
from mermaid_docs.core.rendering.errors import DiagramRenderFailed, PoolExhausted

from tests.utils.mocks import make_rendered

DOCUMENT = """# Guide

```mermaid
graph TD
A-->B
```

```mermaid
pie
"Yes" : 3
```
"""


@pytest.fixture
def run_cli(diagram_service, test_settings):
    """Run a command line against the test service."""

    async def run(*argv):
        args = cli.build_parser().parse_args(list(argv))
        with patch.object(cli, "DiagramService", return_value=diagram_service), patch.object(
            cli, "get_settings", return_value=test_settings
        ), patch.object(PDFExporter, "export", AsyncMock(return_value=b"%PDF-1.4")):
            return await cli.run(args)

    return run


@pytest.fixture
def guide(tmp_path):
    path = tmp_path / "guide.md"
    path.write_text(DOCUMENT, encoding="utf-8")
    return path


class TestConvert:
    """Test the convert subcommand."""

    @pytest.mark.asyncio
    async def test_pdf(self, run_cli, guide, capsys):
        exit_code = await run_cli("convert", str(guide))

        assert exit_code == cli.EXIT_OK
        assert guide.with_suffix(".pdf").read_bytes() == b"%PDF-1.4"
        assert "Diagrams: 2, failed: 0" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_degraded(self, run_cli, guide, mock_renderer, capsys):
        def render(source, image_format, page_size, index=0):
            if source.startswith("pie"):
                raise DiagramRenderFailed("Failed to render Mermaid diagram: boom")
            return make_rendered(source=source, index=index)

        mock_renderer.render.side_effect = render

        exit_code = await run_cli("convert", str(guide), "-o", str(guide.with_name("out.pdf")))

        assert exit_code == cli.EXIT_DEGRADED
        assert guide.with_name("out.pdf").exists()
        assert "Warning: Diagram 2:" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_confluence(self, run_cli, guide):
        exit_code = await run_cli("convert", str(guide), "--to", "confluence", "--space-key", "ENG")

        assert exit_code == cli.EXIT_OK
        assert guide.with_name("guide.confluence.json").exists()

    @pytest.mark.asyncio
    async def test_missing_input(self, run_cli, tmp_path, capsys):
        exit_code = await run_cli("convert", str(tmp_path / "absent.md"))

        assert exit_code == cli.EXIT_FAILURE
        assert "Input file not found" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_infrastructure_failure(self, run_cli, guide, mock_renderer):
        mock_renderer.render.side_effect = PoolExhausted(2)

        assert await run_cli("convert", str(guide)) == cli.EXIT_FAILURE


    @pytest.mark.asyncio
    async def test_input_not_utf8(self, run_cli, tmp_path, capsys):
        source = tmp_path / "latin.md"
        source.write_bytes(b"# T\n\xff\xfe bad bytes\n")

        exit_code = await run_cli("convert", str(source))

        assert exit_code == cli.EXIT_FAILURE
        assert "not valid UTF-8" in capsys.readouterr().err


class TestExtract:
    """Test the extract subcommand."""

    @pytest.mark.asyncio
    async def test_writes_images(self, run_cli, guide, tmp_path):
        exit_code = await run_cli("extract", str(guide), "--format", "svg")

        output_dir = tmp_path / "guide_diagrams"
        assert exit_code == cli.EXIT_OK
        assert (output_dir / "diagram_1.svg").read_bytes() == b"rendered-image"
        assert (output_dir / "diagram_2.svg").exists()

    @pytest.mark.asyncio
    async def test_placeholder_is_degraded(self, run_cli, guide, mock_renderer, tmp_path):
        mock_renderer.render.side_effect = None
        mock_renderer.render.return_value = make_rendered(fallback=True, error_message="Parse error")

        exit_code = await run_cli("extract", str(guide), "--output-dir", str(tmp_path / "imgs"))

        assert exit_code == cli.EXIT_DEGRADED
        assert (tmp_path / "imgs" / "diagram_1.png").read_bytes() == b"rendered-image"


class TestValidate:
    """Test the validate subcommand."""

    @pytest.mark.asyncio
    async def test_markdown_blocks(self, run_cli, guide, capsys):
        exit_code = await run_cli("validate", str(guide))

        out = capsys.readouterr().out
        assert exit_code == cli.EXIT_OK
        assert "Diagram 1 (flowchart): valid" in out
        assert "Diagram 2 (pie): valid" in out

    @pytest.mark.asyncio
    async def test_bare_source_invalid(self, run_cli, tmp_path, mock_renderer, capsys):
        source = tmp_path / "broken.mmd"
        source.write_text("graph TD\nA-->", encoding="utf-8")
        mock_renderer.render.side_effect = None
        mock_renderer.render.return_value = make_rendered(fallback=True, error_message="Parse error")

        exit_code = await run_cli("validate", str(source))

        assert exit_code == cli.EXIT_FAILURE
        assert "invalid: Parse error" in capsys.readouterr().out


    @pytest.mark.asyncio
    async def test_input_not_utf8(self, run_cli, tmp_path, capsys):
        source = tmp_path / "diagram.mmd"
        source.write_bytes(b"graph TD\n\xff-->B\n")

        assert await run_cli("validate", str(source)) == cli.EXIT_FAILURE
        assert "not valid UTF-8" in capsys.readouterr().err


def test_main_runs_command():
    with patch.object(cli, "run", AsyncMock(return_value=cli.EXIT_DEGRADED)) as run:
        assert cli.main(["validate", "diagram.mmd"]) == cli.EXIT_DEGRADED

    args = run.await_args.args[0]
    assert args.command == "validate"
    assert str(args.file) == "diagram.mmd"


def test_parser_rejects_unknown_target():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["convert", "doc.md", "--to", "docx"])
