"""
Mermaid Docs
============

Convert Markdown documents with embedded Mermaid diagrams into PDF or
Confluence storage format. Diagrams are rendered through a pooled headless
Chromium and cached by content hash.

This package provides:
- Diagram analysis, rendering and caching (core.rendering, core.cache)
- Document assembly and exporters (core.document)
- MCP server and command line front ends
"""

__version__ = "1.0.0"
__author__ = "Mermaid Docs Team"
