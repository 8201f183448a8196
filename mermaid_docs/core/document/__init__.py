"""
Document Module
===============

Diagram block extraction, substitution and output generation.

Components:
- assembler: extract Mermaid blocks and substitute rendered results
- html_generator: Markdown to printable HTML
- pdf_exporter: HTML to PDF through a pooled browser
- confluence_exporter: Confluence storage format with diagram attachments
- converter: high level conversion operations used by the front ends
"""
