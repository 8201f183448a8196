"""
Rendering Module
===============

Mermaid diagram rendering with browser automation.

Components:
- browser_pool: bounded pool of headless Chromium instances
- diagram_analyzer: size and layout planning from diagram source
- diagram_renderer: in-page Mermaid rendering, screenshot and SVG extraction
- errors: rendering error taxonomy
"""
