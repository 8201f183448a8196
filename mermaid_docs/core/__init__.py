"""
Core Business Logic
==================

Core business logic modules for diagram rendering and document conversion.

Modules:
- rendering: browser pool, diagram analysis and Mermaid rendering
- cache: content-addressed cache of rendered diagrams
- document: diagram extraction, substitution and output generators
- service: composition root owning the pool, cache and renderer
"""
