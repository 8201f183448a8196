"""
Data Models
===========

Pydantic models shared by the rendering core, the document layer and the front ends.
"""
