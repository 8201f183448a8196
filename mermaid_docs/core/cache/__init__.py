"""
Cache Module
============

Content-addressed cache for rendered diagrams with optional on-disk side files.
"""
