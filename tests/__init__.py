"""
Test Suite
==========

Unit and integration tests for the rendering core, the document layer and the
front ends.
No test launches a real browser; Playwright objects are mocked.
"""
