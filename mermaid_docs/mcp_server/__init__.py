"""
MCP Server
==========

Model Context Protocol server exposing the conversion tools.
"""
