"""MCP server exposing source tracking over stdio."""
