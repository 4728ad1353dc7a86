"""MCP stdio server exposing vault sync commands as tools."""
