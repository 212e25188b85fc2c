"""MCP server exposing the staging engine over stdio."""
