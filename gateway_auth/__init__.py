"""OAuth 2.0 authorization server core for the MCP gateway."""
