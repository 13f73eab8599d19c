"""
Chronicle Servers

- api: FastAPI HTTP surface (chronicle-api)
- mcp_tools: MCP tools over stdio (chronicle-mcp)
"""
