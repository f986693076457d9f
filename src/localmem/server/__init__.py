"""localmem server -- MCP tools and the HTTP/JSON API over one MemoryService."""
