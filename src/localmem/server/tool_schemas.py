"""localmem MCP Tool Schemas -- 7 tools for bags and memories."""

from localmem.types import SUPPORTED_KINDS

_KIND = {"type": "string", "enum": list(SUPPORTED_KINDS)}
_TAGS = {"type": "array", "items": {"type": "string"}}

TOOL_SCHEMAS = [
    {
        "name": "list_bags",
        "description": "List all memory bags and their retrieval policies.",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "upsert_bag",
        "description": "Create or update a bag policy used for memory retrieval. Omitted fields keep their current value.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "description": {"type": ["string", "null"], "description": "null clears the description"},
                "defaultTopK": {"type": "integer", "minimum": 1, "maximum": 100},
                "recencyHalfLifeDays": {"type": "number", "minimum": 1, "maximum": 3650},
                "importanceWeight": {"type": "number", "minimum": 0, "maximum": 2},
                "allowedKinds": {
                    "type": "array",
                    "items": _KIND,
                    "description": "Kinds the bag accepts. Empty means all kinds.",
                },
            },
            "required": ["name"],
        },
    },
    {
        "name": "delete_bag",
        "description": "Delete a bag policy. Requires force=true when memories exist and allowSystem=true for the built-in bags.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "name": {"type": "string", "minLength": 1},
                "force": {"type": "boolean", "description": "Also delete every memory in the bag"},
                "allowSystem": {"type": "boolean", "description": "Permit deleting a built-in bag"},
            },
            "required": ["name"],
        },
    },
    {
        "name": "store_memory",
        "description": "Store a memory item in a bag with semantic embedding.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "bag": {"type": "string", "minLength": 1},
                "kind": {**_KIND, "default": "note"},
                "content": {"type": "string", "minLength": 1},
                "tags": _TAGS,
                "importance": {"type": "integer", "minimum": 1, "maximum": 5},
                "source": {"type": "object", "description": "Free-form provenance metadata"},
                "expiresAt": {"type": ["string", "null"], "description": "ISO-8601 expiry timestamp"},
            },
            "required": ["bag", "content"],
        },
    },
    {
        "name": "recall_memories",
        "description": "Recall relevant memories by semantic query and optional filters. Tags are a hard filter and a ranking boost.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "minLength": 1},
                "bag": {"type": "string"},
                "kinds": {"type": "array", "items": _KIND},
                "tags": _TAGS,
                "topK": {"type": "integer", "minimum": 1, "maximum": 100},
                "candidateLimit": {"type": "integer", "minimum": 1, "maximum": 5000},
            },
            "required": ["query"],
        },
    },
    {
        "name": "update_memory",
        "description": "Update memory fields and re-embed if content changes.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "content": {"type": "string"},
                "tags": _TAGS,
                "importance": {"type": "integer", "minimum": 1, "maximum": 5},
                "source": {"type": "object"},
                "expiresAt": {"type": ["string", "null"], "description": "null clears the expiry"},
            },
            "required": ["id"],
        },
    },
    {
        "name": "delete_memory",
        "description": "Delete a memory record by id.",
        "inputSchema": {
            "type": "object",
            "properties": {"id": {"type": "string", "minLength": 1}},
            "required": ["id"],
        },
    },
]
