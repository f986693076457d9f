"""
localmem Handlers -- wire payloads in, JSON-ready dicts out.

Each operation takes the ``MemoryService`` and the raw (camelCase) argument
dict shared by the MCP tools and the HTTP routes, validates it, calls the
core and returns a plain dict. Domain failures propagate as
``LocalMemError`` subclasses; ``error_status`` maps them to HTTP codes and
``build_handlers`` turns them into MCP error responses.
"""

import asyncio
import functools
import json
import logging
import math
from typing import Any, Callable, Dict

from localmem.errors import (
    EmbeddingError,
    EmbeddingTimeout,
    LocalMemError,
    NotFoundError,
    PolicyViolation,
    ValidationError,
)
from localmem.service import MemoryService
from localmem.types import UNSET

logger = logging.getLogger("localmem.server.handlers")


# ============================================================================
# Response Helpers
# ============================================================================


def mcp_response(text: str) -> dict:
    """Build a successful MCP response."""
    return {"content": [{"type": "text", "text": str(text)}]}


def mcp_error(text: str) -> dict:
    """Build an error MCP response."""
    return {"content": [{"type": "text", "text": f"Error: {text}"}], "isError": True}


def error_status(exc: BaseException) -> int:
    """HTTP status for a domain failure."""
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, PolicyViolation):
        return 409
    if isinstance(exc, EmbeddingTimeout):
        return 504
    if isinstance(exc, EmbeddingError):
        return 502
    return 500


# ============================================================================
# Argument parsing
# ============================================================================


def _require_args(arguments: Any) -> dict:
    if arguments is None:
        return {}
    if not isinstance(arguments, dict):
        raise ValidationError("request body must be a JSON object")
    return arguments


def _text(arguments: dict, key: str, required: bool = False) -> Any:
    value = arguments.get(key, UNSET)
    if value is UNSET or value is None:
        if required:
            raise ValidationError(f"{key} is required")
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    if required and not value.strip():
        raise ValidationError(f"{key} is required")
    return value


def _number(arguments: dict, key: str) -> Any:
    value = arguments.get(key, UNSET)
    if value is UNSET or value is None:
        return UNSET
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{key} must be a number")
    return value


def _string_list(arguments: dict, key: str) -> Any:
    value = arguments.get(key, UNSET)
    if value is UNSET or value is None:
        return UNSET
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValidationError(f"{key} must be an array of strings")
    return value


def _flag(arguments: dict, key: str) -> bool:
    value = arguments.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def _given(value: Any, default: Any = None) -> Any:
    return default if value is UNSET else value


# ============================================================================
# Operations
# ============================================================================


def list_bags(service: MemoryService, arguments: dict = None) -> dict:
    return {"bags": [b.to_dict() for b in service.bags.list()]}


def upsert_bag(service: MemoryService, arguments: dict) -> dict:
    arguments = _require_args(arguments)
    name = _text(arguments, "name", required=True)
    description = arguments.get("description", UNSET)
    if description is not UNSET and description is not None and not isinstance(description, str):
        raise ValidationError("description must be a string or null")
    bag = service.bags.upsert(
        name,
        description=description,
        default_top_k=_number(arguments, "defaultTopK"),
        recency_half_life_days=_number(arguments, "recencyHalfLifeDays"),
        importance_weight=_number(arguments, "importanceWeight"),
        allowed_kinds=_string_list(arguments, "allowedKinds"),
    )
    return {"bag": bag.to_dict()}


def delete_bag(service: MemoryService, arguments: dict) -> dict:
    arguments = _require_args(arguments)
    result = service.bags.delete(
        _text(arguments, "name", required=True),
        force=_flag(arguments, "force"),
        allow_system=_flag(arguments, "allowSystem"),
    )
    return result.to_dict()


def store_memory(service: MemoryService, arguments: dict) -> dict:
    arguments = _require_args(arguments)
    # only a missing or null kind defaults; "" is rejected by parse_kind
    kind = _text(arguments, "kind")
    memory = service.memories.store(
        bag=_text(arguments, "bag", required=True),
        kind="note" if kind is None or kind is UNSET else kind,
        content=_text(arguments, "content", required=True),
        tags=_given(_string_list(arguments, "tags")),
        importance=_given(_number(arguments, "importance")),
        source=arguments.get("source"),
        expires_at=_given(_text(arguments, "expiresAt")),
    )
    return {"memory": memory.to_dict()}


def recall_memories(service: MemoryService, arguments: dict) -> dict:
    arguments = _require_args(arguments)
    results = service.recall.recall(
        _text(arguments, "query", required=True),
        bag=_given(_text(arguments, "bag")),
        kinds=_given(_string_list(arguments, "kinds")),
        tags=_given(_string_list(arguments, "tags")),
        top_k=_given(_number(arguments, "topK")),
        candidate_limit=_given(_number(arguments, "candidateLimit")),
    )
    return {"memories": [r.to_dict() for r in results]}


def update_memory(service: MemoryService, arguments: dict) -> dict:
    arguments = _require_args(arguments)
    content = _text(arguments, "content")
    memory = service.memories.update(
        _text(arguments, "id", required=True),
        content=UNSET if content is None else content,
        tags=_string_list(arguments, "tags"),
        importance=_number(arguments, "importance"),
        source=arguments.get("source", UNSET),
        # explicit null clears the expiry
        expires_at=_text(arguments, "expiresAt"),
    )
    return {"memory": memory.to_dict()}


def delete_memory(service: MemoryService, arguments: dict) -> dict:
    arguments = _require_args(arguments)
    return {"deleted": service.memories.delete(_text(arguments, "id", required=True))}


OPERATIONS: Dict[str, Callable[[MemoryService, dict], dict]] = {
    "list_bags": list_bags,
    "upsert_bag": upsert_bag,
    "delete_bag": delete_bag,
    "store_memory": store_memory,
    "recall_memories": recall_memories,
    "update_memory": update_memory,
    "delete_memory": delete_memory,
}


# ============================================================================
# MCP handler table
# ============================================================================


def build_handlers(service: MemoryService) -> Dict[str, Any]:
    """Map tool names to async handlers bound to *service*.

    The core is synchronous (SQLite + blocking HTTP to Ollama), so each call
    runs in the default executor to keep the event loop free.
    """

    def _bind(name: str, operation):
        async def handler(arguments: dict) -> dict:
            loop = asyncio.get_running_loop()
            try:
                result = await loop.run_in_executor(None, functools.partial(operation, service, arguments or {}))
            except LocalMemError as e:
                logger.info("%s rejected: %s", name, e)
                return mcp_error(str(e))
            return mcp_response(json.dumps(result, indent=2))

        handler.__name__ = f"handle_{name}"
        return handler

    return {name: _bind(name, op) for name, op in OPERATIONS.items()}
