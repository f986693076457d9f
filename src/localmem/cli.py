"""localmem CLI -- memory commands, bag management and server entry points."""

import argparse
import asyncio
import json
import logging
import sys
import time

from localmem import __version__
from localmem.config import Settings
from localmem.errors import LocalMemError
from localmem.types import SUPPORTED_KINDS

logger = logging.getLogger("localmem.cli")


def _open_service(settings: Settings, embedder=None):
    from localmem.service import MemoryService

    return MemoryService(settings, embedder=embedder)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def _csv(value):
    if value is None:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


# ============================================================================
# Commands
# ============================================================================


def cmd_init(args, settings: Settings):
    """Create the database and seed the default bags."""
    from localmem.db import Database

    with Database(settings.db_path, seed_defaults=False) as db:
        seeded = db.seed_default_bags()
        version = db.schema_version()
    print(f"Database: {settings.db_path} (schema v{version})")
    print(f"Seeded {seeded} default bag(s)")


def cmd_serve(args, settings: Settings):
    """Wait for Ollama, optionally pull the model, then serve HTTP + MCP."""
    from localmem.embeddings import OllamaEmbeddingProvider
    from localmem.server.http_server import run_http

    host = args.host or settings.host
    port = args.port or settings.port
    embedder = OllamaEmbeddingProvider.from_settings(settings)

    print(f"Waiting for Ollama at {settings.ollama_url}...", file=sys.stderr)
    embedder.wait_until_ready()
    if settings.auto_pull_model and not args.no_pull:
        print(f"Ensuring embedding model '{settings.embedding_model}' is available...", file=sys.stderr)
        embedder.ensure_model()

    with _open_service(settings, embedder=embedder) as service:
        asyncio.run(run_http(service, host, port, log_level=settings.log_level.lower()))


def cmd_stdio(args, settings: Settings):
    """Run the MCP server over stdio."""
    from localmem.server.mcp_server import main as mcp_main

    asyncio.run(mcp_main(settings))


def cmd_bags(args, settings: Settings):
    with _open_service(settings) as service:
        bags = service.bags.list()
    if args.json:
        _print_json({"bags": [b.to_dict() for b in bags]})
        return
    for bag in bags:
        kinds = ", ".join(k.value for k in bag.allowed_kinds) or "all"
        print(f"{bag.name:<24} top_k={bag.default_top_k:<3} half_life={bag.recency_half_life_days:g}d "
              f"weight={bag.importance_weight:g} kinds=[{kinds}]")
        if bag.description:
            print(f"  {bag.description}")


def cmd_bag_set(args, settings: Settings):
    fields = {}
    if args.clear_description:
        fields["description"] = None
    elif args.description is not None:
        fields["description"] = args.description
    if args.top_k is not None:
        fields["default_top_k"] = args.top_k
    if args.half_life is not None:
        fields["recency_half_life_days"] = args.half_life
    if args.importance_weight is not None:
        fields["importance_weight"] = args.importance_weight
    if args.kinds is not None:
        fields["allowed_kinds"] = _csv(args.kinds)
    with _open_service(settings) as service:
        bag = service.bags.upsert(args.name, **fields)
    _print_json({"bag": bag.to_dict()})


def cmd_bag_delete(args, settings: Settings):
    with _open_service(settings) as service:
        result = service.bags.delete(args.name, force=args.force, allow_system=args.allow_system)
    _print_json(result.to_dict())


def cmd_store(args, settings: Settings):
    """Store a memory in a bag."""
    content = " ".join(args.content)
    with _open_service(settings) as service:
        memory = service.memories.store(
            bag=args.bag,
            kind=args.kind,
            content=content,
            tags=_csv(args.tags),
            importance=args.importance,
            expires_at=args.expires_at,
        )
    if args.json:
        _print_json({"memory": memory.to_dict()})
    else:
        print(f"Stored [{memory.kind.value}] {memory.id} in {memory.bag}: {content[:80]}")


def cmd_recall(args, settings: Settings):
    """Recall memories by semantic similarity."""
    query_text = " ".join(args.query_text)
    start = time.monotonic()
    with _open_service(settings) as service:
        results = service.recall.recall(
            query_text,
            bag=args.bag,
            kinds=_csv(args.kinds),
            tags=_csv(args.tags),
            top_k=args.top_k,
            candidate_limit=args.candidate_limit,
        )
    elapsed = time.monotonic() - start
    if args.json:
        _print_json({"memories": [r.to_dict() for r in results], "elapsed_s": round(elapsed, 3)})
        return
    if not results:
        print("No memories found.")
        return
    for i, result in enumerate(results, 1):
        mem = result.memory
        tags = f" #{' #'.join(mem.tags)}" if mem.tags else ""
        print(f"{i:>2}. [{result.score:.3f}] ({mem.bag}/{mem.kind.value}) {mem.content[:100]}{tags}")
    print(f"\n{len(results)} result(s) in {elapsed:.2f}s")


def cmd_update(args, settings: Settings):
    fields = {}
    if args.content:
        fields["content"] = " ".join(args.content)
    if args.tags is not None:
        fields["tags"] = _csv(args.tags)
    if args.importance is not None:
        fields["importance"] = args.importance
    if args.clear_expiry:
        fields["expires_at"] = None
    elif args.expires_at is not None:
        fields["expires_at"] = args.expires_at
    with _open_service(settings) as service:
        memory = service.memories.update(args.id, **fields)
    _print_json({"memory": memory.to_dict()})


def cmd_delete(args, settings: Settings):
    with _open_service(settings) as service:
        deleted = service.memories.delete(args.id)
    print(f"Deleted {args.id}" if deleted else f"Not found: {args.id}")


def cmd_purge_expired(args, settings: Settings):
    with _open_service(settings) as service:
        removed = service.memories.purge_expired()
    print(f"Purged {removed} expired memories")


def cmd_status(args, settings: Settings):
    """Show database location, bag and memory counts."""
    with _open_service(settings) as service:
        info = service.status()
    if args.json:
        _print_json(info)
        return
    print(f"localmem {__version__}")
    print(f"  Database:        {info['dbPath']} (schema v{info['schemaVersion']})")
    print(f"  Embedding model: {info['embeddingModel']} @ {info['ollamaUrl']}")
    print(f"  Bags:            {info['bags']}")
    print(f"  Memories:        {info['memories']}")
    for name, count in info["memoriesByBag"].items():
        print(f"    {name:<24} {count}")


# ============================================================================
# Entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="localmem",
        description="localmem -- local long-term memory with semantic recall",
    )
    parser.add_argument("--version", action="version", version=f"localmem {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init", help="Create the database and seed the default bags")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API and MCP endpoint")
    serve_parser.add_argument("--host", default=None, help="Bind address (default: LOCALMEM_HOST)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port (default: LOCALMEM_PORT)")
    serve_parser.add_argument("--no-pull", action="store_true", help="Skip pulling the embedding model")

    subparsers.add_parser("stdio", help="Run the MCP server over stdio")

    bags_parser = subparsers.add_parser("bags", help="List bags and their retrieval policies")
    bags_parser.add_argument("--json", action="store_true", help="Output as JSON")

    bag_set_parser = subparsers.add_parser("bag-set", help="Create or update a bag")
    bag_set_parser.add_argument("name")
    bag_set_parser.add_argument("--description", default=None)
    bag_set_parser.add_argument("--clear-description", action="store_true")
    bag_set_parser.add_argument("--top-k", type=int, default=None)
    bag_set_parser.add_argument("--half-life", type=float, default=None, help="Recency half-life in days")
    bag_set_parser.add_argument("--importance-weight", type=float, default=None)
    bag_set_parser.add_argument("--kinds", default=None, help="Comma-separated allowed kinds; empty allows all")

    bag_delete_parser = subparsers.add_parser("bag-delete", help="Delete a bag")
    bag_delete_parser.add_argument("name")
    bag_delete_parser.add_argument("--force", action="store_true", help="Also delete the bag's memories")
    bag_delete_parser.add_argument("--allow-system", action="store_true", help="Permit deleting a built-in bag")

    store_parser = subparsers.add_parser("store", help="Store a memory")
    store_parser.add_argument("content", nargs="+", help="Memory content")
    store_parser.add_argument("-b", "--bag", required=True)
    store_parser.add_argument("-k", "--kind", default="note", choices=SUPPORTED_KINDS)
    store_parser.add_argument("--tags", default=None, help="Comma-separated tags")
    store_parser.add_argument("--importance", type=int, default=None, help="1-5 (default: 3)")
    store_parser.add_argument("--expires-at", default=None, help="ISO-8601 expiry")
    store_parser.add_argument("--json", action="store_true", help="Output as JSON")

    recall_parser = subparsers.add_parser("recall", help="Recall memories by semantic similarity")
    recall_parser.add_argument("query_text", nargs="+", help="Search text")
    recall_parser.add_argument("-b", "--bag", default=None)
    recall_parser.add_argument("--kinds", default=None, help="Comma-separated kinds")
    recall_parser.add_argument("--tags", default=None, help="Comma-separated tags (at least one must match)")
    recall_parser.add_argument("--top-k", type=int, default=None)
    recall_parser.add_argument("--candidate-limit", type=int, default=None)
    recall_parser.add_argument("--json", action="store_true", help="Output as JSON")

    update_parser = subparsers.add_parser("update", help="Update a memory")
    update_parser.add_argument("id")
    update_parser.add_argument("content", nargs="*", help="New content (re-embeds)")
    update_parser.add_argument("--tags", default=None, help="Comma-separated tags")
    update_parser.add_argument("--importance", type=int, default=None)
    update_parser.add_argument("--expires-at", default=None)
    update_parser.add_argument("--clear-expiry", action="store_true")

    delete_parser = subparsers.add_parser("delete", help="Delete a memory by id")
    delete_parser.add_argument("id")

    subparsers.add_parser("purge-expired", help="Delete memories past their expiry")

    status_parser = subparsers.add_parser("status", help="Show database and memory counts")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    return parser


COMMANDS = {
    "init": cmd_init,
    "serve": cmd_serve,
    "stdio": cmd_stdio,
    "bags": cmd_bags,
    "bag-set": cmd_bag_set,
    "bag-delete": cmd_bag_delete,
    "store": cmd_store,
    "recall": cmd_recall,
    "update": cmd_update,
    "delete": cmd_delete,
    "purge-expired": cmd_purge_expired,
    "status": cmd_status,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return
    try:
        command(args, settings)
    except LocalMemError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
