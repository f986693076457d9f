"""
localmem Bags -- CRUD over named retrieval policies.

A bag policy says how recall treats the memories filed under it: how many
results to return by default, how fast recency decays, how much importance
counts, and which kinds of memory the bag accepts.

Numeric fields are clamped on every write, whatever the caller sends:

    default_top_k            1 .. 100   (integer)
    recency_half_life_days   1 .. 3650
    importance_weight        0 .. 2
"""

import json
import logging
import math
import sqlite3
from typing import Any, List, Optional

from localmem.db import PROTECTED_BAGS, Database, now_iso
from localmem.errors import PolicyViolation, ValidationError
from localmem.models import BagDeleteResult, BagPolicy
from localmem.types import UNSET, MemoryKind, parse_kinds

logger = logging.getLogger("localmem.bags")

DEFAULT_TOP_K = 8
DEFAULT_HALF_LIFE_DAYS = 30.0
DEFAULT_IMPORTANCE_WEIGHT = 0.35

TOP_K_RANGE = (1, 100)
HALF_LIFE_RANGE = (1.0, 3650.0)
IMPORTANCE_WEIGHT_RANGE = (0.0, 2.0)


_BAG_COLUMNS = (
    "name, description, default_top_k, recency_half_life_days, "
    "importance_weight, allowed_kinds_json, created_at, updated_at"
)


def clamp_number(value: Any, fallback: float, min_val: float, max_val: float) -> float:
    """Clamp a numeric value, or return *fallback* for non-numbers and NaN."""
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if math.isnan(value):
        return fallback
    return max(min_val, min(max_val, value))


def normalize_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("bag name is required")
    return name.strip()


def _row_to_policy(row: sqlite3.Row) -> BagPolicy:
    try:
        stored_kinds = json.loads(row["allowed_kinds_json"] or "[]")
    except ValueError:
        logger.warning("Bag %s has unreadable allowed_kinds_json; treating as unrestricted", row["name"])
        stored_kinds = []
    kinds = []
    for raw in stored_kinds:
        try:
            kinds.append(MemoryKind(raw))
        except ValueError:
            logger.warning("Bag %s lists unknown kind %r; ignoring", row["name"], raw)
    return BagPolicy(
        name=row["name"],
        description=row["description"],
        default_top_k=int(row["default_top_k"]),
        recency_half_life_days=float(row["recency_half_life_days"]),
        importance_weight=float(row["importance_weight"]),
        allowed_kinds=kinds,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class BagPolicyStore:
    """Reads and writes bag policies through a shared Database handle."""

    def __init__(self, db: Database):
        self.db = db

    def list(self) -> List[BagPolicy]:
        """All policies ordered by name."""
        with self.db.read() as c:
            rows = c.execute(f"SELECT {_BAG_COLUMNS} FROM bags ORDER BY name ASC").fetchall()
        return [_row_to_policy(r) for r in rows]

    def get(self, name: str) -> Optional[BagPolicy]:
        with self.db.read() as c:
            row = c.execute(f"SELECT {_BAG_COLUMNS} FROM bags WHERE name = ?", (name,)).fetchone()
        return _row_to_policy(row) if row else None

    def upsert(
        self,
        name: str,
        description: Any = UNSET,
        default_top_k: Any = UNSET,
        recency_half_life_days: Any = UNSET,
        importance_weight: Any = UNSET,
        allowed_kinds: Any = UNSET,
    ) -> BagPolicy:
        """Create the bag or merge the supplied fields into it.

        Omitted fields keep their current value (or the first-creation
        default). ``description=None`` clears the description.
        """
        name = normalize_name(name)
        if description is not UNSET and description is not None and not isinstance(description, str):
            raise ValidationError("description must be a string or null")
        kinds = None if allowed_kinds is UNSET or allowed_kinds is None else parse_kinds(allowed_kinds)

        with self.db.transaction() as c:
            row = c.execute(f"SELECT {_BAG_COLUMNS} FROM bags WHERE name = ?", (name,)).fetchone()
            existing = _row_to_policy(row) if row else None
            now = now_iso()

            base_top_k = existing.default_top_k if existing else DEFAULT_TOP_K
            base_half_life = existing.recency_half_life_days if existing else DEFAULT_HALF_LIFE_DAYS
            base_weight = existing.importance_weight if existing else DEFAULT_IMPORTANCE_WEIGHT

            next_description = (existing.description if existing else None) if description is UNSET else description
            next_top_k = int(clamp_number(
                None if default_top_k is UNSET else default_top_k, base_top_k, *TOP_K_RANGE
            ))
            next_half_life = float(clamp_number(
                None if recency_half_life_days is UNSET else recency_half_life_days, base_half_life, *HALF_LIFE_RANGE
            ))
            next_weight = float(clamp_number(
                None if importance_weight is UNSET else importance_weight, base_weight, *IMPORTANCE_WEIGHT_RANGE
            ))
            next_kinds = kinds if kinds is not None else (existing.allowed_kinds if existing else [])

            c.execute(
                f"""INSERT INTO bags ({_BAG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        description = excluded.description,
                        default_top_k = excluded.default_top_k,
                        recency_half_life_days = excluded.recency_half_life_days,
                        importance_weight = excluded.importance_weight,
                        allowed_kinds_json = excluded.allowed_kinds_json,
                        updated_at = excluded.updated_at""",
                (
                    name,
                    next_description,
                    next_top_k,
                    next_half_life,
                    next_weight,
                    json.dumps([k.value for k in next_kinds]),
                    now,
                    now,
                ),
            )
            row = c.execute(f"SELECT {_BAG_COLUMNS} FROM bags WHERE name = ?", (name,)).fetchone()

        logger.info("%s bag %s", "Updated" if existing else "Created", name)
        return _row_to_policy(row)

    def delete(self, name: str, force: bool = False, allow_system: bool = False) -> BagDeleteResult:
        """Delete a bag and, with *force*, every memory it owns.

        Missing bags are a no-op reporting ``deleted=False``. Protected bags
        need *allow_system*; non-empty bags need *force*.
        """
        name = normalize_name(name)
        with self.db.transaction() as c:
            row = c.execute("SELECT name FROM bags WHERE name = ?", (name,)).fetchone()
            if row is None:
                return BagDeleteResult(name, deleted=False)
            if name in PROTECTED_BAGS and not allow_system:
                raise PolicyViolation(f"bag '{name}' is a system bag; pass allowSystem to delete it")
            owned = c.execute("SELECT COUNT(*) FROM memories WHERE bag = ?", (name,)).fetchone()[0]
            if owned and not force:
                raise PolicyViolation(f"bag '{name}' still holds {owned} memories; pass force to delete them")
            removed = c.execute("DELETE FROM memories WHERE bag = ?", (name,)).rowcount if owned else 0
            c.execute("DELETE FROM bags WHERE name = ?", (name,))

        logger.info("Deleted bag %s (%d memories removed)", name, removed)
        return BagDeleteResult(name, deleted=True, memories_deleted=removed)
