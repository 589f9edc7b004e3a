"""SKU -> entity id cache that keeps row processing idempotent.

Lookups consult three layers in order:

1. ``pending``: SKUs created during the current job. Restored from the job's
   ``dedup_snapshot`` at the start of a chunk and persisted back at its end,
   because each foreground chunk runs in a fresh, stateless request.
2. the preloaded map of the durable key space, loaded once on first lookup
   when the catalog holds at most ``max_size`` SKUs. A miss here is final.
3. otherwise (catalog too large to hold in memory) a direct query per lookup.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from power_importer.db.models.product import Product

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 10000


def normalize_sku(sku: str | None) -> str:
    return (sku or "").strip().lower()


class SkuIndex(Protocol):
    """Durable key space the cache is built from."""

    def count(self) -> int: ...

    def load(self, limit: int) -> dict[str, int]: ...

    def find(self, sku: str) -> int | None: ...


class SqlSkuIndex:
    """``SkuIndex`` over the ``products`` table, case-insensitive on SKU."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def count(self) -> int:
        return self._session.scalar(select(func.count(Product.id))) or 0

    def load(self, limit: int) -> dict[str, int]:
        rows = self._session.execute(
            select(func.lower(Product.sku), Product.id).limit(limit)
        )
        return {sku: product_id for sku, product_id in rows}

    def find(self, sku: str) -> int | None:
        return self._session.scalar(
            select(Product.id).where(func.lower(Product.sku) == normalize_sku(sku)).limit(1)
        )


class SkuCache:
    def __init__(
        self,
        index: SkuIndex,
        max_size: int = DEFAULT_MAX_SIZE,
        pending: Mapping[str, int] | None = None,
    ) -> None:
        self._index = index
        self.max_size = max_size
        self._pending: dict[str, int] = {
            normalize_sku(sku): int(entity_id) for sku, entity_id in (pending or {}).items()
        }
        self._preloaded: dict[str, int] = {}
        self._loaded = False
        self._fallback = False

    @property
    def is_fallback(self) -> bool:
        """True once the cache decided to query per lookup."""
        self._ensure_loaded()
        return self._fallback

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        self._loaded = True

        total = self._index.count()
        if total > self.max_size:
            self._fallback = True
            logger.info(
                f"{total} SKUs exceed cache ceiling {self.max_size}, "
                "using per-lookup queries"
            )
            return

        preloaded = self._index.load(self.max_size)
        preloaded.update(self._preloaded)
        self._preloaded = preloaded
        logger.info(f"SKU cache initialized with {len(self._preloaded)} entries")

    def lookup(self, sku: str) -> int | None:
        """Return the entity id for ``sku`` or None when it does not exist yet."""
        key = normalize_sku(sku)
        if not key:
            return None
        if key in self._pending:
            return self._pending[key]

        self._ensure_loaded()
        if self._fallback:
            return self._index.find(key)
        return self._preloaded.get(key)

    def insert(self, sku: str, entity_id: int) -> int:
        """Record a newly created entity and return its id."""
        key = normalize_sku(sku)
        self._pending[key] = int(entity_id)
        if not self._fallback and len(self._preloaded) < self.max_size:
            self._preloaded[key] = int(entity_id)
        return int(entity_id)

    def snapshot(self) -> dict[str, int]:
        """Pending mappings to persist with the job at the end of a chunk."""
        return dict(self._pending)

    def stats(self) -> dict[str, object]:
        return {
            "loaded": self._loaded,
            "mode": "fallback" if self._fallback else "preload",
            "preloaded": len(self._preloaded),
            "pending": len(self._pending),
            "max_size": self.max_size,
        }
