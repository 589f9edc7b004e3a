"""Turn one CSV row into product entities.

Rows carry a ``Type`` of ``simple``, ``variable`` or ``variation``. Parents
(simple/variable) are keyed by ``SKU``; variations name their parent in the
``Parent`` column. A SKU that already exists is skipped with an INFO log and
counts as processed, never as an error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Protocol

from sqlalchemy.orm import Session

from power_importer.db.models.product import Product
from power_importer.services.dedup_cache import SkuCache
from power_importer.services.job_store import LogLevel

logger = logging.getLogger(__name__)

MAX_ATTRIBUTES = 3
PARENT_TYPES = ("simple", "variable")
VARIATION_TYPE = "variation"
SEO_COLUMNS = {
    "Meta: rank_math_focus_keyword": "focus_keyword",
    "Meta: rank_math_title": "title",
    "Meta: rank_math_description": "description",
}

RowLogger = Callable[[LogLevel, str], None]


@dataclass
class TranslationResult:
    entity_ids: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped: bool = False


class RowTranslator(Protocol):
    def translate(
        self,
        row: Mapping[str, str],
        cache: SkuCache,
        *,
        row_number: int,
        log: RowLogger,
    ) -> TranslationResult: ...


class InvalidFieldError(ValueError):
    pass


def _clean(row: Mapping[str, str], column: str) -> str:
    value = row.get(column)
    return value.strip() if isinstance(value, str) else ""


def _split(value: str, separator: str = ",") -> list[str]:
    return [part.strip() for part in value.split(separator) if part.strip()]


def _price(row: Mapping[str, str], column: str) -> Decimal | None:
    raw = _clean(row, column)
    if not raw:
        return None
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise InvalidFieldError(f"Invalid {column.lower()} '{raw}'") from e


def parse_categories(value: str) -> list[list[str]]:
    """Split ``Clothing > Shirts, Sale`` into ``[["Clothing", "Shirts"], ["Sale"]]``."""
    paths = []
    for path in _split(value):
        parts = _split(path, ">")
        if parts:
            paths.append(parts)
    return paths


def parse_attributes(row: Mapping[str, str], for_variation: bool) -> list[dict]:
    attributes = []
    for i in range(1, MAX_ATTRIBUTES + 1):
        name = _clean(row, f"Attribute {i} name")
        values = _clean(row, f"Attribute {i} value(s)")
        if not name or not values:
            continue
        attributes.append(
            {
                "name": name,
                "values": _split(values),
                "position": i - 1,
                "visible": _clean(row, f"Attribute {i} visible") == "1",
                "global": _clean(row, f"Attribute {i} global") == "1",
                "variation": for_variation,
            }
        )
    return attributes


class ProductRowTranslator:
    """``RowTranslator`` writing ``Product`` rows through a SQLAlchemy session.

    Each created entity is committed before it is recorded in the cache, so a
    failing row never leaves the cache pointing at a rolled-back id.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def translate(
        self,
        row: Mapping[str, str],
        cache: SkuCache,
        *,
        row_number: int,
        log: RowLogger,
    ) -> TranslationResult:
        product_type = (_clean(row, "Type") or "simple").lower()
        name = _clean(row, "Name") or "Untitled Product"

        try:
            if product_type in PARENT_TYPES:
                return self._create_parent(row, cache, product_type, name, row_number, log)
            if product_type == VARIATION_TYPE:
                return self._create_variation(row, cache, name, row_number, log)
        except InvalidFieldError as e:
            return TranslationResult(errors=[f"{e} for product '{name}'"])

        return TranslationResult(errors=[f"Unknown product type '{product_type}'"])

    def _create_parent(
        self,
        row: Mapping[str, str],
        cache: SkuCache,
        product_type: str,
        name: str,
        row_number: int,
        log: RowLogger,
    ) -> TranslationResult:
        sku = _clean(row, "SKU")
        if not sku:
            return TranslationResult(
                errors=[f"{product_type} product '{name}' has an empty SKU"]
            )

        existing_id = cache.lookup(sku)
        if existing_id:
            log(
                LogLevel.INFO,
                f"[Row {row_number}] SKU '{sku}' already exists (ID: {existing_id}), "
                f"skipping product '{name}'",
            )
            return TranslationResult(skipped=True)

        regular_price = _price(row, "Regular price")
        sale_price = _price(row, "Sale price")
        seo = {
            key: _clean(row, column) for column, key in SEO_COLUMNS.items() if _clean(row, column)
        }
        product = Product(
            sku=sku,
            name=name,
            product_type=product_type,
            description=_clean(row, "Description") or None,
            short_description=_clean(row, "Short description") or None,
            regular_price=regular_price,
            sale_price=sale_price,
            price=sale_price if sale_price is not None else regular_price,
            categories=parse_categories(_clean(row, "Categories")),
            tags=_split(_clean(row, "Tags")),
            attributes=parse_attributes(row, for_variation=product_type == "variable"),
            image_urls=_split(_clean(row, "Images")),
            brand=_clean(row, "brands") or None,
            seo=seo,
            active=True,
        )
        product_id = self._save(product)
        cache.insert(sku, product_id)

        log(
            LogLevel.SUCCESS,
            f"[Row {row_number}] Created {product_type} product '{name}' (ID: {product_id})",
        )
        return TranslationResult(entity_ids=[product_id])

    def _create_variation(
        self,
        row: Mapping[str, str],
        cache: SkuCache,
        name: str,
        row_number: int,
        log: RowLogger,
    ) -> TranslationResult:
        sku = _clean(row, "SKU")
        if not sku:
            return TranslationResult(errors=[f"Variation '{name}' has an empty SKU"])

        existing_id = cache.lookup(sku)
        if existing_id:
            log(
                LogLevel.INFO,
                f"[Row {row_number}] Variation SKU '{sku}' already exists "
                f"(ID: {existing_id}), skipping",
            )
            return TranslationResult(skipped=True)

        parent_sku = _clean(row, "Parent")
        parent_id = cache.lookup(parent_sku) if parent_sku else None
        if not parent_id:
            return TranslationResult(
                errors=[f"Variation '{name}' cannot find parent product (SKU: {parent_sku})"]
            )

        regular_price = _price(row, "Regular price")
        sale_price = _price(row, "Sale price")
        product = Product(
            sku=sku,
            name=name,
            product_type=VARIATION_TYPE,
            parent_id=parent_id,
            regular_price=regular_price,
            sale_price=sale_price,
            price=sale_price if sale_price is not None else regular_price,
            attributes=parse_attributes(row, for_variation=True)[:1],
            image_urls=_split(_clean(row, "Images"))[:1],
            active=True,
        )
        variation_id = self._save(product)
        cache.insert(sku, variation_id)

        log(
            LogLevel.SUCCESS,
            f"[Row {row_number}] Created variation (ID: {variation_id}) "
            f"under parent '{parent_sku}'",
        )
        return TranslationResult(entity_ids=[variation_id])

    def _save(self, product: Product) -> int:
        self.session.add(product)
        self.session.flush()
        self.session.commit()
        return product.id
