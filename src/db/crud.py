# src/db/crud.py
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from db import models
from db.database import connect
from utils.config import settings
from utils.logger import get_logger

_logger = get_logger(__name__)


def _ts(dt: datetime) -> str:
    """Fixed-width UTC timestamp, so TEXT comparison orders correctly."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_cart_item(row) -> models.CartItem:
    return models.CartItem(
        cart_item_id=row["cart_item_id"],
        product=models.Product.from_dict(json.loads(row["product_json"])),
        qty=int(row["qty"]),
        selected_attributes=models.attributes_from(json.loads(row["attributes_json"])),
        selected_variant=row["selected_variant"],
        added_at=models.parse_datetime(row["added_at"]) or models.utcnow(),
    )


def _cart_params(item: models.CartItem, position: int) -> tuple:
    return (
        item.cart_item_id,
        item.product_id,
        json.dumps(item.product.to_dict()),
        max(1, item.qty),
        json.dumps([a.to_dict() for a in item.selected_attributes]),
        item.selected_variant,
        _ts(item.added_at),
        position,
    )


_UPSERT_CART_ITEM = """
    INSERT INTO cart_items(cart_item_id, product_id, product_json, qty, attributes_json,
                           selected_variant, added_at, position)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(cart_item_id) DO UPDATE SET product_json     = excluded.product_json,
                                            qty              = excluded.qty,
                                            attributes_json  = excluded.attributes_json,
                                            selected_variant = excluded.selected_variant,
                                            position         = excluded.position;
"""


# ---------------------------
# Cart
# ---------------------------


async def purge_expired_cart_items(
    ttl_hours: Optional[float] = None, now: Optional[datetime] = None
) -> int:
    """Delete cart rows older than the TTL; returns how many were removed."""
    ttl = settings.cart_ttl_hours if ttl_hours is None else ttl_hours
    cutoff = (now or models.utcnow()) - timedelta(hours=ttl)
    async with connect() as conn:
        cur = await conn.execute("DELETE FROM cart_items WHERE added_at < ?;", (_ts(cutoff),))
        removed = cur.rowcount
        await cur.close()
        await conn.commit()
    if removed:
        _logger.info(f"Purged {removed} expired cart item(s)")
    return removed


async def load_cart(
    ttl_hours: Optional[float] = None, now: Optional[datetime] = None
) -> List[models.CartItem]:
    """Return the stored cart in display order, after dropping expired rows."""
    await purge_expired_cart_items(ttl_hours, now)
    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT cart_item_id, product_json, qty, attributes_json, selected_variant, added_at
            FROM cart_items
            ORDER BY position, added_at;
            """
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_cart_item(r) for r in rows]


async def save_cart_item(item: models.CartItem, position: int = 0) -> None:
    async with connect() as conn:
        await conn.execute(_UPSERT_CART_ITEM, _cart_params(item, position))
        await conn.commit()


async def save_cart(items: Sequence[models.CartItem]) -> None:
    """Replace the stored cart with `items` in one transaction."""
    async with connect() as conn:
        await conn.execute("DELETE FROM cart_items;")
        await conn.executemany(
            _UPSERT_CART_ITEM, [_cart_params(item, pos) for pos, item in enumerate(items)]
        )
        await conn.commit()


async def delete_cart_item(cart_item_id: str) -> bool:
    async with connect() as conn:
        cur = await conn.execute("DELETE FROM cart_items WHERE cart_item_id = ?;", (cart_item_id,))
        deleted = cur.rowcount > 0
        await cur.close()
        await conn.commit()
    return deleted


async def clear_cart() -> None:
    async with connect() as conn:
        await conn.execute("DELETE FROM cart_items;")
        await conn.commit()


# ---------------------------
# Wishlist
# ---------------------------


async def load_wishlist() -> List[str]:
    async with connect() as conn:
        cur = await conn.execute("SELECT product_id FROM wishlist ORDER BY added_at;")
        rows = await cur.fetchall()
        await cur.close()
    return [r[0] for r in rows]


async def add_wishlist_item(product_id: str, when: Optional[datetime] = None) -> None:
    async with connect() as conn:
        await conn.execute(
            "INSERT OR IGNORE INTO wishlist(product_id, added_at) VALUES (?, ?);",
            (product_id, _ts(when or models.utcnow())),
        )
        await conn.commit()


async def remove_wishlist_item(product_id: str) -> None:
    async with connect() as conn:
        await conn.execute("DELETE FROM wishlist WHERE product_id = ?;", (product_id,))
        await conn.commit()


# ---------------------------
# Payment references
# ---------------------------


async def record_payment_reference(ref: models.PaymentReference) -> None:
    async with connect() as conn:
        await conn.execute(
            """
            INSERT INTO payment_refs(reference, order_id, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(reference) DO UPDATE SET order_id = excluded.order_id;
            """,
            (ref.reference, ref.order_id, _ts(ref.created_at)),
        )
        await conn.commit()


async def list_payment_references() -> List[models.PaymentReference]:
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT reference, order_id, created_at FROM payment_refs ORDER BY created_at DESC;"
        )
        rows = await cur.fetchall()
        await cur.close()
    return [
        models.PaymentReference(
            reference=r["reference"],
            order_id=r["order_id"],
            created_at=models.parse_datetime(r["created_at"]) or models.utcnow(),
        )
        for r in rows
    ]


async def get_payment_reference(reference: str) -> Optional[models.PaymentReference]:
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT reference, order_id, created_at FROM payment_refs WHERE reference = ?;",
            (reference,),
        )
        row = await cur.fetchone()
        await cur.close()
    if not row:
        return None
    return models.PaymentReference(
        reference=row["reference"],
        order_id=row["order_id"],
        created_at=models.parse_datetime(row["created_at"]) or models.utcnow(),
    )
