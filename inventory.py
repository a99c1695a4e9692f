"""
Inventory ledger.

The reserve/release functions are the only code allowed to move an asset
item between EN_STOCK and PRETE or to touch ``stock_items.loaned``. They
never commit: callers (the loan use cases) run them inside their own
transaction next to the loan line insert/delete.

Reservations are single conditional UPDATEs checked by affected row count,
so two concurrent requests cannot both claim the same item or the last
units of stock.
"""
from __future__ import annotations

import logging

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from crud import asset_item_to_schema, persist, stock_item_to_schema, utcnow
from errors import not_found, validation_error
from models import AssetItem, StockItem
from orm import AssetItemORM, StockItemORM

logger = logging.getLogger("app.inventory")

# statuses an operator may set by hand; PRETE only comes from a loan line
MANUAL_STATUSES = {"EN_STOCK", "HS", "REPARATION"}


def _load_asset_item(db: Session, asset_item_id: str) -> AssetItemORM:
    a = db.get(AssetItemORM, asset_item_id, populate_existing=True)
    if not a:
        raise not_found("asset item not found", asset_item_id=asset_item_id)
    return a


def _load_stock_item(db: Session, stock_item_id: str) -> StockItemORM:
    s = db.get(StockItemORM, stock_item_id, populate_existing=True)
    if not s:
        raise not_found("stock item not found", stock_item_id=stock_item_id)
    return s


# ---------- loan claims ----------
def reserve_asset_item(db: Session, asset_item_id: str) -> AssetItemORM:
    a = _load_asset_item(db, asset_item_id)

    result = db.execute(
        update(AssetItemORM)
        .where(AssetItemORM.id == asset_item_id, AssetItemORM.status == "EN_STOCK")
        .values(status="PRETE", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = _load_asset_item(db, asset_item_id)
        raise validation_error(
            f"asset item {current.asset_tag} is not available",
            asset_item_id=asset_item_id,
            asset_tag=current.asset_tag,
            status=current.status,
        )

    db.refresh(a)
    logger.info("reserve_asset_item asset_tag=%s", a.asset_tag)
    return a


def release_asset_item(db: Session, asset_item_id: str) -> AssetItemORM:
    # unconditional: a drifted status must not block a close or delete
    a = _load_asset_item(db, asset_item_id)
    if a.status != "PRETE":
        logger.warning("release_asset_item asset_tag=%s status=%s (expected PRETE)", a.asset_tag, a.status)

    db.execute(
        update(AssetItemORM)
        .where(AssetItemORM.id == asset_item_id)
        .values(status="EN_STOCK", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db.refresh(a)
    logger.info("release_asset_item asset_tag=%s", a.asset_tag)
    return a


def reserve_stock(db: Session, stock_item_id: str, quantity: int) -> StockItemORM:
    if quantity is None or quantity < 1:
        raise validation_error("quantity must be at least 1", stock_item_id=stock_item_id, quantity=quantity)

    s = _load_stock_item(db, stock_item_id)

    result = db.execute(
        update(StockItemORM)
        .where(
            StockItemORM.id == stock_item_id,
            StockItemORM.quantity - StockItemORM.loaned >= quantity,
        )
        .values(loaned=StockItemORM.loaned + quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = _load_stock_item(db, stock_item_id)
        available = current.quantity - current.loaned
        raise validation_error(
            f"insufficient stock: {available} available, {quantity} requested",
            stock_item_id=stock_item_id,
            available=available,
            requested=quantity,
        )

    db.refresh(s)
    logger.info("reserve_stock stock_item_id=%s quantity=%s loaned=%s", stock_item_id, quantity, s.loaned)
    return s


def release_stock(db: Session, stock_item_id: str, quantity: int) -> StockItemORM:
    s = _load_stock_item(db, stock_item_id)
    if s.loaned < quantity:
        logger.warning(
            "release_stock stock_item_id=%s loaned=%s quantity=%s (floored at 0)",
            stock_item_id, s.loaned, quantity,
        )

    db.execute(
        update(StockItemORM)
        .where(StockItemORM.id == stock_item_id)
        .values(
            loaned=case((StockItemORM.loaned > quantity, StockItemORM.loaned - quantity), else_=0),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.refresh(s)
    logger.info("release_stock stock_item_id=%s quantity=%s loaned=%s", stock_item_id, quantity, s.loaned)
    return s


# ---------- operator transitions (outside the loan flow) ----------
def set_asset_item_status(db: Session, asset_item_id: str, status: str, *, commit: bool = True) -> AssetItem:
    if status not in MANUAL_STATUSES:
        raise validation_error("status PRETE is only set by adding the item to a loan", status=status)

    a = _load_asset_item(db, asset_item_id)
    if a.status == "PRETE":
        raise validation_error(
            f"asset item {a.asset_tag} is on loan; return it through its loan first",
            asset_item_id=asset_item_id,
            asset_tag=a.asset_tag,
        )

    a.status = status
    a.updated_at = utcnow()
    persist(db, commit=commit)
    return asset_item_to_schema(a)


def adjust_stock_quantity(db: Session, stock_item_id: str, delta: int, *, commit: bool = True) -> StockItem:
    s = _load_stock_item(db, stock_item_id)
    new_quantity = s.quantity + delta
    if new_quantity < 0:
        raise validation_error("quantity cannot be negative", stock_item_id=stock_item_id, quantity=new_quantity)
    if new_quantity < s.loaned:
        raise validation_error(
            f"quantity cannot go below the {s.loaned} units on loan",
            stock_item_id=stock_item_id,
            quantity=new_quantity,
            loaned=s.loaned,
        )

    s.quantity = new_quantity
    s.updated_at = utcnow()
    persist(db, commit=commit)
    logger.info("adjust_stock_quantity stock_item_id=%s delta=%s quantity=%s", stock_item_id, delta, new_quantity)
    return stock_item_to_schema(s)


def delete_asset_item(db: Session, asset_item_id: str, *, commit: bool = True) -> None:
    a = _load_asset_item(db, asset_item_id)
    if a.status == "PRETE":
        raise validation_error(
            f"asset item {a.asset_tag} is on loan and cannot be deleted",
            asset_item_id=asset_item_id,
            asset_tag=a.asset_tag,
        )
    db.delete(a)
    persist(db, commit=commit)


def delete_stock_item(db: Session, stock_item_id: str, *, commit: bool = True) -> None:
    s = _load_stock_item(db, stock_item_id)
    if s.loaned > 0:
        raise validation_error(
            f"{s.loaned} units are on loan; stock item cannot be deleted",
            stock_item_id=stock_item_id,
            loaned=s.loaned,
        )
    db.delete(s)
    persist(db, commit=commit)
