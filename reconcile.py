"""
Offline repair of inventory drift.

Both jobs recompute state from the lines of OPEN, non-deleted loans (lines
of soft-deleted loans never count) and overwrite what disagrees. With no
drift they write nothing. ``dry_run=True`` only reports.
"""
from __future__ import annotations

import logging
from collections import defaultdict

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crud import persist, utcnow
from models import AssetStatusCorrection, AssetStatusReport, DoubleBooking, StockCorrection
from orm import AssetItemORM, AssetModelORM, LoanLineORM, LoanORM, StockItemORM

logger = logging.getLogger("app.reconcile")


def _active_lines():
    return (
        select(LoanLineORM)
        .join(LoanORM, LoanLineORM.loan_id == LoanORM.id)
        .where(LoanORM.status == "OPEN", LoanORM.deleted_at.is_(None))
    )


def _label(model: AssetModelORM | None) -> str:
    return f"{model.brand} {model.model_name}" if model else "?"


def actual_loaned_by_stock_item(db: Session) -> dict[str, int]:
    sub = _active_lines().where(LoanLineORM.stock_item_id.is_not(None)).subquery()
    rows = db.execute(
        select(sub.c.stock_item_id, func.coalesce(func.sum(sub.c.quantity), 0)).group_by(sub.c.stock_item_id)
    ).all()
    return {r[0]: int(r[1]) for r in rows}


def active_loans_by_asset_item(db: Session) -> dict[str, list[str]]:
    sub = _active_lines().where(LoanLineORM.asset_item_id.is_not(None)).subquery()
    out: dict[str, list[str]] = defaultdict(list)
    for asset_item_id, loan_id in db.execute(select(sub.c.asset_item_id, sub.c.loan_id)).all():
        out[asset_item_id].append(loan_id)
    return out


def reconcile_stock_loaned(db: Session, *, dry_run: bool = False, commit: bool = True) -> list[StockCorrection]:
    actual = actual_loaned_by_stock_item(db)
    corrections: list[StockCorrection] = []

    stock_items = db.execute(select(StockItemORM).order_by(StockItemORM.created_at.asc())).scalars().all()
    for s in stock_items:
        expected = actual.get(s.id, 0)
        if expected == s.loaned:
            continue

        # loaned <= quantity is a hard constraint; clamp and flag
        over = expected > s.quantity
        new_value = min(expected, s.quantity)
        corrections.append(
            StockCorrection(
                stock_item_id=s.id,
                label=_label(s.asset_model),
                stored_loaned=s.loaned,
                actual_loaned=expected,
                quantity=s.quantity,
                over_allocated=over,
            )
        )
        logger.warning(
            "stock drift stock_item_id=%s label=%s stored=%s actual=%s quantity=%s",
            s.id, _label(s.asset_model), s.loaned, expected, s.quantity,
        )
        if not dry_run:
            s.loaned = new_value
            s.updated_at = utcnow()

    if not dry_run and corrections:
        persist(db, commit=commit)
    logger.info("reconcile_stock_loaned checked=%s corrected=%s dry_run=%s", len(stock_items), len(corrections), dry_run)
    return corrections


def reconcile_asset_item_statuses(db: Session, *, dry_run: bool = False, commit: bool = True) -> AssetStatusReport:
    """
    PRETE without an active line -> EN_STOCK.
    EN_STOCK with exactly one active line -> PRETE.
    More than one active line: reported as double-booked, not touched.
    HS/REPARATION items are left alone.
    """
    active = active_loans_by_asset_item(db)
    report = AssetStatusReport()

    candidates = db.execute(
        select(AssetItemORM)
        .where(AssetItemORM.status.in_(("PRETE", "EN_STOCK")))
        .order_by(AssetItemORM.asset_tag.asc())
    ).scalars().all()

    for item in candidates:
        loan_ids = active.get(item.id, [])
        if len(loan_ids) > 1:
            report.double_booked.append(
                DoubleBooking(asset_item_id=item.id, asset_tag=item.asset_tag, loan_ids=sorted(loan_ids))
            )
            logger.error("asset item double-booked asset_tag=%s loans=%s", item.asset_tag, loan_ids)
            continue

        if item.status == "PRETE" and not loan_ids:
            new_status = "EN_STOCK"
        elif item.status == "EN_STOCK" and loan_ids:
            new_status = "PRETE"
        else:
            continue

        report.corrections.append(
            AssetStatusCorrection(
                asset_item_id=item.id,
                asset_tag=item.asset_tag,
                old_status=item.status,  # type: ignore
                new_status=new_status,  # type: ignore
            )
        )
        logger.warning("asset status drift asset_tag=%s stored=%s actual=%s", item.asset_tag, item.status, new_status)
        if not dry_run:
            item.status = new_status
            item.updated_at = utcnow()

    if not dry_run and report.corrections:
        persist(db, commit=commit)
    logger.info(
        "reconcile_asset_item_statuses checked=%s corrected=%s double_booked=%s dry_run=%s",
        len(candidates), len(report.corrections), len(report.double_booked), dry_run,
    )
    return report

