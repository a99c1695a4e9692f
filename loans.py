"""
Loan aggregate.

A loan is OPEN until closed (once). Soft delete is orthogonal to status.
Each mutating function below is one use case and one transaction: the
inventory claim (see ``inventory``) and the loan/line rows are written
together and committed or rolled back together.
"""
from __future__ import annotations

import logging
from typing import Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

import inventory
from crud import asset_item_to_schema, employee_to_schema, stock_item_to_schema, transaction, utcnow
from errors import not_found, validation_error
from models import Loan, LoanLine, LoanLineIn
from orm import EmployeeORM, LoanLineORM, LoanORM, UserORM
from signatures import SignatureStore, delete_after_commit

logger = logging.getLogger("app.loans")


def _line_to_schema(l: LoanLineORM) -> LoanLine:
    return LoanLine(
        id=l.id,
        loan_id=l.loan_id,
        asset_item_id=l.asset_item_id,
        stock_item_id=l.stock_item_id,
        quantity=l.quantity,
        asset_item=asset_item_to_schema(l.asset_item) if l.asset_item else None,
        stock_item=stock_item_to_schema(l.stock_item) if l.stock_item else None,
    )

def _loan_to_schema(l: LoanORM) -> Loan:
    return Loan(
        id=l.id,
        employee_id=l.employee_id,
        created_by_id=l.created_by_id,
        status=l.status,  # type: ignore
        opened_at=l.opened_at,
        closed_at=l.closed_at,
        pickup_signature_url=l.pickup_signature_url,
        pickup_signed_at=l.pickup_signed_at,
        return_signature_url=l.return_signature_url,
        return_signed_at=l.return_signed_at,
        deleted_at=l.deleted_at,
        deleted_by_id=l.deleted_by_id,
        employee=employee_to_schema(l.employee) if l.employee else None,
        lines=[_line_to_schema(x) for x in l.lines],
    )


def _loan_query():
    return select(LoanORM).options(
        selectinload(LoanORM.employee),
        selectinload(LoanORM.lines).selectinload(LoanLineORM.asset_item),
        selectinload(LoanORM.lines).selectinload(LoanLineORM.stock_item),
    )

def _load_loan(db: Session, loan_id: str, *, include_deleted: bool = False) -> LoanORM:
    loan = db.execute(_loan_query().where(LoanORM.id == loan_id)).scalars().first()
    if not loan or (loan.deleted_at is not None and not include_deleted):
        raise not_found("loan not found", loan_id=loan_id)
    return loan

def _load_open_loan(db: Session, loan_id: str) -> LoanORM:
    loan = _load_loan(db, loan_id, include_deleted=True)
    if loan.deleted_at is not None:
        raise validation_error("loan is deleted", loan_id=loan_id)
    if loan.status != "OPEN":
        raise validation_error("cannot modify a closed loan", loan_id=loan_id, status=loan.status)
    return loan

def _release_line(db: Session, line: LoanLineORM) -> None:
    # close, delete and line removal all go through here
    if line.asset_item_id:
        inventory.release_asset_item(db, line.asset_item_id)
    elif line.stock_item_id:
        inventory.release_stock(db, line.stock_item_id, line.quantity)

def _release_all(db: Session, loan: LoanORM) -> None:
    for line in loan.lines:
        _release_line(db, line)


# ---------- reads ----------
def get_loan(db: Session, loan_id: str, *, include_deleted: bool = False) -> Loan:
    return _loan_to_schema(_load_loan(db, loan_id, include_deleted=include_deleted))

def list_loans(
    db: Session,
    *,
    status: str | None = None,
    employee_id: str | None = None,
) -> list[Loan]:
    stmt = _loan_query().where(LoanORM.deleted_at.is_(None))
    if status:
        stmt = stmt.where(LoanORM.status == status)
    if employee_id:
        stmt = stmt.where(LoanORM.employee_id == employee_id)
    stmt = stmt.order_by(LoanORM.opened_at.desc())
    return [_loan_to_schema(l) for l in db.execute(stmt).scalars().all()]

def list_deleted_loans(db: Session) -> list[Loan]:
    stmt = _loan_query().where(LoanORM.deleted_at.is_not(None)).order_by(LoanORM.deleted_at.desc())
    return [_loan_to_schema(l) for l in db.execute(stmt).scalars().all()]

def list_active_loans(db: Session) -> list[Loan]:
    return list_loans(db, status="OPEN")


# ---------- lifecycle ----------
def create_loan(db: Session, employee_id: str, created_by_id: str, *, commit: bool = True) -> Loan:
    with transaction(db, commit=commit):
        if not db.get(EmployeeORM, employee_id):
            raise not_found("employee not found", employee_id=employee_id)
        if not db.get(UserORM, created_by_id):
            raise not_found("user not found", user_id=created_by_id)

        loan = LoanORM(
            id=str(uuid4()),
            employee_id=employee_id,
            created_by_id=created_by_id,
            status="OPEN",
            opened_at=utcnow(),
        )
        db.add(loan)

    logger.info("loan created loan_id=%s employee_id=%s", loan.id, employee_id)
    return get_loan(db, loan.id)


def add_loan_line(db: Session, loan_id: str, body: LoanLineIn, *, commit: bool = True) -> LoanLine:
    with transaction(db, commit=commit):
        loan = _load_open_loan(db, loan_id)

        if bool(body.asset_item_id) == bool(body.stock_item_id):
            raise validation_error(
                "exactly one of asset_item_id or stock_item_id is required",
                asset_item_id=body.asset_item_id,
                stock_item_id=body.stock_item_id,
            )

        if body.asset_item_id:
            if body.quantity not in (None, 1):
                raise validation_error("asset item lines always have quantity 1", quantity=body.quantity)
            inventory.reserve_asset_item(db, body.asset_item_id)
            line = LoanLineORM(
                id=str(uuid4()),
                asset_item_id=body.asset_item_id,
                quantity=1,
                created_at=utcnow(),
            )
        else:
            if body.quantity is None or body.quantity < 1:
                raise validation_error("stock lines need a quantity of at least 1", quantity=body.quantity)
            inventory.reserve_stock(db, body.stock_item_id, body.quantity)
            line = LoanLineORM(
                id=str(uuid4()),
                stock_item_id=body.stock_item_id,
                quantity=body.quantity,
                created_at=utcnow(),
            )

        loan.lines.append(line)
        db.flush()
        line_id = line.id

    logger.info(
        "loan line added loan_id=%s line_id=%s asset_item_id=%s stock_item_id=%s quantity=%s",
        loan_id, line_id, body.asset_item_id, body.stock_item_id, line.quantity,
    )
    return _line_to_schema(db.get(LoanLineORM, line_id))


def remove_loan_line(db: Session, loan_id: str, line_id: str, *, commit: bool = True) -> None:
    with transaction(db, commit=commit):
        loan = _load_open_loan(db, loan_id)
        line = next((x for x in loan.lines if x.id == line_id), None)
        if line is None:
            raise not_found("loan line not found", loan_id=loan_id, line_id=line_id)

        _release_line(db, line)
        loan.lines.remove(line)

    logger.info("loan line removed loan_id=%s line_id=%s", loan_id, line_id)


def close_loan(db: Session, loan_id: str, *, commit: bool = True) -> Loan:
    with transaction(db, commit=commit):
        loan = _load_loan(db, loan_id, include_deleted=True)
        if loan.deleted_at is not None:
            raise validation_error("loan is deleted", loan_id=loan_id)
        if loan.status == "CLOSED":
            raise validation_error("loan is already closed", loan_id=loan_id)

        _release_all(db, loan)
        loan.status = "CLOSED"
        loan.closed_at = utcnow()

    logger.info("loan closed loan_id=%s lines=%s", loan_id, len(loan.lines))
    return get_loan(db, loan_id)


def _soft_delete(db: Session, loan: LoanORM, deleted_by_id: str | None) -> list[str | None]:
    # a CLOSED loan released its claims at close time
    if loan.status == "OPEN":
        _release_all(db, loan)
    loan.deleted_at = utcnow()
    loan.deleted_by_id = deleted_by_id

    files = [loan.pickup_signature_url, loan.return_signature_url]
    loan.pickup_signature_url = None
    loan.return_signature_url = None
    return files


def delete_loan(
    db: Session,
    loan_id: str,
    deleted_by_id: str | None,
    *,
    store: Optional[SignatureStore] = None,
    commit: bool = True,
) -> Loan:
    with transaction(db, commit=commit):
        loan = _load_loan(db, loan_id, include_deleted=True)
        if loan.deleted_at is not None:
            raise validation_error("loan is already deleted", loan_id=loan_id)

        was_open = loan.status == "OPEN"
        files = _soft_delete(db, loan, deleted_by_id)
        delete_after_commit(db, store, files)

    logger.info("loan deleted loan_id=%s released=%s deleted_by_id=%s", loan_id, was_open, deleted_by_id)
    return get_loan(db, loan_id, include_deleted=True)


def batch_delete_loans(
    db: Session,
    loan_ids: list[str],
    deleted_by_id: str | None,
    *,
    store: Optional[SignatureStore] = None,
    commit: bool = True,
) -> list[str]:
    if not loan_ids:
        raise validation_error("at least one loan id is required")

    with transaction(db, commit=commit):
        stmt = _loan_query().where(LoanORM.id.in_(loan_ids), LoanORM.deleted_at.is_(None))
        loans = db.execute(stmt).scalars().all()
        if not loans:
            raise not_found("no loans found", loan_ids=loan_ids)

        files: list[str | None] = []
        for loan in loans:
            files.extend(_soft_delete(db, loan, deleted_by_id))
        delete_after_commit(db, store, files)
        deleted = [l.id for l in loans]

    logger.info("loans batch deleted count=%s deleted_by_id=%s", len(deleted), deleted_by_id)
    return deleted


# ---------- signatures ----------
def _set_signature(db: Session, loan_id: str, kind: str, url: str | None, store: Optional[SignatureStore], commit: bool) -> Loan:
    with transaction(db, commit=commit):
        loan = _load_loan(db, loan_id, include_deleted=True)
        if loan.deleted_at is not None:
            raise validation_error("loan is deleted", loan_id=loan_id)

        previous = getattr(loan, f"{kind}_signature_url")
        setattr(loan, f"{kind}_signature_url", url)
        setattr(loan, f"{kind}_signed_at", utcnow() if url else None)
        if previous and previous != url:
            delete_after_commit(db, store, [previous])

    logger.info("loan %s signature %s loan_id=%s", kind, "set" if url else "cleared", loan_id)
    return get_loan(db, loan_id)

def set_pickup_signature(db: Session, loan_id: str, url: str, *, store: Optional[SignatureStore] = None, commit: bool = True) -> Loan:
    return _set_signature(db, loan_id, "pickup", url, store, commit)

def set_return_signature(db: Session, loan_id: str, url: str, *, store: Optional[SignatureStore] = None, commit: bool = True) -> Loan:
    return _set_signature(db, loan_id, "return", url, store, commit)

def clear_pickup_signature(db: Session, loan_id: str, *, store: Optional[SignatureStore] = None, commit: bool = True) -> Loan:
    return _set_signature(db, loan_id, "pickup", None, store, commit)

def clear_return_signature(db: Session, loan_id: str, *, store: Optional[SignatureStore] = None, commit: bool = True) -> Loan:
    return _set_signature(db, loan_id, "return", None, store, commit)
