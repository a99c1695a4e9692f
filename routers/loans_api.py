from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

import loans
from dependencies import get_current_user, get_db, get_signature_store, require_writer
from filter_helpers import blank_to_none, normalize_loan_status
from models import BatchDeleteIn, BatchDeleteResult, Loan, LoanIn, LoanLine, LoanLineIn
from orm import UserORM
from signatures import SignatureStore

router = APIRouter()

MAX_SIGNATURE_BYTES = 5 * 1024 * 1024


@router.get("/loans", response_model=list[Loan])
def list_loans_api(
    status: Optional[str] = None,
    employee_id: Optional[str] = None,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    return loans.list_loans(
        db,
        status=normalize_loan_status(status),
        employee_id=blank_to_none(employee_id),
    )


@router.post("/loans", response_model=Loan, status_code=201)
def create_loan_api(
    body: LoanIn,
    db: Session = Depends(get_db),
    user: UserORM = Depends(require_writer),
):
    return loans.create_loan(db, body.employee_id, user.id)


@router.post("/loans/batch-delete", response_model=BatchDeleteResult)
def batch_delete_loans_api(
    body: BatchDeleteIn,
    db: Session = Depends(get_db),
    store: SignatureStore = Depends(get_signature_store),
    user: UserORM = Depends(require_writer),
):
    deleted = loans.batch_delete_loans(db, body.loan_ids, user.id, store=store)
    return BatchDeleteResult(deleted_count=len(deleted), loan_ids=deleted)


@router.get("/loans/{loan_id}", response_model=Loan)
def get_loan_api(
    loan_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    return loans.get_loan(db, loan_id)


@router.post("/loans/{loan_id}/lines", response_model=LoanLine, status_code=201)
def add_loan_line_api(
    loan_id: str,
    body: LoanLineIn,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return loans.add_loan_line(db, loan_id, body)


@router.delete("/loans/{loan_id}/lines/{line_id}", status_code=204)
def remove_loan_line_api(
    loan_id: str,
    line_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    loans.remove_loan_line(db, loan_id, line_id)
    return None


@router.patch("/loans/{loan_id}/close", response_model=Loan)
def close_loan_api(
    loan_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return loans.close_loan(db, loan_id)


@router.delete("/loans/{loan_id}", response_model=Loan)
def delete_loan_api(
    loan_id: str,
    db: Session = Depends(get_db),
    store: SignatureStore = Depends(get_signature_store),
    user: UserORM = Depends(require_writer),
):
    return loans.delete_loan(db, loan_id, user.id, store=store)


async def _read_signature(file: UploadFile) -> tuple[bytes, str]:
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="empty signature file")
    if len(data) > MAX_SIGNATURE_BYTES:
        raise HTTPException(status_code=413, detail="signature file too large")
    return data, Path(file.filename or "").suffix or ".png"


@router.post("/loans/{loan_id}/pickup-signature", response_model=Loan)
async def upload_pickup_signature_api(
    loan_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    store: SignatureStore = Depends(get_signature_store),
    _user: UserORM = Depends(require_writer),
):
    loans.get_loan(db, loan_id)
    data, suffix = await _read_signature(file)
    url = store.save(data, suffix=suffix)
    return loans.set_pickup_signature(db, loan_id, url, store=store)


@router.post("/loans/{loan_id}/return-signature", response_model=Loan)
async def upload_return_signature_api(
    loan_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    store: SignatureStore = Depends(get_signature_store),
    _user: UserORM = Depends(require_writer),
):
    loans.get_loan(db, loan_id)
    data, suffix = await _read_signature(file)
    url = store.save(data, suffix=suffix)
    return loans.set_return_signature(db, loan_id, url, store=store)


@router.delete("/loans/{loan_id}/pickup-signature", response_model=Loan)
def delete_pickup_signature_api(
    loan_id: str,
    db: Session = Depends(get_db),
    store: SignatureStore = Depends(get_signature_store),
    _user: UserORM = Depends(require_writer),
):
    return loans.clear_pickup_signature(db, loan_id, store=store)


@router.delete("/loans/{loan_id}/return-signature", response_model=Loan)
def delete_return_signature_api(
    loan_id: str,
    db: Session = Depends(get_db),
    store: SignatureStore = Depends(get_signature_store),
    _user: UserORM = Depends(require_writer),
):
    return loans.clear_return_signature(db, loan_id, store=store)
