from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

import crud
import inventory
from csv_utils import csv_bytes_to_rows, rows_to_csv_response
from dependencies import get_current_user, get_db, require_writer
from filter_helpers import (
    blank_to_none,
    normalize_limit,
    normalize_offset,
    normalize_order,
    normalize_sort,
    normalize_status,
)
from models import (
    AssetItem,
    AssetItemIn,
    AssetItemsBulkCreated,
    AssetItemsBulkIn,
    AssetItemsBulkPreview,
    AssetItemsMeta,
    AssetItemUpdate,
    AssetModel,
    AssetModelCreated,
    AssetModelIn,
    AssetStatusUpdate,
    StockAdjust,
    StockItem,
    StockItemIn,
)
from orm import UserORM

router = APIRouter()
EXPORT_LIMIT = 20000


# ---------- asset models ----------
@router.get("/asset-models", response_model=list[AssetModel])
def list_asset_models_api(
    type: Optional[str] = None,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    return crud.list_asset_models(db, type=blank_to_none(type))


@router.post("/asset-models", response_model=AssetModelCreated, status_code=201)
def create_asset_model_api(
    body: AssetModelIn,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return crud.create_asset_model(db, body)


@router.get("/asset-models/{asset_model_id}", response_model=AssetModel)
def get_asset_model_api(
    asset_model_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    model = crud.get_asset_model(db, asset_model_id)
    if not model:
        raise HTTPException(status_code=404, detail="asset model not found")
    return model


@router.delete("/asset-models/{asset_model_id}", status_code=204)
def delete_asset_model_api(
    asset_model_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    crud.delete_asset_model(db, asset_model_id)
    return None


# ---------- asset items ----------
@router.get("/asset-items", response_model=list[AssetItem])
def list_asset_items_api(
    q: Optional[str] = None,
    status: Optional[str] = None,
    asset_model_id: Optional[str] = None,
    sort: str = "asset_tag",
    order: str = "asc",
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    return crud.list_asset_items_filtered(
        db,
        q=q,
        status=normalize_status(status),
        asset_model_id=blank_to_none(asset_model_id),
        sort=normalize_sort(sort),
        order=normalize_order(order),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )


@router.get("/asset-items/meta", response_model=AssetItemsMeta)
def asset_items_meta_api(
    q: Optional[str] = None,
    status: Optional[str] = None,
    asset_model_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    meta = crud.asset_items_meta(
        db,
        q=q,
        status=normalize_status(status),
        asset_model_id=blank_to_none(asset_model_id),
        limit=normalize_limit(limit),
        offset=normalize_offset(offset),
    )
    return AssetItemsMeta(**meta)


@router.get("/asset-items/export")
def export_asset_items_api(
    q: Optional[str] = None,
    status: Optional[str] = None,
    asset_model_id: Optional[str] = None,
    sort: str = "asset_tag",
    order: str = "asc",
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    items = crud.list_asset_items_filtered(
        db,
        q=q,
        status=normalize_status(status),
        asset_model_id=blank_to_none(asset_model_id),
        sort=normalize_sort(sort),
        order=normalize_order(order),
        limit=EXPORT_LIMIT,
        offset=0,
    )
    return rows_to_csv_response(items, filename="asset_items_export.csv")


@router.post("/asset-items/import")
async def import_asset_items_api(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    data = await file.read()
    rows, err = csv_bytes_to_rows(data)
    if err:
        raise HTTPException(status_code=400, detail=err)
    return crud.bulk_import_asset_items(db, rows)


@router.get("/asset-items/bulk/preview", response_model=AssetItemsBulkPreview)
def preview_asset_items_bulk_api(
    asset_model_id: str,
    quantity: int,
    tag_prefix: Optional[str] = None,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return crud.preview_asset_items_bulk(db, asset_model_id, quantity, tag_prefix=blank_to_none(tag_prefix))


@router.post("/asset-items/bulk", response_model=AssetItemsBulkCreated, status_code=201)
def create_asset_items_bulk_api(
    body: AssetItemsBulkIn,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    items = crud.create_asset_items_bulk(db, body)
    return AssetItemsBulkCreated(count=len(items), items=items)


@router.post("/asset-items", response_model=AssetItem, status_code=201)
def create_asset_item_api(
    body: AssetItemIn,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return crud.create_asset_item(db, body)


@router.get("/asset-items/{asset_item_id}", response_model=AssetItem)
def get_asset_item_api(
    asset_item_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    item = crud.get_asset_item(db, asset_item_id)
    if not item:
        raise HTTPException(status_code=404, detail="asset item not found")
    return item


@router.patch("/asset-items/{asset_item_id}", response_model=AssetItem)
def update_asset_item_api(
    asset_item_id: str,
    body: AssetItemUpdate,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return crud.update_asset_item(db, asset_item_id, body)


@router.patch("/asset-items/{asset_item_id}/status", response_model=AssetItem)
def set_asset_item_status_api(
    asset_item_id: str,
    body: AssetStatusUpdate,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return inventory.set_asset_item_status(db, asset_item_id, body.status)


@router.delete("/asset-items/{asset_item_id}", status_code=204)
def delete_asset_item_api(
    asset_item_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    inventory.delete_asset_item(db, asset_item_id)
    return None


# ---------- stock items ----------
@router.get("/stock-items", response_model=list[StockItem])
def list_stock_items_api(
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    return crud.list_stock_items(db)


@router.post("/stock-items", response_model=StockItem, status_code=201)
def create_stock_item_api(
    body: StockItemIn,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return crud.create_stock_item(db, body)


@router.get("/stock-items/{stock_item_id}", response_model=StockItem)
def get_stock_item_api(
    stock_item_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(get_current_user),
):
    item = crud.get_stock_item(db, stock_item_id)
    if not item:
        raise HTTPException(status_code=404, detail="stock item not found")
    return item


@router.patch("/stock-items/{stock_item_id}/adjust", response_model=StockItem)
def adjust_stock_item_api(
    stock_item_id: str,
    body: StockAdjust,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    return inventory.adjust_stock_quantity(db, stock_item_id, body.delta)


@router.delete("/stock-items/{stock_item_id}", status_code=204)
def delete_stock_item_api(
    stock_item_id: str,
    db: Session = Depends(get_db),
    _user: UserORM = Depends(require_writer),
):
    inventory.delete_stock_item(db, stock_item_id)
    return None
