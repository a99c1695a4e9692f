from pydantic import BaseModel, Field
from typing import Optional, Literal
from datetime import datetime

Role = Literal["ADMIN", "GESTIONNAIRE", "LECTURE"]
AssetStatus = Literal["EN_STOCK", "PRETE", "HS", "REPARATION"]
LoanStatus = Literal["OPEN", "CLOSED"]

# ---------- reference data ----------
class UserIn(BaseModel):
    email: str
    role: Role = "GESTIONNAIRE"

class User(UserIn):
    id: str
    created_at: datetime

class EmployeeIn(BaseModel):
    first_name: str
    last_name: str
    email: Optional[str] = None
    dept: Optional[str] = None

class Employee(EmployeeIn):
    id: str
    created_at: datetime
    updated_at: datetime

class AssetModelIn(BaseModel):
    type: str
    brand: str
    model_name: str
    # optional initial quantity: generates asset items or a stock item depending on type
    quantity: Optional[int] = Field(default=None, ge=0)

class AssetModel(BaseModel):
    id: str
    type: str
    brand: str
    model_name: str
    created_at: datetime
    updated_at: datetime

class AssetItemIn(BaseModel):
    asset_model_id: str
    asset_tag: str
    serial: Optional[str] = None
    notes: Optional[str] = None

class AssetItemUpdate(BaseModel):
    asset_tag: Optional[str] = None
    serial: Optional[str] = None
    notes: Optional[str] = None

class AssetStatusUpdate(BaseModel):
    status: AssetStatus

class AssetItem(AssetItemIn):
    id: str
    status: AssetStatus = "EN_STOCK"
    asset_model: Optional[AssetModel] = None
    created_at: datetime
    updated_at: datetime

class AssetItemsMeta(BaseModel):
    total: int
    limit: int
    offset: int
    total_pages: int

class AssetItemsBulkIn(BaseModel):
    asset_model_id: str
    quantity: int = Field(ge=1, le=100)
    # defaults to the prefix of the model type (LAP-, MON-, ...)
    tag_prefix: Optional[str] = None
    serials: Optional[list[str]] = None
    notes: Optional[str] = None

class AssetItemsBulkPreview(BaseModel):
    tag_prefix: str
    quantity: int
    tags: list[str]
    conflicts: list[str] = []

class AssetItemsBulkCreated(BaseModel):
    count: int
    items: list[AssetItem]

class StockItemIn(BaseModel):
    asset_model_id: str
    quantity: int = Field(default=0, ge=0)
    notes: Optional[str] = None

class StockAdjust(BaseModel):
    delta: int

class StockItem(BaseModel):
    id: str
    asset_model_id: str
    quantity: int
    loaned: int
    available: int
    notes: Optional[str] = None
    asset_model: Optional[AssetModel] = None
    created_at: datetime
    updated_at: datetime

class AssetModelCreated(BaseModel):
    asset_model: AssetModel
    asset_items: list[AssetItem] = []
    stock_item: Optional[StockItem] = None

# ---------- loans ----------
class LoanIn(BaseModel):
    employee_id: str

class LoanLineIn(BaseModel):
    asset_item_id: Optional[str] = None
    stock_item_id: Optional[str] = None
    quantity: Optional[int] = None

class LoanLine(BaseModel):
    id: str
    loan_id: str
    asset_item_id: Optional[str] = None
    stock_item_id: Optional[str] = None
    quantity: int
    asset_item: Optional[AssetItem] = None
    stock_item: Optional[StockItem] = None

class Loan(BaseModel):
    id: str
    employee_id: str
    created_by_id: str
    status: LoanStatus
    opened_at: datetime
    closed_at: Optional[datetime] = None
    pickup_signature_url: Optional[str] = None
    pickup_signed_at: Optional[datetime] = None
    return_signature_url: Optional[str] = None
    return_signed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    deleted_by_id: Optional[str] = None
    employee: Optional[Employee] = None
    lines: list[LoanLine] = []

class BatchDeleteIn(BaseModel):
    loan_ids: list[str]

class BatchDeleteResult(BaseModel):
    deleted_count: int
    loan_ids: list[str]

# ---------- reconciliation ----------
class StockCorrection(BaseModel):
    stock_item_id: str
    label: str
    stored_loaned: int
    actual_loaned: int
    quantity: int
    over_allocated: bool = False

class AssetStatusCorrection(BaseModel):
    asset_item_id: str
    asset_tag: str
    old_status: AssetStatus
    new_status: AssetStatus

class DoubleBooking(BaseModel):
    asset_item_id: str
    asset_tag: str
    loan_ids: list[str]

class AssetStatusReport(BaseModel):
    corrections: list[AssetStatusCorrection] = []
    double_booked: list[DoubleBooking] = []

# ---------- dashboard ----------
class DashboardStats(BaseModel):
    total_employees: int
    total_assets: int
    available_assets: int
    active_loans: int
    low_stock_items: int
    out_of_stock_items: int
    asset_statuses: dict[str, int] = {}
