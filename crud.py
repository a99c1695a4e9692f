from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone

from typing import Iterator, Optional
from uuid import uuid4

from sqlalchemy import select, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import conflict, not_found, validation_error
from models import (
    AssetItem,
    AssetItemIn,
    AssetItemsBulkIn,
    AssetItemsBulkPreview,
    AssetItemUpdate,
    AssetModel,
    AssetModelCreated,
    AssetModelIn,
    DashboardStats,
    Employee,
    EmployeeIn,
    StockItem,
    StockItemIn,
    User,
    UserIn,
)
from orm import AssetItemORM, AssetModelORM, EmployeeORM, LoanORM, StockItemORM, UserORM

ALLOWED_SORTS = {
    "asset_tag": AssetItemORM.asset_tag,
    "serial": AssetItemORM.serial,
    "status": AssetItemORM.status,
    "updated_at": AssetItemORM.updated_at,
}

# consumables are counted in a single stock item, everything else is tracked per unit
CONSUMABLE_TYPES = {"Câble", "Adaptateur", "Autre"}

TAG_PREFIXES = {
    "Ordinateur portable": "LAP-",
    "Ordinateur fixe": "DSK-",
    "Écran": "MON-",
    "Clavier": "KB-",
    "Souris": "MS-",
    "Casque audio": "HS-",
    "Webcam": "WC-",
    "Station d'accueil": "DOCK-",
    "Téléphone portable": "TEL-",
}

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def persist(db: Session, *, commit: bool) -> None:
    try:
        if commit:
            db.commit()
        else:
            db.flush()
    except IntegrityError as exc:
        # unique/check constraints are the last line behind the explicit checks
        if commit:
            db.rollback()
        raise conflict("conflicts with existing data", reason=str(exc.orig)) from exc

@contextmanager
def transaction(db: Session, *, commit: bool = True) -> Iterator[Session]:
    """
    One use case = one transaction.
    commit=True: commit on success, roll back on any error.
    commit=False: flush only; the caller owns commit/rollback.
    """
    try:
        yield db
        persist(db, commit=commit)
    except Exception:
        if commit:
            db.rollback()
        raise

def user_to_schema(u: UserORM) -> User:
    return User(id=u.id, email=u.email, role=u.role, created_at=u.created_at)  # type: ignore

def employee_to_schema(e: EmployeeORM) -> Employee:
    return Employee(
        id=e.id,
        first_name=e.first_name,
        last_name=e.last_name,
        email=e.email,
        dept=e.dept,
        created_at=e.created_at,
        updated_at=e.updated_at,
    )

def asset_model_to_schema(m: AssetModelORM) -> AssetModel:
    return AssetModel(
        id=m.id,
        type=m.type,
        brand=m.brand,
        model_name=m.model_name,
        created_at=m.created_at,
        updated_at=m.updated_at,
    )

def asset_item_to_schema(a: AssetItemORM) -> AssetItem:
    return AssetItem(
        id=a.id,
        asset_model_id=a.asset_model_id,
        asset_tag=a.asset_tag,
        serial=a.serial,
        notes=a.notes,
        status=a.status,  # type: ignore
        asset_model=asset_model_to_schema(a.asset_model) if a.asset_model else None,
        created_at=a.created_at,
        updated_at=a.updated_at,
    )

def stock_item_to_schema(s: StockItemORM) -> StockItem:
    return StockItem(
        id=s.id,
        asset_model_id=s.asset_model_id,
        quantity=s.quantity,
        loaned=s.loaned,
        available=s.quantity - s.loaned,
        notes=s.notes,
        asset_model=asset_model_to_schema(s.asset_model) if s.asset_model else None,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


# ---------- User ----------
def get_user(db: Session, user_id: str) -> Optional[User]:
    row = db.get(UserORM, user_id)
    return user_to_schema(row) if row else None

def list_users(db: Session) -> list[User]:
    rows = db.execute(select(UserORM).order_by(UserORM.email.asc())).scalars().all()
    return [user_to_schema(u) for u in rows]

def create_user(db: Session, body: UserIn, *, commit: bool = True) -> User:
    email = body.email.strip().lower()
    if not email:
        raise validation_error("email is required")
    if db.execute(select(UserORM).where(UserORM.email == email)).first():
        raise conflict("email already exists", email=email)

    u = UserORM(id=str(uuid4()), email=email, role=body.role, created_at=utcnow())
    db.add(u)
    persist(db, commit=commit)
    return user_to_schema(u)


# ---------- Employee ----------
def get_employee(db: Session, employee_id: str) -> Optional[Employee]:
    row = db.get(EmployeeORM, employee_id)
    return employee_to_schema(row) if row else None

def list_employees(db: Session, q: str | None = None) -> list[Employee]:
    stmt = select(EmployeeORM)
    if q:
        like = f"%{q}%"
        stmt = stmt.where(
            or_(
                EmployeeORM.first_name.ilike(like),
                EmployeeORM.last_name.ilike(like),
                EmployeeORM.email.ilike(like),
            )
        )
    stmt = stmt.order_by(EmployeeORM.last_name.asc(), EmployeeORM.first_name.asc())
    return [employee_to_schema(e) for e in db.execute(stmt).scalars().all()]

def create_employee(db: Session, body: EmployeeIn, *, commit: bool = True) -> Employee:
    # "" would collide on the unique index; no email is stored as NULL
    email = (body.email or "").strip() or None
    if email and db.execute(select(EmployeeORM).where(EmployeeORM.email == email)).first():
        raise conflict("employee email already exists", email=email)

    now = utcnow()
    e = EmployeeORM(
        id=str(uuid4()),
        first_name=body.first_name,
        last_name=body.last_name,
        email=email,
        dept=body.dept,
        created_at=now,
        updated_at=now,
    )
    db.add(e)
    persist(db, commit=commit)
    return employee_to_schema(e)

def delete_employee(db: Session, employee_id: str, *, commit: bool = True) -> None:
    e = db.get(EmployeeORM, employee_id)
    if not e:
        raise not_found("employee not found", employee_id=employee_id)

    # soft-deleted loans still reference the employee row
    loans = db.execute(
        select(func.count()).select_from(LoanORM).where(LoanORM.employee_id == employee_id)
    ).scalar_one()
    if int(loans) > 0:
        raise validation_error("employee has loans and cannot be deleted", employee_id=employee_id, loans=int(loans))

    db.delete(e)
    persist(db, commit=commit)


# ---------- AssetModel ----------
def get_asset_model(db: Session, asset_model_id: str) -> Optional[AssetModel]:
    row = db.get(AssetModelORM, asset_model_id)
    return asset_model_to_schema(row) if row else None

def list_asset_models(db: Session, type: str | None = None) -> list[AssetModel]:
    stmt = select(AssetModelORM)
    if type:
        stmt = stmt.where(AssetModelORM.type == type)
    stmt = stmt.order_by(AssetModelORM.brand.asc(), AssetModelORM.model_name.asc())
    return [asset_model_to_schema(m) for m in db.execute(stmt).scalars().all()]

def tag_prefix_for(type: str) -> str:
    return TAG_PREFIXES.get(type, "ASSET-")

def next_tag_numbers(db: Session, prefix: str, count: int) -> list[int]:
    tags = db.execute(select(AssetItemORM.asset_tag).where(AssetItemORM.asset_tag.like(f"{prefix}%"))).scalars().all()
    highest = 0
    for tag in tags:
        suffix = tag[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return list(range(highest + 1, highest + 1 + count))

def _add_tagged_items(
    db: Session,
    model: AssetModelORM,
    prefix: str,
    count: int,
    *,
    notes: str | None,
    now: datetime,
    serials: list[str | None] | None = None,
) -> list[AssetItemORM]:
    serials = serials or []
    items: list[AssetItemORM] = []
    for idx, n in enumerate(next_tag_numbers(db, prefix, count)):
        item = AssetItemORM(
            id=str(uuid4()),
            asset_model_id=model.id,
            asset_tag=f"{prefix}{n:03d}",
            serial=serials[idx] if idx < len(serials) else None,
            status="EN_STOCK",
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        db.add(item)
        items.append(item)
    return items

def create_asset_model(db: Session, body: AssetModelIn, *, commit: bool = True) -> AssetModelCreated:
    """
    Create a model. With a quantity, also create its inventory:
    consumable types get one stock item, other types get that many asset items
    with generated tags (LAP-001, LAP-002, ...).
    """
    with transaction(db, commit=commit):
        now = utcnow()
        m = AssetModelORM(
            id=str(uuid4()),
            type=body.type,
            brand=body.brand,
            model_name=body.model_name,
            created_at=now,
            updated_at=now,
        )
        db.add(m)
        db.flush()

        items: list[AssetItemORM] = []
        stock: StockItemORM | None = None
        note = f"created with model {m.brand} {m.model_name}"

        if body.quantity:
            if body.type in CONSUMABLE_TYPES:
                stock = StockItemORM(
                    id=str(uuid4()),
                    asset_model_id=m.id,
                    quantity=body.quantity,
                    loaned=0,
                    notes=note,
                    created_at=now,
                    updated_at=now,
                )
                db.add(stock)
            else:
                items = _add_tagged_items(db, m, tag_prefix_for(body.type), body.quantity, notes=note, now=now)

    return AssetModelCreated(
        asset_model=asset_model_to_schema(m),
        asset_items=[asset_item_to_schema(i) for i in items],
        stock_item=stock_item_to_schema(stock) if stock else None,
    )

def delete_asset_model(db: Session, asset_model_id: str, *, commit: bool = True) -> None:
    m = db.get(AssetModelORM, asset_model_id)
    if not m:
        raise not_found("asset model not found", asset_model_id=asset_model_id)

    loaned_items = [i.asset_tag for i in m.items if i.status == "PRETE"]
    if loaned_items:
        raise validation_error("asset model has loaned items", asset_tags=loaned_items)

    loaned_stock = sum(s.loaned for s in m.stock_items)
    if loaned_stock > 0:
        raise validation_error("asset model has loaned stock", loaned=loaned_stock)

    db.delete(m)
    persist(db, commit=commit)


# ---------- AssetItem ----------
def asset_tag_exists(db: Session, asset_tag: str, exclude_asset_item_id: Optional[str] = None) -> bool:
    stmt = select(AssetItemORM).where(AssetItemORM.asset_tag == asset_tag)
    if exclude_asset_item_id:
        stmt = stmt.where(AssetItemORM.id != exclude_asset_item_id)
    return db.execute(stmt).first() is not None

def serial_exists(db: Session, serial: str, exclude_asset_item_id: Optional[str] = None) -> bool:
    stmt = select(AssetItemORM).where(AssetItemORM.serial == serial)
    if exclude_asset_item_id:
        stmt = stmt.where(AssetItemORM.id != exclude_asset_item_id)
    return db.execute(stmt).first() is not None

def get_asset_item(db: Session, asset_item_id: str) -> Optional[AssetItem]:
    row = db.get(AssetItemORM, asset_item_id)
    return asset_item_to_schema(row) if row else None

def create_asset_item(db: Session, body: AssetItemIn, *, commit: bool = True) -> AssetItem:
    serial = (body.serial or "").strip() or None
    if not db.get(AssetModelORM, body.asset_model_id):
        raise not_found("asset model not found", asset_model_id=body.asset_model_id)
    if asset_tag_exists(db, body.asset_tag):
        raise conflict("asset_tag already exists", asset_tag=body.asset_tag)
    if serial and serial_exists(db, serial):
        raise conflict("serial already exists", serial=serial)

    now = utcnow()
    a = AssetItemORM(
        id=str(uuid4()),
        asset_model_id=body.asset_model_id,
        asset_tag=body.asset_tag,
        serial=serial,
        notes=body.notes,
        status="EN_STOCK",
        created_at=now,
        updated_at=now,
    )
    db.add(a)
    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    return asset_item_to_schema(a)

MAX_BULK_ITEMS = 100

def _load_tracked_model(db: Session, asset_model_id: str) -> AssetModelORM:
    m = db.get(AssetModelORM, asset_model_id)
    if not m:
        raise not_found("asset model not found", asset_model_id=asset_model_id)
    if m.type in CONSUMABLE_TYPES:
        raise validation_error(f"{m.type} is tracked as stock, not as individual items", asset_model_id=asset_model_id)
    return m

def preview_asset_items_bulk(
    db: Session,
    asset_model_id: str,
    quantity: int,
    tag_prefix: str | None = None,
) -> AssetItemsBulkPreview:
    if quantity < 1 or quantity > MAX_BULK_ITEMS:
        raise validation_error(f"quantity must be between 1 and {MAX_BULK_ITEMS}", quantity=quantity)
    m = _load_tracked_model(db, asset_model_id)

    prefix = (tag_prefix or "").strip() or tag_prefix_for(m.type)
    tags = [f"{prefix}{n:03d}" for n in next_tag_numbers(db, prefix, quantity)]
    taken = db.execute(select(AssetItemORM.asset_tag).where(AssetItemORM.asset_tag.in_(tags))).scalars().all()
    return AssetItemsBulkPreview(tag_prefix=prefix, quantity=quantity, tags=tags, conflicts=sorted(taken))

def create_asset_items_bulk(db: Session, body: AssetItemsBulkIn, *, commit: bool = True) -> list[AssetItem]:
    """
    Create ``quantity`` items of one model with sequential tags. Serials, when
    given, are assigned in order; the remaining items get none.
    """
    with transaction(db, commit=commit):
        m = _load_tracked_model(db, body.asset_model_id)

        serials = [(s or "").strip() or None for s in (body.serials or [])]
        if len(serials) > body.quantity:
            raise validation_error("more serials than items", serials=len(serials), quantity=body.quantity)
        given = [s for s in serials if s]
        if len(given) != len(set(given)):
            raise validation_error("duplicate serials in request")
        for s in given:
            if serial_exists(db, s):
                raise conflict("serial already exists", serial=s)

        prefix = (body.tag_prefix or "").strip() or tag_prefix_for(m.type)
        items = _add_tagged_items(db, m, prefix, body.quantity, notes=body.notes, now=utcnow(), serials=serials)

    return [asset_item_to_schema(i) for i in items]

def update_asset_item(db: Session, asset_item_id: str, body: AssetItemUpdate, *, commit: bool = True) -> AssetItem:
    # status is not editable here, see inventory.set_asset_item_status
    a = db.get(AssetItemORM, asset_item_id)
    if not a:
        raise not_found("asset item not found", asset_item_id=asset_item_id)

    if body.asset_tag and asset_tag_exists(db, body.asset_tag, exclude_asset_item_id=asset_item_id):
        raise conflict("asset_tag already exists", asset_tag=body.asset_tag)
    if body.serial and serial_exists(db, body.serial, exclude_asset_item_id=asset_item_id):
        raise conflict("serial already exists", serial=body.serial)

    data = body.model_dump(exclude_unset=True)
    if "asset_tag" in data and not (data["asset_tag"] or "").strip():
        raise validation_error("asset_tag cannot be empty", asset_item_id=asset_item_id)
    if "serial" in data:
        data["serial"] = (data["serial"] or "").strip() or None

    for k, v in data.items():
        setattr(a, k, v)
    a.updated_at = utcnow()

    persist(db, commit=commit)
    if commit:
        db.refresh(a)
    return asset_item_to_schema(a)

def build_asset_items_query(q: str | None, status: str | None, asset_model_id: str | None):
    stmt = select(AssetItemORM)

    if q:
        like = f"%{q}%"
        stmt = stmt.where(
            or_(
                AssetItemORM.asset_tag.ilike(like),
                AssetItemORM.serial.ilike(like),
                AssetItemORM.notes.ilike(like),
            )
        )
    if status:
        stmt = stmt.where(AssetItemORM.status == status)

    if asset_model_id:
        stmt = stmt.where(AssetItemORM.asset_model_id == asset_model_id)

    return stmt

def count_asset_items_filtered(db: Session, *, q: str | None, status: str | None, asset_model_id: str | None) -> int:
    stmt = build_asset_items_query(q, status, asset_model_id)
    count_stmt = select(func.count()).select_from(stmt.subquery())
    return int(db.execute(count_stmt).scalar_one())

def asset_items_meta(
    db: Session,
    *,
    q: str | None,
    status: str | None,
    asset_model_id: str | None,
    limit: int,
    offset: int,
) -> dict:
    total = count_asset_items_filtered(db, q=q, status=status, asset_model_id=asset_model_id)
    total_pages = max(1, (total + limit - 1) // limit)

    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "total_pages": total_pages,
    }

def list_asset_items_filtered(
    db: Session,
    *,
    q: str | None,
    status: str | None,
    asset_model_id: str | None,
    sort: str,
    order: str,
    limit: int,
    offset: int,
) -> list[AssetItem]:
    stmt = build_asset_items_query(q, status, asset_model_id)

    col = ALLOWED_SORTS.get(sort, AssetItemORM.asset_tag)
    desc = (order or "").lower() == "desc"
    stmt = stmt.order_by(col.desc() if desc else col.asc())

    stmt = stmt.limit(limit).offset(offset)
    rows = db.execute(stmt).scalars().all()
    return [asset_item_to_schema(a) for a in rows]

def bulk_import_asset_items(db: Session, rows: list[dict[str, str]]) -> dict:
    """
    rows: [{"asset_tag": "...", "serial": "...", "brand": "...", "model_name": "...", "type": "...", "notes": "..."}]
    Unknown models are created on the fly; existing tags are skipped.
    """
    created = 0
    skipped = 0
    errors: list[str] = []

    try:
        for idx, r in enumerate(rows, start=1):
            asset_tag = (r.get("asset_tag") or "").strip()
            serial = (r.get("serial") or "").strip() or None
            brand = (r.get("brand") or "").strip()
            model_name = (r.get("model_name") or "").strip()
            type_ = (r.get("type") or "").strip() or "Autre"
            notes = (r.get("notes") or "").strip() or None

            if not asset_tag or not brand or not model_name:
                errors.append(f"row {idx}: asset_tag/brand/model_name is empty")
                continue

            if asset_tag_exists(db, asset_tag):
                skipped += 1
                continue
            if serial and serial_exists(db, serial):
                errors.append(f"row {idx}: serial {serial} already exists")
                continue

            model_id = get_or_create_asset_model_id(db, type_=type_, brand=brand, model_name=model_name)
            create_asset_item(
                db,
                AssetItemIn(asset_model_id=model_id, asset_tag=asset_tag, serial=serial, notes=notes),
                commit=False,
            )
            created += 1
        db.commit()
    except Exception:
        db.rollback()
        raise

    return {"created": created, "skipped": skipped, "errors": errors}

def get_or_create_asset_model_id(db: Session, *, type_: str, brand: str, model_name: str) -> str:
    m = db.execute(
        select(AssetModelORM).where(AssetModelORM.brand == brand, AssetModelORM.model_name == model_name)
    ).scalars().first()
    if m:
        return m.id
    now = utcnow()
    m = AssetModelORM(id=str(uuid4()), type=type_, brand=brand, model_name=model_name, created_at=now, updated_at=now)
    db.add(m)
    persist(db, commit=False)
    return m.id


# ---------- StockItem ----------
def get_stock_item(db: Session, stock_item_id: str) -> Optional[StockItem]:
    row = db.get(StockItemORM, stock_item_id)
    return stock_item_to_schema(row) if row else None

def list_stock_items(db: Session) -> list[StockItem]:
    rows = db.execute(select(StockItemORM).order_by(StockItemORM.created_at.desc())).scalars().all()
    return [stock_item_to_schema(s) for s in rows]

def create_stock_item(db: Session, body: StockItemIn, *, commit: bool = True) -> StockItem:
    if not db.get(AssetModelORM, body.asset_model_id):
        raise not_found("asset model not found", asset_model_id=body.asset_model_id)
    existing = db.execute(
        select(StockItemORM).where(StockItemORM.asset_model_id == body.asset_model_id)
    ).first()
    if existing:
        raise conflict("asset model already has a stock item", asset_model_id=body.asset_model_id)

    now = utcnow()
    s = StockItemORM(
        id=str(uuid4()),
        asset_model_id=body.asset_model_id,
        quantity=body.quantity,
        loaned=0,
        notes=body.notes,
        created_at=now,
        updated_at=now,
    )
    db.add(s)
    persist(db, commit=commit)
    if commit:
        db.refresh(s)
    return stock_item_to_schema(s)


# ---------- dashboard ----------
LOW_STOCK_THRESHOLD = 5

def status_summary(db: Session) -> dict[str, int]:
    rows = db.execute(select(AssetItemORM.status, func.count()).group_by(AssetItemORM.status)).all()
    return {r[0]: int(r[1]) for r in rows}

def dashboard_stats(db: Session) -> DashboardStats:
    def count(model, *where) -> int:
        return int(db.execute(select(func.count()).select_from(model).where(*where)).scalar_one())

    available = StockItemORM.quantity - StockItemORM.loaned
    return DashboardStats(
        total_employees=count(EmployeeORM),
        total_assets=count(AssetItemORM),
        available_assets=count(AssetItemORM, AssetItemORM.status == "EN_STOCK"),
        active_loans=count(LoanORM, LoanORM.status == "OPEN", LoanORM.deleted_at.is_(None)),
        low_stock_items=count(StockItemORM, available > 0, available < LOW_STOCK_THRESHOLD),
        out_of_stock_items=count(StockItemORM, available <= 0),
        asset_statuses=status_summary(db),
    )
