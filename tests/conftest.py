import os
import tempfile
from pathlib import Path

# ---- test DB / signature dir must be set before db.py builds the engine ----
_TMP_DIR = Path(tempfile.mkdtemp(prefix="loans_test_"))
os.environ["APP_DB_PATH"] = str(_TMP_DIR / "test_loans.db")
os.environ["SIGNATURES_DIR"] = str(_TMP_DIR / "signatures")
os.environ.pop("DATABASE_URL", None)

import pytest
from fastapi.testclient import TestClient


@pytest.fixture(scope="session")
def app_module():
    import main

    return main


@pytest.fixture()
def client(app_module):
    # requests get their own session from the test database
    def _get_db_override():
        db = app_module.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app_module.app.dependency_overrides[app_module.get_db] = _get_db_override
    with TestClient(app_module.app) as c:
        yield c
    app_module.app.dependency_overrides.clear()


@pytest.fixture()
def db_session(app_module):
    db = app_module.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clean_db(app_module, db_session):
    # children first: lines -> loans -> inventory -> models -> people
    from sqlalchemy import delete
    from orm import (
        AssetItemORM,
        AssetModelORM,
        EmployeeORM,
        LoanLineORM,
        LoanORM,
        StockItemORM,
        UserORM,
    )

    for table in (LoanLineORM, LoanORM, AssetItemORM, StockItemORM, AssetModelORM, EmployeeORM, UserORM):
        db_session.execute(delete(table))
    db_session.commit()
    yield


@pytest.fixture()
def store(tmp_path):
    from signatures import SignatureStore

    return SignatureStore(tmp_path)


# ---- reference data ----
@pytest.fixture()
def user(db_session):
    import crud
    from models import UserIn

    return crud.create_user(db_session, UserIn(email="gest@example.com", role="GESTIONNAIRE"))


@pytest.fixture()
def employee(db_session):
    import crud
    from models import EmployeeIn

    return crud.create_employee(db_session, EmployeeIn(first_name="Alice", last_name="Martin", email="alice@example.com"))


@pytest.fixture()
def laptop_model(db_session):
    import crud
    from models import AssetModelIn

    return crud.create_asset_model(
        db_session, AssetModelIn(type="Ordinateur portable", brand="Dell", model_name="Latitude 5420")
    ).asset_model


@pytest.fixture()
def laptop(db_session, laptop_model):
    import crud
    from models import AssetItemIn

    return crud.create_asset_item(
        db_session, AssetItemIn(asset_model_id=laptop_model.id, asset_tag="LAP-100", serial="SN-100")
    )


@pytest.fixture()
def cables(db_session):
    """Stock item with quantity 10 and nothing loaned."""
    import crud
    from models import AssetModelIn

    created = crud.create_asset_model(
        db_session, AssetModelIn(type="Câble", brand="Belkin", model_name="HDMI 2m", quantity=10)
    )
    return created.stock_item
