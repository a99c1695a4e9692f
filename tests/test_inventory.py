import pytest

import inventory
from errors import AppError, ErrorKind
from orm import AssetItemORM, StockItemORM


def _stock(db, stock_item_id):
    db.expire_all()
    return db.get(StockItemORM, stock_item_id)


def test_reserve_and_release_asset_item(db_session, laptop):
    a = inventory.reserve_asset_item(db_session, laptop.id)
    assert a.status == "PRETE"

    with pytest.raises(AppError) as exc:
        inventory.reserve_asset_item(db_session, laptop.id)
    assert exc.value.kind is ErrorKind.VALIDATION
    assert exc.value.details["asset_tag"] == "LAP-100"
    assert exc.value.details["status"] == "PRETE"

    a = inventory.release_asset_item(db_session, laptop.id)
    assert a.status == "EN_STOCK"


def test_reserve_asset_item_not_found(db_session):
    with pytest.raises(AppError) as exc:
        inventory.reserve_asset_item(db_session, "missing")
    assert exc.value.kind is ErrorKind.NOT_FOUND


def test_reserve_asset_item_rejects_broken_item(db_session, laptop):
    inventory.set_asset_item_status(db_session, laptop.id, "HS")

    with pytest.raises(AppError) as exc:
        inventory.reserve_asset_item(db_session, laptop.id)
    assert exc.value.kind is ErrorKind.VALIDATION
    assert db_session.get(AssetItemORM, laptop.id).status == "HS"


def test_reserve_stock_until_exhausted(db_session, cables):
    inventory.reserve_stock(db_session, cables.id, 7)
    inventory.reserve_stock(db_session, cables.id, 3)
    assert _stock(db_session, cables.id).loaned == 10

    with pytest.raises(AppError) as exc:
        inventory.reserve_stock(db_session, cables.id, 1)
    assert exc.value.kind is ErrorKind.VALIDATION
    assert exc.value.details == {"stock_item_id": cables.id, "available": 0, "requested": 1}
    assert "0 available, 1 requested" in exc.value.message


@pytest.mark.parametrize("qty", [0, -2])
def test_reserve_stock_rejects_non_positive_quantity(db_session, cables, qty):
    with pytest.raises(AppError) as exc:
        inventory.reserve_stock(db_session, cables.id, qty)
    assert exc.value.kind is ErrorKind.VALIDATION
    assert _stock(db_session, cables.id).loaned == 0


def test_release_stock_floors_at_zero(db_session, cables):
    inventory.reserve_stock(db_session, cables.id, 2)
    s = inventory.release_stock(db_session, cables.id, 5)
    assert s.loaned == 0


def test_set_asset_item_status_refuses_prete(db_session, laptop):
    with pytest.raises(AppError):
        inventory.set_asset_item_status(db_session, laptop.id, "PRETE")

    inventory.reserve_asset_item(db_session, laptop.id)
    db_session.commit()
    with pytest.raises(AppError) as exc:
        inventory.set_asset_item_status(db_session, laptop.id, "REPARATION")
    assert "on loan" in exc.value.message


def test_adjust_stock_quantity_guards(db_session, cables):
    inventory.reserve_stock(db_session, cables.id, 6)
    db_session.commit()

    with pytest.raises(AppError):
        inventory.adjust_stock_quantity(db_session, cables.id, -5)
    with pytest.raises(AppError):
        inventory.adjust_stock_quantity(db_session, cables.id, -11)

    adjusted = inventory.adjust_stock_quantity(db_session, cables.id, -4)
    assert adjusted.quantity == 6
    assert adjusted.available == 0


def test_delete_guards(db_session, laptop, cables):
    inventory.reserve_asset_item(db_session, laptop.id)
    inventory.reserve_stock(db_session, cables.id, 1)
    db_session.commit()

    with pytest.raises(AppError):
        inventory.delete_asset_item(db_session, laptop.id)
    with pytest.raises(AppError):
        inventory.delete_stock_item(db_session, cables.id)

    inventory.release_asset_item(db_session, laptop.id)
    inventory.release_stock(db_session, cables.id, 1)
    db_session.commit()

    inventory.delete_asset_item(db_session, laptop.id)
    inventory.delete_stock_item(db_session, cables.id)
    db_session.expire_all()
    assert db_session.get(AssetItemORM, laptop.id) is None
    assert db_session.get(StockItemORM, cables.id) is None
