import loans
import reconcile
from models import LoanLineIn
from orm import AssetItemORM, StockItemORM


def _fresh(db, orm_cls, id_):
    db.expire_all()
    return db.get(orm_cls, id_)


def test_no_drift_writes_nothing(db_session, user, employee, laptop, cables):
    loan = loans.create_loan(db_session, employee.id, user.id)
    loans.add_loan_line(db_session, loan.id, LoanLineIn(asset_item_id=laptop.id))
    loans.add_loan_line(db_session, loan.id, LoanLineIn(stock_item_id=cables.id, quantity=2))

    assert reconcile.reconcile_stock_loaned(db_session) == []
    report = reconcile.reconcile_asset_item_statuses(db_session)
    assert report.corrections == []
    assert report.double_booked == []


def test_stock_drift_is_corrected(db_session, user, employee, cables):
    loan = loans.create_loan(db_session, employee.id, user.id)
    loans.add_loan_line(db_session, loan.id, LoanLineIn(stock_item_id=cables.id, quantity=2))

    s = db_session.get(StockItemORM, cables.id)
    s.loaned = 7
    db_session.commit()

    corrections = reconcile.reconcile_stock_loaned(db_session)

    assert len(corrections) == 1
    c = corrections[0]
    assert (c.stored_loaned, c.actual_loaned, c.over_allocated) == (7, 2, False)
    assert c.label == "Belkin HDMI 2m"
    assert _fresh(db_session, StockItemORM, cables.id).loaned == 2


def test_lines_of_deleted_and_closed_loans_do_not_count(db_session, user, employee, cables):
    closed = loans.create_loan(db_session, employee.id, user.id)
    loans.add_loan_line(db_session, closed.id, LoanLineIn(stock_item_id=cables.id, quantity=4))
    loans.close_loan(db_session, closed.id)
    deleted = loans.create_loan(db_session, employee.id, user.id)
    loans.add_loan_line(db_session, deleted.id, LoanLineIn(stock_item_id=cables.id, quantity=3))
    loans.delete_loan(db_session, deleted.id, user.id)

    s = db_session.get(StockItemORM, cables.id)
    s.loaned = 5
    db_session.commit()

    reconcile.reconcile_stock_loaned(db_session)
    assert _fresh(db_session, StockItemORM, cables.id).loaned == 0


def test_dry_run_reports_without_writing(db_session, laptop, cables):
    db_session.get(AssetItemORM, laptop.id).status = "PRETE"
    db_session.get(StockItemORM, cables.id).loaned = 4
    db_session.commit()

    assert len(reconcile.reconcile_stock_loaned(db_session, dry_run=True)) == 1
    report = reconcile.reconcile_asset_item_statuses(db_session, dry_run=True)
    assert [(c.asset_tag, c.old_status, c.new_status) for c in report.corrections] == [("LAP-100", "PRETE", "EN_STOCK")]

    assert _fresh(db_session, StockItemORM, cables.id).loaned == 4
    assert _fresh(db_session, AssetItemORM, laptop.id).status == "PRETE"


def test_asset_status_drift_both_directions(db_session, user, employee, laptop_model, laptop):
    import crud
    from models import AssetItemIn

    ghost = crud.create_asset_item(db_session, AssetItemIn(asset_model_id=laptop_model.id, asset_tag="LAP-200"))
    broken = crud.create_asset_item(db_session, AssetItemIn(asset_model_id=laptop_model.id, asset_tag="LAP-300"))

    loan = loans.create_loan(db_session, employee.id, user.id)
    loans.add_loan_line(db_session, loan.id, LoanLineIn(asset_item_id=laptop.id))

    db_session.get(AssetItemORM, laptop.id).status = "EN_STOCK"
    db_session.get(AssetItemORM, ghost.id).status = "PRETE"
    db_session.get(AssetItemORM, broken.id).status = "HS"
    db_session.commit()

    report = reconcile.reconcile_asset_item_statuses(db_session)

    assert {(c.asset_tag, c.new_status) for c in report.corrections} == {("LAP-100", "PRETE"), ("LAP-200", "EN_STOCK")}
    assert _fresh(db_session, AssetItemORM, laptop.id).status == "PRETE"
    assert _fresh(db_session, AssetItemORM, ghost.id).status == "EN_STOCK"
    assert _fresh(db_session, AssetItemORM, broken.id).status == "HS"
    assert crud.status_summary(db_session) == {"PRETE": 1, "EN_STOCK": 1, "HS": 1}


def test_double_booking_is_reported_not_fixed(db_session, user, employee, laptop):
    from orm import LoanLineORM
    from uuid import uuid4
    from crud import utcnow

    first = loans.create_loan(db_session, employee.id, user.id)
    loans.add_loan_line(db_session, first.id, LoanLineIn(asset_item_id=laptop.id))
    second = loans.create_loan(db_session, employee.id, user.id)
    db_session.add(
        LoanLineORM(id=str(uuid4()), loan_id=second.id, asset_item_id=laptop.id, quantity=1, created_at=utcnow())
    )
    db_session.commit()

    report = reconcile.reconcile_asset_item_statuses(db_session)

    assert report.corrections == []
    assert len(report.double_booked) == 1
    assert report.double_booked[0].loan_ids == sorted([first.id, second.id])
    assert _fresh(db_session, AssetItemORM, laptop.id).status == "PRETE"


def test_repair_scripts_report(db_session, monkeypatch, capsys, cables):
    import runpy
    import sys
    from pathlib import Path

    db_session.get(StockItemORM, cables.id).loaned = 3
    db_session.commit()

    scripts = Path(__file__).resolve().parents[1] / "scripts"
    monkeypatch.setattr(sys, "argv", ["fix_loaned_counters.py", "--dry-run"])
    runpy.run_path(str(scripts / "fix_loaned_counters.py"), run_name="__main__")
    out = capsys.readouterr().out
    assert "Belkin HDMI 2m: stored loaned=3, actual=0" in out
    assert "Dry-run: 1 stock item(s) would be corrected." in out

    monkeypatch.setattr(sys, "argv", ["fix_asset_item_statuses.py"])
    runpy.run_path(str(scripts / "fix_asset_item_statuses.py"), run_name="__main__")
    assert capsys.readouterr().out

    assert _fresh(db_session, StockItemORM, cables.id).loaned == 3


def test_repair_scripts_db_flag(monkeypatch, capsys, tmp_path):
    import os
    import runpy
    import sys
    from pathlib import Path

    import pytest

    script = str(Path(__file__).resolve().parents[1] / "scripts" / "show_active_loans.py")

    # --db wins over DATABASE_URL, with a warning
    monkeypatch.setenv("DATABASE_URL", "postgresql://elsewhere/loans")
    monkeypatch.setattr(sys, "argv", ["show_active_loans.py", "--db", os.environ["APP_DB_PATH"]])
    runpy.run_path(script, run_name="__main__")
    captured = capsys.readouterr()
    assert "DATABASE_URL is set but --db" in captured.err
    assert "No loans found." in captured.out
    monkeypatch.delenv("DATABASE_URL")

    empty = tmp_path / "empty.db"
    empty.touch()
    monkeypatch.setattr(sys, "argv", ["show_active_loans.py", "--db", str(empty)])
    with pytest.raises(SystemExit) as exc:
        runpy.run_path(script, run_name="__main__")
    assert "no loan tables" in str(exc.value.code)

    monkeypatch.setattr(sys, "argv", ["fix_loaned_counters.py", "--db", str(tmp_path / "missing.db")])
    with pytest.raises(FileNotFoundError):
        runpy.run_path(str(Path(script).with_name("fix_loaned_counters.py")), run_name="__main__")
