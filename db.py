from pathlib import Path
import os
import sys
from sqlalchemy import create_engine, event, inspect
from sqlalchemy.orm import sessionmaker, DeclarativeBase

def app_root_dir() -> Path:
    if getattr(sys, "frozen", False):
        exe_dir = Path(sys.executable).resolve().parent
        return exe_dir.parent
    return Path(__file__).resolve().parent

def resolve_db_path(root_dir: Path) -> Path:
    custom_path = os.getenv("APP_DB_PATH")
    if not custom_path:
        data_dir = root_dir / "data"
        data_dir.mkdir(parents=True, exist_ok=True)
        return data_dir / "loans.db"

    db_path = Path(custom_path).expanduser()
    if not db_path.is_absolute():
        db_path = (root_dir / db_path).resolve()

    db_path.parent.mkdir(parents=True, exist_ok=True)
    return db_path

def resolve_database_url(root_dir: Path) -> str:
    # DATABASE_URL wins (e.g. postgresql+psycopg://...), otherwise a local SQLite file
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    return f"sqlite:///{resolve_db_path(root_dir).as_posix()}"

ROOT_DIR = app_root_dir()
DATABASE_URL = resolve_database_url(ROOT_DIR)

def make_engine(url: str):
    is_sqlite = url.startswith("sqlite")
    eng = create_engine(
        url,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )

    if is_sqlite:
        @event.listens_for(eng, "connect")
        def _sqlite_foreign_keys(dbapi_conn, _record):
            # ON DELETE CASCADE / SET NULL on loan_lines need this
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

    return eng

engine = make_engine(DATABASE_URL)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)

def has_schema(bind) -> bool:
    return inspect(bind).has_table("loans")

def session_for(db_path: str | None = None):
    """
    Session for the CLI scripts. An explicit SQLite file wins over
    APP_DB_PATH / DATABASE_URL.
    """
    if not db_path:
        return SessionLocal()
    path = Path(db_path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(path)
    return SessionLocal(bind=make_engine(f"sqlite:///{path.as_posix()}"))

class Base(DeclarativeBase):
    pass
