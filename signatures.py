"""
Pickup/return signature files.

Deleting a signature never raises: the loan rows are the source of truth and
a missing or locked file must not block a database change.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable
from uuid import uuid4

from sqlalchemy import event
from sqlalchemy.orm import Session

from db import ROOT_DIR

logger = logging.getLogger("app.signatures")

URL_PREFIX = "/uploads/signatures/"
ALLOWED_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp"}


def resolve_signatures_dir(root_dir: Path) -> Path:
    custom = os.getenv("SIGNATURES_DIR")
    path = Path(custom).expanduser() if custom else root_dir / "data" / "signatures"
    if not path.is_absolute():
        path = (root_dir / path).resolve()
    path.mkdir(parents=True, exist_ok=True)
    return path


class SignatureStore:
    def __init__(self, directory: Path):
        self.directory = directory

    def path_for(self, url: str) -> Path:
        # only the basename is trusted
        return self.directory / Path(url).name

    def save(self, data: bytes, *, suffix: str = ".png") -> str:
        suffix = suffix.lower()
        if suffix not in ALLOWED_SUFFIXES:
            suffix = ".png"
        name = f"{uuid4().hex}{suffix}"
        (self.directory / name).write_bytes(data)
        logger.info("signature saved name=%s bytes=%s", name, len(data))
        return URL_PREFIX + name

    def delete(self, url: str | None) -> bool:
        if not url:
            return False
        try:
            self.path_for(url).unlink()
        except OSError as exc:
            logger.warning("signature delete failed url=%s error=%s", url, exc)
            return False
        logger.info("signature deleted url=%s", url)
        return True

    def delete_many(self, urls: Iterable[str | None]) -> int:
        return sum(1 for url in urls if self.delete(url))


_PENDING_KEY = "signatures.pending_delete"


def _delete_pending(session):
    for store, urls in session.info.pop(_PENDING_KEY, []):
        store.delete_many(urls)


def _drop_pending(session, transaction):
    # runs after after_commit, so only uncommitted requests are left here
    if transaction.parent is not None:
        return
    dropped = session.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info("signature delete cancelled, transaction not committed files=%s", sum(len(urls) for _, urls in dropped))


def delete_after_commit(db: Session, store: SignatureStore | None, urls: Iterable[str | None]) -> None:
    """
    Delete files once the current transaction commits; drop the request if it
    rolls back or the session closes without committing.

    Pending deletes live in ``db.info``; the two listeners are attached to a
    session once and serve every later request on it.
    """
    pending = [u for u in urls if u]
    if store is None or not pending:
        return

    if not event.contains(db, "after_commit", _delete_pending):
        event.listen(db, "after_commit", _delete_pending)
        event.listen(db, "after_transaction_end", _drop_pending)
    db.info.setdefault(_PENDING_KEY, []).append((store, pending))


_default_store: SignatureStore | None = None


def get_default_store() -> SignatureStore:
    global _default_store
    if _default_store is None:
        _default_store = SignatureStore(resolve_signatures_dir(ROOT_DIR))
    return _default_store
