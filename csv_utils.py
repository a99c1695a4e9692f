import csv
import io
from typing import Iterable, Any, Sequence, Callable, Optional
from fastapi.responses import StreamingResponse

def decode_csv_bytes(data: bytes) -> str:
    # Excel exports: UTF-8 with BOM, plain UTF-8, then Windows-1252
    for enc in ("utf-8-sig", "utf-8", "cp1252"):
        try:
            return data.decode(enc)
        except UnicodeDecodeError:
            continue
    return data.decode("utf-8", errors="replace")


HEADER_MAP = {
    # English
    "asset_tag": "asset_tag",
    "assettag": "asset_tag",
    "tag": "asset_tag",
    "serial": "serial",
    "serial_number": "serial",
    "brand": "brand",
    "model": "model_name",
    "model_name": "model_name",
    "type": "type",
    "notes": "notes",
    "note": "notes",
    # French
    "numéro d'inventaire": "asset_tag",
    "n° inventaire": "asset_tag",
    "numéro de série": "serial",
    "n° série": "serial",
    "marque": "brand",
    "modèle": "model_name",
    "remarques": "notes",
}

def normalize_header(h: str) -> str:
    h = (h or "").strip()
    key = h.lower()
    return HEADER_MAP.get(h, HEADER_MAP.get(key, h))

def _fmt_dt(value: Any) -> str:
    if value is None:
        return ""
    return value.isoformat() if hasattr(value, "isoformat") else str(value)

DEFAULT_ASSET_ITEM_COLUMNS: Sequence[tuple[str, Callable[[Any], str]]] = [
    ("id", lambda a: str(getattr(a, "id", ""))),
    ("asset_tag", lambda a: str(getattr(a, "asset_tag", ""))),
    ("serial", lambda a: str(getattr(a, "serial", "") or "")),
    ("type", lambda a: a.asset_model.type if getattr(a, "asset_model", None) else ""),
    ("brand", lambda a: a.asset_model.brand if getattr(a, "asset_model", None) else ""),
    ("model_name", lambda a: a.asset_model.model_name if getattr(a, "asset_model", None) else ""),
    ("status", lambda a: str(getattr(a, "status", ""))),
    ("updated_at", lambda a: _fmt_dt(getattr(a, "updated_at", None))),
    ("notes", lambda a: str(getattr(a, "notes", "") or "")),
]

def rows_to_csv_response(
    rows: Iterable[Any],
    *,
    filename: str = "asset_items_export.csv",
    columns: Optional[Sequence[tuple[str, Callable[[Any], str]]]] = None,
) -> StreamingResponse:
    """
    Stream `rows` as a CSV download. Works with ORM rows or pydantic
    models, anything with attribute access.
    """
    if columns is None:
        columns = DEFAULT_ASSET_ITEM_COLUMNS

    def generate():
        buf = io.StringIO()
        w = csv.writer(buf)

        w.writerow([h for h, _ in columns])
        yield buf.getvalue()
        buf.seek(0)
        buf.truncate(0)

        for row in rows:
            w.writerow([getter(row) for _, getter in columns])
            yield buf.getvalue()
            buf.seek(0)
            buf.truncate(0)

    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(generate(), media_type="text/csv; charset=utf-8", headers=headers)

def csv_bytes_to_rows(data: bytes) -> tuple[list[dict[str, str]], str | None]:
    """
    Parse CSV bytes into rows keyed by normalized header.
    Returns (rows, None) on success, ([], "CSV header not found") otherwise.
    """
    text = decode_csv_bytes(data)
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        return [], "CSV header not found"

    field_map = {fn: normalize_header(fn) for fn in reader.fieldnames}

    rows: list[dict[str, str]] = []
    for raw in reader:
        row: dict[str, str] = {}
        for k, v in raw.items():
            nk = field_map.get(k, k)
            row[nk] = v if v is not None else ""
        rows.append(row)

    return rows, None
