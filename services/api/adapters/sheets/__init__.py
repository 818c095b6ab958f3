# services/api/adapters/sheets/__init__.py
from __future__ import annotations

import json
import time
import uuid
from typing import Any, Dict, List, Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..base import MEMO_UPDATABLE_FIELDS, MemoNotFound, StorageAdapter, sort_newest_first

# ========== Sheet schema (HEADERS) ==========

HEADERS = {
    "memos": [
        "memo_id",
        "user_id",
        "user_name",
        "title",
        "blocks",        # JSON list of block dicts
        "is_public",     # TRUE / FALSE
        "created_at",
        "updated_at",
    ],
    "users": [
        "uid",
        "display_name",
        "photo_url",
        "bio",
        "created_at",
        "updated_at",
    ],
}

SHEET_TAB_ORDER = ["memos", "users"]


def _bool_cell(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v or "").strip().upper() in ("TRUE", "1", "YES", "Y")


def _utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _uuid() -> str:
    return str(uuid.uuid4())


def _sa_client_from_json_or_path(google_sa_json: str) -> gspread.Client:
    """
    Accepts either:
      - absolute/relative path to a service-account JSON file, OR
      - a literal JSON string.
    Returns an authorized gspread Client.
    """
    if not google_sa_json:
        raise ValueError("GOOGLE_SA_JSON is required (path to file or inline JSON).")

    # Try to treat as inline JSON first
    try:
        parsed = json.loads(google_sa_json)
        creds = Credentials.from_service_account_info(
            parsed,
            scopes=["https://www.googleapis.com/auth/spreadsheets"],
        )
        return gspread.authorize(creds)
    except json.JSONDecodeError:
        # Not JSON; treat as file path
        creds = Credentials.from_service_account_file(
            google_sa_json,
            scopes=["https://www.googleapis.com/auth/spreadsheets"],
        )
        return gspread.authorize(creds)


# ========== Retry decorator for Google Sheets API calls ==========
def retry_sheets_api(func):
    """Decorator to retry Sheets API calls with exponential backoff on quota errors."""
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((gspread.exceptions.APIError,)),
        reraise=True,
    )
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def _memo_from_row(row: dict[str, Any]) -> dict[str, Any]:
    raw_blocks = row.get("blocks") or "[]"
    try:
        blocks = json.loads(raw_blocks)
    except json.JSONDecodeError:
        blocks = []
    return {
        "memo_id": row.get("memo_id", ""),
        "user_id": row.get("user_id", ""),
        "user_name": row.get("user_name") or None,
        "title": row.get("title", ""),
        "blocks": blocks,
        "is_public": _bool_cell(row.get("is_public")),
        "created_at": row.get("created_at") or None,
        "updated_at": row.get("updated_at") or None,
    }


class SheetsAdapter(StorageAdapter):
    """
    Google Sheets implementation:
    - one tab per record kind (memos, users)
    - blocks are stored as a JSON cell
    - retry logic for reliability, no caching
    """

    def __init__(self, google_sa_json: Optional[str], spreadsheet_id: Optional[str]) -> None:
        if not google_sa_json or not spreadsheet_id:
            raise ValueError("SheetsAdapter requires GOOGLE_SA_JSON and SHEETS_SPREADSHEET_ID")

        self.gc = _sa_client_from_json_or_path(google_sa_json)
        self.ss = self.gc.open_by_key(spreadsheet_id)

        self.ws: dict[str, gspread.Worksheet] = {}
        self.colmap: dict[str, dict[str, int]] = {}
        for tab in SHEET_TAB_ORDER:
            self.ws[tab] = self._ensure_worksheet(tab)
            self.colmap[tab] = self._ensure_headers(tab)

    # ========== Worksheet helpers ==========

    def _ensure_worksheet(self, name: str) -> gspread.Worksheet:
        try:
            return self.ss.worksheet(name)
        except gspread.WorksheetNotFound:
            return self.ss.add_worksheet(
                title=name,
                rows=200,
                cols=len(HEADERS[name]) + 2,
            )

    def _ensure_headers(self, name: str) -> dict[str, int]:
        ws = self.ws[name]
        values = ws.get_values("1:1")
        existing = values[0] if values else []

        base = HEADERS[name][:]
        if not existing:
            ws.update("A1", [base])
            header = base
        else:
            # Append missing base columns, keep any extra ones
            missing = [c for c in base if c not in existing]
            header = existing + missing if missing else existing
            if header != existing:
                ws.update("1:1", [header])

        return {col: idx + 1 for idx, col in enumerate(header)}

    @retry_sheets_api
    def _get_all_dicts(self, tab: str) -> list[dict[str, Any]]:
        """Get all rows from a tab as dictionaries. WITH RETRY."""
        ws = self.ws[tab]
        rows = ws.get_all_values()
        if not rows:
            return []
        header = rows[0]
        out = []
        for r in rows[1:]:
            out.append({header[i]: (r[i] if i < len(r) else "") for i in range(len(header))})
        return out

    @retry_sheets_api
    def _append_rows(self, tab: str, rows: list[list[Any]]) -> None:
        """Append rows to tab. WITH RETRY."""
        if rows:
            # RAW so titles starting with '=' are never evaluated as formulas
            self.ws[tab].append_rows(rows, value_input_option="RAW")

    @retry_sheets_api
    def _update_cells(self, tab: str, row_idx: int, updates: dict[str, Any]) -> None:
        """Update specific cells in a row. WITH RETRY."""
        colmap = self.colmap[tab]
        data = []
        for k, v in updates.items():
            if k not in colmap:
                continue
            a1 = gspread.utils.rowcol_to_a1(row_idx, colmap[k])
            data.append({"range": a1, "values": [[v]]})
        if data:
            self.ws[tab].batch_update(data, value_input_option="RAW")

    @retry_sheets_api
    def _find_row_by_value(self, tab: str, col_name: str, value: str) -> Optional[int]:
        """Find row index by column value."""
        ws = self.ws[tab]
        col_idx = self.colmap[tab][col_name]
        col_vals = ws.col_values(col_idx)
        for i, v in enumerate(col_vals[1:], start=2):  # skip header
            if v == value:
                return i
        return None

    def _append_dict_row(self, tab: str, data: dict[str, Any]) -> None:
        """Append one row using the SHEET'S CURRENT HEADER order."""
        header = self.ws[tab].row_values(1)
        if not header:
            header = HEADERS[tab][:]
            self.ws[tab].update("A1", [header])
        row = [data.get(col, "") for col in header]
        self._append_rows(tab, [row])

    # ========== Memos ==========

    def create_memo(
        self,
        user_id: str,
        title: str,
        blocks: list[dict[str, Any]],
        is_public: bool = False,
        user_name: str | None = None,
    ) -> str:
        memo_id = _uuid()
        data = {
            "memo_id": memo_id,
            "user_id": user_id,
            "user_name": user_name or "",
            "title": title,
            "blocks": json.dumps(blocks, ensure_ascii=False),
            "is_public": "TRUE" if is_public else "FALSE",
            "created_at": _utc_iso(),
            "updated_at": "",
        }
        self._append_dict_row("memos", data)
        return memo_id

    def get_memo(self, memo_id: str) -> dict[str, Any] | None:
        for row in self._get_all_dicts("memos"):
            if row.get("memo_id") == memo_id:
                return _memo_from_row(row)
        return None

    def update_memo(self, memo_id: str, updates: dict[str, Any]) -> None:
        """Update memo fields."""
        row_idx = self._find_row_by_value("memos", "memo_id", memo_id)
        if not row_idx:
            raise MemoNotFound(memo_id)

        cells: Dict[str, Any] = {}
        for key in MEMO_UPDATABLE_FIELDS:
            if key not in updates:
                continue
            val = updates[key]
            if key == "blocks":
                val = json.dumps(val, ensure_ascii=False)
            elif key == "is_public":
                val = "TRUE" if val else "FALSE"
            elif val is None:
                val = ""
            cells[key] = val
        cells["updated_at"] = _utc_iso()
        self._update_cells("memos", row_idx, cells)

    def delete_memo(self, memo_id: str) -> None:
        """
        Delete a memo (rewrite the sheet to avoid gspread row-delete quirks).
        """
        all_memos = self._get_all_dicts("memos")
        if not any(m.get("memo_id") == memo_id for m in all_memos):
            raise MemoNotFound(memo_id)

        header = self.ws["memos"].row_values(1)
        filtered = [header] + [
            [m.get(k, "") for k in header]
            for m in all_memos
            if m.get("memo_id") != memo_id
        ]
        self.ws["memos"].clear()
        self.ws["memos"].update("A1", filtered, value_input_option="RAW")

    def list_memos_by_owner(self, user_id: str) -> list[dict[str, Any]]:
        rows = [_memo_from_row(r) for r in self._get_all_dicts("memos") if r.get("user_id") == user_id]
        return sort_newest_first(rows)

    def list_public_memos(self) -> list[dict[str, Any]]:
        rows = [_memo_from_row(r) for r in self._get_all_dicts("memos") if _bool_cell(r.get("is_public"))]
        return sort_newest_first(rows)

    # ========== User profiles ==========

    def get_user_profile(self, uid: str) -> dict[str, Any] | None:
        for row in self._get_all_dicts("users"):
            if row.get("uid") == uid:
                return {
                    "uid": uid,
                    "display_name": row.get("display_name", ""),
                    "photo_url": row.get("photo_url") or None,
                    "bio": row.get("bio") or None,
                    "created_at": row.get("created_at") or None,
                    "updated_at": row.get("updated_at") or None,
                }
        return None

    def save_user_profile(self, uid: str, data: dict[str, Any]) -> dict[str, Any]:
        fields = {k: (data[k] or "") for k in ("display_name", "photo_url", "bio") if k in data}
        now = _utc_iso()
        row_idx = self._find_row_by_value("users", "uid", uid)
        if row_idx:
            fields["updated_at"] = now
            self._update_cells("users", row_idx, fields)
        else:
            self._append_dict_row("users", {"uid": uid, "created_at": now, "updated_at": now, **fields})
        return self.get_user_profile(uid) or {}

    def ping(self) -> bool:
        self.ws["memos"].row_values(1)
        return True
