"""
JSON file storage adapter for Ashiato Memo.
Simple file-based storage for quick demos and testing.
Not production-ready (no proper locking, not suitable for concurrent access).
"""
import copy
import json
import uuid
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional
from pathlib import Path

from adapters.base import MEMO_UPDATABLE_FIELDS, MemoNotFound, sort_newest_first


def _utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class JsonAdapter:
    """
    JSON file-based storage adapter.
    Stores data in separate JSON files under the data directory.
    Uses atomic file operations for basic consistency.
    """

    def __init__(self, data_dir: str = "data"):
        """
        Initialize the JSON adapter.

        Args:
            data_dir: Directory to store JSON files
        """
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        # File paths
        self.memos_file = self.data_dir / "memos.json"
        self.profiles_file = self.data_dir / "user_profiles.json"

        # Initialize files if they don't exist
        for file in [self.memos_file, self.profiles_file]:
            if not file.exists():
                self._write_file(file, [])

    def _read_file(self, filepath: Path) -> List[Dict[str, Any]]:
        """Read and parse a JSON file."""
        try:
            with open(filepath, "r", encoding="utf-8") as f:
                return json.load(f)
        except (FileNotFoundError, json.JSONDecodeError):
            return []

    def _write_file(self, filepath: Path, data: List[Dict[str, Any]]) -> None:
        """Write data to a JSON file atomically."""
        # Write to temporary file first
        tmp_file = filepath.with_suffix(".tmp")
        with open(tmp_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)

        # Atomic rename
        tmp_file.replace(filepath)

    # ========== Memos ==========

    def create_memo(
        self,
        user_id: str,
        title: str,
        blocks: List[Dict[str, Any]],
        is_public: bool = False,
        user_name: Optional[str] = None,
    ) -> str:
        """Create a new memo."""
        memo_id = str(uuid.uuid4())
        now = _utc_iso()

        memos = self._read_file(self.memos_file)
        memos.append({
            "memo_id": memo_id,
            "user_id": user_id,
            "user_name": user_name,
            "title": title,
            "blocks": copy.deepcopy(blocks),
            "is_public": bool(is_public),
            "created_at": now,
            "updated_at": None,
        })
        self._write_file(self.memos_file, memos)

        return memo_id

    def get_memo(self, memo_id: str) -> Optional[Dict[str, Any]]:
        memos = self._read_file(self.memos_file)
        return next((m for m in memos if m["memo_id"] == memo_id), None)

    def update_memo(self, memo_id: str, updates: Dict[str, Any]) -> None:
        """Overwrite the given fields on a memo."""
        memos = self._read_file(self.memos_file)
        memo = next((m for m in memos if m["memo_id"] == memo_id), None)
        if not memo:
            raise MemoNotFound(memo_id)

        for key in MEMO_UPDATABLE_FIELDS:
            if key in updates:
                memo[key] = copy.deepcopy(updates[key])
        memo["updated_at"] = _utc_iso()

        self._write_file(self.memos_file, memos)

    def delete_memo(self, memo_id: str) -> None:
        memos = self._read_file(self.memos_file)
        remaining = [m for m in memos if m["memo_id"] != memo_id]
        if len(remaining) == len(memos):
            raise MemoNotFound(memo_id)
        self._write_file(self.memos_file, remaining)

    def list_memos_by_owner(self, user_id: str) -> List[Dict[str, Any]]:
        memos = self._read_file(self.memos_file)
        return sort_newest_first([m for m in memos if m["user_id"] == user_id])

    def list_public_memos(self) -> List[Dict[str, Any]]:
        memos = self._read_file(self.memos_file)
        return sort_newest_first([m for m in memos if m.get("is_public")])

    # ========== User profiles ==========

    def get_user_profile(self, uid: str) -> Optional[Dict[str, Any]]:
        profiles = self._read_file(self.profiles_file)
        return next((p for p in profiles if p["uid"] == uid), None)

    def save_user_profile(self, uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create or update a user's profile."""
        profiles = self._read_file(self.profiles_file)
        now = _utc_iso()
        profile = next((p for p in profiles if p["uid"] == uid), None)
        if profile is None:
            profile = {"uid": uid, "display_name": "", "photo_url": None, "bio": None, "created_at": now}
            profiles.append(profile)

        for key in ("display_name", "photo_url", "bio"):
            if key in data:
                profile[key] = data[key]
        profile["updated_at"] = now

        self._write_file(self.profiles_file, profiles)
        return dict(profile)

    def ping(self) -> bool:
        return self.data_dir.is_dir()
