"""
Storage adapter interface for Ashiato Memo.
Defines the contract that all storage backends must implement.
"""

from typing import Protocol, List, Dict, Any, Optional


class MemoNotFound(ValueError):
    """Raised when a memo id does not resolve."""

    def __init__(self, memo_id: str):
        super().__init__(f"Memo {memo_id} not found")
        self.memo_id = memo_id


# Keys a memo row carries, in every backend
MEMO_FIELDS = (
    "memo_id",
    "user_id",
    "user_name",
    "title",
    "blocks",
    "is_public",
    "created_at",
    "updated_at",
)

# Fields a caller may change through update_memo
MEMO_UPDATABLE_FIELDS = ("title", "blocks", "is_public", "user_name")

PROFILE_FIELDS = ("uid", "display_name", "photo_url", "bio", "created_at", "updated_at")


class StorageAdapter(Protocol):
    """
    Protocol defining the interface for all storage adapters.

    This allows swapping between SQLite, JSON files and Google Sheets
    without changing the router or business logic code.

    Memo rows are plain dicts with the keys in MEMO_FIELDS; `blocks` is a
    list of block dicts (see models.memo.Block.to_storage) and timestamps are
    ISO-8601 UTC strings.
    """

    # ========== Memos ==========

    def create_memo(
        self,
        user_id: str,
        title: str,
        blocks: List[Dict[str, Any]],
        is_public: bool = False,
        user_name: Optional[str] = None,
    ) -> str:
        """
        Create a new memo.

        Args:
            user_id: Owner id from the session identity
            title: Non-empty title
            blocks: Ordered list of block dicts
            is_public: Whether the memo appears in the public feed
            user_name: Author name shown on public memos (None for private ones)

        Returns:
            Generated memo id. The adapter also stamps created_at.
        """
        ...

    def get_memo(self, memo_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a memo row by id.

        Returns:
            Dict with memo fields, or None if not found.
        """
        ...

    def update_memo(self, memo_id: str, updates: Dict[str, Any]) -> None:
        """
        Update fields on a memo row.

        Implementations should:
            - overwrite only the provided keys in MEMO_UPDATABLE_FIELDS
            - update 'updated_at' internally

        Raises:
            MemoNotFound if the memo does not exist.
        """
        ...

    def delete_memo(self, memo_id: str) -> None:
        """
        Delete a memo.

        Raises:
            MemoNotFound if the memo does not exist.
        """
        ...

    def list_memos_by_owner(self, user_id: str) -> List[Dict[str, Any]]:
        """
        All memos owned by `user_id`, newest first (created_at descending).
        """
        ...

    def list_public_memos(self) -> List[Dict[str, Any]]:
        """
        All memos with is_public set, newest first.
        """
        ...

    # ========== User profiles ==========

    def get_user_profile(self, uid: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a profile row (keys in PROFILE_FIELDS), or None.
        """
        ...

    def save_user_profile(self, uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create or update a profile (display_name, photo_url, bio).

        Returns:
            The stored profile row.
        """
        ...

    # ========== Health ==========

    def ping(self) -> bool:
        """
        Cheap connectivity check used by /readyz.
        """
        ...


def sort_newest_first(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Order memo rows by created_at descending. ISO-8601 UTC strings sort lexically;
    rows with the same timestamp come back latest-inserted first.
    """
    return sorted(reversed(rows), key=lambda r: str(r.get("created_at") or ""), reverse=True)
