# services/api/core/drive_client.py
"""
Google Drive access for block images (IMAGE_STORAGE_BACKEND=drive).

Images are stored under the app root folder using the same layout as the
local backend: <root>/users/<uid>/memos/<memo_id>/<ts>_<name>.
"""
from __future__ import annotations
import logging
import os
import json
import urllib.parse
from io import BytesIO
from typing import List, Optional
from pathlib import Path

from google.oauth2.credentials import Credentials as UserCredentials
from google.auth.transport.requests import Request
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

from settings import get_settings

logger = logging.getLogger(__name__)

_drive_service = None
# folder ids already resolved in this process, keyed by (parent_id, name)
_folder_cache: dict = {}

SCOPES = ["https://www.googleapis.com/auth/drive.file"]

FOLDER_MIME = "application/vnd.google-apps.folder"
TOKEN_FILE = Path(__file__).resolve().parent.parent / "creds" / "drive_token.json"


def _get_drive_credentials() -> UserCredentials:
    """
    Authorized-user OAuth token, from DRIVE_TOKEN_JSON (prod) or
    creds/drive_token.json (dev). A refreshed token is written back only in
    the file case.
    """
    token_env = os.getenv("DRIVE_TOKEN_JSON")
    if token_env:
        creds = UserCredentials.from_authorized_user_info(json.loads(token_env), SCOPES)
    elif TOKEN_FILE.exists():
        creds = UserCredentials.from_authorized_user_file(str(TOKEN_FILE), SCOPES)
    else:
        raise RuntimeError(
            f"No Drive token: set DRIVE_TOKEN_JSON or create {TOKEN_FILE} (drive.file scope)"
        )

    if creds.expired and creds.refresh_token:
        logger.info("Refreshing Google Drive OAuth token")
        creds.refresh(Request())
        if not token_env:
            TOKEN_FILE.parent.mkdir(parents=True, exist_ok=True)
            TOKEN_FILE.write_text(creds.to_json())

    return creds


def get_drive_service():
    """Lazily construct and cache a Drive v3 client."""
    global _drive_service
    if _drive_service is None:
        _drive_service = build("drive", "v3", credentials=_get_drive_credentials(), cache_discovery=False)
        logger.info("Initialized Google Drive client")
    return _drive_service


def _safe_segment(value: str, fallback: str = "UNKNOWN") -> str:
    v = (value or "").strip().replace("/", "_").replace("\\", "_")
    return v[:120] or fallback


def _ensure_folder(service, name: str, parent_id: Optional[str] = None) -> str:
    """Id of the folder `name` under parent_id (or My Drive), created when missing."""
    key = (parent_id, name)
    if key in _folder_cache:
        return _folder_cache[key]

    escaped = name.replace("'", "\\'")
    q = f"mimeType = '{FOLDER_MIME}' and name = '{escaped}' and trashed = false"
    if parent_id:
        q += f" and '{parent_id}' in parents"
    found = service.files().list(q=q, spaces="drive", fields="files(id)", pageSize=1).execute()

    if found.get("files"):
        folder_id = found["files"][0]["id"]
    else:
        body = {"name": name, "mimeType": FOLDER_MIME}
        if parent_id:
            body["parents"] = [parent_id]
        folder_id = service.files().create(body=body, fields="id").execute()["id"]
        logger.info(f"Created Drive folder {name} ({folder_id})")

    _folder_cache[key] = folder_id
    return folder_id


def _ensure_path(service, segments: List[str]) -> str:
    settings = get_settings()
    folder_id = (settings.gdrive_root_folder_id or "").strip()
    if not folder_id:
        folder_id = _ensure_folder(service, settings.gdrive_root_folder_name or "Ashiato_Memo")
    for seg in segments:
        folder_id = _ensure_folder(service, _safe_segment(seg), parent_id=folder_id)
    return folder_id


def upload_image_to_drive(
    *,
    data: bytes,
    content_type: str,
    folder_segments: List[str],
    file_name: str,
) -> str:
    """
    Upload an image under the app's root folder:

    Ashiato_Memo/
        <folder_segments...>/
            <file_name>

    The file is shared as "anyone with the link can read" and a direct view
    URL is returned. Errors propagate to the caller.
    """
    service = get_drive_service()
    parent_id = _ensure_path(service, folder_segments)

    media = MediaIoBaseUpload(BytesIO(data), mimetype=content_type, resumable=False)
    created = service.files().create(
        body={"name": _safe_segment(file_name, "image"), "parents": [parent_id]},
        media_body=media,
        fields="id",
    ).execute()
    file_id = created["id"]

    try:
        service.permissions().create(
            fileId=file_id,
            body={"role": "reader", "type": "anyone"},
            fields="id",
        ).execute()
    except Exception as e:
        logger.warning("Failed to set public permission for image %s: %s", file_id, e)

    logger.info("Uploaded image to Drive file_id=%s", file_id)
    return f"https://drive.google.com/uc?export=view&id={file_id}"


def drive_file_id_from_url(url: str) -> Optional[str]:
    """File id of an https://drive.google.com/uc?...&id=<id> link, else None."""
    parsed = urllib.parse.urlsplit(url or "")
    if parsed.scheme != "https" or parsed.netloc != "drive.google.com" or parsed.path != "/uc":
        return None
    ids = urllib.parse.parse_qs(parsed.query).get("id")
    return ids[0] if ids and ids[0] else None


def delete_drive_file(file_id: str) -> None:
    service = get_drive_service()
    service.files().delete(fileId=file_id).execute()
    logger.info("Deleted Drive file_id=%s", file_id)
