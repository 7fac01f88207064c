from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import httpx
from sqlalchemy.orm import Session

from scribe_api.core.config import settings
from scribe_api.models.drive_credential import DriveCredential

log = logging.getLogger(__name__)

# Refresh a little before the provider would reject the token.
REFRESH_LEEWAY_SECONDS = 60


class DriveAuthError(Exception):
    pass


class DriveError(Exception):
    pass


@dataclass
class DriveFile:
    file_id: str
    name: str
    size: int
    mime_type: str | None


def _as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def save_credential(
    db: Session,
    owner: str,
    access_token: str,
    refresh_token: str | None = None,
    expires_in: int | None = None,
) -> DriveCredential:
    cred = db.query(DriveCredential).filter(DriveCredential.owner == owner).first()
    if cred is None:
        cred = DriveCredential(owner=owner, access_token=access_token)
        db.add(cred)
    cred.access_token = access_token
    if refresh_token:
        cred.refresh_token = refresh_token
    cred.expires_at = (
        datetime.now(timezone.utc) + timedelta(seconds=int(expires_in)) if expires_in else None
    )
    db.commit()
    db.refresh(cred)
    return cred


class DriveClient:
    """
    Google Drive v3 for one owner. Tokens come from drive_credentials and are
    refreshed (and written back) when close to expiry or when Drive says 401.
    """

    def __init__(self, db: Session, owner: str, timeout: float | None = None):
        self.db = db
        self.owner = owner
        self.timeout = timeout or settings.http_timeout_seconds

    def _credential(self) -> DriveCredential:
        cred = self.db.query(DriveCredential).filter(DriveCredential.owner == self.owner).first()
        if cred is None or not cred.access_token:
            raise DriveAuthError("User not authenticated with Google Drive")
        return cred

    def _needs_refresh(self, cred: DriveCredential) -> bool:
        exp = _as_utc(cred.expires_at)
        if exp is None:
            return False
        return exp <= datetime.now(timezone.utc) + timedelta(seconds=REFRESH_LEEWAY_SECONDS)

    def refresh(self) -> DriveCredential:
        cred = self._credential()
        if not cred.refresh_token:
            raise DriveAuthError("Google Drive token expired and no refresh token is stored")
        data = {
            "grant_type": "refresh_token",
            "refresh_token": cred.refresh_token,
            "client_id": settings.google_client_id or "",
            "client_secret": settings.google_client_secret or "",
        }
        try:
            r = httpx.post(settings.google_token_url, data=data, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise DriveError(f"token refresh failed: {e}") from e
        if r.status_code in (400, 401):
            raise DriveAuthError("Google Drive token refresh was rejected; reconnect the account")
        if r.status_code >= 400:
            raise DriveError(f"token refresh failed: HTTP {r.status_code}")

        body = r.json()
        log.info("refreshed drive token for owner=%s", self.owner)
        return save_credential(
            self.db,
            self.owner,
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_in=body.get("expires_in"),
        )

    def _token(self) -> str:
        cred = self._credential()
        if self._needs_refresh(cred):
            cred = self.refresh()
        return cred.access_token

    def _url(self, file_id: str) -> str:
        return f"{settings.drive_api_url.rstrip('/')}/files/{file_id}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token()}"}

    @staticmethod
    def _check(r: httpx.Response, file_id: str) -> None:
        if r.status_code == 401:
            raise DriveAuthError("Google Drive rejected the credential")
        if r.status_code == 404:
            raise DriveError(f"Drive file not found: {file_id}")
        if r.status_code >= 400:
            raise DriveError(f"Drive request for {file_id} failed: HTTP {r.status_code}")

    def get_metadata(self, file_id: str) -> DriveFile:
        params = {"fields": "id,name,size,mimeType"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = client.get(self._url(file_id), params=params, headers=self._headers())
                if r.status_code == 401:
                    self.refresh()
                    r = client.get(self._url(file_id), params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise DriveError(f"Drive metadata request failed: {e}") from e
        self._check(r, file_id)

        data = r.json()
        return DriveFile(
            file_id=str(data.get("id") or file_id),
            name=str(data.get("name") or f"{file_id}.m4a"),
            size=int(data.get("size") or 0),
            mime_type=data.get("mimeType"),
        )

    def download_to(self, file_id: str, dest: Path) -> int:
        """Stream file bytes into dest. Returns the number of bytes written."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            with httpx.Client(timeout=self.timeout) as client:
                for attempt in range(2):
                    with client.stream(
                        "GET", self._url(file_id), params={"alt": "media"}, headers=self._headers()
                    ) as r:
                        if r.status_code == 401 and attempt == 0:
                            self.refresh()
                            continue
                        self._check(r, file_id)
                        with dest.open("wb") as f:
                            for block in r.iter_bytes():
                                f.write(block)
                    break
        except httpx.HTTPError as e:
            raise DriveError(f"Drive download failed: {e}") from e
        return dest.stat().st_size
