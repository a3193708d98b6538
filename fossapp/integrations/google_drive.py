"""Google Drive v3 client for the project/area/version folder tree and tiles."""

import json
import logging
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from fossapp.errors import IntegrationError

DRIVE_API = "https://www.googleapis.com/drive/v3"
UPLOAD_API = "https://www.googleapis.com/upload/drive/v3"
SCOPES = ["https://www.googleapis.com/auth/drive"]
FOLDER_MIME = "application/vnd.google-apps.folder"

# Project skeleton created under Projects/{code}
PROJECT_STRUCTURE: Dict[str, List[str]] = {
    "00_Customer": ["Drawings", "Photos", "Documents"],
    "01_Working": ["CAD", "Calculations"],
    "02_Areas": [],
    "03_Output": ["Drawings", "Presentations", "Schedules"],
    "04_Specs": ["Cut_Sheets", "Photometrics"],
}
AREAS_FOLDER = "02_Areas"
VERSION_SUBFOLDERS = ["Working", "Output"]


def folder_link(folder_id: str) -> str:
    return f"https://drive.google.com/drive/folders/{folder_id}"


def _escape(name: str) -> str:
    return name.replace("\\", "\\\\").replace("'", "\\'")


class DriveService:
    def __init__(
        self,
        session: requests.Session,
        projects_folder_id: str,
        archive_folder_id: str = "",
        tiles_folder_id: str = "",
        shared_drive_id: str = "",
        max_attempts: int = 3,
        timeout: int = 30,
    ) -> None:
        self.session = session
        self.projects_folder_id = projects_folder_id
        self.archive_folder_id = archive_folder_id
        self.tiles_folder_id = tiles_folder_id
        self.shared_drive_id = shared_drive_id
        self.max_attempts = max_attempts
        self.timeout = timeout

    @classmethod
    def from_service_account(cls, key_file: str, **kwargs) -> "DriveService":
        creds = service_account.Credentials.from_service_account_file(key_file, scopes=SCOPES)
        return cls(AuthorizedSession(creds), **kwargs)

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    @staticmethod
    def _retryable(status: int) -> bool:
        return status in (403, 429) or status >= 500

    def with_retry(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send a request, retrying rate limits and server errors.

        Backoff is ``min(1000 * 2**attempt, 10000)`` milliseconds.
        """
        params = dict(kwargs.pop("params", None) or {})
        params["supportsAllDrives"] = "true"
        allow = kwargs.pop("allow", ())
        attempt = 0
        while True:
            try:
                r = self.session.request(method, url, params=params, timeout=self.timeout, **kwargs)
            except requests.RequestException:
                if attempt + 1 >= self.max_attempts:
                    raise
                self._backoff(attempt, "network error")
                attempt += 1
                continue
            if r.status_code in allow:
                return r
            if self._retryable(r.status_code) and attempt + 1 < self.max_attempts:
                self._backoff(attempt, f"HTTP {r.status_code}")
                attempt += 1
                continue
            if r.status_code >= 400:
                raise IntegrationError("drive", r.text[:300], r.status_code)
            return r

    def _backoff(self, attempt: int, reason: str) -> None:
        delay_ms = min(1000 * 2 ** attempt, 10000)
        logging.warning("Drive request failed (%s), retrying in %sms", reason, delay_ms)
        time.sleep(delay_ms / 1000.0)

    # ------------------------------------------------------------------
    # primitives
    # ------------------------------------------------------------------
    def _list(self, query: str, fields: str) -> Iterable[Dict[str, Any]]:
        params = {
            "q": query,
            "fields": f"nextPageToken, files({fields})",
            "includeItemsFromAllDrives": "true",
            "pageSize": 200,
        }
        if self.shared_drive_id:
            params.update(corpora="drive", driveId=self.shared_drive_id)
        while True:
            data = self.with_retry("GET", f"{DRIVE_API}/files", params=params).json()
            yield from data.get("files", [])
            token = data.get("nextPageToken")
            if not token:
                break
            params["pageToken"] = token

    def find_folder(self, name: str, parent_id: str) -> Optional[str]:
        query = (
            f"name = '{_escape(name)}' and '{parent_id}' in parents "
            f"and mimeType = '{FOLDER_MIME}' and trashed = false"
        )
        for f in self._list(query, "id, name"):
            return f["id"]
        return None

    def create_folder(self, name: str, parent_id: str) -> str:
        r = self.with_retry(
            "POST",
            f"{DRIVE_API}/files",
            params={"fields": "id"},
            json={"name": name, "mimeType": FOLDER_MIME, "parents": [parent_id]},
        )
        return r.json()["id"]

    def ensure_folder(self, name: str, parent_id: str) -> str:
        return self.find_folder(name, parent_id) or self.create_folder(name, parent_id)

    def get_file(self, file_id: str, fields: str = "id, name, mimeType, parents, size") -> Dict[str, Any]:
        return self.with_retry("GET", f"{DRIVE_API}/files/{file_id}", params={"fields": fields}).json()

    def list_files(self, folder_id: str) -> List[Dict[str, Any]]:
        query = f"'{folder_id}' in parents and trashed = false"
        files = self._list(query, "id, name, mimeType, size, modifiedTime, webViewLink")
        return sorted(files, key=lambda f: (f.get("mimeType") != FOLDER_MIME, f.get("name", "")))

    def rename(self, file_id: str, name: str) -> None:
        self.with_retry("PATCH", f"{DRIVE_API}/files/{file_id}", json={"name": name})

    def delete_folder(self, folder_id: str) -> None:
        r = self.with_retry("DELETE", f"{DRIVE_API}/files/{folder_id}", allow=(404,))
        if r.status_code == 404:
            logging.info("Drive folder %s already gone", folder_id)

    def move_to_archive(self, folder_id: str) -> None:
        if not self.archive_folder_id:
            raise IntegrationError("drive", "no archive folder configured")
        parents = self.get_file(folder_id, "parents").get("parents", [])
        self.with_retry(
            "PATCH",
            f"{DRIVE_API}/files/{folder_id}",
            params={"addParents": self.archive_folder_id, "removeParents": ",".join(parents)},
        )

    def copy_folder(self, source_id: str, dest_parent_id: str, name: str) -> str:
        """Recursively copy a folder; returns the id of the new folder."""
        new_id = self.create_folder(name, dest_parent_id)
        for child in self.list_files(source_id):
            if child["mimeType"] == FOLDER_MIME:
                self.copy_folder(child["id"], new_id, child["name"])
            else:
                self.with_retry(
                    "POST",
                    f"{DRIVE_API}/files/{child['id']}/copy",
                    json={"name": child["name"], "parents": [new_id]},
                )
        return new_id

    def upload_file(self, parent_id: str, name: str, content: bytes, mime_type: str = "application/octet-stream") -> str:
        boundary = f"fossapp{uuid.uuid4().hex}"
        metadata = json.dumps({"name": name, "parents": [parent_id]})
        body = (
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{metadata}\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n"
        ).encode() + content + f"\r\n--{boundary}--".encode()
        r = self.with_retry(
            "POST",
            f"{UPLOAD_API}/files",
            params={"uploadType": "multipart", "fields": "id"},
            data=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        return r.json()["id"]

    def download_file(self, file_id: str) -> bytes:
        return self.with_retry("GET", f"{DRIVE_API}/files/{file_id}", params={"alt": "media"}).content

    # ------------------------------------------------------------------
    # project tree
    # ------------------------------------------------------------------
    def create_project_folder(self, project_code: str) -> Dict[str, Any]:
        """Create (or complete) ``Projects/{code}`` and its skeleton.

        An existing folder with the same code is reused, so retrying a
        failed project creation never produces a duplicate tree.
        """
        root_id = self.find_folder(project_code, self.projects_folder_id)
        if root_id:
            logging.info("Reusing existing Drive folder for %s", project_code)
        else:
            root_id = self.create_folder(project_code, self.projects_folder_id)

        folders: Dict[str, str] = {}
        for top, children in PROJECT_STRUCTURE.items():
            top_id = self.ensure_folder(top, root_id)
            folders[top] = top_id
            for child in children:
                folders[f"{top}/{child}"] = self.ensure_folder(child, top_id)

        return {
            "project_folder_id": root_id,
            "areas_folder_id": folders[AREAS_FOLDER],
            "folders": folders,
            "web_link": folder_link(root_id),
        }

    def find_areas_folder(self, project_folder_id: str) -> Optional[str]:
        return self.find_folder(AREAS_FOLDER, project_folder_id)

    def create_area_version_folder(self, areas_folder_id: str, area_code: str, version_number: int) -> Dict[str, str]:
        area_id = self.ensure_folder(area_code, areas_folder_id)
        version_id = self.ensure_folder(f"v{version_number}", area_id)
        for sub in VERSION_SUBFOLDERS:
            self.ensure_folder(sub, version_id)
        return {"area_folder_id": area_id, "version_folder_id": version_id}

    # ------------------------------------------------------------------
    # tiles
    # ------------------------------------------------------------------
    def upload_tile(self, tile_name: str, files: List[Tuple[str, bytes, str]]) -> Dict[str, Any]:
        """Upload generated tile files into ``RESOURCES/TILES/{tile_name}``.

        A previous folder of the same name is kept as ``{tile_name}.BAK``.
        """
        if not self.tiles_folder_id:
            raise IntegrationError("drive", "no tiles folder configured")
        existing = self.find_folder(tile_name, self.tiles_folder_id)
        if existing:
            stale = self.find_folder(f"{tile_name}.BAK", self.tiles_folder_id)
            if stale:
                self.delete_folder(stale)
            self.rename(existing, f"{tile_name}.BAK")

        folder_id = self.create_folder(tile_name, self.tiles_folder_id)
        uploaded = {name: self.upload_file(folder_id, name, content, mime) for name, content, mime in files}
        return {"folder_id": folder_id, "web_link": folder_link(folder_id), "files": uploaded}

    def download_tile_files(self, dwg_file_id: str) -> Dict[str, Any]:
        """Fetch a tile DWG together with the images stored next to it."""
        meta = self.get_file(dwg_file_id)
        dwg = self.download_file(dwg_file_id)
        images = []
        for parent in meta.get("parents") or []:
            for f in self.list_files(parent):
                if (f.get("mimeType") or "").startswith("image/"):
                    images.append((f["name"], self.download_file(f["id"])))
        return {"name": meta.get("name"), "dwg": dwg, "images": images}
