"""Autodesk Platform Services client: OSS, Model Derivative and Design Automation."""

import base64
import logging
import random
import re
import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from fossapp.errors import IntegrationError

APS_BASE = "https://developer.api.autodesk.com"
AUTH_URL = f"{APS_BASE}/authentication/v2/token"
OSS_BASE = f"{APS_BASE}/oss/v2"
MD_BASE = f"{APS_BASE}/modelderivative/v2/regions/eu/designdata"
DA_BASE = f"{APS_BASE}/da/us-east/v3"

INTERNAL_SCOPES = "bucket:create bucket:read bucket:delete data:read data:write data:create code:all"
VIEWER_SCOPES = "data:read viewables:read"

# Tokens are refreshed this many seconds before they expire
TOKEN_MARGIN = 300
PROJECT_BUCKET_PREFIX = "fossapp_prj_"


def bucket_name_for_project(project_id: str) -> str:
    return PROJECT_BUCKET_PREFIX + project_id.replace("-", "")[:12].lower()


def object_key(area_code: str, version_number: int, file_name: str, digest: str | None = None) -> str:
    """``{area}_v{N}_{file}``; a content digest adds a short prefix to the file part."""
    prefix = f"{re.sub(r'[^A-Za-z0-9]', '_', area_code)}_v{version_number}_"
    if digest:
        prefix += f"{digest[:8]}_"
    return prefix + file_name


def to_urn(bucket: str, key: str) -> str:
    object_id = f"urn:adsk.objects:os.object:{bucket}/{key}"
    return base64.urlsafe_b64encode(object_id.encode()).decode().rstrip("=")


def from_urn(urn: str) -> Tuple[str, str]:
    """Inverse of :func:`to_urn`: returns ``(bucket, key)``."""
    padded = urn + "=" * (-len(urn) % 4)
    object_id = base64.urlsafe_b64decode(padded.encode()).decode()
    prefix = "urn:adsk.objects:os.object:"
    if not object_id.startswith(prefix) or "/" not in object_id:
        raise ValueError(f"not an OSS object URN: {urn}")
    bucket, key = object_id[len(prefix):].split("/", 1)
    return bucket, key


def normalize_progress(progress: Optional[str]) -> str:
    if not progress:
        return "0%"
    return "100% complete" if progress == "complete" else progress


def parse_manifest(manifest: Dict[str, Any]) -> Dict[str, Any]:
    """Extract warnings, document info, 2D views and 200px thumbnails."""
    result: Dict[str, Any] = {
        "status": manifest.get("status") or "pending",
        "hasThumbnail": manifest.get("hasThumbnail") == "true",
        "warningCount": 0,
        "warnings": [],
        "documentInfo": None,
        "views": [],
        "thumbnailUrn": None,
    }
    derivatives = manifest.get("derivatives") or []
    if not derivatives:
        return result
    main = derivatives[0]

    for msg in main.get("messages") or []:
        if msg.get("type") == "warning" and msg.get("code"):
            text = msg.get("message") or ""
            if isinstance(text, list):
                text = " - ".join(text)
            result["warnings"].append({"code": msg["code"], "message": text})
    result["warningCount"] = len(result["warnings"])

    info = (main.get("properties") or {}).get("Document Information")
    if info:
        result["documentInfo"] = {
            "dwgVersion": info.get("DWGVersion"),
            "author": info.get("Last Author"),
            "fileSize": info.get("FileSize"),
            "dateCreated": info.get("Date Created"),
            "lastWrite": info.get("Last Write"),
        }

    for child in main.get("children") or []:
        if child.get("type") != "geometry" or child.get("role") != "2d":
            continue
        view = {"guid": child.get("guid"), "name": child.get("name") or "Unknown", "role": "2d"}
        for res in child.get("children") or []:
            resolution = res.get("resolution") or []
            if res.get("role") == "thumbnail" and resolution and resolution[0] == 200:
                view["thumbnailUrn"] = res.get("urn")
                result["thumbnailUrn"] = result["thumbnailUrn"] or res.get("urn")
        result["views"].append(view)
    return result


class ApsClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        region: str = "EMEA",
        timeout: int = 60,
        max_retries: int = 3,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.region = region
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        self._tokens: Dict[str, Dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # authentication
    # ------------------------------------------------------------------
    def _token(self, scopes: str) -> Dict[str, Any]:
        cached = self._tokens.get(scopes)
        if cached and time.time() < cached["expires_at"] - TOKEN_MARGIN:
            return cached
        r = self.session.post(
            AUTH_URL,
            data={"grant_type": "client_credentials", "scope": scopes},
            auth=(self.client_id, self.client_secret),
            headers={"Accept": "application/json"},
            timeout=self.timeout,
        )
        if r.status_code >= 400:
            raise IntegrationError("aps", f"authentication failed: {r.text[:200]}", r.status_code)
        data = r.json()
        token = {
            "access_token": data["access_token"],
            "expires_in": int(data.get("expires_in", 3599)),
            "expires_at": time.time() + int(data.get("expires_in", 3599)),
        }
        self._tokens[scopes] = token
        return token

    def get_token(self) -> str:
        return self._token(INTERNAL_SCOPES)["access_token"]

    def get_viewer_token(self) -> Dict[str, Any]:
        token = self._token(VIEWER_SCOPES)
        return {
            "access_token": token["access_token"],
            "expires_in": max(int(token["expires_at"] - time.time()), 0),
        }

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    def request(self, method: str, url: str, allow=(), authorize: bool = True, **kwargs) -> requests.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        tries = 0
        while True:
            if authorize:
                headers["Authorization"] = f"Bearer {self.get_token()}"
            try:
                r = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
            except requests.RequestException:
                tries += 1
                if tries > self.max_retries:
                    raise
                time.sleep(min(2 ** tries, 30) + random.random())
                continue
            if r.status_code in allow:
                return r
            if r.status_code == 429 or r.status_code >= 500:
                tries += 1
                if tries <= self.max_retries:
                    delay = min(2 ** tries, 30) + random.random()
                    logging.warning("APS %s %s -> %s, retrying in %.1fs", method, url, r.status_code, delay)
                    time.sleep(delay)
                    continue
            if r.status_code >= 400:
                raise IntegrationError("aps", f"{method} {url}: {r.text[:300]}", r.status_code)
            return r

    # ------------------------------------------------------------------
    # OSS
    # ------------------------------------------------------------------
    def ensure_bucket(self, bucket: str, policy: str = "persistent") -> bool:
        """Create a bucket; returns False when it already existed."""
        r = self.request(
            "POST",
            f"{OSS_BASE}/buckets",
            allow=(409,),
            json={"bucketKey": bucket, "policyKey": policy},
            headers={"x-ads-region": self.region},
        )
        return r.status_code != 409

    def delete_bucket(self, bucket: str) -> None:
        self.request("DELETE", f"{OSS_BASE}/buckets/{bucket}", allow=(404,))

    def _object_url(self, bucket: str, key: str) -> str:
        return f"{OSS_BASE}/buckets/{bucket}/objects/{quote(key, safe='')}"

    def upload_object(self, bucket: str, key: str, content: bytes) -> Dict[str, Any]:
        url = f"{self._object_url(bucket, key)}/signeds3upload"
        signed = self.request("GET", url).json()
        self.request("PUT", signed["urls"][0], authorize=False, data=content)
        done = self.request("POST", url, json={"uploadKey": signed["uploadKey"]}).json()
        return {
            "bucketKey": bucket,
            "objectKey": key,
            "objectId": done.get("objectId"),
            "urn": to_urn(bucket, key),
            "size": len(content),
        }

    def download_object(self, bucket: str, key: str) -> bytes:
        signed = self.request("GET", f"{self._object_url(bucket, key)}/signeds3download").json()
        return self.request("GET", signed["url"], authorize=False).content

    def copy_object(self, bucket: str, source_key: str, dest_key: str) -> Dict[str, Any]:
        return self.upload_object(bucket, dest_key, self.download_object(bucket, source_key))

    def delete_object(self, bucket: str, key: str) -> None:
        self.request("DELETE", self._object_url(bucket, key), allow=(404,))

    def signed_url(self, bucket: str, key: str, access: str = "read", minutes: int = 60) -> str:
        r = self.request(
            "POST",
            f"{self._object_url(bucket, key)}/signed",
            params={"access": access},
            json={"minutesExpiration": minutes},
        )
        return r.json()["signedUrl"]

    # ------------------------------------------------------------------
    # Model Derivative
    # ------------------------------------------------------------------
    def start_translation(self, urn: str, root_filename: Optional[str] = None) -> str:
        """Queue an SVF2 translation; a job already running counts as started."""
        job_input: Dict[str, Any] = {"urn": urn}
        if root_filename:
            job_input.update(compressedUrn=True, rootFilename=root_filename)
        r = self.request(
            "POST",
            f"{MD_BASE}/job",
            allow=(409,),
            json={
                "input": job_input,
                "output": {"formats": [{"type": "svf2", "views": ["2d", "3d"]}]},
            },
            headers={"x-ads-force": "true"},
        )
        if r.status_code == 409:
            logging.info("Translation for %s already in progress", urn)
            return "inprogress"
        return r.json().get("result", "created")

    def get_manifest(self, urn: str) -> Optional[Dict[str, Any]]:
        r = self.request("GET", f"{MD_BASE}/{urn}/manifest", allow=(404,))
        if r.status_code == 404:
            return None
        return r.json()

    def translation_status(self, urn: str) -> Dict[str, Any]:
        manifest = self.get_manifest(urn)
        if manifest is None:
            return {"status": "pending", "progress": "0%", "messages": []}
        messages: List[str] = []
        for derivative in manifest.get("derivatives") or []:
            for msg in derivative.get("messages") or []:
                text = msg.get("message")
                if isinstance(text, list):
                    text = " - ".join(text)
                if text:
                    messages.append(text)
        return {
            "status": manifest.get("status", "pending"),
            "progress": normalize_progress(manifest.get("progress")),
            "messages": messages,
        }

    # ------------------------------------------------------------------
    # Design Automation
    # ------------------------------------------------------------------
    def submit_workitem(self, activity_id: str, arguments: Dict[str, Any]) -> str:
        r = self.request("POST", f"{DA_BASE}/workitems", json={"activityId": activity_id, "arguments": arguments})
        return r.json()["id"]

    def get_workitem(self, workitem_id: str) -> Dict[str, Any]:
        return self.request("GET", f"{DA_BASE}/workitems/{workitem_id}").json()

    def wait_for_workitem(self, workitem_id: str, interval: float = 2, max_attempts: int = 240) -> Dict[str, Any]:
        for _ in range(max_attempts):
            item = self.get_workitem(workitem_id)
            status = item.get("status")
            if status == "success":
                return item
            if status == "cancelled" or (status or "").startswith("failed"):
                raise IntegrationError("aps", f"workitem {workitem_id} {status}: {item.get('reportUrl', '')}")
            time.sleep(interval)
        raise IntegrationError("aps", f"workitem {workitem_id} timed out")
