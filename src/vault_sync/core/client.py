import json
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import Config
from .batch import (
    DEFAULT_BOUNDARY,
    MAX_BATCH_ITEMS,
    boundary_from_content_type,
    build_batch_delete_body,
    parse_batch_response,
)
from .errors import (
    AuthenticationError,
    RemoteError,
    RemoteTimeoutError,
    TransientError,
    error_for_status,
)
from .models import (
    FOLDER_MIME_TYPE,
    BatchDeleteResult,
    ChangePage,
    QueryMatch,
    RemoteChange,
    RemoteFile,
)
from .query import compile_query, format_time

logger = logging.getLogger(__name__)

DEFAULT_FIELDS = (
    "id",
    "name",
    "mimeType",
    "starred",
    "description",
    "properties",
    "modifiedTime",
)
PAGE_SIZE = 1000
REQUEST_TIMEOUT = (10, 60)
RETRY_STATUSES = (408, 413, 429, 500, 502, 503, 504)

# Refresh the access token this many seconds before it actually expires.
TOKEN_EXPIRY_MARGIN = 60


def _build_retry() -> Retry:
    return Retry(
        total=5,
        backoff_factor=0.5,
        backoff_max=30,
        status_forcelist=RETRY_STATUSES,
        allowed_methods=frozenset(
            ["GET", "POST", "PATCH", "DELETE", "PUT", "HEAD"]
        ),
        respect_retry_after_header=True,
        raise_on_status=False,
    )


class DriveClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self._token_lock = threading.Lock()
        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._root_id: str | None = None

    @property
    def vault_name(self) -> str:
        return self.config.vault_name

    @property
    def session(self) -> requests.Session:
        """Accessor for the current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.config.insecure
        adapter = HTTPAdapter(max_retries=_build_retry())
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def _url(self, path: str) -> str:
        return f"{self.config.api_url}{path}"

    # -- authentication -------------------------------------------------

    def _get_access_token(self) -> str:
        with self._token_lock:
            if (
                self._access_token is None
                or time.monotonic() >= self._token_expires_at
            ):
                self._refresh_access_token()
            return self._access_token  # type: ignore[return-value]

    def _refresh_access_token(self) -> None:
        url = f"{self.config.server_url}/api/access"
        try:
            response = self._get_session().post(
                url,
                json={"refresh_token": self.config.refresh_token},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise AuthenticationError(
                f"Token server unreachable: {e}"
            ) from e
        if not response.ok:
            raise AuthenticationError(
                f"Token refresh failed: HTTP {response.status_code}",
                response.status_code,
            )
        payload = response.json()
        token = payload.get("access_token")
        if not token:
            raise AuthenticationError("Token server returned no access_token")
        expires_in = float(payload.get("expires_in", 3600))
        self._access_token = token
        self._token_expires_at = (
            time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        )
        logger.debug("Access token refreshed, expires in %ss", expires_in)

    def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> requests.Response:
        """Send an authenticated request and map failures to RemoteError.

        Transient statuses are retried by the mounted adapter; whatever
        status remains after retries is raised through ``error_for_status``.
        """
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {self._get_access_token()}"
        kwargs.setdefault("timeout", REQUEST_TIMEOUT)
        try:
            response = self._get_session().request(
                method, self._url(path), headers=headers, **kwargs
            )
        except requests.Timeout as e:
            raise RemoteTimeoutError(f"{method} {path} timed out") from e
        except requests.ConnectionError as e:
            raise TransientError(f"{method} {path} failed: {e}") from e

        if response.status_code == 401:
            # Token revoked or expired early; force a refresh on next call
            with self._token_lock:
                self._access_token = None
        if not response.ok:
            raise error_for_status(
                response.status_code,
                f"{method} {path} failed: HTTP {response.status_code} {response.text[:200]}",
            )
        return response

    def check_connection(self) -> bool:
        """
        Return True when the token server answers its ping endpoint.
        """
        try:
            response = self._get_session().get(
                f"{self.config.server_url}/api/ping", timeout=(5, 10)
            )
        except requests.RequestException as e:
            logger.warning("Ping failed: %s", e)
            return False
        return response.ok

    # -- search ---------------------------------------------------------

    def search(
        self,
        matches: Sequence[QueryMatch] | None = None,
        include: Sequence[str] = DEFAULT_FIELDS,
        order: str = "descending",
        include_root: bool = False,
    ) -> list[RemoteFile]:
        """
        Search remote objects in this vault, following every page.

        Predicates inside a QueryMatch are ANDed, matches are ORed. The vault
        root folder is filtered out unless ``include_root`` is set.
        """
        fields = list(include)
        if "id" not in fields:
            fields.insert(0, "id")
        params: dict[str, Any] = {
            "q": compile_query(matches, self.vault_name),
            "fields": f"nextPageToken,files({','.join(fields)})",
            "pageSize": PAGE_SIZE,
        }
        if not any(m.full_text for m in matches or []):
            params["orderBy"] = "name" if order == "ascending" else "name desc"

        files: list[RemoteFile] = []
        page_token: str | None = None
        while True:
            if page_token:
                params["pageToken"] = page_token
            data = self._request("GET", "drive/v3/files", params=params).json()
            files.extend(RemoteFile.model_validate(f) for f in data.get("files", []))
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        if include_root:
            return files
        return [f for f in files if not f.is_vault_root]

    def get_root_folder_id(self) -> str:
        """
        Return the vault's root folder ID, creating the folder if absent.

        Never creates a second root: an existing root is always reused.
        """
        if self._root_id is not None:
            return self._root_id
        roots = self.search(
            [QueryMatch(properties={"vault_root": "true"})],
            include_root=True,
        )
        if roots:
            self._root_id = roots[0].id
            return self._root_id
        response = self._request(
            "POST",
            "drive/v3/files",
            json={
                "name": self.vault_name,
                "mimeType": FOLDER_MIME_TYPE,
                "description": f"Vault: {self.vault_name}",
                "properties": {
                    "vault_root": "true",
                    "vault": self.vault_name,
                },
            },
        )
        self._root_id = response.json()["id"]
        logger.info("Created remote vault root %s", self._root_id)
        return self._root_id

    def find_folder(self, name: str, parent_id: str) -> str | None:
        """
        Return the ID of a folder named ``name`` directly under ``parent_id``.
        """
        found = self.search(
            [
                QueryMatch(
                    name=name, mime_type=FOLDER_MIME_TYPE, parent=parent_id
                )
            ],
            include=("id", "name"),
        )
        return found[0].id if found else None

    # -- writes ---------------------------------------------------------

    def _with_vault(self, properties: dict[str, str] | None) -> dict[str, str]:
        merged = dict(properties or {})
        merged.setdefault("vault", self.vault_name)
        return merged

    def create_folder(
        self,
        name: str,
        parent_id: str | None = None,
        properties: dict[str, str] | None = None,
        modified_time: datetime | None = None,
    ) -> str:
        """
        Create a folder and return its ID. Defaults to the vault root parent.
        """
        body: dict[str, Any] = {
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id or self.get_root_folder_id()],
            "properties": self._with_vault(properties),
        }
        if modified_time is not None:
            body["modifiedTime"] = format_time(modified_time)
        return self._request("POST", "drive/v3/files", json=body).json()["id"]

    def _metadata_body(
        self, metadata: dict[str, Any] | None, add_vault: bool
    ) -> dict[str, Any]:
        body = dict(metadata or {})
        if add_vault:
            body["properties"] = self._with_vault(body.get("properties"))
        modified = body.get("modifiedTime")
        if isinstance(modified, datetime):
            body["modifiedTime"] = format_time(modified)
        elif isinstance(modified, int):
            body["modifiedTime"] = format_time(
                datetime.fromtimestamp(modified / 1000, tz=timezone.utc)
            )
        return body

    @staticmethod
    def _multipart(metadata: dict[str, Any], content: bytes) -> dict:
        return {
            "metadata": (
                "metadata",
                json.dumps(metadata),
                "application/json; charset=UTF-8",
            ),
            "file": ("file", content, "application/octet-stream"),
        }

    def upload_file(
        self,
        content: bytes,
        name: str,
        parent_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """
        Upload a new file and return its ID.

        ``metadata`` may carry ``properties``, ``description`` and
        ``modifiedTime`` (datetime or epoch milliseconds).
        """
        body = self._metadata_body(metadata, add_vault=True)
        body["name"] = name
        body["parents"] = [parent_id or self.get_root_folder_id()]
        response = self._request(
            "POST",
            "upload/drive/v3/files",
            params={"uploadType": "multipart", "fields": "id"},
            files=self._multipart(body, content),
        )
        return response.json()["id"]

    def update_file(
        self,
        file_id: str,
        content: bytes,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """
        Replace the content (and optionally metadata) of an existing file.
        """
        body = self._metadata_body(metadata, add_vault=False)
        response = self._request(
            "PATCH",
            f"upload/drive/v3/files/{file_id}",
            params={"uploadType": "multipart", "fields": "id"},
            files=self._multipart(body, content),
        )
        return response.json()["id"]

    def update_metadata(self, file_id: str, metadata: dict[str, Any]) -> str:
        body = self._metadata_body(metadata, add_vault=False)
        response = self._request(
            "PATCH", f"drive/v3/files/{file_id}", json=body
        )
        return response.json()["id"]

    def delete_file(self, file_id: str) -> bool:
        self._request("DELETE", f"drive/v3/files/{file_id}")
        return True

    def batch_delete(self, ids: Sequence[str]) -> BatchDeleteResult:
        """
        Delete many objects using multipart batch requests.

        IDs are sent in chunks of at most 100. A transport or HTTP failure
        of the batch call itself raises; per-item failures are reported in
        the result.
        """
        succeeded: list[str] = []
        failed: dict[str, int] = {}
        ids = list(ids)
        for start in range(0, len(ids), MAX_BATCH_ITEMS):
            chunk = ids[start : start + MAX_BATCH_ITEMS]
            response = self._request(
                "POST",
                "batch/drive/v3",
                data=build_batch_delete_body(chunk, DEFAULT_BOUNDARY).encode(),
                headers={
                    "Content-Type": f"multipart/mixed; boundary={DEFAULT_BOUNDARY}"
                },
            )
            result = parse_batch_response(
                response.text,
                chunk,
                boundary_from_content_type(
                    response.headers.get("Content-Type")
                ),
            )
            succeeded.extend(result.succeeded)
            failed.update(result.failed)
        logger.info(
            "Batch delete: %d succeeded, %d failed",
            len(succeeded),
            len(failed),
        )
        return BatchDeleteResult(succeeded=succeeded, failed=failed)

    # -- reads ----------------------------------------------------------

    def fetch_content(self, file_id: str) -> bytes:
        response = self._request(
            "GET",
            f"drive/v3/files/{file_id}",
            params={"alt": "media", "acknowledgeAbuse": "true"},
        )
        return response.content

    def get_file_metadata(self, file_id: str) -> RemoteFile:
        response = self._request(
            "GET",
            f"drive/v3/files/{file_id}",
            params={"fields": ",".join(DEFAULT_FIELDS)},
        )
        return RemoteFile.model_validate(response.json())

    def get_changes_start_token(self) -> str:
        response = self._request("GET", "drive/v3/changes/startPageToken")
        token = response.json().get("startPageToken")
        if not token:
            raise RemoteError("No startPageToken in response")
        return token

    def get_changes(self, start_token: str | None) -> ChangePage:
        """
        Fetch every change since ``start_token``, following pagination.

        Returns an empty page when no cursor has been stored yet.
        """
        if not start_token:
            return ChangePage()
        changes: list[RemoteChange] = []
        token: str | None = start_token
        new_start: str | None = None
        while token:
            data = self._request(
                "GET",
                "drive/v3/changes",
                params={
                    "pageToken": token,
                    "pageSize": PAGE_SIZE,
                    "includeRemoved": "true",
                },
            ).json()
            changes.extend(
                RemoteChange.model_validate(c) for c in data.get("changes", [])
            )
            token = data.get("nextPageToken")
            new_start = data.get("newStartPageToken", new_start)
        return ChangePage(changes=changes, new_start_token=new_start)
