"""``RemoteStore`` backed by a document library reached through the Graph API.

The store resolves the site and drive identifiers on first use and then maps
each operation onto one or a few HTTP calls:

    upload        PUT  /drives/{drive}/root:/{path}:/content      (<= 4 MiB)
                  POST /drives/{drive}/root:/{path}:/createUploadSession
                  PUT  {uploadUrl} in 5 MiB Content-Range chunks  (> 4 MiB)
    download      GET  /drives/{drive}/root:/{path} then its downloadUrl
    create folder POST .../children for every missing path segment
    move          PATCH /drives/{drive}/root:/{path} with name and parent
    delete        DELETE /drives/{drive}/root:/{path}

Uploads, downloads, folder creation, moves and initialisation run through the
store's ``RetryExecutor``; existence checks, listings and deletes are single
attempts.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, NoReturn
from urllib.parse import quote

import httpx

from .auth import TokenProvider
from .interfaces import (
    AlreadyExistsError,
    InvalidOperationError,
    NotFoundError,
    RemoteEntry,
    RemoteStore,
    RemoteStoreError,
)
from .retry import RetryExecutor

if TYPE_CHECKING:
    from .config import SiteConfig

GRAPH_API_VERSION = "v1.0"
SMALL_UPLOAD_LIMIT = 4 * 1024 * 1024
UPLOAD_CHUNK_SIZE = 5 * 1024 * 1024
MIN_CLIENT_TIMEOUT = 120.0
STORE_INITIAL_DELAY = 2.0
STORE_MAX_DELAY = 60.0

_MB = 1024 * 1024


def _quote(path: str) -> str:
    return quote(path, safe="/")


def _parse_graph_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class GraphRemoteStore(RemoteStore):
    """Remote document library for one configured site."""

    def __init__(
        self,
        config: SiteConfig,
        *,
        client: httpx.AsyncClient | None = None,
        retry: RetryExecutor | None = None,
        tokens: TokenProvider | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialise the store without contacting the service.

        Args:
            config: Site settings (URL, library, credentials, cloud).
            client: HTTP client; one is created and owned when omitted.
            retry: Executor for retried operations. Defaults to
                ``config.retry_attempts`` retries between 2 s and 60 s.
            tokens: Token provider; defaults to one sharing ``client``.
            logger: Destination for store diagnostics.

        """
        self.config = config
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=max(config.timeout_seconds, MIN_CLIENT_TIMEOUT),
            follow_redirects=True,
        )
        self._retry = retry or RetryExecutor(
            max_retries=config.retry_attempts,
            initial_delay=STORE_INITIAL_DELAY,
            max_delay=STORE_MAX_DELAY,
            logger=self._logger,
        )
        self._tokens = tokens or TokenProvider(config, self._client, logger=self._logger)
        self._site_id: str | None = None
        self._drive_id: str | None = None
        self._init_lock: asyncio.Lock | None = None

    @property
    def graph_url(self) -> str:
        """Versioned Graph API root for the configured cloud."""
        return f"{self.config.environment.graph_base_url}/{GRAPH_API_VERSION}"

    @property
    def drive_id(self) -> str | None:
        """Identifier of the document library once resolved."""
        return self._drive_id

    async def initialize(self) -> None:
        """Resolve the site and drive identifiers once."""
        if self._site_id and self._drive_id:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._site_id and self._drive_id:
                return
            await self._retry.execute(self._resolve_ids, "Initialize site connection")

    async def upload(self, path: str, data: bytes) -> None:
        """Upload ``data`` to ``path``, replacing any existing file."""
        await self.initialize()
        if len(data) > SMALL_UPLOAD_LIMIT:
            await self._retry.execute(
                lambda: self._upload_session(path, data),
                f"Upload large file '{path}' ({len(data) / _MB:.1f} MB)",
            )
        else:
            await self._retry.execute(
                lambda: self._upload_content(path, data),
                f"Upload file '{path}'",
            )

    async def download(self, path: str) -> bytes:
        """Download the file at ``path``."""
        await self.initialize()
        return await self._retry.execute(
            lambda: self._download(path),
            f"Download file '{path}'",
        )

    async def file_exists(self, path: str) -> bool:
        """Return True when any item exists at ``path``."""
        await self.initialize()
        response = await self._request("GET", self._item_url(path))
        return response.is_success

    async def directory_exists(self, path: str) -> bool:
        """Return True when a folder exists at ``path``."""
        await self.initialize()
        response = await self._request("GET", self._item_url(path))
        if not response.is_success:
            return False
        return "folder" in response.json()

    async def delete_file(self, path: str) -> None:
        """Delete the file at ``path``."""
        await self._delete(path, "file")

    async def delete_folder(self, path: str) -> None:
        """Delete the folder at ``path`` together with its contents."""
        await self._delete(path, "folder")

    async def create_folder(self, path: str) -> None:
        """Create ``path`` and its missing parents."""
        await self.initialize()
        await self._retry.execute(
            lambda: self._create_folder(path),
            f"Create folder '{path}'",
        )

    async def list_directory(self, path: str) -> list[str]:
        """Return the names of the items inside ``path``."""
        return [item["name"] for item in await self._list_children(path)]

    async def list_directory_info(self, path: str) -> list[RemoteEntry]:
        """Return name, kind, size and modification time of items in ``path``."""
        entries = []
        for item in await self._list_children(path):
            name = item.get("name", "")
            is_folder = "folder" in item
            size = item.get("size")
            entries.append(
                RemoteEntry(
                    name=name,
                    full_path=f"{path}/{name}" if path else name,
                    is_folder=is_folder,
                    size=None if is_folder or size is None else int(size),
                    last_modified=_parse_graph_datetime(
                        item.get("lastModifiedDateTime")
                    ),
                )
            )
        return entries

    async def move_file(
        self,
        source: str,
        destination: str,
        *,
        overwrite: bool = False,
    ) -> None:
        """Move or rename a file."""
        await self._move(source, destination, overwrite=overwrite, kind="file")

    async def move_folder(
        self,
        source: str,
        destination: str,
        *,
        overwrite: bool = False,
    ) -> None:
        """Move or rename a folder."""
        await self._move(source, destination, overwrite=overwrite, kind="folder")

    async def get_file_url(self, path: str) -> str:
        """Return the browser URL of the file at ``path``."""
        return await self._web_url(path, "File")

    async def get_folder_url(self, path: str) -> str:
        """Return the browser URL of the folder at ``path`` (root when empty)."""
        return await self._web_url(path, "Folder")

    async def aclose(self) -> None:
        """Close the HTTP client if this store created it."""
        if self._owns_client:
            await self._client.aclose()

    async def _resolve_ids(self) -> None:
        site_url = httpx.URL(self.config.site_url)
        site_path = site_url.path.rstrip("/")
        response = await self._request(
            "GET", f"{self.graph_url}/sites/{site_url.host}:{site_path}"
        )
        if not response.is_success:
            self._raise_for(response, "Failed to get site info", self.config.site_url)
        site_id = response.json()["id"]

        response = await self._request("GET", f"{self.graph_url}/sites/{site_id}/drives")
        if not response.is_success:
            self._raise_for(response, "Failed to get drives", self.config.site_url)
        drives = response.json().get("value", [])
        drive = next(
            (d for d in drives if d.get("name") == self.config.library_name), None
        )
        if drive is None:
            available = ", ".join(f"'{d.get('name')}'" for d in drives)
            reason = f"Library not found in site. Available libraries: {available}"
            raise NotFoundError(self.config.library_name, reason=reason)

        self._site_id = site_id
        self._drive_id = drive["id"]
        self._logger.info(
            "Connected to library %s on %s (%s)",
            self.config.library_name,
            self.config.site_url,
            self.config.environment.value,
        )

    async def _upload_content(self, path: str, data: bytes) -> None:
        response = await self._request(
            "PUT", f"{self._item_url(path)}:/content", content=data
        )
        if not response.is_success:
            self._raise_for(response, "Failed to upload file", path)

    async def _upload_session(self, path: str, data: bytes) -> None:
        size_mb = len(data) / _MB
        timeout = max(self.config.timeout_seconds * 3, size_mb + 120)
        body = {"item": {"@microsoft.graph.conflictBehavior": "replace"}}
        response = await self._request(
            "POST",
            f"{self._item_url(path)}:/createUploadSession",
            json=body,
            timeout=timeout,
        )
        if not response.is_success:
            self._raise_for(response, "Failed to create upload session", path)
        upload_url = response.json()["uploadUrl"]

        total = len(data)
        offset = 0
        while offset < total:
            chunk = data[offset : offset + UPLOAD_CHUNK_SIZE]
            end = offset + len(chunk) - 1
            response = await self._client.put(
                upload_url,
                content=chunk,
                headers={
                    "Content-Length": str(len(chunk)),
                    "Content-Range": f"bytes {offset}-{end}/{total}",
                },
                timeout=timeout,
            )
            if not response.is_success:
                self._raise_for(
                    response, f"Failed to upload chunk at offset {offset}", path
                )
            offset += len(chunk)
            self._logger.debug(
                "Upload progress %s: %.1f%% (%.1f MB / %.1f MB)",
                path,
                offset * 100.0 / total,
                offset / _MB,
                total / _MB,
            )

    async def _download(self, path: str) -> bytes:
        response = await self._request("GET", self._item_url(path))
        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(path)
        if not response.is_success:
            self._raise_for(response, "Failed to get file", path)
        item = response.json()
        download_url = item.get("@microsoft.graph.downloadUrl")
        if not download_url:
            if "folder" in item:
                raise InvalidOperationError.cannot_read_directory(path)
            message = "Item has no download URL"
            raise RemoteStoreError(message, path=path)

        response = await self._client.get(download_url)
        if not response.is_success:
            self._raise_for(response, "Failed to download file", path)
        return response.content

    async def _delete(self, path: str, kind: str) -> None:
        await self.initialize()
        response = await self._request("DELETE", self._item_url(path))
        if response.is_success or response.status_code == httpx.codes.NOT_FOUND:
            return
        self._raise_for(response, f"Failed to delete {kind}", path)

    async def _create_folder(self, path: str) -> None:
        current = ""
        for part in (p for p in path.replace("\\", "/").split("/") if p):
            parent = current
            current = f"{current}/{part}" if current else part

            response = await self._request("GET", self._item_url(current))
            if response.is_success:
                continue

            body = {
                "name": part,
                "folder": {},
                "@microsoft.graph.conflictBehavior": "fail",
            }
            response = await self._request(
                "POST", self._children_url(parent), json=body
            )
            if not response.is_success and "nameAlreadyExists" not in response.text:
                self._raise_for(response, "Failed to create folder", current)

    async def _list_children(self, path: str) -> list[dict[str, Any]]:
        await self.initialize()
        items: list[dict[str, Any]] = []
        url: str | None = self._children_url(path)
        while url:
            response = await self._request("GET", url)
            if response.status_code == httpx.codes.NOT_FOUND:
                raise NotFoundError(path, reason="Directory not found")
            if not response.is_success:
                self._raise_for(response, "Failed to list directory", path)
            page = response.json()
            items.extend(page.get("value", []))
            url = page.get("@odata.nextLink")
        return items

    async def _move(
        self,
        source: str,
        destination: str,
        *,
        overwrite: bool,
        kind: str,
    ) -> None:
        await self.initialize()
        await self._retry.execute(
            lambda: self._patch_location(source, destination, overwrite=overwrite),
            f"Move {kind} from '{source}' to '{destination}'",
        )

    async def _patch_location(
        self,
        source: str,
        destination: str,
        *,
        overwrite: bool,
    ) -> None:
        parent, _, name = destination.rpartition("/")
        body: dict[str, Any] = {
            "name": name,
            "@microsoft.graph.conflictBehavior": "replace" if overwrite else "fail",
        }
        if parent:
            response = await self._request("GET", self._item_url(parent))
            if response.status_code == httpx.codes.NOT_FOUND:
                raise NotFoundError(parent, reason="Destination parent folder not found")
            if not response.is_success:
                self._raise_for(response, "Failed to get destination folder", parent)
            body["parentReference"] = {"id": response.json()["id"]}
        else:
            body["parentReference"] = {
                "id": self._drive_id,
                "path": f"/drives/{self._drive_id}/root",
            }

        response = await self._request("PATCH", self._item_url(source), json=body)
        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(source)
        if response.status_code == httpx.codes.CONFLICT:
            raise AlreadyExistsError(destination)
        if not response.is_success:
            self._raise_for(
                response, f"Failed to move '{source}' to '{destination}'", source
            )

    async def _web_url(self, path: str, kind: str) -> str:
        await self.initialize()
        response = await self._request("GET", self._item_url(path))
        if response.status_code == httpx.codes.NOT_FOUND:
            raise NotFoundError(path, reason=f"{kind} not found")
        if not response.is_success:
            self._raise_for(response, f"Failed to get {kind.lower()}", path)
        return response.json()["webUrl"]

    def _item_url(self, path: str) -> str:
        root = f"{self.graph_url}/drives/{self._drive_id}/root"
        return f"{root}:/{_quote(path)}" if path else root

    def _children_url(self, path: str) -> str:
        root = f"{self.graph_url}/drives/{self._drive_id}/root"
        if not path:
            return f"{root}/children"
        return f"{root}:/{_quote(path)}:/children"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self._tokens.get_token()
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {token}"
        response = await self._client.request(method, url, headers=headers, **kwargs)
        if response.status_code == httpx.codes.UNAUTHORIZED:
            self._tokens.invalidate()
        return response

    @staticmethod
    def _raise_for(
        response: httpx.Response, message: str, path: str | None
    ) -> NoReturn:
        raise RemoteStoreError(
            message,
            path=path,
            status_code=response.status_code,
            body=response.text,
        )
