import json
import logging
import re
import uuid
from typing import Any, Dict, List, Optional

import httpx

from data_uri import parse_data_uri
from errors import StoreError, Unauthenticated
from models.asset import AssetCategory, RemoteItem

logger = logging.getLogger("DriveClient")

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DEFAULT_API_URL = "https://www.googleapis.com/drive/v3"
DEFAULT_UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"
FILE_FIELDS = "id,name,thumbnailLink,createdTime"

CATEGORY_FOLDERS = {
    AssetCategory.SELF_PHOTO: "userPhotos",
    AssetCategory.GARMENT: "wardrobeItems",
    AssetCategory.TRY_ON_RESULT: "tryOnHistory",
    AssetCategory.MANNEQUIN: "mannequinImages",
    AssetCategory.PRODUCT: "productImages",
    AssetCategory.CATALOG_RESULT: "catalogHistory",
}

_THUMB_SIZE_RE = re.compile(r"=s\d+$")


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient:
    """Remote asset store backed by per-category Google Drive folders"""

    def __init__(
        self,
        access_token: str,
        api_url: str = DEFAULT_API_URL,
        upload_url: str = DEFAULT_UPLOAD_URL,
        root_folder: str = "TryOn Studio",
        thumbnail_size: int = 1024,
        timeout: float = 30,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.upload_url = upload_url.rstrip("/")
        self.root_folder = root_folder
        self.thumbnail_size = thumbnail_size
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {access_token}"}
        self._folder_ids: Dict[str, str] = {}

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    def display_link(self, item: Dict[str, Any]) -> str:
        """Usable thumbnail link for a Drive file resource"""
        thumbnail = item.get("thumbnailLink")
        if thumbnail:
            return _THUMB_SIZE_RE.sub(f"=s{self.thumbnail_size}", thumbnail)
        return f"https://drive.google.com/thumbnail?id={item['id']}&sz=w{self.thumbnail_size}"

    async def list(self, category: AssetCategory) -> List[RemoteItem]:
        """List items in a category folder, oldest first"""
        folder_id = await self._category_folder(category)
        items: List[RemoteItem] = []
        page_token = None
        while True:
            params = {
                "q": f"'{folder_id}' in parents and trashed = false",
                "fields": f"nextPageToken,files({FILE_FIELDS})",
                "orderBy": "createdTime",
                "pageSize": 1000,
            }
            if page_token:
                params["pageToken"] = page_token
            data = await self._request("GET", f"{self.api_url}/files", f"list {category.value}", params=params)
            for item in data.get("files", []):
                items.append(RemoteItem(item_id=item["id"], name=item.get("name", ""), link=self.display_link(item)))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        logger.info(f"Listed {len(items)} item(s) in {category.value}")
        return items

    async def upload(self, category: AssetCategory, name: str, data_uri: str) -> RemoteItem:
        """Upload an inline-encoded image into a category folder"""
        mime_type, content = parse_data_uri(data_uri)
        folder_id = await self._category_folder(category)
        metadata = {"name": name, "parents": [folder_id]}
        boundary = f"tryon-{uuid.uuid4().hex}"
        body = b"".join([
            f"--{boundary}\r\nContent-Type: application/json; charset=UTF-8\r\n\r\n".encode(),
            json.dumps(metadata).encode(),
            f"\r\n--{boundary}\r\nContent-Type: {mime_type}\r\n\r\n".encode(),
            content,
            f"\r\n--{boundary}--\r\n".encode(),
        ])
        data = await self._request(
            "POST",
            f"{self.upload_url}/files",
            f"upload {name}",
            params={"uploadType": "multipart", "fields": FILE_FIELDS},
            content=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        logger.info(f"Uploaded '{name}' to {category.value} as {data['id']}")
        return RemoteItem(item_id=data["id"], name=data.get("name", name), link=self.display_link(data))

    async def delete(self, item_id: str):
        await self._request("DELETE", f"{self.api_url}/files/{item_id}", f"delete {item_id}")
        logger.info(f"Deleted file {item_id}")

    async def _category_folder(self, category: AssetCategory) -> str:
        root_id = await self._ensure_folder(self.root_folder, "root")
        return await self._ensure_folder(CATEGORY_FOLDERS[category], root_id)

    async def _ensure_folder(self, name: str, parent_id: str) -> str:
        cache_key = f"{parent_id}/{name}"
        if cache_key in self._folder_ids:
            return self._folder_ids[cache_key]

        params = {
            "q": (
                f"name = '{_quote(name)}' and mimeType = '{FOLDER_MIME_TYPE}' "
                f"and '{parent_id}' in parents and trashed = false"
            ),
            "fields": "files(id,name)",
            "pageSize": 1,
        }
        data = await self._request("GET", f"{self.api_url}/files", f"find folder {name}", params=params)
        files = data.get("files", [])
        if files:
            folder_id = files[0]["id"]
        else:
            created = await self._request(
                "POST",
                f"{self.api_url}/files",
                f"create folder {name}",
                params={"fields": "id"},
                json={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
            )
            folder_id = created["id"]
            logger.info(f"Created folder '{name}' ({folder_id})")
        self._folder_ids[cache_key] = folder_id
        return folder_id

    async def _request(self, method: str, url: str, action: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> Dict[str, Any]:
        request_headers = dict(self._headers)
        if headers:
            request_headers.update(headers)
        try:
            response = await self._client.request(method, url, headers=request_headers, **kwargs)
        except httpx.HTTPError as e:
            raise StoreError(f"Drive {action} failed: {e}") from e

        if response.status_code in (401, 403):
            raise Unauthenticated(f"Drive rejected credentials during {action}")
        if response.status_code >= 400:
            raise StoreError(
                f"Drive {action} failed: {response.status_code} - {response.text[:200]}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()
