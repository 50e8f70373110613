"""Tests for the Drive, generation and quota HTTP clients

Run with pytest from project root:
    pytest tests/test_clients.py -v
"""

import json

import httpx
import pytest

from data_uri import encode_data_uri
from drive_client import FOLDER_MIME_TYPE, DriveClient
from errors import GenerationFailed, StoreError, Unauthenticated
from generation_client import GenerationClient
from models.asset import AssetCategory
from quota_client import QuotaClient

DRIVE_API = "https://drive.test/drive/v3"
DRIVE_UPLOAD = "https://drive.test/upload/drive/v3"


class FakeDrive:
    """Just enough of the Drive v3 files API for the client"""

    def __init__(self):
        self.requests = []
        self.created_folders = []
        self.files = []
        self.page_size = 2
        self.status_override = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_override is not None:
            return httpx.Response(self.status_override, text="denied")

        q = request.url.params.get("q", "")
        if request.method == "GET" and FOLDER_MIME_TYPE in q:
            if "name = 'TryOn Studio'" in q:
                return httpx.Response(200, json={"files": [{"id": "root-id", "name": "TryOn Studio"}]})
            return httpx.Response(200, json={"files": []})
        if request.method == "POST" and request.url.path == "/drive/v3/files":
            body = json.loads(request.content)
            self.created_folders.append(body)
            return httpx.Response(200, json={"id": f"{body['name']}-id"})
        if request.method == "GET" and request.url.path == "/drive/v3/files":
            start = int(request.url.params.get("pageToken", "0"))
            page = self.files[start:start + self.page_size]
            data = {"files": page}
            if start + self.page_size < len(self.files):
                data["nextPageToken"] = str(start + self.page_size)
            return httpx.Response(200, json=data)
        if request.method == "POST" and request.url.path == "/upload/drive/v3/files":
            return httpx.Response(
                200,
                json={"id": "new-file", "name": "me.png", "thumbnailLink": "https://lh3.test/thumb=s220"},
            )
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(404)


@pytest.fixture
def drive():
    return FakeDrive()


@pytest.fixture
def drive_client(drive):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(drive.handler))
    return DriveClient("drive-token", api_url=DRIVE_API, upload_url=DRIVE_UPLOAD, http_client=http_client)


class TestDriveClient:
    """Tests for the Drive-backed asset store"""

    def test_display_link_upscales_thumbnail(self, drive_client):
        """Thumbnail links are rewritten to the configured size"""
        item = {"id": "abc", "thumbnailLink": "https://lh3.test/abc=s220"}
        assert drive_client.display_link(item) == "https://lh3.test/abc=s1024"

    def test_display_link_fallback(self, drive_client):
        """Files without a thumbnail link use the Drive thumbnail endpoint"""
        assert drive_client.display_link({"id": "abc"}) == "https://drive.google.com/thumbnail?id=abc&sz=w1024"

    @pytest.mark.asyncio
    async def test_list_paginates_in_order(self, drive, drive_client):
        """All pages are collected, oldest first"""
        drive.files = [
            {"id": "f1", "name": "a.png", "thumbnailLink": "https://lh3.test/f1=s220"},
            {"id": "f2", "name": "b.png"},
            {"id": "f3", "name": "c.png", "thumbnailLink": "https://lh3.test/f3=s220"},
        ]

        items = await drive_client.list(AssetCategory.GARMENT)

        assert [i.item_id for i in items] == ["f1", "f2", "f3"]
        assert items[0].link == "https://lh3.test/f1=s1024"
        assert items[1].link.startswith("https://drive.google.com/thumbnail?id=f2")
        listing = [r for r in drive.requests if "wardrobeItems-id" in r.url.params.get("q", "")]
        assert len(listing) == 2
        assert listing[0].url.params["orderBy"] == "createdTime"

    @pytest.mark.asyncio
    async def test_category_folder_created_once(self, drive, drive_client):
        """Missing category folders are created under the root folder and cached"""
        await drive_client.list(AssetCategory.GARMENT)
        await drive_client.list(AssetCategory.GARMENT)

        assert drive.created_folders == [
            {"name": "wardrobeItems", "mimeType": FOLDER_MIME_TYPE, "parents": ["root-id"]}
        ]
        folder_lookups = [r for r in drive.requests if FOLDER_MIME_TYPE in r.url.params.get("q", "")]
        assert len(folder_lookups) == 2

    @pytest.mark.asyncio
    async def test_requests_carry_bearer_token(self, drive, drive_client):
        """Every request is authorised with the access token"""
        await drive_client.list(AssetCategory.SELF_PHOTO)
        assert all(r.headers["Authorization"] == "Bearer drive-token" for r in drive.requests)

    @pytest.mark.asyncio
    async def test_upload_multipart(self, drive, drive_client, png_bytes):
        """Uploads send metadata and bytes in one multipart request"""
        item = await drive_client.upload(AssetCategory.SELF_PHOTO, "me.png", encode_data_uri(png_bytes, "image/png"))

        assert item.item_id == "new-file"
        assert item.link == "https://lh3.test/thumb=s1024"
        upload = drive.requests[-1]
        assert upload.url.params["uploadType"] == "multipart"
        assert upload.headers["Content-Type"].startswith("multipart/related; boundary=")
        assert b'"parents": ["userPhotos-id"]' in upload.content
        assert b"Content-Type: image/png" in upload.content
        assert png_bytes in upload.content

    @pytest.mark.asyncio
    async def test_upload_rejects_non_data_uri(self, drive_client):
        """Only inline payloads can be uploaded"""
        with pytest.raises(ValueError):
            await drive_client.upload(AssetCategory.SELF_PHOTO, "me.png", "https://example.com/me.png")

    @pytest.mark.asyncio
    async def test_delete(self, drive, drive_client):
        """Deletes target the file resource"""
        await drive_client.delete("f1")
        assert drive.requests[-1].method == "DELETE"
        assert drive.requests[-1].url.path == "/drive/v3/files/f1"

    @pytest.mark.asyncio
    async def test_server_error_raises_store_error(self, drive, drive_client):
        """Rejected requests raise StoreError with the status code"""
        drive.status_override = 500
        with pytest.raises(StoreError) as exc_info:
            await drive_client.delete("f1")
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_expired_token(self, drive, drive_client, status):
        """Rejected credentials mean the session must sign in again"""
        drive.status_override = status
        with pytest.raises(Unauthenticated):
            await drive_client.list(AssetCategory.GARMENT)

    @pytest.mark.asyncio
    async def test_network_error(self):
        """Transport failures raise StoreError"""

        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        client = DriveClient(
            "t", api_url=DRIVE_API, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        with pytest.raises(StoreError):
            await client.delete("f1")


class TestGenerationClient:
    """Tests for the image-compositing service client"""

    @staticmethod
    def _client(handler, api_key=None):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return GenerationClient("https://gen.test/api", api_key=api_key, http_client=http_client)

    @pytest.mark.asyncio
    async def test_try_on_request(self):
        """Try-on posts the photo and garments and returns the image"""
        seen = []
        result = encode_data_uri(b"out", "image/png")

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"tryOnImageDataUri": result})

        client = self._client(handler, api_key="secret")
        assert await client.generate_try_on("data:image/png;base64,AA==", ["data:image/png;base64,BB=="]) == result

        request = seen[0]
        assert request.url.path == "/api/virtual-try-on"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "userPhotoDataUri": "data:image/png;base64,AA==",
            "outfitImageDataUris": ["data:image/png;base64,BB=="],
        }

    @pytest.mark.asyncio
    async def test_try_on_alternate_result_key(self):
        """Older responses name the image tryOnImage"""
        result = encode_data_uri(b"out", "image/png")
        client = self._client(lambda request: httpx.Response(200, json={"tryOnImage": result}))
        assert await client.generate_try_on("data:image/png;base64,AA==", []) == result

    @pytest.mark.asyncio
    async def test_catalog_request(self):
        """Catalog posts mannequin, product and style"""
        seen = []
        result = encode_data_uri(b"out", "image/jpeg")

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"catalogImage": result})

        client = self._client(handler)
        assert await client.generate_catalog("data:m", "data:p", "studio") == result
        assert seen[0].url.path == "/api/business-catalog"
        assert "Authorization" not in seen[0].headers
        assert json.loads(seen[0].content) == {
            "catalogStyleDescription": "studio",
            "mannequinImage": "data:m",
            "productImage": "data:p",
        }

    @pytest.mark.asyncio
    async def test_upstream_error_message(self):
        """An error in the response body is surfaced with the upstream message"""
        client = self._client(lambda request: httpx.Response(200, json={"error": "Image blocked by safety filter"}))
        with pytest.raises(GenerationFailed) as exc_info:
            await client.generate_try_on("data:a", ["data:b"])
        assert exc_info.value.upstream_message == "Image blocked by safety filter"

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        """Non-200 responses fail even without a JSON body"""
        client = self._client(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(GenerationFailed) as exc_info:
            await client.generate_try_on("data:a", ["data:b"])
        assert "502" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_image(self):
        """A response without an inline image is a failure"""
        client = self._client(lambda request: httpx.Response(200, json={"tryOnImage": "https://cdn.test/out.png"}))
        with pytest.raises(GenerationFailed):
            await client.generate_try_on("data:a", ["data:b"])

    @pytest.mark.asyncio
    async def test_recommend_outfits_request(self):
        """Recommendations post both photos, the wardrobe and the preferences"""
        seen = []
        preview = encode_data_uri(b"look", "image/png")

        def handler(request):
            seen.append(request)
            return httpx.Response(
                200,
                json=[
                    {"outfitDescription": "Linen shirt and chinos", "outfitImageDataUri": preview, "confidenceScore": 0.82},
                    {"outfitDescription": "No picture", "outfitImageDataUri": "https://cdn.test/x.png", "confidenceScore": 0.5},
                    {"outfitDescription": "Overconfident", "outfitImageDataUri": preview, "confidenceScore": 3},
                ],
            )

        recommendations = await self._client(handler).recommend_outfits("data:body", "data:face", ["data:g1"], "minimal")

        assert seen[0].url.path == "/api/outfit-recommendations"
        assert json.loads(seen[0].content) == {
            "fullBodyImageDataUri": "data:body",
            "faceImageDataUri": "data:face",
            "wardrobeItemDataUris": ["data:g1"],
            "stylePreferences": "minimal",
        }
        assert [r.description for r in recommendations] == ["Linen shirt and chinos", "Overconfident"]
        assert recommendations[0].confidence == 0.82
        assert recommendations[1].confidence == 1.0

    @pytest.mark.asyncio
    async def test_recommend_outfits_wrapped_list(self):
        """A list under a "recommendations" key is accepted"""
        preview = encode_data_uri(b"look", "image/png")
        body = {"recommendations": [{"outfitDescription": "Tee", "outfitImageDataUri": preview, "confidenceScore": 0.4}]}
        client = self._client(lambda request: httpx.Response(200, json=body))
        recommendations = await client.recommend_outfits("data:b", "data:f", [], "casual")
        assert recommendations[0].image_data_uri == preview

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [[], {"recommendations": "none"}, [{"outfitDescription": "Image-less"}]])
    async def test_recommend_outfits_unusable_response(self, body):
        """A response without a single usable outfit is a failure"""
        client = self._client(lambda request: httpx.Response(200, json=body))
        with pytest.raises(GenerationFailed):
            await client.recommend_outfits("data:b", "data:f", ["data:g"], "casual")

    @pytest.mark.asyncio
    async def test_called_once_on_failure(self):
        """Failed calls are not retried"""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, json={"error": "overloaded"})

        with pytest.raises(GenerationFailed):
            await self._client(handler).generate_catalog("data:m", "data:p", "studio")
        assert len(calls) == 1


class TestQuotaClient:
    """Tests for the remote counter client"""

    @staticmethod
    def _client(handler):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return QuotaClient("https://quota.test/api/quota", "user-token", http_client=http_client)

    @pytest.mark.asyncio
    async def test_get_count(self):
        """Reads the counter for a user and period"""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"count": 2})

        assert await self._client(handler).get_count("user-1", "2024-05-17") == 2
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/api/quota/user-1/2024-05-17"
        assert seen[0].headers["Authorization"] == "Bearer user-token"

    @pytest.mark.asyncio
    async def test_increment(self):
        """Increment returns the post-increment count"""
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"count": 4})

        assert await self._client(handler).increment("user-1", "2024-05-17") == 4
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/quota/user-1/2024-05-17/increment"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [httpx.Response(503, text="down"), httpx.Response(200, json={"total": 1}), httpx.Response(200, text="nope")],
    )
    async def test_errors(self, response):
        """Service errors and malformed bodies raise StoreError"""
        with pytest.raises(StoreError):
            await self._client(lambda request: response).get_count("user-1", "2024-05-17")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_unauthorized(self, status):
        """Rejected credentials mean the session must sign in again"""
        client = self._client(lambda request: httpx.Response(status))
        with pytest.raises(Unauthenticated):
            await client.increment("user-1", "2024-05-17")
        with pytest.raises(Unauthenticated):
            await client.get_count("user-1", "2024-05-17")

    @pytest.mark.asyncio
    async def test_closed_client(self):
        """Calls after aclose raise StoreError without touching the network"""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"count": 1})

        client = QuotaClient("https://quota.test/api/quota", "user-token", transport=httpx.MockTransport(handler))
        await client.aclose()
        with pytest.raises(StoreError):
            await client.increment("user-1", "2024-05-17")
        assert calls == []
