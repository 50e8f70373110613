"""Shared fixtures and in-memory stand-ins for the remote collaborators"""

import asyncio
from collections import defaultdict
from io import BytesIO
from typing import Dict, List, Optional, Set

import httpx
import pytest
from PIL import Image

from data_uri import encode_data_uri
from errors import StoreError, Unauthenticated
from managers.session_manager import UserSession
from managers.settings_manager import HARDCODED_SETTINGS, SettingsManager
from models.asset import AssetCategory, RemoteItem, UploadFile
from models.generation import OutfitRecommendation

IMAGE_HOST = "https://img.test"


def make_png(size=(8, 8), color=(200, 30, 30)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeStore:
    """Remote asset store kept in memory, with failure injection and gates"""

    def __init__(self):
        self.items: Dict[AssetCategory, List[RemoteItem]] = defaultdict(list)
        self.fail_uploads: Set[str] = set()
        self.fail_upload_categories: Set[AssetCategory] = set()
        self.fail_deletes: Set[str] = set()
        self.broken_links: Set[str] = set()
        self.fail_lists: Set[AssetCategory] = set()
        # one gate per list call, consumed in call order
        self.list_gates: List[asyncio.Event] = []
        self.upload_gate: Optional[asyncio.Event] = None
        self.delete_gate: Optional[asyncio.Event] = None
        self.list_calls = 0
        self.upload_calls: List[str] = []
        self.payloads: Dict[str, str] = {}
        self.delete_calls: List[str] = []
        self._next_id = 0

    def _new_item(self, name: str) -> RemoteItem:
        self._next_id += 1
        item_id = f"file-{self._next_id}"
        prefix = "missing/" if name in self.broken_links else ""
        return RemoteItem(item_id=item_id, name=name, link=f"{IMAGE_HOST}/{prefix}{item_id}.png")

    def seed(self, category: AssetCategory, name: str) -> RemoteItem:
        item = self._new_item(name)
        self.items[category].append(item)
        return item

    async def list(self, category: AssetCategory) -> List[RemoteItem]:
        self.list_calls += 1
        snapshot = list(self.items[category])
        gate = self.list_gates.pop(0) if self.list_gates else None
        if gate is not None:
            await gate.wait()
        if category in self.fail_lists:
            raise StoreError(f"cannot list {category.value}", status_code=500)
        return snapshot

    async def upload(self, category: AssetCategory, name: str, data_uri: str) -> RemoteItem:
        self.upload_calls.append(name)
        if self.upload_gate is not None:
            await self.upload_gate.wait()
        if name in self.fail_uploads or category in self.fail_upload_categories:
            raise StoreError(f"storage quota exceeded for {name}", status_code=403)
        self.payloads[name] = data_uri
        item = self._new_item(name)
        self.items[category].append(item)
        return item

    async def delete(self, item_id: str):
        self.delete_calls.append(item_id)
        if self.delete_gate is not None:
            await self.delete_gate.wait()
        if item_id in self.fail_deletes:
            raise StoreError(f"cannot delete {item_id}", status_code=500)
        for category in list(self.items):
            self.items[category] = [i for i in self.items[category] if i.item_id != item_id]


class FakeGenerator:
    """Generation capability that records every invocation"""

    def __init__(self, result_bytes: bytes):
        self.result = encode_data_uri(result_bytes, "image/png")
        self.recommendations = [
            OutfitRecommendation(description="White tee with beige chinos", image_data_uri=self.result, confidence=0.9),
            OutfitRecommendation(description="Black knit over a white shirt", image_data_uri=self.result, confidence=0.7),
        ]
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def generate_try_on(self, user_photo, garment_images):
        return await self._run(("try_on", user_photo, list(garment_images)))

    async def generate_catalog(self, mannequin_image, product_image, style):
        return await self._run(("catalog", mannequin_image, product_image, style))

    async def recommend_outfits(self, full_body_image, face_image, wardrobe_images, style_preferences):
        await self._run(("recommend", full_body_image, face_image, list(wardrobe_images), style_preferences))
        return list(self.recommendations)

    async def _run(self, call):
        self.calls.append(call)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


class FakeQuotaService:
    """Remote counter service; counts are shared by every session of a user"""

    def __init__(self):
        self.counts: Dict[tuple, int] = defaultdict(int)
        self.fail_reads = False
        self.fail_increments = False
        self.reject_credentials = False
        self.get_calls = 0
        self.increment_calls = 0

    async def get_count(self, user_id, period_key):
        self.get_calls += 1
        if self.reject_credentials:
            raise Unauthenticated("Quota service rejected credentials")
        if self.fail_reads:
            raise StoreError("quota service unavailable", status_code=503)
        return self.counts[(user_id, period_key)]

    async def increment(self, user_id, period_key):
        self.increment_calls += 1
        if self.reject_credentials:
            raise Unauthenticated("Quota service rejected credentials")
        if self.fail_increments:
            raise StoreError("quota service unavailable", status_code=503)
        self.counts[(user_id, period_key)] += 1
        return self.counts[(user_id, period_key)]


@pytest.fixture
def png_bytes():
    return make_png()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def generator():
    return FakeGenerator(make_png(color=(10, 200, 10)))


@pytest.fixture
def quota_service():
    return FakeQuotaService()


@pytest.fixture
def fetched_urls():
    return []


@pytest.fixture
def fetch_client(png_bytes, fetched_urls):
    """HTTP client serving PNGs for image links; links under /missing/ return 404"""

    def handler(request: httpx.Request) -> httpx.Response:
        fetched_urls.append(str(request.url))
        if "/missing/" in request.url.path:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=png_bytes, headers={"content-type": "image/png"})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def settings(tmp_path, monkeypatch):
    for key in HARDCODED_SETTINGS:
        monkeypatch.delenv("TRYON_MCP_" + key.upper(), raising=False)
    return SettingsManager(config_file=tmp_path / "config.json")


@pytest.fixture
def make_session(settings, store, quota_service, generator, fetch_client):
    def factory(user_id="user-1", access_token="token-abc", limit=3):
        settings.set_settings({"daily_generation_limit": limit})
        return UserSession(
            user_id,
            access_token,
            settings,
            store=store,
            quota_client=quota_service,
            generator=generator,
            fetch_client=fetch_client,
        )

    return factory


@pytest.fixture
def upload_file(png_bytes):
    def factory(name="photo.png"):
        return UploadFile(file_name=name, data=png_bytes, mime_type="image/png")

    return factory


@pytest.fixture
def image_factory():
    return make_png
