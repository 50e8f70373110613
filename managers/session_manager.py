"""Session-scoped context: one asset library per group, quota tracker and orchestrators"""

import logging
from typing import Callable, Dict, Optional

import httpx

from drive_client import DriveClient
from errors import Unauthenticated
from generation_client import GenerationClient
from managers.asset_library import AssetLibrary
from managers.generation_orchestrator import GenerationOrchestrator
from managers.quota_tracker import QuotaTracker
from managers.settings_manager import SettingsManager
from models.asset import CATEGORY_GROUPS, AssetCategory, group_for
from models.generation import GenerationMode
from quota_client import QuotaClient

logger = logging.getLogger("TryOn_MCP")


class UserSession:
    """Everything owned by one authenticated user; created on sign-in, torn down on sign-out.

    Collaborators default to the HTTP clients configured in settings and can be
    injected instead (tests use in-memory fakes).
    """

    def __init__(
        self,
        user_id: str,
        access_token: str,
        settings: SettingsManager,
        store=None,
        quota_client=None,
        generator=None,
        fetch_client: Optional[httpx.AsyncClient] = None,
        quota_clock: Optional[Callable] = None,
    ):
        if not user_id or not access_token:
            raise Unauthenticated("A user id and access token are required to sign in.")
        self.user_id = user_id
        self.access_token = access_token
        self._active = True
        self._owned = []
        self.load_errors: Dict[str, Optional[Exception]] = {}

        timeout = settings.get("http_timeout")
        if store is None:
            store = DriveClient(
                access_token,
                api_url=settings.get("drive_api_url"),
                upload_url=settings.get("drive_upload_url"),
                root_folder=settings.get("drive_root_folder"),
                thumbnail_size=settings.get("thumbnail_size"),
                timeout=timeout,
            )
            self._owned.append(store)
        if quota_client is None:
            quota_client = QuotaClient(settings.get("quota_url"), access_token, timeout=timeout)
            self._owned.append(quota_client)
        if generator is None:
            generator = GenerationClient(
                settings.get("generation_url"),
                api_key=settings.get("generation_api_key"),
                timeout=settings.get("generation_timeout"),
            )
            self._owned.append(generator)
        if fetch_client is None:
            fetch_client = httpx.AsyncClient(follow_redirects=True, timeout=timeout)
            self._owned_fetch_client = fetch_client
        else:
            self._owned_fetch_client = None

        self.store = store
        self.generator = generator
        tracker_kwargs = {"clock": quota_clock} if quota_clock else {}
        self.quota = QuotaTracker(
            quota_client,
            limit=settings.get("daily_generation_limit"),
            staleness_seconds=settings.get("quota_staleness_seconds"),
            **tracker_kwargs,
        )
        self.libraries: Dict[str, AssetLibrary] = {
            group.name: AssetLibrary(
                store,
                group,
                fetch_client=fetch_client,
                fetch_timeout=timeout,
                max_upload_dim=settings.get("max_upload_dim"),
            )
            for group in CATEGORY_GROUPS
        }
        self.orchestrators: Dict[str, GenerationOrchestrator] = {
            name: GenerationOrchestrator(self, library, self.quota, generator)
            for name, library in self.libraries.items()
        }

    @property
    def is_active(self) -> bool:
        return self._active

    def require_user(self) -> str:
        if not self._active or not self.access_token:
            raise Unauthenticated()
        return self.user_id

    def library_for(self, category) -> AssetLibrary:
        return self.libraries[group_for(AssetCategory.parse(category)).name]

    def orchestrator_for(self, mode) -> GenerationOrchestrator:
        category = GenerationMode(mode).profile.subject_category
        return self.orchestrators[group_for(category).name]

    async def open(self) -> Dict[str, Optional[Exception]]:
        """Populate every library from the remote store"""
        errors: Dict[str, Optional[Exception]] = {}
        for library in self.libraries.values():
            errors.update(await library.load_all())
        return errors

    async def close(self):
        self._active = False
        for orchestrator in self.orchestrators.values():
            orchestrator.cancel()
        for library in self.libraries.values():
            library.clear()
        self.quota.forget(self.user_id)
        for client in self._owned:
            await client.aclose()
        if self._owned_fetch_client is not None:
            await self._owned_fetch_client.aclose()
        logger.info(f"Closed session for {self.user_id}")


class SessionManager:
    """Holds at most one signed-in session"""

    def __init__(self, settings: SettingsManager, session_factory: Callable[..., UserSession] = UserSession):
        self.settings = settings
        self._session_factory = session_factory
        self._session: Optional[UserSession] = None

    def current(self) -> UserSession:
        if self._session is None or not self._session.is_active:
            raise Unauthenticated()
        return self._session

    @property
    def signed_in(self) -> bool:
        return self._session is not None and self._session.is_active

    async def sign_in(self, user_id: str, access_token: str) -> UserSession:
        if self._session is not None:
            await self.sign_out()
        session = self._session_factory(user_id, access_token, self.settings)
        self._session = session
        logger.info(f"Signed in {user_id}")
        load_errors = await session.open()
        failed = [name for name, error in load_errors.items() if error is not None]
        if failed:
            logger.warning(f"Some categories could not be loaded for {user_id}: {failed}")
        session.load_errors = load_errors
        return session

    async def sign_out(self) -> bool:
        session, self._session = self._session, None
        if session is None:
            return False
        await session.close()
        logger.info(f"Signed out {session.user_id}")
        return True
