"""Generation request orchestration: validation, quota gating, generation and persistence"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from errors import (
    AssetNotFound,
    AssetUnavailable,
    FetchFailed,
    GenerationFailed,
    InvalidSelection,
    MissingSelection,
    QuotaExceeded,
    RequestCancelled,
    RequestInProgress,
    TryOnError,
)
from models.generation import (
    DEFAULT_CATALOG_STYLE,
    DEFAULT_STYLE_PREFERENCES,
    GenerationMode,
    GenerationRequest,
    GenerationStatus,
    GenerationWarning,
)

logger = logging.getLogger("TryOn_MCP")


class GenerationOrchestrator:
    """Runs generation requests for one asset library, one at a time.

    Side effects per request: at most one generation call, one quota increment
    and one result upload, and none of them when validation rejects it.
    """

    def __init__(
        self,
        session,
        library,
        quota_tracker,
        generator,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session = session
        self.library = library
        self.quota = quota_tracker
        self.generator = generator
        self._clock = clock
        self._active: Optional[GenerationRequest] = None
        self.last_request: Optional[GenerationRequest] = None
        self.modes = tuple(
            mode for mode in GenerationMode if mode.profile.subject_category in library.group
        )

    @property
    def active(self) -> Optional[GenerationRequest]:
        return self._active

    def status(self) -> Optional[GenerationRequest]:
        return self._active or self.last_request

    def cancel(self) -> Optional[GenerationRequest]:
        """Stop waiting on the active request.

        The external call cannot be stopped; its eventual result is discarded.
        """
        request = self._active
        if request is None:
            return None
        request.cancelled = True
        self._active = None
        logger.info(f"Cancelled generation request {request.request_id} ({request.status.value})")
        return request

    async def submit(
        self,
        mode,
        subject_id: Optional[str],
        target_ids: Optional[Sequence[str]],
        style: Optional[str] = None,
        face_id: Optional[str] = None,
    ) -> GenerationRequest:
        """Validate, admit and run one generation request to a terminal state.

        Returns the succeeded request (check ``warnings`` for non-fatal problems).
        Recommendation requests use ``face_id`` as the close-up photo, falling back
        to the subject photo, and carry their results in ``recommendations``.

        Raises:
            RequestInProgress: Another request from this orchestrator is running
            MissingSelection, Unauthenticated, QuotaExceeded, QuotaUnavailable,
            AssetUnavailable, GenerationFailed, RequestCancelled
        """
        mode = GenerationMode(mode)
        if mode not in self.modes:
            raise ValueError(f"Mode '{mode.value}' is not served by the '{self.library.group.name}' library")
        if self._active is not None:
            raise RequestInProgress(
                f"Generation request {self._active.request_id} is still running; wait for it or cancel it."
            )

        request = GenerationRequest(
            mode=mode,
            subject_id=subject_id,
            target_ids=list(target_ids or []),
            style=style,
            face_id=(face_id or subject_id) if mode is GenerationMode.RECOMMEND else None,
            submitted_at=self._clock(),
        )
        self._active = request
        self.last_request = request
        try:
            user_id, period_key = await self._validate(request)
            return await self._run(request, user_id, period_key)
        except Exception as e:
            if not request.status.is_terminal:
                request.fail(e, self._clock())
            logger.warning(f"Generation request {request.request_id} failed: {e}")
            raise
        finally:
            if self._active is request:
                self._active = None

    async def _validate(self, request: GenerationRequest):
        request.advance(GenerationStatus.VALIDATING, self._clock())
        profile = request.mode.profile

        target_ids: List[str] = []
        for target_id in request.target_ids:
            if target_id and target_id not in target_ids:
                target_ids.append(target_id)
        request.target_ids = target_ids
        if not request.subject_id or not target_ids:
            raise MissingSelection(
                f"Please select a {profile.subject_category.value} and at least one {profile.target_category.value}."
            )
        if profile.max_targets is not None and len(target_ids) > profile.max_targets:
            raise InvalidSelection(
                f"Select at most {profile.max_targets} {profile.target_category.value}(s) for {request.mode.value}."
            )

        user_id = self.session.require_user()

        # Only confirmed records may be submitted
        for category, asset_id in self._references(request):
            try:
                self.library.selectable(category, asset_id)
            except AssetNotFound as e:
                raise AssetUnavailable(category.value, asset_id, "not in your library") from e

        period_key = self.quota.period_key()
        state = await self.quota.refresh(user_id)
        if state.remaining <= 0:
            raise QuotaExceeded(
                f"Daily generation limit reached ({state.count}/{state.limit}). Try again tomorrow."
            )
        self._ensure_not_cancelled(request)
        request.advance(GenerationStatus.ADMITTED, self._clock())
        logger.info(f"Admitted generation request {request.request_id} ({request.mode.value}) for {user_id}")
        return user_id, period_key

    async def _run(self, request: GenerationRequest, user_id: str, period_key: str) -> GenerationRequest:
        payloads = await self._resolve_payloads(request)
        self._ensure_not_cancelled(request)

        request.advance(GenerationStatus.IN_FLIGHT, self._clock())
        result = await self._invoke(request, payloads)

        # Output exists from here on, so the quota is charged even if the result is discarded,
        # unless the session ended and its credentials are gone
        if request.cancelled or not self.session.is_active:
            if self.session.is_active:
                await self._charge_quota(request, user_id, period_key)
            else:
                logger.info(f"Session for {user_id} ended; not charging quota for {request.request_id}")
            logger.info(f"Discarding late result for {request.request_id}")
            raise RequestCancelled("Generation was cancelled; its result was discarded.")

        request.advance(GenerationStatus.PERSISTING, self._clock())
        await self._charge_quota(request, user_id, period_key)
        if request.mode is GenerationMode.RECOMMEND:
            request.recommendations = list(result)
        else:
            request.result_payload = result
            await self._persist(request, result)
        request.advance(GenerationStatus.SUCCEEDED, self._clock())
        logger.info(
            f"Generation request {request.request_id} succeeded"
            + (f" with {len(request.warnings)} warning(s)" if request.warnings else "")
        )
        return request

    def _references(self, request: GenerationRequest):
        profile = request.mode.profile
        refs = [(profile.subject_category, request.subject_id)]
        if request.face_id:
            refs.append((profile.subject_category, request.face_id))
        refs.extend((profile.target_category, target_id) for target_id in request.target_ids)
        return refs

    def _ensure_not_cancelled(self, request: GenerationRequest):
        if request.cancelled:
            raise RequestCancelled("Generation was cancelled before it was submitted.")

    async def _resolve_payloads(self, request: GenerationRequest) -> List[str]:
        """Resolve every referenced asset; any single failure aborts the request"""
        refs = self._references(request)
        results = await asyncio.gather(
            *(self.library.resolve_payload(category, asset_id) for category, asset_id in refs),
            return_exceptions=True,
        )
        payloads = []
        for (category, asset_id), result in zip(refs, results):
            if isinstance(result, (FetchFailed, AssetNotFound)):
                raise AssetUnavailable(category.value, asset_id, result.message) from result
            if isinstance(result, BaseException):
                raise result
            payloads.append(result)
        return payloads

    async def _invoke(self, request: GenerationRequest, payloads: List[str]):
        subject, targets = payloads[0], payloads[1:]
        try:
            if request.mode is GenerationMode.TRY_ON:
                return await self.generator.generate_try_on(subject, targets)
            if request.mode is GenerationMode.RECOMMEND:
                return await self.generator.recommend_outfits(
                    subject, targets[0], targets[1:], request.style or DEFAULT_STYLE_PREFERENCES
                )
            return await self.generator.generate_catalog(
                subject, targets[0], request.style or DEFAULT_CATALOG_STYLE
            )
        except GenerationFailed:
            raise
        except TryOnError as e:
            raise GenerationFailed(f"Generation failed: {e.message}", upstream_message=e.message) from e

    async def _charge_quota(self, request: GenerationRequest, user_id: str, period_key: str):
        try:
            await self.quota.increment(user_id, period_key)
        except TryOnError as e:
            request.warnings.append(GenerationWarning(kind="quota", message=e.message))

    async def _persist(self, request: GenerationRequest, result: str):
        category = request.mode.profile.result_category
        file_name = request.result_file_name()
        try:
            request.result_asset = await self.library.add_payload(category, file_name, result)
        except TryOnError as e:
            logger.warning(f"Could not save {file_name} to {category.value}: {e}")
            request.warnings.append(
                GenerationWarning(kind="persistence", message=f"Result was generated but not saved: {e.message}")
            )
