"""Generation request and quota models"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from models.asset import AssetCategory, AssetRecord

TRY_ON_STEPS = (
    "Warming up the AI stylist...",
    "Analyzing your photo...",
    "Selecting the perfect fabric textures...",
    "Draping the clothing realistically...",
    "Matching lighting and shadows...",
    "Adding the final touches...",
    "Almost there!",
)
CATALOG_STEPS = (
    "Briefing the AI stylist...",
    "Selecting the best angles...",
    "Setting up virtual lighting...",
    "Composing the shot...",
    "Rendering the final catalog image...",
    "Polishing the final look...",
)
RECOMMEND_STEPS = (
    "Studying your photos...",
    "Looking through your wardrobe...",
    "Matching colors to your complexion...",
    "Putting outfits together...",
    "Rendering outfit previews...",
    "Scoring each look...",
)
DEFAULT_CATALOG_STYLE = (
    "A clean, bright, and professional look for an e-commerce website. "
    "Use a plain light gray background."
)
DEFAULT_STYLE_PREFERENCES = (
    "I like a minimalist, comfortable style. Neutral colors like black, white, and beige are my favorite. "
    "I prefer casual and smart-casual looks."
)


@dataclass(frozen=True)
class ModeProfile:
    subject_category: AssetCategory
    target_category: AssetCategory
    result_category: Optional[AssetCategory]  # None: results are returned, not stored
    max_targets: Optional[int]
    result_prefix: str
    steps: Tuple[str, ...]
    step_seconds: float


class GenerationMode(str, Enum):
    TRY_ON = "try_on"
    CATALOG = "catalog"
    RECOMMEND = "recommend"

    @property
    def profile(self) -> ModeProfile:
        return MODE_PROFILES[self]


MODE_PROFILES = {
    GenerationMode.TRY_ON: ModeProfile(
        subject_category=AssetCategory.SELF_PHOTO,
        target_category=AssetCategory.GARMENT,
        result_category=AssetCategory.TRY_ON_RESULT,
        max_targets=None,
        result_prefix="try-on",
        steps=TRY_ON_STEPS,
        step_seconds=2.0,
    ),
    GenerationMode.CATALOG: ModeProfile(
        subject_category=AssetCategory.MANNEQUIN,
        target_category=AssetCategory.PRODUCT,
        result_category=AssetCategory.CATALOG_RESULT,
        max_targets=1,
        result_prefix="catalog-image",
        steps=CATALOG_STEPS,
        step_seconds=2.5,
    ),
    GenerationMode.RECOMMEND: ModeProfile(
        subject_category=AssetCategory.SELF_PHOTO,
        target_category=AssetCategory.GARMENT,
        result_category=None,
        max_targets=None,
        result_prefix="outfit-recommendation",
        steps=RECOMMEND_STEPS,
        step_seconds=2.0,
    ),
}


class GenerationStatus(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    ADMITTED = "admitted"
    IN_FLIGHT = "in_flight"
    PERSISTING = "persisting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.SUCCEEDED, GenerationStatus.FAILED)


@dataclass(frozen=True)
class GenerationWarning:
    """Non-fatal problem attached to an otherwise successful request"""
    kind: str  # "persistence" | "quota"
    message: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


@dataclass(frozen=True)
class OutfitRecommendation:
    description: str
    image_data_uri: str
    confidence: float  # 0..1

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "image_data_uri": self.image_data_uri,
            "confidence": self.confidence,
        }


@dataclass
class GenerationRequest:
    """One submission and its progress through the state machine"""
    mode: GenerationMode
    subject_id: Optional[str]
    target_ids: List[str]
    style: Optional[str] = None
    face_id: Optional[str] = None  # close-up self-photo, recommendations only
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: GenerationStatus = GenerationStatus.IDLE
    submitted_at: datetime = field(default_factory=datetime.now)
    in_flight_since: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result_payload: Optional[str] = None
    result_asset: Optional[AssetRecord] = None
    error: Optional[Exception] = None
    warnings: List[GenerationWarning] = field(default_factory=list)
    recommendations: List[OutfitRecommendation] = field(default_factory=list)
    cancelled: bool = False

    def advance(self, status: GenerationStatus, now: Optional[datetime] = None):
        if self.status.is_terminal:
            raise RuntimeError(f"Request {self.request_id} is already {self.status.value}")
        self.status = status
        now = now or datetime.now()
        if status is GenerationStatus.IN_FLIGHT:
            self.in_flight_since = now
        elif status.is_terminal:
            self.finished_at = now

    def fail(self, error: Exception, now: Optional[datetime] = None):
        self.error = error
        self.advance(GenerationStatus.FAILED, now)

    def result_file_name(self) -> str:
        stamp = int(self.submitted_at.timestamp() * 1000)
        return f"{self.mode.profile.result_prefix}-{stamp}.png"

    def progress_message(self, now: Optional[datetime] = None) -> Optional[str]:
        """Deterministic progress text derived from time spent in flight"""
        if self.status is not GenerationStatus.IN_FLIGHT or self.in_flight_since is None:
            return None
        profile = self.mode.profile
        elapsed = max(0.0, ((now or datetime.now()) - self.in_flight_since).total_seconds())
        return profile.steps[int(elapsed // profile.step_seconds) % len(profile.steps)]

    def to_dict(self, now: Optional[datetime] = None) -> dict:
        data = {
            "request_id": self.request_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "subject_id": self.subject_id,
            "target_ids": list(self.target_ids),
            "submitted_at": self.submitted_at.isoformat(),
            "progress": self.progress_message(now),
            "warnings": [w.to_dict() for w in self.warnings],
            "cancelled": self.cancelled,
        }
        if self.face_id:
            data["face_id"] = self.face_id
        if self.result_asset:
            data["result_asset"] = self.result_asset.to_dict()
        if self.recommendations:
            data["recommendations"] = [r.to_dict() for r in self.recommendations]
        if self.error is not None:
            data["error"] = str(self.error)
            data["code"] = getattr(self.error, "code", "error")
        return data


@dataclass(frozen=True)
class QuotaState:
    count: int
    limit: int
    period_key: str
    fetched_at: datetime = field(default_factory=datetime.now)

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "limit": self.limit,
            "remaining": self.remaining,
            "period": self.period_key,
        }
