"""Asset data models"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class AssetCategory(str, Enum):
    """Named buckets partitioning assets by role"""
    SELF_PHOTO = "self-photo"
    GARMENT = "garment"
    TRY_ON_RESULT = "try-on-result"
    MANNEQUIN = "mannequin"
    PRODUCT = "product"
    CATALOG_RESULT = "catalog-result"

    @classmethod
    def parse(cls, value) -> "AssetCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(c.value for c in cls)
            raise ValueError(f"Unknown category '{value}'. Must be one of: {valid}")


@dataclass(frozen=True)
class CategoryGroup:
    """A set of categories managed by one asset library"""
    name: str
    categories: Tuple[AssetCategory, ...]

    def __contains__(self, category) -> bool:
        return category in self.categories


LIBRARY_GROUP = CategoryGroup(
    name="library",
    categories=(AssetCategory.SELF_PHOTO, AssetCategory.GARMENT, AssetCategory.TRY_ON_RESULT),
)
CATALOG_GROUP = CategoryGroup(
    name="catalog",
    categories=(AssetCategory.MANNEQUIN, AssetCategory.PRODUCT, AssetCategory.CATALOG_RESULT),
)
CATEGORY_GROUPS = (LIBRARY_GROUP, CATALOG_GROUP)


def group_for(category: AssetCategory) -> CategoryGroup:
    for group in CATEGORY_GROUPS:
        if category in group:
            return group
    raise ValueError(f"Category '{category}' belongs to no group")


@dataclass
class AssetRecord:
    """One stored image as seen by the UI"""
    asset_id: str
    display_url: str
    file_name: str
    remote_handle: Optional[str] = None  # None until the remote upload is confirmed
    inline_payload: Optional[str] = None  # data URI, only held transiently
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_pending(self) -> bool:
        return self.remote_handle is None

    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "display_url": self.display_url,
            "file_name": self.file_name,
            "pending": self.is_pending,
        }


@dataclass(frozen=True)
class RemoteItem:
    """An item as reported by the remote asset store"""
    item_id: str
    name: str
    link: str


@dataclass(frozen=True)
class UploadFile:
    """A user-selected file ready to be added to a category"""
    file_name: str
    data: bytes
    mime_type: Optional[str] = None


@dataclass
class UploadReport:
    """Outcome of one add() batch: confirmed records plus per-file errors"""
    added: List[AssetRecord] = field(default_factory=list)
    errors: List[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors
