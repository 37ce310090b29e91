from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .constants import FAMILY_BUILDING, QUEUE_PENDING, SOURCE_SEED


@dataclass
class Family:
    family_id: Optional[int]
    category: str
    brand: str
    family: str
    display_name: str
    min_images_required: int = 15
    status: str = FAMILY_BUILDING
    attributes: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.brand} {self.family}"


@dataclass
class QueueItem:
    item_id: int
    family_id: int
    source_url: str
    status: str = QUEUE_PENDING
    retry_count: int = 0
    error_message: Optional[str] = None
    created_at: Optional[str] = None
    claimed_at: Optional[str] = None
    processed_at: Optional[str] = None


@dataclass
class StoredImage:
    image_id: Optional[int]
    family_id: int
    category: str
    sha256: str
    storage_path: str
    original_url: Optional[str]
    file_size: int
    width: int
    height: int
    content_type: str
    embedding: Optional[List[float]] = None
    source: str = SOURCE_SEED
    quality_score: Optional[float] = None
    created_at: Optional[str] = None


@dataclass
class UnderfilledFamily:
    family_id: int
    brand: str
    family: str
    image_count: int
    required: int


@dataclass
class SeedReport:
    category: Optional[str]
    total_families: int
    total_stored_images: int
    min_images_per_family: int
    max_images_per_family: int
    avg_images_per_family: float
    underfilled_families: List[UnderfilledFamily]
    ready_families: int
    queue_health: Dict[str, int]
    library_ready: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
