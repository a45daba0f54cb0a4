"""Core data models for the layout-preserving translation pipeline."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple, Any
from enum import Enum


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class BoundingBox:
    """Rectangular region in page space: origin, width and height."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        """X coordinate of the right edge."""
        return self.x + self.width

    @property
    def top(self) -> float:
        """Y coordinate of the far edge (y + height)."""
        return self.y + self.height

    @property
    def area(self) -> float:
        """Area of the box, never negative."""
        return max(0.0, self.width * self.height)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def union(self, other: 'BoundingBox') -> 'BoundingBox':
        """Smallest box containing both boxes."""
        x0 = min(self.x, other.x)
        y0 = min(self.y, other.y)
        x1 = max(self.right, other.right)
        y1 = max(self.top, other.top)
        return BoundingBox(x0, y0, x1 - x0, y1 - y0)

    def intersection_area(self, other: 'BoundingBox') -> float:
        """Area shared by both boxes."""
        w = min(self.right, other.right) - max(self.x, other.x)
        h = min(self.top, other.top) - max(self.y, other.y)
        if w <= 0 or h <= 0:
            return 0.0
        return w * h

    @classmethod
    def from_corners(cls, x0: float, y0: float, x1: float, y1: float) -> 'BoundingBox':
        """Create a BoundingBox from two opposite corners."""
        left, right = min(x0, x1), max(x0, x1)
        low, high = min(y0, y1), max(y0, y1)
        return cls(x=left, y=low, width=right - left, height=high - low)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class StyleInfo:
    """Font styling of a run of text. Color channels are in 0..1."""
    font_name: str
    font_size: float
    color: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    bold: bool = False
    italic: bool = False

    MAX_SIZE_DELTA = 0.8
    MAX_CHANNEL_DELTA = 0.1

    def is_compatible(self, other: 'StyleInfo') -> bool:
        """Check whether text in both styles may be merged into one unit."""
        if self.font_name.lower() != other.font_name.lower():
            return False
        if abs(self.font_size - other.font_size) > self.MAX_SIZE_DELTA:
            return False
        return all(
            abs(a - b) <= self.MAX_CHANNEL_DELTA
            for a, b in zip(self.color, other.color)
        )


@dataclass(frozen=True)
class TextFragment:
    """Smallest positioned run of text produced by raw extraction."""
    text: str
    box: BoundingBox
    style: StyleInfo
    is_invisible: bool = False


@dataclass
class TextBlock:
    """A stable, addressable unit of translatable text on a page."""
    block_id: str
    box: BoundingBox
    original_text: str
    style: StyleInfo
    translated_text: Optional[str] = None

    def __post_init__(self):
        if self.translated_text is None:
            self.translated_text = self.original_text

    @property
    def is_translated(self) -> bool:
        return self.translated_text != self.original_text


@dataclass(frozen=True)
class ImageBlock:
    """An image placed on a page."""
    block_id: str
    box: BoundingBox
    image_bytes: bytes
    mime_type: str = "application/octet-stream"
    is_ocr_candidate: bool = False


@dataclass
class PageObject:
    """Layout model of one page: text and image blocks in page coordinates."""
    page_number: int
    width: float
    height: float
    source_page_width: float
    source_page_height: float
    rotation: int = 0
    source_page_pdf_bytes: bytes = b""
    text_blocks: List[TextBlock] = field(default_factory=list)
    image_blocks: List[ImageBlock] = field(default_factory=list)

    def subset(self, blocks: List[TextBlock]) -> 'PageObject':
        """Reduced copy of this page holding only the given text blocks."""
        return replace(self, text_blocks=list(blocks), image_blocks=[])


@dataclass
class TranslatedTextItem:
    """Translation of a single block, as exchanged with providers and checkpoints."""
    block_id: str
    original_text: str
    translated_text: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "block_id": self.block_id,
            "original_text": self.original_text,
            "translated_text": self.translated_text,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TranslatedTextItem':
        return cls(
            block_id=str(data.get("block_id") or ""),
            original_text=str(data.get("original_text") or ""),
            translated_text=str(data.get("translated_text") or ""),
        )


class PageStatus(Enum):
    """Translation state of a page within a run."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class PageCheckpoint:
    """Durable record of the translated items of one page."""
    page_number: int
    page_fingerprint: str
    items: List[TranslatedTextItem] = field(default_factory=list)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page_number": self.page_number,
            "page_fingerprint": self.page_fingerprint,
            "items": [item.to_dict() for item in self.items],
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PageCheckpoint':
        return cls(
            page_number=int(data["page_number"]),
            page_fingerprint=str(data.get("page_fingerprint", "")),
            items=[TranslatedTextItem.from_dict(i) for i in data.get("items", [])],
            updated_at=str(data.get("updated_at", "")),
        )


@dataclass
class PageManifestItem:
    """Per-page status entry of a run manifest."""
    status: PageStatus = PageStatus.PENDING
    page_fingerprint: str = ""
    error: Optional[str] = None
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "page_fingerprint": self.page_fingerprint,
            "error": self.error,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PageManifestItem':
        return cls(
            status=PageStatus(data.get("status", PageStatus.PENDING.value)),
            page_fingerprint=str(data.get("page_fingerprint", "")),
            error=data.get("error"),
            updated_at=str(data.get("updated_at", "")),
        )


@dataclass
class RunManifest:
    """Run identity plus the status of every page touched by the run."""
    run_hash: str = ""
    source_path: str = ""
    target_language: str = ""
    provider: str = ""
    updated_at: str = field(default_factory=utc_now)
    pages: Dict[int, PageManifestItem] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_hash": self.run_hash,
            "source_path": self.source_path,
            "target_language": self.target_language,
            "provider": self.provider,
            "updated_at": self.updated_at,
            # JSON object keys are strings
            "pages": {str(k): v.to_dict() for k, v in sorted(self.pages.items())},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunManifest':
        return cls(
            run_hash=str(data.get("run_hash", "")),
            source_path=str(data.get("source_path", "")),
            target_language=str(data.get("target_language", "")),
            provider=str(data.get("provider", "")),
            updated_at=str(data.get("updated_at", "")),
            pages={
                int(k): PageManifestItem.from_dict(v)
                for k, v in (data.get("pages") or {}).items()
            },
        )


@dataclass(frozen=True)
class TranslationChunk:
    """A slice of flat document text translated as one request."""
    index: int
    text: str


class ChunkStatus(Enum):
    """Translation state of a flat-text chunk."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    QUARANTINED = "quarantined"


@dataclass
class ChunkResult:
    """Outcome of translating a single chunk."""
    index: int
    status: ChunkStatus
    output: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0


@dataclass
class LanguageDetectionResult:
    """Result of language detection."""
    primary_language: str
    confidence: float
    secondary_languages: List[Tuple[str, float]] = field(default_factory=list)
    sample_size: int = 0
