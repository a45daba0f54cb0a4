"""
Geometry and merging heuristics used by the layout extractor.

Everything here is a pure function of fragments, boxes and the layout
configuration, so the extractor can stay a thin PyMuPDF adapter.
"""

import hashlib
import math
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from models.config import LayoutConfig
from models.data_models import BoundingBox, StyleInfo, TextBlock, TextFragment
from utils.text_utils import clean_pdf_artifacts


EDGE_PAD = 2.0
SIGNATURE_STEP = 1.25
NOISE_PUNCTUATION = frozenset("-_.:,;'`" + "".join(map(chr, (0x2013, 0x2014, 0x00B7))))

DUPLICATE_MIN_OVERLAP = 0.72
DUPLICATE_MAX_OFFSET = 4.0

DECORATIVE_MIN_STREAM_BYTES = 96
DECORATIVE_MAX_ASPECT = 40.0
OCR_MIN_STREAM_BYTES = 1200
OCR_MIN_COVERAGE = 0.01
OCR_MAX_COVERAGE = 0.70
OCR_MAX_ASPECT = 8.0
OCR_MIN_CHARS = 20
OCR_MIN_LETTER_RATIO = 0.25
OCR_MAX_CANDIDATES_PER_PAGE = 3

BACKGROUND_ASPECT_TOLERANCE = 0.08
BACKGROUND_SPARSE_TEXT_COVERAGE = 0.82

LAYER_VISIBLE = "visible"
LAYER_INVISIBLE = "invisible"

_WEAK_OCR_TEXT = re.compile(r"^[\W_\d\s]+$")


# ---------------------------------------------------------------------------
# Coordinate normalization
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransformCandidate:
    """A raw box clipped to the visible page, in bottom-up PDF space."""
    left: float
    bottom: float
    width: float
    height: float
    coverage: float

    @property
    def top(self) -> float:
        return self.bottom + self.height


def build_candidate(
    left: float,
    bottom: float,
    width: float,
    height: float,
    page_width: float,
    page_height: float,
) -> Optional[TransformCandidate]:
    """
    Clip a box to the page and record how much of it survived.

    Returns:
        The clipped candidate, or None when nothing of the box is on the page
    """
    if width <= 0 or height <= 0:
        return None

    clipped_left = max(0.0, left)
    clipped_bottom = max(0.0, bottom)
    clipped_right = min(page_width, left + width)
    clipped_top = min(page_height, bottom + height)

    if clipped_right <= clipped_left or clipped_top <= clipped_bottom:
        return None

    clipped_width = clipped_right - clipped_left
    clipped_height = clipped_top - clipped_bottom
    coverage = (clipped_width * clipped_height) / (width * height)

    return TransformCandidate(clipped_left, clipped_bottom, clipped_width, clipped_height, coverage)


def score_candidate(candidate: TransformCandidate, page_width: float, page_height: float) -> float:
    """Coverage-based score, penalized for boxes hugging the page frame."""
    penalty = 0.0
    if candidate.left <= EDGE_PAD:
        penalty += 25.0
    if candidate.bottom <= EDGE_PAD:
        penalty += 20.0
    if page_width - (candidate.left + candidate.width) <= EDGE_PAD:
        penalty += 25.0
    if page_height - candidate.top <= EDGE_PAD:
        penalty += 20.0
    return candidate.coverage * 1000.0 - penalty


def choose_candidate(
    shifted: Optional[TransformCandidate],
    direct: Optional[TransformCandidate],
    page_width: float,
    page_height: float,
    has_crop_offset: bool,
) -> Optional[TransformCandidate]:
    """
    Pick between the crop-shifted and the unshifted interpretation of a box.

    Priority: higher score, then higher coverage, then the shifted
    candidate on pages with a crop offset, otherwise the direct one.
    """
    if shifted is None:
        return direct
    if direct is None:
        return shifted

    shifted_score = score_candidate(shifted, page_width, page_height)
    direct_score = score_candidate(direct, page_width, page_height)
    if abs(shifted_score - direct_score) > 0.01:
        return shifted if shifted_score > direct_score else direct

    coverage_delta = shifted.coverage - direct.coverage
    if abs(coverage_delta) > 0.0001:
        return shifted if coverage_delta > 0 else direct

    return shifted if has_crop_offset else direct


def to_layout_box(
    raw_box: BoundingBox,
    crop_x: float,
    crop_y: float,
    page_width: float,
    page_height: float,
) -> Optional[BoundingBox]:
    """
    Map a raw PDF user-space box into the page's top-down layout space.

    Args:
        raw_box: Box in bottom-up PDF user space
        crop_x: X of the visible region's origin in user space
        crop_y: Y of the visible region's origin in user space
        page_width: Width of the visible region
        page_height: Height of the visible region

    Returns:
        Box whose y is measured from the top of the visible region, or None
    """
    if page_width <= 0 or page_height <= 0:
        return None

    shifted = build_candidate(
        raw_box.x - crop_x, raw_box.y - crop_y, raw_box.width, raw_box.height,
        page_width, page_height,
    )
    direct = build_candidate(
        raw_box.x, raw_box.y, raw_box.width, raw_box.height,
        page_width, page_height,
    )
    has_offset = abs(crop_x) > 0.001 or abs(crop_y) > 0.001

    chosen = choose_candidate(shifted, direct, page_width, page_height, has_offset)
    if chosen is None:
        return None

    return BoundingBox(chosen.left, page_height - chosen.top, chosen.width, chosen.height)


# ---------------------------------------------------------------------------
# Fragment filtering
# ---------------------------------------------------------------------------

def is_likely_noise(text: str, box: BoundingBox, style: StyleInfo) -> bool:
    """Detect tiny punctuation-only runs such as dot leaders and stray dashes."""
    trimmed = text.strip()
    if not trimmed or len(trimmed) > 6:
        return False
    if not all(ch in NOISE_PUNCTUATION for ch in trimmed):
        return False

    size = style.font_size
    if len(trimmed) <= 2:
        return box.width <= max(8.0, size * 1.1) and box.height <= max(8.0, size * 1.2)
    return box.width <= max(14.0, size * 2.2) and box.height <= max(8.0, size * 1.35)


def _quantize(value: float, step: float = SIGNATURE_STEP) -> float:
    return round(value / step) * step


def text_signature(text: str, box: BoundingBox) -> str:
    """Key identifying the same text drawn at (almost) the same place."""
    return "{}|{:.2f}|{:.2f}|{:.2f}|{:.2f}".format(
        text,
        _quantize(box.x),
        _quantize(box.y),
        _quantize(box.width),
        _quantize(box.height),
    )


def should_replace(current: TextFragment, candidate: TextFragment) -> bool:
    if current.is_invisible and not candidate.is_invisible:
        return True
    if not current.is_invisible and candidate.is_invisible:
        return False
    if candidate.box.area > current.box.area + 0.5:
        return True
    return candidate.style.font_size > current.style.font_size + 0.2


def add_or_replace_fragment(target: Dict[str, TextFragment], fragment: TextFragment) -> None:
    """Insert a fragment into a signature map, keeping the better duplicate."""
    signature = text_signature(fragment.text, fragment.box)
    existing = target.get(signature)
    if existing is None or should_replace(existing, fragment):
        target[signature] = fragment


# ---------------------------------------------------------------------------
# Layer arbitration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LayerStats:
    """Character and fragment counts of one text layer."""
    fragments: int = 0
    chars: int = 0

    @property
    def avg_chars(self) -> float:
        if self.fragments <= 0 or self.chars <= 0:
            return 0.0
        return self.chars / self.fragments

    @classmethod
    def from_fragments(cls, fragments: List[TextFragment]) -> 'LayerStats':
        chars = sum(len(clean_pdf_artifacts(f.text)) for f in fragments)
        return cls(fragments=len(fragments), chars=chars)


def choose_text_layer(visible: LayerStats, invisible: LayerStats, config: LayoutConfig) -> str:
    """
    Decide whether the visible or the invisible text layer drives the page.

    Args:
        visible: Stats of the rendered text layer
        invisible: Stats of the invisible (render mode 3) layer
        config: Thresholds for the decision

    Returns:
        LAYER_VISIBLE or LAYER_INVISIBLE
    """
    if visible.fragments == 0:
        return LAYER_INVISIBLE if config.include_invisible_text_layer else LAYER_VISIBLE
    if not config.include_invisible_text_layer or invisible.fragments == 0:
        return LAYER_VISIBLE

    vis_chars, inv_chars = visible.chars, invisible.chars
    vis_frags, inv_frags = visible.fragments, invisible.fragments

    strong = vis_chars >= config.min_visible_text_chars or (
        vis_frags >= config.min_visible_fragments
        and visible.avg_chars >= config.min_chars_per_fragment
    )
    degenerate = visible.avg_chars < max(1.1, config.min_chars_per_fragment * 0.72)
    dominates = (
        inv_chars >= max(math.ceil(vis_chars * 2.8), vis_chars + 220)
        and inv_frags >= max(24, vis_frags * 2)
    )

    if strong and degenerate and dominates:
        return LAYER_INVISIBLE
    if strong:
        return LAYER_VISIBLE

    if config.use_invisible_text_as_fallback_only:
        better_by_volume = (
            inv_chars >= max(math.ceil(vis_chars * 1.35), vis_chars + 80)
            and inv_frags >= max(12, vis_frags + 20)
        )
        sparse = vis_chars <= max(config.min_visible_text_chars // 2, vis_frags + 10) and degenerate
        better_when_sparse = (
            sparse
            and inv_chars > vis_chars + 40
            and invisible.avg_chars >= visible.avg_chars
        )
        return LAYER_INVISIBLE if better_by_volume or better_when_sparse else LAYER_VISIBLE

    return LAYER_INVISIBLE if inv_chars > vis_chars else LAYER_VISIBLE


# ---------------------------------------------------------------------------
# Line and paragraph merging
# ---------------------------------------------------------------------------

@dataclass
class MergedLine:
    """Text accumulated from fragments that read as one line (or paragraph)."""
    box: BoundingBox
    text: str
    style: StyleInfo
    contains_invisible: bool = False

    @classmethod
    def from_fragment(cls, fragment: TextFragment) -> 'MergedLine':
        return cls(fragment.box, fragment.text, fragment.style, fragment.is_invisible)

    def append(self, box: BoundingBox, text: str, invisible: bool) -> None:
        self.text = f"{self.text} {text}" if needs_space(self.text, text) else self.text + text
        self.box = self.box.union(box)
        self.contains_invisible = self.contains_invisible or invisible


def _is_punctuation(ch: str) -> bool:
    return unicodedata.category(ch).startswith("P")


def needs_space(left: str, right: str) -> bool:
    """Whether joining two pieces of text needs a synthetic space."""
    if not left or not right:
        return False

    last, first = left[-1], right[0]
    if last.isspace() or first.isspace():
        return False
    if _is_punctuation(last):
        return True
    return last.isalnum() and first.isalnum()


def _mid_y(box: BoundingBox) -> float:
    return box.y + box.height / 2.0


def can_merge(line: MergedLine, fragment: TextFragment) -> bool:
    """Check whether a fragment continues the current line."""
    relaxed = line.contains_invisible or fragment.is_invisible
    if not relaxed and not line.style.is_compatible(fragment.style):
        return False

    size = line.style.font_size
    max_y_delta = max(4.0, size * 0.9) if relaxed else max(2.0, size * 0.45)
    if abs(_mid_y(line.box) - _mid_y(fragment.box)) > max_y_delta:
        return False

    gap = fragment.box.x - line.box.right
    max_gap = max(64.0, size * 7.0) if relaxed else max(26.0, size * 2.2)
    return gap <= max_gap


def can_join_paragraph(current: MergedLine, line: MergedLine) -> bool:
    """Check whether a line continues the paragraph above it."""
    relaxed = current.contains_invisible or line.contains_invisible
    if not relaxed and not current.style.is_compatible(line.style):
        return False

    size = current.style.font_size
    vertical_gap = line.box.y - current.box.top
    if vertical_gap < -2.0:
        return False

    max_gap = max(22.0, size * 2.4) if relaxed else max(12.0, size * 1.6)
    if vertical_gap > max_gap:
        return False

    max_start_delta = max(80.0, size * 6.0) if relaxed else max(24.0, size * 2.0)
    return abs(current.box.x - line.box.x) <= max_start_delta


def merge_fragments_into_lines(fragments: List[TextFragment]) -> List[MergedLine]:
    """Merge fragments, read in (y, x) order, into lines."""
    ordered = sorted(fragments, key=lambda f: (f.box.y, f.box.x))

    lines: List[MergedLine] = []
    current: Optional[MergedLine] = None

    for fragment in ordered:
        if current is not None and can_merge(current, fragment):
            current.append(fragment.box, fragment.text, fragment.is_invisible)
            continue
        if current is not None:
            lines.append(current)
        current = MergedLine.from_fragment(fragment)

    if current is not None:
        lines.append(current)

    return lines


def merge_lines_into_paragraphs(lines: List[MergedLine]) -> List[MergedLine]:
    """Fold consecutive compatible lines into paragraphs."""
    paragraphs: List[MergedLine] = []
    current: Optional[MergedLine] = None

    for line in lines:
        if current is not None and can_join_paragraph(current, line):
            current.append(line.box, line.text, line.contains_invisible)
            continue
        if current is not None:
            paragraphs.append(current)
        current = MergedLine(line.box, line.text, line.style, line.contains_invisible)

    if current is not None:
        paragraphs.append(current)

    return paragraphs


def text_block_id(page_number: int, index: int) -> str:
    return f"p{page_number:04d}_txt{index:05d}"


def image_block_id(page_number: int, index: int) -> str:
    return f"p{page_number:04d}_img{index:05d}"


def build_text_blocks(
    page_number: int,
    fragments: List[TextFragment],
    merge_paragraphs: bool = False,
) -> Tuple[List[TextBlock], int]:
    """
    Turn the chosen layer's fragments into identified text blocks.

    Every merged unit consumes an index, including units that clean up
    to nothing, so ids only depend on extraction order.

    Args:
        page_number: 1-based page number
        fragments: Fragments of the chosen layer
        merge_paragraphs: Also fold lines into paragraphs

    Returns:
        Tuple of (blocks ordered by (y, x), last index consumed)
    """
    units = merge_fragments_into_lines(fragments)
    if merge_paragraphs:
        units = merge_lines_into_paragraphs(units)

    blocks: List[TextBlock] = []
    index = 0
    for unit in units:
        index += 1
        cleaned = clean_pdf_artifacts(unit.text)
        if not cleaned:
            continue
        blocks.append(TextBlock(
            block_id=text_block_id(page_number, index),
            box=unit.box,
            original_text=cleaned,
            style=unit.style,
        ))

    blocks = deduplicate_overlapping_blocks(blocks)
    blocks.sort(key=lambda b: (b.box.y, b.box.x))
    return blocks, index


# ---------------------------------------------------------------------------
# Block deduplication
# ---------------------------------------------------------------------------

def is_near_duplicate_bounds(a: BoundingBox, b: BoundingBox) -> bool:
    overlap = a.intersection_area(b)
    if overlap <= 0:
        return False

    smaller = max(1.0, min(a.area, b.area))
    if overlap / smaller < DUPLICATE_MIN_OVERLAP:
        return False

    return abs(a.x - b.x) <= DUPLICATE_MAX_OFFSET and abs(a.y - b.y) <= DUPLICATE_MAX_OFFSET


def deduplicate_overlapping_blocks(blocks: List[TextBlock]) -> List[TextBlock]:
    """Drop blocks repeating the same text over (nearly) the same area."""
    if len(blocks) <= 1:
        return blocks

    kept: List[TextBlock] = []
    for candidate in blocks:
        duplicate_index = next(
            (
                i for i, existing in enumerate(kept)
                if existing.original_text == candidate.original_text
                and is_near_duplicate_bounds(existing.box, candidate.box)
            ),
            None,
        )
        if duplicate_index is None:
            kept.append(candidate)
        elif candidate.box.area > kept[duplicate_index].box.area + 1.0:
            kept[duplicate_index] = candidate

    return kept


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------

@dataclass
class ImagePlacement:
    """An image drawn on the page, before it becomes an ImageBlock."""
    box: BoundingBox
    image_bytes: bytes
    mime_type: str
    is_decorative: bool = False
    is_ocr_candidate: bool = False
    digest: str = field(default="")

    def __post_init__(self):
        if not self.digest:
            self.digest = hashlib.sha256(self.image_bytes).hexdigest()


def _aspect(box: BoundingBox) -> float:
    w = max(1.0, box.width)
    h = max(1.0, box.height)
    return w / h if w > h else h / w


def is_decorative_image(box: BoundingBox, stream_length: int) -> bool:
    """Tiny placeholder streams and hairline rules are decoration, not content."""
    if 0 < stream_length < DECORATIVE_MIN_STREAM_BYTES:
        return True
    return _aspect(box) > DECORATIVE_MAX_ASPECT


def is_ocr_candidate(box: BoundingBox, stream_length: int, page_width: float, page_height: float) -> bool:
    """Whether an image looks like rendered text worth running OCR on."""
    if stream_length < OCR_MIN_STREAM_BYTES:
        return False

    coverage = max(1.0, box.area) / max(1.0, page_width * page_height)
    if coverage < OCR_MIN_COVERAGE or coverage > OCR_MAX_COVERAGE:
        return False

    if _aspect(box) > OCR_MAX_ASPECT:
        return False

    # skip header and footer bands
    center = (box.y + max(1.0, box.height) / 2.0) / max(1.0, page_height)
    return 0.05 <= center <= 0.95


def overlaps_or_near(a: BoundingBox, b: BoundingBox, threshold: float) -> bool:
    sep_x = max(0.0, max(a.x - b.right, b.x - a.right))
    sep_y = max(0.0, max(a.y - b.top, b.y - a.top))
    return sep_x <= threshold and sep_y <= threshold


def merge_image_placements(placements: List[ImagePlacement], config: LayoutConfig) -> List[ImagePlacement]:
    """
    Collapse repeated and overlaid placements into single images.

    A placement whose content was already seen on the page is dropped.
    A placement overlapping or within overlay_merge_distance of a kept
    one is folded into it: the box becomes the union, the larger stream
    wins, and the classification flags are combined.
    """
    if not config.deduplicate_images:
        return list(placements)

    merged: List[ImagePlacement] = []
    seen_digests = set()

    for placement in placements:
        if placement.digest in seen_digests:
            continue

        target = next(
            (m for m in merged if overlaps_or_near(m.box, placement.box, config.overlay_merge_distance)),
            None,
        )
        seen_digests.add(placement.digest)

        if target is None:
            merged.append(placement)
            continue

        target.box = target.box.union(placement.box)
        if len(placement.image_bytes) > len(target.image_bytes):
            target.image_bytes = placement.image_bytes
            target.mime_type = placement.mime_type
        target.is_decorative = target.is_decorative and placement.is_decorative
        target.is_ocr_candidate = target.is_ocr_candidate or placement.is_ocr_candidate

    return merged


def is_background_image(
    box: BoundingBox,
    page_width: float,
    page_height: float,
    has_enough_text: bool,
    has_any_text: bool,
    config: LayoutConfig,
) -> bool:
    """Classify a full-page scan or page-frame artwork on a text page."""
    page_area = max(1.0, page_width * page_height)
    coverage = box.area / page_area

    tolerance = config.background_edge_tolerance
    near_full_width = box.x <= tolerance and (page_width - box.right) <= tolerance
    near_full_height = box.y <= tolerance and (page_height - box.top) <= tolerance
    near_frame = near_full_width and near_full_height

    page_aspect = page_width / page_height if page_height > 0 else 1.0
    image_aspect = box.width / box.height if box.height > 0 else 1.0
    aspect_close = abs(image_aspect - page_aspect) <= BACKGROUND_ASPECT_TOLERANCE

    if has_any_text and config.max_kept_image_coverage_on_text_pages > 0 \
            and coverage >= config.max_kept_image_coverage_on_text_pages:
        return True

    if has_enough_text and coverage >= config.background_min_page_coverage and (aspect_close or near_frame):
        return True

    # thin OCR text layer over a page scan
    return (
        not has_enough_text
        and has_any_text
        and coverage >= BACKGROUND_SPARSE_TEXT_COVERAGE
        and (aspect_close or near_frame)
    )


def filter_background_images(
    images: List[ImagePlacement],
    text_blocks: List[TextBlock],
    fragment_count: int,
    page_width: float,
    page_height: float,
    config: LayoutConfig,
) -> Tuple[List[ImagePlacement], int]:
    """
    Remove background images from text-bearing pages.

    Returns:
        Tuple of (kept images, number dropped)
    """
    if not config.suppress_background_images or not images:
        return list(images), 0

    block_count = len(text_blocks)
    char_count = sum(len(clean_pdf_artifacts(b.original_text)) for b in text_blocks)
    has_enough_text = (
        fragment_count >= config.background_min_text_blocks
        or block_count >= config.background_min_text_blocks
        or char_count >= config.background_min_text_chars
    )
    has_any_text = fragment_count > 0 or block_count > 0 or char_count > 0

    kept = [
        image for image in images
        if not is_background_image(image.box, page_width, page_height, has_enough_text, has_any_text, config)
    ]
    return kept, len(images) - len(kept)


def select_ocr_candidates(images: List[ImagePlacement]) -> List[ImagePlacement]:
    """Largest OCR candidates first, capped per page."""
    candidates = [i for i in images if i.is_ocr_candidate and not i.is_decorative]
    candidates.sort(key=lambda i: i.box.area, reverse=True)
    return candidates[:OCR_MAX_CANDIDATES_PER_PAGE]


def looks_useful_ocr_text(text: Optional[str]) -> bool:
    """Reject OCR output that is short or mostly digits and symbols."""
    if not text or not text.strip():
        return False

    normalized = text.strip()
    if len(normalized) < OCR_MIN_CHARS:
        return False
    if _WEAK_OCR_TEXT.match(normalized):
        return False

    letters = sum(1 for ch in normalized if ch.isalpha())
    return letters / len(normalized) >= OCR_MIN_LETTER_RATIO
