# image_integrity.py
# Tamper-likelihood scoring for certificate images.
#
# Three sub-checks each return a 0-1 score. The public integrity score is
# their average scaled to 0-100; any sub-score below ISSUE_THRESHOLD adds a
# human-readable issue. Text and pixel checks are fixed stand-ins until a
# forensics backend is wired in; the metadata check reads EXIF via Pillow.

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
import hashlib
import io
import logging

from PIL import Image

from field_matching import round_half_up

logger = logging.getLogger(__name__)

ImageSource = Union[str, Path, bytes]

ISSUE_THRESHOLD = 0.6

TEXT_CONSISTENCY_BASELINE = 0.85
PIXEL_MANIPULATION_BASELINE = 0.9
METADATA_BASELINE = 0.8
METADATA_EDITED_SCORE = 0.4

# EXIF "Software" tag
EXIF_SOFTWARE_TAG = 0x0131

EDITING_SOFTWARE = (
    "photoshop", "gimp", "lightroom", "affinity", "pixlr", "canva",
    "paint.net", "snapseed", "picsart", "fotor",
)


@dataclass
class TamperAnalysis:
    """Raw 0-1 aggregate of the sub-checks."""
    score: float
    issues: List[str] = field(default_factory=list)
    sub_scores: Dict[str, float] = field(default_factory=dict)


@dataclass
class ImageAnalysis:
    integrity_score: int
    metadata_consistent: bool
    compression_artifacts: bool
    pixel_pattern_consistent: bool
    issues: List[str] = field(default_factory=list)
    image_hash: Optional[str] = None
    sub_scores: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "ImageAnalysis":
        return cls(
            integrity_score=0,
            metadata_consistent=False,
            compression_artifacts=True,
            pixel_pattern_consistent=False,
            issues=[f"Image analysis failed: {error}"],
            error=error,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "integrity_score": self.integrity_score,
            "metadata_consistent": self.metadata_consistent,
            "compression_artifacts": self.compression_artifacts,
            "pixel_pattern_consistent": self.pixel_pattern_consistent,
            "issues": list(self.issues),
            "image_hash": self.image_hash,
            "sub_scores": dict(self.sub_scores),
            "error": self.error,
        }

# ==============================================
# SUB-CHECKS
# ==============================================

def check_text_consistency(image: Image.Image) -> float:
    return TEXT_CONSISTENCY_BASELINE


def check_pixel_manipulation(image: Image.Image) -> float:
    return PIXEL_MANIPULATION_BASELINE


def check_image_metadata(image: Image.Image) -> float:
    """Editors stamp the EXIF Software tag; a known editor is suspicious."""
    exif = image.getexif()
    software = str(exif.get(EXIF_SOFTWARE_TAG, "") or "").lower()
    if software and any(name in software for name in EDITING_SOFTWARE):
        return METADATA_EDITED_SCORE
    return METADATA_BASELINE


Check = Tuple[str, Callable[[Image.Image], float], str]

DEFAULT_CHECKS: Tuple[Check, ...] = (
    ("text", check_text_consistency, "Inconsistent text detected"),
    ("pixel", check_pixel_manipulation, "Possible pixel manipulation detected"),
    ("metadata", check_image_metadata, "Image metadata inconsistencies detected"),
)

# ==============================================
# AGGREGATION
# ==============================================

def read_image_bytes(source: ImageSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    return Path(source).read_bytes()


def _run_checks(data: bytes, checks: Sequence[Check]) -> TamperAnalysis:
    with Image.open(io.BytesIO(data)) as image:
        image.load()
        sub_scores = {name: float(fn(image)) for name, fn, _ in checks}
    issues = [msg for name, _, msg in checks if sub_scores[name] < ISSUE_THRESHOLD]
    score = sum(sub_scores.values()) / len(sub_scores) if sub_scores else 0.0
    return TamperAnalysis(score=score, issues=issues, sub_scores=sub_scores)


def analyze_image_for_tampering(source: ImageSource,
                                checks: Sequence[Check] = DEFAULT_CHECKS) -> TamperAnalysis:
    """0-1 tamper analysis; failures come back as score 0 with an issue."""
    try:
        return _run_checks(read_image_bytes(source), checks)
    except Exception as e:
        logger.warning("Image analysis failed: %s", e)
        return TamperAnalysis(score=0.0, issues=[f"Image analysis failed: {e}"])


def analyze_image_integrity(source: ImageSource,
                            checks: Sequence[Check] = DEFAULT_CHECKS) -> ImageAnalysis:
    """Public 0-100 integrity analysis. Never raises."""
    try:
        data = read_image_bytes(source)
        image_hash = hashlib.sha256(data).hexdigest()
        tamper = _run_checks(data, checks)
    except Exception as e:
        logger.warning("Image integrity check failed: %s", e)
        return ImageAnalysis.failed(str(e))

    s = tamper.sub_scores
    return ImageAnalysis(
        integrity_score=max(0, min(100, round_half_up(tamper.score * 100))),
        metadata_consistent=s.get("metadata", 1.0) >= ISSUE_THRESHOLD,
        compression_artifacts=s.get("pixel", 1.0) < ISSUE_THRESHOLD,
        pixel_pattern_consistent=(s.get("pixel", 1.0) >= ISSUE_THRESHOLD
                                  and s.get("text", 1.0) >= ISSUE_THRESHOLD),
        issues=tamper.issues,
        image_hash=image_hash,
        sub_scores=dict(s),
    )
