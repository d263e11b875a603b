"""
File-level authenticity check used when a certificate is uploaded.

Combines a tamper score for the file with a metadata consistency score.
The check is fail-open: any unexpected error yields a DEGRADED result with
a moderate score and issuer_verified=True, so a bug in this path never
blocks a certificate submission. Callers can tell the two apart via
`status`.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, List, Literal, Mapping, Optional, Tuple, Union
import logging

from field_matching import CertificateClaim, contains, normalize_for_match, parse_claimed_date
from image_integrity import analyze_image_for_tampering
from text_extraction import LoadedFile, TextExtractionError, extract_text_from_bytes, load_source

logger = logging.getLogger(__name__)

MANIPULATION_WEIGHT = 0.7
CONSISTENCY_WEIGHT = 0.3

PDF_MANIPULATION_SCORE = 0.8
PDF_CONSISTENCY_SCORE = 0.7
OTHER_FILE_SCORE = 0.7

EDITS_DETECTED_BELOW = 0.6
ISSUER_VERIFIED_ABOVE = 0.7

# fail-open defaults
DEGRADED_SCORE = 0.7

CONSISTENCY_PENALTIES = {
    "title": (0.3, "Certificate title not found in document"),
    "issuer": (0.3, "Issuing organization not found in document"),
    "issue_date": (0.2, "Issue date not found in document"),
    "credential_id": (0.2, "Credential ID not found in document"),
}


@dataclass
class AIVerificationResult:
    score: float
    edits_detected: bool
    issuer_verified: bool
    issues: List[str] = field(default_factory=list)
    text_extracted: str = ""
    status: Literal["computed", "degraded"] = "computed"
    error: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.status == "degraded"

    def to_dict(self):
        return asdict(self)


def consistency_date_candidates(value) -> List[str]:
    d = parse_claimed_date(value)
    if d is None:
        raw = str(value).strip() if value is not None else ""
        return [raw] if raw else []
    return [
        d.isoformat(),
        f"{d.month:02d}/{d.day:02d}/{d.year}",
        f"{d.month}/{d.day}/{d.year}",
        f"{d.day:02d}/{d.month:02d}/{d.year}",
        str(d.year),
    ]


def verify_metadata_consistency(extracted_text: str, claim: CertificateClaim) -> Tuple[float, List[str]]:
    """Start at 1.0 and subtract a fixed penalty per claimed field missing from the text."""
    text_norm = normalize_for_match(extracted_text)
    score = 1.0
    issues = []
    for field_name, (penalty, message) in CONSISTENCY_PENALTIES.items():
        if not claim.is_claimed(field_name):
            continue
        if field_name == "issue_date":
            found = any(contains(text_norm, c) for c in consistency_date_candidates(claim.issue_date))
        else:
            found = contains(text_norm, claim.as_text(field_name))
        if not found:
            issues.append(message)
            score -= penalty
    return max(0.0, round(score, 2)), issues


def calculate_verification_score(manipulation_score: float, consistency_score: float) -> float:
    weighted = manipulation_score * MANIPULATION_WEIGHT + consistency_score * CONSISTENCY_WEIGHT
    return round(weighted, 2)


def _ocr_or_empty(loaded: LoadedFile) -> str:
    try:
        return extract_text_from_bytes(loaded) or ""
    except TextExtractionError as e:
        logger.warning("OCR extraction error: %s", e)
        return ""


def verify_with_ai(file_url: str,
                   metadata: Union[CertificateClaim, Mapping[str, Any], None] = None,
                   loader: Optional[Callable[[str], LoadedFile]] = None) -> AIVerificationResult:
    try:
        logger.info("Starting AI verification for file: %s", file_url[:80])
        claim = metadata if isinstance(metadata, CertificateClaim) \
            else CertificateClaim.from_mapping(metadata)
        has_metadata = bool(claim.claimed_fields())

        loaded = (loader or load_source)(file_url)
        issues: List[str] = []
        consistency_score = 0.0

        if loaded.is_pdf:
            manipulation_score = PDF_MANIPULATION_SCORE
            consistency_score = PDF_CONSISTENCY_SCORE
            extracted_text = _ocr_or_empty(loaded)
        elif loaded.is_image:
            extracted_text = _ocr_or_empty(loaded)
            tamper = analyze_image_for_tampering(loaded.data)
            manipulation_score = tamper.score
            issues.extend(tamper.issues)
        else:
            manipulation_score = OTHER_FILE_SCORE
            consistency_score = OTHER_FILE_SCORE
            extracted_text = ""

        if has_metadata and extracted_text:
            consistency_score, consistency_issues = verify_metadata_consistency(extracted_text, claim)
            issues.extend(consistency_issues)

        return AIVerificationResult(
            score=calculate_verification_score(manipulation_score, consistency_score),
            edits_detected=manipulation_score < EDITS_DETECTED_BELOW,
            issuer_verified=consistency_score > ISSUER_VERIFIED_ABOVE,
            issues=issues,
            text_extracted=extracted_text,
        )
    except Exception as e:
        logger.error("Error in AI verification, returning fail-open result: %s", e, exc_info=True)
        return AIVerificationResult(
            score=DEGRADED_SCORE,
            edits_detected=False,
            issuer_verified=True,
            issues=[f"Verification process encountered an error: {e}"],
            text_extracted="",
            status="degraded",
            error=str(e),
        )
