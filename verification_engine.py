from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Union
import logging

from field_matching import (
    CertificateClaim,
    TextMatch,
    canonicalize,
    match_text,
    round_half_up,
    sha256_hex,
    NAME_MATCH_THRESHOLD,
)
from image_integrity import ImageAnalysis, analyze_image_integrity
from text_extraction import TextExtractionError, load_source

logger = logging.getLogger(__name__)

Decision = Literal["verified", "rejected", "needs_review"]

# =========================
# ===== VERSION STAMP =====
# =========================

VERSIONS = {
    "core": "certguard_core_v1.2",
    "matcher": "field_match_v1.1_ci",
    "weights": "T20_I25_D15_C30_U20-15_N15-10",
    "blend": "W_0.7_0.3",
    "thresholds": "basic_85_40|escalated_75_40|issuer_75_40",
}


def version_block() -> Dict[str, str]:
    return dict(VERSIONS)


@dataclass(frozen=True)
class Thresholds:
    """Score cut-offs for one decision stage (inclusive on both ends)."""
    verified: int
    rejected: int

    def classify(self, score: float) -> Decision:
        if score >= self.verified:
            return "verified"
        if score <= self.rejected:
            return "rejected"
        return "needs_review"


BASIC_THRESHOLDS = Thresholds(verified=85, rejected=40)
ESCALATION_THRESHOLDS = Thresholds(verified=75, rejected=40)
ISSUER_ADJUSTED_THRESHOLDS = Thresholds(verified=75, rejected=40)

TEXT_WEIGHT = 0.7
IMAGE_WEIGHT = 0.3
TAMPER_WARNING_BELOW = 70

MISSING_FIELD_REASONS = {
    "title": "Certificate title not found in document",
    "issuer": "Issuer name not found in document",
    "issue_date": "Issue date not found in expected format",
    "credential_id": "Credential ID not found in document",
    "credential_url": "Credential URL or domain not found in document",
}

FALLBACK_REASONS = {
    "verified": "All certificate data successfully verified",
    "rejected": "Multiple verification checks failed",
    "needs_review": "Some verification checks passed, others failed or were inconclusive",
}


@dataclass
class VerificationOutcome:
    """Result of one certificate verification, ready to persist."""
    text_match_score: int
    image_integrity_score: Optional[int]
    confidence_score: int
    ai_decision: Decision
    reasoning: List[str]
    red_flags: List[str]
    verification_details: Dict[str, Any]
    verification_date: datetime
    enhanced_verification: bool = False
    gpt_analysis_applied: bool = False
    gpt_error: Optional[str] = None
    image_analysis: Optional[ImageAnalysis] = None
    content_hash: str = ""
    scoring_version: Dict[str, str] = field(default_factory=version_block)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text_match_score": self.text_match_score,
            "image_integrity_score": self.image_integrity_score,
            "confidence_score": self.confidence_score,
            "ai_decision": self.ai_decision,
            "reasoning": list(self.reasoning),
            "red_flags": list(self.red_flags),
            "enhanced_verification": self.enhanced_verification,
            "gpt_analysis_applied": self.gpt_analysis_applied,
            "gpt_error": self.gpt_error,
            "verification_details": dict(self.verification_details),
            "image_analysis": self.image_analysis.to_dict() if self.image_analysis else None,
            "verification_date": self.verification_date.isoformat(),
            "content_hash": self.content_hash,
            "scoring_version": dict(self.scoring_version),
        }


def blend_scores(text_match_score: int, image_integrity_score: Optional[int]) -> int:
    if image_integrity_score is None:
        return text_match_score
    # round(..., 6) strips float noise like 41.99999999999999 before half-up rounding
    blended = round(text_match_score * TEXT_WEIGHT + image_integrity_score * IMAGE_WEIGHT, 6)
    return max(0, min(100, round_half_up(blended)))


def analyze_image_source(image_url: str) -> ImageAnalysis:
    """Integrity analysis for a path/URL/data URI; fetch errors become a failed analysis."""
    try:
        loaded = load_source(image_url)
    except TextExtractionError as e:
        logger.warning("Could not load image for integrity check: %s", e)
        return ImageAnalysis.failed(str(e))
    return analyze_image_integrity(loaded.data)


class CertificateVerificationEngine:
    """
    Basic (single-pass) certificate verifier.

    Text match -> optional image blend -> threshold decision -> reasoning.
    Holds no per-call state, so one instance can serve concurrent requests.
    """

    def __init__(self, thresholds: Thresholds = BASIC_THRESHOLDS):
        self.thresholds = thresholds

    def verify(self,
               extracted_text: Optional[str],
               certificate_data: Union[CertificateClaim, Mapping[str, Any], None],
               image_url: Optional[str] = None,
               image_analysis: Optional[ImageAnalysis] = None,
               verified_at: Optional[datetime] = None) -> VerificationOutcome:
        claim = certificate_data if isinstance(certificate_data, CertificateClaim) \
            else CertificateClaim.from_mapping(certificate_data)
        text = extracted_text or ""

        # LAYER 1: Field matching + weighted text score
        text_match = match_text(text, claim)

        # LAYER 2: Image integrity (precomputed analysis wins over a URL)
        if image_analysis is None and image_url:
            image_analysis = analyze_image_source(image_url)
        image_score = image_analysis.integrity_score if image_analysis is not None else None

        # LAYER 3: Blend + decide
        confidence = blend_scores(text_match.match_score, image_score)
        decision = self.thresholds.classify(confidence)

        # LAYER 4: Reasoning
        reasoning = self._build_reasoning(text_match, claim, image_score)
        if not reasoning:
            reasoning.append(FALLBACK_REASONS[decision])

        details = self._verification_details(text, text_match, image_score)

        logger.debug("Basic verification: text=%s image=%s confidence=%s decision=%s",
                     text_match.match_score, image_score, confidence, decision)

        return VerificationOutcome(
            text_match_score=text_match.match_score,
            image_integrity_score=image_score,
            confidence_score=confidence,
            ai_decision=decision,
            reasoning=reasoning,
            red_flags=[],
            verification_details=details,
            verification_date=verified_at or datetime.now(timezone.utc),
            image_analysis=image_analysis,
            content_hash=sha256_hex(canonicalize(text)),
        )

    def _build_reasoning(self, text_match: TextMatch, claim: CertificateClaim,
                         image_score: Optional[int]) -> List[str]:
        reasons = []
        for field_name, message in MISSING_FIELD_REASONS.items():
            if claim.is_claimed(field_name) and not text_match.found(field_name):
                reasons.append(message)

        if claim.is_claimed("holder_name") and text_match.name_match_confidence < NAME_MATCH_THRESHOLD:
            reasons.append(
                f"Holder name match confidence is low ({text_match.name_match_confidence:.2f}%)"
            )

        if image_score is not None and image_score < TAMPER_WARNING_BELOW:
            reasons.append("Image integrity analysis indicates potential tampering")
        return reasons

    def _verification_details(self, text: str, text_match: TextMatch,
                              image_score: Optional[int]) -> Dict[str, Any]:
        return {
            "text_extracted": bool(text.strip()),
            "title_found": text_match.found("title"),
            "issuer_found": text_match.found("issuer"),
            "date_found": text_match.found("issue_date"),
            "credential_id_found": text_match.found("credential_id"),
            "credential_url_found": text_match.found("credential_url"),
            "holder_name_found": text_match.found("holder_name"),
            "match_score": text_match.match_score,
            "name_match_confidence": text_match.name_match_confidence,
            "image_integrity_score": image_score,
        }


def verify_certificate(extracted_text: Optional[str],
                       certificate_data: Union[CertificateClaim, Mapping[str, Any], None],
                       image_url: Optional[str] = None,
                       *,
                       image_analysis: Optional[ImageAnalysis] = None,
                       thresholds: Thresholds = BASIC_THRESHOLDS,
                       verified_at: Optional[datetime] = None) -> VerificationOutcome:
    engine = CertificateVerificationEngine(thresholds)
    return engine.verify(extracted_text, certificate_data, image_url,
                         image_analysis=image_analysis, verified_at=verified_at)


def generate_verification_summary(outcome: Optional[VerificationOutcome],
                                  issuer_result: Optional[Any] = None) -> str:
    """One human-readable paragraph for the certificate record."""
    if outcome is None:
        return "No verification performed"

    score = outcome.confidence_score
    if outcome.ai_decision == "verified":
        summary = f"Certificate appears to be authentic ({score}% confidence)."
    elif outcome.ai_decision == "rejected":
        summary = f"Certificate appears to be invalid ({score}% confidence)."
    elif outcome.ai_decision == "needs_review":
        summary = f"Certificate requires manual review ({score}% confidence)."
    else:
        summary = "Verification was inconclusive."

    if not outcome.verification_details.get("credential_id_found") and outcome.ai_decision != "rejected":
        summary += " Note: No credential ID was provided or found, which limits verification precision."

    if outcome.reasoning:
        summary += f" Reasoning: {', '.join(outcome.reasoning)}."

    if issuer_result is not None:
        if issuer_result.issuer_verified:
            summary += " Certificate has been verified with the issuer database."
        elif issuer_result.database_checked:
            if issuer_result.credential_valid is None:
                summary += (" Certificate was checked against issuer database with limited "
                            "information (missing credential ID).")
            else:
                summary += " Certificate could not be verified with the issuer database."

    return summary
