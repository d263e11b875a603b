# enhanced_verification.py
# Second-pass ("enhanced") verification for ambiguous certificates.
#
# Basic verification runs first. Only when its confidence lands strictly
# inside ESCALATION_BAND is a judge consulted. The judge is a seam:
# HeuristicJudge is the built-in stand-in, ModelJudge wraps any
# prompt -> JSON completion function (e.g. an LLM client).

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Protocol, Tuple, Union
import logging
import re

from pydantic import BaseModel, ConfigDict, Field

from field_matching import CertificateClaim, contains, normalize_for_match
from image_integrity import ImageAnalysis
from verification_engine import (
    Decision,
    ESCALATION_THRESHOLDS,
    Thresholds,
    VerificationOutcome,
    verify_certificate,
)

logger = logging.getLogger(__name__)

# exclusive on both ends: 20 and 90 are trusted as-is
ESCALATION_BAND: Tuple[int, int] = (20, 90)

CERTIFICATE_KEYWORDS = re.compile(r"certificate|certification|diploma|degree|awarded|completed", re.IGNORECASE)
PROFESSIONAL_PHRASES = re.compile(r"congratulations|successfully|completed|achievement", re.IGNORECASE)
TEMPLATE_PHRASES = re.compile(r"template|sample|example", re.IGNORECASE)

PROFESSIONAL_MIN_LENGTH = 200
SHORT_TEXT_LENGTH = 100

# Score adjustments
BONUS_PROFESSIONAL = 10
BONUS_STRONG_MATCH = 15     # >= 4 of 5 key matches
PENALTY_WEAK_MATCH = 20     # <= 1 key match
PENALTY_MANY_FLAGS = 25     # >= 3 red flags
BONUS_NO_FLAGS = 10


@dataclass
class JudgeRequest:
    """Structured input for a judge (the prompt-equivalent)."""
    extracted_text: str
    claim: CertificateClaim
    basic: VerificationOutcome
    image_analysis: Optional[ImageAnalysis] = None


@dataclass
class JudgeVerdict:
    decision: Decision
    confidence_score: int
    reasoning: List[str] = field(default_factory=list)
    red_flags: List[str] = field(default_factory=list)


class VerificationJudge(Protocol):
    def judge(self, request: JudgeRequest) -> JudgeVerdict:
        ...


def should_escalate(confidence_score: float, band: Tuple[int, int] = ESCALATION_BAND) -> bool:
    low, high = band
    return low < confidence_score < high

# ==============================================
# HEURISTIC JUDGE
# ==============================================

class HeuristicJudge:
    """Rule-based stand-in for a model judgment. Deterministic."""

    def __init__(self, thresholds: Thresholds = ESCALATION_THRESHOLDS):
        self.thresholds = thresholds

    def judge(self, request: JudgeRequest) -> JudgeVerdict:
        text = request.extracted_text or ""
        claim = request.claim
        text_norm = normalize_for_match(text)

        has_keywords = bool(CERTIFICATE_KEYWORDS.search(text))
        # checked directly against the claim, independent of the basic matcher's results
        key_matches = {
            "issuer": contains(text_norm, claim.as_text("issuer")),
            "title": contains(text_norm, claim.as_text("title")),
            "credential_id": contains(text_norm, claim.as_text("credential_id")),
            "holder_name": contains(text_norm, claim.as_text("holder_name")),
            "issue_date": contains(text_norm, claim.as_text("issue_date")),
        }
        match_count = sum(1 for v in key_matches.values() if v)

        seems_professional = (
            len(text) > PROFESSIONAL_MIN_LENGTH
            and has_keywords
            and bool(PROFESSIONAL_PHRASES.search(text))
        )

        red_flags = self._red_flags(text, claim, has_keywords, key_matches)

        score = request.basic.confidence_score
        if seems_professional:
            score += BONUS_PROFESSIONAL
        if match_count >= 4:
            score += BONUS_STRONG_MATCH
        if match_count <= 1:
            score -= PENALTY_WEAK_MATCH
        if len(red_flags) >= 3:
            score -= PENALTY_MANY_FLAGS
        if not red_flags:
            score += BONUS_NO_FLAGS
        score = max(0, min(100, score))

        reasoning = []
        if match_count >= 3:
            reasoning.append(f"{match_count} key certificate elements were found in the text")
        if seems_professional:
            reasoning.append("Certificate text contains professional formatting and language")
        if key_matches["credential_id"]:
            reasoning.append("Credential ID was found and matches the provided value")
        if key_matches["holder_name"]:
            reasoning.append("Recipient name was found on the certificate")
        if not red_flags:
            reasoning.append("No significant red flags were detected")
        if not reasoning:
            reasoning.append("Decision based on overall analysis of certificate text and metadata")

        return JudgeVerdict(
            decision=self.thresholds.classify(score),
            confidence_score=score,
            reasoning=reasoning,
            red_flags=red_flags,
        )

    def _red_flags(self, text, claim, has_keywords, key_matches) -> List[str]:
        flags = []
        if len(text) < SHORT_TEXT_LENGTH:
            flags.append("Extracted text is suspiciously short for a legitimate certificate")
        if not has_keywords:
            flags.append("Text lacks common certificate terminology")
        if claim.is_claimed("issuer") and not key_matches["issuer"]:
            flags.append(f'Claimed issuer "{claim.issuer}" not found in certificate text')
        if claim.is_claimed("title") and not key_matches["title"]:
            flags.append(f'Claimed title "{claim.title}" not found in certificate text')
        if claim.is_claimed("credential_id") and not key_matches["credential_id"]:
            flags.append(f'Claimed credential ID "{claim.credential_id}" not found in certificate text')
        if claim.is_claimed("holder_name") and not key_matches["holder_name"]:
            flags.append(f'Recipient name "{claim.holder_name}" not found in certificate text')
        if TEMPLATE_PHRASES.search(text):
            flags.append("Certificate contains terms like 'template', 'sample', or 'example'")
        return flags

# ==============================================
# MODEL JUDGE
# ==============================================

def _yes_no(value: Any) -> str:
    return str(bool(value)).lower()


def build_verification_prompt(request: JudgeRequest) -> str:
    claim = request.claim
    details = request.basic.verification_details
    image = request.image_analysis

    def claimed(name: str) -> str:
        return claim.as_text(name) or "Not provided"

    if image is not None:
        image_block = (
            "IMAGE INTEGRITY ANALYSIS:\n"
            f"Integrity Score: {image.integrity_score}\n"
            f"Metadata Consistent: {_yes_no(image.metadata_consistent)}\n"
            f"Compression Artifacts: {_yes_no(image.compression_artifacts)}\n"
            f"Pixel Pattern Consistent: {_yes_no(image.pixel_pattern_consistent)}"
        )
    else:
        image_block = "No image integrity analysis available."

    return (
        "You are a certificate verification expert. Analyze this certificate data carefully.\n\n"
        "CERTIFICATE TEXT (extracted using OCR):\n"
        f"{request.extracted_text}\n\n"
        "CLAIMED CERTIFICATE DETAILS:\n"
        f"Title: {claimed('title')}\n"
        f"Issuer: {claimed('issuer')}\n"
        f"Issue Date: {claimed('issue_date')}\n"
        f"Credential ID: {claimed('credential_id')}\n"
        f"Credential URL: {claimed('credential_url')}\n"
        f"Holder Name: {claimed('holder_name')}\n\n"
        "BASIC VERIFICATION RESULTS:\n"
        f"Title Found: {_yes_no(details.get('title_found'))}\n"
        f"Issuer Found: {_yes_no(details.get('issuer_found'))}\n"
        f"Date Found: {_yes_no(details.get('date_found'))}\n"
        f"Credential ID Found: {_yes_no(details.get('credential_id_found'))}\n"
        f"Credential URL Found: {_yes_no(details.get('credential_url_found'))}\n"
        f"Holder Name Found: {_yes_no(details.get('holder_name_found'))}\n"
        f"Name Match Confidence: {details.get('name_match_confidence', 0)}%\n"
        f"Overall Confidence: {request.basic.confidence_score}%\n"
        f"Initial Decision: {request.basic.ai_decision}\n\n"
        f"{image_block}\n\n"
        "YOUR TASK:\n"
        "1. Determine if the certificate is likely genuine or fraudulent\n"
        "2. Provide a confidence score (0-100)\n"
        "3. List specific reasons for your decision\n"
        "4. Look for inconsistencies or red flags\n"
        "5. Consider both textual content and image analysis\n"
        "6. If the certificate mentions skills or qualifications, verify they match the title and issuer\n"
        "7. Check if the formatting and language is consistent with professional certificates\n"
        '8. Make a final decision: "verified", "rejected", or "needs_review"\n\n'
        "Respond in JSON format only with these fields:\n"
        '{"decision": "verified|rejected|needs_review", "confidenceScore": number, '
        '"reasoning": [list of detailed reasons], "redFlags": [list of specific concerns]}'
    )


class JudgeResponse(BaseModel):
    """Shape a model is asked to return."""
    model_config = ConfigDict(populate_by_name=True)

    decision: Decision
    confidence_score: float = Field(alias="confidenceScore", ge=0, le=100)
    reasoning: List[str] = []
    red_flags: List[str] = Field(default_factory=list, alias="redFlags")


class ModelJudge:
    """Judge backed by a completion function: prompt in, JSON text out."""

    def __init__(self, complete: Callable[[str], str], thresholds: Thresholds = ESCALATION_THRESHOLDS):
        self.complete = complete
        self.thresholds = thresholds

    def judge(self, request: JudgeRequest) -> JudgeVerdict:
        raw = self.complete(build_verification_prompt(request))
        parsed = JudgeResponse.model_validate_json(raw)
        score = int(round(parsed.confidence_score))
        return JudgeVerdict(
            decision=parsed.decision,
            confidence_score=score,
            reasoning=parsed.reasoning,
            red_flags=parsed.red_flags,
        )

# ==============================================
# ENTRY POINT
# ==============================================

def enhanced_gpt_verification(extracted_text: Optional[str],
                              certificate_data: Union[CertificateClaim, Mapping[str, Any], None],
                              image_analysis: Optional[ImageAnalysis] = None,
                              *,
                              judge: Optional[VerificationJudge] = None,
                              thresholds: Thresholds = ESCALATION_THRESHOLDS,
                              verified_at: Optional[datetime] = None) -> VerificationOutcome:
    claim = certificate_data if isinstance(certificate_data, CertificateClaim) \
        else CertificateClaim.from_mapping(certificate_data)
    text = extracted_text or ""

    basic = verify_certificate(text, claim, image_analysis=image_analysis, verified_at=verified_at)

    if not should_escalate(basic.confidence_score):
        logger.info("Using basic verification result: %s with confidence %s",
                    basic.ai_decision, basic.confidence_score)
        return basic

    judge = judge or HeuristicJudge(thresholds)
    request = JudgeRequest(extracted_text=text, claim=claim, basic=basic, image_analysis=image_analysis)
    try:
        verdict = judge.judge(request)
    except Exception as e:
        logger.warning("Enhanced verification failed, falling back to basic result: %s", e)
        return replace(basic, gpt_error=str(e))

    score = max(0, min(100, int(verdict.confidence_score)))
    # decision always follows the escalated score, whatever the judge said
    decision = thresholds.classify(score)
    if decision != verdict.decision:
        logger.info("Judge decision %s overridden by score %s -> %s", verdict.decision, score, decision)

    logger.info("Enhanced verification: %s -> %s (%s -> %s)",
                basic.ai_decision, decision, basic.confidence_score, score)
    return replace(
        basic,
        enhanced_verification=True,
        gpt_analysis_applied=True,
        ai_decision=decision,
        confidence_score=score,
        reasoning=list(verdict.reasoning),
        red_flags=list(verdict.red_flags),
    )
