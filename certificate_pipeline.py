"""
End-to-end certificate verification flows.

- verify_new_certificate: one uploaded certificate, with OCR, image
  integrity, escalation and the issuer database adjustment.
- verify_batch: many stored certificates, basic verification only, one
  failing item never aborts the rest.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
import logging

from enhanced_verification import VerificationJudge, enhanced_gpt_verification
from field_matching import CertificateClaim
from image_integrity import ImageAnalysis, analyze_image_integrity
from issuer_registry import IssuerCheckResult, IssuerRegistry, verify_against_issuer_database
from text_extraction import LoadedFile, extract_text, extract_text_from_bytes, load_source
from verification_engine import (
    ISSUER_ADJUSTED_THRESHOLDS,
    Thresholds,
    VerificationOutcome,
    generate_verification_summary,
    verify_certificate,
)

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 50

ISSUER_VERIFIED_BONUS = 15
ISSUER_FAILED_PENALTY = 20

STATUS_BY_DECISION = {"verified": "verified", "rejected": "rejected"}

# batch verification only compares what is stored on the certificate record
BATCH_FIELDS = ("title", "issuer", "issue_date", "credential_id")


class VerificationRequestError(ValueError):
    """The request cannot be verified as given (missing image, URL, text...)."""


@dataclass
class NewCertificateVerification:
    extracted_text: str
    outcome: VerificationOutcome
    issuer_result: Optional[IssuerCheckResult]
    image_analysis: Optional[ImageAnalysis]
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "extracted_text": self.extracted_text,
            "verification_result": self.outcome.to_dict(),
            "issuer_database_result": self.issuer_result.to_dict() if self.issuer_result else None,
            "image_integrity_analysis": self.image_analysis.to_dict() if self.image_analysis else None,
            "ai_decision": self.outcome.ai_decision,
            "confidence_score": self.outcome.confidence_score,
            "reasoning": list(self.outcome.reasoning),
            "red_flags": list(self.outcome.red_flags),
            "enhanced_verification": self.outcome.enhanced_verification,
            "summary": self.summary,
        }


def apply_issuer_adjustment(outcome: VerificationOutcome,
                            issuer_result: Optional[IssuerCheckResult],
                            thresholds: Thresholds = ISSUER_ADJUSTED_THRESHOLDS) -> VerificationOutcome:
    """Nudge the score by the issuer database result and re-derive the decision."""
    if issuer_result is None or not issuer_result.database_checked:
        return outcome

    reasoning = list(outcome.reasoning)
    red_flags = list(outcome.red_flags)
    if issuer_result.issuer_verified:
        score = min(100, outcome.confidence_score + ISSUER_VERIFIED_BONUS)
        if score >= thresholds.verified:
            reasoning.append("Certificate validated against issuer database")
    else:
        score = max(0, outcome.confidence_score - ISSUER_FAILED_PENALTY)
        if score <= thresholds.rejected:
            red_flags.append("Certificate verification failed against issuer database")

    return replace(
        outcome,
        confidence_score=score,
        ai_decision=thresholds.classify(score),
        reasoning=reasoning,
        red_flags=red_flags,
    )


def verify_new_certificate(image_url: Optional[str],
                           certificate_data: Union[CertificateClaim, Mapping[str, Any], None],
                           *,
                           loader: Optional[Callable[[str], LoadedFile]] = None,
                           registry: Optional[IssuerRegistry] = None,
                           judge: Optional[VerificationJudge] = None,
                           verified_at: Optional[datetime] = None) -> NewCertificateVerification:
    if not image_url:
        raise VerificationRequestError("Certificate image URL is required")

    claim = certificate_data if isinstance(certificate_data, CertificateClaim) \
        else CertificateClaim.from_mapping(certificate_data)
    if not claim.is_claimed("credential_url"):
        raise VerificationRequestError("Credential URL is required for accurate verification")

    logger.info("Extracting text from certificate image...")
    loaded = (loader or load_source)(image_url)
    extracted_text = extract_text_from_bytes(loaded)
    if not extracted_text or not extracted_text.strip():
        raise VerificationRequestError(
            "Could not extract text from certificate image. Please provide a clearer image."
        )

    image_analysis = analyze_image_integrity(loaded.data) if loaded.is_image else None

    outcome = enhanced_gpt_verification(extracted_text, claim, image_analysis,
                                        judge=judge, verified_at=verified_at)

    issuer_result = verify_against_issuer_database(claim, registry)
    outcome = apply_issuer_adjustment(outcome, issuer_result)

    return NewCertificateVerification(
        extracted_text=extracted_text,
        outcome=outcome,
        issuer_result=issuer_result,
        image_analysis=image_analysis,
        summary=generate_verification_summary(outcome, issuer_result),
    )


@dataclass
class BatchItem:
    id: str
    image_url: Optional[str]
    certificate_data: Mapping[str, Any]


def certificate_status(decision: str) -> str:
    return STATUS_BY_DECISION.get(decision, "pending")


def verify_batch(items: Iterable[BatchItem],
                 *,
                 extractor: Optional[Callable[[str], str]] = None) -> Dict[str, Any]:
    items = list(items)
    if not items:
        raise VerificationRequestError("Certificate IDs are required")
    if len(items) > MAX_BATCH_SIZE:
        raise VerificationRequestError(f"Maximum {MAX_BATCH_SIZE} certificates per batch")

    results: List[Dict[str, Any]] = []
    for item in items:
        if not item.image_url:
            results.append({"id": item.id, "success": False, "message": "No image to verify"})
            continue
        try:
            text = (extractor or extract_text)(item.image_url)
            full = CertificateClaim.from_mapping(item.certificate_data)
            claim = CertificateClaim(**{f: getattr(full, f) for f in BATCH_FIELDS})
            outcome = verify_certificate(text, claim)
            results.append({
                "id": item.id,
                "success": True,
                "status": certificate_status(outcome.ai_decision),
                "ai_decision": outcome.ai_decision,
                "score": outcome.confidence_score,
            })
        except Exception as e:
            logger.exception("Error verifying certificate %s", item.id)
            results.append({
                "id": item.id,
                "success": False,
                "message": str(e) or "Failed to verify certificate",
            })

    successful = sum(1 for r in results if r["success"])
    logger.info("Batch verification finished: %d/%d succeeded", successful, len(results))
    return {
        "batch_id": f"batch_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}",
        "total": len(results),
        "successful": successful,
        "failed": len(results) - successful,
        "results": results,
    }
