# field_matching.py
# Claimed-metadata vs OCR-text matching for certificate verification.
#
# Philosophy:
# - Deterministic string checks only (same text + same claim -> same result)
# - Fields that were not claimed are skipped, never penalised
# - Holder name is fuzzy (token overlap), everything else is all-or-nothing
# - Matching is case-insensitive on canonicalised text

from __future__ import annotations
from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple, Union
import hashlib
import math
import re

FieldName = Literal["title", "issuer", "issue_date", "credential_id", "credential_url", "holder_name"]

# Order matters: reasoning and verification details follow it
FIELD_ORDER: Tuple[str, ...] = (
    "title", "issuer", "issue_date", "credential_id", "credential_url", "holder_name",
)

# ==============================================
# WEIGHTS
# ==============================================

FIELD_WEIGHTS: Dict[str, int] = {
    "title": 20,
    "issuer": 25,
    "issue_date": 15,
    "credential_id": 30,
    "credential_url": 20,
    "holder_name": 15,
}

# A claimed credential ID carries most of the evidence, URL and name shrink
WEIGHTS_WITH_CREDENTIAL_ID: Dict[str, int] = {
    **FIELD_WEIGHTS,
    "credential_url": 15,
    "holder_name": 10,
}

NAME_MATCH_THRESHOLD = 70  # percent of name tokens that must appear

# camelCase keys used by the web client and the older snake_case variants
_CLAIM_ALIASES = {
    "issueDate": "issue_date",
    "issuance_date": "issue_date",
    "credentialID": "credential_id",
    "credentialId": "credential_id",
    "credentialURL": "credential_url",
    "credentialUrl": "credential_url",
    "holderName": "holder_name",
}

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


@dataclass(frozen=True)
class CertificateClaim:
    """Metadata the user claims for a certificate. Every field is optional."""
    title: Optional[str] = None
    issuer: Optional[str] = None
    issue_date: Optional[Union[str, date, datetime]] = None
    credential_id: Optional[str] = None
    credential_url: Optional[str] = None
    holder_name: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "CertificateClaim":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in data.items():
            name = _CLAIM_ALIASES.get(key, key)
            if name in known and name not in values:
                values[name] = value
        return cls(**values)

    def is_claimed(self, field: str) -> bool:
        value = getattr(self, field)
        if value is None:
            return False
        if isinstance(value, str):
            return value.strip() != ""
        return True

    def claimed_fields(self) -> List[str]:
        return [f for f in FIELD_ORDER if self.is_claimed(f)]

    def as_text(self, field: str) -> str:
        """Claimed value as the user typed it (dates rendered ISO)."""
        value = getattr(self, field)
        if value is None:
            return ""
        if isinstance(value, datetime):
            return value.date().isoformat()
        if isinstance(value, date):
            return value.isoformat()
        return str(value)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {f: (self.as_text(f) or None) for f in FIELD_ORDER}


@dataclass(frozen=True)
class FieldMatchResult:
    field: FieldName
    found: bool
    confidence: Optional[float] = None


@dataclass(frozen=True)
class TextMatch:
    """Per-field results plus the aggregated 0-100 text match score."""
    results: Tuple[FieldMatchResult, ...]
    match_score: int
    matched_points: float
    total_points: int

    def result_for(self, field: str) -> Optional[FieldMatchResult]:
        for r in self.results:
            if r.field == field:
                return r
        return None

    def found(self, field: str) -> bool:
        r = self.result_for(field)
        return bool(r and r.found)

    @property
    def name_match_confidence(self) -> float:
        r = self.result_for("holder_name")
        if r is None or r.confidence is None:
            return 0.0
        return r.confidence

# ==============================================
# CANONICALIZATION
# ==============================================

UNICODE_MAP = {
    "‘": "'", "’": "'", "“": '"', "”": '"',
    "–": "-", "—": "-", "·": "-", "•": "-",
}


def canonicalize(text: Optional[str]) -> str:
    """Make OCR output and typed values comparable.

    OCR splits long titles across lines and hyphenates words at the margin,
    so line breaks are folded into single spaces here.
    """
    if not text:
        return ""
    t = text
    for k, v in UNICODE_MAP.items():
        t = t.replace(k, v)
    # de-hyphenate soft line breaks: Cyber-\nSecurity -> CyberSecurity
    t = re.sub(r"(\w)-[ \t]*\r?\n\s*(\w)", r"\1\2", t)
    t = re.sub(r"[\s ]+", " ", t)
    return t.strip()


def normalize_for_match(text: Optional[str]) -> str:
    return canonicalize(text).lower()


def sha256_hex(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

# ==============================================
# DATES
# ==============================================

_DATE_INPUT_FORMATS = ("%m/%d/%Y", "%d/%m/%Y", "%B %d, %Y", "%b %d, %Y", "%d %B %Y")


def parse_claimed_date(value: Union[str, date, datetime, None]) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        pass
    for fmt in _DATE_INPUT_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def date_candidates(value: Union[str, date, datetime, None]) -> List[str]:
    """ISO, US, UK and long-form renderings of a claimed issue date."""
    d = parse_claimed_date(value)
    if d is None:
        raw = str(value).strip() if value is not None else ""
        return [raw] if raw else []
    month = MONTH_NAMES[d.month - 1]
    candidates = [
        d.isoformat(),                                   # 2024-07-31
        f"{d.month:02d}/{d.day:02d}/{d.year}",           # 07/31/2024
        f"{d.month}/{d.day}/{d.year}",                   # 7/31/2024
        f"{d.day:02d}/{d.month:02d}/{d.year}",           # 31/07/2024
        f"{month} {d.day}, {d.year}",                    # July 31, 2024
        f"{month} {d.day:02d}, {d.year}",                # July 01, 2024
    ]
    # dedupe, keep order
    return list(dict.fromkeys(candidates))

# ==============================================
# FIELD MATCHER
# ==============================================

def url_domain(url: str) -> str:
    return re.sub(r"^https?://", "", url.strip(), flags=re.IGNORECASE).split("/")[0]


def contains(haystack: str, needle: str) -> bool:
    """Case-insensitive containment on canonical text. Empty needles never match."""
    n = normalize_for_match(needle)
    return bool(n) and n in haystack


def name_match_confidence(text_norm: str, holder_name: str) -> float:
    if contains(text_norm, holder_name):
        return 100.0
    parts = [p for p in canonicalize(holder_name).split(" ") if len(p) > 1]
    if not parts:
        return 0.0
    matched = sum(1 for p in parts if contains(text_norm, p))
    return matched / len(parts) * 100


def match_field(text_norm: str, claim: CertificateClaim, field: str) -> FieldMatchResult:
    value = claim.as_text(field)
    if field == "issue_date":
        found = any(contains(text_norm, c) for c in date_candidates(getattr(claim, field)))
        return FieldMatchResult(field, found)
    if field == "credential_url":
        found = contains(text_norm, url_domain(value)) or contains(text_norm, value)
        return FieldMatchResult(field, found)
    if field == "holder_name":
        confidence = name_match_confidence(text_norm, value)
        return FieldMatchResult(field, confidence > NAME_MATCH_THRESHOLD, confidence)
    return FieldMatchResult(field, contains(text_norm, value))


def match_fields(extracted_text: Optional[str], claim: CertificateClaim) -> List[FieldMatchResult]:
    """One result per claimed field, in FIELD_ORDER."""
    text_norm = normalize_for_match(extracted_text)
    return [match_field(text_norm, claim, f) for f in claim.claimed_fields()]

# ==============================================
# SCORE AGGREGATOR
# ==============================================

def field_weights(claim: CertificateClaim) -> Dict[str, int]:
    """Weights of the claimed fields only. Their sum is the score denominator."""
    table = WEIGHTS_WITH_CREDENTIAL_ID if claim.is_claimed("credential_id") else FIELD_WEIGHTS
    return {f: table[f] for f in claim.claimed_fields()}


def aggregate_score(results: List[FieldMatchResult], claim: CertificateClaim) -> Tuple[int, float, int]:
    """Return (match_score, matched_points, total_points)."""
    weights = field_weights(claim)
    total_points = sum(weights.values())
    matched_points = 0.0
    for r in results:
        weight = weights.get(r.field, 0)
        if r.field == "holder_name":
            # fractional: partial name matches still earn partial credit
            matched_points += ((r.confidence or 0.0) / 100) * weight
        elif r.found:
            matched_points += weight
    if total_points <= 0:
        return 0, 0.0, 0
    score = round_half_up(matched_points / total_points * 100)
    return max(0, min(100, score)), matched_points, total_points


def match_text(extracted_text: Optional[str], claim: CertificateClaim) -> TextMatch:
    results = match_fields(extracted_text, claim)
    score, matched, total = aggregate_score(results, claim)
    return TextMatch(tuple(results), score, matched, total)
