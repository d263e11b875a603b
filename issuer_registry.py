"""
Issuer cross-check against a table of known certificate platforms.

The table maps issuer name -> verification API URL. It is passed in (or
loaded from CG_KNOWN_ISSUERS_FILE) rather than hard-wired, so new platforms
can be added without a code change. No remote call is made: the check
validates credential ID format, URL domain and holder name locally.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union
import json
import logging
import os
import re

from field_matching import CertificateClaim

logger = logging.getLogger(__name__)

KNOWN_ISSUERS: Dict[str, str] = {
    "Coursera": "https://www.coursera.org/api/verify",
    "Udemy": "https://www.udemy.com/api/verify",
    "edX": "https://www.edx.org/api/verify",
    "LinkedIn Learning": "https://www.linkedin.com/learning/api/verify",
    "Microsoft": "https://learn.microsoft.com/api/verify",
    "Google": "https://developers.google.com/api/verify",
}

KNOWN_ISSUERS_FILE = os.getenv("CG_KNOWN_ISSUERS_FILE", "")

CREDENTIAL_ID_RE = re.compile(r"^[a-zA-Z0-9-]+$")
MIN_CREDENTIAL_ID_LENGTH = 9
MIN_HOLDER_NAME_LENGTH = 4


@dataclass
class IssuerCheckResult:
    issuer_verified: bool
    database_checked: bool
    message: str
    issuer_api_url: Optional[str] = None
    credential_valid: Optional[bool] = None
    url_valid: Optional[bool] = None
    holder_valid: Optional[bool] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_known_issuers(path: Union[str, Path, None] = None) -> Dict[str, str]:
    """Default table, extended by a JSON object file when one is given."""
    issuers = dict(KNOWN_ISSUERS)
    path = path or KNOWN_ISSUERS_FILE
    if not path:
        return issuers
    extra = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(extra, dict):
        raise ValueError(f"Known issuers file {path} must contain a JSON object")
    issuers.update({str(k): str(v) for k, v in extra.items()})
    logger.info("Loaded %d extra known issuers from %s", len(extra), path)
    return issuers


class IssuerRegistry:

    def __init__(self, known_issuers: Optional[Mapping[str, str]] = None):
        self.known_issuers = dict(known_issuers if known_issuers is not None else KNOWN_ISSUERS)
        self._by_lower = {name.lower(): name for name in self.known_issuers}

    def lookup(self, issuer: Optional[str]) -> Optional[str]:
        """Verification API URL for `issuer`, case-insensitive."""
        if not issuer:
            return None
        name = self._by_lower.get(issuer.strip().lower())
        return self.known_issuers[name] if name else None

    def _platform_roots(self):
        return [url.replace("/api/verify", "").lower() for url in self.known_issuers.values()]

    def check(self, claim: CertificateClaim) -> IssuerCheckResult:
        api_url = self.lookup(claim.issuer)
        if api_url is None:
            return IssuerCheckResult(
                issuer_verified=False,
                database_checked=False,
                message="No verification API available for this issuer",
            )

        credential_id = claim.as_text("credential_id").strip()
        credential_url = claim.as_text("credential_url").strip().lower()
        holder_name = claim.as_text("holder_name").strip()
        issuer_slug = re.sub(r"\s+", "", claim.issuer or "").lower()

        credential_valid = bool(
            credential_id
            and len(credential_id) >= MIN_CREDENTIAL_ID_LENGTH
            and CREDENTIAL_ID_RE.match(credential_id)
        )
        url_valid = bool(credential_url) and (
            issuer_slug in credential_url
            or any(credential_url.startswith(root) for root in self._platform_roots())
        )
        holder_valid = bool(holder_name) and len(holder_name) >= MIN_HOLDER_NAME_LENGTH
        holder_ok = holder_valid or not holder_name

        if credential_id:
            # a claimed ID must hold up on its own, together with the URL
            is_verified = credential_valid and url_valid and holder_ok
        else:
            is_verified = url_valid and holder_ok

        if is_verified:
            message = "Certificate validated with issuer database"
        elif credential_id:
            message = "Certificate failed validation with issuer database"
        else:
            message = "Certificate validated with limited information (no credential ID)"

        return IssuerCheckResult(
            issuer_verified=is_verified,
            database_checked=True,
            message=message,
            issuer_api_url=api_url,
            credential_valid=credential_valid if credential_id else None,
            url_valid=url_valid,
            holder_valid=holder_valid if holder_name else None,
        )


def verify_against_issuer_database(certificate_data: Union[CertificateClaim, Mapping[str, Any], None],
                                   registry: Optional[IssuerRegistry] = None) -> IssuerCheckResult:
    try:
        claim = certificate_data if isinstance(certificate_data, CertificateClaim) \
            else CertificateClaim.from_mapping(certificate_data)
        return (registry or IssuerRegistry()).check(claim)
    except Exception as e:
        logger.error("Error verifying against issuer database: %s", e, exc_info=True)
        return IssuerCheckResult(
            issuer_verified=False,
            database_checked=False,
            message="Error connecting to issuer database",
            error=str(e),
        )
