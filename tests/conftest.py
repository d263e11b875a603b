"""Shared fixtures for the certificate verification tests."""

import io
import os
from datetime import datetime, timezone

import pytest
from PIL import Image

# Keep the HTTP surface open and the issuer table at its defaults
os.environ.setdefault("CG_API_KEY", "")
os.environ.setdefault("CG_KNOWN_ISSUERS_FILE", "")

from field_matching import CertificateClaim


FULL_TEXT = (
    "CERTIFICATE OF COMPLETION\n"
    "Introduction to Cyber Security\n"
    "Infosys Springboard\n"
    "This is to certify that Samadhan Mane has successfully completed the course\n"
    "Issued on 2024-07-31\n"
    "Credential ID: ISB-2024-778899\n"
    "Verify at https://verify.onwingspan.com/cert/ISB-2024-778899\n"
)


@pytest.fixture
def full_text():
    return FULL_TEXT


@pytest.fixture
def full_claim():
    return CertificateClaim(
        title="Introduction to Cyber Security",
        issuer="Infosys Springboard",
        issue_date="2024-07-31",
        credential_id="ISB-2024-778899",
        credential_url="https://verify.onwingspan.com/cert/ISB-2024-778899",
        holder_name="Samadhan Mane",
    )


@pytest.fixture
def fixed_now():
    return datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (64, 32), color=(240, 240, 240)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def edited_jpeg_bytes():
    """JPEG whose EXIF Software tag names an image editor."""
    image = Image.new("RGB", (64, 32), color=(200, 200, 200))
    exif = Image.Exif()
    exif[0x0131] = "Adobe Photoshop 24.0"
    buf = io.BytesIO()
    image.save(buf, format="JPEG", exif=exif.tobytes())
    return buf.getvalue()
