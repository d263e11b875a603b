# text_extraction.py
# Turn a certificate file (image, PDF, DOCX, TXT) into plain text.
#
# Sources may be a local path, an http(s) URL or a base64 data URI. Images go
# through Tesseract OCR; PDFs and DOCX use their embedded text.

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse
import base64
import binascii
import io
import logging
import os
import tempfile

import docx2txt
import pytesseract
import requests
from pdfminer.high_level import extract_text as pdf_extract_text
from PIL import Image

logger = logging.getLogger(__name__)

TESSERACT_CMD = os.getenv("CG_TESSERACT_CMD", "")
OCR_LANG = os.getenv("CG_OCR_LANG", "eng")
DOWNLOAD_TIMEOUT = float(os.getenv("CG_DOWNLOAD_TIMEOUT", "30"))

if TESSERACT_CMD:
    pytesseract.pytesseract.tesseract_cmd = TESSERACT_CMD

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp", ".gif", ".tif", ".tiff", ".webp"}

_MIME_SUFFIX = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/bmp": ".bmp",
    "image/tiff": ".tiff",
    "image/webp": ".webp",
    "text/plain": ".txt",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
}

Source = Union[str, Path]


class TextExtractionError(ValueError):
    """The file could not be fetched, decoded or read."""


@dataclass
class LoadedFile:
    data: bytes
    suffix: str
    name: str

    @property
    def is_image(self) -> bool:
        return self.suffix in IMAGE_SUFFIXES

    @property
    def is_pdf(self) -> bool:
        return self.suffix == ".pdf"


def _suffix_for_mime(mime: str) -> Optional[str]:
    return _MIME_SUFFIX.get(mime.split(";")[0].strip().lower())


def _load_data_uri(uri: str) -> LoadedFile:
    header, sep, payload = uri.partition(",")
    if not sep or ";base64" not in header:
        raise TextExtractionError("Unsupported data URI (expected base64 payload)")
    mime = header[len("data:"):].split(";")[0]
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise TextExtractionError(f"Invalid base64 data URI: {e}")
    return LoadedFile(data=data, suffix=_suffix_for_mime(mime) or ".jpg", name="upload")


def _load_url(url: str) -> LoadedFile:
    try:
        response = requests.get(url, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise TextExtractionError(f"Could not download {url}: {e}")

    path = urlparse(url).path
    suffix = Path(path).suffix.lower()
    if suffix not in IMAGE_SUFFIXES and suffix not in (".pdf", ".docx", ".txt"):
        suffix = _suffix_for_mime(response.headers.get("content-type", "")) or ""
    if not suffix:
        # hosted raw uploads are PDFs, everything else is treated as a photo
        suffix = ".pdf" if "/raw/" in path.lower() else ".jpg"
    return LoadedFile(data=response.content, suffix=suffix, name=Path(path).name or "download")


def is_remote_source(source: Source) -> bool:
    s = str(source)
    return s.startswith("data:") or s.lower().startswith(("http://", "https://"))


def check_remote_source(source: Source) -> str:
    """Reject anything but http(s) URLs and data URIs (no server-side paths)."""
    if not is_remote_source(source):
        raise TextExtractionError("Only http(s) URLs and base64 data URIs are accepted")
    return str(source)


def load_source(source: Source, allow_local: bool = True) -> LoadedFile:
    """Fetch the raw bytes of a certificate file from any supported source."""
    s = str(source)
    if s.startswith("data:"):
        return _load_data_uri(s)
    if s.lower().startswith(("http://", "https://")):
        return _load_url(s)
    if not allow_local:
        check_remote_source(s)
    path = Path(s)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise TextExtractionError(f"Could not read {path.name}: {e}")
    return LoadedFile(data=data, suffix=path.suffix.lower(), name=path.name)


def extract_text_from_image(image: Image.Image) -> str:
    return pytesseract.image_to_string(image, lang=OCR_LANG)


def extract_text_from_file(path: Path) -> str:
    """Extract text from PDF, DOCX, image or TXT files"""
    try:
        suffix = path.suffix.lower()
        if suffix == ".pdf":
            return pdf_extract_text(str(path))
        elif suffix == ".docx":
            return docx2txt.process(str(path))
        elif suffix in IMAGE_SUFFIXES:
            with Image.open(path) as img:
                return extract_text_from_image(img)
        else:
            return path.read_text(encoding="utf-8", errors="ignore")
    except Exception as e:
        raise TextExtractionError(f"Could not extract text from {path.name}: {str(e)}")


def extract_text_from_bytes(loaded: LoadedFile) -> str:
    if loaded.is_image:
        try:
            with Image.open(io.BytesIO(loaded.data)) as img:
                return extract_text_from_image(img)
        except Exception as e:
            raise TextExtractionError(f"Could not extract text from {loaded.name}: {str(e)}")

    # pdfminer and docx2txt want a real file
    with tempfile.NamedTemporaryFile(delete=False, suffix=loaded.suffix) as tmp:
        tmp.write(loaded.data)
        tmp_path = Path(tmp.name)
    try:
        return extract_text_from_file(tmp_path)
    finally:
        os.remove(tmp_path)


def load_remote_source(source: Source) -> LoadedFile:
    return load_source(source, allow_local=False)


def extract_text(source: Source, allow_local: bool = True) -> str:
    """Text of the certificate at `source` (path, URL or data URI)."""
    loaded = load_source(source, allow_local=allow_local)
    logger.info("Extracting text from %s (%s, %d bytes)", loaded.name, loaded.suffix or "?", len(loaded.data))
    return extract_text_from_bytes(loaded) or ""
