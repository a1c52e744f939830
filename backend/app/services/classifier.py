"""
Content classifier.

Decides the final MIME type and file name for a downloaded blob. Sniffed
magic bytes win over the content type the CRM reported. The module does no
I/O and never raises.
"""

import io
import logging
import mimetypes
import re
import zipfile
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
FALLBACK_EXTENSION = "bin"

# Bytes inspected for signatures
_SNIFF_WINDOW = 4096

# A name already "has an extension" if it ends in .xx … .xxxxx
_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{2,5}$")

# (offset, signature, mime type, extension)
_SIGNATURES = [
    (0, b"%PDF-", "application/pdf", "pdf"),
    (0, b"\x89PNG\r\n\x1a\n", "image/png", "png"),
    (0, b"\xff\xd8\xff", "image/jpeg", "jpg"),
    (0, b"GIF87a", "image/gif", "gif"),
    (0, b"GIF89a", "image/gif", "gif"),
    (0, b"BM", "image/bmp", "bmp"),
    (0, b"II*\x00", "image/tiff", "tif"),
    (0, b"MM\x00*", "image/tiff", "tif"),
    (0, b"ID3", "audio/mpeg", "mp3"),
    (0, b"\x1f\x8b", "application/gzip", "gz"),
    (0, b"7z\xbc\xaf\x27\x1c", "application/x-7z-compressed", "7z"),
    (0, b"{\\rtf", "application/rtf", "rtf"),
]

# Office Open XML packages are ZIP files; the first member directory tells them apart.
_ZIP_MARKERS = [
    ("word/", "application/vnd.openxmlformats-officedocument.wordprocessingml.document", "docx"),
    ("xl/", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
    ("ppt/", "application/vnd.openxmlformats-officedocument.presentationml.presentation", "pptx"),
]

MIME_EXTENSIONS = {
    "application/pdf": "pdf",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tif",
    "image/webp": "webp",
    "image/heic": "heic",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "text/plain": "txt",
    "text/csv": "csv",
    "text/html": "html",
    "application/json": "json",
    "application/xml": "xml",
    "text/xml": "xml",
    "application/zip": "zip",
    "application/gzip": "gz",
    "application/x-7z-compressed": "7z",
    "application/rtf": "rtf",
    "application/msword": "doc",
    "application/vnd.ms-excel": "xls",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "message/rfc822": "eml",
    "application/vnd.ms-outlook": "msg",
}


@dataclass(frozen=True)
class Classification:
    final_mime_type: str
    final_file_name: str


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Drop parameters (``; charset=...``) and lower-case; empty → octet-stream."""
    if not mime_type:
        return DEFAULT_MIME_TYPE
    base = mime_type.split(";", 1)[0].strip().lower()
    return base or DEFAULT_MIME_TYPE


def _sniff_zip(buffer: bytes) -> Tuple[str, str]:
    try:
        with zipfile.ZipFile(io.BytesIO(buffer)) as archive:
            names = archive.namelist()
    except (zipfile.BadZipFile, ValueError, OSError):
        return "application/zip", "zip"

    for marker, mime_type, ext in _ZIP_MARKERS:
        if any(name.startswith(marker) for name in names):
            return mime_type, ext
    return "application/zip", "zip"


def sniff(buffer: bytes) -> Optional[Tuple[str, str]]:
    """
    Return (mime_type, extension) from magic bytes, or None when the content
    does not match any known signature.
    """
    if not buffer:
        return None
    head = buffer[:_SNIFF_WINDOW]

    for offset, signature, mime_type, ext in _SIGNATURES:
        if head[offset:offset + len(signature)] == signature:
            return mime_type, ext

    if head[:4] == b"RIFF" and len(head) >= 12:
        if head[8:12] == b"WEBP":
            return "image/webp", "webp"
        if head[8:12] == b"WAVE":
            return "audio/wav", "wav"

    if head[4:8] == b"ftyp":
        brand = head[8:12]
        if brand == b"qt  ":
            return "video/quicktime", "mov"
        if brand in (b"heic", b"heix", b"mif1"):
            return "image/heic", "heic"
        return "video/mp4", "mp4"

    if head[:4] == b"PK\x03\x04":
        return _sniff_zip(buffer)

    return None


def extension_for(mime_type: str) -> Optional[str]:
    """Extension for a MIME type: fixed table first, then the mimetypes registry."""
    ext = MIME_EXTENSIONS.get(mime_type)
    if ext:
        return ext
    guessed = mimetypes.guess_extension(mime_type)
    if guessed:
        return guessed.lstrip(".")
    return None


def has_extension(name: str) -> bool:
    return bool(_EXTENSION_RE.search(name))


def resolve_file_name(suggested_name: Optional[str], remote_id: str, extension: str) -> str:
    """
    Keep a suggested name that already carries an extension; otherwise append
    ``extension`` to the suggested name, or to the remote id when there is none.
    """
    if suggested_name:
        if has_extension(suggested_name):
            return suggested_name
        return f"{suggested_name}.{extension}"
    return f"{remote_id}.{extension}"


def classify(
    buffer: bytes,
    hinted_mime_type: Optional[str],
    suggested_name: Optional[str],
    remote_id: str,
) -> Classification:
    """Resolve the MIME type and file name of a downloaded file."""
    mime_type = normalize_mime_type(hinted_mime_type)
    sniffed_ext: Optional[str] = None

    try:
        sniffed = sniff(buffer)
    except Exception:
        logger.debug("Content sniffing failed; using hinted type", exc_info=True)
        sniffed = None

    if sniffed:
        mime_type, sniffed_ext = sniffed

    extension = sniffed_ext or extension_for(mime_type) or FALLBACK_EXTENSION
    return Classification(
        final_mime_type=mime_type,
        final_file_name=resolve_file_name(suggested_name, remote_id, extension),
    )
