"""
Unit tests for the content classifier (MIME type + file name resolution).
"""

import io
import zipfile

from app.services.classifier import (
    classify,
    extension_for,
    normalize_mime_type,
    resolve_file_name,
    sniff,
)

PDF_BYTES = b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n1 0 obj\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def _make_zip(member: str) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        archive.writestr(member, "<xml/>")
    return buf.getvalue()


class TestFileNameResolution:

    def test_suggested_name_without_extension_gets_sniffed_extension(self):
        result = classify(PDF_BYTES, "application/octet-stream", "report", "069xx0000012345")
        assert result.final_file_name == "report.pdf"

    def test_suggested_name_with_extension_is_kept(self):
        result = classify(PDF_BYTES, "application/pdf", "report.pdf", "069xx0000012345")
        assert result.final_file_name == "report.pdf"

    def test_no_suggested_name_uses_remote_id(self):
        result = classify(PDF_BYTES, "application/pdf", None, "069xx0000012345")
        assert result.final_file_name == "069xx0000012345.pdf"

    def test_suggested_extension_kept_even_if_content_differs(self):
        """A plausible extension is used verbatim; only the MIME type follows the content."""
        result = classify(PNG_BYTES, "application/octet-stream", "scan.jpeg", "id1")
        assert result.final_file_name == "scan.jpeg"
        assert result.final_mime_type == "image/png"

    def test_implausible_extension_gets_appended(self):
        # ".x" is too short and ".abcdef" too long to count as an extension
        assert resolve_file_name("notes.x", "id", "txt") == "notes.x.txt"
        assert resolve_file_name("notes.abcdef", "id", "txt") == "notes.abcdef.txt"

    def test_unknown_type_falls_back_to_bin(self):
        result = classify(b"\x00\x01\x02", "application/x-made-up-type", None, "id9")
        assert result.final_file_name == "id9.bin"
        assert result.final_mime_type == "application/x-made-up-type"


class TestMimeResolution:

    def test_sniffed_type_beats_hint(self):
        result = classify(PDF_BYTES, "text/plain", None, "id")
        assert result.final_mime_type == "application/pdf"

    def test_hint_used_when_sniffing_finds_nothing(self):
        result = classify(b"hello, world", "text/csv; charset=UTF-8", None, "id")
        assert result.final_mime_type == "text/csv"
        assert result.final_file_name == "id.csv"

    def test_missing_hint_defaults_to_octet_stream(self):
        assert normalize_mime_type(None) == "application/octet-stream"
        assert normalize_mime_type("") == "application/octet-stream"
        assert normalize_mime_type("Image/PNG ; q=1") == "image/png"

    def test_empty_buffer_is_handled(self):
        result = classify(b"", None, None, "empty")
        assert result.final_mime_type == "application/octet-stream"
        assert result.final_file_name == "empty.bin"

    def test_docx_detected_inside_zip(self):
        mime, ext = sniff(_make_zip("word/document.xml"))
        assert ext == "docx"
        assert mime.endswith("wordprocessingml.document")

    def test_xlsx_detected_inside_zip(self):
        assert sniff(_make_zip("xl/workbook.xml"))[1] == "xlsx"

    def test_plain_zip(self):
        assert sniff(_make_zip("readme.txt")) == ("application/zip", "zip")

    def test_truncated_zip_does_not_raise(self):
        assert sniff(b"PK\x03\x04garbage") == ("application/zip", "zip")

    def test_riff_containers(self):
        assert sniff(b"RIFF\x00\x00\x00\x00WEBPVP8 ")[1] == "webp"
        assert sniff(b"RIFF\x00\x00\x00\x00WAVEfmt ")[1] == "wav"

    def test_table_lookup(self):
        assert extension_for("application/pdf") == "pdf"
        assert extension_for("image/jpeg") == "jpg"
        assert extension_for("application/x-made-up-type") is None
