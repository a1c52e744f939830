"""
Unit tests for the Supabase Storage adapter.
Tests folder listing/creation, object upload/download/deletion and public URLs.
"""

import os
import pytest
from unittest.mock import MagicMock, Mock, patch

from app.services.storage import (
    FOLDER_PLACEHOLDER,
    SupabaseCaseStorage,
    _rewrite_public_url_host,
    sanitize_object_name,
)


def _storage():
    client = MagicMock()
    return SupabaseCaseStorage(client, "case-files"), client


class TestUploadObject:

    @pytest.mark.asyncio
    async def test_upload_returns_path_and_uses_upsert(self):
        storage, client = _storage()

        result = await storage.upload_object("cases/00012345/report.pdf", b"%PDF", "application/pdf")

        assert result == "cases/00012345/report.pdf"
        client.storage.from_.assert_called_with("case-files")
        args = client.storage.from_.return_value.upload.call_args[0]
        assert args[0] == "cases/00012345/report.pdf"
        assert args[1] == b"%PDF"
        assert args[2] == {"content-type": "application/pdf", "upsert": "true"}

    @pytest.mark.asyncio
    async def test_upload_failure_propagates(self):
        storage, client = _storage()
        client.storage.from_.return_value.upload.side_effect = Exception("Storage error")

        with pytest.raises(Exception) as exc_info:
            await storage.upload_object("cases/1/a.pdf", b"x", "application/pdf")

        assert "Storage error" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_upload_file_reads_local_path(self, tmp_path):
        storage, client = _storage()
        local = tmp_path / "upload.txt"
        local.write_bytes(b"hello")

        await storage.upload_file("cases/1/upload.txt", str(local), "text/plain")

        args = client.storage.from_.return_value.upload.call_args[0]
        assert args[1] == b"hello"


class TestFolders:

    @pytest.mark.asyncio
    async def test_list_folders_returns_only_folders(self):
        storage, client = _storage()
        client.storage.from_.return_value.list.return_value = [
            {"name": "00012345", "id": None},
            {"name": "000123456", "id": None},
            {"name": "transfer_log.csv", "id": "obj-1"},
        ]

        names = await storage.list_folders("cases", search="00012345")

        assert names == ["00012345", "000123456"]
        client.storage.from_.return_value.list.assert_called_once_with(
            "cases", {"limit": 1000, "search": "00012345"}
        )

    @pytest.mark.asyncio
    async def test_create_folder_writes_placeholder(self):
        storage, client = _storage()

        result = await storage.create_folder("cases/00012345")

        assert result == "cases/00012345"
        args = client.storage.from_.return_value.upload.call_args[0]
        assert args[0] == f"cases/00012345/{FOLDER_PLACEHOLDER}"
        assert args[1] == b""

    @pytest.mark.asyncio
    async def test_ensure_public_read_updates_private_bucket(self):
        storage, client = _storage()
        client.storage.get_bucket.return_value = Mock(public=False)

        await storage.ensure_public_read()

        client.storage.update_bucket.assert_called_once_with("case-files", {"public": True})

    @pytest.mark.asyncio
    async def test_ensure_public_read_leaves_public_bucket(self):
        storage, client = _storage()
        client.storage.get_bucket.return_value = Mock(public=True)

        await storage.ensure_public_read()

        client.storage.update_bucket.assert_not_called()


class TestDownloadAndDelete:

    @pytest.mark.asyncio
    async def test_download_returns_bytes(self):
        storage, client = _storage()
        client.storage.from_.return_value.download.return_value = b"csv-bytes"

        assert await storage.download_object("cases/transfer_log.csv") == b"csv-bytes"

    @pytest.mark.asyncio
    async def test_delete_existing_returns_true(self):
        storage, client = _storage()
        client.storage.from_.return_value.remove.return_value = [{"name": "a.pdf"}]

        assert await storage.delete_object("cases/1/a.pdf") is True
        client.storage.from_.return_value.remove.assert_called_once_with(["cases/1/a.pdf"])

    @pytest.mark.asyncio
    async def test_delete_missing_returns_false(self):
        storage, client = _storage()
        client.storage.from_.return_value.remove.return_value = []

        assert await storage.delete_object("cases/1/missing.pdf") is False

    @pytest.mark.asyncio
    async def test_bucket_exists(self):
        storage, client = _storage()
        bucket = Mock()
        bucket.name = "case-files"
        client.storage.list_buckets.return_value = [bucket]

        assert await storage.bucket_exists() is True

    @pytest.mark.asyncio
    async def test_object_exists_matches_exact_name(self):
        storage, client = _storage()
        client.storage.from_.return_value.list.return_value = [
            {"name": "transfer_log.csv.bak", "id": "obj-1"},
            {"name": "transfer_log.csv", "id": "obj-2"},
        ]

        assert await storage.object_exists("cases/transfer_log.csv") is True
        client.storage.from_.return_value.list.assert_called_once_with(
            "cases", {"limit": 1000, "search": "transfer_log.csv"}
        )

    @pytest.mark.asyncio
    async def test_object_exists_false_for_missing_or_folder(self):
        storage, client = _storage()
        client.storage.from_.return_value.list.return_value = [
            {"name": "transfer_log.csv.bak", "id": "obj-1"},
            {"name": "transfer_log.csv", "id": None},
        ]

        assert await storage.object_exists("cases/transfer_log.csv") is False

    @pytest.mark.asyncio
    async def test_object_exists_listing_error_propagates(self):
        storage, client = _storage()
        client.storage.from_.return_value.list.side_effect = Exception("timeout")

        with pytest.raises(Exception, match="timeout"):
            await storage.object_exists("transfer_log.csv")


class TestForBucket:

    @pytest.mark.asyncio
    async def test_shares_client_but_targets_other_bucket(self):
        storage, client = _storage()
        audit_storage = storage.for_bucket("case-files-audit")

        await audit_storage.upload_object("cases/transfer_log.csv", b"x", "text/csv")

        assert audit_storage.bucket == "case-files-audit"
        assert storage.bucket == "case-files"
        client.storage.from_.assert_called_with("case-files-audit")

    @pytest.mark.asyncio
    async def test_public_grant_only_touches_its_own_bucket(self):
        storage, client = _storage()
        storage.for_bucket("case-files-audit")
        client.storage.get_bucket.return_value = Mock(public=False)

        await storage.ensure_public_read()

        client.storage.update_bucket.assert_called_once_with("case-files", {"public": True})


class TestPublicUrl:

    def test_no_env_var_returns_url_unchanged(self):
        url = "http://host.docker.internal:54321/storage/v1/object/public/case-files/cases/1"
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("SUPABASE_PUBLIC_URL", None)
            assert _rewrite_public_url_host(url) == url

    def test_env_var_replaces_host_and_scheme(self):
        url = "http://host.docker.internal:54321/storage/v1/object/public/case-files/cases/1?x=1"
        with patch.dict(os.environ, {"SUPABASE_PUBLIC_URL": "https://proj.supabase.co"}):
            result = _rewrite_public_url_host(url)
        assert result == "https://proj.supabase.co/storage/v1/object/public/case-files/cases/1?x=1"

    def test_public_url_uses_bucket_helper(self):
        storage, client = _storage()
        client.storage.from_.return_value.get_public_url.return_value = "https://x.supabase.co/p"
        with patch.dict(os.environ, {"SUPABASE_PUBLIC_URL": ""}):
            assert storage.public_url("cases/1") == "https://x.supabase.co/p"
        client.storage.from_.return_value.get_public_url.assert_called_once_with("cases/1")


class TestCredentials:

    def test_missing_credentials_raise_value_error(self):
        with pytest.raises(ValueError, match="SUPABASE_SERVICE_KEY"):
            SupabaseCaseStorage.from_credentials("https://x.supabase.co", None, "case-files")

    def test_sanitize_object_name(self):
        assert sanitize_object_name("My Report (2024).pdf") == "My_Report__2024_.pdf"
