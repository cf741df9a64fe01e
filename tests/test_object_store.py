"""Tests for the document/object store."""
from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.exceptions import ClientError

from maisoku_app.services.object_store import (
    InMemoryObjectStore,
    ObjectStoreError,
    S3ObjectStore,
    mock_url,
)


class TestS3ObjectStore:

    def test_put_uploads_public_object(self):
        client = MagicMock()
        store = S3ObjectStore(bucket="flyers", client=client, public_base_url="https://cdn.example.com/")

        url = store.put("s1/a.pdf", b"%PDF", content_type="application/pdf")

        assert url == "https://cdn.example.com/s1/a.pdf"
        client.put_object.assert_called_once_with(
            Bucket="flyers", Key="s1/a.pdf", Body=b"%PDF",
            ContentType="application/pdf", ACL="public-read"
        )

    def test_upload_failure_returns_placeholder(self):
        client = MagicMock()
        client.put_object.side_effect = ClientError({'Error': {'Code': 'AccessDenied'}}, 'PutObject')
        store = S3ObjectStore(bucket="flyers", client=client, mock_base_url="https://example.com")
        assert store.put("s1/a.pdf", b"x") == "https://example.com/mock-s1/a.pdf"

    def test_unconfigured_store_returns_placeholder(self, monkeypatch):
        monkeypatch.setattr('maisoku_app.services.object_store.Config.S3_BUCKET', None)
        store = S3ObjectStore(mock_base_url="https://example.com/")
        assert store.put("s1/images/a_page_1.png", b"x") == "https://example.com/mock-s1/images/a_page_1.png"

    def test_get_download_failure(self):
        store = S3ObjectStore(bucket="flyers", client=MagicMock())
        with patch('maisoku_app.services.object_store.requests.get',
                   side_effect=requests.ConnectionError("down")):
            with pytest.raises(ObjectStoreError):
                store.get("https://cdn.example.com/s1/a.pdf")


class TestInMemoryObjectStore:

    def test_put_then_get(self):
        store = InMemoryObjectStore()
        url = store.put("s1/a.pdf", b"data", content_type="application/pdf")
        assert url == "memory://s1/a.pdf"
        assert store.get(url) == b"data"
        assert store.content_types[url] == "application/pdf"

    def test_missing_object(self):
        with pytest.raises(ObjectStoreError):
            InMemoryObjectStore().get("memory://nothing")


def test_mock_url():
    assert mock_url("s1/a.pdf", "https://example.com/") == "https://example.com/mock-s1/a.pdf"
