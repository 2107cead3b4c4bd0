"""Tests for the object store cache and the image proxy."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
import requests
from botocore.exceptions import ClientError

from manga_tutor.core.errors import ForbiddenError, RemoteServiceError, ValidationError
from manga_tutor.storage.object_store import ObjectStore, StorageConfig, image_key
from manga_tutor.storage.proxy import ProxyConfig, fetch_proxied_image, proxy_path

SOURCE = "https://upload.dify.ai/files/abc.png"


def http_response(ok=True, status_code=200, content=b"\x89PNG", content_type="image/png"):
    response = MagicMock()
    response.ok = ok
    response.status_code = status_code
    response.content = content
    response.headers = {"content-type": content_type} if content_type else {}
    return response


@pytest.fixture
def storage_config():
    return StorageConfig(
        endpoint_url="https://account.r2.test",
        access_key_id="key",
        secret_access_key="secret",
        bucket="manga-images",
        public_base_url="https://images.test",
    )


def test_image_key_is_one_based():
    assert image_key("run-1", 0) == "mangas/run-1_1.png"
    assert image_key("run-1", 9) == "mangas/run-1_10.png"


class TestObjectStore:
    def test_disabled_without_credentials(self):
        store = ObjectStore(StorageConfig(endpoint_url="", access_key_id="", secret_access_key=""))

        assert store.enabled is False
        assert store.cache_image(SOURCE, "mangas/run_1.png") is None

    def test_builds_boto3_client_from_config(self, storage_config):
        with patch("manga_tutor.storage.object_store.boto3.client") as client_factory:
            store = ObjectStore(storage_config)

        assert store.enabled
        client_factory.assert_called_once_with(
            "s3",
            endpoint_url="https://account.r2.test",
            aws_access_key_id="key",
            aws_secret_access_key="secret",
            region_name=storage_config.region,
        )

    def test_cache_image_uploads_and_returns_public_url(self, storage_config):
        s3 = MagicMock()
        store = ObjectStore(storage_config, s3_client=s3)

        with patch("manga_tutor.storage.object_store.requests.get", return_value=http_response()):
            url = store.cache_image(SOURCE, "mangas/run-1_1.png")

        assert url == "https://images.test/mangas/run-1_1.png"
        s3.put_object.assert_called_once_with(
            Bucket="manga-images",
            Key="mangas/run-1_1.png",
            Body=b"\x89PNG",
            ContentType="image/png",
            CacheControl="max-age=3600",
        )
        assert store.get_statistics() == {"total_uploads": 1, "failed_uploads": 0}

    def test_public_url_without_public_base(self):
        config = StorageConfig(endpoint_url="https://s3.test", access_key_id="k", secret_access_key="s",
                               bucket="b", public_base_url="")
        store = ObjectStore(config, s3_client=MagicMock())

        assert store.public_url("mangas/x_1.png") == "https://s3.test/b/mangas/x_1.png"

    def test_fetch_failure_returns_none(self, storage_config):
        store = ObjectStore(storage_config, s3_client=MagicMock())

        with patch("manga_tutor.storage.object_store.requests.get", return_value=http_response(ok=False, status_code=403)):
            assert store.cache_image(SOURCE, "k") is None
        with patch("manga_tutor.storage.object_store.requests.get", side_effect=requests.exceptions.Timeout()):
            assert store.cache_image(SOURCE, "k") is None

        assert store.get_statistics()["failed_uploads"] == 2

    def test_upload_failure_returns_none(self, storage_config):
        s3 = MagicMock()
        s3.put_object.side_effect = ClientError({"Error": {"Code": "500", "Message": "down"}}, "PutObject")
        store = ObjectStore(storage_config, s3_client=s3)

        with patch("manga_tutor.storage.object_store.requests.get", return_value=http_response()):
            assert store.cache_image(SOURCE, "k") is None

    def test_statistics_are_exact_under_concurrent_uploads(self, storage_config):
        store = ObjectStore(storage_config, s3_client=MagicMock())
        keys = [image_key("run-1", index) for index in range(50)]

        with patch("manga_tutor.storage.object_store.requests.get", return_value=http_response()):
            with ThreadPoolExecutor(max_workers=8) as pool:
                urls = list(pool.map(lambda key: store.cache_image(SOURCE, key), keys))

        assert all(urls)
        assert store.get_statistics() == {"total_uploads": 50, "failed_uploads": 0}


class TestProxy:
    config = ProxyConfig(allowed_prefix="https://upload.dify.ai/", timeout_seconds=15)

    def test_proxy_path_encodes_url(self):
        assert proxy_path("https://upload.dify.ai/a b.png?sig=1") == (
            "/api/proxy-image?url=https%3A%2F%2Fupload.dify.ai%2Fa%20b.png%3Fsig%3D1"
        )

    def test_missing_url(self):
        with pytest.raises(ValidationError):
            fetch_proxied_image(None, self.config)

    def test_url_outside_allow_list(self):
        with patch("manga_tutor.storage.proxy.requests.get") as get:
            with pytest.raises(ForbiddenError):
                fetch_proxied_image("https://evil.test/x.png", self.config)
        get.assert_not_called()

    def test_passes_body_and_content_type(self):
        with patch("manga_tutor.storage.proxy.requests.get",
                   return_value=http_response(content=b"jpeg", content_type="image/jpeg")) as get:
            body, content_type = fetch_proxied_image(SOURCE, self.config)

        assert (body, content_type) == (b"jpeg", "image/jpeg")
        assert get.call_args.kwargs["timeout"] == 15

    def test_defaults_content_type(self):
        with patch("manga_tutor.storage.proxy.requests.get", return_value=http_response(content_type=None)):
            assert fetch_proxied_image(SOURCE, self.config)[1] == "image/png"

    def test_timeout_maps_to_504(self):
        with patch("manga_tutor.storage.proxy.requests.get", side_effect=requests.exceptions.Timeout()):
            with pytest.raises(RemoteServiceError) as exc_info:
                fetch_proxied_image(SOURCE, self.config)
        assert exc_info.value.status_code == 504

    def test_upstream_status_is_forwarded(self):
        with patch("manga_tutor.storage.proxy.requests.get", return_value=http_response(ok=False, status_code=404)):
            with pytest.raises(RemoteServiceError) as exc_info:
                fetch_proxied_image(SOURCE, self.config)
        assert exc_info.value.status_code == 404
