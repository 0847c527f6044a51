"""
Test /files endpoints
"""

import asyncio
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient
from starlette.background import BackgroundTask

from api.files.routes import _content_disposition, download_file
from core.config import get_settings
from core.storage import BlobStoreError
from tests.conftest import TEST_MAX_SIZE

FILES_URL = "/api/v1/files"


def post_file(client: TestClient, headers, content=b"hello", name="hello.txt", tag=None):
    data = {"tag": tag} if tag is not None else None
    return client.post(
        FILES_URL,
        files={"file": (name, content, "text/plain")},
        data=data,
        headers=headers,
    )


def test_health_check(client: TestClient):
    """Test that the health endpoint answers without authentication"""
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


class TestUploadRoute:
    """Test POST /api/v1/files"""

    def test_upload_file(self, client: TestClient, admin_headers):
        """Test that an upload returns the record and its signed url"""
        response = post_file(client, admin_headers, tag="latest")
        assert response.status_code == 201

        data = response.json()
        assert len(data["id"]) == 32
        assert data["name"] == "hello.txt"
        assert data["tag"] == "latest"
        assert data["size"] == 5
        assert data["mime_type"] == "text/plain"
        assert data["signature"]
        assert data["url"] == f"{FILES_URL}/{data['id']}?signature={data['signature']}"

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong-token"}, {"Authorization": "Basic abc"}],
    )
    def test_upload_requires_admin(self, client: TestClient, headers):
        """Test that uploads without the admin token are rejected with 401"""
        response = post_file(client, headers)
        assert response.status_code == 401
        assert response.json()["detail"] == "Unauthorized"

    def test_upload_without_file(self, client: TestClient, admin_headers):
        """Test that a form without a file part is a 400"""
        response = client.post(FILES_URL, data={"tag": "latest"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.json()["detail"] == "No file provided"

    def test_upload_too_large(self, client: TestClient, admin_headers):
        """Test that content over the blob size limit is a 413 and stores nothing"""
        response = post_file(client, admin_headers, content=b"a" * (TEST_MAX_SIZE + 1))
        assert response.status_code == 413
        assert response.json()["detail"] == "Request entity too large"

        listing = client.get(FILES_URL, headers=admin_headers)
        assert listing.json() == []

    def test_request_body_over_limit(self, client: TestClient, admin_headers, monkeypatch):
        """Test that a declared body over MAX_UPLOAD_SIZE is refused up front"""
        monkeypatch.setenv("MAX_UPLOAD_SIZE", "100")
        get_settings.cache_clear()

        response = post_file(client, admin_headers, content=b"a" * 200)
        assert response.status_code == 413
        assert response.json() == {"detail": "Request entity too large"}

    def test_upload_store_failure(self, client: TestClient, admin_headers, file_service):
        """Test that a blob store failure answers 500 Upload failed"""
        file_service.blob_store = Mock()
        file_service.blob_store.save.side_effect = BlobStoreError("disk full")

        response = post_file(client, admin_headers)
        assert response.status_code == 500
        assert response.json()["detail"] == "Upload failed"


class TestDownloadRoute:
    """Test GET /api/v1/files/{file_id}"""

    def test_download_file(self, client: TestClient, admin_headers):
        """Test that the signed url streams the content with file headers"""
        uploaded = post_file(client, admin_headers, content=b"file body").json()

        response = client.get(uploaded["url"])
        assert response.status_code == 200
        assert response.content == b"file body"
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["content-length"] == "9"
        assert response.headers["content-disposition"] == (
            "attachment; filename=\"hello.txt\"; filename*=UTF-8''hello.txt"
        )

    def test_download_needs_no_admin_token(self, client: TestClient, admin_headers):
        """Test that downloads are authorized by the signature alone"""
        uploaded = post_file(client, admin_headers).json()
        response = client.get(uploaded["url"], headers={"Authorization": "Bearer wrong"})
        assert response.status_code == 200

    @pytest.mark.parametrize(
        "query", ["", "?signature=", "?signature=bogus", "?signature=deadbeef"]
    )
    def test_download_bad_signature(self, client: TestClient, admin_headers, query):
        """Test that a bad signature is a 404 and no content is sent"""
        uploaded = post_file(client, admin_headers).json()

        response = client.get(f"{FILES_URL}/{uploaded['id']}{query}")
        assert response.status_code == 404
        assert response.json() == {"detail": "Download failed"}

    def test_download_unknown_file(self, client: TestClient, signer):
        """Test that a signed but unknown id is a 404"""
        response = client.get(f"{FILES_URL}/deadbeef?signature={signer.sign('deadbeef')}")
        assert response.status_code == 404
        assert response.json()["detail"] == "Download failed"

    def test_download_unknown_file_bad_signature(self, client: TestClient):
        """Test that an unknown id with a bad signature gets the same 404"""
        response = client.get(f"{FILES_URL}/deadbeef?signature=deadbeef")
        assert response.status_code == 404
        assert response.json()["detail"] == "Download failed"

    def test_download_expired_file(self, client: TestClient, admin_headers, clock):
        """Test that an expired file is a 404"""
        uploaded = post_file(client, admin_headers).json()
        clock.advance(hours=2)

        response = client.get(uploaded["url"])
        assert response.status_code == 404

    def test_download_store_failure(self, client: TestClient, admin_headers, file_service):
        """Test that a blob store failure answers 500 Download failed"""
        uploaded = post_file(client, admin_headers).json()
        file_service.blob_store = Mock()
        file_service.blob_store.open_read.side_effect = BlobStoreError("io error")

        response = client.get(uploaded["url"])
        assert response.status_code == 500
        assert response.json()["detail"] == "Download failed"

    def test_download_background_task_closes_blob(self, client: TestClient, admin_headers, file_service):
        """Test that the response's background task releases an unread blob"""
        uploaded = post_file(client, admin_headers).json()

        opened = []
        open_download = file_service.download

        def tracking_download(file_id, signature):
            download = open_download(file_id, signature)
            opened.append(download)
            return download

        file_service.download = tracking_download

        response = download_file(uploaded["id"], file_service, uploaded["signature"])
        download = opened[0]

        assert isinstance(response.background, BackgroundTask)
        assert not download.stream.closed

        # Run the task as the server would after a client disconnect
        asyncio.run(response.background())

        assert download.closed
        assert download.stream.closed


class TestDeleteRoute:
    """Test DELETE /api/v1/files/{file_id}"""

    def test_delete_file(self, client: TestClient, admin_headers):
        """Test that delete answers 204, kills the link, and can be repeated"""
        uploaded = post_file(client, admin_headers).json()

        response = client.delete(f"{FILES_URL}/{uploaded['id']}", headers=admin_headers)
        assert response.status_code == 204
        assert response.content == b""

        assert client.get(uploaded["url"]).status_code == 404

        # Deleting again still succeeds
        response = client.delete(f"{FILES_URL}/{uploaded['id']}", headers=admin_headers)
        assert response.status_code == 204

    def test_delete_requires_admin(self, client: TestClient, admin_headers):
        """Test that delete without the admin token is a 401 and keeps the file"""
        uploaded = post_file(client, admin_headers).json()

        response = client.delete(f"{FILES_URL}/{uploaded['id']}")
        assert response.status_code == 401
        assert client.get(uploaded["url"]).status_code == 200

    def test_delete_failure(self, client: TestClient, admin_headers, file_service):
        """Test that a blob store failure answers 500 Delete failed"""
        uploaded = post_file(client, admin_headers).json()
        file_service.blob_store = Mock()
        file_service.blob_store.delete.side_effect = BlobStoreError("io error")

        response = client.delete(f"{FILES_URL}/{uploaded['id']}", headers=admin_headers)
        assert response.status_code == 500
        assert response.json()["detail"] == "Delete failed"


class TestListRoute:
    """Test GET /api/v1/files"""

    def test_list_files(self, client: TestClient, admin_headers, clock):
        """Test that files are listed newest first without signatures"""
        first = post_file(client, admin_headers, name="a.txt").json()
        clock.advance(minutes=1)
        second = post_file(client, admin_headers, name="b.txt").json()

        response = client.get(FILES_URL, headers=admin_headers)
        assert response.status_code == 200

        data = response.json()
        assert [item["id"] for item in data] == [second["id"], first["id"]]
        assert "signature" not in data[0]
        assert "url" not in data[0]

    def test_list_files_requires_admin(self, client: TestClient):
        """Test that listing without the admin token is a 401"""
        response = client.get(FILES_URL)
        assert response.status_code == 401


class TestLatestRoute:
    """Test GET /api/v1/files/latest/{tag}"""

    def test_latest_redirects_to_newest(self, client: TestClient, admin_headers, clock):
        """Test that the tag alias redirects to the newest upload's signed url"""
        post_file(client, admin_headers, content=b"v1", tag="latest")
        clock.advance(minutes=1)
        newest = post_file(client, admin_headers, content=b"v2", tag="latest").json()

        response = client.get(f"{FILES_URL}/latest/latest", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == newest["url"]

        followed = client.get(f"{FILES_URL}/latest/latest")
        assert followed.status_code == 200
        assert followed.content == b"v2"

    def test_latest_unknown_tag(self, client: TestClient, admin_headers):
        """Test that an unknown tag is a 404"""
        post_file(client, admin_headers, tag="latest")

        response = client.get(f"{FILES_URL}/latest/nope", follow_redirects=False)
        assert response.status_code == 404
        assert response.json()["detail"] == "Failed to get latest file by tag"

    def test_latest_expired(self, client: TestClient, admin_headers, clock):
        """Test that a tag whose files all expired is a 404"""
        post_file(client, admin_headers, tag="latest")
        clock.advance(hours=2)

        response = client.get(f"{FILES_URL}/latest/latest", follow_redirects=False)
        assert response.status_code == 404


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("report.pdf", "attachment; filename=\"report.pdf\"; filename*=UTF-8''report.pdf"),
        (
            "my report.pdf",
            "attachment; filename=\"my report.pdf\"; filename*=UTF-8''my%20report.pdf",
        ),
        (
            "résumé.txt",
            "attachment; filename=\"r?sum?.txt\"; filename*=UTF-8''r%C3%A9sum%C3%A9.txt",
        ),
        (
            'say "hi".txt',
            "attachment; filename=\"say 'hi'.txt\"; filename*=UTF-8''say%20%22hi%22.txt",
        ),
    ],
)
def test_content_disposition(filename, expected):
    """Test the ASCII fallback and RFC 5987 filename* of Content-Disposition"""
    assert _content_disposition(filename) == expected
