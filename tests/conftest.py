import io

import pytest

from file_exchange.file_service import create_app

ADMIN_KEY = "s3cret"


@pytest.fixture
def files_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def app(files_dir):
    return create_app({
        "TESTING": True,
        "FILES_DIR": str(files_dir),
        "ADMIN_KEY": ADMIN_KEY,
        "MAX_UPLOAD_SIZE": 1024,
    })


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def storage(app):
    return app.extensions["file_exchange.storage"]


@pytest.fixture
def upload(client):
    def _upload(data=b"hello", filename="report.txt"):
        return client.post(
            "/api/upload",
            data={"file": (io.BytesIO(data), filename)},
            content_type="multipart/form-data",
        )
    return _upload
