"""Shared fixtures for sync engine tests."""

from unittest.mock import AsyncMock, Mock

import pytest

from shared.models import ApiMessage
from services.zotero_library.client import LibraryClient
from services.zotero_sync.engine import SyncEngine
from services.zotero_sync.notifications import NotificationService
from services.zotero_sync.uploader import FileUploader


TEMPLATES = {
    "book": {
        "itemType": "book",
        "title": "",
        "creators": [],
        "publisher": "",
        "date": "",
        "tags": [],
        "collections": [],
        "relations": {}
    },
    "note": {
        "itemType": "note",
        "note": "",
        "tags": [],
        "collections": [],
        "relations": {}
    },
    "attachment": {
        "itemType": "attachment",
        "linkMode": "",
        "title": "",
        "accessDate": "",
        "contentType": "",
        "charset": "",
        "filename": "",
        "md5": None,
        "mtime": None,
        "tags": [],
        "relations": {}
    },
}


def fake_template(item_type, link_mode=None):
    template = dict(TEMPLATES[item_type])
    if link_mode:
        template["linkMode"] = link_mode
    return template


def batch_response(success=None, failed=None, unchanged=None, version=6):
    """Build the ApiMessage for a successful POST items call."""
    return ApiMessage(
        ok=True,
        status_code=200,
        data={
            "success": success or {},
            "unchanged": unchanged or {},
            "failed": failed or {}
        },
        version=version
    )


@pytest.fixture
def mock_library():
    """Mock Zotero library client."""
    library = Mock(spec=LibraryClient)
    library.path = Mock(side_effect=lambda path: f"/groups/1234/{path}")
    library.get_version = AsyncMock(return_value=5)
    library.get_template = AsyncMock(side_effect=fake_template)
    library.get_versions = AsyncMock(return_value={})
    library.get_modified_since = AsyncMock(return_value=[])
    library.post = AsyncMock()
    library.aclose = AsyncMock()
    return library


@pytest.fixture
def mock_uploader():
    """Mock file transfer."""
    uploader = Mock(spec=FileUploader)
    uploader.upload_file = AsyncMock(return_value=201)
    uploader.aclose = AsyncMock()
    return uploader


@pytest.fixture
def mock_notification_service():
    """Mock notification service."""
    service = Mock(spec=NotificationService)
    service.send_upload_failure_notification = AsyncMock()
    service.send_batch_rejected_notification = AsyncMock()
    return service


@pytest.fixture
def engine(mock_library, mock_uploader, mock_notification_service):
    """Create SyncEngine with mocked dependencies."""
    return SyncEngine(
        library=mock_library,
        uploader=mock_uploader,
        notification_service=mock_notification_service,
        poll_interval=0.01
    )


@pytest.fixture
def sample_file(tmp_path):
    """A small local file to attach."""
    path = tmp_path / "paper.pdf"
    path.write_bytes(b"%PDF-1.4 sample content")
    return str(path)
