"""End-to-end API tests through FastAPI's TestClient on a throwaway SQLite file."""

import time
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.core.database import get_session_factory
from app.factory import build_services, create_app
from app.services.renderer import MockRenderer
from app.services.store import ChatStore


@pytest.fixture
def client(app_env):
    assistants = AsyncMock()
    assistants.upload_file.return_value = "file-123"

    app = create_app()
    app.state.assistants = assistants
    app.state.services = build_services(
        ChatStore(get_session_factory()), MockRenderer(processing_seconds=0), assistants,
    )
    app.state.services.responder.completer = AsyncMock(return_value="Hello from the avatar")

    with TestClient(app) as test_client:
        yield test_client


def wait_for_video(client, chat_id, timeout=3.0):
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/api/video-status/{chat_id}").json()
        if body["status"] != "generating" or time.monotonic() > deadline:
            return body
        time.sleep(0.05)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "service": "avatar-chat"}


def test_chat_with_video_completes_in_background(client):
    resp = client.post("/api/chat", json={"message": "Hello!", "session_id": "s1"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Hello from the avatar"
    assert body["used_rag"] is False
    assert body["sources"] == []
    assert body["video"]["status"] == "generating"
    assert body["video"]["id"].startswith("mock_video_")

    final = wait_for_video(client, body["chat_id"])
    assert final["status"] == "completed"
    assert final["video_url"]
    assert final["video_id"] == body["video"]["id"]


def test_chat_text_only(client):
    resp = client.post("/api/chat", json={"message": "Hello!", "use_video": False})

    assert resp.status_code == 200
    assert resp.json()["video"]["status"] == "text_only"
    status = client.get(f"/api/video-status/{resp.json()['chat_id']}").json()
    assert status == {"video_id": None, "video_url": None, "status": "text_only"}


def test_blank_message_rejected(client):
    resp = client.post("/api/chat", json={"message": "   "})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Message is required"


def test_unknown_chat_video_status_is_404(client):
    resp = client.get("/api/video-status/99999")

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Chat not found"


def test_recent_chats_listed(client):
    client.post("/api/chat", json={"message": "first", "use_video": False})
    client.post("/api/chat", json={"message": "second", "use_video": False})

    chats = client.get("/api/chats").json()

    assert [c["question"] for c in chats[:2]] == ["second", "first"]


def test_upload_rejects_unsupported_type(client):
    resp = client.post(
        "/api/upload",
        files={"file": ("photo.png", b"\x89PNG", "image/png")},
        data={"avatar_id": "avatar-1"},
    )

    assert resp.status_code == 400
    assert "Unsupported file type" in resp.json()["detail"]


def test_upload_rejects_empty_file(client):
    resp = client.post("/api/upload", files={"file": ("empty.txt", b"", "text/plain")})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Empty file"


def test_upload_is_ingested_into_knowledge_base(client):
    resp = client.post(
        "/api/upload",
        files={"file": ("faq.txt", b"Refunds within 30 days.", "text/plain")},
        data={"avatar_id": "avatar-1"},
    )

    assert resp.status_code == 200
    assert resp.json()["file"]["original_name"] == "faq.txt"

    kb = client.get("/api/knowledge-base/avatar-1").json()
    assert kb["total_files"] == 1
    assert kb["ready_files"] == 1
    assert kb["files"][0]["openai_file_id"] == "file-123"
    assert kb["vector_store"]["file_count"] == 1

    files = client.get("/api/files/avatar-1").json()
    assert [f["upload_status"] for f in files] == ["completed"]


def test_mock_avatars_listed(client):
    body = client.get("/api/heygen-avatars").json()

    assert body["count"] == 2
    assert body["message"].startswith("Using mock service")


def test_client_supplied_chat_record_is_saved(client):
    resp = client.post("/api/chats", json={
        "session_id": "s9",
        "avatar_id": "avatar-1",
        "question": "What's new?",
        "response": "Plenty.",
        "device_details": {"browser": "Firefox", "platform": "Linux", "screen": [1920, 1080]},
    })

    assert resp.status_code == 201
    saved = resp.json()
    assert saved["id"] > 0
    assert saved["question"] == "What's new?"
    assert saved["response"] == "Plenty."
    assert saved["video_status"] == "text_only"
    assert saved["device_details"] == {"browser": "Firefox", "platform": "Linux", "screen": [1920, 1080]}
    assert saved["created_at"] is not None

    listed = client.get("/api/chats").json()
    assert listed[0]["id"] == saved["id"]
    assert listed[0]["device_details"]["browser"] == "Firefox"


def test_chat_record_defaults_and_validation(client):
    saved = client.post("/api/chats", json={"question": "Hi"}).json()

    assert saved["session_id"] == "default"
    assert saved["avatar_id"] == "default"
    assert saved["device_details"] is None
    assert client.post("/api/chats", json={"response": "no question"}).status_code == 422


def test_error_bodies_carry_error_key_for_web_client(client):
    blank = client.post("/api/chat", json={"message": ""})
    missing = client.get("/api/video-status/31337")
    bad_type = client.post("/api/upload", files={"file": ("x.exe", b"MZ", "application/x-msdownload")})

    assert blank.json() == {"detail": "Message is required", "error": "Message is required"}
    assert missing.json()["error"] == "Chat not found"
    assert bad_type.json()["error"].startswith("Unsupported file type")
