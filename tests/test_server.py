"""
Proxy Server Tests - routes, auth and error mapping with fake collaborators.

Run with:
    python -m pytest tests/test_server.py -v
"""

import base64
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import (
    OPERATION_NAME,
    VIDEO_URI,
    FakeGateway,
    FakePoller,
    FakeRetriever,
    failed,
    make_config,
    mock_http_client,
    running,
)
from core.errors import NoImageProduced, UpstreamDownloadFailed
from core.event_log import EventLog
from services.api import create_app
from services.auth import FirebaseAuthenticator
from services.image_generation import GeneratedImage, ImageModel, SafetyLevel, TextGenerationResult
from services.video_generation import AssetRetriever, GenerationGateway, OperationPoller, VeoClient

PNG = GeneratedImage(data=b"\x89PNG-image", mime_type="image/png")


def make_images():
    images = MagicMock()
    images.generate_image = AsyncMock(return_value=PNG)
    images.edit_image = AsyncMock(return_value=PNG)
    images.compose_image = AsyncMock(return_value=PNG)
    images.generate_text = AsyncMock(return_value=TextGenerationResult(
        text="Rain on the window", model="gemini-2.0-flash", prompt_tokens=5, total_tokens=12,
    ))
    return images


def make_client(environment="development", verify_token=None, **overrides) -> TestClient:
    config = make_config(environment)
    parts = dict(
        gateway=FakeGateway(),
        poller=FakePoller([running(10.0)]),
        retriever=FakeRetriever(),
        images=make_images(),
        authenticator=FirebaseAuthenticator(config=config, verify_token=verify_token),
        event_log=EventLog(max_entries=100),
    )
    parts.update(overrides)
    return TestClient(create_app(config, **parts))


class TestVideoRoutes:

    def test_health(self):
        with make_client() as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_generate_returns_operation_name(self):
        gateway = FakeGateway()
        with make_client(gateway=gateway) as client:
            response = client.post(
                "/api/veo/generate",
                data={"prompt": "a cat on a skateboard", "model": "veo-3.0-generate-001"},
            )

        assert response.status_code == 200
        assert response.json() == {"name": OPERATION_NAME}
        assert gateway.requests[0].prompt == "a cat on a skateboard"
        assert gateway.requests[0].image is None

    def test_generate_with_uploaded_image(self):
        gateway = FakeGateway()
        with make_client(gateway=gateway) as client:
            response = client.post(
                "/api/veo/generate",
                data={"prompt": "animate this", "aspectRatio": "9:16"},
                files={"imageFile": ("ref.png", b"png-bytes", "image/png")},
            )

        assert response.status_code == 200
        request = gateway.requests[0]
        assert request.image.data == b"png-bytes"
        assert request.image.mime_type == "image/png"
        assert request.aspect_ratio == "9:16"

    def test_empty_prompt_is_400_without_upstream_call(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"name": OPERATION_NAME})

        gateway = GenerationGateway(VeoClient(make_config(), http_client=mock_http_client(handler)))
        with make_client(gateway=gateway) as client:
            response = client.post("/api/veo/generate", data={"prompt": ""})

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_request"
        assert calls == []

    def test_quota_is_429_with_retry_after(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "30"},
                                  json={"error": {"code": 429, "message": "Quota exceeded"}})

        gateway = GenerationGateway(VeoClient(make_config(), http_client=mock_http_client(handler)))
        with make_client(gateway=gateway) as client:
            response = client.post("/api/veo/generate", data={"prompt": "a cat on a skateboard"})

        assert response.status_code == 429
        assert response.headers["retry-after"] == "30"
        body = response.json()
        assert body["code"] == "quota_exceeded"
        assert body["retry_after"] == 30.0
        assert "Wait for quota reset" in body["solutions"]

    def test_unknown_model_is_400(self):
        with make_client() as client:
            response = client.post("/api/veo/generate", data={"prompt": "x", "model": "veo-9"})
        assert response.status_code == 400

    def test_operation_failed_message_verbatim(self):
        poller = FakePoller([failed("Safety filter triggered")])
        with make_client(poller=poller) as client:
            response = client.post("/api/veo/operation", json={"name": OPERATION_NAME})

        assert response.status_code == 200
        assert response.json() == {
            "name": OPERATION_NAME,
            "status": "failed",
            "done": True,
            "error": "Safety filter triggered",
        }

    def test_operation_running(self):
        with make_client() as client:
            response = client.post("/api/veo/operation", json={"name": OPERATION_NAME})

        body = response.json()
        assert body["status"] == "running"
        assert body["done"] is False
        assert body["progress"] == 10.0

    def test_operation_requires_name(self):
        with make_client() as client:
            response = client.post("/api/veo/operation", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing operation name"

    def test_download_streams_video(self):
        retriever = FakeRetriever(data=b"mp4-bytes")
        with make_client(retriever=retriever) as client:
            response = client.post("/api/veo/download", json={"uri": VIDEO_URI})

        assert response.status_code == 200
        assert response.content == b"mp4-bytes"
        assert response.headers["content-type"].startswith("video/mp4")
        assert "veo3_video.mp4" in response.headers["content-disposition"]
        assert response.headers["cache-control"] == "no-store"
        assert retriever.uris == [VIDEO_URI]

    def test_download_accepts_file_object(self):
        retriever = FakeRetriever()
        with make_client(retriever=retriever) as client:
            client.post("/api/veo/download", json={"file": {"uri": VIDEO_URI}})
        assert retriever.uris == [VIDEO_URI]

    def test_download_failure_carries_upstream_status(self):
        retriever = FakeRetriever(error=UpstreamDownloadFailed(404, "File not found", reason="Not Found"))
        with make_client(retriever=retriever) as client:
            response = client.post("/api/veo/download", json={"uri": VIDEO_URI})

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "upstream_download_failed"
        assert body["upstream_status"] == 404
        assert body["details"] == "File not found"

    def test_download_requires_uri(self):
        with make_client() as client:
            response = client.post("/api/veo/download", json={})
        assert response.status_code == 400

    def test_download_refuses_foreign_host(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=b"leaked")

        veo = VeoClient(make_config(), http_client=mock_http_client(handler))
        with make_client(retriever=AssetRetriever(veo), poller=OperationPoller(veo)) as client:
            download = client.post("/api/veo/download", json={"uri": "https://attacker.example/collect"})
            operation = client.post("/api/veo/operation", json={"name": "https://attacker.example/op"})

        assert download.status_code == 400
        assert download.json()["code"] == "invalid_request"
        assert operation.status_code == 400
        assert calls == []


class TestAuth:

    @staticmethod
    def verify(token):
        if token != "valid-token":
            raise ValueError("Token signature mismatch")
        return {"uid": "user-1", "email": "user@example.com"}

    def test_missing_token_rejected_in_production(self):
        with make_client("production", verify_token=self.verify) as client:
            response = client.post("/api/veo/operation", json={"name": OPERATION_NAME})

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized: No token provided"

    def test_invalid_token_rejected(self):
        with make_client("production", verify_token=self.verify) as client:
            response = client.post(
                "/api/veo/operation",
                json={"name": OPERATION_NAME},
                headers={"Authorization": "Bearer forged"},
            )

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized: Invalid token"

    def test_valid_token_accepted(self):
        with make_client("production", verify_token=self.verify) as client:
            response = client.post(
                "/api/veo/operation",
                json={"name": OPERATION_NAME},
                headers={"Authorization": "Bearer valid-token"},
            )
        assert response.status_code == 200

    def test_dev_token_rejected_in_production(self):
        with make_client("production", verify_token=self.verify) as client:
            response = client.get("/api/models", headers={"Authorization": "Bearer dev-token"})
        assert response.status_code == 401

    def test_development_mode_allows_anonymous(self):
        with make_client("development") as client:
            response = client.get("/api/models")

        assert response.status_code == 200
        ids = [m["id"] for m in response.json()["video"]]
        assert "veo-3.0-generate-001" in ids

    def test_invalid_service_account_is_server_error(self, monkeypatch):
        def no_app(name):
            raise ValueError(f"The Firebase app named {name!r} does not exist")

        def bad_certificate(info):
            raise ValueError("Failed to initialize a certificate credential")

        monkeypatch.setattr("services.auth.firebase.firebase_admin.get_app", no_app)
        monkeypatch.setattr("services.auth.firebase.credentials.Certificate", bad_certificate)

        with make_client("production") as client:
            response = client.post(
                "/api/veo/operation",
                json={"name": OPERATION_NAME},
                headers={"Authorization": "Bearer valid-token"},
            )

        assert response.status_code == 500
        assert response.json()["code"] == "configuration_error"

    def test_health_is_public(self):
        with make_client("production", verify_token=self.verify) as client:
            assert client.get("/health").status_code == 200


class TestImageAndTextRoutes:

    def test_imagen_generate(self):
        images = make_images()
        with make_client(images=images) as client:
            response = client.post("/api/imagen/generate", json={"prompt": "a lighthouse"})

        assert response.status_code == 200
        image = response.json()["image"]
        assert base64.b64decode(image["imageBytes"]) == PNG.data
        assert image["mimeType"] == "image/png"
        images.generate_image.assert_awaited_once_with("a lighthouse", ImageModel.IMAGEN_4_FAST, "16:9")

    def test_gemini_generate_defaults_to_gemini_model(self):
        images = make_images()
        with make_client(images=images) as client:
            client.post("/api/gemini/generate", json={"prompt": "a lighthouse"})

        images.generate_image.assert_awaited_once_with("a lighthouse", ImageModel.GEMINI_FLASH_IMAGE_PREVIEW)

    def test_no_image_produced_is_502(self):
        images = make_images()
        images.generate_image = AsyncMock(side_effect=NoImageProduced("No image generated"))
        with make_client(images=images) as client:
            response = client.post("/api/gemini/generate", json={"prompt": "a lighthouse"})

        assert response.status_code == 502
        assert response.json()["code"] == "no_image_produced"

    def test_edit_single_image(self):
        images = make_images()
        with make_client(images=images) as client:
            response = client.post(
                "/api/gemini/edit",
                data={"prompt": "make it snow"},
                files={"imageFile": ("a.png", b"a-bytes", "image/png")},
            )

        assert response.status_code == 200
        images.edit_image.assert_awaited_once()
        images.compose_image.assert_not_awaited()

    def test_edit_base64_image(self):
        images = make_images()
        with make_client(images=images) as client:
            client.post(
                "/api/gemini/edit",
                data={"prompt": "make it snow", "imageBase64": base64.b64encode(b"raw").decode()},
            )

        edited = images.edit_image.await_args.args[1]
        assert edited.data == b"raw"

    def test_multiple_images_compose(self):
        images = make_images()
        with make_client(images=images) as client:
            response = client.post(
                "/api/gemini/edit",
                data={"prompt": "put the cat on the sofa"},
                files=[
                    ("imageFiles", ("cat.png", b"cat", "image/png")),
                    ("imageFiles", ("sofa.jpg", b"sofa", "image/jpeg")),
                ],
            )

        assert response.status_code == 200
        composed = images.compose_image.await_args.args[1]
        assert [img.data for img in composed] == [b"cat", b"sofa"]
        assert composed[1].mime_type == "image/jpeg"

    def test_edit_without_images_is_400(self):
        with make_client() as client:
            response = client.post("/api/gemini/edit", data={"prompt": "make it snow"})
        assert response.status_code == 400

    def test_text_generate(self):
        images = make_images()
        with make_client(images=images) as client:
            response = client.post(
                "/api/text/generate",
                json={"prompt": "Write a haiku about rain", "temperature": 0.5, "safetyLevel": "high"},
            )

        assert response.status_code == 200
        assert response.json() == {
            "response": "Rain on the window",
            "model": "gemini-2.0-flash",
            "usage": {"promptTokenCount": 5, "totalTokenCount": 12},
        }
        kwargs = images.generate_text.await_args.kwargs
        assert kwargs["temperature"] == 0.5
        assert kwargs["safety_level"] == SafetyLevel.HIGH

    def test_text_unknown_safety_level(self):
        with make_client() as client:
            response = client.post("/api/text/generate", json={"prompt": "hi", "safetyLevel": "extreme"})
        assert response.status_code == 400


class TestLogRoutes:

    def test_requests_are_logged(self):
        event_log = EventLog(max_entries=100)
        with make_client(event_log=event_log) as client:
            client.post("/api/veo/operation", json={})
            response = client.get("/api/logs", params={"service": "studio-api", "level": "error"})

        body = response.json()
        assert body["count"] >= 1
        assert any("/api/veo/operation - 400" in entry["action"] for entry in body["logs"])
        assert body["stats"]["errors"] >= 1

    def test_csv_export(self):
        with make_client() as client:
            client.get("/health")
            response = client.get("/api/logs", params={"format": "csv"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        assert response.text.splitlines()[0].startswith("Timestamp")

    def test_clear_logs(self):
        event_log = EventLog(max_entries=100)
        with make_client(event_log=event_log) as client:
            client.get("/health")
            response = client.delete("/api/logs")

        assert response.json() == {"message": "Logs cleared successfully"}
        assert not any("/health" in e.action for e in event_log.query())
