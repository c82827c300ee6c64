"""Tests for the /api/edit Gemini proxy."""

import json

import pytest

from dressup.features.imaging.service import IMAGE_ONLY_SUFFIX, build_edit_payload, extract_inline_image

IMAGE_ANSWER = {
    "candidates": [
        {"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": "UkVTVUxU"}}]}}
    ]
}
TEXT_ANSWER = {"candidates": [{"content": {"parts": [{"text": "I cannot edit this image."}]}}]}


def test_edit_relays_upstream_answer_verbatim(client, gemini_responses, gemini_requests):
    gemini_responses.append((200, IMAGE_ANSWER))

    resp = client.post("/api/edit", json={"prompt": "add a hat", "image1": "data:image/jpeg;base64,QUJD"})

    assert resp.status_code == 200
    assert resp.json() == IMAGE_ANSWER

    sent = gemini_requests[0]
    assert sent.url.path.endswith("/models/gemini-2.0-flash-exp:generateContent")
    assert sent.headers["x-goog-api-key"] == "gemini-test-key"
    parts = json.loads(sent.content)["contents"][0]["parts"]
    assert parts[0]["text"] == "add a hat" + IMAGE_ONLY_SUFFIX
    assert parts[1] == {"inlineData": {"mimeType": "image/jpeg", "data": "QUJD"}}


def test_edit_accepts_aliases_and_second_image(client, gemini_responses, gemini_requests):
    gemini_responses.append((200, IMAGE_ANSWER))

    resp = client.post(
        "/api/edit",
        json={"instruction": "swap outfits", "base64Image1": "QUJD", "img2": "REVG", "mime2": "image/webp"},
    )

    assert resp.status_code == 200
    parts = json.loads(gemini_requests[0].content)["contents"][0]["parts"]
    assert parts[1]["inlineData"] == {"mimeType": "image/png", "data": "QUJD"}
    assert parts[2]["inlineData"] == {"mimeType": "image/webp", "data": "REVG"}


def test_edit_missing_fields_reports_received_keys(client, gemini_requests):
    resp = client.post("/api/edit", json={"prompt": "add a hat", "picture": "QUJD"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["gotKeys"] == ["picture", "prompt"]
    assert "hint" in body
    assert gemini_requests == []


def test_edit_without_image_part_is_500(client, gemini_responses):
    gemini_responses.append((200, TEXT_ANSWER))

    resp = client.post("/api/edit", json={"prompt": "x", "image1": "data:image/png;base64,AAAA"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["error"] == "No image in response"
    assert body["code"] == "no_image"
    assert body["text"] == "I cannot edit this image."


def test_edit_upstream_error_status_is_reported(client, gemini_responses):
    gemini_responses.append((429, {"error": {"message": "quota exceeded"}}))

    resp = client.post("/api/edit", json={"prompt": "add a hat", "image1": "QUJD"})

    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "upstream_error"
    assert body["status"] == 429
    assert "quota exceeded" in body["detail"]


def test_edit_passthrough_contents(client, gemini_responses, gemini_requests):
    gemini_responses.append((200, IMAGE_ANSWER))
    contents = [{"parts": [{"text": "raw"}]}]

    resp = client.post("/api/edit", json={"model": "models/custom-model", "contents": contents})

    assert resp.status_code == 200
    assert gemini_requests[0].url.path.endswith("/models/custom-model:generateContent")
    assert json.loads(gemini_requests[0].content) == {"contents": contents}


def test_edit_without_api_key(client, image_client):
    image_client.api_key = None
    resp = client.post("/api/edit", json={"prompt": "add a hat", "image1": "QUJD"})
    assert resp.status_code == 500
    assert resp.json()["error"] == "API key not configured"


@pytest.mark.parametrize(
    "payload",
    [None, {}, {"candidates": []}, {"candidates": [{"content": {"parts": [{"text": "hi"}]}}]}],
)
def test_extract_inline_image_without_image(payload):
    assert extract_inline_image(payload) is None


def test_build_edit_payload_data_url_mime_wins():
    _, payload = build_edit_payload(
        {"prompt": "p", "image1": "data:image/webp;base64,QUJD", "mime1": "image/png"}, "default-model"
    )
    assert payload["contents"][0]["parts"][1]["inlineData"]["mimeType"] == "image/webp"


def test_edit_wrongly_typed_field_is_400(client, gemini_requests):
    resp = client.post("/api/edit", json={"prompt": 123, "image1": "data:image/png;base64,AAAA"})

    assert resp.status_code == 400
    body = resp.json()
    assert body["code"] == "invalid_body"
    assert body["gotKeys"] == ["image1", "prompt"]
    assert "prompt" in body["fields"]
    assert gemini_requests == []
