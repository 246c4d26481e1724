from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

from ingestor.schemas.candidates import CandidatePayload, RawCandidate
from ingestor.services.extractor import (
    ExtractionError,
    HttpExtractor,
    StaticExtractor,
    candidate_from_payload,
)

CAPTURED_AT = datetime(2026, 1, 11, 20, 0, tzinfo=timezone.utc)


def test_candidate_id_and_author_come_from_permalink() -> None:
    payload = CandidatePayload.model_validate(
        {
            "text": "  渋谷店で在庫あり #ボンボンドロップ  ",
            "url": "https://x.com/shibuya_fan/status/1876543210?s=20",
            "postTime": "3分前",
            "images": [
                {"src": "https://pbs.example.jp/a.jpg", "alt": ""},
                {"src": "data:image/png;base64,AAAA"},
            ],
        }
    )

    candidate = candidate_from_payload(payload, index=0, captured_at=CAPTURED_AT)

    assert candidate.id == "1876543210"
    assert candidate.author_id == "shibuya_fan"
    assert candidate.text == "渋谷店で在庫あり #ボンボンドロップ"
    assert candidate.raw_time_text == "3分前"
    assert candidate.media == ["https://pbs.example.jp/a.jpg"]
    assert candidate.hashtags == {"#ボンボンドロップ"}
    assert candidate.captured_at == CAPTURED_AT


def test_missing_permalink_synthesizes_id_and_author() -> None:
    payload = CandidatePayload.model_validate({"text": "在庫あり"})

    candidate = candidate_from_payload(payload, index=4, captured_at=CAPTURED_AT)

    assert candidate.id == f"yahoo_{int(CAPTURED_AT.timestamp() * 1000)}_4"
    assert candidate.author_id == "unknown_4"
    assert candidate.author_synthesized is True
    assert candidate.permalink is None
    assert not candidate.has_source()


def test_explicit_fields_win_over_permalink() -> None:
    payload = CandidatePayload.model_validate(
        {
            "id": "given-id",
            "userId": "@given_author",
            "text": "在庫あり",
            "url": "https://x.com/other/status/1",
            "fetchedAt": "2026-01-11T19:00:00+00:00",
            "urls": ["https://shop.example.jp/item", "https://x.com/other/status/2", "javascript:void(0)"],
        }
    )

    candidate = candidate_from_payload(payload, index=0, captured_at=CAPTURED_AT)

    assert candidate.id == "given-id"
    assert candidate.author_id == "given_author"
    assert candidate.captured_at == datetime(2026, 1, 11, 19, 0, tzinfo=timezone.utc)
    assert candidate.links == ["https://shop.example.jp/item"]


def test_http_extractor_parses_sidecar_response() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/search"
        assert request.url.params["q"] == "ボンボンドロップ 入荷"
        return httpx.Response(
            status_code=200,
            json={
                "candidates": [
                    {"text": "在庫あり", "url": "https://x.com/a/status/1"},
                    {"text": 42, "url": ["not", "a", "url"]},
                    {"text": "売り切れ", "url": "https://twitter.com/b/status/2"},
                ]
            },
            request=request,
        )

    async def run() -> list:
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            extractor = HttpExtractor("http://scraper.local/", client=client)
            return await extractor.fetch_candidates("ボンボンドロップ 入荷")

    candidates = asyncio.run(run())

    assert [candidate.id for candidate in candidates] == ["1", "2"]
    assert [candidate.author_id for candidate in candidates] == ["a", "b"]


def test_http_extractor_wraps_upstream_errors() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=503, request=request)

    async def run() -> None:
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            await HttpExtractor("http://scraper.local", client=client).fetch_candidates("q")

    with pytest.raises(ExtractionError):
        asyncio.run(run())


def test_http_extractor_uses_configured_timeout(monkeypatch) -> None:
    captured: dict[str, object] = {}

    class FakeAsyncClient:
        async def __aenter__(self) -> "FakeAsyncClient":
            return self

        async def __aexit__(self, exc_type, exc, tb) -> None:
            return None

        async def get(self, url: str, params: dict[str, str]) -> httpx.Response:
            request = httpx.Request("GET", url, params=params)
            return httpx.Response(status_code=200, json=[], request=request)

    def fake_async_client(*args: object, **kwargs: object) -> FakeAsyncClient:
        captured.update(kwargs)
        return FakeAsyncClient()

    monkeypatch.setattr(httpx, "AsyncClient", fake_async_client)
    result = asyncio.run(HttpExtractor("http://scraper.local", timeout_seconds=7.5).fetch_candidates("q"))

    assert captured["timeout"] == 7.5
    assert result == []


def test_static_extractor_replays_file(tmp_path: Path) -> None:
    path = tmp_path / "candidates.json"
    path.write_text(
        json.dumps({"q": [{"text": "在庫あり", "url": "https://x.com/a/status/1"}]}, ensure_ascii=False),
        encoding="utf-8",
    )

    extractor = StaticExtractor.from_file(path)

    assert [candidate.id for candidate in asyncio.run(extractor.fetch_candidates("q"))] == ["1"]
    assert asyncio.run(extractor.fetch_candidates("unknown")) == []


def test_static_extractor_rejects_non_object_file(tmp_path: Path) -> None:
    path = tmp_path / "candidates.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ExtractionError):
        StaticExtractor.from_file(path)


def test_static_extractor_converts_mixed_items_one_by_one() -> None:
    ready = RawCandidate(id="9", author_id="a", text="既製", permalink="https://x.com/a/status/9", captured_at=CAPTURED_AT)
    extractor = StaticExtractor(
        {"q": [ready, {"text": "在庫あり", "url": "https://x.com/b/status/10"}]},
        captured_at=CAPTURED_AT,
    )

    candidates = asyncio.run(extractor.fetch_candidates("q"))

    assert [candidate.id for candidate in candidates] == ["9", "10"]
    assert candidates[0] is ready
    assert candidates[1].author_id == "b"
    assert candidates[1].author_synthesized is False
