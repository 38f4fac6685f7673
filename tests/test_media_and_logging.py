import asyncio
import json
import logging

import httpx
import pytest

from concierge.logging_config import JSONFormatter, LoggerAdapter, get_logger, mask_phone
from concierge.schemas.jobs import MediaType
from concierge.services.media_service import normalize_media_type, store_media


class TestNormalizeMediaType:
    @pytest.mark.parametrize(
        "mime,expected",
        [
            ("image/jpeg", MediaType.IMAGE),
            ("audio/ogg; codecs=opus", MediaType.AUDIO),
            ("video/mp4", MediaType.VIDEO),
            ("application/pdf", MediaType.DOCUMENT),
            ("", MediaType.NONE),
            (None, MediaType.NONE),
        ],
    )
    def test_mapping(self, mime, expected):
        assert normalize_media_type(mime) == expected

    def test_labels_are_portuguese(self):
        assert MediaType.AUDIO.label == "mensagem de áudio"
        assert MediaType.IMAGE.label == "imagem"


class TestStoreMedia:
    def test_missing_url(self, tmp_path):
        result = asyncio.run(store_media(media_url="", salon_id="s", chat_id="c", message_id="MM1", storage_dir=str(tmp_path)))

        assert result == {"stored": False, "error": "missing_url"}

    def test_download_failure_is_reported(self, tmp_path, monkeypatch):
        def failing_client(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(lambda request: httpx.Response(404))
            return real_client(*args, **kwargs)

        real_client = httpx.AsyncClient
        monkeypatch.setattr("concierge.services.media_service.httpx.AsyncClient", failing_client)

        result = asyncio.run(
            store_media(
                media_url="https://api.twilio.com/media/ME1",
                salon_id="s",
                chat_id="c",
                message_id="MM1",
                storage_dir=str(tmp_path),
            )
        )

        assert result["stored"] is False
        assert result["error"].startswith("download_failed")
        assert not list((tmp_path / "s" / "c").iterdir())

    def test_stores_file(self, tmp_path, monkeypatch):
        def ok_client(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(lambda request: httpx.Response(200, content=b"\xff\xd8jpeg"))
            return real_client(*args, **kwargs)

        real_client = httpx.AsyncClient
        monkeypatch.setattr("concierge.services.media_service.httpx.AsyncClient", ok_client)

        result = asyncio.run(
            store_media(
                media_url="https://api.twilio.com/media/ME1",
                salon_id="s",
                chat_id="c",
                message_id="MM1",
                mime="image/jpeg",
                storage_dir=str(tmp_path),
            )
        )

        assert result["stored"] is True
        assert result["size_bytes"] == 6
        assert (tmp_path / "s" / "c").joinpath(result["path"].split("/")[-1]).read_bytes() == b"\xff\xd8jpeg"

    def test_too_large(self, tmp_path, monkeypatch):
        def big_client(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(lambda request: httpx.Response(200, content=b"x" * 100))
            return real_client(*args, **kwargs)

        real_client = httpx.AsyncClient
        monkeypatch.setattr("concierge.services.media_service.httpx.AsyncClient", big_client)

        result = asyncio.run(
            store_media(
                media_url="https://api.twilio.com/media/ME1",
                salon_id="s",
                chat_id="c",
                message_id="MM1",
                storage_dir=str(tmp_path),
                max_bytes=10,
            )
        )

        assert result == {"stored": False, "error": "too_large"}


class TestLogging:
    def test_mask_phone(self):
        assert mask_phone("whatsapp:+5511988887777") == "***7777"
        assert mask_phone(None) == ""

    def test_json_formatter_includes_context(self):
        record = logging.LogRecord("concierge.webhook", logging.INFO, __file__, 1, "Message enqueued", None, None)
        record.context = {"message_id": "MM001"}

        data = json.loads(JSONFormatter().format(record))

        assert data["message"] == "Message enqueued"
        assert data["context"] == {"message_id": "MM001"}
        assert data["logger"] == "concierge.webhook"

    def test_adapter_merges_context(self):
        adapter = LoggerAdapter(get_logger("test"), {"job_id": "j1"})

        _, kwargs = adapter.process("msg", {"context": {"attempt": 2}})

        assert kwargs["extra"] == {"context": {"job_id": "j1", "attempt": 2}}
