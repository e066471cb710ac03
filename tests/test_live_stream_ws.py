"""
tests.test_live_stream_ws
~~~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 端点集成测试：通过 TestClient 建立真实连接，验证人数广播、
聊天转发与持久化、断线清理以及聊天限流。
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.core.config import settings


def join(stream_key: str) -> dict:
    return {"event": "join-stream", "data": stream_key}


def leave(stream_key: str) -> dict:
    return {"event": "leave-stream", "data": stream_key}


def chat(stream_key: str, username: str, message: str) -> dict:
    return {
        "event": "chat-message",
        "data": {"streamKey": stream_key, "username": username, "message": message},
    }


def viewer_count(stream_key: str, viewers: int, peak: int) -> dict:
    return {
        "event": "viewer-count",
        "data": {"streamKey": stream_key, "viewers": viewers, "peakViewers": peak},
    }


@pytest.fixture()
def mock_repo() -> MagicMock:
    repo = MagicMock()
    repo.save_message = AsyncMock()
    return repo


def test_viewers_chat_and_disconnect(app_factory, mock_repo) -> None:
    """两个观众进入同一直播流、聊天，其中一个断线后人数回落。"""
    with TestClient(app_factory(repo=mock_repo)) as client:
        with client.websocket_connect("/ws") as viewer_a:
            viewer_a.send_json(join("stream"))
            assert viewer_a.receive_json() == viewer_count("stream", 1, 1)

            with client.websocket_connect("/ws") as viewer_b:
                viewer_b.send_json(join("stream"))
                assert viewer_a.receive_json() == viewer_count("stream", 2, 2)
                assert viewer_b.receive_json() == viewer_count("stream", 2, 2)

                viewer_b.send_json(chat("stream", "bob", "  hello  "))
                frame_a = viewer_a.receive_json()
                frame_b = viewer_b.receive_json()

                assert frame_a == frame_b
                assert frame_a["event"] == "chat-message"
                assert frame_a["data"]["username"] == "bob"
                assert frame_a["data"]["message"] == "hello"
                assert isinstance(frame_a["data"]["timestamp"], int)

            # viewer_b 断线（未显式 leave）
            assert viewer_a.receive_json() == viewer_count("stream", 1, 2)

    mock_repo.save_message.assert_awaited_once()
    saved = mock_repo.save_message.call_args.args[0]
    assert saved.stream_key == "stream"
    assert saved.message == "hello"


def test_malformed_frames_do_not_break_session(app_factory, mock_repo) -> None:
    with TestClient(app_factory(repo=mock_repo)) as client:
        with client.websocket_connect("/ws") as viewer:
            viewer.send_text("definitely not json")
            viewer.send_json({"event": "unknown-event", "data": 1})
            viewer.send_json(chat("stream", "alice", "   "))
            viewer.send_json(join("stream"))

            assert viewer.receive_json() == viewer_count("stream", 1, 1)

    mock_repo.save_message.assert_not_called()


def test_leave_stream_stops_delivery(app_factory, mock_repo) -> None:
    with TestClient(app_factory(repo=mock_repo)) as client:
        with client.websocket_connect("/ws") as viewer_a, client.websocket_connect("/ws") as viewer_b:
            viewer_a.send_json(join("stream"))
            assert viewer_a.receive_json() == viewer_count("stream", 1, 1)
            viewer_b.send_json(join("stream"))
            assert viewer_a.receive_json() == viewer_count("stream", 2, 2)
            assert viewer_b.receive_json() == viewer_count("stream", 2, 2)

            viewer_b.send_json(leave("stream"))
            assert viewer_a.receive_json() == viewer_count("stream", 1, 2)

            viewer_a.send_json(chat("stream", "alice", "still here?"))
            assert viewer_a.receive_json()["data"]["message"] == "still here?"

            # viewer_b 之后收到的第一帧应来自重新进入，而不是 viewer_a 的聊天
            viewer_b.send_json(join("stream"))
            assert viewer_b.receive_json() == viewer_count("stream", 2, 2)


def test_chat_rate_limit_drops_fast_messages(app_factory, mock_repo, monkeypatch) -> None:
    monkeypatch.setattr(settings, "WS_RATE_LIMIT_INTERVAL", 10.0)

    with TestClient(app_factory(repo=mock_repo)) as client:
        with client.websocket_connect("/ws") as viewer:
            viewer.send_json(join("s1"))
            assert viewer.receive_json() == viewer_count("s1", 1, 1)

            viewer.send_json(chat("s1", "spammer", "one"))
            viewer.send_json(chat("s1", "spammer", "two"))
            viewer.send_json(leave("s1"))

            assert viewer.receive_json()["data"]["message"] == "one"
            # 第二条被限流丢弃；离开后的人数广播不会发给自己，重新进入后的下一帧应为人数
            viewer.send_json(join("s1"))
            assert viewer.receive_json() == viewer_count("s1", 1, 1)

    assert mock_repo.save_message.await_count == 1
