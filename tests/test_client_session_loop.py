"""Tests for transcription client aiohttp session loop affinity handling."""

from __future__ import annotations

import asyncio

import pytest

pytest.importorskip("aiohttp")

from whisper_docker.client import TranscriptionClient

from conftest import StaticService


class _DummySession:
    instances: list["_DummySession"] = []

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.closed = False
        _DummySession.instances.append(self)

    async def close(self) -> None:
        self.closed = True


def test_get_session_reuses_session_within_same_event_loop(monkeypatch) -> None:
    _DummySession.instances.clear()
    monkeypatch.setattr(
        "whisper_docker.client.aiohttp.ClientSession",
        _DummySession,
    )

    client = TranscriptionClient(StaticService())

    async def _run() -> tuple[_DummySession, _DummySession]:
        first = await client._get_session()
        second = await client._get_session()
        return first, second

    first, second = asyncio.run(_run())
    assert first is second
    assert len(_DummySession.instances) == 1
    assert "timeout" in first.kwargs
    assert first.kwargs["headers"]["Accept"] == "application/json"

    asyncio.run(client.close())


def test_get_session_recreates_session_when_event_loop_changes(monkeypatch) -> None:
    _DummySession.instances.clear()
    monkeypatch.setattr(
        "whisper_docker.client.aiohttp.ClientSession",
        _DummySession,
    )

    client = TranscriptionClient(StaticService())

    first = asyncio.run(client._get_session())
    second = asyncio.run(client._get_session())

    assert first is not second
    assert first.closed is True
    assert len(_DummySession.instances) == 2

    asyncio.run(client.close())
    assert second.closed is True
