"""Tests for wiring a session together."""

from __future__ import annotations

import asyncio
from pathlib import Path

from vibes.auth import AuthState
from vibes.config import AppConfig, ClientCredentials
from vibes.credential_store import CredentialStore, KeyValueStoreSQLite
from vibes.models import Credential
from vibes.session import build_session

CREDS = ClientCredentials("client", None, "http://127.0.0.1:8989/login")


def test_build_session_uses_config(tmp_path: Path) -> None:
    cfg = AppConfig(queue_capacity=20, queue_low_water=4, poll_interval=3.0)
    session = build_session(
        cfg, CREDS, open_url=lambda url: None, db_path=tmp_path / "cache.db"
    )
    try:
        assert session.kv.path == tmp_path / "cache.db"
        assert session.tokens.state is AuthState.UNAUTHENTICATED
        prefetcher = session.dispatcher._prefetcher
        assert prefetcher.capacity == 20
        assert prefetcher.low_water == 4
        assert session.dispatcher._poll_interval == 3.0
        assert not session.dispatcher.running
    finally:
        asyncio.run(session.close())


def test_reauth_forgets_cached_credential(tmp_path: Path) -> None:
    db_path = tmp_path / "cache.db"
    kv = KeyValueStoreSQLite(db_path)
    CredentialStore(kv).set(Credential("a", "r", expires_at=1e12))
    kv.close()

    session = build_session(
        AppConfig(), CREDS, open_url=lambda url: None, db_path=db_path, reauth=True
    )
    try:
        assert CredentialStore(session.kv).get() is None
    finally:
        asyncio.run(session.close())


def test_cached_credential_is_used_without_login(tmp_path: Path) -> None:
    db_path = tmp_path / "cache.db"
    kv = KeyValueStoreSQLite(db_path)
    CredentialStore(kv).set(Credential("a", "r", expires_at=1e12))
    kv.close()

    opened: list[str] = []
    session = build_session(AppConfig(), CREDS, open_url=opened.append, db_path=db_path)

    async def scenario() -> Credential:
        try:
            return await session.tokens.acquire()
        finally:
            await session.close()

    credential = asyncio.run(scenario())
    assert credential.access_token == "a"
    assert opened == []
