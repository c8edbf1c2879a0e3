"""Wires the engine together for one run of the app."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Callable, Optional

import httpx

from vibes.auth import AuthState, TokenClient, TokenLifecycleManager
from vibes.backoff import RetryPolicy
from vibes.config import AppConfig, ClientCredentials
from vibes.credential_store import CredentialStore, KeyValueStoreSQLite
from vibes.dispatcher import EventDispatcher
from vibes.gateway import RemoteApiGateway
from vibes.playback_state import PlaybackStateMachine
from vibes.queue_prefetcher import QueuePrefetcher
from vibes.spotify_api import SpotifyApi

logger = logging.getLogger(__name__)


@dataclass
class Session:
    http: httpx.AsyncClient
    kv: KeyValueStoreSQLite
    tokens: TokenLifecycleManager
    api: SpotifyApi
    dispatcher: EventDispatcher

    async def close(self) -> None:
        await self.dispatcher.stop()
        await self.http.aclose()
        self.kv.close()
        logger.info("Session closed")


def build_session(
    config: AppConfig,
    credentials: ClientCredentials,
    *,
    open_url: Callable[[str], None],
    on_auth_state: Optional[Callable[[AuthState], None]] = None,
    db_path: Optional[Path] = None,
    reauth: bool = False,
    http: Optional[httpx.AsyncClient] = None,
) -> Session:
    """Create every component; nothing touches the network yet."""
    client = http or httpx.AsyncClient(timeout=config.request_timeout)
    policy = RetryPolicy(
        max_attempts=config.max_attempts,
        base=config.backoff_base,
        ceiling=config.backoff_ceiling,
    )
    kv = KeyValueStoreSQLite(db_path)
    store = CredentialStore(kv)
    if reauth:
        store.delete()
    tokens = TokenLifecycleManager(
        store,
        TokenClient(client, credentials),
        credentials,
        open_url=open_url,
        margin_seconds=config.token_margin_seconds,
        policy=policy,
        on_state_change=on_auth_state,
    )
    api = SpotifyApi(RemoteApiGateway(client, tokens, policy=policy))
    prefetcher = QueuePrefetcher(
        api, capacity=config.queue_capacity, low_water=config.queue_low_water
    )
    dispatcher = EventDispatcher(
        api,
        PlaybackStateMachine(),
        prefetcher,
        poll_interval=config.poll_interval,
        tick_interval=config.tick_interval,
    )
    logger.info("Session built (cache=%s)", kv.path)
    return Session(http=client, kv=kv, tokens=tokens, api=api, dispatcher=dispatcher)
