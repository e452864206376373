"""Wiring of the link components for one running process."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from authlinker.links.codecs import build_codec
from authlinker.links.cooldown import CooldownGuard, MemoryCooldownStore, RedisCooldownStore
from authlinker.links.issuer import LinkIssuer
from authlinker.links.rsa_keys import RsaKeyStore
from authlinker.links.store import RecordStore
from authlinker.links.verifier import LinkVerifier

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from authlinker.config import Settings
    from authlinker.links.codecs import Codec


@dataclass
class LinkService:
    settings: Settings
    key_store: RsaKeyStore
    codec: Codec
    store: RecordStore
    guard: CooldownGuard
    issuer: LinkIssuer
    verifier: LinkVerifier


def build_link_service(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis: Redis | None = None,
) -> LinkService:
    """Build every component from settings. Keys are loaded from disk if present."""
    key_store = RsaKeyStore(settings.key_dir)
    key_store.load()
    codec = build_codec(settings, key_store)

    if settings.cooldown_backend == "redis":
        if redis is None:
            msg = "cooldown_backend=redis requires a Redis client"
            raise RuntimeError(msg)
        cooldown_store = RedisCooldownStore(redis)
    else:
        cooldown_store = MemoryCooldownStore()

    store = RecordStore(session_factory)
    guard = CooldownGuard(settings.cooldown, cooldown_store)
    return LinkService(
        settings=settings,
        key_store=key_store,
        codec=codec,
        store=store,
        guard=guard,
        issuer=LinkIssuer(settings, store, guard, codec),
        verifier=LinkVerifier(store, codec, settings.salt),
    )
