"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from authlinker.config import Settings
from authlinker.database import get_engine
from authlinker.db.base import Base
from authlinker.links.codecs import RotatingSubstitutionCodec
from authlinker.links.cooldown import CooldownGuard
from authlinker.links.issuer import LinkIssuer
from authlinker.links.rsa_keys import RsaKeyStore
from authlinker.links.store import RecordStore
from authlinker.links.verifier import LinkVerifier
from authlinker.main import create_app


class FakeClock:
    """Mutable UTC clock shared by the components under test."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a throwaway SQLite database and key directory."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'authlinker.db'}",
        key_dir=str(tmp_path / "keys"),
        log_format="console",
        cooldown=120,
        expired_time=300,
        cooldown_sweep_interval_seconds=3600,
    )


@pytest_asyncio.fixture
async def session_factory(settings: Settings) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a freshly created schema."""
    engine = create_async_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession], clock: FakeClock) -> RecordStore:
    return RecordStore(session_factory, clock=clock)


@pytest.fixture
def guard(settings: Settings, clock: FakeClock) -> CooldownGuard:
    return CooldownGuard(settings.cooldown, clock=clock)


@pytest.fixture
def obfuscation_codec(settings: Settings) -> RotatingSubstitutionCodec:
    return RotatingSubstitutionCodec(
        shift=settings.base64_shift,
        table=settings.base64_obfuscation_table,
        rotation_period=settings.rotation_timestamp,
    )


@pytest.fixture(scope="session")
def rsa_key_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """One generated keypair reused across the session; generation is slow."""
    key_dir = tmp_path_factory.mktemp("rsa_keys")
    RsaKeyStore(key_dir).generate()
    return key_dir


@pytest.fixture
def key_store(rsa_key_dir: Path) -> RsaKeyStore:
    ks = RsaKeyStore(rsa_key_dir)
    assert ks.load()
    return ks


@pytest.fixture
def issuer(
    settings: Settings,
    store: RecordStore,
    guard: CooldownGuard,
    obfuscation_codec: RotatingSubstitutionCodec,
    clock: FakeClock,
) -> LinkIssuer:
    return LinkIssuer(settings, store, guard, obfuscation_codec, clock=clock)


@pytest.fixture
def verifier(
    settings: Settings,
    store: RecordStore,
    obfuscation_codec: RotatingSubstitutionCodec,
    clock: FakeClock,
) -> LinkVerifier:
    return LinkVerifier(store, obfuscation_codec, settings.salt, clock=clock)


@pytest_asyncio.fixture
async def app_factory() -> AsyncGenerator[Callable[[Settings], Awaitable[FastAPI]], None]:
    """Create apps with the given settings and run their startup; shutdown runs at teardown."""
    lifespans = []

    async def _make(app_settings: Settings) -> FastAPI:
        app = create_app(app_settings)
        lifespan = app.router.lifespan_context(app)
        await lifespan.__aenter__()
        lifespans.append(lifespan)
        async with get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        return app

    yield _make

    for lifespan in reversed(lifespans):
        await lifespan.__aexit__(None, None, None)


@pytest_asyncio.fixture
async def app_client_factory(
    app_factory: Callable[[Settings], Awaitable[FastAPI]],
) -> AsyncGenerator[Callable[[Settings], Awaitable[AsyncClient]], None]:
    """Build an HTTP client over a started app for the given settings."""
    clients: list[AsyncClient] = []

    async def _make(app_settings: Settings) -> AsyncClient:
        app = await app_factory(app_settings)
        ac = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(ac)
        return ac

    yield _make

    for ac in clients:
        await ac.aclose()


@pytest_asyncio.fixture
async def app(settings: Settings, app_factory: Callable[[Settings], Awaitable[FastAPI]]) -> FastAPI:
    return await app_factory(settings)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client with full app lifecycle."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
