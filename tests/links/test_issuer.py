"""Tests for link issuance."""

from __future__ import annotations

import asyncio
import base64
import json
from datetime import timedelta
from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlsplit

from authlinker.config import Settings
from authlinker.db.models import STATUS_COVERED, STATUS_UNUSED
from authlinker.links.codecs import AsymmetricCodec, RotatingSubstitutionCodec
from authlinker.links.cooldown import CooldownGuard
from authlinker.links.errors import CooldownError, InvalidActionError, KeysNotLoadedError, StorageError
from authlinker.links.issuer import LinkIssuer
from authlinker.links.payload import decode_payload, to_epoch_millis
from authlinker.links.rsa_keys import RsaKeyStore
from authlinker.links.store import RecordStore
from authlinker.links.tokens import TOKEN_CHARSET, compute_link_hash
from tests.conftest import FakeClock


class TestIssueSuccess:
    async def test_issue_returns_link(self, issuer: LinkIssuer, store: RecordStore, clock: FakeClock) -> None:
        result = await issuer.issue("s1", "login")
        assert result.ok
        assert result.error is None
        issued = result.link
        assert issued is not None
        assert len(issued.token) == 12
        assert set(issued.token) <= set(TOKEN_CHARSET)
        assert issued.expires_at == clock() + timedelta(seconds=300)
        assert issued.superseded_id is None

        record = await store.get(issued.record_id)
        assert record is not None
        assert record.status == STATUS_UNUSED
        assert record.token == issued.token

    async def test_payload_and_hash_binding(
        self, issuer: LinkIssuer, obfuscation_codec: RotatingSubstitutionCodec, clock: FakeClock
    ) -> None:
        issued = (await issuer.issue("s1", "login")).link
        assert issued is not None
        raw = obfuscation_codec.decode(issued.data)
        payload = decode_payload(raw)
        assert payload.record_id == issued.record_id
        assert payload.subject_id == "s1"
        assert payload.action == "login"
        assert payload.expires_time == to_epoch_millis(clock() + timedelta(seconds=300))
        assert issued.hash == compute_link_hash(base64.b64encode(raw).decode(), issued.token, "abc123")

    async def test_wrapper_time_is_issue_time(self, issuer: LinkIssuer, clock: FakeClock) -> None:
        issued = (await issuer.issue("s1", "login")).link
        assert issued is not None
        assert json.loads(base64.b64decode(issued.data))["time"] == to_epoch_millis(clock())

    async def test_link_template_substitution(self, issuer: LinkIssuer) -> None:
        issued = (await issuer.issue("s1", "login")).link
        assert issued is not None
        query = parse_qs(urlsplit(issued.link).query)
        assert urlsplit(issued.link).netloc == "example.com"
        assert query["data"] == [issued.data]
        assert query["hash"] == [issued.hash]
        assert query["token"] == [issued.token]

    async def test_action_case_insensitive(self, issuer: LinkIssuer) -> None:
        result = await issuer.issue("s1", "  LOGIN ")
        assert result.ok

    async def test_independent_actions(self, issuer: LinkIssuer) -> None:
        assert (await issuer.issue("s1", "login")).ok
        assert (await issuer.issue("s1", "suffix")).ok


class TestIssueRejections:
    async def test_invalid_action(self, issuer: LinkIssuer, store: RecordStore) -> None:
        result = await issuer.issue("s1", "delete_everything")
        assert not result.ok
        assert isinstance(result.error, InvalidActionError)
        assert await store.last_issued_at("s1", "delete_everything") is None

    async def test_cooldown_within_window(self, issuer: LinkIssuer, clock: FakeClock) -> None:
        assert (await issuer.issue("s1", "login")).ok
        clock.advance(30)
        result = await issuer.issue("s1", "login")
        assert isinstance(result.error, CooldownError)
        assert result.error.remaining_seconds == 90

    async def test_burst_for_same_pair_issues_once(self, issuer: LinkIssuer, store: RecordStore) -> None:
        """Simultaneous requests for one pair get one link; the rest are cooling down."""
        results = await asyncio.gather(*(issuer.issue("s1", "login") for _ in range(5)))

        issued = [r.link for r in results if r.ok]
        assert len(issued) == 1
        rejected = [r.error for r in results if not r.ok]
        assert len(rejected) == 4
        assert all(isinstance(e, CooldownError) for e in rejected)
        assert issued[0].superseded_id is None  # type: ignore[union-attr]
        assert (await store.get(issued[0].record_id)).status == STATUS_UNUSED  # type: ignore[union-attr]

    async def test_issue_after_window_supersedes(self, issuer: LinkIssuer, store: RecordStore, clock: FakeClock) -> None:
        first = (await issuer.issue("s1", "login")).link
        assert first is not None
        clock.advance(121)
        second = (await issuer.issue("s1", "login")).link
        assert second is not None
        assert second.superseded_id == first.record_id
        assert (await store.get(first.record_id)).status == STATUS_COVERED  # type: ignore[union-attr]
        assert (await store.get(second.record_id)).status == STATUS_UNUSED  # type: ignore[union-attr]

    async def test_cold_cache_falls_back_to_store(
        self, settings: Settings, store: RecordStore, obfuscation_codec: RotatingSubstitutionCodec, clock: FakeClock
    ) -> None:
        """A fresh guard (e.g. after restart) still honours the window via issuance history."""
        first = LinkIssuer(settings, store, CooldownGuard(settings.cooldown, clock=clock), obfuscation_codec, clock=clock)
        assert (await first.issue("s1", "login")).ok

        clock.advance(10)
        restarted_guard = CooldownGuard(settings.cooldown, clock=clock)
        restarted = LinkIssuer(settings, store, restarted_guard, obfuscation_codec, clock=clock)
        result = await restarted.issue("s1", "login")
        assert isinstance(result.error, CooldownError)
        assert result.error.remaining_seconds == 110
        assert await restarted_guard.is_in_cooldown("s1", "login")

    async def test_rsa_without_keys(
        self, settings: Settings, store: RecordStore, guard: CooldownGuard, clock: FakeClock, tmp_path
    ) -> None:
        codec = AsymmetricCodec(RsaKeyStore(tmp_path / "no-keys"))
        issuer = LinkIssuer(settings, store, guard, codec, clock=clock)
        result = await issuer.issue("s1", "login")
        assert isinstance(result.error, KeysNotLoadedError)
        assert await store.last_issued_at("s1", "login") is None
        assert not await guard.is_in_cooldown("s1", "login")

    async def test_storage_failure_does_not_start_cooldown(
        self, settings: Settings, guard: CooldownGuard, obfuscation_codec: RotatingSubstitutionCodec, clock: FakeClock
    ) -> None:
        store = AsyncMock(spec=RecordStore)
        store.last_issued_at.return_value = None
        store.supersede_and_write.side_effect = StorageError("db down")
        issuer = LinkIssuer(settings, store, guard, obfuscation_codec, clock=clock)

        result = await issuer.issue("s1", "login")
        assert isinstance(result.error, StorageError)
        assert not await guard.is_in_cooldown("s1", "login")

    async def test_unexpected_error_becomes_storage_error(
        self, settings: Settings, guard: CooldownGuard, obfuscation_codec: RotatingSubstitutionCodec, clock: FakeClock
    ) -> None:
        store = AsyncMock(spec=RecordStore)
        store.last_issued_at.side_effect = RuntimeError("boom")
        issuer = LinkIssuer(settings, store, guard, obfuscation_codec, clock=clock)

        result = await issuer.issue("s1", "login")
        assert isinstance(result.error, StorageError)


class TestRsaIssuance:
    async def test_token_not_in_link(
        self, settings: Settings, store: RecordStore, guard: CooldownGuard, key_store: RsaKeyStore, clock: FakeClock
    ) -> None:
        issuer = LinkIssuer(settings, store, guard, AsymmetricCodec(key_store), clock=clock)
        issued = (await issuer.issue("s1", "login")).link
        assert issued is not None
        query = parse_qs(urlsplit(issued.link).query, keep_blank_values=True)
        assert query["token"] == [""]
        assert query["data"] == [issued.data]
        assert issued.token not in issued.link

        payload = decode_payload(key_store.decrypt(issued.data))
        assert payload.record_id == issued.record_id
