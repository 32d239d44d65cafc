"""Tests for TokenStore persistence and refresh-before-use."""

import json
import threading
from datetime import datetime, timedelta, timezone

import pytest

from mail_insight.credentials import TokenStore
from mail_insight.exceptions import AuthRequiredError


def _in(**kwargs):
    return datetime.now(timezone.utc) + timedelta(**kwargs)


def test_store_and_get(token_store):
    expires = _in(hours=1)
    token_store.store("gmail", "access-1", "refresh-1", expires)
    record = token_store.get("gmail")
    assert record.access_token == "access-1"
    assert record.refresh_token == "refresh-1"
    assert record.expires_at == expires


def test_get_missing_returns_none(token_store):
    assert token_store.get("outlook") is None


def test_store_replaces_whole_record(token_store):
    token_store.store("gmail", "a1", "r1", _in(hours=1))
    token_store.store("gmail", "a2", None, _in(hours=2))
    record = token_store.get("gmail")
    assert record.access_token == "a2"
    assert record.refresh_token is None


def test_records_survive_restart(tmp_path):
    directory = tmp_path / "creds"
    TokenStore(directory).store("outlook", "access", "refresh", _in(hours=1))

    reloaded = TokenStore(directory)
    assert reloaded.get("outlook").access_token == "access"
    data = json.loads((directory / "token_outlook.json").read_text())
    assert data["provider"] == "outlook"


def test_unreadable_file_is_skipped(tmp_path):
    directory = tmp_path / "creds"
    directory.mkdir()
    (directory / "token_gmail.json").write_text("{not json")
    assert TokenStore(directory).get("gmail") is None


def test_remove(token_store, tmp_path):
    token_store.store("gmail", "a", "r", _in(hours=1))
    assert token_store.remove("gmail") is True
    assert token_store.get("gmail") is None
    assert not (tmp_path / "credentials" / "token_gmail.json").exists()
    assert token_store.remove("gmail") is False


def test_list_all_is_a_snapshot(token_store):
    token_store.store("gmail", "a", "r", _in(hours=1))
    snapshot = token_store.list_all()
    token_store.store("outlook", "b", "r", _in(hours=1))
    assert list(snapshot) == ["gmail"]


class TestEnsureFresh:
    def test_missing_record_requires_auth(self, token_store, provider_factory):
        with pytest.raises(AuthRequiredError):
            token_store.ensure_fresh(provider_factory())

    def test_fresh_token_is_returned_without_refresh(self, token_store, provider_factory):
        provider = provider_factory()
        token_store.store("gmail", "access", "refresh", _in(hours=1))
        record = token_store.ensure_fresh(provider)
        assert record.access_token == "access"
        assert provider.refresh_calls == 0

    def test_near_expiry_triggers_refresh(self, token_store, provider_factory):
        provider = provider_factory()
        token_store.store("gmail", "old-access", "refresh", _in(minutes=2))
        record = token_store.ensure_fresh(provider)
        assert provider.refresh_calls == 1
        assert record.access_token == "refreshed-access"
        assert record.refresh_token == "refresh"
        assert not record.expires_within(300)

    def test_failed_refresh_requires_auth(self, token_store, provider_factory):
        provider = provider_factory(refresh_ok=False)
        token_store.store("gmail", "old-access", "refresh", _in(minutes=2))
        with pytest.raises(AuthRequiredError):
            token_store.ensure_fresh(provider)
        assert token_store.get("gmail").access_token == "old-access"

    def test_raising_refresh_requires_auth(self, token_store, provider_factory):
        provider = provider_factory()

        def boom(credential):
            raise ConnectionError("network down")

        provider.refresh = boom
        token_store.store("gmail", "old", "refresh", _in(minutes=-5))
        with pytest.raises(AuthRequiredError):
            token_store.ensure_fresh(provider)

    def test_concurrent_callers_refresh_once(self, token_store, provider_factory):
        provider = provider_factory()
        token_store.store("gmail", "old", "refresh", _in(minutes=1))
        results = []

        def worker():
            results.append(token_store.ensure_fresh(provider).access_token)

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == ["refreshed-access"] * 5
        assert provider.refresh_calls == 1
