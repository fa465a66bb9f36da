"""
Tests for the traversal credential cache.
"""
import asyncio
from unittest.mock import MagicMock, patch

import pytest
import requests

from peerlink.core.exceptions import CredentialError
from peerlink.relay.credentials import CredentialCache, parse_credentials
from tests.fakes import wait_until

GOOD_PAYLOAD = [
    {'urls': 'stun:stun.example.net:3478'},
    {'urls': ['turn:turn.example.net:3478?transport=udp'], 'username': 'u', 'credential': 'p'},
]


class ScriptedFetcher:
    """Returns (or raises) the queued outcomes in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_parse_credentials_accepts_list_and_wrapped_forms():
    assert len(parse_credentials(GOOD_PAYLOAD)) == 2
    assert len(parse_credentials({'iceServers': GOOD_PAYLOAD})) == 2


@pytest.mark.parametrize('payload', [[], {}, 'nope', [{'urls': []}], [{'username': 'u'}], None])
def test_parse_credentials_rejects_malformed(payload):
    with pytest.raises(CredentialError):
        parse_credentials(payload)


async def test_current_is_empty_before_any_success():
    cache = CredentialCache('http://provider', fetcher=ScriptedFetcher(CredentialError("down")))
    assert cache.current().to_wire() == []

    assert not await cache.refresh()
    assert cache.current().to_wire() == []
    assert cache.current().generated_at is None


async def test_successful_refresh_replaces_snapshot():
    cache = CredentialCache('http://provider', fetcher=ScriptedFetcher(GOOD_PAYLOAD))

    assert await cache.refresh()

    snapshot = cache.current()
    assert snapshot.to_wire() == [
        {'urls': 'stun:stun.example.net:3478'},
        {'urls': 'turn:turn.example.net:3478?transport=udp', 'username': 'u', 'credential': 'p'},
    ]
    assert snapshot.generated_at is not None


@pytest.mark.parametrize('failure', [
    requests.exceptions.ConnectionError("unreachable"),
    requests.exceptions.Timeout("slow"),
    ValueError("bad json"),
    [],
    [{'urls': 42}],
    {'unexpected': True},
])
async def test_failed_refresh_keeps_previous_snapshot(failure):
    cache = CredentialCache('http://provider', fetcher=ScriptedFetcher(GOOD_PAYLOAD, failure))
    await cache.refresh()
    before = cache.current()

    assert not await cache.refresh()

    assert cache.current() is before
    assert len(cache.current()) == 2
    assert cache.stats['failed_refreshes'] == 1


async def test_no_provider_configured_keeps_empty_snapshot():
    cache = CredentialCache(None)
    assert not await cache.refresh()
    assert cache.current().to_wire() == []


async def test_provider_fetch_uses_requests_with_timeout():
    response = MagicMock()
    response.json.return_value = GOOD_PAYLOAD
    response.raise_for_status.return_value = None

    with patch('peerlink.relay.credentials.requests.get', return_value=response) as get:
        cache = CredentialCache('http://provider/creds', fetch_timeout=3)
        assert await cache.refresh()

    get.assert_called_once_with('http://provider/creds', timeout=3)
    assert len(cache.current()) == 2


async def test_provider_http_error_is_a_refresh_failure():
    response = MagicMock()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError("503")

    with patch('peerlink.relay.credentials.requests.get', return_value=response):
        cache = CredentialCache('http://provider/creds')
        assert not await cache.refresh()

    assert cache.stats['last_error'] == '503'


async def test_background_loop_refreshes_until_stopped():
    fetcher = ScriptedFetcher(*([GOOD_PAYLOAD] * 50))
    cache = CredentialCache('http://provider', refresh_interval=0.01, fetcher=fetcher)

    await cache.start()
    await asyncio.sleep(0.1)
    assert cache.get_status()['refresh_running']
    await cache.stop()

    calls = fetcher.calls
    assert calls >= 2
    await asyncio.sleep(0.05)
    assert fetcher.calls == calls
    assert not cache.get_status()['refresh_running']


async def test_readers_are_not_blocked_by_a_slow_fetch():
    release = asyncio.Event()

    async def slow_fetcher():
        await release.wait()
        return GOOD_PAYLOAD

    cache = CredentialCache('http://provider', fetcher=slow_fetcher)
    refresh = asyncio.create_task(cache.refresh())
    await asyncio.sleep(0)

    assert cache.current().to_wire() == []

    release.set()
    assert await refresh
    assert len(cache.current()) == 2


async def test_background_loop_survives_unexpected_fetch_errors():
    fetcher = ScriptedFetcher(GOOD_PAYLOAD, OSError("socket gone"), *([GOOD_PAYLOAD] * 50))
    cache = CredentialCache('http://provider', refresh_interval=0.01, fetcher=fetcher)

    await cache.start()
    await wait_until(lambda: fetcher.calls >= 4)
    status = cache.get_status()
    await cache.stop()

    assert status['refresh_running']
    assert status['failed_refreshes'] == 1
    assert status['last_error'] == 'socket gone'
    assert status['successful_refreshes'] >= 3
    assert len(cache.current()) == 2
