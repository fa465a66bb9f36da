"""
Tests for relay message handling, both in-process and over real WebSockets.
"""
import asyncio
import json

import aiohttp
import pytest
from aiohttp.test_utils import TestServer

from peerlink.core.config import ServerConfig
from peerlink.relay.connection import Connection
from peerlink.relay.credentials import CredentialCache
from peerlink.relay.server import RelayServer
from tests.fakes import FakeWebSocket, wait_until

ICE = [{'urls': 'turn:turn.example.net:3478', 'username': 'u', 'credential': 'p'}]


async def static_credentials():
    return ICE


def make_config(**overrides) -> ServerConfig:
    settings = dict(host='127.0.0.1', port=0, credentials_url=None, room_capacity=2,
                    rate_limit_max_messages=5, rate_limit_window_seconds=60.0)
    settings.update(overrides)
    return ServerConfig(**settings)


@pytest.fixture
async def relay():
    cache = CredentialCache('http://provider', fetcher=static_credentials)
    await cache.refresh()
    return RelayServer(make_config(), credential_cache=cache)


def join(room_id='abc', role='host', name='Ann'):
    return json.dumps({'type': 'JOIN_ROOM', 'roomId': room_id, 'role': role, 'name': name})


async def test_join_replies_with_peer_id_and_credentials(relay):
    connection = Connection(FakeWebSocket())

    await relay.handle_message(connection, join())

    assert connection.websocket.messages == [
        {'type': 'ASSIGNED_PEER_ID', 'peerId': connection.peer_id, 'iceServers': ICE}
    ]


async def test_second_member_triggers_peer_joined_for_first(relay):
    host, client = Connection(FakeWebSocket()), Connection(FakeWebSocket())

    await relay.handle_message(host, join(role='host'))
    await relay.handle_message(client, join(role='client', name='Bob'))

    assert host.websocket.of_type('PEER_JOINED') == [{'type': 'PEER_JOINED', 'peerId': client.peer_id}]
    assert client.websocket.of_type('PEER_JOINED') == []
    assert [m['type'] for m in client.websocket.messages] == ['ASSIGNED_PEER_ID']


async def test_rejoining_same_room_does_not_announce_twice(relay):
    host, client = Connection(FakeWebSocket()), Connection(FakeWebSocket())
    await relay.handle_message(host, join(role='host'))
    await relay.handle_message(client, join(role='client'))
    peer_id = client.peer_id

    await relay.handle_message(client, join(room_id=' a b c ', role='client'))

    assert client.peer_id == peer_id
    assert [m['type'] for m in client.websocket.messages] == ['ASSIGNED_PEER_ID', 'ASSIGNED_PEER_ID']
    assert host.websocket.of_type('PEER_JOINED') == [{'type': 'PEER_JOINED', 'peerId': peer_id}]
    assert len(relay.registry.members('abc')) == 2


async def test_full_room_replies_room_full_only(relay):
    members = [Connection(FakeWebSocket()) for _ in range(3)]
    for member in members:
        await relay.handle_message(member, join())

    late = members[-1]
    assert late.websocket.messages == [{'type': 'ROOM_FULL'}]
    assert late.peer_id is None
    assert members[0].websocket.of_type('PEER_JOINED') == [{'type': 'PEER_JOINED', 'peerId': members[1].peer_id}]
    assert members[1].websocket.of_type('PEER_JOINED') == []
    assert len(relay.registry.members('abc')) == 2


async def test_invalid_room_and_garbage_are_dropped_silently(relay):
    connection = Connection(FakeWebSocket())

    await relay.handle_message(connection, join(room_id='!!!'))
    await relay.handle_message(connection, 'garbage')
    await relay.handle_message(connection, json.dumps({'type': 'ASSIGNED_PEER_ID', 'peerId': 'me'}))
    await relay.handle_message(connection, json.dumps({'type': 'OFFER', 'sdp': 'v=0'}))

    assert connection.websocket.frames == []
    assert relay.registry.get_room_count() == 0


async def test_relayed_messages_carry_server_assigned_sender_id(relay):
    host, client = Connection(FakeWebSocket()), Connection(FakeWebSocket())
    await relay.handle_message(host, join(role='host'))
    await relay.handle_message(client, join(role='client'))

    await relay.handle_message(host, json.dumps({'type': 'OFFER', 'peerId': 'spoofed', 'sdp': 'offer-sdp'}))
    await relay.handle_message(client, json.dumps({'type': 'ANSWER', 'peerId': host.peer_id, 'sdp': 'answer-sdp'}))
    await relay.handle_message(client, json.dumps({
        'type': 'ICE_CANDIDATE', 'peerId': host.peer_id, 'candidate': {'candidate': 'candidate:1'}
    }))

    assert client.websocket.of_type('OFFER') == [{'type': 'OFFER', 'peerId': host.peer_id, 'sdp': 'offer-sdp'}]
    assert host.websocket.of_type('ANSWER')[0]['peerId'] == client.peer_id
    assert host.websocket.of_type('ICE_CANDIDATE')[0]['peerId'] == client.peer_id
    assert host.websocket.of_type('OFFER') == []


async def test_excess_messages_in_window_are_dropped(relay):
    host, client = Connection(FakeWebSocket()), Connection(FakeWebSocket())
    await relay.handle_message(host, join(role='host'))
    await relay.handle_message(client, join(role='client'))

    # The join already used one of the host's five messages
    for n in range(10):
        await relay.handle_message(host, json.dumps({'type': 'ICE_CANDIDATE', 'candidate': {'n': n}}))

    received = client.websocket.of_type('ICE_CANDIDATE')
    assert [m['candidate']['n'] for m in received] == [0, 1, 2, 3]


class TestOverWebSockets:

    @pytest.fixture
    async def server(self):
        relay = RelayServer(make_config(rate_limit_max_messages=100),
                            credential_cache=CredentialCache(None))
        server = TestServer(relay.app)
        await server.start_server()
        yield server
        await server.close()

    async def test_status_and_plain_get(self, server):
        async with aiohttp.ClientSession() as session:
            async with session.get(server.make_url('/status')) as response:
                status = await response.json()
            async with session.get(server.make_url('/')) as response:
                body = await response.text()

        assert status['rooms']['rooms'] == 0
        assert status['credentials']['servers'] == 0
        assert 'relay' in body

    async def test_join_relay_and_disconnect(self, server):
        relay = server.app['relay']
        async with aiohttp.ClientSession() as session:
            host = await session.ws_connect(server.make_url('/'))
            client = await session.ws_connect(server.make_url('/'))

            await host.send_str(join(role='host'))
            assigned_host = await host.receive_json(timeout=2)
            await client.send_str(join(role='client'))
            assigned_client = await client.receive_json(timeout=2)

            assert assigned_host['type'] == 'ASSIGNED_PEER_ID'
            assert assigned_host['iceServers'] == []
            assert await host.receive_json(timeout=2) == {
                'type': 'PEER_JOINED', 'peerId': assigned_client['peerId']
            }

            await client.send_str(json.dumps({'type': 'ANSWER', 'peerId': 'x', 'sdp': 'a'}))
            answer = await host.receive_json(timeout=2)
            assert answer['peerId'] == assigned_client['peerId']

            await client.close()
            await wait_until(lambda: len(relay.registry.members('abc')) == 1)
            await host.close()
            await wait_until(lambda: relay.registry.get_room_count() == 0)

    async def test_binary_frames_are_handled_like_text(self, server):
        async with aiohttp.ClientSession() as session:
            ws = await session.ws_connect(server.make_url('/'))

            await ws.send_bytes(join(role='host').encode('utf-8'))
            assigned = await ws.receive_json(timeout=2)

            assert assigned['type'] == 'ASSIGNED_PEER_ID'
            assert server.app['relay'].registry.get_connection_count() == 1
            await ws.close()
