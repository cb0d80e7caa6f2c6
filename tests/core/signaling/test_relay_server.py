import json

import pytest
import trio
from trio.testing import wait_all_tasks_blocked

from peerdrop.config import RelayClientConfig
from peerdrop.signaling.envelope import SignalEnvelope
from peerdrop.signaling.relay_client import SignalRelayClient
from peerdrop.signaling.relay_server import RelayServer
from peerdrop.tools.fakes import memory_websocket_pair


async def drain_messages(ws):
    messages = []
    while True:
        with trio.move_on_after(0.05):
            messages.append(await ws.get_message())
            continue
        return messages


@pytest.mark.trio
async def test_broadcast_skips_sender():
    server = RelayServer()
    clients = []

    async with trio.open_nursery() as nursery:
        for _ in range(3):
            client_end, server_end = memory_websocket_pair()
            clients.append(client_end)
            nursery.start_soon(server.handle_connection, server_end)
        await wait_all_tasks_blocked()
        assert server.connection_count == 3

        message = SignalEnvelope.offer("a", "b", "v=0").to_json()
        await clients[0].send_message(message)
        await wait_all_tasks_blocked()

        assert await drain_messages(clients[0]) == []
        for client in clients[1:]:
            received = await drain_messages(client)
            assert [json.loads(m) for m in received] == [json.loads(message)]

        for client in clients:
            await client.aclose()

    assert server.connection_count == 0


@pytest.mark.trio
async def test_non_json_messages_are_dropped():
    server = RelayServer()
    a_client, a_server = memory_websocket_pair()
    b_client, b_server = memory_websocket_pair()

    async with trio.open_nursery() as nursery:
        nursery.start_soon(server.handle_connection, a_server)
        nursery.start_soon(server.handle_connection, b_server)
        await wait_all_tasks_blocked()

        await a_client.send_message("definitely {not json")
        await a_client.send_message('{"hello": "world"}')
        await wait_all_tasks_blocked()

        assert [json.loads(m) for m in await drain_messages(b_client)] == [
            {"hello": "world"}
        ]
        await a_client.aclose()
        await b_client.aclose()


@pytest.mark.trio
async def test_broadcast_ignores_closed_clients():
    server = RelayServer()
    a_client, a_server = memory_websocket_pair()
    b_client, b_server = memory_websocket_pair()
    server.register(a_server)
    server.register(b_server)

    await b_client.aclose()
    delivered = await server.broadcast(a_server, '{"type": "offer"}')

    assert delivered == 0
    server.unregister(a_server)
    server.unregister(b_server)
    assert server.connection_count == 0



class StalledWebSocket:
    closed = None

    async def send_message(self, message):
        await trio.sleep_forever()


@pytest.mark.trio
async def test_stalled_client_does_not_block_others():
    server = RelayServer(send_timeout=0.05)
    a_client, a_server = memory_websocket_pair()
    b_client, b_server = memory_websocket_pair()
    server.register(a_server)
    server.register(StalledWebSocket())
    server.register(b_server)

    with trio.fail_after(1):
        delivered = await server.broadcast(a_server, '{"type": "offer"}')

    assert delivered == 1
    assert [json.loads(m) for m in await drain_messages(b_client)] == [
        {"type": "offer"}
    ]


@pytest.mark.trio
async def test_connection_ids_are_unique():
    server = RelayServer()
    first, _ = memory_websocket_pair()
    second, _ = memory_websocket_pair()

    assert server.register(first) != server.register(second)


@pytest.mark.trio
async def test_relay_over_localhost_websocket():
    server = RelayServer()
    async with trio.open_nursery() as nursery:
        ws_server = await nursery.start(server.serve, "127.0.0.1", 0)
        url = f"ws://127.0.0.1:{ws_server.port}/"

        alice = SignalRelayClient(RelayClientConfig(url=url))
        bob = SignalRelayClient(RelayClientConfig(url=url))
        await nursery.start(alice.run)
        await nursery.start(bob.run)

        offer = SignalEnvelope.offer("alice", "bob", "v=0\r\n")
        with trio.fail_after(5):
            while server.connection_count < 2:
                await trio.sleep(0.01)
            assert await alice.send(offer)
            async for envelope in bob.receive():
                assert envelope == offer
                break

        await alice.aclose()
        await bob.aclose()
        nursery.cancel_scope.cancel()
