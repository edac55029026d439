import asyncio

import pytest

from deriv_signals.errors import ProtocolError, TransportError, TransportTimeout
from deriv_signals.infrastructure.deriv.deriv_ws_client import (
    ConnectionState,
    DerivWSClient,
    MessageRouter,
    decode_frame,
)
from fakes import FakeSocket, echo_responder, make_connector, sleep_recorder


async def wait_for(pred, timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not pred():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


def make_client(connector, sleeps=None, **kwargs) -> DerivWSClient:
    return DerivWSClient(
        "wss://example.test/websockets/v3",
        "1089",
        connector=connector,
        sleep=sleep_recorder(sleeps if sleeps is not None else []),
        **kwargs,
    )


def test_backoff_doubles_and_caps() -> None:
    client = DerivWSClient("wss://x", "1089")
    assert [client.backoff_delay(i) for i in range(7)] == [1, 2, 4, 8, 16, 30, 30]


def test_decode_frame_rejects_garbage() -> None:
    assert decode_frame(b'{"msg_type": "tick"}') == {"msg_type": "tick"}
    with pytest.raises(ProtocolError):
        decode_frame("not json{")
    with pytest.raises(ProtocolError):
        decode_frame("[1, 2, 3]")


def test_router_resolves_each_req_id_once() -> None:
    async def scenario():
        router = MessageRouter()
        fut = router.register(7)
        first = router.resolve(7, {"req_id": 7})
        second = router.resolve(7, {"req_id": 7})
        unknown = router.resolve(99, {"req_id": 99})
        return fut.result(), first, second, unknown, len(router)

    result, first, second, unknown, pending = asyncio.run(scenario())
    assert result == {"req_id": 7}
    assert (first, second, unknown) == (True, False, False)
    assert pending == 0


def test_refused_connections_back_off_then_error() -> None:
    async def scenario():
        sleeps = []
        connector = make_connector([OSError("refused")] * 10)
        client = make_client(connector, sleeps)
        states = []
        client.on_state_change(states.append)
        with pytest.raises(TransportError) as exc:
            await client.connect(timeout=2)
        final = client.state
        await client.stop()
        return sleeps, connector.calls, states, final, exc.value

    sleeps, calls, states, final, err = asyncio.run(scenario())
    assert sleeps == [1, 2, 4, 8, 16]
    assert len(calls) == 6
    assert final is ConnectionState.ERROR
    assert not isinstance(err, TransportTimeout)
    assert states[0] is ConnectionState.CONNECTING
    assert ConnectionState.ERROR in states


def test_flapping_connection_keeps_growing_delay() -> None:
    async def scenario():
        sockets = []
        for _ in range(5):
            s = FakeSocket(echo_responder())
            s.drop()
            sockets.append(s)
        sleeps = []
        client = make_client(make_connector(sockets), sleeps, max_reconnect_attempts=4)
        await client.start()
        await wait_for(lambda: client.state is ConnectionState.ERROR)
        await client.stop()
        return sleeps

    assert asyncio.run(scenario()) == [1, 2, 4, 8]


def test_request_correlates_by_req_id() -> None:
    async def scenario():
        sock = FakeSocket(echo_responder())
        client = make_client(make_connector([sock]))
        await client.connect(timeout=1)
        resp = await client.request({"time": 1})
        await client.stop()
        return resp, sock.sent

    resp, sent = asyncio.run(scenario())
    assert resp["time"] == 1700000000
    assert resp["req_id"] == sent[-1]["req_id"]
    # no token configured -> no authorize call
    assert not any("authorize" in p for p in sent)


def test_authorizes_when_token_is_configured() -> None:
    async def scenario():
        sock = FakeSocket(echo_responder({"authorize": lambda p: {"msg_type": "authorize", "authorize": {"loginid": "VRTC1"}}}))
        client = make_client(make_connector([sock]), api_token="a1-secret-token")
        await client.connect(timeout=1)
        await client.stop()
        return sock.sent

    sent = asyncio.run(scenario())
    assert sent[0]["authorize"] == "a1-secret-token"


def test_request_timeout_discards_pending_entry_and_drops_late_reply() -> None:
    async def scenario():
        sock = FakeSocket(echo_responder())
        client = make_client(make_connector([sock]), request_timeout_sec=0.05)
        await client.connect(timeout=1)
        with pytest.raises(TransportTimeout):
            await client.request({"never_answered": 1})
        pending = len(client._router)
        late_id = sock.sent[-1]["req_id"]
        sock.push({"msg_type": "never_answered", "req_id": late_id})
        resp = await client.request({"time": 1})
        state = client.state
        await client.stop()
        return pending, resp, state

    pending, resp, state = asyncio.run(scenario())
    assert pending == 0
    assert resp["msg_type"] == "time"
    assert state is ConnectionState.CONNECTED


def test_malformed_frames_are_dropped_without_closing() -> None:
    async def scenario():
        sock = FakeSocket(echo_responder())
        client = make_client(make_connector([sock]))
        await client.connect(timeout=1)
        sock.push("not json{")
        sock.push("[1, 2]")
        sock.push({"msg_type": "time", "req_id": 424242})  # unmatched
        resp = await client.request({"time": 1})
        state = client.state
        await client.stop()
        return resp, state

    resp, state = asyncio.run(scenario())
    assert resp["msg_type"] == "time"
    assert state is ConnectionState.CONNECTED


def test_subscriptions_are_reactivated_after_reconnect() -> None:
    async def scenario():
        first = FakeSocket(echo_responder())
        second = FakeSocket(echo_responder())
        sleeps = []
        client = make_client(make_connector([first, second]), sleeps)
        got = []

        async def on_tick(msg):
            got.append(msg["tick"]["quote"])

        await client.connect(timeout=1)
        await client.subscribe("ticks_R_10", {"ticks": "R_10", "subscribe": 1}, on_tick)
        first.push(
            {"msg_type": "tick", "subscription": {"id": "sub-R_10-1"}, "tick": {"symbol": "R_10", "quote": 2.5, "epoch": 1}}
        )
        await wait_for(lambda: len(got) == 2)

        first.drop()
        await wait_for(lambda: len(second.requests("ticks")) == 1 and len(got) == 3)
        second.push(
            {"msg_type": "tick", "subscription": {"id": "sub-R_10-1"}, "tick": {"symbol": "R_10", "quote": 3.5, "epoch": 2}}
        )
        await wait_for(lambda: len(got) == 4)
        await client.stop()
        return first, second, got, sleeps

    first, second, got, sleeps = asyncio.run(scenario())
    assert len(first.requests("ticks")) == 1
    assert len(second.requests("ticks")) == 1
    assert got == [1.234, 2.5, 1.234, 3.5]
    assert sleeps == [1]


def test_unsubscribe_sends_forget_for_the_server_id() -> None:
    async def scenario():
        sock = FakeSocket(echo_responder())
        client = make_client(make_connector([sock]))
        await client.connect(timeout=1)

        async def on_tick(msg):
            return None

        await client.subscribe("ticks_R_50", {"ticks": "R_50", "subscribe": 1}, on_tick)
        await client.unsubscribe("ticks_R_50")
        subs = client.subscriptions
        await client.stop()
        return sock.requests("forget"), subs

    forgets, subs = asyncio.run(scenario())
    assert [p["forget"] for p in forgets] == ["sub-R_50-1"]
    assert subs == []
