"""Deriv WebSocket client (robust) using asyncio + websockets.

Features:
- Optional authorization with API token on every (re)connect
- Heartbeat (ping) task
- Reconnection with capped exponential backoff; terminal ERROR state after
  max consecutive attempts (call connect() again to retry manually)
- MessageRouter: correlate req_id -> response Future, drop unmatched/late replies
- Subscription resubscribe after reconnect
- Malformed frames are logged and dropped without closing the socket
"""

from __future__ import annotations

import asyncio
import json
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from deriv_signals.errors import ProtocolError, TransportError, TransportTimeout
from deriv_signals.infrastructure.logging.logging import get_logger

JsonDict = Dict[str, Any]

STREAM_MSG_TYPES = {"tick", "ohlc", "proposal_open_contract"}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class Subscription:
    name: str
    request: JsonDict
    on_message: Callable[[JsonDict], Awaitable[None]]


class MessageRouter:
    def __init__(self) -> None:
        self._futures: Dict[int, asyncio.Future[JsonDict]] = {}

    def register(self, req_id: int) -> asyncio.Future[JsonDict]:
        fut: asyncio.Future[JsonDict] = asyncio.get_running_loop().create_future()
        self._futures[req_id] = fut
        return fut

    def resolve(self, req_id: int, msg: JsonDict) -> bool:
        fut = self._futures.pop(req_id, None)
        if fut is None or fut.done():
            return False
        fut.set_result(msg)
        return True

    def discard(self, req_id: int) -> None:
        self._futures.pop(req_id, None)

    def reject_all(self, exc: BaseException) -> None:
        for fut in self._futures.values():
            if not fut.done():
                fut.set_exception(exc)
        self._futures.clear()

    def __len__(self) -> int:
        return len(self._futures)


def decode_frame(raw: Any) -> JsonDict:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"invalid json: {e}") from e
    if not isinstance(msg, dict):
        raise ProtocolError("frame is not a JSON object")
    return msg


class DerivWSClient:
    def __init__(
        self,
        websocket_url: str,
        app_id: str,
        api_token: str = "",
        *,
        heartbeat_interval_sec: float = 15.0,
        request_timeout_sec: float = 10.0,
        initial_backoff_sec: float = 1.0,
        max_reconnect_backoff_sec: float = 30.0,
        max_reconnect_attempts: int = 5,
        backoff_jitter: float = 0.0,
        backoff_reset_after_sec: float = 60.0,
        connector: Optional[Callable[..., Any]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._logger = get_logger("deriv_ws")
        self._url = f"{websocket_url}?app_id={app_id}"
        self._token = api_token
        self._heartbeat_interval = heartbeat_interval_sec
        self._request_timeout = request_timeout_sec
        self._initial_backoff = initial_backoff_sec
        self._max_backoff = max_reconnect_backoff_sec
        self._max_attempts = max_reconnect_attempts
        self._jitter = backoff_jitter
        self._reset_after = backoff_reset_after_sec
        self._connector = connector or websockets.connect
        self._sleep = sleep or asyncio.sleep

        self._ws: Any = None
        self._router = MessageRouter()
        self._connected_evt = asyncio.Event()
        self._error_evt = asyncio.Event()
        self._stop_evt = asyncio.Event()
        self._state = ConnectionState.DISCONNECTED
        self._state_listeners: List[Callable[[ConnectionState], None]] = []

        self._runner_task: Optional[asyncio.Task[None]] = None
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None
        self._session_started: Optional[float] = None

        self._req_id = 10_000
        self._subscriptions: Dict[str, Subscription] = {}
        self._sub_ids: Dict[str, str] = {}

    @property
    def is_connected(self) -> bool:
        return self._connected_evt.is_set()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def subscriptions(self) -> List[str]:
        return list(self._subscriptions.keys())

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> None:
        self._state_listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        self._logger.info("connection_state", state=state.value)
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception as e:
                self._logger.warning("state_listener_error", error=str(e))

    def backoff_delay(self, attempt: int) -> float:
        """Delay before reconnect attempt `attempt` (0-based): 1, 2, 4 ... capped."""
        base = min(self._max_backoff, self._initial_backoff * (2 ** attempt))
        if self._jitter > 0:
            base = min(self._max_backoff, base + random.random() * self._jitter * base)
        return base

    async def start(self) -> None:
        if self._runner_task and not self._runner_task.done():
            return
        self._stop_evt.clear()
        self._error_evt.clear()
        self._runner_task = asyncio.create_task(self._run_forever())

    async def connect(self, timeout: float = 30.0) -> None:
        """Start (or restart after ERROR) and wait for an authorized session."""
        await self.start()
        await self.wait_until_connected(timeout)

    async def stop(self) -> None:
        self._stop_evt.set()
        if self._runner_task:
            self._runner_task.cancel()
            try:
                await self._runner_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self._logger.warning("runner_stopped_with_error", error=str(e))
            self._runner_task = None
        await self._disconnect()
        self._set_state(ConnectionState.DISCONNECTED)

    async def wait_until_connected(self, timeout: float = 30.0) -> None:
        if self.is_connected:
            return
        if self._error_evt.is_set():
            raise TransportError("Reconnect attempts exhausted")
        conn = asyncio.ensure_future(self._connected_evt.wait())
        err = asyncio.ensure_future(self._error_evt.wait())
        try:
            done, _ = await asyncio.wait({conn, err}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            conn.cancel()
            err.cancel()
        if self.is_connected:
            return
        if err in done:
            raise TransportError("Reconnect attempts exhausted")
        raise TransportTimeout(f"Not connected after {timeout}s")

    async def _run_forever(self) -> None:
        loop = asyncio.get_running_loop()
        attempts = 0
        while not self._stop_evt.is_set():
            self._set_state(ConnectionState.CONNECTING)
            self._session_started = None
            try:
                await self._connect_and_run()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._logger.error("ws_loop_error", error=str(e))

            if self._stop_evt.is_set():
                break

            self._set_state(ConnectionState.DISCONNECTED)

            # A session that stayed up long enough counts as recovered
            if self._session_started is not None and loop.time() - self._session_started >= self._reset_after:
                attempts = 0

            if attempts >= self._max_attempts:
                self._logger.error("reconnect_exhausted", attempts=attempts)
                self._error_evt.set()
                self._set_state(ConnectionState.ERROR)
                return

            sleep_for = self.backoff_delay(attempts)
            attempts += 1
            self._logger.warning("reconnect_backoff", seconds=sleep_for, attempt=attempts)
            await self._sleep(sleep_for)

    async def _connect_and_run(self) -> None:
        self._logger.info("ws_connect", url=self._url)

        async with self._connector(
            self._url,
            ping_interval=None,  # we manage ping manually
            close_timeout=5,
            max_queue=256,
        ) as ws:
            self._ws = ws
            self._connected_evt.clear()

            # Reader first so authorize (and every other request) can be resolved
            self._reader_task = asyncio.create_task(self._reader_loop())

            try:
                if self._token:
                    auth_resp = await self._raw_request({"authorize": self._token})
                    if auth_resp.get("error"):
                        raise TransportError(f"Auth error: {auth_resp['error']}")
                    self._logger.info("ws_authorized")

                self._connected_evt.set()
                self._session_started = asyncio.get_running_loop().time()
                self._set_state(ConnectionState.CONNECTED)

                self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

                # Transport does not keep server-side subscriptions across sockets
                await self._resubscribe_all()

                done, pending = await asyncio.wait(
                    [self._reader_task, self._heartbeat_task],
                    return_when=asyncio.FIRST_COMPLETED,
                )
                for t in pending:
                    t.cancel()
                for t in done:
                    exc = t.exception()
                    if exc:
                        raise exc
                raise TransportError("Connection closed")
            finally:
                self._connected_evt.clear()
                self._router.reject_all(TransportError("Disconnected"))
                for t in (self._reader_task, self._heartbeat_task):
                    if t and not t.done():
                        t.cancel()
                self._reader_task = None
                self._heartbeat_task = None
                self._ws = None

    async def _disconnect(self) -> None:
        self._connected_evt.clear()
        self._router.reject_all(TransportError("Disconnected"))

        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

        if self._reader_task:
            self._reader_task.cancel()
            self._reader_task = None

        if self._ws:
            try:
                await self._ws.close()
            except Exception as e:
                self._logger.debug("ws_close_failed", error=str(e))
            self._ws = None

    def _next_req_id(self) -> int:
        self._req_id += 1
        return self._req_id

    async def _raw_request(self, payload: JsonDict) -> JsonDict:
        """Send a request without waiting for the connected event.
        Use only during connect/auth phase, or internally.
        """
        if not self._ws:
            raise TransportError("WebSocket not open")

        req_id = self._next_req_id()
        payload = dict(payload)
        payload["req_id"] = req_id

        fut = self._router.register(req_id)
        try:
            await self._ws.send(json.dumps(payload))
        except Exception as e:
            self._router.discard(req_id)
            raise TransportError(f"Send failed req_id={req_id}: {e}") from e

        try:
            return await asyncio.wait_for(fut, timeout=self._request_timeout)
        except asyncio.TimeoutError as e:
            self._router.discard(req_id)
            raise TransportTimeout(f"Request timeout req_id={req_id}") from e

    async def request(self, payload: JsonDict) -> JsonDict:
        """Safe request used by other modules (waits until authorized/connected)."""
        await self.wait_until_connected(self._request_timeout)
        return await self._raw_request(payload)

    async def subscribe(
        self,
        name: str,
        request: JsonDict,
        on_message: Callable[[JsonDict], Awaitable[None]],
    ) -> None:
        self._subscriptions[name] = Subscription(name=name, request=request, on_message=on_message)
        if self.is_connected:
            await self._activate_subscription(name)

    async def unsubscribe(self, name: str) -> None:
        sub_id = self._sub_ids.get(name)
        self._subscriptions.pop(name, None)
        if not sub_id:
            return
        try:
            if self.is_connected:
                await self.request({"forget": sub_id})
        finally:
            self._sub_ids.pop(name, None)
        self._logger.info("unsubscribed", name=name, sub_id=sub_id)

    async def _activate_subscription(self, name: str) -> None:
        sub = self._subscriptions[name]
        resp = await self.request(sub.request)
        if resp.get("error"):
            raise TransportError(f"Subscribe error: {resp['error']}")
        sub_id = (resp.get("subscription") or {}).get("id")
        if sub_id:
            self._sub_ids[name] = sub_id
        self._logger.info("subscribed", name=name, sub_id=sub_id)
        # The ack of a stream request already carries the first event
        if resp.get("msg_type") in STREAM_MSG_TYPES and name in self._subscriptions:
            await sub.on_message(resp)

    async def _resubscribe_all(self) -> None:
        self._sub_ids.clear()
        for name in list(self._subscriptions.keys()):
            try:
                await self._activate_subscription(name)
            except TransportTimeout:
                raise
            except TransportError as e:
                self._logger.warning("resubscribe_failed", name=name, error=str(e))

    async def _dispatch(self, msg: JsonDict) -> None:
        req_id = msg.get("req_id")
        matched = isinstance(req_id, int) and self._router.resolve(req_id, msg)

        msg_type = msg.get("msg_type")
        if msg_type in STREAM_MSG_TYPES:
            sub_id = (msg.get("subscription") or {}).get("id")
            if matched or not sub_id:
                return
            for name, sid in self._sub_ids.items():
                if sid == sub_id:
                    await self._subscriptions[name].on_message(msg)
                    return
            return

        if not matched:
            self._logger.debug("unmatched_response", req_id=req_id, msg_type=msg_type)

    async def _reader_loop(self) -> None:
        assert self._ws is not None
        try:
            while True:
                raw = await self._ws.recv()
                try:
                    msg = decode_frame(raw)
                except ProtocolError as e:
                    self._logger.warning("protocol_error", error=str(e))
                    continue
                await self._dispatch(msg)
        except ConnectionClosed:
            # normal close or network drop -> let the runner reconnect
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._logger.error("reader_loop_error", error=str(e))
            raise

    async def _heartbeat_loop(self) -> None:
        assert self._ws is not None
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                pong_waiter = await self._ws.ping()
                await asyncio.wait_for(pong_waiter, timeout=5.0)
                self._logger.debug("ws_ping_ok")
            except Exception as e:
                self._logger.warning("ws_ping_failed", error=str(e))
                raise
