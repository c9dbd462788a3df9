"""
Session transport: one logical real-time connection to the assistant server.

Responsibilities:
- Own the socket and the ConnectionState machine
- Reconnect with bounded backoff after unexpected loss
- Application-level heartbeat (Ping/Pong) with dead-connection detection
- Accept outbound messages only while CONNECTED, write them in order
- Decode inbound frames and fan them out to listeners in receipt order

Non-responsibilities:
- No store-and-forward: messages offered while not CONNECTED are refused
- No session/user id generation (ids come from the session owner)
- No conversation semantics (Chat payloads are opaque here)

Concurrency model:
- Single event loop. Each connection generation owns a reader task, a writer
  task and a heartbeat task. Every exit from CONNECTED cancels all three.
- A generation counter marks stale tasks; a task from an old generation never
  mutates state.
"""

from __future__ import annotations

import asyncio
import urllib.parse
from dataclasses import replace
from typing import Any, Awaitable, Callable, Coroutine, Protocol

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed

from constants import (
    WS_CLOSE_ABNORMAL,
    WS_CLOSE_NORMAL,
    WS_HEARTBEAT_MAX_MISSED,
    WS_TOKEN_QUERY_PARAM,
)
from listeners import ListenerSet, Unsubscribe
from observability.logger import log_debug, log_event, now_ms
from protocol.messages import (
    MalformedMessage,
    MessageTooLarge,
    MessageType,
    UnknownMessageType,
    WireMessage,
    decode_message,
    encode_message,
    encode_voice_payload,
)
from session.backoff import (
    BackoffPolicy,
    ReconnectAttempt,
    next_attempt,
    reset_attempt,
)
from session.connection_state import ConnectionState
from tasks import cancel_others, wait_others


# ------------------------------------------------------------------
# Types
# ------------------------------------------------------------------

class SocketLike(Protocol):
    """The subset of a websockets ClientConnection the transport relies on."""

    async def send(self, message: str | bytes) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None: ...


Connector = Callable[[str], Awaitable[SocketLike]]


class TransportError(Exception):
    """
    Connect failure, abnormal close, heartbeat timeout, or exhausted retries.

    code:
        Close code when one is known (1006 for abnormal/unknown).
    """

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


async def _default_connector(url: str) -> SocketLike:
    # Library keepalive is disabled; the transport runs its own heartbeat.
    return await ws_connect(url, ping_interval=None)


def _close_info(exc: BaseException) -> tuple[int, str]:
    if isinstance(exc, ConnectionClosed):
        frame = exc.rcvd
        if frame is not None:
            return frame.code, frame.reason
        return WS_CLOSE_ABNORMAL, "no close frame"
    return WS_CLOSE_ABNORMAL, repr(exc)


# ------------------------------------------------------------------
# SessionTransport
# ------------------------------------------------------------------

class SessionTransport:
    """
    One transport == one logical connection (across reconnects).

    Constructed explicitly by ClientSession and passed by reference; there
    is no module-level default instance.
    """

    def __init__(
        self,
        *,
        url: str,
        token: str | None = None,
        reconnect_attempts: int,
        reconnect_interval_ms: int,
        reconnect_max_delay_ms: int,
        reconnect_max_total_delay_ms: int,
        heartbeat_interval_ms: int,
        max_message_size: int,
        session_id: str | None = None,
        user_id: str | None = None,
        connector: Connector | None = None,
    ) -> None:
        self._url = url
        self._token = token
        self._policy = BackoffPolicy(
            interval_ms=reconnect_interval_ms,
            max_delay_ms=max(reconnect_max_delay_ms, reconnect_interval_ms),
            max_attempts=reconnect_attempts,
            max_total_delay_ms=reconnect_max_total_delay_ms,
        )
        self._heartbeat_interval_s = heartbeat_interval_ms / 1000.0
        self._max_message_size = max_message_size
        self._connector: Connector = connector or _default_connector

        self._session_id = session_id
        self._user_id = user_id

        self._state = ConnectionState.DISCONNECTED
        self._generation = 0
        self._manual_disconnect = False
        self._backoff: ReconnectAttempt = reset_attempt()

        self._ws: SocketLike | None = None
        self._outbox: asyncio.Queue[str | bytes] | None = None
        self._open_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[Any]] = set()

        self._awaiting_pong = False
        self._missed_pongs = 0

        self._message_listeners = ListenerSet("ws.message")
        self._binary_listeners = ListenerSet("ws.binary")
        self._state_listeners = ListenerSet("ws.state")
        self._error_listeners = ListenerSet("ws.error")
        self._unknown_listeners = ListenerSet("ws.unknown")
        self._open_listeners = ListenerSet("ws.open")
        self._close_listeners = ListenerSet("ws.close")
        self._reconnect_listeners = ListenerSet("ws.reconnect")

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state (mutated only by the transport)."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """True iff CONNECTED with a live socket."""
        return self._state is ConnectionState.CONNECTED and self._ws is not None

    @property
    def session_id(self) -> str | None:
        """Session id stamped onto outbound envelopes."""
        return self._session_id

    @property
    def user_id(self) -> str | None:
        """User id stamped onto outbound envelopes."""
        return self._user_id

    @property
    def reconnect_attempt(self) -> int:
        """Reconnect attempts scheduled in the current outage (0 when healthy)."""
        return self._backoff.attempt

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_message(self, callback: Callable[[WireMessage], None]) -> Unsubscribe:
        """Inbound structured messages (Ping/Pong are handled internally)."""
        return self._message_listeners.add(callback)

    def on_binary(self, callback: Callable[[bytes], None]) -> Unsubscribe:
        """Inbound binary frames."""
        return self._binary_listeners.add(callback)

    def on_state_change(self, callback: Callable[[ConnectionState], None]) -> Unsubscribe:
        """ConnectionState transitions."""
        return self._state_listeners.add(callback)

    def on_error(self, callback: Callable[[Exception], None]) -> Unsubscribe:
        """Raw transport and decode errors."""
        return self._error_listeners.add(callback)

    def on_unknown(self, callback: Callable[[dict[str, Any]], None]) -> Unsubscribe:
        """Decoded envelopes whose message_type is not recognized."""
        return self._unknown_listeners.add(callback)

    def on_open(self, callback: Callable[[], None]) -> Unsubscribe:
        """Socket opened (fires on every successful (re)connect)."""
        return self._open_listeners.add(callback)

    def on_close(self, callback: Callable[[int, str], None]) -> Unsubscribe:
        """Socket closed or failed to open, with (code, reason)."""
        return self._close_listeners.add(callback)

    def on_reconnect_attempt(self, callback: Callable[[int, int], None]) -> Unsubscribe:
        """Reconnect scheduled, with (attempt, max_attempts)."""
        return self._reconnect_listeners.add(callback)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, session_id: str | None = None, user_id: str | None = None) -> None:
        """
        Open the connection.

        Resolves once CONNECTED. Raises TransportError if this attempt fails
        (the reconnect policy still runs in the background) or if
        disconnect() interrupts it.
        """
        if session_id:
            self._session_id = session_id
        if user_id:
            self._user_id = user_id
        self._manual_disconnect = False

        if self._state is ConnectionState.CONNECTED:
            log_debug({"ts_ms": now_ms(), "event_type": "WS_ALREADY_CONNECTED"})
            return

        task = self._open_task
        if task is None or task.done():
            # Explicit connect overrides a pending backoff delay
            self._cancel_reconnect()
            task = self._spawn(self._open())
            self._open_task = task

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise TransportError("connect interrupted by disconnect()") from None
            raise

    def disconnect(self) -> None:
        """
        Close the connection and stop reconnecting.

        Valid from any state; always ends in DISCONNECTED.
        """
        self._manual_disconnect = True
        self._generation += 1

        self._cancel_reconnect()
        if self._open_task is not None and not self._open_task.done():
            self._open_task.cancel()
        self._open_task = None

        ws = self._teardown_connection()
        if ws is not None:
            self._spawn(self._close_socket(ws, WS_CLOSE_NORMAL, "Manual disconnect"))
            self._close_listeners.emit(WS_CLOSE_NORMAL, "Manual disconnect")

        self._backoff = reset_attempt()
        self._set_state(ConnectionState.DISCONNECTED)

    async def aclose(self) -> None:
        """disconnect() and wait for every owned task to finish."""
        self.disconnect()
        await wait_others(self._background)

    def update_session(self, session_id: str, user_id: str | None = None) -> None:
        """Change the ids stamped onto subsequent outbound messages."""
        self._session_id = session_id
        if user_id:
            self._user_id = user_id
        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_SESSION_UPDATED",
            "session_id": session_id,
            "user_id": self._user_id,
        })

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def send(self, message: WireMessage) -> bool:
        """
        Offer a structured message for delivery.

        Returns:
            True if accepted for ordered delivery on the live connection.
            False if not CONNECTED, too large, or not serializable. A False
            message is dropped; it is never replayed later.
        """
        full = replace(
            message,
            session_id=message.session_id or self._session_id,
            user_id=message.user_id or self._user_id,
        ).stamped()

        try:
            text = encode_message(full, max_size=self._max_message_size)
        except MessageTooLarge as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_MESSAGE_TOO_LARGE",
                "session_id": self._session_id,
                "message_type": full.message_type.value,
                "size": e.size,
                "limit": e.limit,
            })
            return False
        except (TypeError, ValueError) as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_MESSAGE_NOT_SERIALIZABLE",
                "session_id": self._session_id,
                "message_type": full.message_type.value,
                "error": str(e),
            })
            return False

        return self._enqueue(text, full.message_type.value)

    def send_chat_message(self, text: str, session_id: str | None = None) -> bool:
        """Send a Chat envelope carrying plain text."""
        return self.send(WireMessage.create(MessageType.CHAT, text, session_id=session_id))

    def send_voice_data(self, audio: bytes, fmt: str = "webm", session_id: str | None = None) -> bool:
        """Send audio inside a VoiceData envelope (base64)."""
        return self.send(
            WireMessage.create(
                MessageType.VOICE_DATA,
                encode_voice_payload(audio, fmt),
                session_id=session_id,
            )
        )

    def send_voice_frame(self, audio: bytes) -> bool:
        """
        Send a raw binary voice frame (no envelope).

        Frames offered while not CONNECTED (including RECONNECTING) are dropped.
        """
        if len(audio) > self._max_message_size:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_MESSAGE_TOO_LARGE",
                "session_id": self._session_id,
                "message_type": "binary",
                "size": len(audio),
                "limit": self._max_message_size,
            })
            return False
        return self._enqueue(bytes(audio), "binary")

    def ping(self) -> bool:
        """Send a Ping envelope."""
        return self.send(WireMessage.create(MessageType.PING, {}))

    def _enqueue(self, frame: str | bytes, label: str) -> bool:
        if self._state is not ConnectionState.CONNECTED or self._outbox is None:
            log_debug({
                "ts_ms": now_ms(),
                "event_type": "WS_SEND_REFUSED",
                "session_id": self._session_id,
                "message_type": label,
                "state": self._state.value,
            })
            return False
        self._outbox.put_nowait(frame)
        log_debug({
            "ts_ms": now_ms(),
            "event_type": "WS_SEND_QUEUED",
            "session_id": self._session_id,
            "message_type": label,
        })
        return True

    # ------------------------------------------------------------------
    # Connection establishment
    # ------------------------------------------------------------------

    def _build_url(self) -> str:
        if not self._token:
            return self._url
        parts = urllib.parse.urlsplit(self._url)
        query = urllib.parse.parse_qsl(parts.query, keep_blank_values=True)
        query.append((WS_TOKEN_QUERY_PARAM, self._token))
        return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(query)))

    async def _open(self) -> None:
        self._generation += 1
        gen = self._generation
        self._set_state(ConnectionState.CONNECTING)

        try:
            ws = await self._connector(self._build_url())
        except asyncio.CancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            err = TransportError(f"connect failed: {e!r}", code=WS_CLOSE_ABNORMAL)
            self._error_listeners.emit(err)
            self._handle_connection_lost(gen, WS_CLOSE_ABNORMAL, f"connect_failed: {e!r}")
            raise err from e

        if gen != self._generation:
            self._spawn(self._close_socket(ws, WS_CLOSE_NORMAL, "superseded"))
            raise TransportError("connect superseded")

        outbox: asyncio.Queue[str | bytes] = asyncio.Queue()
        self._ws = ws
        self._outbox = outbox
        self._backoff = reset_attempt()
        self._awaiting_pong = False
        self._missed_pongs = 0

        self._reader_task = self._spawn(self._read_loop(gen, ws))
        self._writer_task = self._spawn(self._write_loop(gen, ws, outbox))
        self._heartbeat_task = self._spawn(self._heartbeat_loop(gen))

        self._set_state(ConnectionState.CONNECTED)
        self._open_listeners.emit()

    async def _reconnect_after(self, gen: int, delay_ms: int) -> None:
        try:
            await asyncio.sleep(delay_ms / 1000.0)
        except asyncio.CancelledError:
            return

        if gen != self._generation or self._manual_disconnect:
            return

        self._reconnect_task = None
        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_RECONNECT_ATTEMPT",
            "session_id": self._session_id,
            "attempt": self._backoff.attempt,
            "max_attempts": self._policy.max_attempts,
        })

        task = self._spawn(self._open())
        self._open_task = task
        try:
            await task
        except TransportError:
            # Failure already routed through _handle_connection_lost
            pass
        except asyncio.CancelledError:
            return

    def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done():
            task.cancel()

    # ------------------------------------------------------------------
    # Connection loss
    # ------------------------------------------------------------------

    def _handle_connection_lost(self, gen: int, code: int, reason: str) -> None:
        """
        Single exit path from CONNECTING/CONNECTED on anything but disconnect().

        Decides between RECONNECTING, ERRORED and DISCONNECTED.
        """
        if gen != self._generation:
            return

        # Invalidate tasks belonging to the lost connection
        self._generation += 1
        gen = self._generation

        ws = self._teardown_connection()
        if ws is not None:
            self._spawn(self._close_socket(ws, WS_CLOSE_NORMAL, "connection lost"))

        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_CONNECTION_LOST",
            "session_id": self._session_id,
            "code": code,
            "reason": reason,
        })
        self._close_listeners.emit(code, reason)

        if self._manual_disconnect:
            self._set_state(ConnectionState.DISCONNECTED)
            return

        decision = next_attempt(self._policy, self._backoff)
        if decision is None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_RETRY_BUDGET_EXHAUSTED",
                "session_id": self._session_id,
                "attempts": self._backoff.attempt,
                "total_delay_ms": self._backoff.total_delay_ms,
            })
            self._set_state(ConnectionState.ERRORED)
            self._error_listeners.emit(
                TransportError(
                    f"reconnect budget exhausted after {self._backoff.attempt} attempts",
                    code=code,
                )
            )
            return

        self._backoff, delay_ms = decision
        self._set_state(ConnectionState.RECONNECTING)
        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_RECONNECT_SCHEDULED",
            "session_id": self._session_id,
            "attempt": self._backoff.attempt,
            "max_attempts": self._policy.max_attempts,
            "delay_ms": delay_ms,
        })
        self._reconnect_listeners.emit(self._backoff.attempt, self._policy.max_attempts)
        self._reconnect_task = self._spawn(self._reconnect_after(gen, delay_ms))

    def _teardown_connection(self) -> SocketLike | None:
        """Cancel per-connection tasks and detach the socket. Returns the old socket."""
        cancel_others((self._reader_task, self._writer_task, self._heartbeat_task))
        self._reader_task = None
        self._writer_task = None
        self._heartbeat_task = None
        self._outbox = None
        self._awaiting_pong = False
        self._missed_pongs = 0

        ws = self._ws
        self._ws = None
        return ws

    async def _close_socket(self, ws: SocketLike, code: int, reason: str) -> None:
        try:
            await ws.close(code, reason)
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_debug({
                "ts_ms": now_ms(),
                "event_type": "WS_CLOSE_FAILED",
                "session_id": self._session_id,
                "error": repr(e),
            })

    # ------------------------------------------------------------------
    # Per-connection tasks
    # ------------------------------------------------------------------

    async def _read_loop(self, gen: int, ws: SocketLike) -> None:
        try:
            while True:
                raw = await ws.recv()
                if gen != self._generation:
                    return
                if isinstance(raw, (bytes, bytearray, memoryview)):
                    self._binary_listeners.emit(bytes(raw))
                else:
                    self._dispatch_text(raw)
        except asyncio.CancelledError:
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            code, reason = _close_info(e)
            if code != WS_CLOSE_NORMAL:
                self._error_listeners.emit(
                    TransportError(f"connection closed abnormally: {reason}", code=code)
                )
            self._handle_connection_lost(gen, code, reason)

    async def _write_loop(
        self,
        gen: int,
        ws: SocketLike,
        outbox: asyncio.Queue[str | bytes],
    ) -> None:
        try:
            while True:
                frame = await outbox.get()
                await ws.send(frame)
        except asyncio.CancelledError:
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            code, reason = _close_info(e)
            self._error_listeners.emit(TransportError(f"send failed: {reason}", code=code))
            self._handle_connection_lost(gen, code, f"send_failed: {reason}")

    async def _heartbeat_loop(self, gen: int) -> None:
        try:
            while True:
                await asyncio.sleep(self._heartbeat_interval_s)
                if gen != self._generation or self._state is not ConnectionState.CONNECTED:
                    return

                if self._awaiting_pong:
                    self._missed_pongs += 1
                    log_event({
                        "ts_ms": now_ms(),
                        "event_type": "WS_HEARTBEAT_MISSED",
                        "session_id": self._session_id,
                        "missed": self._missed_pongs,
                    })
                    if self._missed_pongs >= WS_HEARTBEAT_MAX_MISSED:
                        self._error_listeners.emit(
                            TransportError("heartbeat timeout", code=WS_CLOSE_ABNORMAL)
                        )
                        self._handle_connection_lost(gen, WS_CLOSE_ABNORMAL, "heartbeat_timeout")
                        return

                self._awaiting_pong = True
                self.ping()
        except asyncio.CancelledError:
            return

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------

    def _dispatch_text(self, raw: str) -> None:
        try:
            msg = decode_message(raw)
        except UnknownMessageType as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_UNKNOWN_MESSAGE_TYPE",
                "session_id": self._session_id,
                "msg_type": repr(e.message_type),
            })
            self._unknown_listeners.emit(e.payload)
            return
        except MalformedMessage as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_MALFORMED_MESSAGE",
                "session_id": self._session_id,
                "error": str(e),
                "payload_preview": raw[:100],
            })
            self._error_listeners.emit(e)
            return

        log_debug({
            "ts_ms": now_ms(),
            "event_type": "WS_MESSAGE_RECEIVED",
            "session_id": self._session_id,
            "message_type": msg.message_type.value,
        })

        if msg.message_type is MessageType.PING:
            self.send(WireMessage.create(MessageType.PONG, {}))
            return

        if msg.message_type is MessageType.PONG:
            self._awaiting_pong = False
            self._missed_pongs = 0
            return

        self._message_listeners.emit(msg)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state is new_state:
            return
        prev = self._state
        self._state = new_state
        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_STATE_CHANGED",
            "session_id": self._session_id,
            "from": prev.value,
            "to": new_state.value,
        })
        self._state_listeners.emit(new_state)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._background.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._background.discard(t)
            if not t.cancelled():
                # Mark retrieved; failures were already surfaced via listeners
                t.exception()

        task.add_done_callback(_done)
        return task
