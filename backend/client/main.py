"""
Command-line voice client.

Usage:
    python -m client.main --session-id S1 --user-id U1 [--text "hello"] [--listen]

- Loads .env, builds a ClientSession from the environment
- Connects the session transport and logs every inbound message
- Optionally sends one Chat message, and speaks Chat replies aloud
- --listen records one utterance, transcribes it and sends it as Chat
  (--stream also forwards the raw PCM chunks as binary frames)
- Ctrl-C tears everything down
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from typing import Any

from dotenv import load_dotenv

from config import AppConfig
from observability.logger import log_event, now_ms, set_debug
from protocol.messages import MessageType, WireMessage
from session.client_session import ClientSession
from session.connection_state import ConnectionState
from session.transport import TransportError


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="client.main", description="Voice assistant client")
    parser.add_argument("--session-id", default=None, help="Session id (random if omitted)")
    parser.add_argument("--user-id", default=None, help="User id stamped on outbound messages")
    parser.add_argument("--text", default=None, help="Send this Chat message after connecting")
    parser.add_argument(
        "--listen",
        action="store_true",
        help="Record one utterance, transcribe it and send it as Chat",
    )
    parser.add_argument(
        "--stream",
        action="store_true",
        help="With --listen, also stream raw PCM chunks over the socket while recording",
    )
    parser.add_argument("--mute", action="store_true", help="Do not speak Chat replies")
    return parser.parse_args(argv)


def _reply_text(msg: WireMessage) -> str | None:
    """Text of an inbound Chat message (plain string or {"content": ...})."""
    if msg.message_type is not MessageType.CHAT:
        return None
    if isinstance(msg.data, str):
        return msg.data
    if isinstance(msg.data, dict):
        content = msg.data.get("content") or msg.data.get("text")
        return str(content) if content else None
    return None


async def run(args: argparse.Namespace, config: AppConfig) -> None:
    session_id = args.session_id or str(uuid.uuid4())
    speak_queue: asyncio.Queue[str] = asyncio.Queue()
    done = asyncio.Event()

    async with ClientSession.from_config(
        config,
        session_id=session_id,
        user_id=args.user_id,
    ) as session:

        def on_message(msg: WireMessage) -> None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "CLIENT_MESSAGE",
                "session_id": msg.session_id,
                "message_type": msg.message_type.value,
                "data": msg.data,
            })
            text = _reply_text(msg)
            if text and not args.mute:
                speak_queue.put_nowait(text)

        def on_state(state: ConnectionState) -> None:
            if state is ConnectionState.ERRORED:
                done.set()

        def on_unknown(payload: dict[str, Any]) -> None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "CLIENT_UNKNOWN_MESSAGE",
                "session_id": session_id,
                "payload": payload,
            })

        session.transport.on_message(on_message)
        session.transport.on_state_change(on_state)
        session.transport.on_unknown(on_unknown)

        try:
            await session.connect(args.user_id)
        except TransportError as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "CLIENT_CONNECT_FAILED",
                "session_id": session_id,
                "message": str(e),
            })

        if args.text:
            session.transport.send_chat_message(args.text)

        if args.listen:
            unsubscribe = (
                session.capture.on_chunk(session.transport.send_voice_frame)
                if args.stream else None
            )
            try:
                heard = await session.orchestrator.record_and_transcribe()
            finally:
                if unsubscribe is not None:
                    unsubscribe()
            if heard:
                session.transport.send_chat_message(heard)

        while not done.is_set():
            get = asyncio.ensure_future(speak_queue.get())
            stop = asyncio.ensure_future(done.wait())
            finished, pending = await asyncio.wait(
                {get, stop}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            if get in finished:
                await session.orchestrator.speak_text(get.result())


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = _parse_args(argv)
    config = AppConfig.load_from_env()
    set_debug(config.debug)

    try:
        asyncio.run(run(args, config))
    except KeyboardInterrupt:
        log_event({"ts_ms": now_ms(), "event_type": "CLIENT_INTERRUPTED"})


if __name__ == "__main__":
    main()
