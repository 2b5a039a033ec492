#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import httpx  # noqa: E402

from app.client import ChatMessage, ChatWidget, RelayClient, Transcript  # noqa: E402


DEFAULT_STATE_PATH = Path.home() / ".genz-chat" / "state.json"

RECEIPTS = {
    "sending": "...",
    "sent": "v",
    "delivered": "vv",
    "read": "vv read",
    "failed": "! failed, /retry to resend",
}


def _print_receipt(message: ChatMessage) -> None:
    if message.status is not None:
        print(f"  [{RECEIPTS[message.status.value]}]")


def _last_failed(widget: ChatWidget) -> ChatMessage | None:
    for message in reversed(widget.transcript.messages):
        if message.role == "user":
            return message if message.status is not None and message.status.value == "failed" else None
    return None


def _send(widget: ChatWidget, text: str | None, *, stream: bool, retry_of: ChatMessage | None = None) -> None:
    if stream:
        turn = widget.retry(retry_of, streaming=True) if retry_of else widget.send_streaming(text or "")
        if isinstance(turn, ChatMessage):
            _print_receipt(turn)
            return
        print("Z> ", end="", flush=True)
        for delta in turn:
            print(delta, end="", flush=True)
        print()
        if turn.error:
            print(f"  ({turn.error})")
        _print_receipt(turn.message)
        return
    message = widget.retry(retry_of) if retry_of else widget.send(text or "")
    reply = widget.transcript.messages[-1]
    if reply.role == "assistant":
        print(f"Z> {reply.text}")
    _print_receipt(message)


def main() -> int:
    parser = argparse.ArgumentParser(description="Chat with the relay from a terminal.")
    parser.add_argument("--url", default="http://127.0.0.1:8000", help="Relay base URL.")
    parser.add_argument("--stream", action="store_true", help="Use the streaming endpoint.")
    parser.add_argument("--state", type=Path, default=DEFAULT_STATE_PATH, help="Chat state file.")
    parser.add_argument("--assistant-id", default=None, help="Assistant id override.")
    parser.add_argument("--timeout", type=float, default=60.0, help="HTTP timeout in seconds.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING)
    transcript = Transcript.load(args.state)
    for message in transcript.messages[-50:]:
        prefix = "you" if message.role == "user" else "Z"
        print(f"{prefix}> {message.text}")

    with httpx.Client(base_url=args.url, timeout=args.timeout) as http:
        widget = ChatWidget(RelayClient(http), transcript, assistant_id=args.assistant_id)
        while True:
            try:
                text = input("you> ").strip()
            except (EOFError, KeyboardInterrupt):
                print()
                return 0
            if not text:
                continue
            if text == "/quit":
                return 0
            if text == "/retry":
                failed = _last_failed(widget)
                if failed is None:
                    print("  (nothing to retry)")
                    continue
                _send(widget, None, stream=args.stream, retry_of=failed)
                continue
            _send(widget, text, stream=args.stream)


if __name__ == "__main__":
    raise SystemExit(main())
