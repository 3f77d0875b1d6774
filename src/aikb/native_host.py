"""Native messaging host: the browser extension talks to aikb over stdin/stdout.

Each message is a 4-byte length in native byte order followed by that many
bytes of UTF-8 JSON. The loop ends when the browser closes stdin.
"""

import json
import logging
import struct
import sys
from typing import Any, BinaryIO

from .knowledge_base import KnowledgeBase
from .messages import Notifier, dispatch, log_notifier

logger = logging.getLogger(__name__)

# Browsers cap messages from the host at 1 MB
MAX_OUTGOING_BYTES = 1024 * 1024


class MalformedMessage(Exception):
    """A frame arrived but its body was not a JSON document."""


def read_message(stream: BinaryIO) -> Any:
    """Read one framed message. Returns None at end of input."""
    raw_length = stream.read(4)
    if not raw_length:
        return None
    if len(raw_length) < 4:
        logger.warning("Truncated length prefix, closing")
        return None

    message_length = struct.unpack("=I", raw_length)[0]
    body = stream.read(message_length)
    if len(body) < message_length:
        logger.warning("Truncated message (%d of %d bytes), closing", len(body), message_length)
        return None

    try:
        return json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedMessage(str(e)) from e


def send_message(stream: BinaryIO, message: dict[str, Any]) -> None:
    """Write one framed message and flush."""
    encoded = json.dumps(message, ensure_ascii=False).encode("utf-8")
    if len(encoded) > MAX_OUTGOING_BYTES:
        logger.warning("Response of %d bytes exceeds the browser limit", len(encoded))
        encoded = json.dumps({"success": False, "error": "Response too large"}).encode("utf-8")
    stream.write(struct.pack("=I", len(encoded)))
    stream.write(encoded)
    stream.flush()


def serve(
    kb: KnowledgeBase,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
    notify: Notifier = log_notifier,
) -> int:
    """Answer messages until stdin closes. Returns how many were handled."""
    stdin = stdin or sys.stdin.buffer
    stdout = stdout or sys.stdout.buffer
    handled = 0

    logger.info("Native host ready")
    while True:
        try:
            message = read_message(stdin)
        except MalformedMessage as e:
            logger.warning("Malformed message: %s", e)
            send_message(stdout, {"success": False, "error": f"Malformed message: {e}"})
            continue

        if message is None:
            break
        send_message(stdout, dispatch(kb, message, notify))
        handled += 1

    logger.info("Native host stopped after %d message(s)", handled)
    return handled


def main() -> None:
    """Entry point for the browser's native messaging manifest."""
    from .config import load_config
    from .logging_config import configure_logging

    configure_logging()
    kb = KnowledgeBase(load_config())
    kb.startup()
    serve(kb)


if __name__ == "__main__":
    main()
