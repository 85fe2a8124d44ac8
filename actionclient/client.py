"""
actionclient command-line client.

Implements:
- Read ACTION MESSAGE lines from a file (or stdin with "-").
- Send each line to the server as one length-prefixed request frame.
- Switch to receive mode and print every response frame until the server
  closes the connection.

Run:
  python -m actionclient.client --host 127.0.0.1 --port 8080 requests.txt
  echo "reverse hello" | python -m actionclient.client -p 8080 -

Actions:
  uppercase, lowercase, reverse, shuffle, random

Notes:
- -h is the host option; use --help for usage.
- -v turns on debug logging on stderr.
"""
from __future__ import annotations

import argparse
import logging
import socket
import sys
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, TextIO

from .protocol import (
    MAX_FRAME_SIZE,
    FrameDecoder,
    FrameHandler,
    ProtocolError,
    Request,
    receive,
    send_request,
)

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
MIN_BUFFER_SIZE = 16

VALID_ACTIONS = ("uppercase", "lowercase", "reverse", "shuffle", "random")


@dataclass
class Config:
    file: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    verbose: bool = False
    buffer_size: int = MAX_FRAME_SIZE


# -----------------------------
# Request file
# -----------------------------
def read_requests(lines: Iterable[str]) -> Iterator[Request]:
    """
    Yield one Request per ``ACTION MESSAGE`` line.

    Blank lines are skipped. Reading stops at the first line with an unknown
    action or no message; requests yielded before it are still valid.
    """
    for lineno, line in enumerate(lines, 1):
        line = line.rstrip("\r\n")
        if not line.strip():
            continue
        action, _, message = line.partition(" ")
        if action not in VALID_ACTIONS:
            log.error("Invalid action provided on line %d: %s", lineno, action)
            return
        if not message:
            log.error("Missing message on line %d", lineno)
            return
        log.debug("Action: %s, Message: %s", action, message)
        yield Request(action, message)


def open_input(path: str) -> TextIO:
    if path == "-":
        # same decoding as a named file, so undecodable bytes pass through
        if hasattr(sys.stdin, "reconfigure"):
            sys.stdin.reconfigure(errors="surrogateescape")
        return sys.stdin
    fp = open(path, "r", encoding="utf-8", errors="surrogateescape")
    log.debug("File opened: %s", path)
    return fp


# -----------------------------
# Connection
# -----------------------------
class ActionClient:
    def __init__(self, config: Config):
        self.config = config
        self.sock: Optional[socket.socket] = None

    def connect(self) -> None:
        log.debug("Connecting to %s:%s", self.config.host, self.config.port)
        try:
            self.sock = socket.create_connection((self.config.host, self.config.port))
        except OSError as e:
            raise ConnectionError(
                f"Could not connect to {self.config.host}:{self.config.port}: {e}"
            ) from e
        self.sock.settimeout(None)
        log.debug("Connected to server!")

    def send_requests(self, requests: Iterable[Request]) -> int:
        assert self.sock is not None
        count = 0
        for req in requests:
            send_request(self.sock, req.action, req.message)
            count += 1
        log.debug("Sent %d requests", count)
        return count

    def receive(self, handler: FrameHandler) -> int:
        assert self.sock is not None
        decoder = FrameDecoder(self.config.buffer_size)
        count = receive(self.sock, handler, decoder)
        log.debug("Received %d responses", count)
        return count

    def close(self) -> None:
        if self.sock is None:
            return
        sock, self.sock = self.sock, None
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        sock.close()
        log.debug("Client socket closed")


def print_response(payload: bytes) -> None:
    log.debug("Response received: %r", payload)
    print(payload.decode("utf-8", "replace"), flush=True)


# -----------------------------
# CLI
# -----------------------------
def _port(value: str) -> int:
    try:
        port = int(value, 10)
    except ValueError:
        port = 0
    if not 0 < port <= 65535:
        raise argparse.ArgumentTypeError(
            "Invalid port number provided. Port must be a number between 1 and 65535."
        )
    return port


def _buffer_size(value: str) -> int:
    try:
        size = int(value, 10)
    except ValueError:
        size = 0
    if size < MIN_BUFFER_SIZE:
        raise argparse.ArgumentTypeError(f"Buffer size must be an integer >= {MIN_BUFFER_SIZE}.")
    return size


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="actionclient",
        description="Send ACTION MESSAGE lines to a server and print its responses.",
        add_help=False,
    )
    ap.add_argument("--help", action="help", help="Show this message and exit.")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log debug output to stderr.")
    ap.add_argument("-h", "--host", default=DEFAULT_HOST)
    ap.add_argument("-p", "--port", type=_port, default=DEFAULT_PORT)
    ap.add_argument(
        "-b", "--buffer-size", type=_buffer_size, default=MAX_FRAME_SIZE,
        help="Largest response frame accepted, in bytes.",
    )
    ap.add_argument(
        "file",
        help='File of "ACTION MESSAGE" lines. Actions: ' + ", ".join(VALID_ACTIONS)
        + '. Use "-" to read stdin.',
    )
    return ap


def parse_args(argv: Optional[list[str]] = None) -> Config:
    args = build_parser().parse_args(argv)
    return Config(
        file=args.file,
        host=args.host,
        port=args.port,
        verbose=args.verbose,
        buffer_size=args.buffer_size,
    )


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(filename)s:%(lineno)d: %(message)s",
        stream=sys.stderr,
    )


def run(config: Config, handler: FrameHandler = print_response) -> int:
    client = ActionClient(config)
    try:
        fp = open_input(config.file)
    except OSError as e:
        print(f"[!] Could not open file: {e}", file=sys.stderr)
        return 1

    try:
        client.connect()
        sent = client.send_requests(read_requests(fp))
        print(f"[*] Sent {sent} requests to {config.host}:{config.port}", file=sys.stderr)
        received = client.receive(handler)
        print(f"[*] Received {received} responses", file=sys.stderr)
    except (ProtocolError, OSError) as e:
        print(f"[!] {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    finally:
        if fp is not sys.stdin:
            fp.close()
        client.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    config = parse_args(argv)
    configure_logging(config.verbose)
    return run(config)


if __name__ == "__main__":
    sys.exit(main())
