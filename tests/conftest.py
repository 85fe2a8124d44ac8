from __future__ import annotations

import socketserver
import threading

import pytest

from actionclient.protocol import FrameDecoder, decode_request_payload, encode_frame


class FakeConnection:
    """In-memory stand-in for a socket: chunked reads and short writes."""

    def __init__(self, incoming: bytes = b"", chunk: int = 1 << 16, max_send: int = 1 << 16):
        self.incoming = incoming
        self.chunk = chunk
        self.max_send = max_send
        self.sent = bytearray()
        self.send_calls = 0
        self.recv_sizes: list[int] = []

    def send(self, data) -> int:
        self.send_calls += 1
        n = min(len(data), self.max_send)
        self.sent.extend(bytes(data[:n]))
        return n

    def recv(self, n: int) -> bytes:
        self.recv_sizes.append(n)
        take = min(n, self.chunk)
        data, self.incoming = self.incoming[:take], self.incoming[take:]
        return data


@pytest.fixture
def fake_conn():
    return FakeConnection


def transform(action: str, message: str) -> str:
    if action == "uppercase":
        return message.upper()
    if action == "lowercase":
        return message.lower()
    if action == "reverse":
        return message[::-1]
    # shuffle/random are nondeterministic on a real server; sorted is a valid permutation
    return "".join(sorted(message))


class ActionHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        decoder = FrameDecoder()
        handled = 0
        while handled < self.server.expect:
            data = self.request.recv(decoder.free_space)
            if not data:
                break
            for payload in decoder.decode(data):
                req = decode_request_payload(payload)
                self.server.received.append(req)
                reply = transform(req.action, req.message).encode("utf-8", "surrogateescape")
                self.request.sendall(encode_frame(reply))
                handled += 1


class ActionServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, expect: int):
        self.expect = expect
        self.received = []
        super().__init__(("127.0.0.1", 0), ActionHandler)

    @property
    def port(self) -> int:
        return self.server_address[1]


@pytest.fixture
def action_server():
    servers = []

    def start(expect: int) -> ActionServer:
        srv = ActionServer(expect)
        threading.Thread(target=srv.serve_forever, daemon=True).start()
        servers.append(srv)
        return srv

    yield start
    for srv in servers:
        srv.shutdown()
        srv.server_close()
