"""
actionclient - length-prefixed text framing.

Every frame on the wire is an ASCII decimal length, a single space, and
exactly that many payload bytes. Frames follow each other with no
terminator:

    15 uppercase 3 abc12 reverse 2 xy

Requests nest a second instance of the same format inside the payload:
``<action> <len(message)> <message>``. Responses are opaque to this module.

This framing works over any blocking byte stream exposing the socket
``send``/``recv`` interface.
"""
from __future__ import annotations

import enum
import logging
from typing import Callable, Iterator, List, NamedTuple, Optional, Union

log = logging.getLogger(__name__)


MAX_FRAME_SIZE = 4096  # decode buffer capacity; bounds one whole frame
SEPARATOR = b" "
_DIGITS = b"0123456789"


# -----------------------------
# Errors
# -----------------------------
class ProtocolError(Exception):
    pass


class InvalidRequest(ProtocolError, ValueError):
    pass


class SendFailure(ProtocolError, OSError):
    pass


class DecodeError(ProtocolError):
    def __init__(self, message: str, frames: Optional[List[bytes]] = None):
        super().__init__(message)
        # frames completed earlier in the same feed() call
        self.frames: List[bytes] = frames or []


class MalformedFrame(DecodeError):
    pass


class FrameTooLarge(DecodeError):
    pass


class HandlerFailure(ProtocolError):
    def __init__(self, message: str, payload: bytes):
        super().__init__(message)
        self.payload = payload


# -----------------------------
# Encoder
# -----------------------------
class Request(NamedTuple):
    action: str
    message: str


def _as_bytes(message: Union[str, bytes]) -> bytes:
    if isinstance(message, bytes):
        return message
    return message.encode("utf-8", "surrogateescape")


def encode_request(action: str, message: Union[str, bytes]) -> bytes:
    if not action:
        raise InvalidRequest("Action must not be empty")
    if any(ch.isspace() for ch in action):
        raise InvalidRequest(f"Action must not contain whitespace: {action!r}")
    try:
        action_raw = action.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidRequest(f"Action is not encodable as UTF-8: {action!r}") from e
    raw = _as_bytes(message)
    return b"%s %d %s" % (action_raw, len(raw), raw)


def encode_frame(payload: bytes) -> bytes:
    return b"%d %s" % (len(payload), payload)


def decode_request_payload(payload: bytes) -> Request:
    """Split a request payload back into its action and message."""
    action, sep, rest = payload.partition(SEPARATOR)
    if not action or not sep:
        raise MalformedFrame(f"Request has no action field: {payload[:32]!r}")
    length_field, sep, message = rest.partition(SEPARATOR)
    if not sep or not length_field.isdigit():
        raise MalformedFrame(f"Request has an invalid length field: {length_field[:32]!r}")
    if int(length_field) != len(message):
        raise MalformedFrame(
            f"Request declares {int(length_field)} message bytes but carries {len(message)}"
        )
    try:
        action_text = action.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedFrame(f"Request action is not valid UTF-8: {action[:32]!r}") from e
    return Request(action_text, message.decode("utf-8", "surrogateescape"))


def write_frame(conn, data: bytes) -> int:
    """Send all of ``data``, continuing after short writes."""
    view = memoryview(data)
    sent = 0
    while sent < len(data):
        try:
            n = conn.send(view[sent:])
        except OSError as e:
            raise SendFailure(f"Send failed after {sent}/{len(data)} bytes: {e}") from e
        if n <= 0:
            raise SendFailure(f"Connection stopped accepting data after {sent}/{len(data)} bytes")
        sent += n
        if sent < len(data):
            log.debug("Short write: %d/%d bytes", sent, len(data))
    return sent


def send_request(conn, action: str, message: Union[str, bytes]) -> int:
    payload = encode_request(action, message)
    log.debug("Sending: %s", payload.decode("utf-8", "replace"))
    sent = write_frame(conn, encode_frame(payload))
    log.debug("Bytes sent: %d", sent)
    return sent


# -----------------------------
# Decoder
# -----------------------------
class ParseState(enum.Enum):
    READING_LENGTH = "reading_length"
    EXPECT_SEPARATOR = "expect_separator"
    READING_PAYLOAD = "reading_payload"
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    MALFORMED = "malformed"


class DecodeResult(NamedTuple):
    frames: List[bytes]
    remainder: bytes
    state: ParseState


class FrameDecoder:
    """
    Incremental decoder for a stream of length-prefixed frames.

    The decode buffer is owned by the instance. After every pass it holds
    only the bytes of an incomplete trailing frame, starting at offset 0.
    ``capacity`` is the upper bound for one frame, length field and
    separator included; a frame that cannot fit raises FrameTooLarge.
    """

    def __init__(self, capacity: int = MAX_FRAME_SIZE):
        if capacity < 2:
            raise ValueError("capacity must hold at least a length digit and a separator")
        self.capacity = capacity
        self._buf = bytearray()
        self.state = ParseState.COMPLETE

    @property
    def remainder(self) -> bytes:
        return bytes(self._buf)

    @property
    def free_space(self) -> int:
        return self.capacity - len(self._buf)

    def clear(self) -> None:
        self._buf.clear()
        if self.state is not ParseState.MALFORMED:
            self.state = ParseState.COMPLETE

    def feed(self, data: bytes) -> DecodeResult:
        frames: List[bytes] = []
        try:
            for frame in self.decode(data):
                frames.append(frame)
        except DecodeError as e:
            e.frames = frames
            raise
        return DecodeResult(frames, self.remainder, self.state)

    def decode(self, data: bytes) -> Iterator[bytes]:
        """
        Append ``data`` now and return an iterator over the frames it
        completes. Frames are parsed lazily, one per ``next()``.
        """
        if self.state is ParseState.MALFORMED:
            raise MalformedFrame("Decoder stopped after an earlier framing error")
        self._buf.extend(data)
        return self._frames()

    def _frames(self) -> Iterator[bytes]:
        while self._buf:
            frame = self._next_frame()
            if frame is None:
                break
            yield frame
        if not self._buf:
            self.state = ParseState.COMPLETE

    def _fail(self, exc_type, message: str):
        self.state = ParseState.MALFORMED
        self._buf.clear()
        return exc_type(message)

    def _next_frame(self) -> Optional[bytes]:
        buf = self._buf
        end = len(buf)
        pos = 0
        length = 0
        state = ParseState.READING_LENGTH

        while True:
            if state is ParseState.READING_LENGTH:
                while pos < end and buf[pos] in _DIGITS:
                    length = length * 10 + (buf[pos] - 0x30)
                    pos += 1
                    if length > self.capacity or pos >= self.capacity:
                        raise self._fail(
                            FrameTooLarge,
                            f"Frame length field exceeds the {self.capacity} byte buffer",
                        )
                if pos == end:
                    state = ParseState.INCOMPLETE
                elif pos == 0:
                    raise self._fail(
                        MalformedFrame, f"Expected a length digit, got {bytes(buf[:16])!r}"
                    )
                else:
                    state = ParseState.EXPECT_SEPARATOR

            elif state is ParseState.EXPECT_SEPARATOR:
                if buf[pos] != SEPARATOR[0]:
                    raise self._fail(
                        MalformedFrame,
                        f"Expected a space after length {length}, got {bytes(buf[pos:pos + 1])!r}",
                    )
                pos += 1
                if pos + length > self.capacity:
                    raise self._fail(
                        FrameTooLarge,
                        f"Frame of {length} bytes does not fit the {self.capacity} byte buffer",
                    )
                state = ParseState.READING_PAYLOAD

            elif state is ParseState.READING_PAYLOAD:
                if end - pos < length:
                    state = ParseState.INCOMPLETE
                    continue
                payload = bytes(buf[pos:pos + length])
                del buf[:pos + length]
                self.state = ParseState.READING_LENGTH if buf else ParseState.COMPLETE
                return payload

            else:  # INCOMPLETE: keep the whole frame, length field included
                self.state = ParseState.INCOMPLETE
                return None


# -----------------------------
# Receive loop
# -----------------------------
FrameHandler = Callable[[bytes], Optional[bool]]


def iter_frames(conn, decoder: Optional[FrameDecoder] = None) -> Iterator[bytes]:
    """Read from ``conn`` until end of stream, yielding complete frames."""
    decoder = decoder or FrameDecoder()
    while True:
        try:
            data = conn.recv(decoder.free_space)
        except OSError as e:
            log.debug("Read ended with transport error: %s", e)
            data = b""
        if not data:
            break
        log.debug("Received %d bytes", len(data))
        yield from decoder.decode(data)

    if decoder.remainder:
        log.debug("Stream closed mid-frame; discarding %d buffered bytes", len(decoder.remainder))
        decoder.clear()


def receive(conn, handler: FrameHandler, decoder: Optional[FrameDecoder] = None) -> int:
    """
    Dispatch every frame read from ``conn`` to ``handler``, in order.

    Returns the number of frames handled. A handler that raises or returns
    False stops the loop with HandlerFailure; frames still buffered are
    dropped.
    """
    decoder = decoder or FrameDecoder()
    count = 0
    for payload in iter_frames(conn, decoder):
        try:
            ok = handler(payload)
        except Exception as e:
            decoder.clear()
            raise HandlerFailure(f"Handling response failed: {e}", payload) from e
        if ok is False:
            decoder.clear()
            raise HandlerFailure("Handling response failed", payload)
        count += 1
    return count
