"""Decoder for the stdio stream of an attached container.

Containers created without a TTY multiplex stdout and stderr on one
connection. Every frame starts with an 8 byte header::

    [stream type, 0, 0, 0, size (4 bytes, big-endian)]

followed by ``size`` payload bytes. TTY containers send raw bytes with no
framing at all.
"""

import struct
from typing import List

from errors import StreamProtocolError
from models import ConsoleFrame

HEADER_SIZE = 8
_HEADER = struct.Struct(">BxxxL")

STREAM_KINDS = {
    0: "stdout",  # stdin echo, shown with regular output
    1: "stdout",
    2: "stderr",
}


class StreamDemultiplexer:
    def __init__(self, tty: bool, container_id: str | None = None):
        self.tty = tty
        self.container_id = container_id
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Bytes held back waiting for the rest of a frame."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> List[ConsoleFrame]:
        """Consume one transport chunk and return the frames it completed, in order."""
        if self.tty:
            return [ConsoleFrame("stdout", bytes(chunk))] if chunk else []

        self._buffer.extend(chunk)
        frames: List[ConsoleFrame] = []
        offset = 0
        buf = self._buffer
        while len(buf) - offset >= HEADER_SIZE:
            stream_type, size = _HEADER.unpack_from(buf, offset)
            kind = STREAM_KINDS.get(stream_type)
            if kind is None:
                raise StreamProtocolError(
                    f"Unknown stream type {stream_type} in multiplexed stream",
                    container_id=self.container_id,
                )
            end = offset + HEADER_SIZE + size
            if end > len(buf):
                break
            frames.append(ConsoleFrame(kind, bytes(buf[offset + HEADER_SIZE:end])))
            offset = end
        if offset:
            del buf[:offset]
        return frames
