import asyncio
import codecs
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from config import CONSOLE_QUEUE_SIZE, CONSOLE_READ_SIZE
from errors import BridgeError, AttachError, StreamProtocolError
from stream_demux import StreamDemultiplexer

logger = logging.getLogger(__name__)

Subscriber = Callable[[str], Awaitable[None]]


class ConsoleSession:
    """One subscriber bound to one container's live stdio.

    The blocking attach socket is read in a worker thread and handed to the
    decoder through a bounded queue: when the subscriber is slow the reader
    stops pulling from the socket instead of buffering without limit.
    Sessions share nothing except the engine client.
    """

    def __init__(self, engine, container_id: str, subscriber: Subscriber,
                 queue_size: int = CONSOLE_QUEUE_SIZE, read_size: int = CONSOLE_READ_SIZE):
        self.engine = engine
        self.container_id = container_id
        self.subscriber = subscriber
        self.queue_size = queue_size
        self.read_size = read_size
        self._stream = None
        self._demux: Optional[StreamDemultiplexer] = None
        self._chunks: Optional[asyncio.Queue] = None
        self._decoders: Dict[str, codecs.IncrementalDecoder] = {}
        self._tasks: List[asyncio.Task] = []
        self._closed = False

    @property
    def attached(self) -> bool:
        return self._stream is not None and not self._stream.closed

    async def __aenter__(self) -> "ConsoleSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def open(self) -> bool:
        """Attach to the container. Returns False when nothing was attached."""
        try:
            descriptor = await asyncio.to_thread(self.engine.inspect, self.container_id)
        except BridgeError as e:
            logger.warning(f"Console inspect failed for {self.container_id}: {e}")
            await self._notice(f"Error attaching to console: {e.message}")
            return False

        if not descriptor.running:
            await self._notice("Server is offline.")
            return False

        try:
            stream = await asyncio.to_thread(
                self.engine.attach, self.container_id,
                stdin=True, stdout=True, stderr=True, logs=True,
            )
        except BridgeError as e:
            logger.error(f"Attach error for {self.container_id}: {e}")
            await self._notice(f"Error attaching to console: {e.message}")
            return False

        if self._closed:
            # Subscriber went away while the attach request was in flight
            stream.close()
            return False

        self._stream = stream
        self._demux = StreamDemultiplexer(descriptor.tty, container_id=self.container_id)
        self._chunks = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [
            asyncio.create_task(self._read_loop(stream)),
            asyncio.create_task(self._pump()),
        ]
        logger.info(f"Console session opened for {self.container_id} (tty={descriptor.tty})")
        return True

    async def send(self, text: str) -> bool:
        """Best-effort write to the container's stdin."""
        stream = self._stream
        if stream is None or stream.closed:
            logger.info(f"Console input for {self.container_id} dropped: no active stream")
            return False
        try:
            await asyncio.to_thread(stream.write, text.encode("utf-8"))
        except AttachError as e:
            logger.warning(f"Console input for {self.container_id} dropped: {e}")
            return False
        return True

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.close_write()
            # Closing the socket also unblocks the reader thread
            stream.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info(f"Console session closed for {self.container_id}")

    async def _read_loop(self, stream) -> None:
        try:
            while True:
                chunk = await asyncio.to_thread(stream.read, self.read_size)
                if not chunk:
                    break
                await self._chunks.put(chunk)
        except AttachError as e:
            if not self._closed:
                logger.warning(f"Console stream for {self.container_id} failed: {e}")
        await self._chunks.put(None)

    async def _pump(self) -> None:
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                break
            try:
                frames = self._demux.feed(chunk)
            except StreamProtocolError as e:
                logger.error(f"Console stream for {self.container_id} is corrupt: {e}")
                await self._notice("Console stream error.")
                return
            for frame in frames:
                text = self._decode(frame.kind, frame.payload)
                if not text:
                    continue
                try:
                    await self.subscriber(text)
                except Exception as e:
                    logger.info(f"Console subscriber for {self.container_id} went away: {e}")
                    return
        if not self._closed:
            await self._notice("Connection closed.")

    def _decode(self, kind: str, payload: bytes) -> str:
        # Multi-byte characters may straddle frames, keep one decoder per stream
        decoder = self._decoders.get(kind)
        if decoder is None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            self._decoders[kind] = decoder
        return decoder.decode(payload)

    async def _notice(self, message: str) -> None:
        try:
            await self.subscriber(f"\r\n{message}\r\n")
        except Exception as e:
            logger.info(f"Could not deliver console notice to subscriber of {self.container_id}: {e}")
