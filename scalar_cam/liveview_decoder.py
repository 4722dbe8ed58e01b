"""
Live-view stream framing.

Common header (8 bytes)
  0       1        2..3              4..7
  0xFF  | type   | sequence number | timestamp
Payload header (128 bytes)
  0..3         4..6             7
  start code | JPEG data size | padding size   | 120 bytes reserved
Payload
  JPEG data size + padding size bytes (type 0x01 = JPEG)
"""
import logging
import threading
from typing import Any, BinaryIO, Callable, Optional

import cv2
import numpy as np

log = logging.getLogger(__name__)

COMMON_HEADER_SIZE = 8
PAYLOAD_HEADER_SIZE = 128
HEADER_SIZE = COMMON_HEADER_SIZE + PAYLOAD_HEADER_SIZE

START_BYTE = 0xFF
PAYLOAD_START_CODE = b"\x24\x35\x68\x79"
TYPE_JPEG = 0x01


class StreamReadError(IOError):
    pass


class ImageFrame:
    """A decoded JPEG plus the one-shot acknowledgement the producer waits for."""

    def __init__(self, data: bytes, sequence: int = 0, timestamp: int = 0,
                 ack: Optional[Callable[[], None]] = None):
        self.data = data
        self.sequence = sequence
        self.timestamp = timestamp
        self._ack = ack
        self._acked = False
        self._lock = threading.Lock()

    @property
    def acknowledged(self) -> bool:
        return self._acked

    def ack(self) -> None:
        with self._lock:
            if self._acked:
                return
            self._acked = True
        if self._ack is not None:
            self._ack()

    def decode(self) -> Any:
        """JPEG -> BGR ndarray (None if OpenCV cannot decode it)."""
        return cv2.imdecode(np.frombuffer(self.data, dtype=np.uint8), cv2.IMREAD_COLOR)


class FrameDecoder:
    def __init__(self, stream: BinaryIO):
        self.stream = stream
        self.frames_read = 0  # every header+payload cycle, JPEG or not
        self.last_sequence = 0
        self.last_timestamp = 0

    def _read_exact(self, size: int, at_boundary: bool = False) -> Optional[bytes]:
        buf = bytearray()
        while len(buf) < size:
            try:
                chunk = self.stream.read(size - len(buf))
            except (OSError, ValueError) as e:
                raise StreamReadError(f"stream read failed: {e}") from e
            if not chunk:
                if at_boundary and not buf:
                    return None
                raise StreamReadError(f"short read: got {len(buf)} of {size} bytes")
            buf += chunk
        return bytes(buf)

    def decode_next(self) -> Optional[bytes]:
        """
        Return the next JPEG payload (padding stripped), skipping any other
        payload type. None means the stream ended cleanly between frames.
        """
        while True:
            header = self._read_exact(HEADER_SIZE, at_boundary=True)
            if header is None:
                return None
            if header[0] != START_BYTE:
                raise StreamReadError(f"bad start byte 0x{header[0]:02x}")
            payload_header = header[COMMON_HEADER_SIZE:]
            if payload_header[:4] != PAYLOAD_START_CODE:
                raise StreamReadError(f"bad payload start code {payload_header[:4].hex()}")

            frame_type = header[1]
            size = (payload_header[4] << 16) | (payload_header[5] << 8) | payload_header[6]
            padding = payload_header[7]

            # always drained, otherwise the next header is lost
            payload = self._read_exact(size + padding)
            self.frames_read += 1

            if frame_type != TYPE_JPEG:
                log.debug(f"skipping payload type 0x{frame_type:02x} ({size} bytes)")
                continue

            self.last_sequence = int.from_bytes(header[2:4], "big")
            self.last_timestamp = int.from_bytes(header[4:8], "big")
            return payload[:size]


class FlowController:
    """
    Drop-newest backpressure: a frame is delivered only while
    produced - acknowledged <= threshold. Nothing is ever queued.
    """

    def __init__(self, threshold: int = 5):
        self.threshold = threshold
        self.produced = 0
        self.acknowledged = 0
        self.dropped = 0
        self._lock = threading.Lock()

    @property
    def outstanding(self) -> int:
        with self._lock:
            return self.produced - self.acknowledged

    def _on_ack(self) -> None:
        with self._lock:
            self.acknowledged += 1

    def offer(self, data: bytes, sequence: int = 0, timestamp: int = 0) -> Optional[ImageFrame]:
        with self._lock:
            if self.produced - self.acknowledged > self.threshold:
                self.dropped += 1
                return None
            self.produced += 1
        return ImageFrame(data, sequence=sequence, timestamp=timestamp, ack=self._on_ack)
