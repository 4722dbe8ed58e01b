import threading
import time

import pytest

from scalar_cam.api import CameraApi
from scalar_cam.camera_base import RpcChannel, RpcResult

EVENT_SLOTS = 60


class FakeChannel(RpcChannel):
    """Records every call; answers from per-method handlers (default: [0])."""

    def __init__(self):
        self.calls = []
        self.handlers = {}
        self._lock = threading.Lock()

    def on(self, method, response):
        self.handlers[method] = response

    def invoke(self, method, params=(), version="1.0"):
        with self._lock:
            self.calls.append((method, list(params)))
        handler = self.handlers.get(method)
        if handler is None:
            return RpcResult(result=[0])
        if callable(handler):
            return handler(list(params))
        return handler

    def calls_to(self, method):
        with self._lock:
            return [params for m, params in self.calls if m == method]

    def setter_calls(self):
        with self._lock:
            return [(m, p) for m, p in self.calls if m.startswith("set")]


def event_result(slots):
    result = [None] * EVENT_SLOTS
    for index, value in slots.items():
        result[index] = value
    return RpcResult(result=result)


def make_frame(payload, frame_type=0x01, padding=0, sequence=0, timestamp=0):
    common = bytes([0xFF, frame_type]) + sequence.to_bytes(2, "big") + timestamp.to_bytes(4, "big")
    payload_header = (b"\x24\x35\x68\x79" + len(payload).to_bytes(3, "big")
                      + bytes([padding]) + bytes(120))
    return common + payload_header + payload + b"\x00" * padding


class ChunkedStream:
    """In-memory stream whose read() returns at most `chunk` bytes."""

    def __init__(self, data, chunk=None):
        self.data = data
        self.pos = 0
        self.chunk = chunk
        self.closed = False

    def read(self, n=-1):
        if n is None or n < 0:
            n = len(self.data) - self.pos
        if self.chunk:
            n = min(n, self.chunk)
        out = self.data[self.pos:self.pos + n]
        self.pos += len(out)
        return out

    def close(self):
        self.closed = True


class PacedStream:
    """
    Produces one JPEG frame every `period` seconds, optionally only
    `limit` of them; afterwards read() blocks until close().
    """

    def __init__(self, period=0.05, limit=None, payload=b"\xff\xd8jpeg\xff\xd9"):
        self.period = period
        self.limit = limit
        self.payload = payload
        self.produced = 0
        self._buf = b""
        self._closed = threading.Event()

    def read(self, n):
        while not self._buf:
            if self._closed.is_set():
                return b""
            if self.limit is not None and self.produced >= self.limit:
                self._closed.wait()
                return b""
            if self._closed.wait(self.period):
                return b""
            self.produced += 1
            self._buf = make_frame(self.payload, sequence=self.produced)
        out, self._buf = self._buf[:n], self._buf[n:]
        return out

    def close(self):
        self._closed.set()


def wait_until(predicate, timeout=2.0, interval=0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


FULL_EVENT = {
    1: {"type": "cameraStatus", "cameraStatus": "IDLE"},
    2: {"type": "zoomInformation", "zoomPosition": 40},
    3: {"type": "liveviewStatus", "liveviewStatus": True},
    10: [{"type": "storageInformation", "recordTarget": True,
          "recordableTime": 120, "numberOfRecordableImages": 900}],
    13: {"type": "movieQuality", "currentMovieQuality": "HQ",
         "movieQualityCandidates": ["HQ", "STD"]},
    21: {"type": "shootMode", "currentShootMode": "still"},
    25: {"type": "exposureCompensation", "currentExposureCompensation": 0,
         "minExposureCompensation": -9, "maxExposureCompensation": 9,
         "stepIndexOfExposureCompensation": 1},
    26: {"type": "flashMode", "currentFlashMode": "auto",
         "flashModeCandidates": ["off", "auto", "on"]},
    29: {"type": "isoSpeedRate", "currentIsoSpeedRate": "AUTO",
         "isoSpeedRateCandidates": ["AUTO", "100", "200", "400"]},
}


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def api(channel):
    return CameraApi(channel)
