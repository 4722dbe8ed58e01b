import cv2
import numpy as np
import pytest

from conftest import ChunkedStream, make_frame
from scalar_cam.liveview_decoder import FlowController, FrameDecoder, ImageFrame, StreamReadError


def decode_all(decoder):
    out = []
    while True:
        data = decoder.decode_next()
        if data is None:
            return out
        out.append(data)


def test_single_jpeg_frame_strips_padding():
    stream = ChunkedStream(make_frame(b"JPEGDATA", padding=5))
    decoder = FrameDecoder(stream)
    assert decoder.decode_next() == b"JPEGDATA"
    assert decoder.decode_next() is None


def test_only_jpeg_frames_are_emitted_in_order():
    frames = [
        (0x01, b"first"),
        (0x02, b"frame-info-payload"),
        (0x01, b"second"),
        (0x02, b""),
        (0x02, b"x" * 300),
        (0x01, b"third"),
    ]
    data = b"".join(make_frame(p, frame_type=t, padding=i % 3) for i, (t, p) in enumerate(frames))
    decoder = FrameDecoder(ChunkedStream(data))

    assert decode_all(decoder) == [b"first", b"second", b"third"]
    assert decoder.frames_read == len(frames)


def test_partial_reads_are_completed():
    payload = bytes(range(256)) * 10
    data = make_frame(payload, padding=7) + make_frame(b"tail")
    decoder = FrameDecoder(ChunkedStream(data, chunk=7))
    assert decode_all(decoder) == [payload, b"tail"]


def test_three_byte_size_is_big_endian():
    payload = b"\xab" * 70000  # needs the most significant byte
    decoder = FrameDecoder(ChunkedStream(make_frame(payload)))
    assert decoder.decode_next() == payload


def test_sequence_and_timestamp_are_kept():
    decoder = FrameDecoder(ChunkedStream(make_frame(b"a", sequence=513, timestamp=123456)))
    decoder.decode_next()
    assert decoder.last_sequence == 513
    assert decoder.last_timestamp == 123456


def test_short_payload_is_a_read_error():
    data = make_frame(b"0123456789")[:-4]
    with pytest.raises(StreamReadError):
        FrameDecoder(ChunkedStream(data)).decode_next()


def test_short_header_is_a_read_error():
    data = make_frame(b"0123456789")[:50]
    with pytest.raises(StreamReadError):
        FrameDecoder(ChunkedStream(data)).decode_next()


def test_bad_start_byte_is_a_read_error():
    data = bytearray(make_frame(b"abc"))
    data[0] = 0x00
    with pytest.raises(StreamReadError):
        FrameDecoder(ChunkedStream(bytes(data))).decode_next()


def test_underlying_io_error_is_wrapped():
    class Broken:
        def read(self, n):
            raise ConnectionResetError("peer reset")

    with pytest.raises(StreamReadError):
        FrameDecoder(Broken()).decode_next()


def test_image_frame_decodes_jpeg():
    ok, buf = cv2.imencode(".jpg", np.full((16, 24, 3), 128, dtype=np.uint8))
    assert ok
    img = ImageFrame(buf.tobytes()).decode()
    assert img.shape == (16, 24, 3)


# ---------- Flow control ----------
def test_flow_controller_drops_after_threshold_without_acks():
    flow = FlowController(threshold=3)
    delivered = [flow.offer(b"x") for _ in range(10)]

    assert all(f is not None for f in delivered[:4])
    assert all(f is None for f in delivered[4:])
    assert flow.produced == 4
    assert flow.dropped == 6


def test_acknowledgement_lets_one_more_frame_through():
    flow = FlowController(threshold=2)
    frames = [flow.offer(b"x") for _ in range(3)]
    assert flow.offer(b"x") is None

    frames[0].ack()
    assert flow.offer(b"y") is not None
    assert flow.offer(b"z") is None


def test_ack_is_one_shot():
    flow = FlowController(threshold=0)
    frame = flow.offer(b"x")
    frame.ack()
    frame.ack()
    assert flow.acknowledged == 1
    assert frame.acknowledged
