#!/usr/bin/env python3
"""
Live view from a camera over its JSON-RPC API.

Usage:
  scalar-cam-liveview --params config/camera.params.yaml [--show] [--save-dir DIR]

Optional args:
  --camera-url URL     Overrides endpoints.camera from the YAML
  --show               Display frames with OpenCV (press q to quit)
  --save-dir DIR       Save every received JPEG under DIR
  --duration S         Stop after S seconds (default: run until Ctrl+C)
"""
import argparse
import logging
import queue
import time
from typing import Optional, Set

import cv2

from scalar_cam.camera import Camera
from scalar_cam.camera_factory import load_camera
from scalar_cam.frame_writer import FrameWriter
from scalar_cam.liveview_decoder import ImageFrame

log = logging.getLogger("scalar_cam.liveview")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Live view and status monitor for a JSON-RPC camera")
    p.add_argument("--params", default="", help="Per-camera YAML file")
    p.add_argument("--camera-url", default="", help="Camera service base URL")
    p.add_argument("--show", action="store_true")
    p.add_argument("--save-dir", default="")
    p.add_argument("--duration", type=float, default=0.0)
    p.add_argument("--verbose", "-v", action="store_true")
    return p.parse_args(argv)


class LiveViewNode:
    def __init__(self, camera: Camera, show: bool = False, writer: Optional[FrameWriter] = None):
        self.camera = camera
        self.show = show
        self.writer = writer
        # the flow controller bounds this; it only hands frames to the main thread
        self._frames: "queue.Queue[ImageFrame]" = queue.Queue()
        self._stop = False

        self.frame_counter = 0
        self.decode_ms = 0.0
        self.last_fps_time = time.time()

        camera.on_image_received(self._frames.put)
        camera.on_attributes_changed(self._on_attributes)
        camera.on_stream_disconnected(lambda: log.warning("Live view stream lost, reconnecting"))

    def _on_attributes(self, names: Set[str]):
        state = self.camera.state
        if "status" in names:
            log.info(f"Camera status: {state.status}")
        changed = sorted(n for n in names if n in self.camera.settings)
        if changed:
            log.info("Settings: " + ", ".join(f"{n}={self.camera.settings[n].value}" for n in changed))

    def _handle(self, frame: ImageFrame):
        if self.show:
            t0 = time.time()
            img = frame.decode()
            self.decode_ms += (time.time() - t0) * 1000
            if img is not None:
                cv2.imshow("live view", img)
                if cv2.waitKey(1) & 0xFF == ord("q"):
                    self._stop = True
        if self.writer is not None:
            self.writer.submit(frame)
        else:
            frame.ack()

    def run(self, duration: float = 0.0):
        self.camera.start_status_polling()
        self.camera.start_live_view()
        t_end = time.time() + duration if duration > 0 else None
        while not self._stop and (t_end is None or time.time() < t_end):
            try:
                frame = self._frames.get(timeout=0.2)
            except queue.Empty:
                continue
            self._handle(frame)

            self.frame_counter += 1
            now = time.time()
            if now - self.last_fps_time >= 2.0:
                try:
                    avg_fps = self.frame_counter / (now - self.last_fps_time)
                    avg_dec = self.decode_ms / max(1, self.frame_counter)
                    log.info(f"FPS: {avg_fps:.2f} | decode: {avg_dec:.1f} ms")
                finally:
                    self.frame_counter = 0
                    self.decode_ms = 0.0
                    self.last_fps_time = now

    def request_stop(self):
        self._stop = True

    def close(self):
        try: self.camera.stop_live_view()
        except Exception as e: log.warning(f"stopLiveview failed: {e}")
        self.camera.close()
        if self.writer is not None:
            self.writer.close()
        if self.show:
            cv2.destroyAllWindows()


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    node = None
    try:
        overrides = {"endpoints": {"camera": args.camera_url}} if args.camera_url else {}
        camera = load_camera(args.params, **overrides)
        writer = FrameWriter(args.save_dir) if args.save_dir else None
        node = LiveViewNode(camera, show=args.show, writer=writer)
        node.run(args.duration)
    except KeyboardInterrupt:
        log.info("Shutdown requested by user.")
    except Exception as ex:
        log.error(str(ex))
        return 1
    finally:
        if node is not None:
            node.request_stop()
            node.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
