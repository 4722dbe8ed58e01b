from datetime import datetime
from pathlib import Path
from typing import List, Optional
import logging
import queue
import threading

from .liveview_decoder import ImageFrame

log = logging.getLogger(__name__)


class FrameWriter:
    """
    Saves live-view JPEGs from background writer threads.

    The frame is acknowledged as soon as its bytes are queued, so a slow disk
    never throttles the stream; a full queue drops the frame instead.
    """

    def __init__(self, out_dir: Path, prefix: str = "lv", writer_threads: int = 1,
                 queue_size: int = 64):
        self.out_dir = Path(out_dir)
        self.out_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix
        self.saved = 0
        self.dropped = 0
        self._seq = 0
        self._write_q: queue.Queue = queue.Queue(maxsize=queue_size)
        self._threads: List[threading.Thread] = []
        self._alive = True
        self._stats_lock = threading.Lock()
        for i in range(max(1, writer_threads)):
            t = threading.Thread(target=self._writer_loop, name=f"frame-writer-{i}", daemon=True)
            t.start()
            self._threads.append(t)

    def _filename(self, frame: ImageFrame) -> Path:
        self._seq += 1
        ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")[:-3]
        return self.out_dir / f"{self.prefix}_{ts}_{self._seq:06d}_{frame.sequence:05d}.jpg"

    def submit(self, frame: ImageFrame) -> bool:
        out_path = self._filename(frame)
        try:
            self._write_q.put_nowait((out_path, frame.data))
            return True
        except queue.Full:
            with self._stats_lock:
                self.dropped += 1
            return False
        finally:
            frame.ack()

    def _writer_loop(self) -> None:
        while self._alive:
            try:
                item = self._write_q.get(timeout=0.2)
            except queue.Empty:
                continue
            if item is None:
                self._write_q.task_done()
                break
            out_path, data = item
            try:
                with open(out_path, "wb", buffering=65536) as f:
                    f.write(data)
                with self._stats_lock:
                    self.saved += 1
            except OSError as e:
                log.error(f"Write failed: {out_path} | {e}")
            finally:
                self._write_q.task_done()

    def flush(self) -> None:
        self._write_q.join()

    def close(self, timeout: Optional[float] = 1.0) -> None:
        self.flush()
        self._alive = False
        for _ in self._threads:
            try:
                self._write_q.put_nowait(None)
            except queue.Full:
                break
        for t in self._threads:
            t.join(timeout=timeout)
