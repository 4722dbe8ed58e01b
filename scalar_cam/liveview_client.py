import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .camera_base import StreamFactory
from .liveview_decoder import FlowController, FrameDecoder, ImageFrame, StreamReadError

log = logging.getLogger(__name__)

ImageCallback = Callable[[ImageFrame], None]


class StreamSession:
    """
    One connection to the live-view URL: a reader thread, its decoder and
    its flow counters. Any read failure simply ends the thread; the watchdog
    notices the missing progress.
    """

    def __init__(self, url: str, open_stream: StreamFactory, on_image: ImageCallback,
                 flow_threshold: int = 5, generation: int = 0):
        self.url = url
        self.open_stream = open_stream
        self.on_image = on_image
        self.flow = FlowController(flow_threshold)
        self.generation = generation
        self.decoder: Optional[FrameDecoder] = None
        self._stream = None
        self._cancel = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"liveview-{generation}", daemon=True)

    @property
    def progress(self) -> int:
        return self.decoder.frames_read if self.decoder is not None else 0

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> "StreamSession":
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancel.set()
        stream = self._stream
        if stream is not None:
            # unblocks a pending read in the reader thread
            try:
                stream.close()
            except Exception as e:
                log.debug(f"[{self.generation}] close failed: {e}")

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run(self) -> None:
        try:
            self._stream = self.open_stream(self.url)
            if self._cancel.is_set():
                return
            self.decoder = FrameDecoder(self._stream)
            while not self._cancel.is_set():
                data = self.decoder.decode_next()
                if data is None:
                    log.debug(f"[{self.generation}] live view stream ended")
                    break
                if self._cancel.is_set():
                    break
                frame = self.flow.offer(data, self.decoder.last_sequence, self.decoder.last_timestamp)
                if frame is not None:
                    self.on_image(frame)
        except StreamReadError as e:
            if not self._cancel.is_set():
                log.debug(f"[{self.generation}] live view read error: {e}")
        except Exception as e:
            if not self._cancel.is_set():
                log.warning(f"[{self.generation}] live view session failed: {e}")
        finally:
            stream, self._stream = self._stream, None
            if stream is not None:
                try:
                    stream.close()
                except Exception as e:
                    log.debug(f"[{self.generation}] close failed: {e}")


# ---------- Watchdog state machine ----------
class WatchdogState(enum.Enum):
    RUNNING = "running"
    RESTARTING = "restarting"
    STOPPED = "stopped"


class WatchdogAction(enum.Enum):
    NONE = "none"
    RESTART = "restart"
    STOP = "stop"


@dataclass
class Watchdog:
    """
    Pure transition logic, ticked once per interval with the current
    session's progress counter. No threads and no clock of its own.
    """

    cooldown_s: float = 2.0
    state: WatchdogState = WatchdogState.RUNNING
    last_progress: int = 0
    resume_at: float = 0.0

    def tick(self, progress: int, now: float, cancelled: bool = False) -> WatchdogAction:
        if self.state is WatchdogState.STOPPED:
            return WatchdogAction.NONE
        if cancelled:
            self.state = WatchdogState.STOPPED
            return WatchdogAction.STOP

        if self.state is WatchdogState.RESTARTING:
            if now >= self.resume_at:
                self.state = WatchdogState.RUNNING
            return WatchdogAction.NONE

        if progress == self.last_progress:
            self.state = WatchdogState.RESTARTING
            self.resume_at = now + self.cooldown_s
            self.last_progress = 0  # the new session starts counting from zero
            return WatchdogAction.RESTART

        self.last_progress = progress
        return WatchdogAction.NONE


class LiveViewClient:
    def __init__(
        self,
        url: str,
        open_stream: StreamFactory,
        flow_threshold: int = 5,
        watchdog_interval_s: float = 1.0,
        watchdog_cooldown_s: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.url = url
        self.open_stream = open_stream
        self.flow_threshold = flow_threshold
        self.watchdog_interval_s = watchdog_interval_s
        self.watchdog = Watchdog(cooldown_s=watchdog_cooldown_s)
        self.clock = clock
        self.restarts = 0

        self._image_listeners: List[ImageCallback] = []
        self._disconnect_listeners: List[Callable[[], None]] = []
        self._session: Optional[StreamSession] = None
        self._stop_evt = threading.Event()
        self._watchdog_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    # ---------- Listeners ----------
    def add_image_listener(self, callback: ImageCallback) -> None:
        self._image_listeners.append(callback)

    def add_disconnect_listener(self, callback: Callable[[], None]) -> None:
        self._disconnect_listeners.append(callback)

    def _emit_image(self, frame: ImageFrame) -> None:
        for cb in list(self._image_listeners):
            try:
                cb(frame)
            except Exception as e:
                log.error(f"image listener failed: {e}")

    def _emit_disconnected(self) -> None:
        for cb in list(self._disconnect_listeners):
            try:
                cb()
            except Exception as e:
                log.error(f"disconnect listener failed: {e}")

    # ---------- Lifecycle ----------
    @property
    def session(self) -> Optional[StreamSession]:
        return self._session

    @property
    def running(self) -> bool:
        return self._watchdog_thread is not None and self._watchdog_thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._stop_evt.clear()
            self.watchdog = Watchdog(cooldown_s=self.watchdog.cooldown_s)
            self._open_session()
            self._watchdog_thread = threading.Thread(
                target=self._watchdog_loop, name="liveview-watchdog", daemon=True)
            self._watchdog_thread.start()
        log.info(f"Live view started: {self.url}")

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_evt.set()
        thread = self._watchdog_thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout)
        self._close_session(timeout)

    def _open_session(self) -> None:
        generation = self.restarts
        self._session = StreamSession(
            self.url, self.open_stream, self._emit_image,
            flow_threshold=self.flow_threshold, generation=generation,
        ).start()

    def _close_session(self, timeout: float = 0.0) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.cancel()
            if timeout:
                session.join(timeout)

    def _restart(self) -> None:
        self.restarts += 1
        log.warning(f"No live view frame in {self.watchdog_interval_s:.1f}s, reconnecting (#{self.restarts})")
        self._close_session()
        self._open_session()
        self._emit_disconnected()

    def _watchdog_loop(self) -> None:
        while not self._stop_evt.wait(self.watchdog_interval_s):
            session = self._session
            progress = session.progress if session is not None else 0
            action = self.watchdog.tick(progress, self.clock(), cancelled=self._stop_evt.is_set())
            if action is WatchdogAction.RESTART:
                self._restart()
            elif action is WatchdogAction.STOP:
                break
        self.watchdog.tick(0, self.clock(), cancelled=True)
        log.info("Live view stopped")
