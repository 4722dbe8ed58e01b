import logging
import threading
import time
from typing import Callable, List, Optional, Set

from .api import CameraApi
from .camera_base import StreamFactory
from .liveview_client import ImageCallback, LiveViewClient
from .rpc_http import open_http_stream
from .settings import Setting, SettingsRegistry, create_camera_settings
from .synchronizer import AttributesListener, StateSynchronizer

log = logging.getLogger(__name__)

STATUS_IDLE = "IDLE"
STATUS_MOVIE_RECORDING = "MovieRecording"


class Camera:
    """
    One connected camera: settings, status polling and live view.
    Settings are read and written through `settings`; everything the device
    reports arrives through the polling loop.
    """

    def __init__(
        self,
        api: CameraApi,
        min_poll_interval_s: float = 0.5,
        flow_threshold: int = 5,
        watchdog_interval_s: float = 1.0,
        watchdog_cooldown_s: float = 2.0,
        shoot_mode_timeout_s: float = 10.0,
    ):
        self.api = api
        self.flow_threshold = flow_threshold
        self.watchdog_interval_s = watchdog_interval_s
        self.watchdog_cooldown_s = watchdog_cooldown_s
        self.shoot_mode_timeout_s = shoot_mode_timeout_s

        self.settings: SettingsRegistry = create_camera_settings(
            api, on_exposure_mode_changed=self._on_exposure_mode_changed)
        self.synchronizer = StateSynchronizer(api, self.settings, min_interval_s=min_poll_interval_s)
        self.state = self.synchronizer.state
        self.liveview: Optional[LiveViewClient] = None

        self._image_listeners: List[ImageCallback] = []
        self._disconnect_listeners: List[Callable[[], None]] = []
        self._busy_listeners: List[Callable[[bool], None]] = []
        self._shoot_mode_evt = threading.Event()
        self.synchronizer.add_listener(self._on_attributes)

    # ---------- Events ----------
    def on_image_received(self, callback: ImageCallback) -> None:
        self._image_listeners.append(callback)
        if self.liveview is not None:
            self.liveview.add_image_listener(callback)

    def on_attributes_changed(self, callback: AttributesListener) -> None:
        """Device-reported changes arrive from the poller, user writes from the registry."""
        self.synchronizer.add_listener(callback)
        self.settings.add_listener(callback, user_writes_only=True)

    def on_stream_disconnected(self, callback: Callable[[], None]) -> None:
        self._disconnect_listeners.append(callback)
        if self.liveview is not None:
            self.liveview.add_disconnect_listener(callback)

    def on_busy_changed(self, callback: Callable[[bool], None]) -> None:
        """True while the camera reconfigures after an exposure mode change, then False."""
        self._busy_listeners.append(callback)

    def _emit_busy(self, busy: bool) -> None:
        for cb in list(self._busy_listeners):
            try:
                cb(busy)
            except Exception as e:
                log.error(f"busy listener failed: {e}")

    def _on_attributes(self, names: Set[str]) -> None:
        if "shoot_mode" in names:
            self._shoot_mode_evt.set()

    def _on_exposure_mode_changed(self, mode: str) -> None:
        # the available options change with the mode, so everything is re-read
        self._emit_busy(True)
        if self.synchronizer.polling:
            self.synchronizer.request_full_refresh(on_done=lambda: self._emit_busy(False))
            return
        try:
            self.synchronizer.full_refresh()
        finally:
            self._emit_busy(False)

    # ---------- Status ----------
    @property
    def status(self) -> Optional[str]:
        return self.state.status

    @property
    def available_settings(self) -> List[Setting]:
        return self.settings.available_settings()

    def refresh_status(self) -> Set[str]:
        return self.synchronizer.full_refresh()

    def start_status_polling(self) -> bool:
        return self.synchronizer.start_polling()

    def stop_status_polling(self) -> None:
        self.synchronizer.stop_polling()

    # ---------- Live view ----------
    def start_live_view(self, open_stream: StreamFactory = open_http_stream) -> LiveViewClient:
        if self.liveview is not None and self.liveview.running:
            return self.liveview
        url = self.api.start_liveview()
        log.info(f"Live view URL: {url}")
        client = LiveViewClient(
            url, open_stream,
            flow_threshold=self.flow_threshold,
            watchdog_interval_s=self.watchdog_interval_s,
            watchdog_cooldown_s=self.watchdog_cooldown_s,
        )
        for cb in self._image_listeners:
            client.add_image_listener(cb)
        for cb in self._disconnect_listeners:
            client.add_disconnect_listener(cb)
        client.start()
        self.liveview = client
        return client

    def stop_live_view(self) -> None:
        client, self.liveview = self.liveview, None
        if client is None:
            return
        client.stop()
        self.api.stop_liveview()

    # ---------- Shooting ----------
    def _switch_shoot_mode(self, mode: str) -> None:
        if self.state.shoot_mode == mode:
            return
        self._shoot_mode_evt.clear()
        self.api.set_shoot_mode(mode)
        deadline = time.monotonic() + self.shoot_mode_timeout_s
        while self.state.shoot_mode != mode:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"camera did not switch to shoot mode {mode!r}")
            if not self.synchronizer.polling:
                self.synchronizer.refresh(long_poll=False)
            self._shoot_mode_evt.wait(min(0.5, remaining))
            self._shoot_mode_evt.clear()

    def shutter(self) -> Optional[str]:
        """Take one still. Returns the postview URL, or None when the camera is busy."""
        if self.status != STATUS_IDLE:
            return None
        self._switch_shoot_mode("still")
        urls = self.api.act_take_picture()
        if isinstance(urls, list):
            return urls[0] if urls else None
        return urls

    def toggle_movie_recording(self) -> bool:
        if self.status == STATUS_MOVIE_RECORDING:
            self.api.stop_movie_rec()
            return True
        if self.status != STATUS_IDLE:
            return False
        self._switch_shoot_mode("movie")
        self.api.start_movie_rec()
        return True

    def close(self) -> None:
        if self.liveview is not None:
            self.liveview.stop()
            self.liveview = None
        self.synchronizer.close()
        self.api.channel.close()
