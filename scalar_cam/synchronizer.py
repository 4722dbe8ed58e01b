import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Callable, List, Optional, Set, Tuple

from .api import CameraApi
from .camera_base import RpcError, RpcResult
from .event_slots import (SECONDARY_STILL_SIZE, SECONDARY_WHITE_BALANCE, SLOT_TABLE,
                          DeviceState)
from .settings import COLOR_TEMPERATURE_MODE, SettingsRegistry

log = logging.getLogger(__name__)

AVAILABLE_SETTINGS = "available_settings"

AttributesListener = Callable[[Set[str]], None]


class StateSynchronizer:
    """
    Keeps DeviceState and the settings registry in line with getEvent.

    Absent slots mean "unchanged", so nothing is ever reset by a poll; a
    failed poll yields an empty change set and the old state stays.
    """

    def __init__(self, api: CameraApi, registry: SettingsRegistry,
                 min_interval_s: float = 0.5, executor: Optional[Executor] = None):
        self.api = api
        self.registry = registry
        self.state = DeviceState(registry=registry)
        self.min_interval_s = min_interval_s

        self._listeners: List[AttributesListener] = []
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="event-options")
        self._owns_executor = executor is None
        self._pending: List[Future] = []
        self._pending_lock = threading.Lock()

        self._poll_thread: Optional[threading.Thread] = None
        self._poll_lock = threading.Lock()
        self._stop_evt = threading.Event()
        self._full_refresh_requested = threading.Event()
        self._full_refresh_done: List[Callable[[], None]] = []
        self._full_refresh_lock = threading.Lock()

    # ---------- Listeners ----------
    def add_listener(self, callback: AttributesListener) -> None:
        self._listeners.append(callback)

    def _notify(self, names: Set[str]) -> None:
        for cb in list(self._listeners):
            try:
                cb(set(names))
            except Exception as e:
                log.error(f"attributes listener failed: {e}")

    # ---------- Refresh ----------
    def apply(self, result: RpcResult, reset_options: bool = False) -> Tuple[Set[str], List[str]]:
        """
        Apply every known, present slot. Returns (changed names, secondary fetches).
        With reset_options every option list is dropped first, under the same lock.
        """
        changed: Set[str] = set()
        secondary: List[str] = []
        with self.registry.applying_refresh() as mode:
            if reset_options:
                self.registry.clear_options()
            for index, handler in SLOT_TABLE.items():
                slot = result.slot(index)
                if slot is None:
                    continue
                reported = handler.apply(slot, self.state, self.registry, mode)
                changed.update(handler.names if reported is None else reported)
                if handler.secondary:
                    secondary.append(handler.secondary)
        return changed, secondary

    def _get_event(self, long_poll: bool) -> Optional[RpcResult]:
        try:
            result = self.api.get_event(long_poll)
        except (RpcError, OSError) as e:
            log.warning(f"getEvent failed: {e}")
            return None
        if not result.ok:
            log.debug(f"getEvent returned error {result.error}")
            return None
        return result

    def _publish(self, changed: Set[str], secondary: List[str]) -> None:
        if changed:
            self._notify(changed)
        for kind in secondary:
            self._submit_secondary(kind)

    def refresh(self, long_poll: bool = True) -> Set[str]:
        result = self._get_event(long_poll)
        if result is None:
            return set()
        changed, secondary = self.apply(result)
        self._publish(changed, secondary)
        return changed

    def full_refresh(self) -> Set[str]:
        """
        Re-read the whole state, replacing every option list. If the poll
        fails nothing is touched and the full refresh stays requested.
        """
        result = self._get_event(long_poll=False)
        if result is None:
            self._full_refresh_requested.set()
            return set()
        try:
            changed, secondary = self.apply(result, reset_options=True)
        except Exception:
            self._full_refresh_requested.set()
            raise
        self._publish(changed, secondary)
        self._notify({AVAILABLE_SETTINGS})

        with self._full_refresh_lock:
            done, self._full_refresh_done = self._full_refresh_done, []
        for cb in done:
            try:
                cb()
            except Exception as e:
                log.error(f"full refresh callback failed: {e}")
        return changed

    def request_full_refresh(self, on_done: Optional[Callable[[], None]] = None) -> None:
        """The next poll is a full refresh; on_done runs once it has succeeded."""
        if on_done is not None:
            with self._full_refresh_lock:
                self._full_refresh_done.append(on_done)
        self._full_refresh_requested.set()

    # ---------- Secondary option fetches ----------
    def _submit_secondary(self, kind: str) -> None:
        fetch = {
            SECONDARY_STILL_SIZE: self._fetch_still_sizes,
            SECONDARY_WHITE_BALANCE: self._fetch_white_balance,
        }[kind]
        future = self._executor.submit(self._run_secondary, kind, fetch)
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def _run_secondary(self, kind: str, fetch: Callable[[], Set[str]]) -> None:
        try:
            names = fetch()
        except (RpcError, OSError) as e:
            log.warning(f"fetching {kind} options failed: {e}")
            return
        if names:
            self._notify(names | {AVAILABLE_SETTINGS})

    def _fetch_still_sizes(self) -> Set[str]:
        result = self.api.get_available_still_size()
        options = [f"{item['aspect']} - {item['size']}" for item in result.slot(1) or []]
        with self.registry.applying_refresh() as mode:
            self.registry.set_options("photo_resolution", options, mode)
        return {"photo_resolution"}

    def _fetch_white_balance(self) -> Set[str]:
        try:
            result = self.api.get_available_white_balance()
        except RpcError as e:
            log.warning(f"getAvailableWhiteBalance failed: {e}")
            with self.registry.applying_refresh() as mode:
                self.registry.set_options("white_balance", None, mode)
            return {"white_balance"}

        modes = result.slot(1) or []
        color_range = next((m.get("colorTemperatureRange") for m in modes
                            if m.get("whiteBalanceMode") == COLOR_TEMPERATURE_MODE), None)
        with self.registry.applying_refresh() as mode:
            self.registry.set_options("white_balance", [str(m["whiteBalanceMode"]) for m in modes], mode)
            ct_options = self.registry.color_temperature.update(color_range) if color_range else None
            self.registry.set_options("color_temperature", ct_options, mode)
        return {"white_balance", "color_temperature"}

    def wait_pending(self, timeout: Optional[float] = None) -> bool:
        """Block until queued option fetches are done (True if all finished)."""
        with self._pending_lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # ---------- Polling loop ----------
    @property
    def polling(self) -> bool:
        return self._poll_thread is not None and self._poll_thread.is_alive()

    def start_polling(self, initial_full_refresh: bool = True) -> bool:
        """Start the poll thread; returns False if one is already running."""
        with self._poll_lock:
            if self.polling:
                return False
            self._stop_evt.clear()
            if initial_full_refresh:
                self._full_refresh_requested.set()
            self._poll_thread = threading.Thread(target=self._poll_loop, name="event-poll", daemon=True)
            self._poll_thread.start()
        return True

    def stop_polling(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_evt.set()
        thread = self._poll_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _poll_loop(self) -> None:
        log.info(f"Status polling started (min interval {self.min_interval_s:.2f}s)")
        while not self._stop_evt.is_set():
            t0 = time.monotonic()
            try:
                if self._full_refresh_requested.is_set():
                    self._full_refresh_requested.clear()
                    self.full_refresh()
                else:
                    self.refresh(long_poll=True)
            except Exception as e:
                log.error(f"status poll failed: {e!r}")

            elapsed = time.monotonic() - t0
            if elapsed < self.min_interval_s:
                self._stop_evt.wait(self.min_interval_s - elapsed)
        log.info("Status polling stopped")

    def close(self) -> None:
        self.stop_polling()
        if self._owns_executor:
            self._executor.shutdown(wait=False)
