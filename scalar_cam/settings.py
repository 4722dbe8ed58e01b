import enum
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Set, Tuple

from .api import CameraApi
from .camera_base import RpcError

log = logging.getLogger(__name__)

ChangeListener = Callable[[Set[str]], None]

GROUP_PHOTOGRAPHIC = "Photographic"
GROUP_OUTPUT = "Output"

COLOR_TEMPERATURE_MODE = "Color Temperature"


class SettingUnavailableError(ValueError):
    pass


class RegistryMode(enum.Enum):
    IDLE = "idle"
    APPLYING_REFRESH = "applying_refresh"


class Setting:
    def __init__(self, key: str, name: str, group: str = "", description: str = "",
                 write_back: Optional[Callable[[str], None]] = None):
        self.key = key
        self.name = name
        self.group = group
        self.description = description
        self.write_back = write_back
        self.value: Optional[str] = None
        self.options: Optional[List[str]] = None

    @property
    def settable(self) -> bool:
        return bool(self.options)

    def __str__(self) -> str:
        return self.value or ""

    def __repr__(self) -> str:
        return f"Setting({self.key}={self.value!r}, options={self.options!r})"


class ExposureCompensationCodec:
    """EV string <-> device step index; the divisor comes from the last refresh."""

    def __init__(self):
        self.min_index = 0
        self.max_index = 0
        self.divisor: Optional[float] = None

    @staticmethod
    def divisor_for(step_index: int) -> float:
        # 1 = 1/3 EV steps, 2 = 1/2 EV steps
        return 3.0 if int(step_index) == 1 else 2.0

    def update(self, min_index: int, max_index: int, step_index: int) -> None:
        self.min_index = int(min_index)
        self.max_index = int(max_index)
        self.divisor = self.divisor_for(step_index)

    def decode(self, index: int) -> str:
        if self.divisor is None:
            raise SettingUnavailableError("exposure compensation step is unknown")
        return f"{int(index) / self.divisor:.1f}"

    def encode(self, value: str) -> int:
        if self.divisor is None:
            raise SettingUnavailableError("exposure compensation step is unknown")
        return int(round(float(value) * self.divisor))

    def options(self) -> List[str]:
        return [self.decode(i) for i in range(self.min_index, self.max_index + 1)]


class ColorTemperatureCodec:
    """Kelvin values; the device reports its range as [max, min, step]."""

    def __init__(self):
        self.minimum: Optional[int] = None
        self.maximum: Optional[int] = None
        self.step: Optional[int] = None

    def update(self, color_range: Sequence[int]) -> List[str]:
        values = [int(v) for v in color_range]
        if len(values) == 3 and values[2] > 0 and values[0] > values[1]:
            self.maximum, self.minimum, self.step = values
            return [str(v) for v in range(self.minimum, self.maximum + 1, self.step)]
        self.minimum = min(values) if values else None
        self.maximum = max(values) if values else None
        self.step = None
        return [str(v) for v in values]

    def encode(self, value: str) -> int:
        kelvin = int(float(value))
        if self.step and self.minimum is not None and self.maximum is not None:
            kelvin = self.minimum + int(round((kelvin - self.minimum) / self.step)) * self.step
            kelvin = max(self.minimum, min(self.maximum, kelvin))
        return kelvin


class SettingsRegistry:
    """
    Named settings with write-through to the device.

    Writes made while applying a device refresh (mode APPLYING_REFRESH) only
    update the model; user writes (mode IDLE) also call the setting's
    write-back. One re-entrant lock serialises both paths.
    """

    def __init__(self):
        self._settings: Dict[str, Setting] = {}
        self._listeners: List[Tuple[ChangeListener, bool]] = []
        self._lock = threading.RLock()
        self._mode = RegistryMode.IDLE
        self.exposure = ExposureCompensationCodec()
        self.color_temperature = ColorTemperatureCodec()

    # ---------- Collection ----------
    def add(self, setting: Setting) -> Setting:
        self._settings[setting.key] = setting
        return setting

    def __getitem__(self, key: str) -> Setting:
        return self._settings[key]

    def __contains__(self, key: str) -> bool:
        return key in self._settings

    def __iter__(self) -> Iterator[Setting]:
        return iter(list(self._settings.values()))

    def keys(self) -> List[str]:
        return list(self._settings)

    def available_settings(self) -> List[Setting]:
        return [s for s in self._settings.values() if s.settable]

    # ---------- Notifications ----------
    def add_listener(self, callback: ChangeListener, user_writes_only: bool = False) -> None:
        """With user_writes_only, values applied from a device refresh are not reported."""
        self._listeners.append((callback, user_writes_only))

    def _notify(self, names: Set[str], user_write: bool = False) -> None:
        for cb, user_writes_only in list(self._listeners):
            if user_writes_only and not user_write:
                continue
            try:
                cb(set(names))
            except Exception as e:
                log.error(f"settings listener failed: {e}")

    # ---------- Modes ----------
    @property
    def mode(self) -> RegistryMode:
        return self._mode

    @contextmanager
    def applying_refresh(self) -> Iterator[RegistryMode]:
        with self._lock:
            previous = self._mode
            self._mode = RegistryMode.APPLYING_REFRESH
            try:
                yield self._mode
            finally:
                self._mode = previous

    def _check_mode(self, mode: RegistryMode) -> None:
        if mode is RegistryMode.APPLYING_REFRESH and self._mode is not RegistryMode.APPLYING_REFRESH:
            raise RuntimeError("APPLYING_REFRESH writes must happen inside applying_refresh()")

    # ---------- Writes ----------
    def set_value(self, key: str, value: Optional[str], mode: RegistryMode = RegistryMode.IDLE) -> bool:
        """Returns True when the value changed. Device rejections propagate as RpcError."""
        with self._lock:
            self._check_mode(mode)
            setting = self._settings[key]
            if value == setting.value:
                return False

            # an IDLE write arriving while a refresh is being applied is suppressed too
            user_write = mode is RegistryMode.IDLE and self._mode is not RegistryMode.APPLYING_REFRESH
            if user_write:
                if not setting.settable:
                    raise SettingUnavailableError(f"{key} is not available on this camera right now")
                if value not in setting.options:
                    raise ValueError(f"{value!r} is not one of {setting.options} for {key}")

            previous = setting.value
            setting.value = value
            self._notify({key}, user_write)

            if user_write and setting.write_back is not None:
                try:
                    setting.write_back(value)
                except RpcError:
                    log.warning(f"camera rejected {key}={value!r}, restoring {previous!r}")
                    setting.value = previous
                    self._notify({key}, user_write)
                    raise
            return True

    def set_options(self, key: str, options: Optional[Sequence[str]],
                    mode: RegistryMode = RegistryMode.APPLYING_REFRESH) -> None:
        with self._lock:
            self._check_mode(mode)
            self._settings[key].options = list(options) if options is not None else None

    def clear_options(self) -> None:
        with self.applying_refresh() as mode:
            for key in self._settings:
                self.set_options(key, None, mode)


def _split_still_size(value: str) -> List[str]:
    aspect, _, size = value.partition("-")
    return [aspect.strip(), size.strip()]


def create_camera_settings(api: CameraApi,
                           on_exposure_mode_changed: Optional[Callable[[str], None]] = None
                           ) -> SettingsRegistry:
    reg = SettingsRegistry()

    def set_exposure_mode(value: str) -> None:
        api.set_exposure_mode(value)
        if on_exposure_mode_changed is not None:
            on_exposure_mode_changed(value)

    def set_color_temperature(value: str) -> None:
        api.set_white_balance(COLOR_TEMPERATURE_MODE, True, reg.color_temperature.encode(value))
        with reg.applying_refresh() as mode:
            reg.set_value("white_balance", COLOR_TEMPERATURE_MODE, mode)

    def set_white_balance(value: str) -> None:
        if value == COLOR_TEMPERATURE_MODE and reg["color_temperature"].value:
            api.set_white_balance(value, True, reg.color_temperature.encode(reg["color_temperature"].value))
        else:
            api.set_white_balance(value)

    reg.add(Setting(
        "exposure_compensation", "Exposure Compensation", GROUP_PHOTOGRAPHIC,
        "Brighten dark areas of the scene at the cost of detail in bright areas.",
        lambda v: api.set_exposure_compensation(reg.exposure.encode(v)),
    ))
    reg.add(Setting("flash_mode", "Flash Mode", GROUP_PHOTOGRAPHIC, write_back=api.set_flash_mode))
    reg.add(Setting("f_number", "F Number", GROUP_PHOTOGRAPHIC, write_back=api.set_f_number))
    reg.add(Setting("focus_mode", "Focus Mode", GROUP_PHOTOGRAPHIC, write_back=api.set_focus_mode))
    reg.add(Setting("iso", "ISO", GROUP_PHOTOGRAPHIC, write_back=api.set_iso_speed_rate))
    reg.add(Setting(
        "exposure_mode", "Exposure Mode", "",
        "How exposure is controlled; in Auto the F number has no effect.",
        set_exposure_mode,
    ))
    reg.add(Setting("movie_quality", "Movie Quality", GROUP_OUTPUT, write_back=api.set_movie_quality))
    reg.add(Setting("ois_mode", "SteadyShot Mode", GROUP_PHOTOGRAPHIC, write_back=api.set_steady_mode))
    reg.add(Setting(
        "photo_resolution", "Captured Image Resolution", GROUP_OUTPUT,
        "Aspect and size of captured photos.",
        lambda v: api.set_still_size(*_split_still_size(v)),
    ))
    reg.add(Setting(
        "postview_image_size", "Review Image Resolution", GROUP_OUTPUT,
        "Size of the review image downloaded after each shot.",
        api.set_postview_image_size,
    ))
    reg.add(Setting("self_timer", "Self Timer", "", "Self timer delay in seconds.",
                    lambda v: api.set_self_timer(int(float(v)))))
    reg.add(Setting(
        "shutter_speed", "Shutter Speed", GROUP_PHOTOGRAPHIC,
        "Longer exposures brighten low light scenes but blur moving subjects.",
        api.set_shutter_speed,
    ))
    reg.add(Setting("view_angle", "View Angle", GROUP_OUTPUT, "Recorded view angle.", api.set_view_angle))
    reg.add(Setting("white_balance", "White Balance", GROUP_PHOTOGRAPHIC, write_back=set_white_balance))
    reg.add(Setting(
        "color_temperature", "Color Temperature", GROUP_PHOTOGRAPHIC,
        "Manual white balance in Kelvin; higher is bluer, lower is warmer.",
        set_color_temperature,
    ))
    return reg
