"""
getEvent result layout: index -> which attributes the slot carries and how
to apply it. Adding support for another slot is one entry in SLOT_TABLE.
"""
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

from .settings import RegistryMode, SettingsRegistry

SECONDARY_STILL_SIZE = "still_size"
SECONDARY_WHITE_BALANCE = "white_balance"


@dataclass
class DeviceState:
    status: Optional[str] = None
    zoom_percentage: Optional[int] = None
    liveview_ready: Optional[bool] = None
    liveview_orientation: Optional[str] = None
    recordable_time: Optional[int] = None     # minutes
    recordable_photos: Optional[int] = None
    current_function: Optional[str] = None
    shoot_mode: Optional[str] = None
    program_shifted: Optional[bool] = None
    touch_af_set: Optional[bool] = None
    registry: Optional[SettingsRegistry] = field(default=None, repr=False, compare=False)

    def __getitem__(self, name: str) -> Any:
        if self.registry is not None and name in self.registry:
            return self.registry[name].value
        if name not in {f.name for f in fields(self)} - {"registry"}:
            raise KeyError(name)
        return getattr(self, name)

    def snapshot(self) -> Dict[str, Any]:
        out = {k: v for k, v in self.__dict__.items() if k != "registry"}
        if self.registry is not None:
            out.update({s.key: s.value for s in self.registry})
        return out


# (slot, state, registry, mode) -> names actually reported, or None for all of them
SlotApply = Callable[[Any, DeviceState, SettingsRegistry, RegistryMode], Optional[Iterable[str]]]


@dataclass(frozen=True)
class SlotHandler:
    names: Tuple[str, ...]
    apply: SlotApply
    secondary: Optional[str] = None


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _status(field_name: str, attr: str, convert: Callable[[Any], Any] = lambda v: v) -> SlotHandler:
    def apply(slot, state, registry, mode):
        setattr(state, attr, convert(slot[field_name]))
    return SlotHandler((attr,), apply)


def _setting(key: str, current: str, candidates: str) -> SlotHandler:
    def apply(slot, state, registry, mode):
        registry.set_value(key, _text(slot[current]), mode)
        if slot.get(candidates) is not None:
            registry.set_options(key, [_text(c) for c in slot[candidates]], mode)
    return SlotHandler((key,), apply)


def _optional_count(value: Any) -> Optional[int]:
    value = int(value)
    return None if value == -1 else value


def _apply_storage(slot, state, registry, mode):
    names = []
    for item in slot:
        if item and item.get("recordTarget") is True:
            state.recordable_time = _optional_count(item["recordableTime"])
            state.recordable_photos = _optional_count(item["numberOfRecordableImages"])
            names = ["recordable_time", "recordable_photos"]
    return names


def _apply_still_size(slot, state, registry, mode):
    registry.set_value("photo_resolution", f"{slot['currentAspect']} - {slot['currentSize']}", mode)


def _apply_exposure_compensation(slot, state, registry, mode):
    codec = registry.exposure
    codec.update(slot["minExposureCompensation"], slot["maxExposureCompensation"],
                 slot["stepIndexOfExposureCompensation"])
    registry.set_value("exposure_compensation", codec.decode(slot["currentExposureCompensation"]), mode)
    registry.set_options("exposure_compensation", codec.options(), mode)


def _apply_white_balance(slot, state, registry, mode):
    registry.set_value("white_balance", _text(slot["currentWhiteBalanceMode"]), mode)
    registry.set_value("color_temperature", _text(slot["currentColorTemperature"]), mode)


SLOT_TABLE: Dict[int, SlotHandler] = {
    1:  _status("cameraStatus", "status"),
    2:  _status("zoomPosition", "zoom_percentage", int),
    3:  _status("liveviewStatus", "liveview_ready", bool),
    4:  _status("liveviewOrientation", "liveview_orientation"),
    10: SlotHandler(("recordable_time", "recordable_photos"), _apply_storage),
    12: _status("currentCameraFunction", "current_function"),
    13: _setting("movie_quality", "currentMovieQuality", "movieQualityCandidates"),
    14: SlotHandler(("photo_resolution",), _apply_still_size, SECONDARY_STILL_SIZE),
    16: _setting("ois_mode", "currentSteadyMode", "steadyModeCandidates"),
    17: _setting("view_angle", "currentViewAngle", "viewAngleCandidates"),
    18: _setting("exposure_mode", "currentExposureMode", "exposureModeCandidates"),
    19: _setting("postview_image_size", "currentPostviewImageSize", "postviewImageSizeCandidates"),
    20: _setting("self_timer", "currentSelfTimer", "selfTimerCandidates"),
    21: _status("currentShootMode", "shoot_mode"),
    25: SlotHandler(("exposure_compensation",), _apply_exposure_compensation),
    26: _setting("flash_mode", "currentFlashMode", "flashModeCandidates"),
    27: _setting("f_number", "currentFNumber", "fNumberCandidates"),
    28: _setting("focus_mode", "currentFocusMode", "focusModeCandidates"),
    29: _setting("iso", "currentIsoSpeedRate", "isoSpeedRateCandidates"),
    31: _status("isShifted", "program_shifted", bool),
    32: _setting("shutter_speed", "currentShutterSpeed", "shutterSpeedCandidates"),
    33: SlotHandler(("white_balance", "color_temperature"), _apply_white_balance, SECONDARY_WHITE_BALANCE),
    34: _status("currentSet", "touch_af_set", bool),
}
