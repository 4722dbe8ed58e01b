from typing import Any, List

from .camera_base import RpcChannel, RpcResult


class CameraApi:
    """
    Named wrappers over the camera service. Every call raises RpcError when
    the device rejects it, except get_event which hands back the raw result
    so the poller can treat a failure as "nothing changed".
    """

    def __init__(self, channel: RpcChannel):
        self.channel = channel

    def _call(self, method: str, *params: Any, version: str = "1.0") -> RpcResult:
        return self.channel.invoke(method, list(params), version=version).raise_for_error()

    # ---------- Status ----------
    def get_event(self, long_polling: bool, version: str = "1.0") -> RpcResult:
        return self.channel.invoke("getEvent", [long_polling], version=version)

    def get_available_still_size(self) -> RpcResult:
        return self._call("getAvailableStillSize")

    def get_available_white_balance(self) -> RpcResult:
        return self._call("getAvailableWhiteBalance")

    # ---------- Live view ----------
    def start_liveview(self) -> str:
        return self._call("startLiveview").slot(0)

    def stop_liveview(self) -> None:
        self._call("stopLiveview")

    # ---------- Shooting ----------
    def set_shoot_mode(self, mode: str) -> None:
        self._call("setShootMode", mode)

    def act_take_picture(self) -> List[str]:
        return self._call("actTakePicture").slot(0)

    def start_movie_rec(self) -> None:
        self._call("startMovieRec")

    def stop_movie_rec(self) -> None:
        self._call("stopMovieRec")

    # ---------- Settings ----------
    def set_exposure_mode(self, mode: str) -> None:
        self._call("setExposureMode", mode)

    def set_exposure_compensation(self, index: int) -> None:
        self._call("setExposureCompensation", int(index))

    def set_flash_mode(self, mode: str) -> None:
        self._call("setFlashMode", mode)

    def set_f_number(self, f_number: str) -> None:
        self._call("setFNumber", f_number)

    def set_focus_mode(self, mode: str) -> None:
        self._call("setFocusMode", mode)

    def set_iso_speed_rate(self, iso: str) -> None:
        self._call("setIsoSpeedRate", iso)

    def set_shutter_speed(self, speed: str) -> None:
        self._call("setShutterSpeed", speed)

    def set_white_balance(self, mode: str, use_color_temperature: bool = False, color_temperature: int = 0) -> None:
        self._call("setWhiteBalance", mode, use_color_temperature, int(color_temperature))

    def set_still_size(self, aspect: str, size: str) -> None:
        self._call("setStillSize", aspect, size)

    def set_postview_image_size(self, size: str) -> None:
        self._call("setPostviewImageSize", size)

    def set_movie_quality(self, quality: str) -> None:
        self._call("setMovieQuality", quality)

    def set_steady_mode(self, mode: str) -> None:
        self._call("setSteadyMode", mode)

    def set_view_angle(self, angle: str) -> None:
        self._call("setViewAngle", angle)

    def set_self_timer(self, seconds: int) -> None:
        self._call("setSelfTimer", int(seconds))
