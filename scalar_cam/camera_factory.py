import importlib, yaml
from typing import Any, Dict
from .api import CameraApi
from .camera import Camera
from .camera_base import RpcChannel

DEFAULT_CHANNEL_IMPL = "scalar_cam.rpc_http:JsonRpcHttpChannel"

def _load_yaml(path: str) -> Dict[str, Any]:
    if not path:
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}

def _load_class(impl: str) -> type:
    mod_name, _, cls_name = impl.partition(':')
    if not (mod_name and cls_name):
        raise ValueError("channel_impl must be 'module.path:ClassName'")
    module = importlib.import_module(mod_name)
    return getattr(module, cls_name)

def load_channel(impl: str, **kwargs: Any) -> RpcChannel:
    cls = _load_class(impl)
    channel = cls(**kwargs)
    if not isinstance(channel, RpcChannel):
        raise TypeError(f"{cls.__name__} does not implement RpcChannel")
    return channel

def load_camera(params_file: str = "", **overrides: Any) -> Camera:
    """
    Build a Camera from a per-camera YAML file. Top-level keyword overrides
    are merged over the file sections, e.g. endpoints={"camera": url}.
    """
    cfg = _load_yaml(params_file)
    for section, values in overrides.items():
        cfg[section] = {**cfg.get(section, {}), **(values or {})}

    endpoints = cfg.get("endpoints", {})
    rpc = cfg.get("rpc", {})
    liveview = cfg.get("liveview", {})
    polling = cfg.get("polling", {})

    base_url = endpoints.get("camera")
    if not base_url:
        raise ValueError("endpoints.camera is required (service base URL of the camera)")

    channel_args = {"base_url": base_url, **rpc.get("init", {})}
    if "timeout_s" in rpc:
        channel_args["timeout_s"] = float(rpc["timeout_s"])
    channel = load_channel(rpc.get("channel_impl", DEFAULT_CHANNEL_IMPL), **channel_args)

    return Camera(
        CameraApi(channel),
        min_poll_interval_s=float(polling.get("min_interval_s", 0.5)),
        flow_threshold=int(liveview.get("flow_threshold", 5)),
        watchdog_interval_s=float(liveview.get("watchdog_interval_s", 1.0)),
        watchdog_cooldown_s=float(liveview.get("watchdog_cooldown_s", 2.0)),
    )
