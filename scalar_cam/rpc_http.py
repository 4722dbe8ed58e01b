import itertools
import logging
import threading
from typing import Any, BinaryIO, Optional, Sequence

import requests

from .camera_base import RpcChannel, RpcResult

log = logging.getLogger(__name__)


class JsonRpcHttpChannel(RpcChannel):
    """
    JSON-RPC over HTTP POST, one request per call.

    `base_url` is the service URL taken from the device description
    (e.g. http://10.0.0.1:10000/sony); `service` is appended to it.
    """

    def __init__(
        self,
        base_url: str = "",
        service: str = "camera",
        timeout_s: float = 35.0,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise RuntimeError("JsonRpcHttpChannel: 'base_url' non impostato")
        self.url = f"{base_url.rstrip('/')}/{service}"
        self.timeout_s = timeout_s
        self._session = session or requests.Session()
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def invoke(self, method: str, params: Sequence[Any] = (), version: str = "1.0") -> RpcResult:
        body = {
            "method": method,
            "params": list(params),
            "id": self._next_id(),
            "version": version,
        }
        log.debug(f"API request: {self.url} {body}")
        try:
            resp = self._session.post(self.url, json=body, timeout=self.timeout_s)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            # transport failures look like any other failed call to the caller
            return RpcResult(error=[500, str(e)])

        if payload.get("error") is not None:
            log.debug(f"API request failed: {method} -> {payload['error']}")
            return RpcResult(error=payload["error"])
        return RpcResult(result=payload.get("result"))

    def close(self) -> None:
        self._session.close()


def open_http_stream(url: str, timeout_s: float = 10.0) -> BinaryIO:
    """Default live-view source: the raw body of a streaming GET."""
    resp = requests.get(url, stream=True, timeout=timeout_s)
    resp.raise_for_status()
    return resp.raw
