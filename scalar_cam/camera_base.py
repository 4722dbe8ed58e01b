from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Callable, List, Optional, Sequence


class RpcError(RuntimeError):
    """Error reported by the device (or the transport) for one RPC call."""

    def __init__(self, code: int, message: str):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message


class RpcResult:
    """
    One JSON-RPC response: either a list of result slots or an error pair.
    Slots are kept exactly as received; most of the getEvent slots are null.
    """

    def __init__(self, result: Optional[List[Any]] = None, error: Optional[Sequence[Any]] = None):
        self.result = result
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def slots(self) -> List[Any]:
        return self.result or []

    def slot(self, index: int) -> Any:
        slots = self.slots
        if index < 0 or index >= len(slots):
            return None
        return slots[index]

    def raise_for_error(self) -> "RpcResult":
        if self.error is not None:
            code = int(self.error[0]) if len(self.error) > 0 else 0
            message = str(self.error[1]) if len(self.error) > 1 else ""
            raise RpcError(code, message)
        return self

    def __repr__(self) -> str:
        if self.ok:
            return f"RpcResult(result={self.result!r})"
        return f"RpcResult(error={self.error!r})"


class RpcChannel(ABC):
    @abstractmethod
    def invoke(self, method: str, params: Sequence[Any] = (), version: str = "1.0") -> RpcResult: ...
    def close(self) -> None:
        pass


# url -> readable byte stream (file-like with read(n) and close())
StreamFactory = Callable[[str], BinaryIO]
