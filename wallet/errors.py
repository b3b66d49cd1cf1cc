# wallet/errors.py
from typing import Any, Optional


class WalletError(Exception):
    """Base wallet error."""
    def __init__(self, msg: str = ""):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return self.msg or self.__class__.__name__


class UnauthenticatedError(WalletError):
    """No valid session for a call that needs one."""


class TransportError(WalletError):
    """Network error, timeout or non-2xx status from the API."""

    def __init__(self, msg: str = "", status: Optional[int] = None):
        super().__init__(msg)
        self.status = status

    def __str__(self):
        base = super().__str__()
        return f"{base} [status={self.status}]" if self.status is not None else base


class MalformedResponseError(WalletError):
    """Response body did not match any known shape."""

    def __init__(self, msg: str = "", payload: Any = None):
        super().__init__(msg)
        self.payload = payload
