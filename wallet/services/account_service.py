# wallet/services/account_service.py
import math
from typing import Annotated, Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from infra.http_client import HttpError
from utils.logger import get_logger
from ..errors import MalformedResponseError, TransportError, UnauthenticatedError
from ..models import Profile
from ..stores.portfolio_store import holdings_from_profile

FiniteFloat = Annotated[float, Field(allow_inf_nan=False)]


def _to_float_or_none(x) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        return float(x) if math.isfinite(x) else None
    x = str(x).strip()
    if not x:
        return None
    try:
        v = float(x)
    except ValueError:
        return None
    return v if math.isfinite(v) else None


# ---- /auth/me response shapes -------------------------------------------------------
class UserPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[int, str]] = None
    balance: FiniteFloat
    portfolio_value: Optional[Any] = None


class FlatProfileResponse(BaseModel):
    """`{"user": {...}, "portfolio": {...}}`"""
    model_config = ConfigDict(extra="ignore")

    user: UserPayload
    portfolio: Optional[Dict[str, Any]] = None


class NestedProfileResponse(BaseModel):
    """`{"data": {"user": {...}, "portfolio": {...}}}`"""
    model_config = ConfigDict(extra="ignore")

    data: FlatProfileResponse


ProfileResponse = Union[FlatProfileResponse, NestedProfileResponse]


def decode_profile(payload: Any) -> Profile:
    """
    Pick exactly one known envelope and convert it into a Profile.
    Anything else (missing user, non-numeric balance, NaN) is malformed.
    """
    if not isinstance(payload, dict):
        raise MalformedResponseError("profile body is not an object", payload)

    try:
        if "data" in payload and "user" not in payload:
            inner = NestedProfileResponse.model_validate(payload).data
        else:
            inner = FlatProfileResponse.model_validate(payload)
    except ValidationError as e:
        raise MalformedResponseError(f"unrecognized profile shape: {e.error_count()} errors", payload) from e

    user = inner.user
    return Profile(
        balance=float(user.balance),
        portfolio_value=_to_float_or_none(user.portfolio_value),
        user_id=str(user.id) if user.id is not None else None,
        holdings=holdings_from_profile(inner.portfolio) if inner.portfolio is not None else None,
    )


class AccountService:
    """
    Profile (balance + portfolio) queries against /auth/me.
    """
    def __init__(self, http_client, endpoints, *, timeout_s: Optional[float] = None, logger=None) -> None:
        self._http = http_client
        self._ep = endpoints
        self._timeout_ms = int(timeout_s * 1000) if timeout_s else None
        self.log = get_logger("Account", logger or getattr(http_client, "log", None))

    async def fetch_profile(self) -> Profile:
        """GET /api/auth/me -> Profile. Raises UnauthenticatedError / TransportError / MalformedResponseError."""
        path = getattr(self._ep, "auth_me", None) or "/api/auth/me"
        try:
            resp = await self._http.get_private(path, timeout_ms=self._timeout_ms)
        except HttpError as e:
            if e.status in (401, 403):
                raise UnauthenticatedError(str(e)) from e
            raise TransportError(str(e), status=e.status) from e

        profile = decode_profile(resp)
        self.log.debug(f"profile balance={profile.balance} "
                       f"portfolio_value={profile.portfolio_value} holdings={len(profile.holdings or [])}")
        return profile
