# wallet/session.py
from typing import Dict, Optional, Protocol


class SessionPort(Protocol):
    user_id: Optional[str]

    def is_authenticated(self) -> bool: ...
    def get_token(self) -> Optional[str]: ...
    def get_auth_header(self) -> Dict[str, str]: ...


class AuthSession:
    """
    Bearer-token holder. Token issuance happens elsewhere; this only keeps it.
    """

    def __init__(self, token: Optional[str] = None, user_id: Optional[str] = None) -> None:
        self._token = token or None
        self.user_id = user_id if token else None

    def login(self, token: str, user_id: Optional[str] = None) -> None:
        self._token = token or None
        self.user_id = user_id if token else None

    def logout(self) -> None:
        self._token = None
        self.user_id = None

    def is_authenticated(self) -> bool:
        return bool(self._token)

    def get_token(self) -> Optional[str]:
        return self._token

    def get_auth_header(self) -> Dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}
