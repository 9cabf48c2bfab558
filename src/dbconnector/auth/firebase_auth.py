"""Firebase Authentication over the Identity Toolkit REST API.

Handles anonymous sign-up and ID-token verification, and keeps a push-based
auth state that listeners can follow the way the Firebase client SDKs expose
``onAuthStateChanged``.
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from ..utils.logging import get_logger

logger = get_logger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1"

AuthListener = Callable[[Optional[Dict[str, Any]]], None]


class FirebaseAuthError(Exception):
    """Raised when the Identity Toolkit API rejects a request."""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class FirebaseAuthClient:
    """Minimal Identity Toolkit client bound to one web API key."""

    def __init__(
        self,
        api_key: str,
        session: aiohttp.ClientSession,
        base_url: str = IDENTITY_TOOLKIT_URL,
        token_url: str = SECURE_TOKEN_URL
    ):
        self.api_key = api_key
        self.session = session
        self.base_url = base_url.rstrip('/')
        self.token_url = token_url.rstrip('/')

    async def sign_up_anonymously(self) -> Dict[str, Any]:
        """Create an anonymous user.

        Returns:
            Response with ``idToken``, ``refreshToken``, ``expiresIn`` and ``localId``
        """
        return await self._post("accounts:signUp", {"returnSecureToken": True})

    async def lookup(self, id_token: str) -> Optional[Dict[str, Any]]:
        """Return the account behind ``id_token``, or None if the token is no longer valid."""
        try:
            result = await self._post("accounts:lookup", {"idToken": id_token})
        except FirebaseAuthError as e:
            if e.status == 400:
                logger.info("Stored Firebase token rejected", reason=e.reason)
                return None
            raise

        users = result.get("users") or []
        return users[0] if users else None

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new ID token.

        Returns:
            Response with ``id_token``, ``refresh_token``, ``expires_in`` and ``user_id``
        """
        return await self._post(
            "token",
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            url=f"{self.token_url}/token",
            form=True,
        )

    async def _post(
        self,
        method: str,
        payload: Dict[str, Any],
        url: Optional[str] = None,
        form: bool = False
    ) -> Dict[str, Any]:
        url = url or f"{self.base_url}/{method}"
        body = {"data": payload} if form else {"json": payload}

        async with self.session.post(url, params={"key": self.api_key}, **body) as response:
            if response.status != 200:
                reason = None
                try:
                    body = await response.json()
                    reason = body.get("error", {}).get("message")
                except (aiohttp.ContentTypeError, ValueError):
                    body = await response.text()
                raise FirebaseAuthError(
                    f"Identity Toolkit {method} failed: {response.status} {reason or body}",
                    status=response.status,
                    reason=reason,
                )

            return await response.json()


def user_from_account(account: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize an Identity Toolkit account record into a user dict."""
    user = {
        "id": account.get("localId"),
        "is_anonymous": not account.get("email") and not account.get("providerUserInfo"),
    }
    if account.get("email"):
        user["email"] = account["email"]
    return user


class AuthState:
    """Push-based session state.

    Listeners registered after the first resolution are called once with the
    current user on the next loop iteration, then on every change.
    """

    def __init__(self):
        self._listeners: List[AuthListener] = []
        self._current_user: Optional[Dict[str, Any]] = None
        self._resolved = False

    @property
    def current_user(self) -> Optional[Dict[str, Any]]:
        return self._current_user

    @property
    def resolved(self) -> bool:
        return self._resolved

    def on_auth_state_changed(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        if self._resolved:
            asyncio.get_running_loop().call_soon(self._notify_one, listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_user(self, user: Optional[Dict[str, Any]]) -> None:
        self._current_user = user
        self._resolved = True
        for listener in list(self._listeners):
            self._notify_one(listener)

    def _notify_one(self, listener: AuthListener) -> None:
        if listener not in self._listeners:
            return
        try:
            listener(self._current_user)
        except Exception as e:
            logger.error("Auth state listener raised", error=str(e))
