"""Hubspace cloud API client.

Provides programmatic access to Hubspace devices through the Hubspace
identity provider and the Afero metadevice API.  The :class:`Client`
class is the main entry point::

    import asyncio
    from hubspace import Client

    client = Client("email@example.com", "password")
    await client.login()

    devices = await client.get_metadevice_info()
    state = await client.get_device_function_state("Porch Light", "power")
    await client.set_device_function_state("Porch Light", "brightness", 50)

After a successful login, :attr:`Client.refresh_token` and
:attr:`Client.account_id` can be stored and passed back to the
constructor to skip the login handshake next time.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, NamedTuple

import aiohttp

from hubspace._constants import (
    API_BASE,
    API_HOST,
    AUTH_SCOPE,
    AUTH_URL,
    CLIENT_ID,
    CODE_CHALLENGE,
    CODE_VERIFIER,
    CRED_DIR,
    CRED_FILE,
    DEVICE_TYPE_ID,
    LOGIN_URL,
    REDIRECT_URI,
    REFRESH_SCOPE,
    TOKEN_URL,
)
from hubspace._crypto import code_challenge
from hubspace.models import (
    Device,
    DeviceFunctionState,
    DeviceFunctionStates,
    FunctionState,
    StateValue,
    find_state,
)

_LOGGER = logging.getLogger(__name__)

_AUTH_ERROR = "Not authenticated, you must call login() first"


class HubspaceError(Exception):
    """Base class for errors raised by this library."""


class AuthenticationError(HubspaceError):
    """Raised when Hubspace rejects the credentials or the login handshake breaks."""


class ProtocolError(HubspaceError):
    """Raised when a Hubspace response does not have the expected shape.

    Usually means the identity provider or the backend changed its
    pages or payloads.
    """


class NotAuthenticatedError(HubspaceError):
    """Raised when a device operation is attempted before :meth:`Client.login`."""


class NotFoundError(HubspaceError, LookupError):
    """Raised when no device has the requested friendly name."""


class LoginForm(NamedTuple):
    """Correlation tokens scraped from the Keycloak login page."""

    session_code: str
    execution: str
    tab_id: str


class Client:
    """Hubspace cloud API client.

    Holds the account credentials.  Call :meth:`login` before any device
    operation, or pass both *refresh_token* and *account_id* to resume a
    previous session without logging in again.

    Args:
        username: Hubspace account email.
        password: Hubspace account password.
        refresh_token: Refresh token from a previous login.
        account_id: Account id from a previous login.
        code_verifier: PKCE verifier to use instead of the pair shipped in
            the Android app (see :func:`generate_code_verifier`).  The
            ``S256`` challenge is derived from it.
        auto_save: Save credentials to disk after every successful
            :meth:`login`.  Set by :meth:`from_saved`.
    """

    def __init__(
        self,
        username: str,
        password: str,
        *,
        refresh_token: str = "",
        account_id: str = "",
        code_verifier: str | None = None,
        auto_save: bool = False,
    ) -> None:
        self._creds: dict[str, str] = {
            "username": username,
            "password": password,
            "refreshToken": refresh_token,
            "accountId": account_id,
        }
        if code_verifier is None:
            self._pkce = (CODE_VERIFIER, CODE_CHALLENGE)
        else:
            self._pkce = (code_verifier, code_challenge(code_verifier))
        self._auto_save = auto_save
        self._authenticated = bool(refresh_token and account_id)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_saved(cls) -> Client:
        """Load a client from previously saved credentials.

        Raises :class:`FileNotFoundError` if no credentials file exists.
        """
        if not CRED_FILE.exists():
            raise FileNotFoundError(
                f"No saved credentials at {CRED_FILE}. Call Client.login() first."
            )
        creds = json.loads(CRED_FILE.read_text())
        return cls(
            str(creds.get("username", "")),
            str(creds.get("password", "")),
            refresh_token=str(creds.get("refreshToken", "")),
            account_id=str(creds.get("accountId", "")),
            auto_save=True,
        )

    def save_credentials(self) -> None:
        """Persist credentials to ``~/.config/hubspace/credentials.json``."""
        CRED_DIR.mkdir(parents=True, exist_ok=True)
        CRED_FILE.write_text(json.dumps(self._creds, indent=2))
        CRED_FILE.chmod(0o600)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def username(self) -> str:
        return self._creds["username"]

    @property
    def refresh_token(self) -> str:
        """Long-lived refresh token (empty until :meth:`login` succeeds)."""
        return self._creds["refreshToken"]

    @property
    def account_id(self) -> str:
        """Afero account id (empty until :meth:`login` succeeds)."""
        return self._creds["accountId"]

    @property
    def authenticated(self) -> bool:
        return self._authenticated

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    async def login(self) -> None:
        """Run the login handshake unless a session was supplied.

        The credentials are only updated once every step has succeeded.
        A failed login leaves the client unauthenticated; retrying starts
        the handshake over.

        Raises:
            AuthenticationError: If the credentials are rejected.
            ProtocolError: If a Hubspace response has an unexpected shape.
        """
        if self.refresh_token and self.account_id:
            self._authenticated = True
            return

        # A fresh session per login keeps the Keycloak cookies private to it.
        async with aiohttp.ClientSession() as session:
            refresh_token, account_id = await _http_login(
                self.username, self._creds["password"], session, pkce=self._pkce
            )

        self._creds["refreshToken"] = refresh_token
        self._creds["accountId"] = account_id
        self._authenticated = True
        _LOGGER.debug("Logged in as %s (account %s)", self.username, account_id)
        if self._auto_save:
            self.save_credentials()

    async def get_access_token(self) -> str:
        """Exchange the refresh token for a new short-lived access token.

        Tokens are not cached; every call is a round trip.
        """
        if not self.refresh_token:
            raise NotAuthenticatedError(_AUTH_ERROR)
        async with aiohttp.ClientSession() as session:
            return await _fetch_access_token(self.refresh_token, session)

    async def get_account_info(self) -> dict[str, Any]:
        """Fetch the raw ``users/me`` profile of the logged-in user."""
        if not self.refresh_token:
            raise NotAuthenticatedError(_AUTH_ERROR)
        async with aiohttp.ClientSession() as session:
            token = await _fetch_access_token(self.refresh_token, session)
            return await _fetch_account_info(token, session)

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    async def get_metadevice_info(self) -> list[Device]:
        """Fetch all top-level devices of the account with their current state."""
        if not self._authenticated:
            raise NotAuthenticatedError(_AUTH_ERROR)
        async with aiohttp.ClientSession() as session:
            token = await _fetch_access_token(self.refresh_token, session)
            return await _fetch_metadevices(token, self.account_id, session)

    async def get_device_by_name(self, name: str) -> Device:
        """Return the first device whose friendly name is exactly *name*.

        Raises :class:`NotFoundError` if no device matches.
        """
        for device in await self.get_metadevice_info():
            if device.friendly_name == name:
                return device
        raise NotFoundError(f"Device '{name}' not found.")

    async def get_device_function_states(self, name: str) -> DeviceFunctionStates:
        """Fetch every function state reported by device *name*."""
        device = await self.get_device_by_name(name)
        return DeviceFunctionStates(
            id=device.id, metadevice_id=device.metadevice_id, states=device.states
        )

    async def get_device_function_state(
        self,
        name: str,
        function_class: str,
        *,
        function_instance: str | None = None,
    ) -> DeviceFunctionState:
        """Fetch one function state of device *name*.

        The result's ``state`` is ``None`` if the device does not report
        *function_class*.  Without *function_instance* the first state of
        that class is returned.
        """
        resp = await self.get_device_function_states(name)
        return DeviceFunctionState(
            id=resp.id,
            metadevice_id=resp.metadevice_id,
            state=find_state(resp.states, function_class, function_instance),
        )

    async def set_device_function_state(
        self,
        name: str,
        function_class: str,
        value: StateValue,
        *,
        function_instance: str | None = None,
    ) -> DeviceFunctionState:
        """Change one function state of device *name*.

        Args:
            name: Device friendly name.
            function_class: Function to change (``"power"``, ``"brightness"``).
            value: New value, passed to the backend as-is.
            function_instance: Target a specific instance of the function.

        Returns:
            The value confirmed by the backend, which may differ from
            *value*.  ``state`` is ``None`` if the backend accepted the
            write without echoing the function back.

        Raises:
            NotAuthenticatedError: If :meth:`login` has not completed.
            NotFoundError: If no device is named *name*.
        """
        device = await self.get_device_by_name(name)
        return await self.set_function_state(
            device, function_class, value, function_instance=function_instance
        )

    async def set_function_state(
        self,
        device: Device,
        function_class: str,
        value: StateValue,
        *,
        function_instance: str | None = None,
    ) -> DeviceFunctionState:
        """Like :meth:`set_device_function_state`, for an already fetched *device*.

        Skips the directory lookup; only a token exchange and the write
        are sent.
        """
        if not self._authenticated:
            raise NotAuthenticatedError(_AUTH_ERROR)
        entry: dict[str, Any] = {"functionClass": function_class, "value": value}
        if function_instance is not None:
            entry["functionInstance"] = function_instance

        async with aiohttp.ClientSession() as session:
            token = await _fetch_access_token(self.refresh_token, session)
            values = await _put_device_state(
                token, self.account_id, device.id, device.metadevice_id, entry, session
            )

        state = find_state(values, function_class, function_instance)
        if state is None:
            _LOGGER.debug(
                "Write to %s/%s was not echoed back", device.friendly_name, function_class
            )
        return DeviceFunctionState(id=device.id, metadevice_id=device.metadevice_id, state=state)


# ---------------------------------------------------------------------------
# Private helpers: login handshake
# ---------------------------------------------------------------------------


_FORM_FIELD_PATTERNS = {
    name: re.compile(rf"[?&;]{name}=([^&\"'\s]+)")
    for name in ("session_code", "execution", "tab_id")
}
_SESSION_STATE_PATTERN = re.compile(r"[?&#]session_state=([^&#]+)")
_CODE_PATTERN = re.compile(r"[?&#]code=([^&#]+)")


def _parse_login_form(html: str) -> LoginForm:
    """Extract the login correlation tokens from the Keycloak login page.

    The page embeds ``session_code``, ``execution`` and ``tab_id`` in
    the query string of its form action.  Raises :class:`ProtocolError`
    if any of them is missing.
    """
    found: dict[str, str] = {}
    for name, pattern in _FORM_FIELD_PATTERNS.items():
        match = pattern.search(html)
        if match is None:
            raise ProtocolError(f"Login page did not contain '{name}'.")
        found[name] = match.group(1)
    return LoginForm(**found)


def _parse_login_redirect(location: str | None) -> str:
    """Return the authorization code from the login redirect ``Location``.

    Both ``session_state`` and ``code`` must be present.
    """
    if not location:
        raise AuthenticationError("Failed to login")
    if _SESSION_STATE_PATTERN.search(location) is None:
        raise AuthenticationError("Failed to login")
    code_match = _CODE_PATTERN.search(location)
    if code_match is None:
        raise AuthenticationError("Failed to login")
    return code_match.group(1)


async def _fetch_login_form(session: aiohttp.ClientSession, challenge: str) -> LoginForm:
    """Open the authorization page and scrape its login form."""
    _LOGGER.debug("Requesting authorization page")
    async with session.get(
        AUTH_URL,
        params={
            "response_type": "code",
            "client_id": CLIENT_ID,
            "redirect_uri": REDIRECT_URI,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "scope": AUTH_SCOPE,
        },
    ) as resp:
        resp.raise_for_status()
        html = await resp.text()
    return _parse_login_form(html)


async def _submit_credentials(
    username: str, password: str, form: LoginForm, session: aiohttp.ClientSession
) -> str:
    """Post the credentials and return the authorization code.

    Keycloak answers a successful login with a 302 to the app's custom
    URI scheme, so redirects must not be followed.
    """
    _LOGGER.debug("Submitting credentials for %s", username)
    async with session.post(
        LOGIN_URL,
        params={
            "session_code": form.session_code,
            "execution": form.execution,
            "client_id": CLIENT_ID,
            "tab_id": form.tab_id,
        },
        data={"username": username, "password": password},
        allow_redirects=False,
    ) as resp:
        if resp.status != 302:
            _LOGGER.debug("Login returned HTTP %s instead of a redirect", resp.status)
            raise AuthenticationError("Failed to login")
        location = resp.headers.get("Location")
    return _parse_login_redirect(location)


async def _post_token(form: dict[str, str], session: aiohttp.ClientSession) -> dict[str, Any]:
    """POST a grant to the token endpoint and return the JSON body."""
    async with session.post(TOKEN_URL, data=form) as resp:
        if resp.status in (400, 401):
            raise AuthenticationError(
                f"Token request ({form['grant_type']}) rejected: HTTP {resp.status}"
            )
        resp.raise_for_status()
        body: dict[str, Any] = await resp.json()
    return body


async def _exchange_code(code: str, verifier: str, session: aiohttp.ClientSession) -> str:
    """Trade the authorization code for a refresh token."""
    _LOGGER.debug("Exchanging authorization code")
    body = await _post_token(
        {
            "grant_type": "authorization_code",
            "client_id": CLIENT_ID,
            "code_verifier": verifier,
            "code": code,
            "redirect_uri": REDIRECT_URI,
        },
        session,
    )
    refresh_token = body.get("refresh_token")
    if not refresh_token:
        raise ProtocolError("Token response did not contain a refresh_token.")
    return str(refresh_token)


async def _fetch_account_id(refresh_token: str, session: aiohttp.ClientSession) -> str:
    """Resolve the account id from the first entry of the user's account access."""
    token = await _fetch_access_token(refresh_token, session)
    info = await _fetch_account_info(token, session)
    access = info.get("accountAccess") or []
    if not access:
        raise ProtocolError("User profile has no account access entries.")
    try:
        return str(access[0]["account"]["accountId"])
    except (KeyError, TypeError):
        raise ProtocolError("User profile account entry has no accountId.") from None


async def _http_login(
    username: str,
    password: str,
    session: aiohttp.ClientSession,
    *,
    pkce: tuple[str, str] = (CODE_VERIFIER, CODE_CHALLENGE),
) -> tuple[str, str]:
    """Perform the full login handshake and return ``(refresh_token, account_id)``.

    *session* carries the Keycloak cookies between steps; use a fresh
    one per login.
    """
    verifier, challenge = pkce
    form = await _fetch_login_form(session, challenge)
    code = await _submit_credentials(username, password, form, session)
    refresh_token = await _exchange_code(code, verifier, session)
    account_id = await _fetch_account_id(refresh_token, session)
    return refresh_token, account_id


# ---------------------------------------------------------------------------
# Private helpers: tokens and backend
# ---------------------------------------------------------------------------


async def _fetch_access_token(refresh_token: str, session: aiohttp.ClientSession) -> str:
    """Exchange *refresh_token* for an access token (one round trip, no cache)."""
    if not refresh_token:
        raise ValueError("refresh_token must not be empty.")
    _LOGGER.debug("Refreshing access token")
    body = await _post_token(
        {
            "grant_type": "refresh_token",
            "client_id": CLIENT_ID,
            "scope": REFRESH_SCOPE,
            "refresh_token": refresh_token,
        },
        session,
    )
    access_token = body.get("access_token")
    if not access_token:
        raise ProtocolError("Token response did not contain an access_token.")
    return str(access_token)


def _api_headers(token: str, *, semantics: bool = False) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {token}"}
    if semantics:
        headers["host"] = API_HOST
    return headers


async def _fetch_account_info(token: str, session: aiohttp.ClientSession) -> dict[str, Any]:
    """Fetch the ``users/me`` profile."""
    async with session.get(f"{API_BASE}/users/me", headers=_api_headers(token)) as resp:
        resp.raise_for_status()
        body = await resp.json()
    if not isinstance(body, dict):
        raise ProtocolError("Unexpected users/me response format.")
    return body


async def _fetch_metadevices(
    token: str, account_id: str, session: aiohttp.ClientSession
) -> list[Device]:
    """Fetch the metadevice tree and keep only top-level devices."""
    _LOGGER.debug("Fetching metadevices for account %s", account_id)
    async with session.get(
        f"{API_BASE}/accounts/{account_id}/metadevices",
        params={"expansions": "state"},
        headers=_api_headers(token, semantics=True),
    ) as resp:
        resp.raise_for_status()
        body = await resp.json()
    if not isinstance(body, list):
        raise ProtocolError("Unexpected metadevices response format.")
    try:
        devices = [Device.from_dict(d) for d in body if d.get("typeId") == DEVICE_TYPE_ID]
    except (KeyError, TypeError, AttributeError):
        raise ProtocolError("Unexpected metadevice entry format.") from None
    _LOGGER.debug("Found %d device(s) in %d metadevice(s)", len(devices), len(body))
    return devices


async def _put_device_state(
    token: str,
    account_id: str,
    device_id: str,
    metadevice_id: str,
    entry: dict[str, Any],
    session: aiohttp.ClientSession,
) -> list[FunctionState]:
    """Write a single function value and return the states echoed by the backend."""
    _LOGGER.debug("Setting %s on device %s", entry["functionClass"], device_id)
    async with session.put(
        f"{API_BASE}/accounts/{account_id}/metadevices/{device_id}/state",
        json={"metadeviceId": metadevice_id, "values": [entry]},
        headers=_api_headers(token, semantics=True),
    ) as resp:
        resp.raise_for_status()
        body = await resp.json()
    if body is None:
        return []
    if not isinstance(body, dict):
        raise ProtocolError("Unexpected state response format.")
    values = body.get("values") or []
    if not isinstance(values, list):
        raise ProtocolError("Unexpected state response format.")
    try:
        return [FunctionState.from_dict(v) for v in values]
    except (KeyError, TypeError, AttributeError):
        raise ProtocolError("Unexpected state value format.") from None
