"""
Identity session over the Firebase Auth REST API.

Used by operator tooling and anything that acts on behalf of a signed-in user
outside a browser: it signs in, keeps the ID token fresh and tells listeners
when the user changes.
"""
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from config import HTTP_TIMEOUT, get_web_api_key, get_welcome_notification_function
from errors import AuthError, StoryInColorError
from notifications import BestEffortDispatcher


IDENTITY_TOOLKIT_HOST = 'identitytoolkit.googleapis.com'
SECURE_TOKEN_HOST = 'securetoken.googleapis.com'

# Refresh slightly before the provider's expiry
TOKEN_EXPIRY_MARGIN = 60  # seconds


class SessionState(Enum):
    UNINITIALIZED = 'uninitialized'
    INITIALIZING = 'initializing'
    AUTHENTICATED = 'authenticated'
    ANONYMOUS = 'anonymous'


@dataclass
class AuthUser:
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    created_at: Optional[str] = None
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: float = 0.0


def _endpoint_base(host: str) -> str:
    emulator_host = os.getenv('FIREBASE_AUTH_EMULATOR_HOST')
    if emulator_host:
        return f"http://{emulator_host}/{host}"
    return f"https://{host}"


class IdentitySession:
    """Current-user session with the lifecycle Uninitialized -> Initializing -> Authenticated | Anonymous."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        dispatcher: Optional[BestEffortDispatcher] = None,
        profile_store=None,
        clock: Callable[[], float] = time.time
    ):
        self.api_key = api_key or get_web_api_key()
        self.http_client = http_client or httpx.Client(timeout=HTTP_TIMEOUT)
        self.dispatcher = dispatcher
        self.profile_store = profile_store
        self.clock = clock
        self.state = SessionState.UNINITIALIZED
        self.current_user: Optional[AuthUser] = None
        self._listeners: List[Callable[[Optional[AuthUser]], None]] = []

    @property
    def is_initialized(self) -> bool:
        return self.state in (SessionState.AUTHENTICATED, SessionState.ANONYMOUS)

    def add_listener(self, callback: Callable[[Optional[AuthUser]], None]) -> Callable[[], None]:
        """
        Register a callback fired whenever the current user changes.

        Returns:
            callable: Function that removes the listener
        """
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _set_user(self, user: Optional[AuthUser]) -> None:
        self.current_user = user
        self.state = SessionState.AUTHENTICATED if user else SessionState.ANONYMOUS
        for listener in list(self._listeners):
            listener(user)

    def _require_initialized(self) -> None:
        if not self.is_initialized:
            raise AuthError('not-initialized', "Identity session is not initialized")

    def _post(self, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = self.http_client.post(url, params={'key': self.api_key}, **kwargs)
        except httpx.HTTPError as e:
            print(f"Auth request failed: {str(e)}")
            raise AuthError('network', "Could not reach the authentication provider", e)

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            error = body.get('error', {}) if isinstance(body, dict) else {}
            message = error.get('message', '') if isinstance(error, dict) else str(error)
            # Messages look like 'WEAK_PASSWORD : Password should be at least 6 characters'
            reason = message.split(' ')[0] if message else f"http-{response.status_code}"
            raise AuthError(reason, f"Authentication failed: {message or response.status_code}")
        if not isinstance(body, dict):
            raise AuthError('malformed-response', "Unexpected response from the authentication provider")
        return body

    def _accounts(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(f"{_endpoint_base(IDENTITY_TOOLKIT_HOST)}/v1/accounts:{action}", json=payload)

    def _user_from_response(self, body: Dict[str, Any]) -> AuthUser:
        expires_in = int(body.get('expiresIn') or body.get('expires_in') or 3600)
        return AuthUser(
            uid=body.get('localId') or body.get('user_id'),
            email=body.get('email') or None,
            display_name=body.get('displayName') or None,
            id_token=body.get('idToken') or body.get('id_token'),
            refresh_token=body.get('refreshToken') or body.get('refresh_token'),
            token_expires_at=self.clock() + expires_in,
        )

    def _after_sign_in(self, user: AuthUser, is_new_user: bool) -> AuthUser:
        if self.profile_store is not None:
            try:
                self.profile_store.ensure_user_profile(user.uid, user.email, user.display_name)
            except StoryInColorError as e:
                print(f"Error mirroring user profile: {e.message}")

        self._set_user(user)

        if is_new_user:
            self._send_welcome(user)
        return user

    def _send_welcome(self, user: AuthUser) -> None:
        if self.dispatcher is None:
            return
        self.dispatcher.post(get_welcome_notification_function(), {
            'userId': user.uid,
            'email': user.email,
            'displayName': user.display_name,
        })
        self.dispatcher.drain()

    def initialize(self, refresh_token: Optional[str] = None) -> Optional[AuthUser]:
        """
        Start the session, resuming a previous sign-in when a refresh token is given.

        Returns:
            AuthUser: The resumed user, or None for an anonymous session
        """
        self.state = SessionState.INITIALIZING
        if not refresh_token:
            self._set_user(None)
            return None

        try:
            user = self._refresh(refresh_token)
            lookup = self._accounts('lookup', {'idToken': user.id_token})
            users = lookup.get('users') or []
            if users:
                user.email = users[0].get('email')
                user.display_name = users[0].get('displayName')
                user.created_at = users[0].get('createdAt')
        except AuthError:
            self._set_user(None)
            raise

        self._set_user(user)
        return user

    def sign_in(self, email: str, password: str) -> AuthUser:
        self._require_initialized()
        body = self._accounts('signInWithPassword', {
            'email': email,
            'password': password,
            'returnSecureToken': True,
        })
        return self._after_sign_in(self._user_from_response(body), is_new_user=False)

    def sign_up(self, email: str, password: str) -> AuthUser:
        """Create an account, sign it in and send the welcome email best effort."""
        self._require_initialized()
        body = self._accounts('signUp', {
            'email': email,
            'password': password,
            'returnSecureToken': True,
        })
        return self._after_sign_in(self._user_from_response(body), is_new_user=True)

    def sign_in_with_provider(
        self,
        provider_token: str,
        provider_id: str = 'google.com',
        request_uri: str = 'http://localhost'
    ) -> AuthUser:
        """
        Sign in with a third-party identity (Google by default).

        Args:
            provider_token: ID token issued by the provider
            provider_id: Provider identifier
            request_uri: Redirect URI registered with the provider
        """
        self._require_initialized()
        body = self._accounts('signInWithIdp', {
            'postBody': f"id_token={provider_token}&providerId={provider_id}",
            'requestUri': request_uri,
            'returnIdpCredential': True,
            'returnSecureToken': True,
        })
        return self._after_sign_in(self._user_from_response(body), is_new_user=bool(body.get('isNewUser')))

    def reset_password(self, email: str) -> None:
        self._require_initialized()
        self._accounts('sendOobCode', {'requestType': 'PASSWORD_RESET', 'email': email})
        print("Password reset email requested")

    def sign_out(self) -> None:
        self._require_initialized()
        self._set_user(None)

    def _refresh(self, refresh_token: str) -> AuthUser:
        body = self._post(
            f"{_endpoint_base(SECURE_TOKEN_HOST)}/v1/token",
            data={'grant_type': 'refresh_token', 'refresh_token': refresh_token},
        )
        return self._user_from_response(body)

    def get_id_token(self, force_refresh: bool = False) -> str:
        """
        Return a valid ID token for the current user.

        Args:
            force_refresh: Exchange the refresh token even if the current token is still valid

        Raises:
            AuthError: If nobody is signed in or the refresh failed
        """
        self._require_initialized()
        user = self.current_user
        if user is None:
            raise AuthError('unauthenticated', "No user is signed in")

        if force_refresh or not user.id_token or self.clock() >= user.token_expires_at - TOKEN_EXPIRY_MARGIN:
            refreshed = self._refresh(user.refresh_token)
            user.id_token = refreshed.id_token
            user.refresh_token = refreshed.refresh_token or user.refresh_token
            user.token_expires_at = refreshed.token_expires_at
        return user.id_token
