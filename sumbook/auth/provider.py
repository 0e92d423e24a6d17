"""
Authentication

Email/password accounts behind a small provider interface:
- FirebaseAuthProvider talks to the Firebase Auth REST API (Identity Toolkit)
- InMemoryAuthProvider keeps salted PBKDF2 hashes in memory (tests, local runs)

AuthService adds the account policies on top:
- The configured demo admin is provisioned on its first failed sign-in
- Sign-up needs the configured invite token; with no token configured
  sign-up is closed

DESIGN DECISION: No secret lives in code. The demo pair and the invite
token come from settings, and destructive actions re-authenticate the
account instead of checking a shared password.
"""

import asyncio
import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional
from uuid import uuid4

import requests
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sumbook.config import AuthSettings, FirebaseSettings
from sumbook.models import AuthUser
from sumbook.storage.interface import DocumentStore


logger = structlog.get_logger(__name__)


class AuthErrorCode(str, Enum):
    USER_NOT_FOUND = "user-not-found"
    INVALID_CREDENTIAL = "invalid-credential"
    EMAIL_IN_USE = "email-already-in-use"
    WEAK_PASSWORD = "weak-password"
    INVALID_EMAIL = "invalid-email"
    USER_DISABLED = "user-disabled"
    TOO_MANY_REQUESTS = "too-many-requests"
    SIGNUP_CLOSED = "signup-closed"
    INVALID_INVITE = "invalid-invite"
    NETWORK = "network-request-failed"
    UNKNOWN = "unknown"


class AuthError(Exception):
    """Authentication failure carrying a provider-independent code."""

    def __init__(self, code: AuthErrorCode, message: Optional[str] = None):
        self.code = code
        super().__init__(message or code.value)


_MESSAGES = {
    AuthErrorCode.USER_NOT_FOUND: "Invalid email or password.",
    AuthErrorCode.INVALID_CREDENTIAL: "Invalid email or password.",
    AuthErrorCode.EMAIL_IN_USE: "This email is already in use. Please sign in instead.",
    AuthErrorCode.WEAK_PASSWORD: "Password should be at least 6 characters.",
    AuthErrorCode.INVALID_EMAIL: "Please enter a valid email address.",
    AuthErrorCode.USER_DISABLED: "This account has been disabled.",
    AuthErrorCode.TOO_MANY_REQUESTS: "Too many attempts. Please try again later.",
    AuthErrorCode.SIGNUP_CLOSED: "This sign-up link is invalid or has expired.",
    AuthErrorCode.INVALID_INVITE: "This sign-up link is invalid or has expired.",
    AuthErrorCode.NETWORK: "Could not reach the sign-in service. Check your connection.",
}


def user_facing_message(error: AuthError) -> str:
    return _MESSAGES.get(error.code, "An unexpected error occurred.")


# =============================================================================
# PROVIDERS
# =============================================================================

class AuthProvider(ABC):
    """Abstract email/password identity provider."""

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> AuthUser:
        pass

    @abstractmethod
    async def create_user(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
    ) -> AuthUser:
        pass

    async def reauthenticate(self, email: str, password: str) -> AuthUser:
        """Confirm the password of an already signed-in account."""
        return await self.sign_in(email, password)


class InMemoryAuthProvider(AuthProvider):
    """Process-local accounts with salted PBKDF2-SHA256 password hashes."""

    def __init__(self, iterations: int = 100_000):
        self._iterations = iterations
        self._accounts: dict[str, dict] = {}

    def _hash(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, self._iterations)

    async def sign_in(self, email: str, password: str) -> AuthUser:
        account = self._accounts.get(email.strip().lower())
        if account is None:
            raise AuthError(AuthErrorCode.USER_NOT_FOUND)
        if not hmac.compare_digest(self._hash(password, account["salt"]), account["hash"]):
            raise AuthError(AuthErrorCode.INVALID_CREDENTIAL)
        return account["user"]

    async def create_user(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
    ) -> AuthUser:
        email = email.strip().lower()
        if "@" not in email:
            raise AuthError(AuthErrorCode.INVALID_EMAIL)
        if email in self._accounts:
            raise AuthError(AuthErrorCode.EMAIL_IN_USE)
        if len(password) < 6:
            raise AuthError(AuthErrorCode.WEAK_PASSWORD)

        salt = secrets.token_bytes(16)
        user = AuthUser(uid=uuid4().hex[:28], email=email, display_name=display_name)
        self._accounts[email] = {
            "user": user,
            "salt": salt,
            "hash": self._hash(password, salt),
        }
        return user


# Firebase REST error messages look like "WEAK_PASSWORD : Password should be ..."
_FIREBASE_CODES = {
    "EMAIL_NOT_FOUND": AuthErrorCode.USER_NOT_FOUND,
    "INVALID_PASSWORD": AuthErrorCode.INVALID_CREDENTIAL,
    "INVALID_LOGIN_CREDENTIALS": AuthErrorCode.INVALID_CREDENTIAL,
    "EMAIL_EXISTS": AuthErrorCode.EMAIL_IN_USE,
    "WEAK_PASSWORD": AuthErrorCode.WEAK_PASSWORD,
    "INVALID_EMAIL": AuthErrorCode.INVALID_EMAIL,
    "MISSING_PASSWORD": AuthErrorCode.INVALID_CREDENTIAL,
    "USER_DISABLED": AuthErrorCode.USER_DISABLED,
    "TOO_MANY_ATTEMPTS_TRY_LATER": AuthErrorCode.TOO_MANY_REQUESTS,
}


class FirebaseAuthProvider(AuthProvider):
    """Firebase Auth through the Identity Toolkit REST API."""

    BASE_URL = "https://identitytoolkit.googleapis.com/v1"

    def __init__(self, settings: FirebaseSettings, timeout: float = 20):
        if not settings.web_api_key:
            raise ValueError("FIREBASE_WEB_API_KEY is required for Firebase sign-in")
        self._api_key = settings.web_api_key
        self._timeout = timeout

    @retry(
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _post(self, endpoint: str, payload: dict) -> dict:
        url = f"{self.BASE_URL}/accounts:{endpoint}?key={self._api_key}"
        r = requests.post(url, json=payload, timeout=self._timeout)
        if r.status_code != 200:
            message = r.json().get("error", {}).get("message", "")
            code = _FIREBASE_CODES.get(message.split(" : ")[0].strip(), AuthErrorCode.UNKNOWN)
            raise AuthError(code, message or None)
        return r.json()

    async def _call(self, endpoint: str, payload: dict) -> dict:
        try:
            return await asyncio.to_thread(self._post, endpoint, payload)
        except requests.RequestException as e:
            raise AuthError(AuthErrorCode.NETWORK, str(e)) from e

    async def sign_in(self, email: str, password: str) -> AuthUser:
        data = await self._call(
            "signInWithPassword",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        return AuthUser(
            uid=data["localId"],
            email=data.get("email", email),
            display_name=data.get("displayName") or None,
        )

    async def create_user(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
    ) -> AuthUser:
        data = await self._call(
            "signUp",
            {"email": email, "password": password, "returnSecureToken": True},
        )
        if display_name:
            await self._call(
                "update",
                {"idToken": data["idToken"], "displayName": display_name, "returnSecureToken": False},
            )
        return AuthUser(uid=data["localId"], email=data.get("email", email), display_name=display_name)


# =============================================================================
# ACCOUNT POLICIES
# =============================================================================

class AuthService:
    """Sign-in and sign-up with demo admin provisioning and invite-gated sign-up."""

    def __init__(
        self,
        provider: AuthProvider,
        settings: AuthSettings,
        store: Optional[DocumentStore] = None,
    ):
        self.provider = provider
        self._settings = settings
        self._store = store

    def _is_demo_admin(self, email: str, password: str) -> bool:
        if not self._settings.demo_admin_enabled:
            return False
        return (
            email.strip().lower() == self._settings.demo_admin_email.strip().lower()
            and hmac.compare_digest(password.encode(), self._settings.demo_admin_password.encode())
        )

    async def sign_in(self, email: str, password: str) -> AuthUser:
        """
        Sign in, provisioning the demo admin on its first attempt.

        Raises:
            AuthError: If the credentials are rejected
        """
        try:
            user = await self.provider.sign_in(email, password)
        except AuthError as e:
            if e.code not in (AuthErrorCode.USER_NOT_FOUND, AuthErrorCode.INVALID_CREDENTIAL):
                raise
            if not self._is_demo_admin(email, password):
                raise
            try:
                user = await self.provider.create_user(email, password, display_name="Admin")
            except AuthError as create_error:
                if create_error.code == AuthErrorCode.EMAIL_IN_USE:
                    # The account exists with a different password
                    raise e
                raise
            logger.info("demo_admin_provisioned", user_id=user.uid)
            await self._record_admin_role(user)

        logger.info("signed_in", user_id=user.uid)
        return user

    async def _record_admin_role(self, user: AuthUser) -> None:
        if self._store is None:
            return
        await self._store.set(f"user_roles/{user.uid}", {"role": "admin", "uid": user.uid})

    async def sign_up(
        self,
        email: str,
        password: str,
        invite_token: str,
        display_name: Optional[str] = None,
    ) -> AuthUser:
        """
        Create an account when the invite token matches the configured one.

        Raises:
            AuthError: SIGNUP_CLOSED, INVALID_INVITE or a provider error
        """
        expected = self._settings.signup_invite_token
        if not expected:
            raise AuthError(AuthErrorCode.SIGNUP_CLOSED)
        if not secrets.compare_digest(invite_token.encode(), expected.encode()):
            logger.warning("signup_rejected", reason="invalid_invite")
            raise AuthError(AuthErrorCode.INVALID_INVITE)

        user = await self.provider.create_user(email, password, display_name=display_name)
        logger.info("signed_up", user_id=user.uid)
        return user

    async def reauthenticate(self, email: str, password: str) -> AuthUser:
        return await self.provider.reauthenticate(email, password)
