"""
Auth Package

Email/password authentication and account policies.
"""

from sumbook.auth.provider import (
    AuthError,
    AuthErrorCode,
    AuthProvider,
    AuthService,
    FirebaseAuthProvider,
    InMemoryAuthProvider,
    user_facing_message,
)

__all__ = [
    "AuthError",
    "AuthErrorCode",
    "AuthProvider",
    "AuthService",
    "FirebaseAuthProvider",
    "InMemoryAuthProvider",
    "user_facing_message",
]
