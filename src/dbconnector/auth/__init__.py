"""Authentication helpers for providers without a Python client SDK."""

from .firebase_auth import AuthState, FirebaseAuthClient, FirebaseAuthError, user_from_account

__all__ = ["AuthState", "FirebaseAuthClient", "FirebaseAuthError", "user_from_account"]
