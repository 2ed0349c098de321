"""
Authentication

Bearer-token verification against Firebase Auth.
"""

from .firebase import DEVELOPER, FirebaseAuthenticator, Principal, bearer_token

__all__ = ["DEVELOPER", "FirebaseAuthenticator", "Principal", "bearer_token"]
