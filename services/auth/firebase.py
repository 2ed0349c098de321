"""
Firebase ID-token authentication for the proxy routes.

Requests carry `Authorization: Bearer <Firebase ID token>`. In development
mode every request is let through so the studio can be exercised locally
without a Firebase project.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import firebase_admin
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials

from core.config import get_config
from core.errors import ConfigurationError, Unauthenticated

logger = logging.getLogger(__name__)

DEV_TOKENS = ("dev-token", "dev")

APP_NAME = "studio"


@dataclass
class Principal:
    """An authenticated caller."""
    uid: str
    email: Optional[str] = None
    claims: dict[str, Any] = field(default_factory=dict)
    is_development: bool = False


DEVELOPER = Principal(uid="dev-user", email="dev@localhost", is_development=True)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an Authorization header value."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


class FirebaseAuthenticator:
    """
    Verifies Firebase ID tokens.

    Usage:
        authenticator = FirebaseAuthenticator()
        principal = authenticator.authenticate(request.headers.get("authorization"))
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        verify_token: Optional[Callable[[str], dict]] = None,
    ):
        self.config = config or get_config()
        self._verify_token = verify_token
        self._app: Optional[firebase_admin.App] = None

    @property
    def development_mode(self) -> bool:
        return self.config.server.is_development

    def _get_app(self) -> firebase_admin.App:
        """Initialize the Firebase Admin app from the service account (lazy)."""
        if self._app is None:
            try:
                self._app = firebase_admin.get_app(APP_NAME)
            except ValueError:
                try:
                    cert = credentials.Certificate(self.config.firebase.service_account_info())
                except ValueError as e:
                    logger.error(f"Firebase service account is invalid: {e}")
                    raise ConfigurationError("Authentication is not configured on the server", details=str(e))
                self._app = firebase_admin.initialize_app(cert, name=APP_NAME)
                logger.info(f"Firebase Admin initialized for project {self.config.firebase.project_id}")
        return self._app

    def verify(self, token: str) -> dict:
        if self._verify_token is not None:
            return self._verify_token(token)
        return firebase_auth.verify_id_token(token, app=self._get_app())

    def authenticate(self, authorization: Optional[str]) -> Principal:
        """
        Resolve the caller behind an Authorization header.

        Raises:
            Unauthenticated: header missing/malformed, or token rejected
            ConfigurationError: the Firebase service account is missing or invalid
        """
        token = bearer_token(authorization)

        if self.development_mode:
            if token in DEV_TOKENS or token is None:
                logger.debug("Development mode: request authenticated as developer")
                return DEVELOPER

        if token is None:
            raise Unauthenticated("Unauthorized: No token provided")

        if self._verify_token is None:
            # Misconfiguration surfaces as ConfigurationError, not a 401
            self._get_app()

        try:
            claims = self.verify(token)
        except (ValueError, firebase_auth.InvalidIdTokenError,
                firebase_auth.ExpiredIdTokenError, firebase_auth.RevokedIdTokenError,
                firebase_auth.CertificateFetchError) as e:
            logger.warning(f"Authentication error: {type(e).__name__}")
            raise Unauthenticated("Unauthorized: Invalid token", details=str(e))

        return Principal(uid=claims.get("uid") or claims.get("sub", ""), email=claims.get("email"), claims=claims)
