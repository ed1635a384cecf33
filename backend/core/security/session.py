"""
Session token verification for identity-provider issued JWTs.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt


@dataclass
class SessionClaims:
    """Claims carried by an identity provider session token."""

    sub: str  # Identity user ID
    exp: datetime  # Expiration time
    iat: datetime  # Issued at
    email: str | None = None
    name: str | None = None
    picture: str | None = None


class SessionTokenService:
    """Verifies (and, for local development and tests, issues) session tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        audience: str | None = None,
        expire_minutes: int = 60,
    ):
        """
        Initialize the session token service.

        Args:
            secret_key: Shared secret configured on the identity provider
            algorithm: JWT algorithm (default: HS256)
            audience: Expected ``aud`` claim, if the provider sets one
            expire_minutes: Lifetime of tokens issued by ``create_session_token``
        """
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._audience = audience
        self._expire_minutes = expire_minutes

    def create_session_token(
        self,
        identity_user_id: str,
        email: str | None = None,
        name: str | None = None,
        picture: str | None = None,
    ) -> str:
        """
        Create a signed session token.

        The identity provider issues tokens in production; this mirrors its
        claim layout so local clients and tests can authenticate.
        """
        now = datetime.now(UTC)
        payload = {
            "sub": identity_user_id,
            "exp": now + timedelta(minutes=self._expire_minutes),
            "iat": now,
        }
        if email:
            payload["email"] = email
        if name:
            payload["name"] = name
        if picture:
            payload["picture"] = picture
        if self._audience:
            payload["aud"] = self._audience

        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def decode_session_token(self, token: str) -> SessionClaims | None:
        """
        Decode and validate a session token.

        Args:
            token: JWT from the Authorization header or session cookie

        Returns:
            SessionClaims if valid, None if invalid or expired
        """
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                options={"verify_aud": self._audience is not None},
            )

            for field in ("sub", "exp"):
                if field not in payload:
                    raise JWTError(f"Missing required field: {field}")

            if not isinstance(payload["sub"], str) or not payload["sub"]:
                raise JWTError("Invalid subject")

            return SessionClaims(
                sub=payload["sub"],
                exp=datetime.fromtimestamp(payload["exp"], tz=UTC),
                iat=datetime.fromtimestamp(payload.get("iat", 0), tz=UTC),
                email=payload.get("email"),
                name=payload.get("name"),
                picture=payload.get("picture"),
            )
        except JWTError:
            return None
