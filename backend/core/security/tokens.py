"""
JWT verification for bearer tokens issued by the hosted auth provider.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt


@dataclass
class TokenPayload:
    """JWT token payload structure."""

    sub: str  # Subject (user ID)
    exp: datetime  # Expiration time
    iat: datetime  # Issued at
    email: str | None = None
    role: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class TokenService:
    """Service for creating and validating JWT tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        audience: str | None = None,
        access_token_expire_minutes: int = 60,
    ):
        """
        Initialize the token service.

        Args:
            secret_key: Shared secret the auth provider signs tokens with
            algorithm: JWT algorithm (default: HS256)
            audience: Expected ``aud`` claim, or None to skip the check
            access_token_expire_minutes: Lifetime of tokens minted locally
        """
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._audience = audience
        self._access_token_expire_minutes = access_token_expire_minutes

    def create_access_token(
        self,
        user_id: str,
        email: str | None = None,
        role: str | None = None,
        expires_in: timedelta | None = None,
    ) -> str:
        """
        Mint an access token in the provider's format.

        Used by tests and by operators issuing service tokens.
        """
        now = datetime.now(UTC)
        expire = now + (expires_in or timedelta(minutes=self._access_token_expire_minutes))

        payload = {
            "sub": user_id,
            "exp": expire,
            "iat": now,
        }
        if self._audience:
            payload["aud"] = self._audience
        if email:
            payload["email"] = email
        if role:
            payload["role"] = role

        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def decode_token(self, token: str) -> TokenPayload | None:
        """
        Decode and validate a JWT token.

        Returns:
            TokenPayload if valid, None if invalid or expired
        """
        options = {"verify_aud": self._audience is not None}
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                options=options,
            )

            for field in ("sub", "exp"):
                if field not in payload:
                    raise JWTError(f"Missing required field: {field}")

            return TokenPayload(
                sub=str(payload["sub"]),
                exp=datetime.fromtimestamp(payload["exp"], tz=UTC),
                iat=datetime.fromtimestamp(payload.get("iat", 0), tz=UTC),
                email=payload.get("email"),
                role=payload.get("role"),
            )
        except JWTError:
            return None

    def verify_access_token(self, token: str) -> TokenPayload | None:
        """Verify a bearer token; None when it is not usable."""
        payload = self.decode_token(token)
        if payload and payload.sub:
            return payload
        return None
