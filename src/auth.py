import logging
from typing import Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from config import SECRET_KEY, TOKEN_MAX_AGE
from models import UserRecord
from stores import UserStore

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    def __init__(self, message: str, expired: bool = False):
        super().__init__(message)
        self.message = message
        self.expired = expired


def bearer_token(header: Optional[str]) -> Optional[str]:
    if not header or not header.startswith("Bearer"):
        return None
    parts = header.split(" ", 1)
    return parts[1].strip() if len(parts) == 2 and parts[1].strip() else None


class TokenAuthority:
    """Signs user ids into bearer tokens and resolves them back to users."""

    def __init__(self, users: UserStore, secret_key: str = SECRET_KEY, max_age: int = TOKEN_MAX_AGE):
        self.users = users
        self.max_age = max_age
        self.serializer = URLSafeTimedSerializer(secret_key, salt="recommender-auth")

    def issue(self, user_id: str) -> str:
        return self.serializer.dumps({"id": user_id})

    def resolve(self, token: Optional[str]) -> UserRecord:
        if not token:
            raise AuthenticationError("Not authorized, no token provided")
        try:
            payload = self.serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise AuthenticationError("Token has expired", expired=True)
        except BadSignature:
            raise AuthenticationError("Invalid token")

        user_id = payload.get("id") or payload.get("userId") if isinstance(payload, dict) else None
        if not user_id:
            raise AuthenticationError("Invalid token structure")
        user = self.users.get(str(user_id))
        if user is None:
            raise AuthenticationError("User not found or has been deleted")
        if not user.is_active:
            raise AuthenticationError("Account has been deactivated")
        return user

    def required_user(self, header: Optional[str]) -> UserRecord:
        return self.resolve(bearer_token(header))

    def optional_user(self, header: Optional[str]) -> Optional[UserRecord]:
        token = bearer_token(header)
        if not token:
            return None
        try:
            return self.resolve(token)
        except AuthenticationError as e:
            logger.debug(f"Optional auth - {e.message}, continuing without user")
            return None
