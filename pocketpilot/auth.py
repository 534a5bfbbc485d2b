# pocketpilot/auth.py
# Signed bearer tokens in place of the hosted auth service.
from __future__ import annotations

import logging
from typing import Dict, Optional

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from pocketpilot.errors import AuthError

log = logging.getLogger(__name__)

TOKEN_SALT = "pocketpilot-auth"


def bearer_token(header: Optional[str]) -> str:
    if not header:
        raise AuthError("Missing authorization header")
    token = header.strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    if not token:
        raise AuthError("Missing bearer token")
    return token


class AuthService:
    def __init__(self, secret_key: str, max_age: int = 7 * 24 * 3600):
        if not secret_key:
            raise ValueError("secret_key is required")
        self.max_age = max_age
        self._serializer = URLSafeTimedSerializer(secret_key, salt=TOKEN_SALT)

    def issue_token(self, user_id: str, email: Optional[str] = None) -> str:
        if not user_id:
            raise AuthError("user_id is required")
        return self._serializer.dumps({"sub": str(user_id), "email": email})

    def get_user(self, token: str) -> Dict[str, Optional[str]]:
        if not token:
            raise AuthError("Unauthorized")
        try:
            payload = self._serializer.loads(token, max_age=self.max_age)
        except SignatureExpired:
            raise AuthError("Token expired")
        except BadSignature:
            log.warning("Rejected token with bad signature")
            raise AuthError("Unauthorized")
        user_id = (payload or {}).get("sub")
        if not user_id:
            raise AuthError("Unauthorized")
        return {"id": user_id, "email": payload.get("email")}

    def user_from_header(self, header: Optional[str]) -> Dict[str, Optional[str]]:
        return self.get_user(bearer_token(header))
