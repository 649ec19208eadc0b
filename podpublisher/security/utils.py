# podpublisher/security/utils.py
import os
import base64
import hashlib
import secrets
import json
from typing import Dict, Any, Optional

import structlog
from jose import jwt, JWTError
from cryptography.fernet import Fernet, InvalidToken

from podpublisher.infrastructure.redis_cache import redis_client

logger = structlog.get_logger(__name__)

# Config (env)
JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "change_me_now")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated")
OAUTH_TOKEN_KEY = os.getenv("OAUTH_TOKEN_KEY")  # must be a base64 key for Fernet, set in prod

if not OAUTH_TOKEN_KEY:
    # dev fallback (not for production)
    OAUTH_TOKEN_KEY = Fernet.generate_key().decode()

fernet = Fernet(OAUTH_TOKEN_KEY.encode())


# --- JWT helpers ---
def decode_token(token: str) -> Dict[str, Any]:
    """
    Verify a Supabase-issued access token and return its claims.
    """
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[ALGORITHM], audience=JWT_AUDIENCE)
    except JWTError as e:
        logger.warning("token_decode_failed", error=str(e))
        raise


# --- OAuth token encryption ---
def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    if plaintext is None:
        return None
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: Optional[str]) -> Optional[str]:
    if not ciphertext:
        return None
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.warning("token_decrypt_failed")
        return None


# --- PKCE ---
def generate_code_verifier() -> str:
    return secrets.token_urlsafe(48)


def code_challenge_for(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


# --- OAuth state ---
OAUTH_STATE_TTL = 600


async def create_oauth_state(user_id: str, provider: str, code_verifier: Optional[str] = None) -> str:
    state = secrets.token_urlsafe(32)
    key = f"oauth_state:{state}"
    payload = {"user_id": str(user_id), "provider": provider}
    if code_verifier:
        payload["code_verifier"] = code_verifier
    await redis_client.set(key, json.dumps(payload), ex=OAUTH_STATE_TTL)
    return state


async def pop_oauth_state(state: str) -> Optional[dict]:
    key = f"oauth_state:{state}"
    raw = await redis_client.get(key)
    if not raw:
        return None
    await redis_client.delete(key)
    try:
        return json.loads(raw)
    except ValueError:
        return None
