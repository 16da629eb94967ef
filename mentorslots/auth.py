import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY
from .permissions import ROLES, CallerContext

logger = logging.getLogger(__name__)

security = HTTPBearer()


def decode_identity_token(token: str) -> dict:
    """
    Verify a bearer token issued by the identity provider.
    Tokens are HS256 JWTs signed with the shared SECRET_KEY and carry
    ``sub`` (account id), ``role`` and optionally ``name``.
    """
    try:
        payload = jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.info(f"Token verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e

    if "sub" not in payload or "role" not in payload:
        logger.error(f"Token missing required claims. Available claims: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    return payload


def create_identity_token(account_id: int, role: str, name: str = None) -> str:
    """Issue a token the way the identity provider does; used by tooling and tests"""
    claims = {"sub": str(account_id), "role": role}
    if name:
        claims["name"] = name
    return jose_jwt.encode(claims, SECRET_KEY, algorithm=JWT_ALGORITHM)


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CallerContext:
    """Get the caller context from the bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    payload = decode_identity_token(credentials.credentials)

    role = payload["role"]
    if role not in ROLES:
        logger.warning(f"Unknown role in token: {role}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    try:
        account_id = int(payload["sub"])
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=401, detail="Invalid token claims") from e

    logger.debug(f"Caller authenticated: account={account_id} role={role}")
    return CallerContext(account_id=account_id, role=role, name=payload.get("name"))
