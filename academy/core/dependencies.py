"""Shared dependencies for the Academy Progress Service."""

from typing import Optional
from aiocache import Cache
import structlog
from jose import jwt, JWTError
from datetime import datetime, timedelta
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from academy.core.config import settings
from academy.core.database import get_session_factory
from academy.services.progression_service import ProgressionService

logger = structlog.get_logger()

# Global instances
_redis_cache: Optional[Cache] = None
_progression_service: Optional[ProgressionService] = None

# Security
security = HTTPBearer()


async def get_redis_cache() -> Cache:
    """Leaderboard cache: Redis when reachable, otherwise process memory."""
    global _redis_cache

    if _redis_cache is None:
        try:
            cache = Cache.from_url(settings.REDIS_URL)
            await cache.exists("ping")
            _redis_cache = cache
            logger.info("Leaderboard cache connected", backend=type(cache).__name__)
        except Exception as e:
            # Rankings are then cached per process and only invalidated locally
            logger.warning("Redis cache not available, using memory", error=str(e))
            _redis_cache = Cache(Cache.MEMORY)

    return _redis_cache


async def get_progression_service() -> ProgressionService:
    """Get the process-wide progression service (shares learner locks)."""
    global _progression_service

    if _progression_service is None:
        _progression_service = ProgressionService(
            session_factory=get_session_factory(),
            cache=await get_redis_cache(),
        )

    return _progression_service


def reset_dependencies() -> None:
    """Drop cached singletons (after the database or cache is reconfigured)."""
    global _redis_cache, _progression_service
    _redis_cache = None
    _progression_service = None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Create JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.JWT_EXPIRATION_MINUTES)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return encoded_jwt


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Get current user from JWT token."""
    token = credentials.credentials

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM]
        )
        user_id: str = payload.get("sub")
        if user_id is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return {"sub": user_id, "roles": payload.get("roles", ["learner"])}
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )


def ensure_self_or_role(current_user: dict, learner_id: str, *roles: str) -> None:
    """Allow a learner to act on their own data, or any caller holding one of ``roles``."""
    if current_user["sub"] == learner_id:
        return
    if any(role in current_user.get("roles", []) for role in roles):
        return
    raise HTTPException(status_code=403, detail="Not authorized")


def ensure_role(current_user: dict, *roles: str) -> None:
    if not any(role in current_user.get("roles", []) for role in roles):
        raise HTTPException(status_code=403, detail="Not authorized")
