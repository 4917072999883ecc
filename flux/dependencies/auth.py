"""
Authentication dependencies for FastAPI.

- GET/HEAD requests are public (read-only)
- All other methods require a Bearer token matching FLUX_API_KEY
- If FLUX_API_KEY is not set, all requests are allowed (dev mode)
"""
import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials


# Security scheme; missing header is handled below, not by FastAPI
security = HTTPBearer(auto_error=False)

READ_ONLY_METHODS = frozenset({"GET", "HEAD"})


def token_matches(token: str, api_key: str) -> bool:
    """Constant-time comparison of a presented token against the API key."""
    return hmac.compare_digest(token.encode(), api_key.encode())


async def require_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> None:
    """
    Dependency guarding write operations with the configured API key.

    Usage:
        router = APIRouter(dependencies=[Depends(require_api_key)])
    """
    api_key = request.app.state.settings.FLUX_API_KEY
    if not api_key:
        return

    if request.method in READ_ONLY_METHODS:
        return

    if credentials is None or not token_matches(credentials.credentials, api_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
