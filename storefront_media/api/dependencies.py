"""
FastAPI Dependencies

Provides dependency injection for:
- Admin precondition (bearer token checked against ADMIN_API_KEY)
- Storage backend (singleton from StorageFactory)
- MediaService (per-request, over the shared storage backend)
"""

import secrets
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from storefront_media.core.config import settings
from storefront_media.core.exceptions import AdminAccessError
from storefront_media.core.logging import get_logger
from storefront_media.core.storage import IStorage, get_storage
from storefront_media.services import MediaService

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


# =============================================================================
# Admin Precondition
# =============================================================================

def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Only the admin panel backend may call the pipeline.

    Missing token -> 401 unauthenticated. Wrong token, or no ADMIN_API_KEY
    configured at all -> 403 permission-denied.
    """
    if credentials is None or not credentials.credentials:
        raise AdminAccessError("Missing bearer token", authenticated=False)

    expected = settings.ADMIN_API_KEY
    if not expected:
        logger.warning("admin_key_not_configured")
        raise AdminAccessError("ADMIN_API_KEY is not configured", authenticated=True)

    if not secrets.compare_digest(credentials.credentials.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("admin_token_rejected")
        raise AdminAccessError("Bearer token does not match ADMIN_API_KEY", authenticated=True)

    return "admin"


# =============================================================================
# Services
# =============================================================================

def get_media_service(storage: IStorage = Depends(get_storage)) -> MediaService:
    """Returns a MediaService bound to the configured storage backend."""
    return MediaService(storage)
