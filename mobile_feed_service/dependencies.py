"""
FastAPI dependencies for Mobile Feed Service
"""
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from typing import Any, Dict, Optional
import logging

from .config import settings
from .exceptions import SourceFetchError
from .schemas import Viewer
from .service_client import CmsClient, get_cms_client
from .application.normalizer import relation_ids, as_float

logger = logging.getLogger(__name__)

optional_security = HTTPBearer(auto_error=False)


def decode_viewer_id(token: str) -> Optional[str]:
    """
    Viewer id carried by a JWT, None when the token is invalid

    Payload tokens carry the user id in `id`, other issuers in `sub`.
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        logger.debug(f"Rejected bearer token: {e}")
        return None

    viewer_id = payload.get("id") or payload.get("sub")
    return str(viewer_id) if viewer_id else None


def viewer_from_profile(viewer_id: str, profile: Optional[Dict[str, Any]]) -> Viewer:
    """Build the viewer from a CMS user document (or just the id when it is missing)"""
    if not profile:
        return Viewer(id=viewer_id)

    location = profile.get("location") if isinstance(profile.get("location"), dict) else {}
    coordinates = location.get("coordinates") if isinstance(location.get("coordinates"), dict) else {}

    return Viewer(
        id=viewer_id,
        name=profile.get("name") if isinstance(profile.get("name"), str) else None,
        following_ids=relation_ids(profile.get("following")),
        follower_ids=relation_ids(profile.get("followers")),
        latitude=as_float(coordinates.get("latitude")),
        longitude=as_float(coordinates.get("longitude")),
    )


async def get_current_viewer_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    cms: CmsClient = Depends(get_cms_client),
) -> Optional[Viewer]:
    """
    Optional authentication - returns None if no valid token provided
    """
    if not credentials:
        return None

    viewer_id = decode_viewer_id(credentials.credentials)
    if viewer_id is None:
        return None

    try:
        profile = await cms.find_by_id(settings.CMS_USERS_COLLECTION, viewer_id, depth=0)
    except SourceFetchError as e:
        logger.warning(f"Viewer profile unavailable, continuing with id only: {e}")
        profile = None

    return viewer_from_profile(viewer_id, profile)
