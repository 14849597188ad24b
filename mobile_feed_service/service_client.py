"""
CMS client for the Payload REST API
"""
import httpx
from typing import Optional, List, Dict, Any, Tuple, Set
import logging

from .config import settings
from .exceptions import SourceFetchError

logger = logging.getLogger(__name__)


def flatten_where(where: Any, prefix: str = "where") -> List[Tuple[str, str]]:
    """
    Encode a nested filter into Payload's bracketed query-string syntax

    {"author": {"equals": "u1"}} -> [("where[author][equals]", "u1")]
    Lists are indexed, booleans become "true"/"false".
    """
    if isinstance(where, dict):
        params = []
        for key, value in where.items():
            params.extend(flatten_where(value, f"{prefix}[{key}]"))
        return params
    if isinstance(where, (list, tuple, set)):
        params = []
        for index, value in enumerate(where):
            params.extend(flatten_where(value, f"{prefix}[{index}]"))
        return params
    if isinstance(where, bool):
        return [(prefix, "true" if where else "false")]
    if where is None:
        return [(prefix, "null")]
    return [(prefix, str(where))]


class CmsClient:
    """HTTP client for the CMS document store"""

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or settings.CMS_API_URL).rstrip("/")
        self.timeout = httpx.Timeout(settings.SOURCE_FETCH_TIMEOUT, connect=2.0)
        self.client: Optional[httpx.AsyncClient] = None

    async def start(self):
        """Initialize HTTP client"""
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._default_headers(),
        )
        logger.info(f"CMS client initialized for {self.base_url}")

    async def stop(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("CMS client closed")

    def _default_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if settings.CMS_API_KEY:
            headers["Authorization"] = f"{settings.CMS_USERS_COLLECTION} API-Key {settings.CMS_API_KEY}"
        return headers

    async def _make_request(
        self,
        method: str,
        path: str,
        collection: str,
        params: Optional[List[Tuple[str, str]]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Make HTTP request to the CMS

        Returns None for a 404; every other failure raises SourceFetchError.
        """
        if not self.client:
            raise SourceFetchError(collection, "CMS client not initialized")

        try:
            response = await self.client.request(method, path, params=params)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error {e.response.status_code} for {path}: {e}")
            raise SourceFetchError(collection, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Request failed for {path}: {e}")
            raise SourceFetchError(collection, str(e) or e.__class__.__name__) from e
        except ValueError as e:
            logger.error(f"Invalid JSON from {path}: {e}")
            raise SourceFetchError(collection, "invalid JSON response") from e

    async def find(
        self,
        collection: str,
        where: Optional[Dict[str, Any]] = None,
        sort: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
        depth: int = 1,
    ) -> Dict[str, Any]:
        """
        Find documents in a collection

        Returns:
            Payload page: {"docs": [...], "totalDocs": n, "page": p, ...}
        """
        params = flatten_where(where or {})
        params += [("page", str(page)), ("limit", str(limit)), ("depth", str(depth))]
        if sort:
            params.append(("sort", sort))

        result = await self._make_request("GET", f"/api/{collection}", collection, params)
        if not isinstance(result, dict):
            return {"docs": [], "totalDocs": 0, "page": page}
        if not isinstance(result.get("docs"), list):
            result["docs"] = []
        return result

    async def find_docs(self, collection: str, **kwargs) -> List[Dict[str, Any]]:
        """Documents of a find() page"""
        result = await self.find(collection, **kwargs)
        return [doc for doc in result["docs"] if isinstance(doc, dict)]

    async def find_by_id(
        self,
        collection: str,
        document_id: str,
        depth: int = 1,
    ) -> Optional[Dict[str, Any]]:
        """Get a single document, None when it does not exist"""
        return await self._make_request(
            "GET",
            f"/api/{collection}/{document_id}",
            collection,
            [("depth", str(depth))],
        )

    # Blocked users
    async def _block_relation_ids(self, field: str, value: str, target: str) -> Set[str]:
        docs = await self.find_docs(
            "userBlocks",
            where={field: {"equals": value}},
            limit=1000,
            depth=0,
        )
        ids = set()
        for doc in docs:
            other = doc.get(target)
            if isinstance(other, dict):
                other = other.get("id")
            if other:
                ids.add(str(other))
        return ids

    async def get_blocked_user_ids(self, viewer_id: str) -> Set[str]:
        """Users the viewer has blocked"""
        return await self._block_relation_ids("blocker", viewer_id, "blockedUser")

    async def get_users_who_blocked(self, viewer_id: str) -> Set[str]:
        """Users who have blocked the viewer"""
        return await self._block_relation_ids("blockedUser", viewer_id, "blocker")


# Global CMS client instance
cms_client = CmsClient()


async def get_cms_client() -> CmsClient:
    """Dependency for getting CMS client instance"""
    return cms_client
