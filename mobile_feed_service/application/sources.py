"""
Source fetch composition

Every backing-store fetch goes through fetch_source, which turns a timeout or
a failure into a SourceResult instead of an exception. Callers read records
with SourceResult.unwrap_or_empty().
"""
import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, Optional, TypeVar
import logging

from ..config import settings
from ..domain.models import SourceResult
from ..exceptions import SourceFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def fetch_source(
    name: str,
    fetch: Awaitable[List[Any]],
    timeout: Optional[float] = None,
) -> SourceResult:
    """Await one source fetch under a deadline"""
    timeout = settings.SOURCE_FETCH_TIMEOUT if timeout is None else timeout
    try:
        items = await asyncio.wait_for(fetch, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Source '{name}' timed out after {timeout}s")
        return SourceResult.failure(name, "timeout")
    except SourceFetchError as e:
        logger.warning(f"Source '{name}' failed: {e}")
        return SourceResult.failure(name, e.reason)
    except Exception as e:
        logger.exception(f"Source '{name}' raised unexpectedly: {e}")
        return SourceResult.failure(name, str(e) or e.__class__.__name__)
    return SourceResult.success(name, items or [])


async def skip_source(name: str) -> SourceResult:
    """Placeholder for a source the request does not ask for"""
    return SourceResult.success(name, [])


async def bounded_map(
    func: Callable[[T], Awaitable[R]],
    items: Iterable[T],
    concurrency: Optional[int] = None,
) -> List[R]:
    """
    Run func over items concurrently, at most `concurrency` at a time

    Results keep the input order. Exceptions are returned in place of results.
    """
    semaphore = asyncio.Semaphore(concurrency or settings.ENRICHMENT_CONCURRENCY)

    async def run(item: T):
        async with semaphore:
            return await func(item)

    return await asyncio.gather(*(run(item) for item in items), return_exceptions=True)
