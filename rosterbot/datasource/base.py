"""
Base roster directory interface.
"""

import asyncio
from abc import ABC, abstractmethod

from loguru import logger

from rosterbot.datasource.models import Member, MemberSet


class RosterDirectory(ABC):
    """
    Abstract base class for upstream member directories.

    All directories should:
    - Return members ordered by id so that the last id works as a page cursor
    - Raise DirectoryError (or any exception) on upstream failure
    - Answer fetch_by_filter_direct from local state only, never the network
    """

    @property
    @abstractmethod
    def service_id(self) -> str:
        """Unique identifier for this directory."""
        ...

    @abstractmethod
    async def fetch_page(
        self, partition: str, after: str | None, limit: int
    ) -> list[Member]:
        """Fetch up to limit members whose id sorts after the cursor."""
        ...

    @abstractmethod
    async def fetch_by_filter_direct(
        self, partition: str, filter_name: str | None
    ) -> MemberSet | None:
        """Members matching the filter from the local index, None if not indexed."""
        ...

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the directory is properly configured."""
        ...


async def paginate(
    directory: RosterDirectory,
    partition: str,
    limit: int,
    page_size: int,
    delay: float = 0.0,
    tolerate_errors: bool = False,
) -> MemberSet:
    """
    Walk the roster page by page until limit members, a short page, or an error.

    With tolerate_errors, a failing page ends the walk and the members gathered
    so far are returned; otherwise the error propagates.
    """
    members: MemberSet = {}
    after: str | None = None
    max_pages = -(-limit // page_size)

    for page_no in range(max_pages):
        want = min(page_size, limit - len(members))
        try:
            page = await directory.fetch_page(partition, after, want)
        except Exception as e:
            if not tolerate_errors:
                raise
            logger.warning(f"[Paginate] page {page_no + 1} failed for {partition}: {e}")
            break

        for member in page:
            members[member.id] = member

        logger.debug(
            f"[Paginate] page {page_no + 1}: {len(page)} members "
            f"(total {len(members)}) for {partition}"
        )

        if len(page) < want or len(members) >= limit:
            break
        after = page[-1].id

        if delay and page_no < max_pages - 1:
            await asyncio.sleep(delay)

    return members
