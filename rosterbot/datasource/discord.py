"""
Discord REST roster directory.

API Documentation: https://discord.com/developers/docs/resources/guild
List Guild Members returns at most 1000 members per call, ordered by user id,
and requires the GUILD_MEMBERS privileged intent.
"""

import time
from typing import Any, Callable

import httpx
from loguru import logger

from rosterbot.datasource.base import RosterDirectory
from rosterbot.datasource.models import Member, MemberSet, filter_by_role
from rosterbot.services.errors import DirectoryError
from rosterbot.settings import Settings, global_settings

MAX_PAGE_LIMIT = 1000
ROLE_MAP_TTL = 60.0  # seconds
MAX_OPEN_WALKS = 16  # per guild


class DiscordRosterDirectory(RosterDirectory):
    """
    Guild member directory over the Discord REST API.

    Every fetched page is folded into a per-guild member index, which is
    what fetch_by_filter_direct answers from. A walk that starts at the
    first page and ends on a short page saw the whole guild, so its members
    replace the index and departed members drop out.

    The role id -> name map is reloaded when it is older than ROLE_MAP_TTL
    (renames) or when a page carries a role id it does not know (new roles).
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._settings = settings or global_settings
        self._http_client = http_client
        self._clock = clock
        self._index: dict[str, MemberSet] = {}
        self._role_names: dict[str, dict[str, str]] = {}
        self._roles_loaded_at: dict[str, float] = {}
        # guild -> next cursor -> members gathered by the walk waiting on it
        self._walks: dict[str, dict[str, MemberSet]] = {}

    @property
    def service_id(self) -> str:
        return "discord"

    def is_configured(self) -> bool:
        return bool(self._settings.discord_bot_token)

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._settings.discord_api_base,
                timeout=httpx.Timeout(self._settings.discord_request_timeout),
                headers={"Authorization": f"Bot {self._settings.discord_bot_token}"},
            )
        return self._http_client

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        client = await self._get_http_client()
        try:
            response = await client.get(path, params=params)
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            raise DirectoryError(f"Timeout calling {path}", self.service_id) from e

        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                retry_after = e.response.headers.get("Retry-After")
                logger.warning(f"Discord rate limited on {path}, retry after {retry_after}s")
            raise DirectoryError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                self.service_id,
            ) from e

        except httpx.RequestError as e:
            raise DirectoryError(str(e), self.service_id) from e

    async def _load_roles(self, guild_id: str, refresh: bool = False) -> dict[str, str]:
        loaded_at = self._roles_loaded_at.get(guild_id)
        if refresh or loaded_at is None or self._clock() - loaded_at > ROLE_MAP_TTL:
            roles = await self._get(f"/guilds/{guild_id}/roles")
            self._role_names[guild_id] = {r["id"]: r["name"] for r in roles}
            self._roles_loaded_at[guild_id] = self._clock()
            logger.debug(f"Loaded {len(roles)} roles for guild {guild_id}")
        return self._role_names[guild_id]

    def _to_member(self, raw: dict[str, Any], role_names: dict[str, str]) -> Member:
        user = raw.get("user", {})
        display_name = raw.get("nick") or user.get("global_name") or user.get("username", "")
        return Member(
            id=user["id"],
            display_name=display_name,
            roles=[role_names[r] for r in raw.get("roles", []) if r in role_names],
        )

    async def fetch_page(
        self, partition: str, after: str | None, limit: int
    ) -> list[Member]:
        role_names = await self._load_roles(partition)
        page_limit = max(1, min(limit, MAX_PAGE_LIMIT))
        params: dict[str, Any] = {"limit": page_limit}
        if after:
            params["after"] = after

        data = await self._get(f"/guilds/{partition}/members", params=params)
        if any(r not in role_names for raw in data for r in raw.get("roles", [])):
            role_names = await self._load_roles(partition, refresh=True)
        members = [self._to_member(raw, role_names) for raw in data]

        index = self._index.setdefault(partition, {})
        for member in members:
            index[member.id] = member
        self._track_walk(partition, after, members, complete=len(data) < page_limit)
        return members

    def _track_walk(
        self, partition: str, after: str | None, members: list[Member], complete: bool
    ) -> None:
        walks = self._walks.setdefault(partition, {})
        gathered = {} if after is None else walks.pop(after, None)
        if gathered is None:
            # Cursor not seen from a first page, or its walk was evicted
            return

        for member in members:
            gathered[member.id] = member
        if complete:
            dropped = len(self._index[partition]) - len(gathered)
            self._index[partition] = dict(gathered)
            if dropped > 0:
                logger.info(f"Dropped {dropped} departed members from guild {partition} index")
        elif members:
            walks[members[-1].id] = gathered
            while len(walks) > MAX_OPEN_WALKS:
                walks.pop(next(iter(walks)))

    async def fetch_by_filter_direct(
        self, partition: str, filter_name: str | None
    ) -> MemberSet | None:
        index = self._index.get(partition)
        if not index:
            return None
        if filter_name is not None and filter_name not in self._role_names.get(
            partition, {}
        ).values():
            return None
        return filter_by_role(index, filter_name)

    def indexed_count(self, partition: str) -> int:
        return len(self._index.get(partition, {}))

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("DiscordRosterDirectory closed")
