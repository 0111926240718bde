"""Tests for the Discord REST roster directory."""

import httpx
import pytest
from conftest import FakeClock

from rosterbot.datasource.discord import DiscordRosterDirectory
from rosterbot.services.errors import DirectoryError
from rosterbot.settings import Settings

API = "https://discord.test/api"

ROLES = [
    {"id": "900", "name": "Raider"},
    {"id": "901", "name": "Officer"},
]

MEMBERS = [
    {"user": {"id": "1", "username": "alpha", "global_name": "Alpha"}, "nick": None, "roles": ["900"]},
    {"user": {"id": "2", "username": "bravo", "global_name": None}, "nick": "Bee", "roles": ["900", "901"]},
    {"user": {"id": "3", "username": "charlie"}, "roles": []},
]


def make_directory(clock: FakeClock | None = None) -> DiscordRosterDirectory:
    settings = Settings.model_validate(
        {"DISCORD_BOT_TOKEN": "token", "DISCORD_API_BASE": API}
    )
    return DiscordRosterDirectory(settings, clock=clock or FakeClock(0.0))


def mock_roles(httpx_mock, roles: list = ROLES, guild: str = "42") -> None:
    httpx_mock.add_response(
        url=f"{API}/guilds/{guild}/roles",
        method="GET",
        match_headers={"Authorization": "Bot token"},
        json=roles,
    )


def mock_members(httpx_mock, query: str, members: list, guild: str = "42") -> None:
    httpx_mock.add_response(
        url=f"{API}/guilds/{guild}/members?{query}",
        method="GET",
        json=members,
    )


class TestFetchPage:
    """Tests for member page fetching."""

    @pytest.mark.asyncio
    async def test_converts_members_and_resolves_roles(self, httpx_mock) -> None:
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=10", MEMBERS)
        directory = make_directory()

        page = await directory.fetch_page("42", None, 10)
        await directory.close()

        assert [m.id for m in page] == ["1", "2", "3"]
        assert page[0].display_name == "Alpha"
        assert page[1].display_name == "Bee"
        assert page[1].roles == ["Raider", "Officer"]
        assert page[2].display_name == "charlie"
        assert page[2].roles == []

    @pytest.mark.asyncio
    async def test_cursor_and_clamped_limit(self, httpx_mock) -> None:
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=1000&after=1", MEMBERS[1:])
        directory = make_directory()

        page = await directory.fetch_page("42", "1", 5000)
        await directory.close()

        assert [m.id for m in page] == ["2", "3"]
        request = httpx_mock.get_requests()[-1]
        assert request.url.params["after"] == "1"
        assert request.url.params["limit"] == "1000"

    @pytest.mark.asyncio
    async def test_roles_loaded_once_per_guild(self, httpx_mock) -> None:
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=1", MEMBERS[:1])
        mock_members(httpx_mock, "limit=1&after=1", MEMBERS[1:2])
        directory = make_directory()

        await directory.fetch_page("42", None, 1)
        await directory.fetch_page("42", "1", 1)
        await directory.close()

        role_calls = [r for r in httpx_mock.get_requests() if r.url.path.endswith("/roles")]
        assert len(role_calls) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_raises_directory_error(self, httpx_mock) -> None:
        httpx_mock.add_response(
            url=f"{API}/guilds/42/roles",
            method="GET",
            status_code=429,
            headers={"Retry-After": "2"},
            json={"message": "You are being rate limited."},
        )
        directory = make_directory()

        with pytest.raises(DirectoryError) as exc_info:
            await directory.fetch_page("42", None, 10)
        await directory.close()

        assert "429" in str(exc_info.value)
        assert exc_info.value.service_id == "discord"

    @pytest.mark.asyncio
    async def test_network_error_raises_directory_error(self, httpx_mock) -> None:
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        directory = make_directory()

        with pytest.raises(DirectoryError):
            await directory.fetch_page("42", None, 10)
        await directory.close()

    @pytest.mark.asyncio
    async def test_lazy_client_is_reused(self) -> None:
        directory = make_directory()

        client = await directory._get_http_client()
        try:
            assert client.headers["Authorization"] == "Bot token"
            assert await directory._get_http_client() is client
        finally:
            await directory.close()


class TestDirectIndex:
    """Tests for answering from the local member index."""

    @pytest.mark.asyncio
    async def test_unindexed_guild_is_absent(self) -> None:
        directory = make_directory()
        assert await directory.fetch_by_filter_direct("42", "Raider") is None

    @pytest.mark.asyncio
    async def test_answers_from_fetched_pages(self, httpx_mock) -> None:
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=10", MEMBERS)
        directory = make_directory()
        await directory.fetch_page("42", None, 10)
        await directory.close()

        raiders = await directory.fetch_by_filter_direct("42", "Raider")
        officers = await directory.fetch_by_filter_direct("42", "Officer")
        everyone = await directory.fetch_by_filter_direct("42", None)

        assert sorted(raiders) == ["1", "2"]
        assert sorted(officers) == ["2"]
        assert len(everyone) == 3
        assert directory.indexed_count("42") == 3

    @pytest.mark.asyncio
    async def test_unknown_role_is_absent(self, httpx_mock) -> None:
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=10", MEMBERS)
        directory = make_directory()
        await directory.fetch_page("42", None, 10)
        await directory.close()

        assert await directory.fetch_by_filter_direct("42", "Ghost") is None

    def test_is_configured(self) -> None:
        assert not DiscordRosterDirectory(Settings.model_validate({})).is_configured()
        assert DiscordRosterDirectory(Settings.model_validate({"DISCORD_BOT_TOKEN": "x"})).is_configured()


class TestIndexFreshness:
    """Tests for keeping roles and the member index in step with the guild."""

    @pytest.mark.asyncio
    async def test_new_role_reloads_role_map(self, httpx_mock) -> None:
        healer = {"user": {"id": "4", "username": "delta"}, "roles": ["900", "902"]}
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=10", [healer])
        mock_roles(httpx_mock, ROLES + [{"id": "902", "name": "Healer"}])
        directory = make_directory()

        page = await directory.fetch_page("42", None, 10)
        await directory.close()

        assert page[0].roles == ["Raider", "Healer"]
        assert sorted(await directory.fetch_by_filter_direct("42", "Healer")) == ["4"]

    @pytest.mark.asyncio
    async def test_renamed_role_picked_up_after_ttl(self, httpx_mock) -> None:
        clock = FakeClock(0.0)
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=10", MEMBERS)
        mock_roles(httpx_mock, [{"id": "900", "name": "Raiders"}, {"id": "901", "name": "Officer"}])
        mock_members(httpx_mock, "limit=10", MEMBERS)
        directory = make_directory(clock)

        await directory.fetch_page("42", None, 10)
        clock.advance(61)
        page = await directory.fetch_page("42", None, 10)
        await directory.close()

        assert page[0].roles == ["Raiders"]
        assert sorted(await directory.fetch_by_filter_direct("42", "Raiders")) == ["1", "2"]
        assert await directory.fetch_by_filter_direct("42", "Raider") is None

    @pytest.mark.asyncio
    async def test_complete_walk_drops_departed_members(self, httpx_mock) -> None:
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=10", MEMBERS)
        mock_members(httpx_mock, "limit=2", MEMBERS[:2])
        mock_members(httpx_mock, "limit=2&after=2", [])
        directory = make_directory()

        await directory.fetch_page("42", None, 10)
        assert directory.indexed_count("42") == 3

        # member 3 left; a two-page walk ends on an empty page
        await directory.fetch_page("42", None, 2)
        await directory.fetch_page("42", "2", 2)
        await directory.close()

        assert sorted(await directory.fetch_by_filter_direct("42", None)) == ["1", "2"]
        assert directory.indexed_count("42") == 2

    @pytest.mark.asyncio
    async def test_capped_walk_keeps_index(self, httpx_mock) -> None:
        mock_roles(httpx_mock)
        mock_members(httpx_mock, "limit=10", MEMBERS)
        mock_members(httpx_mock, "limit=2", MEMBERS[:2])
        directory = make_directory()

        await directory.fetch_page("42", None, 10)
        await directory.fetch_page("42", None, 2)
        await directory.close()

        assert directory.indexed_count("42") == 3
