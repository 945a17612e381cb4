from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from tourneyhub.client.api import ApiClient
from tourneyhub.client.cache import QueryCache
from tourneyhub.client.tags import mutation_tags, route_tags

logger = logging.getLogger(__name__)

TOURNAMENTS_KEY = "/api/tournaments"
COUNTS_KEY = "/api/registrations/counts"
MY_REGISTRATIONS_KEY = "/api/registrations/user"
MY_TEAMS_KEY = "/api/teams/my"
NOTIFICATIONS_KEY = "/api/notifications"
UNREAD_KEY = "/api/notifications/count"
ME_KEY = "/api/auth/me"


def _bump_count(tournament_id: int, delta: int):
    def apply(counts: Optional[dict]) -> dict:
        counts = dict(counts or {})
        key = str(tournament_id)
        counts[key] = max(0, int(counts.get(key, 0)) + delta)
        return counts

    return apply


def _set_unread(value):
    def apply(current: Optional[dict]) -> dict:
        count = (current or {}).get("count", 0)
        return {"count": max(0, value(count))}

    return apply


class TourneyClient:
    """High-level API operations that keep a ``QueryCache`` in sync.

    Reads go through the cache. Mutations call the server, then invalidate
    exactly the tags they affect; the refetch runs in the background.
    """

    def __init__(self, api: ApiClient, cache: Optional[QueryCache] = None) -> None:
        self.api = api
        self.cache = cache or QueryCache(self._fetch)

    @classmethod
    def create(
        cls,
        base_url: str = "http://localhost:8000",
        *,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "TourneyClient":
        return cls(ApiClient(base_url, token=token, transport=transport))

    async def _fetch(self, key: str) -> Any:
        return await self.api.get(key, on_401="return_none" if key == ME_KEY else "throw")

    async def aclose(self) -> None:
        await self.cache.settle()
        await self.api.aclose()

    async def __aenter__(self) -> "TourneyClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    def _invalidate(self, mutation: str, **params) -> list[str]:
        return self.cache.invalidate(mutation_tags(mutation, **params))

    # Session ----------------------------------------------------------

    async def login(self, identifier: str, password: str) -> str:
        token = await self.api.login(identifier, password)
        self._invalidate("login")
        return token

    async def logout(self) -> None:
        self.api.token = None
        self.cache.invalidate(mutation_tags("logout"), refetch=False)
        self.cache.clear()

    async def me(self) -> Optional[dict]:
        return await self.cache.get(ME_KEY)

    async def navigate(self, route: str) -> dict[str, bool]:
        """Refresh what ``route`` shows; cached entries for other pages are left alone."""

        tags = route_tags(route)
        if not tags:
            return {}
        stale = self.cache.invalidate(tags, refetch=False)
        return await self.cache.refetch_stale(stale)

    # Reads ------------------------------------------------------------

    async def tournaments(self, status: Optional[str] = None) -> list[dict]:
        key = TOURNAMENTS_KEY if status is None else f"{TOURNAMENTS_KEY}?status={status}"
        return await self.cache.get(key)

    async def tournament(self, tournament_id: int) -> dict:
        return await self.cache.get(f"{TOURNAMENTS_KEY}/{tournament_id}")

    async def registration_counts(self) -> dict[str, int]:
        return await self.cache.get(COUNTS_KEY)

    async def my_registrations(self) -> list[dict]:
        return await self.cache.get(MY_REGISTRATIONS_KEY)

    async def my_teams(self) -> list[dict]:
        return await self.cache.get(MY_TEAMS_KEY)

    async def team(self, team_id: int) -> dict:
        return await self.cache.get(f"/api/teams/{team_id}")

    async def notifications(self) -> list[dict]:
        return await self.cache.get(NOTIFICATIONS_KEY)

    async def unread_count(self) -> int:
        body = await self.cache.get(UNREAD_KEY)
        return int((body or {}).get("count", 0))

    # Mutations --------------------------------------------------------

    async def register(self, tournament_id: int, team_id: int) -> dict:
        pending = self.cache.optimistic(COUNTS_KEY, _bump_count(tournament_id, +1))
        try:
            created = await self.api.post(
                f"{TOURNAMENTS_KEY}/{tournament_id}/register", json={"team_id": team_id}
            )
        except Exception:
            pending.rollback()
            raise
        pending.commit()
        self._invalidate("register", tournament_id=tournament_id)
        return created

    async def cancel_registration(self, registration_id: int, tournament_id: Optional[int] = None) -> None:
        pending = None
        if tournament_id is not None:
            pending = self.cache.optimistic(COUNTS_KEY, _bump_count(tournament_id, -1))
        try:
            await self.api.delete(f"/api/registrations/{registration_id}")
        except Exception:
            if pending is not None:
                pending.rollback()
            raise
        if pending is not None:
            pending.commit()
        self._invalidate("cancel_registration")

    async def create_team(self, name: str, *, game_type: str = "BGMI", description: str = "") -> dict:
        team = await self.api.post(
            "/api/teams", json={"name": name, "game_type": game_type, "description": description}
        )
        self._invalidate("create_team")
        return team

    async def join_team(self, invite_code: str) -> dict:
        result = await self.api.post("/api/teams/join", json={"invite_code": invite_code})
        self._invalidate("join_team")
        return result

    async def add_member(self, team_id: int, member: dict) -> dict:
        added = await self.api.post(f"/api/teams/{team_id}/members", json=member)
        self._invalidate("add_member", team_id=team_id)
        return added

    async def remove_member(self, member_id: int) -> None:
        await self.api.delete(f"/api/teams/members/{member_id}")
        self._invalidate("remove_member")

    async def delete_team(self, team_id: int) -> None:
        await self.api.delete(f"/api/teams/{team_id}")
        self._invalidate("delete_team")

    async def mark_read(self, notification_id: int) -> None:
        pending = self.cache.optimistic(UNREAD_KEY, _set_unread(lambda n: n - 1))
        try:
            await self.api.patch(f"{NOTIFICATIONS_KEY}/{notification_id}/read")
        except Exception:
            pending.rollback()
            raise
        pending.commit()
        self._invalidate("mark_read")

    async def mark_all_read(self) -> None:
        pending = self.cache.optimistic(UNREAD_KEY, _set_unread(lambda n: 0))
        try:
            await self.api.post(f"{NOTIFICATIONS_KEY}/mark-all-read")
        except Exception:
            pending.rollback()
            raise
        pending.commit()
        self._invalidate("mark_all_read")
