"""Static cache tags for queries, mutations, and pages.

Every cached query key maps to the tags it depends on; every mutation lists
the tags it makes stale; every page lists the tags it reads. Only entries
sharing a tag with a mutation or page are refetched.
"""

from __future__ import annotations

import re
from typing import Iterable

TOURNAMENTS = "tournaments"
REGISTRATION_COUNTS = "registration-counts"
MY_REGISTRATIONS = "my-registrations"
MY_TEAMS = "my-teams"
TEAMS = "teams"
NOTIFICATIONS = "notifications"
UNREAD_COUNT = "unread-count"
ME = "me"
ADMIN_USERS = "admin-users"

ALL_TAGS = frozenset(
    {
        TOURNAMENTS,
        REGISTRATION_COUNTS,
        MY_REGISTRATIONS,
        MY_TEAMS,
        TEAMS,
        NOTIFICATIONS,
        UNREAD_COUNT,
        ME,
        ADMIN_USERS,
    }
)

# (path pattern, tags); ``{name}`` in a tag is filled from the match.
QUERY_TAGS: list[tuple[re.Pattern, tuple[str, ...]]] = [
    (re.compile(r"^/api/tournaments(\?.*)?$"), (TOURNAMENTS,)),
    (re.compile(r"^/api/tournaments/(?P<id>\d+)$"), (TOURNAMENTS, "tournament:{id}")),
    (
        re.compile(r"^/api/tournaments/(?P<id>\d+)/registrations$"),
        (REGISTRATION_COUNTS, "tournament:{id}"),
    ),
    (re.compile(r"^/api/registrations/counts$"), (REGISTRATION_COUNTS,)),
    (re.compile(r"^/api/registrations/user$"), (MY_REGISTRATIONS,)),
    (re.compile(r"^/api/teams/my$"), (MY_TEAMS,)),
    (re.compile(r"^/api/teams/(?P<id>\d+)(/members)?$"), (TEAMS, "team:{id}")),
    (re.compile(r"^/api/notifications$"), (NOTIFICATIONS,)),
    (re.compile(r"^/api/notifications/count$"), (UNREAD_COUNT,)),
    (re.compile(r"^/api/auth/me$"), (ME,)),
    (re.compile(r"^/api/admin/users(/.*)?$"), (ADMIN_USERS,)),
    (re.compile(r"^/api/admin/teams(/.*)?$"), (TEAMS,)),
]

MUTATION_TAGS: dict[str, tuple[str, ...]] = {
    "register": (
        TOURNAMENTS,
        "tournament:{tournament_id}",
        REGISTRATION_COUNTS,
        MY_REGISTRATIONS,
    ),
    "cancel_registration": (TOURNAMENTS, REGISTRATION_COUNTS, MY_REGISTRATIONS),
    "create_team": (MY_TEAMS, TEAMS),
    "join_team": (MY_TEAMS, MY_REGISTRATIONS),
    "add_member": (MY_TEAMS, "team:{team_id}"),
    "remove_member": (MY_TEAMS, TEAMS),
    "set_member_role": (MY_TEAMS, TEAMS),
    "delete_team": (MY_TEAMS, TEAMS, MY_REGISTRATIONS, REGISTRATION_COUNTS, TOURNAMENTS),
    "mark_read": (NOTIFICATIONS, UNREAD_COUNT),
    "mark_all_read": (NOTIFICATIONS, UNREAD_COUNT),
    "update_profile": (ME,),
    "create_tournament": (TOURNAMENTS,),
    "update_tournament": (TOURNAMENTS, "tournament:{tournament_id}", NOTIFICATIONS, UNREAD_COUNT),
    "delete_tournament": (TOURNAMENTS, REGISTRATION_COUNTS, MY_REGISTRATIONS),
    "send_notification": (NOTIFICATIONS, UNREAD_COUNT),
    "update_user": (ADMIN_USERS,),
    "login": tuple(sorted(ALL_TAGS)),
    "logout": tuple(sorted(ALL_TAGS)),
}

ROUTE_TAGS: dict[str, tuple[str, ...]] = {
    "/": (TOURNAMENTS, REGISTRATION_COUNTS, ME),
    "/tournaments": (TOURNAMENTS, REGISTRATION_COUNTS),
    "/tournaments/:id": (TOURNAMENTS, REGISTRATION_COUNTS, MY_REGISTRATIONS, MY_TEAMS),
    "/dashboard": (MY_REGISTRATIONS, MY_TEAMS, REGISTRATION_COUNTS, UNREAD_COUNT),
    "/team": (MY_TEAMS,),
    "/notifications": (NOTIFICATIONS, UNREAD_COUNT),
    "/profile": (ME,),
    "/admin": (TOURNAMENTS, REGISTRATION_COUNTS, ADMIN_USERS, TEAMS),
}


def tags_for_key(key: str) -> frozenset[str]:
    for pattern, tags in QUERY_TAGS:
        match = pattern.match(key)
        if match:
            values = match.groupdict()
            return frozenset(tag.format(**values) if "{" in tag else tag for tag in tags)
    return frozenset()


def _expand(tags: Iterable[str], params: dict) -> frozenset[str]:
    expanded = set()
    for tag in tags:
        if "{" not in tag:
            expanded.add(tag)
            continue
        try:
            expanded.add(tag.format(**params))
        except KeyError:
            # Without the id the broad tag already covers it.
            continue
    return frozenset(expanded)


def mutation_tags(name: str, **params) -> frozenset[str]:
    try:
        tags = MUTATION_TAGS[name]
    except KeyError:
        raise KeyError(f"Unknown mutation {name!r}") from None
    return _expand(tags, params)


def route_tags(route: str) -> frozenset[str]:
    """Tags for a page path; numeric segments match ``:id`` patterns."""

    if route in ROUTE_TAGS:
        return frozenset(ROUTE_TAGS[route])
    generic = re.sub(r"/\d+(?=/|$)", "/:id", route.rstrip("/") or "/")
    return frozenset(ROUTE_TAGS.get(generic, ()))
