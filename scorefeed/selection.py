"""
Pure selection logic for schedule and points-table views.

No I/O. Takes the payloads produced by the scraping service (the schedule
is match type -> list of match dicts, the points table a list of team
rows) and derives filtered, sorted and summarized views of them.
Live/upcoming/completed status is a function of the match start time and
the verdict only; it never looks at when the data was fetched.

Filters arrive as strings from a dataset key. The parse_*_filters()
functions check names and values up front and raise ValueError, so a bad
filter is rejected before anything is fetched.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

LIVE_WINDOW = timedelta(hours=4)


class MatchStatus(str, Enum):
    live = "live"
    upcoming = "upcoming"
    completed = "completed"


# key filter name -> keyword argument of the select_* function
SCHEDULE_FILTERS = {
    "matchType": "match_type",
    "team": "team",
    "venue": "venue",
    "fromDate": "from_date",
    "toDate": "to_date",
}
MATCH_FILTERS = {**SCHEDULE_FILTERS, "status": "status", "limit": "limit"}
POINTS_FILTERS = {"sort": "sort", "order": "order"}

# sort name -> points-table column
POINTS_SORT_FIELDS = {
    "position": "position",
    "points": "points",
    "pts": "points",
    "nrr": "netRunRate",
    "wins": "wins",
    "played": "played",
}


def resolve_match_time(match: dict) -> Optional[datetime]:
    """Parse the match start time; naive timestamps are taken as UTC."""
    raw = match.get("dateTime")
    if not raw:
        return None
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def has_verdict(match: dict) -> bool:
    return bool((match.get("verdict") or "").strip())


def classify_match(match: dict, as_of: datetime) -> Optional[MatchStatus]:
    """
    Classify a match.

    - completed: a verdict is present
    - live: started within the last 4 hours, no verdict yet
    - upcoming: starts in the future, no verdict yet

    Returns None for matches that fit none of these (no start time, or
    started more than 4 hours ago without a verdict).
    """
    if has_verdict(match):
        return MatchStatus.completed
    start = resolve_match_time(match)
    if start is None:
        return None
    if start > as_of:
        return MatchStatus.upcoming
    if as_of - start <= LIVE_WINDOW:
        return MatchStatus.live
    return None


# ---------------------------------------------------------------------------
# Filter parsing
# ---------------------------------------------------------------------------


def _check_names(filters: dict[str, str], allowed: dict[str, str]) -> None:
    unknown = sorted(set(filters) - set(allowed))
    if unknown:
        raise ValueError(
            f"Unknown filter(s) {', '.join(unknown)}; "
            f"expected one of {', '.join(sorted(allowed))}"
        )


def _parse_bound(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _parse_date_filters(filters: dict[str, str]) -> None:
    for field in ("fromDate", "toDate"):
        if field in filters:
            try:
                _parse_bound(filters[field])
            except ValueError:
                raise ValueError(f"{field} must be an ISO 8601 timestamp, got {filters[field]!r}")


def parse_schedule_filters(filters: dict[str, str]) -> dict[str, Any]:
    """Validate schedule filters and map them to select_schedule() arguments."""
    _check_names(filters, SCHEDULE_FILTERS)
    _parse_date_filters(filters)
    return {SCHEDULE_FILTERS[name]: value for name, value in filters.items()}


def parse_match_filters(filters: dict[str, str]) -> dict[str, Any]:
    """Validate match filters and map them to select_matches() arguments."""
    _check_names(filters, MATCH_FILTERS)
    _parse_date_filters(filters)
    options: dict[str, Any] = {MATCH_FILTERS[name]: value for name, value in filters.items()}

    status = filters.get("status")
    if status is not None:
        try:
            MatchStatus(status.lower())
        except ValueError:
            raise ValueError(
                f"status must be one of {', '.join(s.value for s in MatchStatus)}, got {status!r}"
            )

    limit = filters.get("limit")
    if limit is not None:
        if not limit.isdigit() or int(limit) < 1:
            raise ValueError(f"limit must be a positive integer, got {limit!r}")
        options["limit"] = int(limit)
    return options


def parse_points_filters(filters: dict[str, str]) -> dict[str, Any]:
    """Validate points-table filters and map them to select_points_table() arguments."""
    _check_names(filters, POINTS_FILTERS)
    sort = filters.get("sort", "position")
    if sort not in POINTS_SORT_FIELDS:
        raise ValueError(
            f"sort must be one of {', '.join(POINTS_SORT_FIELDS)}, got {sort!r}"
        )
    order = filters.get("order", "asc" if sort == "position" else "desc")
    if order not in ("asc", "desc"):
        raise ValueError(f"order must be asc or desc, got {order!r}")
    return {"sort": sort, "order": order}


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


def _contains(haystack: Optional[str], needle: str) -> bool:
    return needle.lower() in (haystack or "").lower()


def _keep(
    match: dict,
    team: Optional[str],
    venue: Optional[str],
    lower: Optional[datetime],
    upper: Optional[datetime],
) -> bool:
    if team and not (_contains(match.get("teamA"), team) or _contains(match.get("teamB"), team)):
        return False
    if venue and not _contains(match.get("venue"), venue):
        return False
    start = resolve_match_time(match)
    if lower is not None and (start is None or start < lower):
        return False
    if upper is not None and (start is None or start > upper):
        return False
    return True


def _teams_and_venues(matches: list[dict]) -> dict[str, Any]:
    teams = {m.get(side) for m in matches for side in ("teamA", "teamB") if m.get(side)}
    venues = {m["venue"] for m in matches if m.get("venue")}
    return {
        "totalTeams": len(teams),
        "totalVenues": len(venues),
        "teams": sorted(teams),
        "venues": sorted(venues),
    }


def select_schedule(
    schedule: dict[str, list[dict]],
    match_type: Optional[str] = None,
    team: Optional[str] = None,
    venue: Optional[str] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
) -> dict[str, Any]:
    """
    Filter the schedule, keeping its grouping by match type.

    Match types left empty by the filters are dropped.

    Returns:
        {"schedule": {...}, "summary": {...}, "filters": {...}}
    """
    lower = _parse_bound(from_date)
    upper = _parse_bound(to_date)

    filtered: dict[str, list[dict]] = {}
    for kind, entries in schedule.items():
        if match_type and not _contains(kind, match_type):
            continue
        kept = [m for m in entries if _keep(m, team, venue, lower, upper)]
        if kept:
            filtered[kind] = kept

    matches = [m for entries in filtered.values() for m in entries]
    completed = sum(1 for m in matches if has_verdict(m))

    return {
        "schedule": filtered,
        "summary": {
            "totalMatches": len(matches),
            "completedMatches": completed,
            "upcomingMatches": len(matches) - completed,
            "matchTypes": list(filtered),
            **_teams_and_venues(matches),
        },
        "filters": {
            "matchType": match_type,
            "team": team,
            "venue": venue,
            "fromDate": from_date,
            "toDate": to_date,
        },
    }


def select_matches(
    schedule: dict[str, list[dict]],
    as_of: datetime,
    status: Optional[str] = None,
    team: Optional[str] = None,
    venue: Optional[str] = None,
    match_type: Optional[str] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    limit: Optional[int] = None,
) -> dict[str, Any]:
    """
    Flatten, filter, sort and summarize matches from a schedule payload.

    Args:
        schedule: Match type -> list of match dicts.
        as_of: Reference timestamp (now).
        status: "live", "upcoming" or "completed".
        team, venue, match_type: Case-insensitive substring filters.
        from_date, to_date: ISO 8601 bounds on the match start time.
        limit: Maximum number of matches to return.

    Returns:
        {"matches": [...], "summary": {...}, "filters": {...}}
    """
    wanted = MatchStatus(status.lower()) if status else None
    lower = _parse_bound(from_date)
    upper = _parse_bound(to_date)

    matches: list[dict] = []
    for kind, entries in schedule.items():
        if match_type and not _contains(kind, match_type):
            continue
        for entry in entries:
            match = {**entry, "matchType": kind}
            if not _keep(match, team, venue, lower, upper):
                continue
            if wanted is not None and classify_match(match, as_of) is not wanted:
                continue
            matches.append(match)

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    matches.sort(
        key=lambda m: resolve_match_time(m) or epoch,
        reverse=wanted is MatchStatus.completed,
    )
    if limit is not None and limit > 0:
        matches = matches[:limit]

    statuses = [classify_match(m, as_of) for m in matches]

    return {
        "matches": matches,
        "summary": {
            "totalMatches": len(matches),
            "completedMatches": statuses.count(MatchStatus.completed),
            "upcomingMatches": sum(1 for m in matches if not has_verdict(m)),
            "liveMatches": statuses.count(MatchStatus.live),
            **_teams_and_venues(matches),
        },
        "filters": {
            "status": status,
            "team": team,
            "venue": venue,
            "matchType": match_type,
            "fromDate": from_date,
            "toDate": to_date,
            "limit": limit,
        },
    }


def select_points_table(
    table: list[dict],
    sort: str = "position",
    order: Optional[str] = None,
) -> dict[str, Any]:
    """
    Sort the points table and compute summary statistics.

    order defaults to "asc" when sorting by position, "desc" otherwise.

    Returns:
        {"pointsTable": [...], "statistics": {...}, "sortedBy": str, "order": str}
    """
    field = POINTS_SORT_FIELDS[sort]
    order = order or ("asc" if sort == "position" else "desc")
    rows = sorted(
        table,
        key=lambda row: row.get(field) or 0,
        reverse=order == "desc",
    )

    total = len(rows)
    average = sum(row.get("points") or 0 for row in rows) / total if total else 0

    return {
        "pointsTable": rows,
        "statistics": {
            "totalTeams": total,
            "averagePointsPerTeam": round(average, 2),
            "topTeam": next((r for r in rows if r.get("position") == 1), None),
            "bottomTeam": next((r for r in rows if r.get("position") == total), None),
        },
        "sortedBy": sort,
        "order": order,
    }
