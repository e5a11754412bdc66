from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence

from adopulse.models import (
    ActivityRecord,
    AuthorIdentity,
    AuthorStat,
    IdentityCheckReport,
    MatchResult,
    MatchType,
    Period,
    RosterIdentity,
    RosterMember,
    UnmatchedAuthor,
)

_TOKEN_SPLIT = re.compile(r"[\s.\-_@]+")
MIN_TOKEN_LEN = 4

# ADO REST caps completed-PR listings at $top=500.
API_PAGE_LIMIT = 500

NO_MATCH = MatchResult(matched_author_key=None, match_type=MatchType.NONE, matched_count=0)


def normalize_identity(value: str | None) -> str:
    return (value or "").strip().lower()


def name_tokens(display_name: str | None) -> frozenset[str]:
    parts = _TOKEN_SPLIT.split((display_name or "").lower())
    return frozenset(p for p in parts if len(p) >= MIN_TOKEN_LEN)


def roster_keys(roster: Iterable[RosterMember]) -> frozenset[str]:
    return frozenset(normalize_identity(m.unique_name) for m in roster)


def build_author_pool(records: Iterable[ActivityRecord]) -> dict[str, AuthorStat]:
    """
    Count records per author, keyed by normalized unique name. The first
    casing and display name seen for a key are the ones kept.
    """
    counts: dict[str, int] = {}
    first_seen: dict[str, tuple[str, str]] = {}
    for r in records:
        key = normalize_identity(r.author_unique_name)
        if not key:
            continue
        counts[key] = counts.get(key, 0) + 1
        first_seen.setdefault(key, (r.author_unique_name, r.author_display_name))
    return {
        key: AuthorStat(unique_name=first_seen[key][0], display_name=first_seen[key][1], count=n)
        for key, n in counts.items()
    }


def match_member(
    member: RosterMember,
    authors: Mapping[str, AuthorStat],
    *,
    fuzzy: bool = True,
) -> MatchResult:
    """
    Resolve one roster member against the observed authors.

    Tiers are tried in order and the first hit wins: exact unique name,
    case-insensitive unique name, then (only when `fuzzy`) a shared display
    name token of 4+ characters. Candidates are walked in key order so the
    fuzzy tier is deterministic.
    """
    ordered = sorted(authors.items())

    for key, author in ordered:
        if author.unique_name == member.unique_name:
            return MatchResult(key, MatchType.EXACT, author.count)

    target = normalize_identity(member.unique_name)
    if target:
        for key, author in ordered:
            if normalize_identity(author.unique_name) == target:
                return MatchResult(key, MatchType.LOWERCASE, author.count)

    if fuzzy:
        tokens = name_tokens(member.display_name)
        if tokens:
            for key, author in ordered:
                if tokens & name_tokens(author.display_name):
                    return MatchResult(key, MatchType.FUZZY, author.count)

    return NO_MATCH


def possible_match(display_name: str, roster: Sequence[RosterMember]) -> RosterMember | None:
    tokens = name_tokens(display_name)
    if not tokens:
        return None
    for member in sorted(roster, key=lambda m: normalize_identity(m.unique_name)):
        if tokens & name_tokens(member.display_name):
            return member
    return None


def unmatched_in_repos(records: Iterable[ActivityRecord], roster: Sequence[RosterMember]) -> tuple[UnmatchedAuthor, ...]:
    """
    Authors of `records` who are not on the roster, most prolific first, each
    with an advisory hint naming the roster member they might be.
    """
    keys = roster_keys(roster)
    pool = build_author_pool(r for r in records if r.author_key not in keys)
    out: list[UnmatchedAuthor] = []
    for key, author in sorted(pool.items(), key=lambda kv: (-kv[1].count, kv[0])):
        hint = possible_match(author.display_name, roster)
        out.append(
            UnmatchedAuthor(
                unique_name=key,
                display_name=author.display_name,
                pr_count=author.count,
                possible_match_name=hint.display_name if hint is not None else None,
            )
        )
    return tuple(out)


def identity_check(
    roster: Sequence[RosterMember],
    records: Sequence[ActivityRecord],
    period: Period,
    *,
    api_limit: int = API_PAGE_LIMIT,
) -> IdentityCheckReport:
    authors = build_author_pool(records)

    resolved = [RosterIdentity(member=m, match=match_member(m, authors)) for m in roster]
    # unmatched first, then by display name
    resolved.sort(key=lambda r: (r.match.match_type is not MatchType.NONE, r.member.display_name.lower()))

    by_key = {normalize_identity(m.unique_name): m.display_name for m in roster}
    author_rows = [AuthorIdentity(author=a, matched_roster_member=by_key.get(key)) for key, a in authors.items()]
    author_rows.sort(key=lambda a: (a.matched_roster_member is None, -a.author.count, normalize_identity(a.author.unique_name)))

    return IdentityCheckReport(
        period=period,
        api_limit_hit=len(records) >= api_limit,
        roster_members=tuple(resolved),
        authors=tuple(author_rows),
    )
