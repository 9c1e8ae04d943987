from __future__ import annotations

import logging
from collections.abc import Iterable

from .models import ReportPeriod, UserData

logger = logging.getLogger(__name__)


def display_name(display_names: dict[str, str], user: str) -> str:
    return display_names.get(user) or user


def merge_user_data(target: UserData, source: UserData) -> UserData:
    """Return a new UserData holding both users' usage, merged per device."""
    merged = target.copy_user()
    for usage in source.printer_usage:
        existing = merged.find_usage(usage.key)
        if existing is None:
            merged.printer_usage.append(usage.copy_usage())
        else:
            existing.totals.add(usage.totals)
    merged.totals.add(source.totals)
    return merged


def rename_user(
    periods: Iterable[ReportPeriod],
    old_user: str,
    new_user: str,
    display_names: dict[str, str],
) -> str | None:
    """Rename a detected user identity in place across every period.

    Returns the new identity, or None when the requested name is blank.
    """
    target = (new_user or "").strip()
    if not target:
        return None

    if target != old_user:
        renamed = 0
        for period in periods:
            existing = period.users.pop(old_user, None)
            if existing is None:
                continue
            if target in period.users:
                period.users[target] = merge_user_data(period.users[target], existing)
            else:
                period.users[target] = existing
            renamed += 1
        logger.info("Renamed user %r to %r in %d period(s)", old_user, target, renamed)

    display_names.pop(old_user, None)
    display_names[target] = target
    return target


def delete_users(periods: Iterable[ReportPeriod], users: Iterable[str]) -> int:
    doomed = set(users)
    removed = 0
    for period in periods:
        for user in doomed:
            if period.users.pop(user, None) is not None:
                removed += 1
    logger.info("Deleted %d user entries across periods for %d identities", removed, len(doomed))
    return removed
