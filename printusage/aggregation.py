from __future__ import annotations

from collections.abc import Collection, Iterable
from dataclasses import dataclass, field
from datetime import date

from .models import DateRange, ReportPeriod, Totals, UserData, sum_totals

EPOCH = date(1970, 1, 1)


@dataclass
class AggregatedReport:
    ordered_periods: list[ReportPeriod]
    overall_range: DateRange | None
    all_users: list[str]
    all_printers: list[str]
    per_user_totals: dict[str, UserData] = field(default_factory=dict)


def _sort_date(period: ReportPeriod) -> date:
    return period.range_start or period.date_created or EPOCH


def order_periods(periods: Iterable[ReportPeriod]) -> list[ReportPeriod]:
    return sorted(periods, key=_sort_date)


def compute_overall_range(periods: Iterable[ReportPeriod]) -> DateRange | None:
    periods = list(periods)
    if not any(p.range_start is not None and p.range_end is not None for p in periods):
        return None
    starts = [p.range_start for p in periods if p.range_start is not None]
    ends = [p.range_end for p in periods if p.range_end is not None]
    return DateRange(start=min(starts), end=max(ends))


def collect_users(periods: Iterable[ReportPeriod]) -> list[str]:
    return sorted({user for period in periods for user in period.users})


def collect_printers(periods: Iterable[ReportPeriod]) -> list[str]:
    return sorted(
        {
            usage.device_name
            for period in periods
            for data in period.users.values()
            for usage in data.printer_usage
        }
    )


def aggregate_users_for_selected(
    periods: Iterable[ReportPeriod],
    selected_printers: Collection[str] | None = None,
) -> dict[str, UserData]:
    """Merge every user's device usage across periods, honouring the printer filter.

    An empty or missing printer selection keeps every device. A user whose
    usage is entirely filtered out in a period contributes nothing for it, so
    a user with no matching devices is absent from the result.
    """
    selection = set(selected_printers or ())
    aggregated: dict[str, UserData] = {}

    for period in periods:
        for user, data in period.users.items():
            relevant = data.printer_usage
            if selection:
                relevant = [usage for usage in relevant if usage.device_name in selection]
            if not relevant:
                continue

            target = aggregated.setdefault(user, UserData())
            for usage in relevant:
                target.merge_usage(usage)

    return aggregated


def aggregate(
    periods: Iterable[ReportPeriod],
    selected_printers: Collection[str] | None = None,
) -> AggregatedReport:
    ordered = order_periods(periods)
    return AggregatedReport(
        ordered_periods=ordered,
        overall_range=compute_overall_range(ordered),
        all_users=collect_users(ordered),
        all_printers=collect_printers(ordered),
        per_user_totals=aggregate_users_for_selected(ordered, selected_printers),
    )


def filter_periods(
    periods: Iterable[ReportPeriod],
    selected_period_ids: Collection[str] | None = None,
) -> list[ReportPeriod]:
    if not selected_period_ids:
        return list(periods)
    selection = set(selected_period_ids)
    return [period for period in periods if period.id in selection]


def filter_users(
    all_users: Iterable[str],
    per_user_totals: dict[str, UserData],
    display_names: dict[str, str] | None = None,
    query: str = "",
) -> list[tuple[str, UserData]]:
    names = display_names or {}
    needle = query.strip().lower()
    rows: list[tuple[str, UserData]] = []
    for user in all_users:
        shown = names.get(user) or user
        if needle and needle not in shown.lower():
            continue
        data = per_user_totals.get(user)
        if data is None:
            continue
        rows.append((user, data))
    return rows


def sum_user_totals(rows: Iterable[tuple[str, UserData]]) -> Totals:
    return sum_totals([data.totals for _user, data in rows])


def find_zero_columns(per_user_totals: dict[str, UserData], column_keys: Iterable[str]) -> set[str]:
    zero: set[str] = set()
    for key in column_keys:
        if not any(data.totals.get(key) > 0 for data in per_user_totals.values()):
            zero.add(key)
    return zero
