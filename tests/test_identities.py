from printusage.identities import delete_users, display_name, merge_user_data, rename_user
from printusage.models import PrinterUsage, ReportPeriod, Totals, UserData, sum_totals


def _user(*usages: tuple[str, int]) -> UserData:
    data = UserData()
    for name, mono in usages:
        data.merge_usage(
            PrinterUsage(device_model="HP", device_name=name, ip_address="10.0.0.1", totals=Totals(mono=mono, total=mono))
        )
    return data


def _period(period_id: str, users: dict[str, UserData]) -> ReportPeriod:
    return ReportPeriod(id=period_id, file_name=f"{period_id}.html", period_label=period_id, users=users)


def test_rename_into_existing_identity_sums_counters() -> None:
    period = _period("jan", {"jdoe": _user(("10A", 4)), "John Doe": _user(("10A", 6), ("9B", 1))})
    display_names: dict[str, str] = {"jdoe": "jdoe"}

    result = rename_user([period], "jdoe", "John Doe", display_names)

    assert result == "John Doe"
    assert list(period.users) == ["John Doe"]
    merged = period.users["John Doe"]
    assert merged.totals.mono == 11
    assert [usage.device_name for usage in merged.printer_usage] == ["10A", "9B"]
    assert merged.printer_usage[0].totals.mono == 10
    assert merged.totals == sum_totals([usage.totals for usage in merged.printer_usage])
    assert display_names == {"John Doe": "John Doe"}


def test_rename_moves_identity_when_target_absent() -> None:
    original = _user(("10A", 4))
    periods = [_period("jan", {"jdoe": original}), _period("feb", {"asmith": _user(("9B", 2))})]
    display_names: dict[str, str] = {}

    rename_user(periods, "jdoe", "  Jane Doe ", display_names)

    assert periods[0].users == {"Jane Doe": original}
    assert list(periods[1].users) == ["asmith"]
    assert display_names == {"Jane Doe": "Jane Doe"}


def test_rename_with_blank_name_is_noop() -> None:
    period = _period("jan", {"jdoe": _user(("10A", 4))})
    display_names = {"jdoe": "Johnny"}

    assert rename_user([period], "jdoe", "   ", display_names) is None
    assert list(period.users) == ["jdoe"]
    assert display_names == {"jdoe": "Johnny"}


def test_rename_to_same_name_only_updates_display_names() -> None:
    data = _user(("10A", 4))
    period = _period("jan", {"jdoe": data})
    display_names = {"jdoe": "Johnny"}

    rename_user([period], "jdoe", "jdoe", display_names)

    assert period.users == {"jdoe": data}
    assert display_names == {"jdoe": "jdoe"}


def test_merge_user_data_leaves_inputs_untouched() -> None:
    target = _user(("10A", 1))
    source = _user(("10A", 2))

    merged = merge_user_data(target, source)

    assert merged.totals.mono == 3
    assert target.totals.mono == 1
    assert target.printer_usage[0].totals.mono == 1


def test_delete_users_removes_from_every_period() -> None:
    periods = [
        _period("jan", {"jdoe": _user(("10A", 1)), "asmith": _user(("9B", 2))}),
        _period("feb", {"jdoe": _user(("10A", 3))}),
    ]

    removed = delete_users(periods, ["jdoe", "nobody"])

    assert removed == 2
    assert list(periods[0].users) == ["asmith"]
    assert periods[0].users["asmith"].totals.mono == 2
    assert periods[1].users == {}


def test_display_name_falls_back_to_identity() -> None:
    assert display_name({"jdoe": "John Doe"}, "jdoe") == "John Doe"
    assert display_name({}, "asmith") == "asmith"
