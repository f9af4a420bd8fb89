from datetime import UTC, date, datetime, timedelta, timezone

import pytest

from dealdesk.domain.moment import Precision, ScheduleMoment, moment_from_input, today
from dealdesk.domain.rules import ValidationError


def test_date_moment_sorts_as_midnight() -> None:
    day = ScheduleMoment.on(date(2024, 6, 15))
    assert day.is_date_only
    assert day.to_instant() == datetime(2024, 6, 15, tzinfo=UTC)


def test_naive_instant_is_read_as_utc() -> None:
    moment = ScheduleMoment.at(datetime(2024, 6, 15, 9, 30))
    assert moment.value.tzinfo is UTC
    assert moment.to_date() == date(2024, 6, 15)


def test_instant_date_follows_reference_timezone() -> None:
    moment = ScheduleMoment.at(datetime(2024, 6, 15, 1, 0, tzinfo=UTC))
    sao_paulo = timezone(timedelta(hours=-3))
    assert moment.to_date(sao_paulo) == date(2024, 6, 14)
    assert moment.display(sao_paulo) == "2024-06-14 22:00"


def test_precision_must_match_value() -> None:
    with pytest.raises(ValidationError):
        ScheduleMoment(Precision.DATE, datetime(2024, 6, 15, 9, 0))
    with pytest.raises(ValidationError):
        ScheduleMoment(Precision.INSTANT, date(2024, 6, 15))
    with pytest.raises(ValidationError):
        ScheduleMoment("weekly", date(2024, 6, 15))


def test_storage_keeps_precision() -> None:
    day = ScheduleMoment.on(date(2024, 6, 15))
    instant = ScheduleMoment.at(datetime(2024, 6, 15, 0, 0, 1, tzinfo=UTC))

    assert ScheduleMoment.from_storage(*day.to_storage()) == day
    assert ScheduleMoment.from_storage(*instant.to_storage()) == instant
    assert ScheduleMoment.from_storage(None, None) is None


def test_moment_from_input_rejects_both() -> None:
    with pytest.raises(ValidationError):
        moment_from_input(date(2024, 6, 15), datetime(2024, 6, 15, 9, 0), "due")
    assert moment_from_input(None, None, "due") is None
    assert moment_from_input(date(2024, 6, 15), None, "due").is_date_only


def test_today_uses_timezone() -> None:
    now = datetime(2024, 6, 15, 2, 0, tzinfo=UTC)
    assert today(now) == date(2024, 6, 15)
    assert today(now, timezone(timedelta(hours=-3))) == date(2024, 6, 14)
