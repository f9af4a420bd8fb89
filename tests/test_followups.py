from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from dealdesk.domain.followups import add_follow_up, created_event, replay
from dealdesk.domain.models import Deal
from dealdesk.domain.moment import Precision, ScheduleMoment
from dealdesk.domain.rules import ValidationError
from dealdesk.domain.stages import DealEventKind, DealStatus, InteractionStatus
from dealdesk.domain.transitions import StatusContext, change_status

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _deal(status: DealStatus = DealStatus.SENT) -> Deal:
    return Deal(
        deal_id="deal-1",
        client_id="client-1",
        seller_id=None,
        title="Packaging line",
        value=Decimal("5000"),
        date_sent=ScheduleMoment.on(date(2024, 6, 1)),
        status=status,
    )


def test_first_follow_up_moves_sent_to_following_up() -> None:
    deal = _deal()
    next_moment = ScheduleMoment.on(date(2024, 6, 20))
    event = add_follow_up(deal, "Called buyer", next_moment=next_moment, now=NOW)

    assert deal.status is DealStatus.FOLLOWING_UP
    assert deal.next_follow_up == next_moment
    assert len(deal.follow_ups) == 1
    assert deal.follow_ups[0].moment == ScheduleMoment.at(NOW)
    assert deal.follow_ups[0].interaction_status is InteractionStatus.WAITING_RESPONSE
    assert event.kind is DealEventKind.FOLLOW_UP_ADDED
    assert event.follow_up == deal.follow_ups[0]


def test_follow_up_without_next_moment_clears_schedule() -> None:
    deal = _deal(DealStatus.FOLLOWING_UP)
    deal.next_follow_up = ScheduleMoment.on(date(2024, 6, 16))
    add_follow_up(deal, "Sent revised quote", now=NOW)
    assert deal.next_follow_up is None


def test_audio_only_follow_up_is_accepted() -> None:
    deal = _deal()
    add_follow_up(deal, "  ", audio_ref="memo-1.webm", now=NOW)
    assert deal.follow_ups[0].notes == ""
    assert deal.follow_ups[0].audio_ref == "memo-1.webm"


def test_empty_follow_up_is_rejected() -> None:
    deal = _deal()
    with pytest.raises(ValidationError):
        add_follow_up(deal, "   ", now=NOW)
    assert deal.follow_ups == []
    assert deal.status is DealStatus.SENT


@pytest.mark.parametrize("status", [DealStatus.ON_HOLD, DealStatus.WON, DealStatus.LOST])
def test_frozen_deals_do_not_accept_follow_ups(status: DealStatus) -> None:
    deal = _deal(status)
    with pytest.raises(ValidationError):
        add_follow_up(
            deal, "Called", next_moment=ScheduleMoment.on(date(2024, 6, 20)), now=NOW
        )
    assert deal.status is status
    assert deal.follow_ups == []
    assert deal.next_follow_up is None


def test_date_precision_follow_up() -> None:
    deal = _deal()
    add_follow_up(deal, "Visited", precision=Precision.DATE, now=NOW)
    assert deal.follow_ups[0].moment == ScheduleMoment.on(date(2024, 6, 15))


def test_replay_rebuilds_status_and_schedule() -> None:
    deal = _deal()
    deal.next_follow_up = ScheduleMoment.on(date(2024, 6, 10))
    events = [created_event(deal, NOW)]
    events.append(
        add_follow_up(
            deal, "Called", next_moment=ScheduleMoment.on(date(2024, 6, 20)), now=NOW
        )
    )
    events.append(change_status(deal, DealStatus.ON_HOLD, now=NOW))
    events.append(change_status(deal, DealStatus.FOLLOWING_UP, now=NOW))
    events.append(
        add_follow_up(
            deal,
            "Back on track",
            next_moment=ScheduleMoment.at(datetime(2024, 7, 1, 9, 0, tzinfo=UTC)),
            now=NOW,
        )
    )
    events.append(
        change_status(deal, DealStatus.WON, StatusContext(closing_value=Decimal("4500")), now=NOW)
    )

    rebuilt = replay(deal, events)

    assert rebuilt is not deal
    assert rebuilt.status is DealStatus.WON
    assert rebuilt.next_follow_up is None
    assert rebuilt.closing_value == Decimal("4500")
    assert rebuilt.follow_ups == deal.follow_ups


def test_replay_stops_at_each_prefix() -> None:
    deal = _deal()
    events = [created_event(deal, NOW)]
    next_moment = ScheduleMoment.on(date(2024, 6, 20))
    events.append(add_follow_up(deal, "Called", next_moment=next_moment, now=NOW))

    rebuilt = replay(deal, events[:1])
    assert rebuilt.status is DealStatus.SENT
    assert rebuilt.next_follow_up is None

    rebuilt = replay(deal, events)
    assert rebuilt.status is DealStatus.FOLLOWING_UP
    assert rebuilt.next_follow_up == next_moment
