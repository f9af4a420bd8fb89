import json
import threading
import time
from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
import requests

from dealdesk.config import AdvisorConfig
from dealdesk.domain.models import Client, Deal, Seller, UnifiedTask
from dealdesk.domain.moment import ScheduleMoment
from dealdesk.domain.stages import ActivityStatus, DealStatus, SellerRole, TaskSource
from dealdesk.services import advisor
from dealdesk.services.activity import ClientActivity
from dealdesk.services.advisor import ExternalServiceError, GeminiClient
from dealdesk.services.tasks import TaskTriage

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


class FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, response=None, error: Exception | None = None) -> None:
        self.headers: dict[str, str] = {}
        self.response = response
        self.error = error
        self.calls: list[dict] = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response

    def close(self) -> None:
        self.closed = True


class SlowSession(FakeSession):
    """Answers only after ``delay`` seconds or once released."""

    def __init__(self, delay: float) -> None:
        super().__init__(_answer("late"))
        self.delay = delay
        self.release = threading.Event()

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        self.release.wait(self.delay)
        return self.response


def _answer(text: str) -> FakeResponse:
    return FakeResponse(200, {"candidates": [{"content": {"parts": [{"text": text}]}}]})


def _client(session: FakeSession) -> GeminiClient:
    return GeminiClient("key", "gemini-2.5-flash", 5.0, session=session)


def _triage(*tasks: UnifiedTask) -> TaskTriage:
    overdue = [t for t in tasks if t.is_overdue]
    return TaskTriage(overdue=overdue, value_at_risk=Decimal("1000"))


def _task() -> UnifiedTask:
    return UnifiedTask(
        source_id="d1",
        source_kind=TaskSource.FOLLOW_UP,
        moment=ScheduleMoment.on(date(2024, 6, 14)),
        title="Packaging line",
        is_overdue=True,
        is_today=False,
        client_id="c1",
        value=Decimal("1000"),
    )


def test_generate_text_sends_prompt_with_timeout() -> None:
    session = FakeSession(_answer("  Focus on Acme.  "))
    text = _client(session).generate_text("hello")

    assert text == "Focus on Acme."
    call = session.calls[0]
    assert call["url"].endswith("/models/gemini-2.5-flash:generateContent")
    assert call["timeout"] == 5.0
    assert call["json"]["contents"][0]["parts"][0]["text"] == "hello"
    assert session.headers["x-goog-api-key"] == "key"


@pytest.mark.parametrize(
    "session",
    [
        FakeSession(error=requests.Timeout("slow")),
        FakeSession(error=requests.ConnectionError("down")),
        FakeSession(FakeResponse(429, {"error": "quota"})),
        FakeSession(FakeResponse(500, {"error": "boom"})),
        FakeSession(FakeResponse(200, {"candidates": []})),
        FakeSession(FakeResponse(200, None, text="<html>")),
    ],
)
def test_failures_raise_external_service_error(session: FakeSession) -> None:
    with pytest.raises(ExternalServiceError):
        _client(session).generate_text("hello")


def test_cancelled_request_is_not_sent() -> None:
    session = FakeSession(_answer("never"))
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ExternalServiceError):
        _client(session).generate_text("hello", cancel=cancel)
    assert session.calls == []


def test_cancel_during_request_returns_promptly() -> None:
    session = SlowSession(delay=2.0)
    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(ExternalServiceError, match="cancelled"):
            _client(session).generate_text("hello", cancel=cancel)
        assert time.monotonic() - started < 1.0
        assert session.closed
    finally:
        timer.cancel()
        session.release.set()


def test_slow_request_is_bounded_by_overall_timeout() -> None:
    session = SlowSession(delay=2.0)
    client = GeminiClient("key", "gemini-2.5-flash", 0.2, session=session)
    started = time.monotonic()
    try:
        with pytest.raises(ExternalServiceError, match="timed out"):
            client.generate_text("hello")
        assert time.monotonic() - started < 1.0
    finally:
        session.release.set()


def test_briefing_falls_back_when_cancelled_mid_request() -> None:
    session = SlowSession(delay=2.0)
    cancel = threading.Event()
    timer = threading.Timer(0.1, cancel.set)
    timer.start()
    try:
        text = advisor.daily_briefing(_client(session), "Ana", _triage(_task()), cancel=cancel)
    finally:
        timer.cancel()
        session.release.set()
    assert "Packaging line" in text


def test_briefing_without_due_tasks_is_canned() -> None:
    session = FakeSession(_answer("unused"))
    assert advisor.daily_briefing(_client(session), "Ana", TaskTriage()) == advisor.ALL_CLEAR_BRIEFING
    assert session.calls == []


def test_briefing_falls_back_when_service_fails() -> None:
    session = FakeSession(error=requests.Timeout("slow"))
    text = advisor.daily_briefing(_client(session), "Ana", _triage(_task()))

    assert "Ana" in text
    assert "Packaging line" in text


def test_briefing_uses_service_answer() -> None:
    session = FakeSession(_answer("Call Acme first."))
    assert advisor.daily_briefing(_client(session), "Ana", _triage(_task())) == "Call Acme first."


def test_reengagement_without_client_uses_fallback() -> None:
    profile = ClientActivity(
        client=Client("c1", "Acme"),
        last_activity=datetime(2024, 1, 1, tzinfo=UTC),
        days_since_activity=166,
        activity_status=ActivityStatus.INACTIVE,
        deal_count=2,
        won_value=Decimal("0"),
    )
    assert "Acme" in advisor.reengagement_idea(None, profile)


def test_email_fallback_mentions_deal() -> None:
    deal = Deal(
        deal_id="d1",
        client_id="c1",
        seller_id="s1",
        title="Packaging line",
        value=Decimal("1000"),
        date_sent=ScheduleMoment.on(date(2024, 6, 1)),
    )
    text = advisor.draft_follow_up_email(None, deal, "Acme", "Ana")
    assert text.startswith("Subject: Following up on Packaging line")
    assert "Ana" in text


def _goal_inputs() -> tuple[Seller, list[Deal]]:
    seller = Seller("s1", "Ana", SellerRole.SALESPERSON, monthly_goal=Decimal("5000"))
    deals = [
        Deal(
            deal_id="d1",
            client_id="c1",
            seller_id="s1",
            title="Won recently",
            value=Decimal("9000"),
            date_sent=ScheduleMoment.on(date(2024, 5, 1)),
            status=DealStatus.WON,
        ),
        Deal(
            deal_id="d2",
            client_id="c1",
            seller_id="s1",
            title="Too old",
            value=Decimal("90000"),
            date_sent=ScheduleMoment.on(date(2023, 1, 1)),
            status=DealStatus.WON,
        ),
    ]
    return seller, deals


def test_goal_fallback_uses_last_90_days() -> None:
    seller, deals = _goal_inputs()
    suggestion = advisor.suggest_monthly_goal(None, seller, deals, now=NOW)

    assert suggestion.from_fallback
    assert suggestion.suggested_goal == Decimal("3300")


def test_goal_from_service() -> None:
    seller, deals = _goal_inputs()
    session = FakeSession(_answer('{"suggestedGoal": 4200, "rationale": "Steady wins."}'))
    suggestion = advisor.suggest_monthly_goal(_client(session), seller, deals, now=NOW)

    assert not suggestion.from_fallback
    assert suggestion.suggested_goal == Decimal("4200")
    assert suggestion.rationale == "Steady wins."
    config = session.calls[0]["json"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"


def test_goal_with_malformed_answer_falls_back() -> None:
    seller, deals = _goal_inputs()
    session = FakeSession(_answer("not json"))
    suggestion = advisor.suggest_monthly_goal(_client(session), seller, deals, now=NOW)
    assert suggestion.from_fallback


def test_build_client_needs_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DEALDESK_TEST_KEY", raising=False)
    config = AdvisorConfig(api_key_env="DEALDESK_TEST_KEY")
    assert advisor.build_client(config) is None

    monkeypatch.setenv("DEALDESK_TEST_KEY", "secret")
    assert isinstance(advisor.build_client(config), GeminiClient)
    assert advisor.build_client(AdvisorConfig(api_key_env="DEALDESK_TEST_KEY", enabled=False)) is None


@pytest.mark.parametrize("goal", ["1e30", "-500", '"lots"'])
def test_goal_with_unusable_number_falls_back(goal: str) -> None:
    seller, deals = _goal_inputs()
    session = FakeSession(_answer(f'{{"suggestedGoal": {goal}, "rationale": "Big."}}'))
    suggestion = advisor.suggest_monthly_goal(_client(session), seller, deals, now=NOW)

    assert suggestion.from_fallback
    assert suggestion.suggested_goal == Decimal("3300")


def test_goal_window_follows_reference_timezone() -> None:
    seller = Seller("s1", "Ana", SellerRole.SALESPERSON, monthly_goal=Decimal("5000"))
    deals = [
        Deal(
            deal_id="d1",
            client_id="c1",
            seller_id="s1",
            title="Edge of window",
            value=Decimal("3000"),
            date_sent=ScheduleMoment.on(date(2024, 3, 16)),
            status=DealStatus.WON,
        )
    ]
    # 02:00 UTC on the 15th is still the 14th at UTC-3.
    now = datetime(2024, 6, 15, 2, 0, tzinfo=UTC)

    local = advisor.suggest_monthly_goal(
        None, seller, deals, now=now, tz=timezone(timedelta(hours=-3))
    )
    utc = advisor.suggest_monthly_goal(None, seller, deals, now=now, tz=UTC)

    assert local.suggested_goal == Decimal("1100")
    assert utc.suggested_goal == Decimal("5000")
