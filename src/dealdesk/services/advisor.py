"""Advisory text from an AI text-generation service.

Nothing in here is required for a deal to change state. Every public helper
returns a deterministic fallback when the service is unconfigured,
unreachable, slow, cancelled or answers with something unusable.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

import requests

from dealdesk.config import AdvisorConfig
from dealdesk.domain.models import Deal, Seller
from dealdesk.domain.moment import REFERENCE_TZ
from dealdesk.domain.stages import DealStatus, TaskSource
from dealdesk.services.activity import ClientActivity
from dealdesk.services.tasks import TaskTriage
from dealdesk.services.utils import format_amount

logger = logging.getLogger(__name__)

BASE_URL = "https://generativelanguage.googleapis.com"
BRIEFING_TASK_LIMIT = 10
GOAL_LOOKBACK_DAYS = 90
CANCEL_POLL_SECONDS = 0.05
MAX_SUGGESTED_GOAL = Decimal("1e12")

ALL_CLEAR_BRIEFING = (
    "All clear! No follow-ups are overdue or due today. Use the time to prospect "
    "new clients and review inactive accounts for a fresh approach."
)
GOAL_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "suggestedGoal": {"type": "NUMBER"},
        "rationale": {"type": "STRING"},
    },
    "required": ["suggestedGoal", "rationale"],
}


class ExternalServiceError(RuntimeError):
    pass


class TextGenerator(Protocol):
    def generate_text(self, prompt: str, *, cancel: threading.Event | None = None) -> str: ...

    def generate_json(
        self,
        prompt: str,
        schema: dict[str, Any],
        *,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]: ...


@dataclass(frozen=True)
class GoalSuggestion:
    suggested_goal: Decimal
    rationale: str
    from_fallback: bool = False


class GeminiClient:
    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: float,
        session: requests.Session | None = None,
    ) -> None:
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update(
            {"x-goog-api-key": api_key, "Content-Type": "application/json"}
        )

    def generate_text(self, prompt: str, *, cancel: threading.Event | None = None) -> str:
        return self._generate({"contents": [{"parts": [{"text": prompt}]}]}, cancel)

    def generate_json(
        self,
        prompt: str,
        schema: dict[str, Any],
        *,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": schema,
            },
        }
        text = self._generate(body, cancel)
        try:
            parsed = json.loads(text)
        except ValueError as exc:
            raise ExternalServiceError("Advisor returned malformed JSON.") from exc
        if not isinstance(parsed, dict):
            raise ExternalServiceError("Advisor returned JSON that is not an object.")
        return parsed

    def _generate(self, body: dict[str, Any], cancel: threading.Event | None) -> str:
        _check_cancelled(cancel)
        url = f"{BASE_URL}/v1beta/models/{self.model}:generateContent"
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self.session.post, url, json=body, timeout=self.timeout_seconds)
        try:
            self._wait(future, cancel)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        try:
            response = future.result()
        except requests.Timeout as exc:
            raise ExternalServiceError("Advisor request timed out.") from exc
        except requests.RequestException as exc:
            raise ExternalServiceError(f"Advisor unreachable: {exc}") from exc
        if response.status_code == 429:
            raise ExternalServiceError("Advisor quota exceeded.")
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Advisor error {response.status_code}: {response.text[:200]}"
            )
        try:
            data = response.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceError("Advisor returned an unexpected payload.") from exc
        if not isinstance(text, str) or not text.strip():
            raise ExternalServiceError("Advisor returned an empty answer.")
        return text.strip()

    def _wait(self, future: Future, cancel: threading.Event | None) -> None:
        """Block until the request finishes, the deadline passes or ``cancel`` is set."""
        deadline = time.monotonic() + self.timeout_seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._abandon(future)
                raise ExternalServiceError("Advisor request timed out.")
            done, _ = wait([future], timeout=min(remaining, CANCEL_POLL_SECONDS))
            if done:
                return
            if cancel is not None and cancel.is_set():
                self._abandon(future)
                raise ExternalServiceError("Advisor request cancelled.")

    def _abandon(self, future: Future) -> None:
        # Closing the session drops its pooled connections under the running request.
        future.cancel()
        self.session.close()


def build_client(config: AdvisorConfig) -> GeminiClient | None:
    """Client for the configured provider, or None when advice is off."""
    if not config.enabled:
        return None
    if config.provider != "gemini":
        logger.warning("Unsupported advisor provider %s; using fallbacks.", config.provider)
        return None
    api_key = os.getenv(config.api_key_env)
    if not api_key:
        logger.info("%s is not set; advisor uses fallbacks.", config.api_key_env)
        return None
    return GeminiClient(api_key=api_key, model=config.model, timeout_seconds=config.timeout_seconds)


def daily_briefing(
    client: TextGenerator | None,
    seller_name: str,
    triage: TaskTriage,
    *,
    cancel: threading.Event | None = None,
) -> str:
    due = [
        task
        for task in (*triage.overdue, *triage.today)
        if task.source_kind is TaskSource.FOLLOW_UP
    ][:BRIEFING_TASK_LIMIT]
    if not due:
        return ALL_CLEAR_BRIEFING

    lines = [
        f'- "{task.title}" (value: {format_amount(task.value)}), '
        f"{'overdue' if task.is_overdue else 'due today'}"
        for task in due
    ]
    fallback = (
        f"Good morning, {seller_name}! {len(due)} follow-up(s) need attention today. "
        f"Value at risk: {format_amount(triage.value_at_risk)}.\n" + "\n".join(lines)
    )
    prompt = (
        f"Act as an experienced sales coach for the seller {seller_name}. "
        "Review the pending follow-ups below and write a short summary paragraph, "
        "the top 3 priorities as a list, and one motivating sales tip. Use markdown. "
        "Refer to deals by title only.\n\nFollow-ups:\n" + "\n".join(lines)
    )
    return _text_or_fallback(client, prompt, fallback, cancel)


def reengagement_idea(
    client: TextGenerator | None,
    activity: ClientActivity,
    *,
    cancel: threading.Event | None = None,
) -> str:
    name = activity.client.name
    days = activity.days_since_activity
    idle_for = f"{days} days" if days is not None else "an unknown time"
    fallback = (
        f"Reach out to {name} with a short check-in: ask how things are going, share one "
        "relevant update from your catalogue and offer a quick call this week."
    )
    prompt = (
        "Suggest one concrete idea to re-engage an inactive B2B client.\n"
        f"Client: {name}\nInactive for: {idle_for}\n"
        f"Deals so far: {activity.deal_count}, won value: {format_amount(activity.won_value)}.\n"
        "Answer with a short, friendly message the seller can send."
    )
    return _text_or_fallback(client, prompt, fallback, cancel)


def draft_follow_up_email(
    client: TextGenerator | None,
    deal: Deal,
    client_name: str,
    seller_name: str,
    *,
    cancel: threading.Event | None = None,
) -> str:
    last_notes = deal.follow_ups[-1].notes if deal.follow_ups else ""
    fallback = (
        f"Subject: Following up on {deal.title}\n\n"
        f"Hello {client_name},\n\n"
        f"I wanted to follow up on our proposal \"{deal.title}\". "
        "Do you have any questions, or is there anything I can adjust to help you move forward?\n\n"
        f"Best regards,\n{seller_name}"
    )
    prompt = (
        f"Write a short, professional follow-up email from {seller_name} to {client_name} "
        f"about the proposal \"{deal.title}\" worth {format_amount(deal.value)}. "
        f"The proposal status is '{deal.status.value}'. "
        f"Notes from the last contact: {last_notes or 'none'}. "
        "Include a subject line."
    )
    return _text_or_fallback(client, prompt, fallback, cancel)


def suggest_monthly_goal(
    client: TextGenerator | None,
    seller: Seller,
    deals: Iterable[Deal],
    *,
    now: datetime | None = None,
    tz: tzinfo = REFERENCE_TZ,
    cancel: threading.Event | None = None,
) -> GoalSuggestion:
    current = now or datetime.now(UTC)
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)
    since = current.astimezone(tz).date() - timedelta(days=GOAL_LOOKBACK_DAYS)
    recent = [
        deal
        for deal in deals
        if deal.seller_id == seller.seller_id and deal.date_sent.to_date(tz) >= since
    ]
    won = [deal for deal in recent if deal.status is DealStatus.WON]
    lost = [deal for deal in recent if deal.status is DealStatus.LOST]
    won_value = sum((deal.realized_value for deal in won), Decimal("0"))
    fallback = _fallback_goal(seller, won_value)
    if client is None:
        return fallback

    prompt = (
        "Act as an experienced sales director. Review the last 90 days of the seller "
        f'"{seller.name}" and suggest an ambitious but realistic monthly sales goal '
        "(suggestedGoal) with a short rationale.\n"
        f"- Deals created: {len(recent)}\n- Deals won: {len(won)}\n- Deals lost: {len(lost)}\n"
        f"- Won value: {format_amount(won_value)}\n"
        f"- Current monthly goal: {format_amount(seller.monthly_goal or Decimal('0'))}\n"
        "Your answer MUST be a JSON object."
    )
    try:
        data = client.generate_json(prompt, GOAL_SCHEMA, cancel=cancel)
        goal = Decimal(str(data["suggestedGoal"]))
        rationale = str(data["rationale"]).strip()
        if not goal.is_finite() or goal <= 0 or goal > MAX_SUGGESTED_GOAL or not rationale:
            raise ExternalServiceError("Advisor suggested an unusable goal.")
        goal = goal.quantize(Decimal("1"))
    except (ExternalServiceError, KeyError, ArithmeticError, ValueError) as exc:
        logger.warning("Goal suggestion fell back to default: %s", exc)
        return fallback
    return GoalSuggestion(suggested_goal=goal, rationale=rationale)


def _fallback_goal(seller: Seller, won_value: Decimal) -> GoalSuggestion:
    monthly_average = won_value / 3
    if monthly_average > 0:
        goal = (monthly_average * Decimal("1.1") / 100).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        ) * 100
        rationale = "Average monthly won value of the last 90 days plus 10%."
    elif seller.monthly_goal:
        goal = seller.monthly_goal
        rationale = "No wins in the last 90 days; keeping the current goal."
    else:
        goal = Decimal("0")
        rationale = "No wins in the last 90 days and no current goal to build on."
    return GoalSuggestion(suggested_goal=goal, rationale=rationale, from_fallback=True)


def _text_or_fallback(
    client: TextGenerator | None,
    prompt: str,
    fallback: str,
    cancel: threading.Event | None,
) -> str:
    if client is None:
        return fallback
    try:
        return client.generate_text(prompt, cancel=cancel)
    except ExternalServiceError as exc:
        logger.warning("Advisor fell back to default text: %s", exc)
        return fallback


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise ExternalServiceError("Advisor request cancelled.")
