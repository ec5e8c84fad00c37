"""Notification events emitted by the approval workflow.

The workflow only decides *that* something should be announced and builds
the payload. Delivery belongs to whatever dispatcher is plugged in; a
failing dispatcher never fails the mutation that triggered it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Protocol

from loguru import logger
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

EventName = Literal["REQUEST_CREATED", "APPROVED", "REJECTED"]


class NotificationEvent(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event: EventName
    change_type: Literal["ADD", "EDIT", "DELETE"]
    actor_name: str
    actor_role: str
    request_id: int
    week_number: int | None = None
    target_weeks: list[int] = []
    day_name: str | None = None
    summary: str
    reason: str | None = None
    submitter_id: int | None = None
    timestamp: datetime


class NotificationDispatcher(Protocol):
    def dispatch(self, event: NotificationEvent) -> None: ...


class LoggingDispatcher:
    """Default dispatcher: records each event in the application log."""

    def dispatch(self, event: NotificationEvent) -> None:
        logger.info("Notification event", **event.model_dump(mode="json", by_alias=True))


def summarize(change_data: dict) -> str:
    time = change_data.get("time")
    description = change_data.get("description")
    if isinstance(time, str) and isinstance(description, str):
        return f"{time} - {description}"
    if isinstance(description, str):
        return description
    if isinstance(change_data.get("activityId"), int):
        return f"Activity ID {change_data['activityId']}"
    return "No summary provided"


def notify_best_effort(dispatcher: NotificationDispatcher | None, event: NotificationEvent) -> bool:
    if dispatcher is None:
        return False
    try:
        dispatcher.dispatch(event)
    except Exception:
        logger.exception("Notification dispatch failed", notification=event.event, request_id=event.request_id)
        return False
    return True


_default_dispatcher: NotificationDispatcher = LoggingDispatcher()


def get_dispatcher() -> NotificationDispatcher:
    return _default_dispatcher
