from __future__ import annotations

import re
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from schedule_editor.applier import ActivitySnapshot, AppliedChange, SkippedTarget
from schedule_editor.config import get_bootstrap_token, get_environment, get_log_file, get_log_level, get_week_count
from schedule_editor.db import get_db
from schedule_editor.errors import ScheduleError
from schedule_editor.logging_config import setup_logger
from schedule_editor.matcher import find_matching_weeks
from schedule_editor.models import (
    DAY_NAMES,
    ROLE_ADMIN,
    Activity,
    Day,
    Label,
    PendingChange,
    RejectedChange,
    SessionRecord,
    User,
    Week,
)
from schedule_editor.notifications import NotificationDispatcher, get_dispatcher
from schedule_editor.orchestrator import (
    AlreadyProcessed,
    Applied,
    Approved,
    BulkItemOutcome,
    Rejected,
    approve_all,
    approve_change,
    cancel_change,
    reject_all,
    reject_change,
    reorder_activity,
    submit_change,
)
from schedule_editor.pending import list_pending_for_week
from schedule_editor.rejections import list_rejected_for_user, mark_all_read, mark_read
from schedule_editor.security import hash_password, verify_password
from schedule_editor.seed import seed_weeks

setup_logger(level=get_log_level(), log_file=get_log_file())

app = FastAPI(title="Schedule Editor")

SESSION_COOKIE_NAME = "session_id"
SESSION_MAX_AGE_SECONDS = 14 * 24 * 60 * 60
HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")
ALREADY_PROCESSED_DETAIL = "Pending change was already processed"


@app.middleware("http")
async def disable_cache_for_auth_and_api(request: Request, call_next):
    response = await call_next(request)
    path = request.url.path
    if path.startswith("/api/") or path.startswith("/auth/"):
        response.headers["Cache-Control"] = "no-store, no-cache, max-age=0, must-revalidate"
        response.headers["Pragma"] = "no-cache"
    return response


@app.exception_handler(ScheduleError)
async def schedule_error_handler(request: Request, exc: ScheduleError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuthPayload(BaseModel):
    email: str
    password: str
    name: str = ""


class UserCreatePayload(BaseModel):
    email: str
    name: str = ""
    temporary_password: str
    role: Literal["admin", "support"] = "support"


class UserPatchPayload(BaseModel):
    name: str | None = None
    role: Literal["admin", "support"] | None = None
    temporary_password: str | None = None
    is_active: bool | None = None


class UserOut(BaseModel):
    id: int
    email: str
    name: str
    role: Literal["admin", "support"]
    is_active: bool
    created_at: datetime

    @classmethod
    def from_orm_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at,
        )


class LabelPayload(CamelModel):
    name: str = Field(min_length=1, max_length=120)
    color: str


class LabelPatchPayload(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    color: str | None = None


class LabelOut(CamelModel):
    id: int
    name: str
    color: str


class ActivityOut(CamelModel):
    id: int
    day_id: int
    time: str
    description: str
    period: Literal["MORNING", "AFTERNOON", "EVENING"]
    order_index: int
    labels: list[LabelOut] = Field(default_factory=list)


class DayOut(CamelModel):
    id: int
    week_id: int
    day_name: str
    morning: list[ActivityOut]
    afternoon: list[ActivityOut]
    evening: list[ActivityOut]


class WeekOut(CamelModel):
    id: int
    week_number: int
    days: list[DayOut]


class UserRef(CamelModel):
    id: int
    name: str
    email: str


class PendingChangeOut(CamelModel):
    id: int
    week_id: int
    change_type: Literal["ADD", "EDIT", "DELETE"]
    change_data: dict[str, Any]
    user_id: int
    user: UserRef | None = None
    created_at: datetime


class WeekDetailOut(CamelModel):
    week: WeekOut
    pending_changes: list[PendingChangeOut]


class RejectedChangeOut(CamelModel):
    id: int
    week_id: int
    change_type: Literal["ADD", "EDIT", "DELETE"]
    change_data: dict[str, Any]
    user_id: int
    submitted_at: datetime
    rejected_by: int | None
    rejected_at: datetime
    rejection_reason: str
    is_read: bool


class RejectedListOut(CamelModel):
    items: list[RejectedChangeOut]
    unread_count: int


class SnapshotOut(CamelModel):
    id: int
    day_id: int
    week_number: int
    day_name: str
    time: str
    description: str
    period: str
    order_index: int
    label_ids: list[int]


class AppliedChangeOut(CamelModel):
    action: Literal["created", "updated", "deleted"]
    week_number: int
    activity: SnapshotOut


class SkippedTargetOut(CamelModel):
    week_number: int
    reason: str


class ChangeRequestPayload(CamelModel):
    week_id: int
    change_type: str
    change_data: dict[str, Any]


class ChangeOutcomeOut(CamelModel):
    status: Literal["applied", "pending", "approved"]
    change_type: str
    results: list[AppliedChangeOut] = Field(default_factory=list)
    skipped: list[SkippedTargetOut] = Field(default_factory=list)
    partial: bool = False
    pending_change: PendingChangeOut | None = None


class DuplicateCheckPayload(CamelModel):
    time: str = Field(min_length=1)
    description: str = Field(min_length=1)
    day_name: str = Field(min_length=1)


class DuplicateCheckOut(CamelModel):
    existing_weeks: list[int]


class ReorderPayload(CamelModel):
    new_order_index: int


class RejectPayload(CamelModel):
    reason: str = ""


class BulkApprovePayload(CamelModel):
    change_ids: list[int] | None = None


class BulkRejectPayload(CamelModel):
    reason: str = ""
    change_ids: list[int] | None = None


class BulkItemOut(CamelModel):
    change_id: int
    ok: bool
    status: Literal["approved", "rejected", "already_processed", "failed"]
    error: str | None = None
    results: list[AppliedChangeOut] = Field(default_factory=list)


class BulkOut(CamelModel):
    items: list[BulkItemOut]
    succeeded: int
    failed: int


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def ensure_password_strength(password: str) -> None:
    if len(password) < 10:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Password must be at least 10 characters")


def ensure_valid_email(email: str) -> str:
    normalized = normalize_email(email)
    if "@" not in normalized or normalized.startswith("@") or normalized.endswith("@"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A valid email is required")
    return normalized


def ensure_valid_color(color: str) -> str:
    if not HEX_COLOR.match(color):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Color must be a valid hex code (e.g., #FF5733)")
    return color.upper()


def request_is_https(request: Request) -> bool:
    forwarded_proto = request.headers.get("x-forwarded-proto", "")
    if forwarded_proto:
        first_proto = forwarded_proto.split(",")[0].strip().lower()
        if first_proto:
            return first_proto == "https"
    return request.url.scheme == "https"


def set_session_cookie(response: Response, request: Request, session_id: str) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_id,
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        samesite="lax",
        secure=request_is_https(request),
        path="/",
    )


def clear_session_cookie(response: Response, request: Request) -> None:
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        httponly=True,
        samesite="lax",
        secure=request_is_https(request),
        path="/",
    )


def create_session(db: Session, user_id: int) -> str:
    while True:
        session_id = secrets.token_urlsafe(32)
        existing = db.get(SessionRecord, session_id)
        if existing is None:
            break
    db.add(
        SessionRecord(
            session_id=session_id,
            user_id=user_id,
            expires_at=utcnow() + timedelta(seconds=SESSION_MAX_AGE_SECONDS),
        )
    )
    db.commit()
    return session_id


def delete_session_if_exists(db: Session, session_id: str) -> None:
    session = db.get(SessionRecord, session_id)
    if session is not None:
        db.delete(session)
        db.commit()


def get_session_user(db: Session, session_id: str | None) -> User | None:
    if not session_id:
        return None
    session = db.get(SessionRecord, session_id)
    if session is None:
        return None
    expires_at = session.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at <= utcnow():
        db.delete(session)
        db.commit()
        return None
    user = db.get(User, session.user_id)
    if user is None or not user.is_active:
        db.delete(session)
        db.commit()
        return None
    return user


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    user = get_session_user(db, session_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return user


def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != ROLE_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def ensure_active_admin_remains(db: Session, target_user: User, patch: UserPatchPayload) -> None:
    next_role = patch.role if patch.role is not None else target_user.role
    next_is_active = patch.is_active if patch.is_active is not None else target_user.is_active
    if target_user.role != ROLE_ADMIN or target_user.is_active is False:
        return
    if next_role == ROLE_ADMIN and next_is_active:
        return
    active_admin_count = db.scalar(select(func.count(User.id)).where(User.role == ROLE_ADMIN, User.is_active.is_(True))) or 0
    if active_admin_count <= 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="At least one active admin must remain")


def _time_to_minutes(value: str) -> int | None:
    hh, sep, mm = value.partition(":")
    if not sep or not hh.isdigit() or not mm.isdigit():
        return None
    return int(hh) * 60 + int(mm)


def _activity_sort_key(activity: Activity) -> tuple[int, str, int, int]:
    minutes = _time_to_minutes(activity.time)
    return (minutes if minutes is not None else 24 * 60, activity.time, activity.order_index, activity.id)


def serialize_label(label: Label) -> LabelOut:
    return LabelOut(id=label.id, name=label.name, color=label.color)


def serialize_activity(activity: Activity) -> ActivityOut:
    return ActivityOut(
        id=activity.id,
        day_id=activity.day_id,
        time=activity.time,
        description=activity.description,
        period=activity.period,
        order_index=activity.order_index,
        labels=[serialize_label(label) for label in activity.labels],
    )


def serialize_day(day: Day) -> DayOut:
    buckets: dict[str, list[ActivityOut]] = {"MORNING": [], "AFTERNOON": [], "EVENING": []}
    for activity in sorted(day.activities, key=_activity_sort_key):
        buckets[activity.period].append(serialize_activity(activity))
    return DayOut(
        id=day.id,
        week_id=day.week_id,
        day_name=day.day_name,
        morning=buckets["MORNING"],
        afternoon=buckets["AFTERNOON"],
        evening=buckets["EVENING"],
    )


def serialize_week(week: Week) -> WeekOut:
    days = sorted(week.days, key=lambda d: DAY_NAMES.index(d.day_name))
    return WeekOut(id=week.id, week_number=week.week_number, days=[serialize_day(day) for day in days])


def serialize_pending(change: PendingChange) -> PendingChangeOut:
    user = change.user
    return PendingChangeOut(
        id=change.id,
        week_id=change.week_id,
        change_type=change.change_type,
        change_data=change.change_data,
        user_id=change.user_id,
        user=UserRef(id=user.id, name=user.display_name, email=user.email) if user is not None else None,
        created_at=change.created_at,
    )


def serialize_rejected(record: RejectedChange) -> RejectedChangeOut:
    return RejectedChangeOut(
        id=record.id,
        week_id=record.week_id,
        change_type=record.change_type,
        change_data=record.change_data,
        user_id=record.user_id,
        submitted_at=record.submitted_at,
        rejected_by=record.rejected_by,
        rejected_at=record.rejected_at,
        rejection_reason=record.rejection_reason,
        is_read=record.is_read,
    )


def serialize_snapshot(snapshot: ActivitySnapshot) -> SnapshotOut:
    return SnapshotOut(
        id=snapshot.id,
        day_id=snapshot.day_id,
        week_number=snapshot.week_number,
        day_name=snapshot.day_name,
        time=snapshot.time,
        description=snapshot.description,
        period=snapshot.period,
        order_index=snapshot.order_index,
        label_ids=snapshot.label_ids,
    )


def serialize_results(results: list[AppliedChange]) -> list[AppliedChangeOut]:
    return [
        AppliedChangeOut(action=change.action, week_number=change.week_number, activity=serialize_snapshot(change.activity))
        for change in results
    ]


def serialize_skipped(skipped: list[SkippedTarget]) -> list[SkippedTargetOut]:
    return [SkippedTargetOut(week_number=item.week_number, reason=item.reason) for item in skipped]


def serialize_bulk(outcomes: list[BulkItemOutcome]) -> BulkOut:
    items: list[BulkItemOut] = []
    for item in outcomes:
        if isinstance(item.outcome, Approved):
            items.append(BulkItemOut(change_id=item.change_id, ok=True, status="approved", results=serialize_results(item.outcome.results)))
        elif isinstance(item.outcome, Rejected):
            items.append(BulkItemOut(change_id=item.change_id, ok=True, status="rejected"))
        elif isinstance(item.outcome, AlreadyProcessed):
            items.append(BulkItemOut(change_id=item.change_id, ok=False, status="already_processed", error=ALREADY_PROCESSED_DETAIL))
        else:
            items.append(BulkItemOut(change_id=item.change_id, ok=False, status="failed", error=item.error))
    succeeded = sum(1 for item in items if item.ok)
    return BulkOut(items=items, succeeded=succeeded, failed=len(items) - succeeded)


def load_week(db: Session, week_id: int) -> Week:
    week = db.scalar(
        select(Week)
        .where(Week.id == week_id)
        .options(selectinload(Week.days).selectinload(Day.activities).selectinload(Activity.labels))
    )
    if week is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Week not found")
    return week


@app.get("/auth/bootstrap/status")
def auth_bootstrap_status(db: Session = Depends(get_db)) -> dict[str, bool]:
    if not get_bootstrap_token():
        return {"enabled": False}
    existing_users = db.scalar(select(func.count(User.id))) or 0
    return {"enabled": existing_users == 0}


@app.post("/auth/bootstrap", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def auth_bootstrap(
    payload: AuthPayload,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    bootstrap_token: str | None = Header(default=None, alias="X-Bootstrap-Token"),
) -> UserOut:
    configured_token = get_bootstrap_token()
    if not configured_token:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Bootstrap token is not configured")
    if bootstrap_token != configured_token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid bootstrap token")
    existing_users = db.scalar(select(func.count(User.id))) or 0
    if existing_users > 0:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Bootstrap is only allowed before the first user exists")
    email = ensure_valid_email(payload.email)
    ensure_password_strength(payload.password)
    user = User(
        email=email,
        name=payload.name.strip(),
        password_hash=hash_password(payload.password),
        role=ROLE_ADMIN,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    session_id = create_session(db, user.id)
    set_session_cookie(response, request, session_id)
    return UserOut.from_orm_user(user)


@app.post("/auth/login", response_model=UserOut)
def auth_login(
    payload: AuthPayload,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> UserOut:
    email = ensure_valid_email(payload.email)
    user = db.scalar(select(User).where(User.email == email))
    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is disabled")
    session_id = create_session(db, user.id)
    set_session_cookie(response, request, session_id)
    return UserOut.from_orm_user(user)


@app.post("/auth/logout")
def auth_logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    session_id = request.cookies.get(SESSION_COOKIE_NAME)
    if session_id:
        delete_session_if_exists(db, session_id)
    clear_session_cookie(response, request)
    return {"ok": True}


@app.get("/auth/me", response_model=UserOut)
def auth_me(current_user: User = Depends(get_current_user)) -> UserOut:
    return UserOut.from_orm_user(current_user)


@app.get("/api/admin/users", response_model=list[UserOut])
def admin_list_users(
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> list[UserOut]:
    users = db.scalars(select(User).order_by(User.created_at.asc(), User.id.asc())).all()
    return [UserOut.from_orm_user(user) for user in users]


@app.post("/api/admin/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def admin_create_user(
    payload: UserCreatePayload,
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> UserOut:
    email = ensure_valid_email(payload.email)
    ensure_password_strength(payload.temporary_password)
    existing = db.scalar(select(User).where(User.email == email))
    if existing is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")
    user = User(
        email=email,
        name=payload.name.strip(),
        password_hash=hash_password(payload.temporary_password),
        role=payload.role,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return UserOut.from_orm_user(user)


@app.patch("/api/admin/users/{user_id}", response_model=UserOut)
def admin_patch_user(
    user_id: int,
    payload: UserPatchPayload,
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> UserOut:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if payload.name is None and payload.role is None and payload.temporary_password is None and payload.is_active is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No updates were provided")
    ensure_active_admin_remains(db, user, payload)
    if payload.name is not None:
        user.name = payload.name.strip()
    if payload.role is not None:
        user.role = payload.role
    if payload.is_active is not None:
        user.is_active = payload.is_active
    if payload.temporary_password:
        ensure_password_strength(payload.temporary_password)
        user.password_hash = hash_password(payload.temporary_password)
    db.add(user)
    db.commit()
    db.refresh(user)
    return UserOut.from_orm_user(user)


@app.post("/api/admin/seed")
def admin_seed_weeks(
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> dict[str, int | bool]:
    weeks = seed_weeks(db, get_week_count())
    return {"ok": True, "weeks": len(weeks)}


@app.get("/api/weeks", response_model=list[WeekOut])
def list_weeks(
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[WeekOut]:
    weeks = db.scalars(
        select(Week)
        .order_by(Week.week_number)
        .options(selectinload(Week.days).selectinload(Day.activities).selectinload(Activity.labels))
    ).all()
    return [serialize_week(week) for week in weeks]


@app.get("/api/weeks/{week_id}", response_model=WeekDetailOut)
def get_week(
    week_id: int,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> WeekDetailOut:
    week = load_week(db, week_id)
    pending = list_pending_for_week(db, week_id)
    return WeekDetailOut(week=serialize_week(week), pending_changes=[serialize_pending(change) for change in pending])


@app.get("/api/weeks/{week_id}/pending-changes", response_model=list[PendingChangeOut])
def list_week_pending_changes(
    week_id: int,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[PendingChangeOut]:
    return [serialize_pending(change) for change in list_pending_for_week(db, week_id)]


@app.post("/api/weeks/{week_id}/pending-changes/approve-all", response_model=BulkOut)
def approve_all_week_changes(
    week_id: int,
    payload: BulkApprovePayload | None = None,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BulkOut:
    change_ids = payload.change_ids if payload is not None else None
    outcomes = approve_all(db, week_id, current_user, change_ids, dispatcher)
    return serialize_bulk(outcomes)


@app.post("/api/weeks/{week_id}/pending-changes/reject-all", response_model=BulkOut)
def reject_all_week_changes(
    week_id: int,
    payload: BulkRejectPayload,
    current_user: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> BulkOut:
    outcomes = reject_all(db, week_id, current_user, payload.reason, payload.change_ids, dispatcher)
    return serialize_bulk(outcomes)


@app.post("/api/changes", response_model=ChangeOutcomeOut)
def propose_or_apply_change(
    payload: ChangeRequestPayload,
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ChangeOutcomeOut:
    outcome = submit_change(db, current_user, payload.week_id, payload.change_type, payload.change_data, dispatcher)
    if isinstance(outcome, Applied):
        return ChangeOutcomeOut(
            status="applied",
            change_type=outcome.change_type,
            results=serialize_results(outcome.results),
            skipped=serialize_skipped(outcome.skipped),
            partial=outcome.is_partial,
        )
    response.status_code = status.HTTP_202_ACCEPTED
    return ChangeOutcomeOut(
        status="pending",
        change_type=outcome.pending.change_type,
        pending_change=serialize_pending(outcome.pending),
    )


@app.post("/api/activities/check-duplicates", response_model=DuplicateCheckOut)
def check_duplicates(
    payload: DuplicateCheckPayload,
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> DuplicateCheckOut:
    return DuplicateCheckOut(existing_weeks=find_matching_weeks(db, payload.time, payload.description, payload.day_name))


@app.post("/api/activities/{activity_id}/reorder", response_model=ActivityOut)
def reorder(
    activity_id: int,
    payload: ReorderPayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityOut:
    activity = reorder_activity(db, current_user, activity_id, payload.new_order_index)
    return serialize_activity(activity)


@app.post("/api/pending-changes/{change_id}/approve", response_model=ChangeOutcomeOut)
def approve_pending_change(
    change_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> ChangeOutcomeOut:
    outcome = approve_change(db, change_id, current_user, dispatcher)
    if isinstance(outcome, AlreadyProcessed):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=ALREADY_PROCESSED_DETAIL)
    return ChangeOutcomeOut(
        status="approved",
        change_type=outcome.change_type,
        results=serialize_results(outcome.results),
        skipped=serialize_skipped(outcome.skipped),
        partial=outcome.is_partial,
    )


@app.post("/api/pending-changes/{change_id}/reject", response_model=RejectedChangeOut)
def reject_pending_change(
    change_id: int,
    payload: RejectPayload,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> RejectedChangeOut:
    outcome = reject_change(db, change_id, current_user, payload.reason, dispatcher)
    if isinstance(outcome, AlreadyProcessed):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=ALREADY_PROCESSED_DETAIL)
    return serialize_rejected(outcome.record)


@app.post("/api/pending-changes/{change_id}/cancel")
def cancel_pending_change(
    change_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    outcome = cancel_change(db, change_id, current_user)
    if isinstance(outcome, AlreadyProcessed):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=ALREADY_PROCESSED_DETAIL)
    return {"ok": True}


@app.get("/api/rejected-changes/me", response_model=RejectedListOut)
def my_rejected_changes(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RejectedListOut:
    items, unread = list_rejected_for_user(db, current_user.id)
    return RejectedListOut(items=[serialize_rejected(item) for item in items], unread_count=unread)


@app.post("/api/rejected-changes/mark-all-read")
def mark_all_rejected_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, int]:
    updated = mark_all_read(db, current_user.id)
    db.commit()
    return {"updatedCount": updated}


@app.post("/api/rejected-changes/{rejected_id}/mark-read", response_model=RejectedChangeOut)
def mark_rejected_read(
    rejected_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> RejectedChangeOut:
    record = mark_read(db, rejected_id, current_user.id)
    db.commit()
    return serialize_rejected(record)


@app.get("/api/labels", response_model=list[LabelOut])
def list_labels(
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[LabelOut]:
    labels = db.scalars(select(Label).order_by(Label.created_at.asc(), Label.id.asc())).all()
    return [serialize_label(label) for label in labels]


@app.post("/api/labels", response_model=LabelOut, status_code=status.HTTP_201_CREATED)
def create_label(
    payload: LabelPayload,
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> LabelOut:
    name = payload.name.strip()
    color = ensure_valid_color(payload.color)
    if db.scalar(select(Label).where(Label.name == name)) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A label with this name already exists")
    label = Label(name=name, color=color)
    db.add(label)
    db.commit()
    db.refresh(label)
    return serialize_label(label)


@app.patch("/api/labels/{label_id}", response_model=LabelOut)
def patch_label(
    label_id: int,
    payload: LabelPatchPayload,
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> LabelOut:
    label = db.get(Label, label_id)
    if label is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Label not found")
    if payload.name is None and payload.color is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No updates were provided")
    if payload.name is not None:
        name = payload.name.strip()
        clash = db.scalar(select(Label).where(Label.name == name, Label.id != label_id))
        if clash is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A label with this name already exists")
        label.name = name
    if payload.color is not None:
        label.color = ensure_valid_color(payload.color)
    db.commit()
    db.refresh(label)
    return serialize_label(label)


@app.delete("/api/labels/{label_id}")
def delete_label(
    label_id: int,
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    label = db.get(Label, label_id)
    if label is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Label not found")
    db.delete(label)
    db.commit()
    return {"ok": True}


@app.get("/health")
def health() -> dict[str, bool | str]:
    return {"ok": True, "env": get_environment()}
