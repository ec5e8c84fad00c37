from __future__ import annotations

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from schedule_editor.config import get_log_file, get_log_level, get_week_count
from schedule_editor.models import DAY_NAMES, Day, Week


def seed_weeks(db: Session, week_count: int | None = None) -> list[Week]:
    """Create weeks 1..N with the seven canonical days. Safe to run repeatedly."""
    count = week_count or get_week_count()
    existing = {week.week_number: week for week in db.scalars(select(Week)).all()}
    weeks: list[Week] = []
    created_days = 0
    for week_number in range(1, count + 1):
        week = existing.get(week_number)
        if week is None:
            week = Week(week_number=week_number)
            db.add(week)
            db.flush()
        present = {day.day_name for day in week.days}
        for day_name in DAY_NAMES:
            if day_name not in present:
                week.days.append(Day(day_name=day_name))
                created_days += 1
        weeks.append(week)
    db.commit()
    logger.info("Schedule weeks seeded", week_count=count, created_days=created_days)
    return weeks


def main() -> None:
    from schedule_editor import db as app_db
    from schedule_editor.logging_config import setup_logger

    setup_logger(level=get_log_level(), log_file=get_log_file())
    app_db.init_db()
    db = app_db.SessionLocal()
    try:
        seed_weeks(db)
    finally:
        db.close()


if __name__ == "__main__":
    main()
