import logging
from datetime import timedelta

import schedule

from database import db
from models import IntroductionStatus
from scheduler import generate_daily_digest, run_reaper, schedule_tasks
from utils import utcnow


def test_reaper_expires_lapsed_records(app, engine, employer, candidate):
    introduction = engine.record_profile_view(employer, candidate.candidate.id,
                                              now=utcnow() - timedelta(days=31)).value

    assert run_reaper(app) == (1, 0)

    db.session.expire_all()
    assert introduction.status == IntroductionStatus.EXPIRED


def test_daily_digest_reports_stats(app, engine, employer, candidate):
    engine.record_profile_view(employer, candidate.candidate.id)

    report = generate_daily_digest(app)

    assert report['stats']['byStatus']['profileViewed'] == 1
    assert report['date'] == utcnow().strftime('%Y-%m-%d')


def test_schedule_tasks_registers_jobs(app):
    schedule.clear()
    try:
        schedule_tasks(app)
        assert len(schedule.get_jobs()) == 2
    finally:
        schedule.clear()


def test_reaper_logs_counts_lazily(app, caplog):
    with caplog.at_level(logging.INFO, logger='scheduler'):
        run_reaper(app)

    record = next(r for r in caplog.records if r.name == 'scheduler' and r.msg.startswith('Reaper run'))
    assert record.args == (0, 0)
    assert record.getMessage() == 'Reaper run: 0 introductions expired, 0 interview proposals cancelled'
