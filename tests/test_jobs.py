import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import jobs
from errors import ServiceUnavailableError


def test_failed_run_is_logged_not_raised():
    func = MagicMock(side_effect=ServiceUnavailableError("db down"))
    job = jobs.IntervalJob("flaky", 60, func)
    with patch.object(jobs.logger, "error") as log_error:
        job.run_once()
    func.assert_called_once()
    assert "db down" in log_error.call_args.args[0]


def test_unexpected_crash_does_not_stop_the_loop():
    calls = []
    done = threading.Event()

    def tick():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        done.set()

    job = jobs.IntervalJob("crashy", 0.01, tick)
    job.start()
    try:
        assert done.wait(2)
    finally:
        job.stop()
    assert len(calls) >= 2


def test_stop_ends_the_thread():
    job = jobs.IntervalJob("idle", 60, MagicMock())
    job.start()
    job.stop()
    assert not job._thread.is_alive()


def test_cleanup_sweeps_stale_rows(member, storage):
    past = (datetime.utcnow() - timedelta(minutes=1)).isoformat()
    storage.create_qr_code(member.id, "stale", past)
    storage.create_session(user_id=member.id, expires_at=past)
    storage.upsert_pending_verification("late@example.com", "123456", past)
    storage.create_password_reset_token(email=member.email, token_hash="abc", expires_at=past)

    jobs._cleanup()

    assert storage.get_qr_code("stale").status == "expired"
    assert storage.get_pending_verification("late@example.com") is None
    assert storage.get_password_reset_token("abc").status == "expired"
    assert storage.delete_expired_sessions() == 0


def test_background_jobs_are_registered():
    names = [job.name for job in jobs.build_jobs()]
    assert names == ["auto-checkout", "inactivity-reminders", "cleanup"]


def test_cleanup_leaves_overdue_membership_status_alone(make_user, storage, plan):
    user = make_user()
    start = datetime.utcnow() - timedelta(days=40)
    membership = storage.replace_active_membership(
        user.id, plan.id, start.isoformat(), (start + timedelta(days=30)).isoformat()
    )

    jobs._cleanup()

    assert storage.get_membership(membership.id).status == "active"
    assert storage.get_active_membership(user.id) is None
