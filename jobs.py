"""
Background interval jobs (auto-checkout, inactivity reminders, cleanup).

Each job runs on its own daemon thread; a failing run is logged and the
loop carries on with the next tick.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, List

from errors import AppError

logger = logging.getLogger("gym_app")

AUTO_CHECKOUT_INTERVAL = 60           # seconds
INACTIVITY_REMINDER_INTERVAL = 24 * 60 * 60
CLEANUP_INTERVAL = 60 * 60


class IntervalJob:
    def __init__(self, name: str, interval: float, func: Callable, run_immediately: bool = False):
        self.name = name
        self.interval = interval
        self.func = func
        self.run_immediately = run_immediately
        self.running = False
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        self.running = True
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=f"job-{self.name}", daemon=True)
        self._thread.start()
        logger.info(f"Started background job '{self.name}' every {self.interval}s")

    def stop(self, timeout: float = 5):
        self.running = False
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def run_once(self):
        try:
            self.func()
        except AppError as e:
            logger.error(f"Job '{self.name}' failed: {e.message}")
        except Exception:
            logger.exception(f"Job '{self.name}' crashed")

    def _loop(self):
        if self.run_immediately:
            self.run_once()
        while self.running:
            if self._stop.wait(self.interval):
                break
            self.run_once()


def _auto_checkout():
    from service_modules.checkin_service import get_checkin_service
    get_checkin_service().auto_checkout()


def _inactivity_reminders():
    from service_modules.messaging_service import get_messaging_service
    get_messaging_service().send_inactivity_reminders()


def _cleanup():
    from service_modules.checkin_service import get_checkin_service
    from service_modules.verification_service import get_verification_service
    from storage import get_storage

    now = datetime.utcnow().isoformat()
    get_checkin_service().cleanup_expired_qr_codes()
    swept = get_verification_service().sweep_expired()
    storage = get_storage()
    sessions = storage.delete_expired_sessions(now)
    tokens = storage.expire_password_reset_tokens(now)
    if swept or sessions or tokens:
        logger.info(f"Cleanup: {swept} pending verification(s), {sessions} session(s), {tokens} reset token(s)")


def build_jobs() -> List[IntervalJob]:
    return [
        IntervalJob("auto-checkout", AUTO_CHECKOUT_INTERVAL, _auto_checkout),
        IntervalJob("inactivity-reminders", INACTIVITY_REMINDER_INTERVAL, _inactivity_reminders),
        IntervalJob("cleanup", CLEANUP_INTERVAL, _cleanup, run_immediately=True),
    ]


_jobs: List[IntervalJob] = []


def start_background_jobs():
    if _jobs:
        return
    _jobs.extend(build_jobs())
    for job in _jobs:
        job.start()


def stop_background_jobs():
    for job in _jobs:
        job.stop()
    _jobs.clear()
