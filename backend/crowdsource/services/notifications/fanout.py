"""
Notification Fanout

Tells every supporter (upvoter) of a resolved problem that it was fixed.
Deliveries are sequential and paced by a DeliveryPacer to respect the
outbound channel's rate limit. The worker shares one pacer across jobs, so
the delay also holds between the last send of one fanout and the first
send of the next. A failed delivery is logged and skipped; it never stops
the remaining deliveries and never touches the resolution.
"""
import logging
import threading
import time
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ...config import BRAND_NAME, NOTIFICATION_DELAY_SECONDS, WEB_APP_URL
from ...models.db_models import ProblemDB, UpvoteDB
from ...models.domain import FanoutReport
from ..errors import ExternalServiceError
from ..validation import is_valid_e164
from .messaging import MessagingClient


logger = logging.getLogger(__name__)


def build_resolution_message(
    title: str,
    location_text: Optional[str] = None,
    problem_id: Optional[int] = None,
    brand_name: str = BRAND_NAME,
    web_app_url: str = WEB_APP_URL,
) -> str:
    lines = [
        "*Problem Resolved!*",
        "",
        f"*{title}*",
        "",
        "Great news! A community volunteer has fixed this problem you upvoted!",
        "",
    ]
    if location_text:
        lines += [f"Location: {location_text}", ""]
    if web_app_url and problem_id is not None:
        lines += [f"See the proof: {web_app_url.rstrip('/')}/problems/{problem_id}", ""]
    lines.append("Thank you for your support in making our community better!")
    if brand_name:
        lines += ["", f"- {brand_name}"]
    return "\n".join(lines)


class DeliveryPacer:
    """
    Keeps at least delay_seconds between consecutive outbound deliveries.

    Usage:
        pacer = DeliveryPacer(1.0)
        pacer.wait()   # returns at once the first time
        send(...)
        pacer.wait()   # sleeps until a second has passed since the last call
    """

    def __init__(
        self,
        delay_seconds: float = NOTIFICATION_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.delay_seconds = delay_seconds
        self.sleep = sleep
        self.clock = clock
        self.last_sent_at: Optional[float] = None
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            if self.last_sent_at is not None and self.delay_seconds > 0:
                remaining = self.delay_seconds - (self.clock() - self.last_sent_at)
                if remaining > 0:
                    self.sleep(remaining)
            self.last_sent_at = self.clock()


class NotificationFanout:

    def __init__(
        self,
        db: Session,
        messenger: MessagingClient,
        delay_seconds: float = NOTIFICATION_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        pacer: Optional[DeliveryPacer] = None,
    ):
        self.db = db
        self.messenger = messenger
        self.pacer = pacer or DeliveryPacer(delay_seconds, sleep=sleep, clock=clock)

    def recipients(self, problem_id: int) -> List[str]:
        """Distinct upvoter identities, in upvote order."""
        rows = (
            self.db.query(UpvoteDB.voter_identity)
            .filter(UpvoteDB.problem_id == problem_id)
            .order_by(UpvoteDB.id)
            .all()
        )
        seen = set()
        ordered = []
        for (identity,) in rows:
            if identity not in seen:
                seen.add(identity)
                ordered.append(identity)
        return ordered

    def notify_resolution(self, problem_id: int, proof_ref: Optional[str]) -> FanoutReport:
        report = FanoutReport(problem_id=problem_id)

        problem = self.db.get(ProblemDB, problem_id)
        if problem is None:
            logger.error(f"Problem {problem_id} not found for resolution notifications")
            return report

        identities = self.recipients(problem_id)
        valid = [identity for identity in identities if is_valid_e164(identity)]
        report.skipped_invalid = len(identities) - len(valid)
        logger.info(
            f"Sending resolution notifications for problem {problem_id}: "
            f"{len(valid)} valid of {len(identities)} upvoters"
        )

        text = build_resolution_message(problem.title, problem.location_text, problem_id=problem.id)
        for recipient in valid:
            self.pacer.wait()

            report.attempted += 1
            try:
                self.messenger.send(recipient, text, proof_ref)
            except ExternalServiceError as e:
                report.failed += 1
                report.failed_recipients.append(recipient)
                logger.error(f"Failed to notify {recipient} about problem {problem_id}: {e}")
                continue
            except Exception as e:
                # Transport bugs must not stop delivery to the rest
                report.failed += 1
                report.failed_recipients.append(recipient)
                logger.exception(f"Unexpected error notifying {recipient} about problem {problem_id}: {e}")
                continue

            report.succeeded += 1
            logger.info(f"Resolution notification sent to {recipient} for problem {problem_id}")

        logger.info(
            f"Resolution notifications complete for problem {problem_id}: "
            f"{report.succeeded} sent, {report.failed} failed, {report.skipped_invalid} skipped"
        )
        return report
