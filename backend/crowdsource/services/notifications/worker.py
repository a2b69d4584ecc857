"""
Fanout Worker

Runs resolution fanouts off the request path. submit_proof enqueues a job
and returns; a single daemon thread drains the bounded queue, opening its
own DB session per job. The worker owns one DeliveryPacer shared by every
job, so the inter-message delay paces the worker as a whole rather than each
resolution on its own.
"""
import logging
import queue
import threading
import time
from typing import Callable, Optional, Tuple

from sqlalchemy.orm import Session

from ...config import NOTIFICATION_DELAY_SECONDS, NOTIFICATION_QUEUE_SIZE
from ...models.domain import FanoutReport
from .fanout import DeliveryPacer, NotificationFanout
from .messaging import MessagingClient


logger = logging.getLogger(__name__)

Job = Tuple[int, Optional[str]]


class FanoutWorker:
    """
    Usage:
        worker = FanoutWorker(SessionLocal, WhatsAppGatewayClient())
        worker.start()
        worker.enqueue(42, "https://cdn.example/proof.jpg")
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        messenger: MessagingClient,
        delay_seconds: float = NOTIFICATION_DELAY_SECONDS,
        max_queue: int = NOTIFICATION_QUEUE_SIZE,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.messenger = messenger
        self.pacer = DeliveryPacer(delay_seconds, sleep=sleep, clock=clock)
        self._queue: "queue.Queue[Optional[Job]]" = queue.Queue(maxsize=max_queue)
        self._thread: Optional[threading.Thread] = None

    def enqueue(self, problem_id: int, proof_ref: Optional[str]) -> bool:
        """Queue a fanout job. False (and logged) when the queue is full."""
        try:
            self._queue.put_nowait((problem_id, proof_ref))
        except queue.Full:
            logger.error(f"Notification queue full, dropping fanout for problem {problem_id}")
            return False
        logger.info(f"Queued resolution fanout for problem {problem_id} (depth={self._queue.qsize()})")
        return True

    def qsize(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def process(self, problem_id: int, proof_ref: Optional[str]) -> FanoutReport:
        db = self.session_factory()
        try:
            fanout = NotificationFanout(db, self.messenger, pacer=self.pacer)
            return fanout.notify_resolution(problem_id, proof_ref)
        finally:
            db.close()

    def drain(self) -> int:
        """Process queued jobs on the calling thread. Returns jobs processed."""
        processed = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except queue.Empty:
                return processed
            try:
                if job is not None:
                    self._run_job(job)
                    processed += 1
            finally:
                self._queue.task_done()

    def _run_job(self, job: Job) -> None:
        problem_id, proof_ref = job
        try:
            self.process(problem_id, proof_ref)
        except Exception as e:
            logger.exception(f"Fanout for problem {problem_id} crashed: {e}")

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                self._run_job(job)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(target=self._run, name="fanout-worker", daemon=True)
        self._thread.start()
        logger.info("Fanout worker started")

    def stop(self, timeout: float = 5.0) -> None:
        if not self.running:
            return
        self._queue.put(None)
        self._thread.join(timeout)
        self._thread = None
        logger.info("Fanout worker stopped")
