# refinement/refinement_worker.py
from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Hashable, Optional

from geometry.oriented_box import OrientedBox
from refinement.volume_refiner import VolumeRefiner
from sensing.point_cloud import PointCloud

logger = logging.getLogger(__name__)


@dataclass
class RefinementJob:
    token: Hashable
    box: OrientedBox
    cloud: PointCloud
    future: Future = field(default_factory=Future)


class RefinementWorker:
    """
    Background thread that runs refinement jobs in submission order.

    Jobs are never cancelled; each completes its Future and the caller decides,
    using the job token, whether the result is still wanted.
    """
    def __init__(self, refiner: Optional[VolumeRefiner] = None, name: str = "refine-worker"):
        self.refiner = refiner or VolumeRefiner()
        self._q: "queue.Queue[Optional[RefinementJob]]" = queue.Queue()
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)
        self._thread.start()

    def submit(self, token: Hashable, box: OrientedBox, cloud: PointCloud) -> Future:
        if self._stop.is_set():
            raise RuntimeError("RefinementWorker is stopped.")
        job = RefinementJob(token=token, box=box, cloud=cloud)
        self._q.put(job)
        logger.debug(f"[Refine] queued job {token}")
        return job.future

    def _loop(self) -> None:
        logger.info("[Refine] worker started")
        while not self._stop.is_set():
            try:
                job = self._q.get(timeout=0.05)
            except queue.Empty:
                continue
            if job is None:
                break
            if not job.future.set_running_or_notify_cancel():
                continue
            try:
                job.future.set_result(self.refiner.refine(job.box, job.cloud))
            except Exception as e:
                logger.exception(f"[Refine] job {job.token} failed")
                job.future.set_exception(e)
        self._cancel_pending()
        logger.info("[Refine] worker stopped")

    def _cancel_pending(self) -> None:
        while True:
            try:
                job = self._q.get_nowait()
            except queue.Empty:
                return
            if job is not None:
                job.future.cancel()

    def stop(self, wait: bool = True, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        self._q.put(None)
        if wait and self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)
