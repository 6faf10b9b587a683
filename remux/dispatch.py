import logging
from concurrent.futures import ThreadPoolExecutor, wait

from django.db import connections

from .processor import JobOutcome, JobProcessor, Outcome

logger = logging.getLogger(__name__)


def chunked(items: list, size: int) -> list[list]:
    """[1,2,3,4,5], 3 -> [[1,2,3],[4,5]]"""
    if size < 1:
        raise ValueError("group size must be >= 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


class BatchDispatcher:
    """
    Runs discovered jobs group by group. Jobs inside a group run concurrently
    and the group is fully settled before the next one starts, so at most
    `group_size` jobs are in flight for one batch.
    """

    def __init__(self, processor: JobProcessor, group_size: int = 3):
        self.processor = processor
        self.group_size = group_size

    def dispatch(self, jobs: list) -> list[JobOutcome]:
        outcomes = []
        for group in chunked(list(jobs), self.group_size):
            with ThreadPoolExecutor(max_workers=len(group), thread_name_prefix="remux-job") as pool:
                futures = [pool.submit(self._run, job) for job in group]
                wait(futures)
            for job, future in zip(group, futures):
                outcomes.append(self._settle(job, future))
        return outcomes

    def _run(self, job) -> JobOutcome:
        try:
            return self.processor.process(job)
        finally:
            # worker threads open their own DB connections
            connections.close_all()

    def _settle(self, job, future) -> JobOutcome:
        error = future.exception()
        if error is None:
            return future.result()
        logger.error("Job %s escaped its processor: %s", job.pk, error, exc_info=error)
        return JobOutcome(str(job.pk), Outcome.ERROR, (job.remux_attempts or 0) + 1, error=str(error))
