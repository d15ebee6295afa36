# signserver/services/gateway.py
from __future__ import annotations
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional
import logging

from signserver.core.errors import ResourceError
from signserver.core.models import Job, JobState
from signserver.services.jobs import JobOrchestrator

logger = logging.getLogger("signserver.jobs")

CHUNK_SIZE = 1024 * 1024


@dataclass
class Download:
    job: Job
    # open handle on the signed file; only set for a succeeded job
    stream: Optional[BinaryIO] = None


def iter_file(fh: BinaryIO, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    with fh:
        while True:
            chunk = fh.read(chunk_size)
            if not chunk:
                break
            yield chunk


class JobGateway:
    def __init__(self, orchestrator: JobOrchestrator):
        self.orchestrator = orchestrator
        self.registry = orchestrator.registry
        self.workdirs = orchestrator.workdirs

    def get_status(self, job_id: int) -> Job:
        return self.registry.get(job_id)

    def download(self, job_id: int) -> Download:
        """Consuming read of a job's artifact.

        Pending and failed jobs are returned untouched. A succeeded job is
        removed from the registry and its scope deleted before the caller
        sees the handle, so the same id can't be downloaded twice.
        """
        job = self.registry.claim(job_id)
        if job.state is not JobState.succeeded:
            return Download(job=job)

        self.orchestrator.cancel_cleanup(job_id)
        try:
            fh = job.artifact.open("rb")
        except OSError as e:
            self.workdirs.destroy(job_id)
            raise ResourceError(f"failed to open file: {e}") from e

        logger.info("job_id=%s file=%s serving file", job_id, job.artifact)
        # the open handle keeps the data readable after the directory is gone
        self.workdirs.destroy(job_id)
        return Download(job=job, stream=fh)
