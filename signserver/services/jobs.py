# signserver/services/jobs.py
from __future__ import annotations
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from typing import AsyncIterable, BinaryIO, Optional
import asyncio
import logging
import os

from signserver.core.errors import (
    JobNotFoundError,
    ResourceError,
    SignServerError,
    SigningError,
    UploadTooLargeError,
)
from signserver.core.models import SignMetadata
from signserver.core.registry import JobIdAllocator, JobRegistry
from signserver.services.cleanup import CleanupScheduler
from signserver.services.signers import SignRequest, Signer
from signserver.services.workdirs import WorkDirs

logger = logging.getLogger("signserver.jobs")

# 5 minutes before an unclaimed job and its working directory are dropped
JOB_CLEANUP_DELAY = 5 * 60.0


class JobOrchestrator:
    """Accepts uploads, runs the signer on a bounded pool, expires leftovers."""

    def __init__(
        self,
        registry: JobRegistry,
        workdirs: WorkDirs,
        signer: Signer,
        *,
        cleanup_delay: float = JOB_CLEANUP_DELAY,
        max_workers: int = 4,
        max_upload_bytes: Optional[int] = None,
        ids: Optional[JobIdAllocator] = None,
    ):
        self.registry = registry
        self.workdirs = workdirs
        self.signer = signer
        self.cleanup_delay = cleanup_delay
        self.max_upload_bytes = max_upload_bytes
        self._ids = ids or JobIdAllocator()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="signer")
        self.cleanup = CleanupScheduler(self._expire)

    # ---------- submission ----------
    async def submit(self, chunks: AsyncIterable[bytes], metadata: SignMetadata) -> int:
        """Store the upload in a fresh scope, register the job and queue signing.

        Returns as soon as the job is queued. Nothing is left behind when
        this raises.
        """
        job_id = self._ids.next_id()
        self.workdirs.allocate(job_id)
        input_path = self.workdirs.input_path(job_id)
        logger.info("job_id=%s file=%s saving upload", job_id, input_path)

        try:
            written = await self._write_upload(input_path, chunks)
            self.registry.create(job_id)
        except BaseException:
            self.workdirs.destroy(job_id)
            raise

        request = SignRequest(
            input_path=input_path,
            output_path=self.workdirs.output_path(job_id),
            metadata=metadata,
        )
        try:
            self._pool.submit(self._run, job_id, request)
        except RuntimeError as e:
            self.registry.remove(job_id)
            self.workdirs.destroy(job_id)
            raise ResourceError("server is shutting down") from e

        logger.info("job_id=%s bytes=%d processing job", job_id, written)
        return job_id

    async def _write_upload(self, dest: Path, chunks: AsyncIterable[bytes]) -> int:
        # file I/O runs in worker threads so the event loop keeps serving other requests
        limit = self.max_upload_bytes
        written = 0
        try:
            buf = await asyncio.to_thread(dest.open, "xb")
            try:
                async for chunk in chunks:
                    if not chunk:
                        continue
                    written += len(chunk)
                    if limit is not None and written > limit:
                        raise UploadTooLargeError(f"file too large (> {limit} bytes)")
                    await asyncio.to_thread(buf.write, chunk)
                await asyncio.to_thread(_sync_to_disk, buf)
            finally:
                buf.close()
        except SignServerError:
            raise
        except Exception as e:
            logger.error("file=%s failed to save file: %s", dest, e)
            raise ResourceError(f"failed to save file: {e}") from e
        return written

    # ---------- background ----------
    def _run(self, job_id: int, request: SignRequest) -> None:
        logger.info("job_id=%s signer=%s signing", job_id, getattr(self.signer, "name", "?"))
        try:
            artifact = self.signer.sign(request)
        except SigningError as e:
            logger.error("job_id=%s output=%r job failed", job_id, e.output)
            self._fail(job_id, e.message)
            return
        except Exception as e:
            logger.exception("job_id=%s signer crashed", job_id)
            self._fail(job_id, f"failed to sign file: {e}")
            return

        try:
            self.registry.mark_terminal(job_id, success=True, artifact=artifact.path)
        except JobNotFoundError:
            self.workdirs.destroy(job_id)
            return
        logger.info("job_id=%s output=%r job completed", job_id, artifact.output)
        self.cleanup.schedule(job_id, self.cleanup_delay)

    def _fail(self, job_id: int, error: str) -> None:
        try:
            self.registry.mark_terminal(job_id, success=False, error=error)
        except JobNotFoundError:
            pass
        # nothing worth keeping once the tool failed
        self.workdirs.destroy(job_id)
        self.cleanup.schedule(job_id, self.cleanup_delay)

    # ---------- cleanup ----------
    def cancel_cleanup(self, job_id: int) -> None:
        self.cleanup.cancel(job_id)

    def _expire(self, job_id: int) -> None:
        # only whoever removes the entry owns the scope
        if self.registry.remove(job_id) is not None:
            self.workdirs.destroy(job_id)
            logger.info("job_id=%s expired", job_id)

    def shutdown(self) -> None:
        self.cleanup.shutdown()
        self._pool.shutdown(wait=False, cancel_futures=True)


def _sync_to_disk(buf: BinaryIO) -> None:
    buf.flush()
    os.fsync(buf.fileno())
