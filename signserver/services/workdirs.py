# signserver/services/workdirs.py
from __future__ import annotations
from pathlib import Path
import logging
import shutil

from signserver.core.errors import ResourceError

logger = logging.getLogger("signserver.workdirs")

INPUT_NAME = "file"
OUTPUT_NAME = "signed"


class WorkDirs:
    """One private directory per job under a shared root.

    Ownership is not tracked here; the orchestrator decides when a scope dies.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ResourceError(f"failed to create working directory root: {e}") from e

    def path(self, job_id: int) -> Path:
        return self.root / str(job_id)

    def input_path(self, job_id: int) -> Path:
        return self.path(job_id) / INPUT_NAME

    def output_path(self, job_id: int) -> Path:
        return self.path(job_id) / OUTPUT_NAME

    def allocate(self, job_id: int) -> Path:
        scope = self.path(job_id)
        try:
            # exist_ok=False: a leftover directory is never reused
            scope.mkdir(mode=0o700, parents=False, exist_ok=False)
        except FileExistsError as e:
            raise ResourceError(f"working directory already exists: {scope}") from e
        except OSError as e:
            raise ResourceError(f"failed to create working directory: {e}") from e
        logger.info("job_id=%s working_dir=%s allocated", job_id, scope)
        return scope

    def destroy(self, job_id: int) -> None:
        scope = self.path(job_id)
        try:
            shutil.rmtree(scope)
        except FileNotFoundError:
            return
        except OSError:
            logger.exception("job_id=%s failed to clean up working directory", job_id)
            return
        logger.info("job_id=%s working_dir=%s removed", job_id, scope)

    def destroy_root(self) -> None:
        try:
            shutil.rmtree(self.root)
        except FileNotFoundError:
            return
        except OSError:
            logger.exception("failed to clean up working directory root %s", self.root)
