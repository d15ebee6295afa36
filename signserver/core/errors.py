# signserver/core/errors.py
from __future__ import annotations
from typing import Optional


class SignServerError(Exception):
    """Base for errors that map onto an HTTP status."""
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SignServerError):
    status_code = 400


class AuthError(SignServerError):
    status_code = 401


class JobNotFoundError(SignServerError):
    status_code = 404

    def __init__(self, job_id: int):
        super().__init__("job not found")
        self.job_id = job_id


class ResourceError(SignServerError):
    status_code = 500


class UploadTooLargeError(ResourceError):
    status_code = 413


class DuplicateJobError(SignServerError):
    status_code = 500

    def __init__(self, job_id: int):
        super().__init__(f"job {job_id} already exists")
        self.job_id = job_id


class SigningError(SignServerError):
    """The external tool could not be started or exited non-zero.

    `output` is the tool's combined stdout/stderr, kept verbatim.
    """
    status_code = 500

    def __init__(self, reason: str, output: str = "", returncode: Optional[int] = None):
        msg = f"failed to sign file: {reason}"
        if output:
            msg = f"{msg}: {output}"
        super().__init__(msg)
        self.output = output
        self.returncode = returncode


class ConfigError(Exception):
    pass
