from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, field_validator

MAX_APP_NAME = 256
MAX_APP_URL = 2048


class JobState(str, Enum):
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


@dataclass
class Job:
    id: int
    processing: bool = True
    success: bool = False
    error: str = ""
    # signed file location; set only once the job succeeded
    artifact: Optional[Path] = field(default=None, repr=False)

    @property
    def state(self) -> JobState:
        if self.processing:
            return JobState.pending
        return JobState.succeeded if self.success else JobState.failed

    def to_api(self) -> dict:
        return {
            "id": self.id,
            "processing": self.processing,
            "success": self.success,
            "error": self.error,
        }


class CreateJobResponse(BaseModel):
    id: int


class JobStatus(BaseModel):
    id: int
    processing: bool
    success: bool
    error: str


def _has_control_chars(value: str) -> bool:
    return any(ord(c) < 0x20 or ord(c) == 0x7F for c in value)


class SignMetadata(BaseModel):
    """Client supplied values forwarded to the signing tool."""
    app_name: Optional[str] = None
    app_url: Optional[str] = None

    @field_validator("app_name")
    @classmethod
    def _check_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if len(v) > MAX_APP_NAME:
            raise ValueError(f"application name longer than {MAX_APP_NAME} characters")
        if _has_control_chars(v):
            raise ValueError("application name contains control characters")
        if v.startswith("-"):
            raise ValueError("application name must not start with '-'")
        return v

    @field_validator("app_url")
    @classmethod
    def _check_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            return None
        if len(v) > MAX_APP_URL:
            raise ValueError(f"application url longer than {MAX_APP_URL} characters")
        if _has_control_chars(v) or " " in v:
            raise ValueError("application url contains invalid characters")
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("application url must be an absolute http(s) url")
        return v
