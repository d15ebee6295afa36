"""Pytest configuration and fixtures."""

import asyncio
import threading
import time
from pathlib import Path
from typing import Callable, Optional

import pytest
from fastapi.testclient import TestClient

from signserver.config import Settings
from signserver.core.errors import SigningError
from signserver.core.models import SignMetadata
from signserver.core.registry import JobRegistry
from signserver.main import create_app
from signserver.services.jobs import JobOrchestrator
from signserver.services.signers import SignedArtifact, SignRequest
from signserver.services.workdirs import WorkDirs

REQUEST_KEY = "test-secret"


class StubSigner:
    """Stands in for the external tool.

    Inputs starting with b"bad" fail with `fail_output`; everything else
    succeeds, either in place or by writing `output_bytes` to the output path.
    """

    name = "stub"

    def __init__(
        self,
        fail_output: str = "token error",
        output_bytes: Optional[bytes] = None,
        delay: float = 0.0,
        gate: Optional[threading.Event] = None,
    ):
        self.fail_output = fail_output
        self.output_bytes = output_bytes
        self.delay = delay
        self.gate = gate
        self.calls: list[SignRequest] = []

    def sign(self, request: SignRequest) -> SignedArtifact:
        self.calls.append(request)
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)
        if request.input_path.read_bytes().startswith(b"bad"):
            raise SigningError("exit status 1", output=self.fail_output, returncode=1)
        if self.output_bytes is not None:
            request.output_path.write_bytes(self.output_bytes)
            return SignedArtifact(path=request.output_path, output="signed")
        return SignedArtifact(path=request.input_path, output="signed")


async def _agen(parts):
    for part in parts:
        yield part


def submit(orchestrator: JobOrchestrator, *parts: bytes, metadata: Optional[SignMetadata] = None) -> int:
    return asyncio.run(orchestrator.submit(_agen(parts), metadata or SignMetadata()))


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


@pytest.fixture
def gate() -> threading.Event:
    ev = threading.Event()
    yield ev
    ev.set()


@pytest.fixture
def workdirs(tmp_path: Path) -> WorkDirs:
    wd = WorkDirs(tmp_path / "work")
    wd.ensure_root()
    return wd


@pytest.fixture
def make_orchestrator(workdirs: WorkDirs):
    created = []

    def _make(signer=None, **kwargs) -> JobOrchestrator:
        kwargs.setdefault("cleanup_delay", 60.0)
        orch = JobOrchestrator(JobRegistry(), workdirs, signer or StubSigner(), **kwargs)
        created.append(orch)
        return orch

    yield _make
    for orch in created:
        orch.shutdown()


@pytest.fixture
def cert_file(tmp_path: Path) -> Path:
    path = tmp_path / "cert.crt"
    path.write_text("-----BEGIN CERTIFICATE-----\n")
    return path


@pytest.fixture
def settings(tmp_path: Path, cert_file: Path) -> Settings:
    return Settings(
        REQUEST_KEY=REQUEST_KEY,
        WORK_DIR=str(tmp_path / "work"),
        CERT_FILE=str(cert_file),
        JOB_CLEANUP_DELAY=60.0,
        MAX_UPLOAD_MB=1,
    )


@pytest.fixture
def stub_signer(gate: threading.Event) -> StubSigner:
    gate.set()
    return StubSigner(gate=gate)


@pytest.fixture
def app(settings: Settings, stub_signer: StubSigner):
    return create_app(settings, signer=stub_signer)


@pytest.fixture
def client(app):
    with TestClient(app, headers={"X-Request-Key": REQUEST_KEY}) as c:
        yield c
