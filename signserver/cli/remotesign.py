# signserver/cli/remotesign.py
"""Upload a binary to the signing server, wait for the job, fetch the result.

    ENDPOINT=sign.example.com REQUEST_TOKEN=... remotesign --input app.exe --output app.signed.exe
"""
from __future__ import annotations
from pathlib import Path
from threading import Event, Thread
from typing import BinaryIO, Callable, Optional
import logging
import os
import sys
import time

import requests

logger = logging.getLogger("signserver.remotesign")

SPINNER_FRAMES = ["⣾", "⣽", "⣻", "⢿", "⡿", "⣟", "⣯", "⣷"]


class RemoteSignError(Exception):
    pass


def _base_url(endpoint: str) -> str:
    endpoint = endpoint.strip().rstrip("/")
    return endpoint if "://" in endpoint else f"https://{endpoint}"


class RemoteSignClient:
    def __init__(
        self,
        endpoint: str,
        token: str,
        session: Optional[requests.Session] = None,
        poll_interval: float = 1.0,
        timeout: float = 60.0,
    ):
        self.base_url = _base_url(endpoint)
        self.token = token
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.timeout = timeout

    def _headers(self, **extra: Optional[str]) -> dict:
        headers = {"X-Request-Key": self.token}
        headers.update({k: v for k, v in extra.items() if v})
        return headers

    def _check(self, resp, action: str) -> None:
        if resp.status_code != 200:
            raise RemoteSignError(f"failed to {action}: {resp.status_code} {resp.reason}\n\t{resp.text}")

    def create_job(self, fh: BinaryIO, app_name: Optional[str] = None, app_url: Optional[str] = None) -> int:
        headers = self._headers(**{"X-Application-Name": app_name, "X-Application-URL": app_url})
        try:
            resp = self.session.post(f"{self.base_url}/sign", data=fh, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteSignError(f"failed to send request: {e}") from e
        self._check(resp, "create job")
        try:
            return int(resp.json()["id"])
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteSignError(f"failed to decode response: {e}") from e

    def get_status(self, job_id: int) -> dict:
        try:
            resp = self.session.get(f"{self.base_url}/status/{job_id}", headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise RemoteSignError(f"failed to send request: {e}") from e
        self._check(resp, "get job status")
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteSignError(f"failed to decode response: {e}") from e

    def wait(self, job_id: int, sleep: Optional[Callable[[float], None]] = None) -> dict:
        """Poll until the job leaves processing; raises if it failed."""
        while True:
            job = self.get_status(job_id)
            if not job.get("processing"):
                if not job.get("success"):
                    raise RemoteSignError(f"job failed: {job.get('error')}")
                return job
            (sleep or time.sleep)(self.poll_interval)

    def download(self, job_id: int, dest: Path) -> None:
        try:
            resp = self.session.get(
                f"{self.base_url}/download/{job_id}",
                headers=self._headers(),
                timeout=self.timeout,
                stream=True,
            )
        except requests.RequestException as e:
            raise RemoteSignError(f"failed to send request: {e}") from e

        with resp:
            self._check(resp, "download file")
            try:
                with dest.open("wb") as out:
                    for chunk in resp.iter_content(chunk_size=1024 * 1024):
                        out.write(chunk)
            except (OSError, requests.RequestException) as e:
                dest.unlink(missing_ok=True)
                raise RemoteSignError(f"failed to save output file: {e}") from e


class Spinner:
    def __init__(self, stream=sys.stderr):
        self.stream = stream
        self._done = Event()
        self._thread = Thread(target=self._spin, daemon=True)
        self._start = time.monotonic()

    def _elapsed(self) -> int:
        return int(time.monotonic() - self._start)

    def _spin(self) -> None:
        i = 0
        while not self._done.wait(0.1):
            self.stream.write(f"\r{SPINNER_FRAMES[i]} Processing... ({self._elapsed()}s)")
            self.stream.flush()
            i = (i + 1) % len(SPINNER_FRAMES)

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._done.set()
        self._thread.join()
        mark = "✓ Done" if exc_type is None else "✗ Failed"
        self.stream.write(f"\033[2K\r{mark} ({self._elapsed()}s)\n")
        self.stream.flush()
        return False


def main(argv=None, session: Optional[requests.Session] = None) -> int:
    import argparse

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )

    p = argparse.ArgumentParser(prog="remotesign", description="Sign a file on a remote signing server.")
    p.add_argument("--input", "-input", dest="input", required=True, help="input file")
    p.add_argument("--output", "-output", dest="output", required=True, help="output file")
    p.add_argument("--appname", "-appname", dest="appname", default=None, help="application name")
    p.add_argument("--appurl", "-appurl", dest="appurl", default=None, help="application url")
    args = p.parse_args(argv)

    endpoint = os.getenv("ENDPOINT", "")
    token = os.getenv("REQUEST_TOKEN", "")
    if not endpoint:
        logger.error("Endpoint is required (ENDPOINT)")
        return 1
    if not token:
        logger.error("Request token is required (REQUEST_TOKEN)")
        return 1

    client = RemoteSignClient(endpoint, token, session=session)
    try:
        with open(args.input, "rb") as fh:
            job_id = client.create_job(fh, app_name=args.appname, app_url=args.appurl)
        logger.info("job_id=%s job created", job_id)

        if os.getenv("CI"):
            logger.info("Processing...")
            client.wait(job_id)
        else:
            with Spinner():
                client.wait(job_id)

        client.download(job_id, Path(args.output))
    except OSError as e:
        logger.error("file error: %s", e)
        return 1
    except RemoteSignError as e:
        logger.error("%s", e)
        return 1

    logger.info("File signed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
