import logging
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import REQUEST_KEY, StubSigner, wait_for
from signserver.main import create_app


def _wait_terminal(client, job_id):
    def done():
        resp = client.get(f"/status/{job_id}")
        return resp.status_code == 200 and not resp.json()["processing"]
    wait_for(done)
    return client.get(f"/status/{job_id}").json()


def test_scenario_a_sign_poll_download(client, stub_signer, settings):
    payload = b"0123456789"
    resp = client.post("/sign", content=payload)
    assert resp.status_code == 200
    job_id = resp.json()["id"]
    assert isinstance(job_id, int)

    job = _wait_terminal(client, job_id)
    assert job == {"id": job_id, "processing": False, "success": True, "error": ""}

    dl = client.get(f"/download/{job_id}")
    assert dl.status_code == 200
    assert dl.content == payload
    assert not (Path(settings.WORK_DIR) / str(job_id)).exists()

    assert client.get(f"/download/{job_id}").status_code == 404
    assert client.get(f"/status/{job_id}").status_code == 404


def test_separate_output_variant_serves_output_file(settings):
    app = create_app(settings, signer=StubSigner(output_bytes=b"SIGNED"))
    with TestClient(app, headers={"X-Request-Key": REQUEST_KEY}) as client:
        job_id = client.post("/sign", content=b"MZ").json()["id"]
        _wait_terminal(client, job_id)
        assert client.get(f"/download/{job_id}").content == b"SIGNED"


def test_pending_status_then_download_202(client, gate):
    gate.clear()
    job_id = client.post("/sign", content=b"MZ").json()["id"]

    status = client.get(f"/status/{job_id}")
    assert status.status_code == 200
    assert status.json()["processing"] is True
    assert status.json()["success"] is False

    dl = client.get(f"/download/{job_id}")
    assert dl.status_code == 202
    assert dl.text == "job is still processing"

    gate.set()
    _wait_terminal(client, job_id)
    assert client.get(f"/download/{job_id}").status_code == 200


def test_scenario_b_signer_failure(client):
    job_id = client.post("/sign", content=b"bad binary").json()["id"]

    job = _wait_terminal(client, job_id)
    assert job["success"] is False
    assert "token error" in job["error"]

    dl = client.get(f"/download/{job_id}")
    assert dl.status_code == 500
    assert dl.text == job["error"]
    # a failed job is not consumed by a download
    assert client.get(f"/status/{job_id}").status_code == 200


@pytest.mark.parametrize("headers", [{}, {"X-Request-Key": "wrong"}])
def test_scenario_c_auth_rejected_before_any_scope(app, settings, stub_signer, headers):
    with TestClient(app) as client:
        resp = client.post("/sign", content=b"MZ", headers=headers)
        assert resp.status_code == 401
        assert list(Path(settings.WORK_DIR).iterdir()) == []
        assert stub_signer.calls == []
        assert client.get("/status/1", headers=headers).status_code == 401
        assert client.get("/download/1", headers=headers).status_code == 401


def test_scenario_d_non_integer_id_is_validation_error(client):
    assert client.get("/status/abc").status_code == 400
    assert client.get("/download/abc").status_code == 400
    assert client.get("/status/12345").status_code == 404
    assert client.get("/download/12345").status_code == 404


def test_application_headers_forwarded(client, stub_signer):
    resp = client.post(
        "/sign",
        content=b"MZ",
        headers={"X-Application-Name": "My Tool", "X-Application-URL": "https://example.com"},
    )
    job_id = resp.json()["id"]
    _wait_terminal(client, job_id)
    meta = stub_signer.calls[0].metadata
    assert meta.app_name == "My Tool"
    assert meta.app_url == "https://example.com"


def test_invalid_application_headers_rejected(client, settings, stub_signer):
    resp = client.post("/sign", content=b"MZ", headers={"X-Application-Name": "--keystore=x"})
    assert resp.status_code == 400
    assert "invalid application metadata" in resp.text
    assert list(Path(settings.WORK_DIR).iterdir()) == []
    assert stub_signer.calls == []


def test_upload_over_limit_is_413(client, settings):
    resp = client.post("/sign", content=b"x" * (1024 * 1024 + 1))
    assert resp.status_code == 413
    assert list(Path(settings.WORK_DIR).iterdir()) == []


def test_health_is_open(app):
    with TestClient(app) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "signer": "stub", "jobs": 0}


def test_shutdown_removes_work_root(app, settings):
    with TestClient(app, headers={"X-Request-Key": REQUEST_KEY}) as client:
        client.post("/sign", content=b"MZ")
        assert Path(settings.WORK_DIR).is_dir()
    assert not Path(settings.WORK_DIR).exists()


def test_request_log_names_job_and_upload_size(client, caplog):
    caplog.set_level(logging.INFO, logger="signserver.request")
    job_id = client.post("/sign", content=b"0123456789").json()["id"]
    _wait_terminal(client, job_id)
    client.get(f"/download/{job_id}")
    client.get("/status/12345")

    lines = [r.getMessage() for r in caplog.records if r.name == "signserver.request"]
    sign_line = next(line for line in lines if " POST /sign " in line)
    assert f"job_id={job_id}" in sign_line
    assert "bytes=10" in sign_line
    assert "status=200" in sign_line
    assert any(f"/download/{job_id}" in line and f"job_id={job_id}" in line for line in lines)
    assert any("status=404" in line and "job_id=12345" in line for line in lines)
