"""Tests for health state and the health HTTP server."""

import httpx
import pytest

from backup_drill import health


def get(url):
    return httpx.get(url, trust_env=False)


@pytest.fixture(autouse=True)
def reset():
    health.reset_state("backup")
    yield
    health.reset_state()


class TestRecordCycle:
    def test_success(self):
        health.record_cycle("success", "ok")
        assert health.service_state["cycles_completed"] == 1
        assert health.service_state["last_status"] == "success"
        assert health.service_state["status"] == "idle"

    def test_failure_keeps_error(self):
        health.record_cycle("failure", "Upload failed")
        assert health.service_state["cycles_failed"] == 1
        assert health.service_state["last_error"] == "Upload failed"


class TestHealthServer:
    """Tests against a live server on an ephemeral port."""

    @pytest.fixture
    def base_url(self):
        server = health.start_health_server(0, host="127.0.0.1")
        yield f"http://127.0.0.1:{server.server_port}"
        server.shutdown()
        server.server_close()

    def test_health(self, base_url):
        response = get(f"{base_url}/health")
        assert response.status_code == 200
        assert response.json()["service"] == "backup"

    def test_ready_only_after_start(self, base_url):
        assert get(f"{base_url}/ready").status_code == 503
        health.set_status("ready")
        assert get(f"{base_url}/ready").status_code == 200

    def test_live(self, base_url):
        assert get(f"{base_url}/live").json() == {"alive": True}

    def test_unknown_path(self, base_url):
        assert get(f"{base_url}/nope").status_code == 404
