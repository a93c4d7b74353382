"""
Tests for health probes, app-level error handlers and CLI commands.
"""

from portal.models.scheduling import ScheduledJob


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["storage"]["backend"] == "LocalStorageGateway"
        assert body["checks"]["app"]["testing"] is True

    def test_live_degraded_without_storage(self, app, client, monkeypatch):
        monkeypatch.delitem(app.extensions, "storage_gateway")
        res = client.get("/api/v1/health/live")
        assert res.status_code == 503
        assert res.get_json()["status"] == "degraded"


class TestAppErrors:
    def test_unknown_route(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nothing-here"

    def test_method_not_allowed(self, client):
        assert client.put("/api/v1/health/ready").status_code == 405


class TestCli:
    def test_recalculate_progress(self, app, make_client):
        make_client()
        result = app.test_cli_runner().invoke(args=["recalculate-progress"])
        assert result.exit_code == 0
        assert "Checked 1 forms" in result.output

    def test_run_job(self, app):
        result = app.test_cli_runner().invoke(args=["run-job", "progress_recalculation"])
        assert result.exit_code == 0
        assert "progress_recalculation: success" in result.output
        assert ScheduledJob.query.filter_by(job_name="progress_recalculation").one().run_count == 1

    def test_run_unknown_job_fails(self, app):
        result = app.test_cli_runner().invoke(args=["run-job", "nope"])
        assert result.exit_code == 1
