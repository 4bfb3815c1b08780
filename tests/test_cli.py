"""
Tests for the placewatch CLI.
"""

import json
from unittest.mock import MagicMock, patch

from placewatch.data.review_models import SyncStatus, Target, utcnow
from placewatch.orchestrator import cli
from placewatch.orchestrator.state import RunState
from placewatch.orchestrator.sync_cycle import CycleResult, CycleStatus, TargetOutcome


def cycle_result(status, outcomes=()):
    now = utcnow()
    return CycleResult(
        run_id="run-1",
        status=status,
        started_at=now,
        completed_at=now,
        outcomes=list(outcomes),
    )


class TestMain:

    def test_no_command(self):
        assert cli.main([]) == cli.EXIT_FAILED

    def test_config_error_exits_2(self, db_env, monkeypatch, capsys):
        monkeypatch.delenv("DATABASE_PASSWORD")

        assert cli.main(["status"]) == cli.EXIT_CONFIG
        assert "DATABASE_PASSWORD" in capsys.readouterr().err

    @patch("placewatch.orchestrator.cli.setup_logging")
    def test_status_json(self, mock_logging, db_env, capsys):
        RunState(db_env).record_cycle_complete("run-9", "completed", 2.0, inserted=4)

        assert cli.main(["status", "--json"]) == cli.EXIT_OK

        summary = json.loads(capsys.readouterr().out)
        assert summary["last_cycle"]["run_id"] == "run-9"
        assert summary["consecutive_failures"] == 0


class TestRunCommand:

    @patch("placewatch.orchestrator.cli.setup_logging")
    @patch("placewatch.orchestrator.cli.create_orchestrator")
    @patch("placewatch.orchestrator.cli.ReviewStore")
    def test_target_errors_still_exit_0(self, mock_store, mock_create, mock_logging, db_env, capsys):
        outcome = TargetOutcome(target=Target(id="t1", place_id="p"), status=SyncStatus.ERROR, message="boom")
        mock_create.return_value.run_cycle.return_value = cycle_result(CycleStatus.FAILED, [outcome])

        assert cli.main(["run"]) == cli.EXIT_OK
        assert "boom" in capsys.readouterr().out

    @patch("placewatch.orchestrator.cli.setup_logging")
    @patch("placewatch.orchestrator.cli.create_orchestrator")
    @patch("placewatch.orchestrator.cli.ReviewStore")
    def test_cycle_that_could_not_run_exits_1(self, mock_store, mock_create, mock_logging, db_env):
        mock_create.return_value.run_cycle.return_value = cycle_result(CycleStatus.FAILED)

        assert cli.main(["run"]) == cli.EXIT_FAILED

    @patch("placewatch.orchestrator.cli.setup_logging")
    @patch("placewatch.orchestrator.cli.ReviewScheduler")
    @patch("placewatch.orchestrator.cli.create_orchestrator")
    @patch("placewatch.orchestrator.cli.ReviewStore")
    def test_daemon_force(self, mock_store, mock_create, mock_scheduler, mock_logging, db_env):
        assert cli.main(["daemon", "--force"]) == cli.EXIT_OK

        mock_scheduler.return_value.start.assert_called_once_with(blocking=True, run_now=True)

    @patch("placewatch.notifications.telegram_notifier.requests.post")
    @patch("placewatch.orchestrator.cli.setup_logging")
    @patch("placewatch.orchestrator.cli.ReviewScheduler")
    @patch("placewatch.orchestrator.cli.ReviewStore")
    def test_daemon_heartbeat_sees_cycles_run_by_the_scheduler(
        self, mock_store, mock_scheduler, mock_logging, mock_post, db_env,
    ):
        mock_post.return_value = MagicMock(status_code=200)
        store = mock_store.return_value.__enter__.return_value
        store.get_active_targets.return_value = []
        store.get_admin_chat_id.return_value = "admin"

        assert cli.main(["daemon"]) == cli.EXIT_OK

        _, orchestrator, reporter = mock_scheduler.call_args.args
        assert reporter.state is orchestrator.state

        assert orchestrator.run_cycle().status == CycleStatus.COMPLETED
        assert reporter.send_heartbeat() is True

        heartbeat = mock_post.call_args.kwargs["json"]["text"]
        assert "Heartbeat OK" in heartbeat
        assert "Last successful sync: N/A" not in heartbeat

    @patch("placewatch.orchestrator.cli.setup_logging")
    @patch("placewatch.orchestrator.cli.ReviewStore")
    def test_init_db(self, mock_store, mock_logging, db_env):
        store = MagicMock()
        mock_store.return_value.__enter__.return_value = store

        assert cli.main(["init-db"]) == cli.EXIT_OK
        store.ensure_schema.assert_called_once()
