from __future__ import annotations

import io
import json
import logging
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler

import pytest

from voice_note_relay import __version__
from voice_note_relay import main as cli
from voice_note_relay.config.settings import LoggingSettings
from voice_note_relay.core.usage.recorder import UsageRecorder
from voice_note_relay.core.usage.store import InMemoryCounterStore
from voice_note_relay.domain.models import JobId, JobReport, Scope, UsageDelta


@dataclass
class FakeStreamRunner:
    succeeded: bool = True
    jobs: list = field(default_factory=list)

    async def run(self, job):
        self.jobs.append(job)
        return JobReport(
            job_id=job.job_id,
            succeeded=self.succeeded,
            transcript="hello",
            language="en",
            duration_s=1.0,
            size_kb=2.0,
            error=None if self.succeeded else "boom",
        )


@dataclass
class FakeBatchRunner:
    calls: list = field(default_factory=list)

    async def run(self, **kwargs):
        self.calls.append(kwargs)
        return JobReport(
            job_id=kwargs["job_id"],
            succeeded=True,
            transcript="t",
            language="he",
            duration_s=0.0,
            size_kb=0.0,
        )


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)
    runner = FakeStreamRunner()
    batch = FakeBatchRunner()
    monkeypatch.setattr(cli, "create_stream_runner", lambda settings, clients: runner)
    monkeypatch.setattr(cli, "create_batch_runner", lambda settings, clients: batch)
    config = tmp_path / "missing.json"
    return runner, batch, ["--config", str(config)]


def test_version_flag(capsys):
    assert cli.main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == __version__


def test_no_command_prints_help():
    assert cli.main([]) == 2


def test_run_job_from_flags(cli_env, capsys):
    runner, _, base = cli_env
    code = cli.main(
        base
        + ["run-job", "--bucket", "voice", "--key", "u1/a.ogg", "--chat-id", "u1", "--message-id", "5"]
    )

    assert code == 0
    job = runner.jobs[0]
    assert job.job_id == JobId("u1", "u1/a.ogg")
    assert job.display_message_id == 5
    out = json.loads(capsys.readouterr().out)
    assert out["succeeded"] is True


def test_run_job_from_event_on_stdin(cli_env, monkeypatch):
    runner, _, base = cli_env
    event = {"bucket": "voice", "key": "k", "chatId": "c1", "userId": "u9", "messageId": 3}
    monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps(event)))

    assert cli.main(base + ["run-job", "--event", "-"]) == 0
    assert runner.jobs[0].user_id == "u9"


def test_failed_job_exits_with_one(cli_env):
    runner, _, base = cli_env
    runner.succeeded = False
    code = cli.main(
        base + ["run-job", "--bucket", "b", "--key", "k", "--chat-id", "c", "--message-id", "1"]
    )
    assert code == 1


def test_incomplete_job_arguments_are_a_config_error(cli_env):
    _, _, base = cli_env
    assert cli.main(base + ["run-job", "--bucket", "b"]) == 2


def test_invalid_settings_file_is_a_config_error(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda *a, **k: None)
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"relay": {"min_interval_s": -1}}), encoding="utf-8")
    assert cli.main(["--config", str(path), "stats"]) == 2


def test_complete_batch_defaults_chat_to_user(cli_env):
    _, batch, base = cli_env
    code = cli.main(
        base
        + [
            "complete-batch",
            "--bucket", "voice",
            "--transcript-key", "t.json",
            "--source-key", "a.ogg",
            "--user-id", "u1",
            "--artifact-id", "a1",
        ]
    )
    assert code == 0
    call = batch.calls[0]
    assert call["chat_id"] == "u1"
    assert call["job_id"] == JobId("u1", "a1")
    assert str(call["source_location"]) == "voice/a.ogg"


def test_stats_without_usage_backend_is_a_config_error(cli_env):
    _, _, base = cli_env
    assert cli.main(base + ["stats"]) == 2


def test_stats_prints_counter_row(cli_env, monkeypatch, capsys):
    _, _, base = cli_env
    store = InMemoryCounterStore()
    monkeypatch.setattr(cli, "create_usage_recorder", lambda clients: UsageRecorder(store))

    async def seed():
        await store.init_maps_if_absent(Scope.for_user("u1"))
        await store.increment_or_init(Scope.for_user("u1"), UsageDelta("en", 5.0, 3.0))

    import asyncio

    asyncio.run(seed())

    assert cli.main(base + ["stats", "--user-id", "u1"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["scope"] == "USER:u1"
    assert out["total_seconds"] == 5.0
    assert out["transcriptions_by_language"] == {"en": 1}


def test_configure_logging_adds_rotating_file_handler(tmp_path):
    log_file = tmp_path / "logs" / "relay.log"
    root = logging.getLogger()
    before = list(root.handlers)
    try:
        cli.configure_logging(LoggingSettings(level="INFO", file=str(log_file), max_bytes=1024))
        handlers = [h for h in root.handlers if isinstance(h, RotatingFileHandler)]
        assert handlers
        logging.getLogger("voice_note_relay.test").info("[Job] hello")
        for h in handlers:
            h.flush()
        assert "[Job] hello" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(root.handlers):
            if h not in before:
                root.removeHandler(h)
                h.close()
