from __future__ import annotations

import json
from dataclasses import dataclass

import voice_todo.main as cli


def _write_settings(tmp_path) -> str:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"seed": {"enabled": False}}), encoding="utf-8")
    return str(path)


def test_version_flag(capsys):
    assert cli.main(["--version"]) == 0
    assert capsys.readouterr().out.strip() == cli.__version__


def test_add_list_search_roundtrip(tmp_path, capsys):
    config = _write_settings(tmp_path)

    assert cli.main(["--config", config, "add", "Buy milk", "two litres"]) == 0
    assert cli.main(["--config", config, "add", "Call plumber"]) == 0
    capsys.readouterr()

    assert cli.main(["--config", config, "list"]) == 0
    out = capsys.readouterr().out
    assert "Buy milk" in out and "Call plumber" in out
    assert "2 tasks" in out

    assert cli.main(["--config", config, "search", "LITRES"]) == 0
    out = capsys.readouterr().out
    assert "Buy milk" in out
    assert "Call plumber" not in out

    stored = json.loads((tmp_path / "tasks.json").read_text(encoding="utf-8"))
    assert [t["title"] for t in stored["tasks"]] == ["Buy milk", "Call plumber"]


def test_done_edit_delete(tmp_path, capsys):
    config = _write_settings(tmp_path)
    cli.main(["--config", config, "add", "Old title"])

    assert cli.main(["--config", config, "done", "1"]) == 0
    assert "[x]" in capsys.readouterr().out

    assert cli.main(["--config", config, "edit", "1", "--title", "New title"]) == 0
    assert "New title" in capsys.readouterr().out

    assert cli.main(["--config", config, "edit", "1"]) == 2

    assert cli.main(["--config", config, "delete", "1"]) == 0
    capsys.readouterr()
    cli.main(["--config", config, "list"])
    assert "No tasks." in capsys.readouterr().out


def test_unknown_task_id_returns_error(tmp_path, capsys):
    config = _write_settings(tmp_path)
    assert cli.main(["--config", config, "done", "42"]) == 1
    assert "no task with id 42" in capsys.readouterr().out


def test_invalid_settings_file_returns_error(tmp_path, capsys):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"audio": {"sample_rate_hz": 44100}}), encoding="utf-8")

    assert cli.main(["--config", str(path), "list"]) == 2
    assert "invalid settings file" in capsys.readouterr().out


def test_no_command_prints_help(tmp_path):
    assert cli.main(["--config", _write_settings(tmp_path)]) == 2


@dataclass
class FakeRunner:
    settings: object
    config_path: object
    duration_s: float | None = None
    last: "FakeRunner | None" = None

    async def run(self) -> int:
        FakeRunner.last = self
        return 0


def test_listen_runs_headless_runner(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "HeadlessListenRunner", FakeRunner)
    config = _write_settings(tmp_path)

    assert cli.main(["--config", config, "listen", "--duration", "1.5"]) == 0
    assert FakeRunner.last is not None
    assert FakeRunner.last.duration_s == 1.5
    assert str(FakeRunner.last.config_path) == config


def test_corrupt_task_store_returns_error(tmp_path, capsys):
    config = _write_settings(tmp_path)
    (tmp_path / "tasks.json").write_text("{not json", encoding="utf-8")

    assert cli.main(["--config", config, "list"]) == 2
    assert "cannot read task store" in capsys.readouterr().out


def test_key_set_show_clear(tmp_path, capsys, monkeypatch):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"seed": {"enabled": False}, "secrets": {"backend": "encrypted_file"}}), encoding="utf-8"
    )
    monkeypatch.setenv("VOICE_TODO_SECRETS_PASSPHRASE", "pw")
    monkeypatch.delenv("DEEPGRAM_API_KEY", raising=False)
    config = str(path)

    assert cli.main(["--config", config, "key", "set", "dg-123456"]) == 0
    assert "saved" in capsys.readouterr().out

    assert cli.main(["--config", config, "key", "show"]) == 0
    out = capsys.readouterr().out
    assert "dg-****" in out and "secret store" in out
    assert "123456" not in out

    assert cli.main(["--config", config, "key", "clear"]) == 0
    capsys.readouterr()
    assert cli.main(["--config", config, "key", "show"]) == 1
    assert "not set" in capsys.readouterr().out


def test_key_show_reports_environment_source(tmp_path, capsys, monkeypatch):
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"seed": {"enabled": False}, "secrets": {"backend": "encrypted_file"}}), encoding="utf-8"
    )
    monkeypatch.setenv("VOICE_TODO_SECRETS_PASSPHRASE", "pw")
    monkeypatch.setenv("DEEPGRAM_API_KEY", "dg-from-env")

    assert cli.main(["--config", str(path), "key", "show"]) == 0
    assert "$DEEPGRAM_API_KEY" in capsys.readouterr().out
