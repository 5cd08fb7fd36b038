"""Tests for the threadmem CLI."""
import json

import pytest
from typer.testing import CliRunner

from threadmem.cli.commands import app


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_path(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"logging": {"enabled": False}, "compaction": {"maxMessages": 4}}))
    monkeypatch.setattr("threadmem.config.loader.get_config_path", lambda: path)
    return path


@pytest.fixture
def notes(tmp_path):
    path = tmp_path / "notes.json"
    path.write_text(json.dumps([
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"note about subject{i}"}
        for i in range(12)
    ]))
    return path


@pytest.fixture
def history(tmp_path):
    path = tmp_path / "history.json"
    contents = ["alpha beta gamma"] * 4 + ["delta epsilon zeta"] * 4 + ["eta theta iota"] * 4
    path.write_text(json.dumps([
        {"role": "user" if i % 2 == 0 else "assistant", "content": text}
        for i, text in enumerate(contents)
    ]))
    return path


def test_help(runner):
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "compact" in result.output
    assert "segments" in result.output


def test_version(runner):
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "threadmem v" in result.output


def test_compact_json(runner, config_path, notes):
    result = runner.invoke(app, ["compact", str(notes), "--max-messages", "3", "--ratio", "0.4", "--json"])
    assert result.exit_code == 0, result.output

    messages = json.loads(result.output)
    indices = [m["sequence_index"] for m in messages]
    assert len(indices) <= 3
    assert indices == sorted(indices)
    assert indices[-1] == 11


def test_compact_uses_config_budget(runner, config_path, notes):
    result = runner.invoke(app, ["compact", str(notes), "--json"])
    assert result.exit_code == 0, result.output
    assert len(json.loads(result.output)) <= 4


def test_compact_table(runner, config_path, notes):
    result = runner.invoke(app, ["compact", str(notes), "-n", "5"])
    assert result.exit_code == 0, result.output
    assert "Compacted" in result.output


def test_compact_rejects_bad_ratio(runner, config_path, notes):
    result = runner.invoke(app, ["compact", str(notes), "--ratio", "2"])
    assert result.exit_code == 1
    assert "Invalid compaction settings" in result.output


def test_compact_rejects_bad_file(runner, config_path, tmp_path):
    bad = tmp_path / "bad.json"
    bad.write_text('{"messages": "nope"}')
    result = runner.invoke(app, ["compact", str(bad)])
    assert result.exit_code == 1


def test_segments(runner, config_path, history):
    result = runner.invoke(app, ["segments", str(history), "--max-segments", "2"])
    assert result.exit_code == 0, result.output
    assert "3 topic segments" in result.output


def test_segments_rejects_zero_segments(runner, config_path, history):
    result = runner.invoke(app, ["segments", str(history), "--max-segments", "0"])
    assert result.exit_code == 1
    assert "Invalid segmentation settings" in result.output


def test_config_show(runner, config_path):
    result = runner.invoke(app, ["config"])
    assert result.exit_code == 0, result.output
    assert "compaction" in result.output


def test_config_init(runner, tmp_path, monkeypatch):
    path = tmp_path / "fresh" / "config.json"
    monkeypatch.setattr("threadmem.config.loader.get_config_path", lambda: path)

    result = runner.invoke(app, ["config", "--init"])
    assert result.exit_code == 0, result.output
    assert json.loads(path.read_text())["compaction"]["maxMessages"] == 50
