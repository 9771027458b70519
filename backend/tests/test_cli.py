"""
Command line entry point.

Run with: pytest backend/tests/test_cli.py -v
"""

from __future__ import annotations

import builtins
import json
import os
import sys

THIS_DIR = os.path.dirname(__file__)
PKG_ROOT = os.path.abspath(os.path.join(THIS_DIR, ".."))
if PKG_ROOT not in sys.path:
    sys.path.insert(0, PKG_ROOT)

import pytest
from compass.cli import main
from compass.domain.flows.repository import BUNDLED_FLOW_DIR


class TestValidate:
    def test_bundled_flows_pass(self, capsys):
        paths = sorted(str(p) for p in BUNDLED_FLOW_DIR.glob("*.json"))
        assert main(["validate", *paths]) == 0
        out = capsys.readouterr().out
        assert "panic_flow - 0 error(s)" in out
        # the breathing loop has an exit, so it is only a warning
        assert "warning circularReference" in out

    def test_broken_flow_fails(self, tmp_path, capsys):
        path = tmp_path / "broken.json"
        path.write_text(
            json.dumps({"id": "b", "title": "B", "startNode": "s",
                        "nodes": [{"id": "s", "options": [{"text": "go", "nextNode": "nowhere"}]}]}),
            encoding="utf-8",
        )
        assert main(["validate", str(path)]) == 1
        out = capsys.readouterr().out
        assert "error   danglingReference [s]" in out

    def test_unloadable_file(self, tmp_path, capsys):
        bad = tmp_path / "bad.json"
        bad.write_text("{", encoding="utf-8")
        assert main(["validate", str(bad), str(tmp_path / "missing.json")]) == 1
        assert capsys.readouterr().out.count("cannot load") == 2


class TestAnalyze:
    def test_prints_triage(self, capsys):
        assert main(["analyze", "I", "want", "to", "kill", "myself"]) == 0
        out = capsys.readouterr().out
        body = json.loads(out[out.index("{\n"):])
        assert body["flow_type"] == "suicide"
        assert body["high_priority"] is True


class TestPlay:
    def test_walk_and_quit(self, monkeypatch, capsys):
        answers = iter(["1", "q"])
        monkeypatch.setattr(builtins, "input", lambda prompt="": next(answers))
        assert main(["play", "panic", "--delay", "0"]) == 0
        out = capsys.readouterr().out
        assert "1) I'm safe" in out
        assert "How are you feeling now?" in out


def test_command_required():
    with pytest.raises(SystemExit):
        main([])
