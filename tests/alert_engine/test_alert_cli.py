# tests/alert_engine/test_alert_cli.py
from __future__ import annotations

import json
from datetime import timedelta

import pytest

from alert_engine.__main__ import main as alert_main
from common.schemas import CorrelationResult, RiskTag


def _write_results(path, now):
    rows = [
        CorrelationResult(
            token_symbol=sym, window_start=now - timedelta(hours=2), window_end=now,
            mention_count=9, volume_growth_rate=growth, score=1.2, risk_tag=RiskTag.MEDIUM,
        )
        for sym, growth in (("BONK", 2.0), ("WIF", 0.1))
    ]
    with path.open("w", encoding="utf-8") as f:
        for r in rows:
            f.write(json.dumps(r.model_dump(mode="json")) + "\n")
        f.write("not json\n")


@pytest.fixture(autouse=True)
def _workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


def test_live_preflight_exits_2(capsys):
    with pytest.raises(SystemExit) as e:
        alert_main(["--sinks-live"])
    assert e.value.code == 2
    assert "LIVE mode preflight failed" in capsys.readouterr().out


def test_results_file_gates_and_writes_csv(tmp_path, now, capsys):
    src = tmp_path / "results.jsonl"
    _write_results(src, now)
    csv_path = tmp_path / "alerts.csv"

    rc = alert_main(["--results", str(src), "--csv", "--alerts-csv", str(csv_path)])
    out = capsys.readouterr().out

    assert rc == 0
    assert "invalid result" in out
    assert "[BONK]" in out and "[WIF]" not in out
    assert "1 alert(s) from 2 result(s)" in out
    assert csv_path.read_text(encoding="utf-8").count("\n") == 2
    assert "DRY-RUN sink mode" in out


def test_no_results_is_a_noop(capsys):
    assert alert_main([]) == 0
    assert "nothing to do" in capsys.readouterr().out
