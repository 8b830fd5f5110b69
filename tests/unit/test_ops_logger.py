import json
from pathlib import Path

from src.ops_logger import OpsLogger


def lines(path: Path):
    return [json.loads(l) for l in path.read_text(encoding="utf-8").splitlines()]


def test_emit_appends_tagged_jsonl(tmp_path: Path):
    log = OpsLogger(tmp_path / "logs" / "ops.log")
    log.emit({"event": "x", "n": 1})
    log.event("item", url="https://diplomeo.com/etablissement-a", ok=True)
    records = lines(tmp_path / "logs" / "ops.log")
    assert [r["event"] for r in records] == ["x", "item"]
    assert all(r["sdc_ops"] == 1 and "ts" in r for r in records)
    assert records[1]["ok"] is True


def test_summary_includes_resources_and_host(tmp_path: Path):
    log = OpsLogger(tmp_path / "ops.log")
    log.summary(command="process", processed=3)
    (record,) = lines(tmp_path / "ops.log")
    assert record["event"] == "summary"
    assert record["processed"] == 3
    assert set(record["resources"]) == {"cpu_pct", "rss_mb"}
    assert "python" in record["host"]
    assert record["durations"]["wall_s"] >= 0


def test_non_serializable_values_are_stringified(tmp_path: Path):
    log = OpsLogger(tmp_path / "ops.log")
    log.event("odd", path=tmp_path)
    (record,) = lines(tmp_path / "ops.log")
    assert record["path"] == str(tmp_path)


def test_never_raises_when_target_unwritable(tmp_path: Path, capsys):
    # the log path is a directory, so opening it for append fails
    log = OpsLogger(tmp_path, also_stdout=True)
    log.event("still-fine")
    assert '"still-fine"' in capsys.readouterr().out
