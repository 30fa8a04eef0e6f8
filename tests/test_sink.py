from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from wftrig.core.sink import EventLog, tail_lines


def test_event_log_appends_jsonl(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "workflow-triggers.log"
    log = EventLog(log_path, echo=False)
    log.emit("engine", "daemon_started", pid=1)
    log.emit("engine", "daemon_stopped")
    log.close()

    lines = log_path.read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]
    assert [r["event"] for r in records] == ["daemon_started", "daemon_stopped"]
    assert records[0]["data"] == {"pid": 1}
    assert "data" not in records[1]


def test_event_log_is_thread_safe(tmp_path: Path) -> None:
    log_path = tmp_path / "events.log"
    log = EventLog(log_path, echo=False)

    def writer(n: int) -> None:
        for i in range(50):
            log.emit(f"w{n}", "tick", i=i)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    log.close()

    lines = log_path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 200
    for line in lines:
        json.loads(line)


def test_event_log_drops_events_after_close(tmp_path: Path) -> None:
    log_path = tmp_path / "events.log"
    log = EventLog(log_path, echo=False)
    log.emit("a", "one")
    log.close()
    log.emit("a", "two")
    assert log._file_handle is None
    log.close()
    records = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert [r["event"] for r in records] == ["one"]


def test_tail_lines(tmp_path: Path) -> None:
    path = tmp_path / "log.txt"
    path.write_text("".join(f"line{i}\n" for i in range(100)), encoding="utf-8")
    assert tail_lines(path, 3) == ["line97", "line98", "line99"]
    assert tail_lines(path, 0) == []
    assert len(tail_lines(path)) == 50
    with pytest.raises(FileNotFoundError):
        tail_lines(tmp_path / "missing.txt")
