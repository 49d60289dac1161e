from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from pathlib import Path

import pytest

from statefile import load_state, save_state, state_field
from statefile.errors import (
    DecodeError,
    EmptyEncoding,
    ReadError,
    UnsupportedFormat,
    WriteError,
)
from statefile.formats import SerializationType
from statefile.manager import StateManager


@dataclass
class Snapshot:
    name: str = state_field("name", default="")
    age: int = state_field("age", default=0)
    temperature: float = state_field("temp", default=0.0)
    flag: bool = state_field("flag", default=False)


@dataclass
class Example:
    text: str = state_field("text", default="")
    number: int = state_field("number", default=0)
    enabled: bool = state_field("bool", default=False)
    other: str = ""


def _manager(tmp_path: Path, fmt: SerializationType | str) -> StateManager:
    return StateManager(file_path=tmp_path / "test_state", serialization_type=fmt)


@pytest.mark.parametrize("fmt", list(SerializationType))
def test_save_and_load_roundtrip(tmp_path, fmt):
    sm = _manager(tmp_path, fmt)
    data = Snapshot("Alice", 30, 98.6, True)

    sm.save(data)
    assert sm.file_path.exists()

    loaded = Snapshot()
    sm.load(loaded)
    assert loaded == data


def test_state_format_skips_unannotated_fields(tmp_path):
    sm = _manager(tmp_path, SerializationType.STATE)
    sm.save(Example(text="Hello, World!", number=42, enabled=True, other="This will not be saved"))

    loaded = Example()
    sm.load(loaded)
    assert loaded == Example(text="Hello, World!", number=42, enabled=True, other="")


def test_defaults_use_home_dotfile_and_binary(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    sm = StateManager()

    assert sm.file_path == tmp_path / ".state"
    assert sm.serialization_type is SerializationType.BIN


def test_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("STATEFILE_PATH", str(tmp_path / "custom.yaml"))
    monkeypatch.setenv("STATEFILE_FORMAT", "yaml")
    sm = StateManager.from_env()

    assert sm.file_path == tmp_path / "custom.yaml"
    assert sm.serialization_type is SerializationType.YAML
    assert sm.config.serialization_type is SerializationType.YAML


def test_unknown_format_fails_at_construction(tmp_path):
    with pytest.raises(UnsupportedFormat):
        StateManager(file_path=tmp_path / "s", serialization_type="xml")


def test_exists_false_before_save_true_after(tmp_path):
    sm = _manager(tmp_path, SerializationType.JSON)
    assert sm.exists() is False

    sm.save(Snapshot(name="x"))
    assert sm.exists() is True


def test_save_leaves_no_temp_file(tmp_path):
    sm = _manager(tmp_path, SerializationType.BIN)
    sm.save(Snapshot(name="x"))

    assert sorted(p.name for p in tmp_path.iterdir()) == ["test_state"]


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_saved_file_is_owner_only(tmp_path):
    sm = _manager(tmp_path, SerializationType.JSON)
    sm.save(Snapshot(name="x"))

    assert sm.file_path.stat().st_mode & 0o777 == 0o600


def test_failed_rename_keeps_previous_file(tmp_path, monkeypatch):
    sm = _manager(tmp_path, SerializationType.JSON)
    before = Snapshot("Old", 1, 1.0, False)
    sm.save(before)
    size_before = sm.file_path.stat().st_size

    def fail_replace(src, dst):  # noqa: ARG001
        raise OSError("simulated crash during rename")

    monkeypatch.setattr(os, "replace", fail_replace)
    with pytest.raises(WriteError):
        sm.save(Snapshot("New-and-much-longer-name", 2, 2.0, True))
    monkeypatch.undo()

    assert sm.file_path.stat().st_size == size_before
    assert sorted(p.name for p in tmp_path.iterdir()) == ["test_state"]
    loaded = Snapshot()
    sm.load(loaded)
    assert loaded == before


def test_empty_encoding_is_rejected(tmp_path, monkeypatch):
    sm = _manager(tmp_path, SerializationType.JSON)
    monkeypatch.setattr(sm.adapter, "encode", lambda record, fmt: b"")

    with pytest.raises(EmptyEncoding):
        sm.save(Snapshot())
    assert not sm.exists()


def test_write_error_when_directory_is_missing(tmp_path):
    sm = StateManager(file_path=tmp_path / "missing" / "state", serialization_type="json")
    with pytest.raises(WriteError):
        sm.save(Snapshot())


def test_load_missing_file_raises_read_error(tmp_path):
    sm = _manager(tmp_path, SerializationType.BIN)
    with pytest.raises(ReadError):
        sm.load(Snapshot())


def test_load_with_mismatched_format_fails(tmp_path):
    _manager(tmp_path, SerializationType.BIN).save(Snapshot(name="bin"))

    with pytest.raises(DecodeError):
        _manager(tmp_path, SerializationType.JSON).load(Snapshot())


def test_concurrent_saves_do_not_corrupt(tmp_path):
    sm = _manager(tmp_path, SerializationType.JSON)
    data = Snapshot("Helen", 45, 99.5, True)
    errors = []

    def worker():
        try:
            sm.save(data)
        except Exception as ex:  # pragma: no cover - surfaced by assertion below
            errors.append(ex)

    threads = [threading.Thread(target=worker) for _ in range(100)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    loaded = Snapshot()
    sm.load(loaded)
    assert loaded == data


def test_concurrent_loads_always_see_complete_file(tmp_path):
    sm = _manager(tmp_path, SerializationType.YAML)
    first = Snapshot("first", 1, 1.0, False)
    second = Snapshot("second" * 20, 2, 2.0, True)
    sm.save(first)
    seen = []

    def writer():
        for i in range(50):
            sm.save(second if i % 2 else first)

    def reader():
        for _ in range(50):
            out = Snapshot()
            sm.load(out)
            seen.append(out)

    threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert seen
    assert all(s in (first, second) for s in seen)


def test_convenience_helpers(tmp_path):
    path = tmp_path / "helper.state"
    save_state(Snapshot(name="helper", age=3), file_path=path, serialization_type="state")

    loaded = Snapshot()
    load_state(loaded, file_path=path, serialization_type="state")
    assert loaded == Snapshot(name="helper", age=3)


@pytest.mark.parametrize("fmt", [SerializationType.JSON, SerializationType.BIN])
def test_separate_writers_on_one_path_never_collide(tmp_path, fmt):
    path = tmp_path / "shared.state"
    payloads = [Snapshot(f"writer-{i}-" + "x" * 4096, i, float(i), bool(i % 2)) for i in range(8)]
    errors = []

    def writer(data: Snapshot) -> None:
        own = StateManager(file_path=path, serialization_type=fmt)
        try:
            for n in range(10):
                if n % 2:
                    save_state(data, file_path=path, serialization_type=fmt)
                else:
                    own.save(data)
        except Exception as ex:  # pragma: no cover - surfaced by assertion below
            errors.append(ex)

    threads = [threading.Thread(target=writer, args=(p,)) for p in payloads]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    loaded = Snapshot()
    load_state(loaded, file_path=path, serialization_type=fmt)
    assert loaded in payloads
    assert [p.name for p in tmp_path.iterdir()] == ["shared.state"]
