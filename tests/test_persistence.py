from __future__ import annotations

import json
from pathlib import Path

import pytest

from dubswitch import persistence
from dubswitch.exceptions import InvalidMatrixError, PersistenceError
from dubswitch.persistence import MatrixStore, PortStore, normalize_matrix_patch


def test_load_missing_file_is_empty(tmp_path: Path) -> None:
    assert MatrixStore(tmp_path / "matrix.json").load() == {}


def test_load_corrupt_file_is_empty(tmp_path: Path) -> None:
    path = tmp_path / "matrix.json"
    path.write_text("{not json", encoding="utf-8")

    assert MatrixStore(path).load() == {}


def test_save_then_load_merges_keywise(tmp_path: Path) -> None:
    path = tmp_path / "matrix.json"
    store = MatrixStore(path)
    store.save({"1": {"a": 1, "b": 0}})
    result = store.save({"02": {"a": 0, "b": 1}})

    assert result.warning is None
    assert result.matrix == {"01": {"a": 1, "b": 0}, "02": {"a": 0, "b": 1}}
    assert MatrixStore(path).load() == result.matrix
    assert json.loads(path.read_text(encoding="utf-8")) == result.matrix


def test_overlapping_saves_second_wins(tmp_path: Path) -> None:
    store = MatrixStore(tmp_path / "matrix.json")
    store.save({"01": {"a": 1, "b": 1}, "03": {"a": 1}})
    result = store.save({"01": {"a": 0}})

    assert result.matrix == {"01": {"a": 0}, "03": {"a": 1}}


def test_crash_before_rename_keeps_canonical_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "matrix.json"
    path.write_text('{"01": {"a": 1}}', encoding="utf-8")

    def _crash(_src: str, _dst: Path) -> None:
        raise RuntimeError("power loss")

    monkeypatch.setattr(persistence.os, "replace", _crash)
    with pytest.raises(RuntimeError):
        persistence._atomic_write_text(path, '{"01": {"a": 2}}')

    assert path.read_text(encoding="utf-8") == '{"01": {"a": 1}}'
    assert sorted(p.name for p in tmp_path.iterdir()) == ["matrix.json"]


def test_atomic_failure_falls_back_with_warning(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _fail(_path: Path, _text: str) -> None:
        raise OSError("rename not permitted")

    monkeypatch.setattr(persistence, "_atomic_write_text", _fail)
    store = MatrixStore(tmp_path / "matrix.json")
    result = store.save({"5": {"a": 1}})

    assert result.warning is not None
    assert "rename not permitted" in result.warning
    assert result.matrix == {"05": {"a": 1}}
    assert MatrixStore(tmp_path / "matrix.json").load() == {"05": {"a": 1}}


def test_total_write_failure_raises(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = MatrixStore(blocker / "matrix.json")

    with pytest.raises(PersistenceError) as excinfo:
        store.save({"01": {"a": 1}})
    assert excinfo.value.path.endswith("matrix.json")


@pytest.mark.parametrize(
    "patch",
    [
        [],
        {"0": {}},
        {"33": {}},
        {"ch1": {}},
        {"\u00b2": {}},
        {"01": 5},
    ],
)
def test_invalid_patch_rejected(patch: object) -> None:
    with pytest.raises(InvalidMatrixError):
        normalize_matrix_patch(patch)


def test_port_store_round_trip(tmp_path: Path) -> None:
    store = PortStore(tmp_path / "server.port")

    assert store.load() is None
    assert store.save(3100) == 3100
    assert store.load() == 3100
    assert (tmp_path / "server.port").read_text(encoding="utf-8").strip() == "3100"


@pytest.mark.parametrize("port", [0, 70000, "3000", True, None])
def test_port_store_rejects_invalid_port(tmp_path: Path, port: object) -> None:
    with pytest.raises(ValueError):
        PortStore(tmp_path / "server.port").save(port)  # type: ignore[arg-type]


def test_port_store_ignores_garbage(tmp_path: Path) -> None:
    path = tmp_path / "server.port"
    path.write_text("eighty", encoding="utf-8")

    assert PortStore(path).load() is None
