# tests/test_cli.py
import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from ipledger.cli.main import app
from ipledger.storage import DiskStore, LAST_IP_FILE

runner = CliRunner()


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "networks"


@pytest.fixture
def populated_dir(data_dir: Path) -> Path:
    """Pool 'net1' with two reservations from one owner and one from another."""
    store = DiskStore("net1", data_dir=data_dir)
    store.reserve("ctr-a:eth0", "10.88.0.2")
    store.reserve("ctr-a:eth1", "10.88.0.3")
    store.reserve("ctr-b:eth0", "10.88.0.4")
    return data_dir


def invoke(*args: str):
    return runner.invoke(app, list(args))


def test_pools_no_data_dir(data_dir: Path):
    result = invoke("pools", "--data-dir", str(data_dir))
    assert result.exit_code == 1
    assert "not found" in result.stdout.lower()


def test_pools_with_data(populated_dir: Path):
    DiskStore("net2", data_dir=populated_dir)
    result = invoke("pools", "--data-dir", str(populated_dir))
    assert result.exit_code == 0
    assert "net1" in result.stdout
    assert "net2" in result.stdout
    assert "3" in result.stdout
    assert "10.88.0.4" in result.stdout


def test_data_dir_before_command(populated_dir: Path):
    result = invoke("--data-dir", str(populated_dir), "find", "net1", "ctr-b:eth0")
    assert result.exit_code == 0
    assert result.stdout.strip() == "10.88.0.4"


def test_data_dir_from_env(populated_dir: Path, monkeypatch):
    monkeypatch.setenv("IPLEDGER_DATA_DIR", str(populated_dir))
    result = invoke("last", "net1")
    assert result.exit_code == 0
    assert result.stdout.strip() == "10.88.0.4"


def test_show_lists_reservations(populated_dir: Path):
    result = invoke("show", "net1", "--data-dir", str(populated_dir))
    assert result.exit_code == 0
    for text in ("10.88.0.2", "10.88.0.3", "10.88.0.4", "ctr-a:eth0", "ctr-b:eth0"):
        assert text in result.stdout


def test_show_missing_pool(populated_dir: Path):
    result = invoke("show", "nope", "--data-dir", str(populated_dir))
    assert result.exit_code == 1
    assert "pool not found" in result.stdout.lower()


def test_reserve_creates_pool(data_dir: Path):
    result = invoke("reserve", "fresh", "10.9.0.2", "ctr-c:eth0", "--data-dir", str(data_dir))
    assert result.exit_code == 0
    assert "Reserved 10.9.0.2" in result.stdout
    assert (data_dir / "fresh" / "10.9.0.2").read_bytes() == b"ctr-c:eth0"
    assert (data_dir / "fresh" / LAST_IP_FILE).read_bytes() == b"10.9.0.2"


def test_reserve_conflict(populated_dir: Path):
    result = invoke("reserve", "net1", "10.88.0.2", "ctr-z:eth0", "--data-dir", str(populated_dir))
    assert result.exit_code == 1
    assert "already reserved" in result.stdout
    assert (populated_dir / "net1" / "10.88.0.2").read_bytes() == b"ctr-a:eth0"


def test_reserve_invalid_address(data_dir: Path):
    result = invoke("reserve", "net1", "10.88.0", "ctr-z:eth0", "--data-dir", str(data_dir))
    assert result.exit_code == 2
    assert "invalid ip address" in result.stdout.lower()


def test_reserve_invalid_pool(data_dir: Path):
    result = invoke("reserve", "..", "10.88.0.9", "ctr-z:eth0", "--data-dir", str(data_dir))
    assert result.exit_code == 2
    assert "invalid pool name" in result.stdout.lower()


def test_release(populated_dir: Path):
    result = invoke("release", "net1", "10.88.0.3", "--data-dir", str(populated_dir))
    assert result.exit_code == 0
    assert not (populated_dir / "net1" / "10.88.0.3").exists()

    again = invoke("release", "net1", "10.88.0.3", "--data-dir", str(populated_dir))
    assert again.exit_code == 1
    assert "not reserved" in again.stdout


def test_release_owner(populated_dir: Path):
    result = invoke("release-owner", "net1", "ctr-a:eth0", "--data-dir", str(populated_dir))
    assert result.exit_code == 0
    assert "Released 1 address" in result.stdout
    assert not (populated_dir / "net1" / "10.88.0.2").exists()
    assert (populated_dir / "net1" / "10.88.0.3").exists()

    none_left = invoke("release-owner", "net1", "ctr-a:eth0", "--data-dir", str(populated_dir))
    assert none_left.exit_code == 0
    assert "No addresses held" in none_left.stdout


def test_find(populated_dir: Path):
    result = invoke("find", "net1", "ctr-a:eth1", "--data-dir", str(populated_dir))
    assert result.exit_code == 0
    assert result.stdout.strip() == "10.88.0.3"


def test_find_unknown_owner(populated_dir: Path):
    result = invoke("find", "net1", "ctr-z:eth0", "--data-dir", str(populated_dir))
    assert result.exit_code == 1
    assert "No address reserved" in result.stdout


def test_last_missing_pointer(data_dir: Path):
    DiskStore("empty", data_dir=data_dir)
    result = invoke("last", "empty", "--data-dir", str(data_dir))
    assert result.exit_code == 1
    assert "failed to retrieve last reserved ip" in result.stdout.lower()


def test_last_unparseable_pointer(populated_dir: Path):
    (populated_dir / "net1" / LAST_IP_FILE).write_bytes(b"garbage")
    result = invoke("last", "net1", "--data-dir", str(populated_dir))
    assert result.exit_code == 1
    assert "unparseable" in result.stdout


def test_export_stdout_is_canonical(populated_dir: Path):
    result = invoke("export", "net1", "--data-dir", str(populated_dir))
    assert result.exit_code == 0

    line = result.stdout.strip()
    snapshot = json.loads(line)
    assert snapshot["pool"] == "net1"
    assert snapshot["last_reserved_ip"] == "10.88.0.4"
    assert [r["address"] for r in snapshot["reservations"]] == ["10.88.0.2", "10.88.0.3", "10.88.0.4"]
    # keys sorted, no whitespace
    assert line.startswith('{"last_reserved_ip":"10.88.0.4","pool":"net1","reservations":[')


def test_export_to_file(populated_dir: Path, tmp_path: Path):
    output_file = tmp_path / "net1.json"
    result = invoke("export", "net1", "--data-dir", str(populated_dir), "--output", str(output_file))

    assert result.exit_code == 0
    assert "Exported 3 reservations" in result.stdout
    snapshot = json.loads(output_file.read_text(encoding="utf-8"))
    assert len(snapshot["reservations"]) == 3


def test_lock_timeout_reported(populated_dir: Path):
    holder = DiskStore("net1", data_dir=populated_dir)
    with holder.locked():
        result = invoke(
            "reserve", "net1", "10.88.0.9", "ctr-z:eth0",
            "--data-dir", str(populated_dir), "--lock-timeout", "0.05",
        )
    assert result.exit_code == 1
    assert "timed out" in result.stdout.lower()
    assert not (populated_dir / "net1" / "10.88.0.9").exists()


def test_release_owner_counts_every_removed_record(populated_dir: Path):
    (populated_dir / "net1" / "stray").write_bytes(b"ctr-a:eth0")

    result = invoke("release-owner", "net1", "ctr-a:eth0", "--data-dir", str(populated_dir))
    assert result.exit_code == 0
    assert "Released 2 address(es)" in result.stdout
    assert not (populated_dir / "net1" / "stray").exists()
    assert not (populated_dir / "net1" / "10.88.0.2").exists()


def test_last_waits_for_pool_lock(populated_dir: Path):
    holder = DiskStore("net1", data_dir=populated_dir)
    with holder.locked():
        result = invoke("last", "net1", "--data-dir", str(populated_dir), "--lock-timeout", "0.05")
    assert result.exit_code == 1
    assert "timed out" in result.stdout.lower()

    after = invoke("last", "net1", "--data-dir", str(populated_dir))
    assert after.exit_code == 0
    assert after.stdout.strip() == "10.88.0.4"
