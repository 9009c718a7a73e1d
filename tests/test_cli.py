import ipaddress
import json

import pytest

import scout_cli
from enrichment import HostFingerprint
from scanner_core import ScanResult


class FakeStream:
    def __init__(self, results):
        self.total = len(results)
        self._results = results
        self.closed = False

    def __iter__(self):
        return iter(self._results)

    def close(self):
        self.closed = True


def test_probe_rejects_domain_before_scanning(monkeypatch, capsys):
    def no_spawn(*a, **k):
        raise AssertionError("scan must not start")

    monkeypatch.setattr(scout_cli, "spawn", no_spawn)
    with pytest.raises(SystemExit) as exc:
        scout_cli.main(["probe", "example.com", "1", "10", "--no-color"])
    assert exc.value.code == 1
    assert "Unsupported target" in capsys.readouterr().err


def test_probe_rejects_inverted_range(capsys):
    with pytest.raises(SystemExit) as exc:
        scout_cli.main(["probe", "10.0.0.1", "100", "10", "--no-color"])
    assert exc.value.code == 1
    assert "start_port must be <= end_port" in capsys.readouterr().err


def test_probe_prints_open_ports_and_exports_json(monkeypatch, capsys, tmp_path):
    host = ipaddress.IPv4Address("10.0.0.5")
    seen = {}

    def fake_spawn(items, budget, timeout_seconds):
        seen["items"] = items
        seen["timeout"] = timeout_seconds
        return FakeStream([ScanResult(h, p, p in (22, 80)) for h, p in reversed(items)])

    monkeypatch.setattr(scout_cli, "spawn", fake_spawn)
    monkeypatch.setattr(
        scout_cli,
        "fingerprint_host",
        lambda ip, ports, ttl_method: HostFingerprint("64 (Linux/macOS/iOS-like)", ("SSH:22 SSH-2.0-x",)),
    )
    out = tmp_path / "out" / "scan.json"

    scout_cli.main(["probe", "10.0.0.5", "20", "80", "--fingerprint", "--timeout", "0.2", "--quiet", "--no-color", "--json-out", str(out)])

    assert len(seen["items"]) == 61
    assert seen["timeout"] == 0.2
    text = capsys.readouterr().out
    assert "10.0.0.5          22, 80" in text
    assert "SSH:22 SSH-2.0-x" in text
    assert json.loads(out.read_text()) == [
        {"host": str(host), "open_ports": [22, 80], "ttl_hint": "64 (Linux/macOS/iOS-like)", "services": ["SSH:22 SSH-2.0-x"]}
    ]


def test_probe_without_open_ports(monkeypatch, capsys):
    monkeypatch.setattr(scout_cli, "spawn", lambda items, budget, timeout_seconds: FakeStream([ScanResult(h, p, False) for h, p in items]))
    scout_cli.main(["probe", "10.0.0.5", "1", "3", "--quiet"])
    assert "No ports found" in capsys.readouterr().out


def test_default_command_is_discover(monkeypatch, capsys):
    monkeypatch.setattr(scout_cli, "local_ipv4_networks", lambda: [])
    with pytest.raises(SystemExit) as exc:
        scout_cli.main(["--no-color"])
    assert exc.value.code == 1
    captured = capsys.readouterr()
    assert "No local IPv4 subnets detected." in captured.out
    assert "No items to scan" in captured.err


def test_workers_override_validated(capsys):
    with pytest.raises(SystemExit):
        scout_cli.main(["probe", "10.0.0.5", "--workers", "0", "--no-color"])
    assert "--workers must be >= 1" in capsys.readouterr().err


def test_progress_bar():
    assert scout_cli.progress_bar(5, 10, width=10) == "[#####-----]  50.0% (5/10)"


def test_interrupt_while_collecting_closes_stream(monkeypatch, capsys):
    host = ipaddress.IPv4Address("10.0.0.5")
    stream = FakeStream([ScanResult(host, p, True) for p in (1, 2, 3)])

    def interrupted(results):
        next(iter(results))
        raise KeyboardInterrupt

    monkeypatch.setattr(scout_cli, "spawn", lambda items, budget, timeout_seconds: stream)
    monkeypatch.setattr(scout_cli, "group_open_ports", interrupted)
    with pytest.raises(SystemExit) as exc:
        scout_cli.main(["probe", "10.0.0.5", "1", "3", "--no-color"])

    assert exc.value.code == 130
    assert stream.closed is True
    assert "Interrupted by user." in capsys.readouterr().out


def test_options_before_subcommand_are_not_dropped(monkeypatch):
    monkeypatch.setattr(scout_cli, "spawn", lambda *a, **k: pytest.fail("scan must not start"))
    with pytest.raises(SystemExit) as exc:
        scout_cli.main(["--quiet", "probe", "10.0.0.5"])
    assert exc.value.code == 2


def test_options_without_subcommand_go_to_discover(monkeypatch, capsys):
    monkeypatch.setattr(scout_cli, "local_ipv4_networks", lambda: [])
    with pytest.raises(SystemExit) as exc:
        scout_cli.main(["--quiet", "--no-color", "--ports", "bogus"])

    assert exc.value.code == 1
    assert scout_cli.QUIET is True
    captured = capsys.readouterr()
    assert "No local IPv4 subnets detected." in captured.out
    assert "Invalid port: bogus" in captured.err


def test_workers_above_cap_rejected(capsys):
    with pytest.raises(SystemExit):
        scout_cli.main(["probe", "10.0.0.5", "--workers", "20000", "--no-color"])
    assert "--workers must be <= 4096" in capsys.readouterr().err
