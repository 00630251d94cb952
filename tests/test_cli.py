"""Tests for the chls2har command line."""

import json

import pytest

from chls2har import cli
from chls2har.cli import EXIT_FAILED, EXIT_OK, EXIT_USAGE, EXIT_WARNINGS, main
from conftest import make_record
from trace_parser.writer import dump_trace


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in ("CHLS2HAR_BODY_THRESHOLD", "CHLS2HAR_INDENT", "CHLS2HAR_WORKERS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, "_confirm_overwrite", lambda path: False)


def test_writes_next_to_input(trace_file) -> None:
    path = trace_file([make_record(), make_record(1)])

    assert main([str(path)]) == EXIT_OK

    har = json.loads(path.with_suffix(".har").read_text())
    assert len(har["log"]["entries"]) == 2


def test_explicit_output(trace_file, tmp_path) -> None:
    path = trace_file([make_record()])
    output = tmp_path / "custom.har"

    assert main([str(path), "-o", str(output), "--indent", "0"]) == EXIT_OK
    assert "\n" not in output.read_text()


def test_existing_output_needs_force(trace_file, capsys) -> None:
    path = trace_file([make_record()])
    output = path.with_suffix(".har")
    output.write_text("keep me")

    assert main([str(path)]) == EXIT_FAILED
    assert output.read_text() == "keep me"
    assert "--force" in capsys.readouterr().err

    assert main([str(path), "--force"]) == EXIT_OK
    assert json.loads(output.read_text())["log"]["entries"]


def test_truncated_input_exit_code(tmp_path) -> None:
    path = tmp_path / "cut.chls"
    path.write_bytes(dump_trace([make_record(i) for i in range(2)])[:-4])

    assert main([str(path)]) == EXIT_WARNINGS
    assert (tmp_path / "cut.har").exists()


def test_invalid_trace(tmp_path, capsys) -> None:
    path = tmp_path / "bad.chls"
    path.write_bytes(b"not a trace")

    assert main([str(path)]) == EXIT_FAILED
    assert not (tmp_path / "bad.har").exists()
    assert "bad.chls" in capsys.readouterr().err


def test_missing_input(tmp_path, capsys) -> None:
    assert main([str(tmp_path / "missing.chls")]) == EXIT_FAILED
    assert "not found" in capsys.readouterr().err


def test_unexpected_extension_warns(tmp_path, capsys) -> None:
    path = tmp_path / "capture.bin"
    path.write_bytes(dump_trace([make_record()]))

    assert main([str(path)]) == EXIT_OK
    assert "extension" in capsys.readouterr().err
    assert (tmp_path / "capture.bin.har").exists()


def test_output_with_several_inputs(trace_file) -> None:
    first = trace_file([make_record()], name="a.chls")
    second = trace_file([make_record()], name="b.chls")

    assert main([str(first), str(second), "-o", "out.har"]) == EXIT_USAGE


def test_output_dir(trace_file, tmp_path) -> None:
    inputs = [trace_file([make_record(i)], name=f"s{i}.chls") for i in range(3)]
    out_dir = tmp_path / "hars"

    assert main([*map(str, inputs), "--output-dir", str(out_dir), "--workers", "2", "-q"]) == EXIT_OK
    assert sorted(p.name for p in out_dir.iterdir()) == ["s0.har", "s1.har", "s2.har"]


def test_stdout(trace_file, capsysbinary) -> None:
    path = trace_file([make_record()])

    assert main([str(path), "-o", "-"]) == EXIT_OK

    har = json.loads(capsysbinary.readouterr().out)
    assert har["log"]["entries"][0]["response"]["content"]["text"] == "hello"


def test_no_body(trace_file, tmp_path) -> None:
    path = trace_file([make_record()])
    output = tmp_path / "nobody.har"

    assert main([str(path), "-o", str(output), "--no-body"]) == EXIT_OK
    content = json.loads(output.read_text())["log"]["entries"][0]["response"]["content"]
    assert "text" not in content


def test_bad_config(trace_file, tmp_path) -> None:
    path = trace_file([make_record()])
    config = tmp_path / "bad.yaml"
    config.write_text("workers: none\n")

    assert main([str(path), "--config", str(config)]) == EXIT_USAGE


def test_invalid_workers_flag(trace_file) -> None:
    path = trace_file([make_record()])
    assert main([str(path), "--workers", "0"]) == EXIT_USAGE


def test_bad_record_field_exit_code(trace_file) -> None:
    path = trace_file([make_record(0), make_record(1, tz_offset=-1500)])

    assert main([str(path), "--force"]) == EXIT_WARNINGS
    har = json.loads(path.with_suffix(".har").read_text())
    assert len(har["log"]["entries"]) == 1
