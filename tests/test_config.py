"""Tests for converter configuration loading."""

import logging

import pytest

from chls2har.config import ConfigError, ConverterConfig, load_config_file
from chls2har.har import DEFAULT_LARGE_BODY_THRESHOLD


def test_defaults() -> None:
    config = ConverterConfig.load(environ={})

    assert config == ConverterConfig()
    assert config.large_body_threshold == DEFAULT_LARGE_BODY_THRESHOLD
    assert config.indent == 2
    assert config.include_response_body is True
    assert config.workers == 2


def test_yaml_file(tmp_path) -> None:
    path = tmp_path / "chls2har.yaml"
    path.write_text(
        "large_body_threshold: 2048\n"
        "indent: 0\n"
        "include_response_body: false\n"
        "workers: 4\n"
    )
    config = ConverterConfig.load(path, environ={})

    assert config.large_body_threshold == 2048
    assert config.indent == 0
    assert config.include_response_body is False
    assert config.workers == 4


def test_environment_beats_file(tmp_path) -> None:
    path = tmp_path / "chls2har.yaml"
    path.write_text("indent: 4\nworkers: 3\n")
    config = ConverterConfig.load(path, environ={"CHLS2HAR_INDENT": "8", "CHLS2HAR_BODY_THRESHOLD": "100"})

    assert config.indent == 8
    assert config.workers == 3
    assert config.large_body_threshold == 100


def test_empty_file(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config_file(path) == {}


def test_unknown_key_is_ignored(tmp_path, caplog) -> None:
    path = tmp_path / "chls2har.yaml"
    path.write_text("indent: 1\ncolour: blue\n")

    with caplog.at_level(logging.WARNING, logger="chls2har.config"):
        config = ConverterConfig.load(path, environ={})

    assert config.indent == 1
    assert "colour" in caplog.text


@pytest.mark.parametrize("content", [
    "indent: [1, 2\n",
    "- just\n- a list\n",
    "indent: lots\n",
    "workers: 0\n",
    "large_body_threshold: -1\n",
])
def test_invalid_file(tmp_path, content) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text(content)

    with pytest.raises(ConfigError):
        ConverterConfig.load(path, environ={})


def test_missing_file(tmp_path) -> None:
    with pytest.raises(ConfigError):
        ConverterConfig.load(tmp_path / "missing.yaml", environ={})


def test_invalid_environment() -> None:
    with pytest.raises(ConfigError) as excinfo:
        ConverterConfig.load(environ={"CHLS2HAR_WORKERS": "many"})
    assert "environment" in str(excinfo.value)


def test_with_overrides_skips_none() -> None:
    config = ConverterConfig().with_overrides(indent=None, workers=6, include_response_body=False)

    assert config.indent == 2
    assert config.workers == 6
    assert config.include_response_body is False


def test_with_overrides_validates() -> None:
    with pytest.raises(ConfigError):
        ConverterConfig().with_overrides(workers=0)


@pytest.mark.parametrize("content", [
    "large_body_threshold: 1.5\n",
    "indent: true\n",
    "workers: 2.0\n",
    "include_response_body: 1\n",
    "include_response_body: maybe\n",
])
def test_lossy_values_are_rejected(tmp_path, content) -> None:
    path = tmp_path / "lossy.yaml"
    path.write_text(content)

    with pytest.raises(ConfigError):
        ConverterConfig.load(path, environ={})


def test_boolean_strings() -> None:
    config = ConverterConfig().with_overrides(include_response_body="off", sniff_mime="Yes")

    assert config.include_response_body is False
    assert config.sniff_mime is True
