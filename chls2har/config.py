# Copyright 2025 Jesse Bate (https://github.com/jbatesy)
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Converter configuration: defaults, YAML config file, environment variables.

Precedence (lowest first): built-in defaults, the YAML file, environment
variables, then explicit overrides such as command-line flags.

Example config file::

    large_body_threshold: 2097152
    indent: 0
    include_response_body: true
    workers: 4
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from . import __version__
from .har import DEFAULT_LARGE_BODY_THRESHOLD

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHLS2HAR_"
ENV_VARS = {
    "BODY_THRESHOLD": "large_body_threshold",
    "INDENT": "indent",
    "WORKERS": "workers",
}

_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off")


class ConfigError(ValueError):
    """Raised when a configuration file or value cannot be used."""
    pass


@dataclass(frozen=True)
class ConverterConfig:
    """Settings shared by every conversion pipeline."""

    large_body_threshold: int = DEFAULT_LARGE_BODY_THRESHOLD
    indent: int = 2
    include_response_body: bool = True
    sniff_mime: bool = True
    workers: int = 2
    creator_name: str = "chls2har"
    creator_version: str = __version__

    def __post_init__(self):
        if self.large_body_threshold < 0:
            raise ConfigError("large_body_threshold must not be negative")
        if self.workers < 1:
            raise ConfigError("workers must be at least 1")

    def with_overrides(self, **overrides: Any) -> "ConverterConfig":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **_coerce(values, source="override"))

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        environ: Optional[Dict[str, str]] = None,
    ) -> "ConverterConfig":
        """
        Load configuration from an optional YAML file and the environment.

        Raises:
            ConfigError: if the file cannot be read or holds invalid values
        """
        values: Dict[str, Any] = {}
        if path is not None:
            values.update(_coerce(load_config_file(Path(path)), source=str(path)))

        env = os.environ if environ is None else environ
        env_values = {}
        for suffix, key in ENV_VARS.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw:
                env_values[key] = raw
        values.update(_coerce(env_values, source="environment"))

        return cls(**values)


def _field_types() -> Dict[str, type]:
    return {f.name: type(f.default) for f in fields(ConverterConfig)}


def _coerce(values: Dict[str, Any], source: str) -> Dict[str, Any]:
    types = _field_types()
    result = {}
    for key, value in values.items():
        expected = types.get(key)
        if expected is None:
            raise ConfigError(f"Unknown setting '{key}' ({source})")
        try:
            result[key] = _convert(expected, value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for '{key}' ({source}): {value!r}") from e
    return result


def _convert(expected: type, value: Any) -> Any:
    # Strings come from the environment; other values must already have the right type
    if expected is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            flag = value.strip().lower()
            if flag in _TRUE_STRINGS:
                return True
            if flag in _FALSE_STRINGS:
                return False
        raise ValueError("expected a boolean")
    if expected is int:
        if isinstance(value, bool):
            raise TypeError("expected an integer, not a boolean")
        if isinstance(value, int):
            return value
        if isinstance(value, str):
            return int(value.strip())
        raise TypeError("expected an integer")
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise TypeError(f"expected {expected.__name__}")
    return expected(value)


def load_config_file(path: Path) -> Dict[str, Any]:
    """Parse a YAML config file into a dict of known settings."""
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e

    if not raw:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")

    known = _field_types()
    values = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning("Ignoring unknown setting '%s' in %s", key, path)
            continue
        values[key] = value
    return values
