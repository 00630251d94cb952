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
Data models for recorded session trace transactions.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

# Duration value meaning "this phase was not measured".
UNKNOWN = -1

Header = Tuple[str, str]


def find_header(headers: List[Header], name: str, default: str = "") -> str:
    """Get the first header value matching name (case-insensitive)."""
    wanted = name.lower()
    for key, value in headers:
        if key.lower() == wanted:
            return value
    return default


def find_all_headers(headers: List[Header], name: str) -> List[str]:
    """Get every header value matching name (case-insensitive), in order."""
    wanted = name.lower()
    return [value for key, value in headers if key.lower() == wanted]


@dataclass
class TimingMarks:
    """
    Recorded phase durations in microseconds.

    Version 1 traces only carry a cumulative ``elapsed`` value; version 2
    traces carry the individual phases. Any value may be UNKNOWN.
    """

    dns: int = UNKNOWN
    connect: int = UNKNOWN
    ssl: int = UNKNOWN
    send: int = UNKNOWN
    wait: int = UNKNOWN
    receive: int = UNKNOWN
    elapsed: Optional[int] = None

    @property
    def phases(self) -> Tuple[int, int, int, int, int, int]:
        return (self.dns, self.connect, self.ssl, self.send, self.wait, self.receive)

    @property
    def is_cumulative(self) -> bool:
        """True when only a single elapsed value was recorded."""
        return self.elapsed is not None


@dataclass
class TransactionRecord:
    """One captured request/response pair as stored in a trace."""

    index: int = 0
    started_us: int = 0
    tz_offset: Optional[int] = None  # minutes east of UTC
    connection_id: str = ""
    remote_address: str = ""
    method: str = ""
    url: str = ""
    protocol: str = "HTTP/1.1"
    request_headers: List[Header] = field(default_factory=list)
    request_body: Optional[bytes] = None
    has_response: bool = True
    status: int = 0
    status_text: str = ""
    response_headers: List[Header] = field(default_factory=list)
    response_body: Optional[bytes] = None
    timings: TimingMarks = field(default_factory=TimingMarks)
    lossy_text: bool = False

    def __repr__(self) -> str:
        resp = f"{self.status}" if self.has_response else "No response"
        return f"TransactionRecord(#{self.index} {self.method} {self.url} -> {resp})"
