"""
HAR (HTTP Archive) data models and streaming writer.

Implements HAR 1.2 specification. Fields that HAR does not define are
emitted with a leading underscore, as the specification requires for
custom fields.
"""

import base64
import json
import textwrap
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, BinaryIO, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlparse

HAR_VERSION = "1.2"
DEFAULT_LARGE_BODY_THRESHOLD = 1024 * 1024


@dataclass
class HarCookie:
    """Represents a cookie in HAR format."""
    name: str
    value: str
    path: Optional[str] = None
    domain: Optional[str] = None
    expires: Optional[str] = None
    httpOnly: Optional[bool] = None
    secure: Optional[bool] = None
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "value": self.value}
        if self.path is not None:
            result["path"] = self.path
        if self.domain is not None:
            result["domain"] = self.domain
        if self.expires is not None:
            result["expires"] = self.expires
        if self.httpOnly is not None:
            result["httpOnly"] = self.httpOnly
        if self.secure is not None:
            result["secure"] = self.secure
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarHeader:
    """Represents a header in HAR format."""
    name: str
    value: str
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "value": self.value}
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarQueryString:
    """Represents a query parameter in HAR format."""
    name: str
    value: str
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "value": self.value}
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarPostDataParam:
    """Represents a posted parameter in HAR format."""
    name: str
    value: Optional[str] = None
    fileName: Optional[str] = None
    contentType: Optional[str] = None
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name}
        if self.value is not None:
            result["value"] = self.value
        if self.fileName is not None:
            result["fileName"] = self.fileName
        if self.contentType is not None:
            result["contentType"] = self.contentType
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarPostData:
    """Represents posted data in HAR format."""
    mimeType: str
    params: List[HarPostDataParam] = field(default_factory=list)
    text: Optional[str] = None
    encoding: Optional[str] = None
    decodingFailed: bool = False
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"mimeType": self.mimeType}
        if self.params:
            result["params"] = [p.to_dict() for p in self.params]
        if self.text is not None:
            result["text"] = self.text
        if self.encoding is not None:
            result["_encoding"] = self.encoding
        if self.decodingFailed:
            result["_decodingFailed"] = True
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarContent:
    """Represents response content in HAR format."""
    size: int
    mimeType: str
    compression: Optional[int] = None
    text: Optional[str] = None
    encoding: Optional[str] = None
    decodingFailed: bool = False
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"size": self.size, "mimeType": self.mimeType}
        if self.compression is not None:
            result["compression"] = self.compression
        if self.text is not None:
            result["text"] = self.text
        if self.encoding is not None:
            result["encoding"] = self.encoding
        if self.decodingFailed:
            result["_decodingFailed"] = True
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarRequest:
    """Represents an HTTP request in HAR format."""
    method: str
    url: str
    httpVersion: str
    cookies: List[HarCookie] = field(default_factory=list)
    headers: List[HarHeader] = field(default_factory=list)
    queryString: List[HarQueryString] = field(default_factory=list)
    postData: Optional[HarPostData] = None
    headersSize: int = -1
    bodySize: int = -1
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "method": self.method,
            "url": self.url,
            "httpVersion": self.httpVersion,
            "cookies": [c.to_dict() for c in self.cookies],
            "headers": [h.to_dict() for h in self.headers],
            "queryString": [q.to_dict() for q in self.queryString],
            "headersSize": self.headersSize,
            "bodySize": self.bodySize,
        }
        if self.postData is not None:
            result["postData"] = self.postData.to_dict()
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarResponse:
    """Represents an HTTP response in HAR format."""
    status: int
    statusText: str
    httpVersion: str
    cookies: List[HarCookie] = field(default_factory=list)
    headers: List[HarHeader] = field(default_factory=list)
    content: HarContent = field(default_factory=lambda: HarContent(size=0, mimeType=""))
    redirectURL: str = ""
    headersSize: int = -1
    bodySize: int = -1
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "status": self.status,
            "statusText": self.statusText,
            "httpVersion": self.httpVersion,
            "cookies": [c.to_dict() for c in self.cookies],
            "headers": [h.to_dict() for h in self.headers],
            "content": self.content.to_dict(),
            "redirectURL": self.redirectURL,
            "headersSize": self.headersSize,
            "bodySize": self.bodySize,
        }
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarCache:
    """Represents cache information in HAR format."""
    beforeRequest: Optional[Dict[str, Any]] = None
    afterRequest: Optional[Dict[str, Any]] = None
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.beforeRequest is not None:
            result["beforeRequest"] = self.beforeRequest
        if self.afterRequest is not None:
            result["afterRequest"] = self.afterRequest
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarTimings:
    """Represents timing information in HAR format."""
    send: float
    wait: float
    receive: float
    blocked: float = -1
    dns: float = -1
    connect: float = -1
    ssl: float = -1
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "blocked": self.blocked,
            "dns": self.dns,
            "connect": self.connect,
            "send": self.send,
            "wait": self.wait,
            "receive": self.receive,
            "ssl": self.ssl,
        }
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarEntry:
    """Represents an HTTP entry (request/response pair) in HAR format."""
    startedDateTime: str
    time: float
    request: HarRequest
    response: HarResponse
    cache: HarCache = field(default_factory=HarCache)
    timings: HarTimings = field(default_factory=lambda: HarTimings(send=-1, wait=-1, receive=-1))
    pageref: Optional[str] = None
    serverIPAddress: Optional[str] = None
    connection: Optional[str] = None
    durationUnknown: bool = False
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "startedDateTime": self.startedDateTime,
            "time": self.time,
            "request": self.request.to_dict(),
            "response": self.response.to_dict(),
            "cache": self.cache.to_dict(),
            "timings": self.timings.to_dict(),
        }
        if self.pageref is not None:
            result["pageref"] = self.pageref
        if self.serverIPAddress is not None:
            result["serverIPAddress"] = self.serverIPAddress
        if self.connection is not None:
            result["connection"] = self.connection
        if self.durationUnknown:
            result["_durationUnknown"] = True
        if self.comment is not None:
            result["comment"] = self.comment
        return result


@dataclass
class HarCreator:
    """Represents the creator application in HAR format."""
    name: str
    version: str
    comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "version": self.version}
        if self.comment is not None:
            result["comment"] = self.comment
        return result


class HarWriter:
    """
    Writes a HAR document incrementally, one entry at a time.

    The output is byte-for-byte what ``json.dumps`` would produce for the
    whole document, without holding all entries in memory.

    Example:
        with open("out.har", "wb") as f:
            writer = HarWriter(f, HarCreator(name="chls2har", version="0.1.0"))
            writer.begin()
            writer.write_entry(entry)
            writer.close()
    """

    def __init__(self, stream: BinaryIO, creator: HarCreator, indent: Optional[int] = 2):
        self.stream = stream
        self.creator = creator
        self.indent = indent if indent and indent > 0 else None
        self.bytes_written = 0
        self.entries_written = 0
        self._suffix: Optional[str] = None
        self._closed = False

    def _emit(self, text: str) -> None:
        data = text.encode("utf-8")
        self.stream.write(data)
        self.bytes_written += len(data)

    def _dumps(self, obj: Any) -> str:
        return json.dumps(obj, indent=self.indent, ensure_ascii=False)

    def begin(self) -> None:
        """Write everything up to the opening bracket of ``log.entries``."""
        skeleton = {
            "log": {
                "version": HAR_VERSION,
                "creator": self.creator.to_dict(),
                # pages must always be present (even if empty) for Firefox DevTools compatibility
                "pages": [],
                "entries": [],
            }
        }
        text = self._dumps(skeleton)
        # "entries" is the last key, so the last "[]" is its value
        split = text.rfind("[]") + 1
        self._emit(text[:split])
        self._suffix = text[split:]

    def write_entry(self, entry: HarEntry) -> None:
        if self._suffix is None:
            raise RuntimeError("HarWriter.begin() must be called before writing entries")
        text = self._dumps(entry.to_dict())
        if self.indent:
            text = textwrap.indent(text, " " * (self.indent * 3))
            separator = ",\n" if self.entries_written else "\n"
        else:
            separator = ", " if self.entries_written else ""
        self._emit(separator + text)
        self.entries_written += 1

    def close(self) -> None:
        """Close the entries array and the document."""
        if self._closed:
            return
        if self._suffix is None:
            self.begin()
        if self.indent and self.entries_written:
            self._emit("\n" + " " * (self.indent * 2))
        self._emit(self._suffix)
        self._closed = True


def parse_cookies_from_header(header_value: str) -> List[HarCookie]:
    """Parse cookies from a Cookie header."""
    cookies = []

    if not header_value:
        return cookies

    for part in header_value.split(';'):
        part = part.strip()
        if '=' in part:
            name, value = part.split('=', 1)
            cookies.append(HarCookie(name=name.strip(), value=value.strip()))

    return cookies


def _cookie_expiry(value: str) -> str:
    try:
        return parsedate_to_datetime(value).isoformat()
    except (TypeError, ValueError, IndexError):
        return value


def parse_set_cookie_header(header_value: str) -> Optional[HarCookie]:
    """Parse a Set-Cookie header into a HarCookie."""
    if not header_value:
        return None

    parts = header_value.split(';')

    # First part is name=value
    first = parts[0].strip()
    if '=' not in first:
        return None

    name, value = first.split('=', 1)
    cookie = HarCookie(name=name.strip(), value=value.strip())

    # Attribute names are case-insensitive, their values are kept as sent
    for part in parts[1:]:
        attr, _, attr_value = part.strip().partition('=')
        attr = attr.strip().lower()
        attr_value = attr_value.strip()
        if attr == 'httponly':
            cookie.httpOnly = True
        elif attr == 'secure':
            cookie.secure = True
        elif attr == 'path':
            cookie.path = attr_value
        elif attr == 'domain':
            cookie.domain = attr_value
        elif attr == 'expires':
            cookie.expires = _cookie_expiry(attr_value)

    return cookie


def merge_set_cookies(header_values: List[str]) -> List[HarCookie]:
    """
    Parse Set-Cookie headers, merging cookies with the same name.

    Names are compared case-insensitively; a later header replaces an
    earlier one in place and keeps its own casing.
    """
    merged: List[HarCookie] = []
    positions: Dict[str, int] = {}
    for value in header_values:
        cookie = parse_set_cookie_header(value)
        if cookie is None:
            continue
        key = cookie.name.casefold()
        if key in positions:
            merged[positions[key]] = cookie
        else:
            positions[key] = len(merged)
            merged.append(cookie)
    return merged


def parse_query_string(url: str) -> List[HarQueryString]:
    """Parse query string from URL, keeping parameter order."""
    parsed = urlparse(url)
    return [
        HarQueryString(name=name, value=value)
        for name, value in parse_qsl(parsed.query, keep_blank_values=True)
    ]


def format_datetime(dt: datetime) -> str:
    """Format an aware datetime as ISO 8601 with millisecond precision."""
    return dt.isoformat(timespec="milliseconds")


def is_text_content(mime_type: str) -> bool:
    """Check if content type is text-based."""
    if not mime_type:
        return False
    mime_lower = mime_type.lower()
    text_types = ['text/', 'application/json', 'application/xml',
                  'application/javascript', 'application/x-javascript',
                  'application/ecmascript', 'application/xhtml',
                  'application/x-www-form-urlencoded', 'application/graphql',
                  'image/svg+xml', '+json', '+xml']
    return any(t in mime_lower for t in text_types)


def encode_body_for_har(
    body: bytes,
    mime_type: str,
    large_body_threshold: int = DEFAULT_LARGE_BODY_THRESHOLD,
) -> Tuple[str, Optional[str]]:
    """
    Encode body for HAR format.

    Text bodies up to the threshold are stored literally; anything larger,
    and anything that is not UTF-8 text, is stored as base64.

    Returns:
        (text, encoding) - encoding is 'base64' if encoded, None if literal
    """
    if not body:
        return "", None

    if len(body) <= large_body_threshold and is_text_content(mime_type):
        try:
            return body.decode('utf-8'), None
        except UnicodeDecodeError:
            pass

    return base64.b64encode(body).decode('ascii'), "base64"
