"""
Encoder from canonical transactions to HAR entries.
"""

from typing import List, Optional
from urllib.parse import parse_qsl, urlparse

from trace_parser.models import find_all_headers

from .har import (
    DEFAULT_LARGE_BODY_THRESHOLD,
    HarCache,
    HarContent,
    HarEntry,
    HarHeader,
    HarPostData,
    HarPostDataParam,
    HarRequest,
    HarResponse,
    HarTimings,
    encode_body_for_har,
    format_datetime,
    merge_set_cookies,
    parse_cookies_from_header,
    parse_query_string,
)
from .normalizer import DEFAULT_MIME_TYPE, CanonicalBody, CanonicalTransaction


class HarEncoder:
    """Converts CanonicalTransactions to HAR entries."""

    def __init__(
        self,
        large_body_threshold: int = DEFAULT_LARGE_BODY_THRESHOLD,
        include_response_body: bool = True,
    ):
        """
        Args:
            large_body_threshold: Bodies larger than this many bytes are stored as base64
            include_response_body: Whether to include response bodies in HAR
        """
        self.large_body_threshold = large_body_threshold
        self.include_response_body = include_response_body

    def encode(self, tx: CanonicalTransaction) -> HarEntry:
        har_request = self._build_request(tx)
        har_response = self._build_response(tx) if tx.has_response else self._empty_response()

        t = tx.timings
        har_timings = HarTimings(
            blocked=t.blocked,
            dns=t.dns,
            connect=t.connect,
            ssl=t.ssl,
            send=t.send,
            wait=t.wait,
            receive=t.receive,
        )

        return HarEntry(
            startedDateTime=format_datetime(tx.started),
            time=0 if t.all_unknown else t.total,
            request=har_request,
            response=har_response,
            cache=HarCache(),
            timings=har_timings,
            serverIPAddress=tx.server_ip or None,
            connection=tx.connection_id or None,
            durationUnknown=t.all_unknown,
        )

    def _build_request(self, tx: CanonicalTransaction) -> HarRequest:
        headers = [HarHeader(name=k, value=v) for k, v in tx.request_headers]

        cookies = []
        for cookie_header in find_all_headers(tx.request_headers, 'cookie'):
            cookies.extend(parse_cookies_from_header(cookie_header))

        post_data = None
        if tx.request_body is not None:
            post_data = self._build_post_data(tx.request_body)

        return HarRequest(
            method=tx.method,
            url=tx.url,
            httpVersion=tx.http_version,
            cookies=cookies,
            headers=headers,
            queryString=parse_query_string(tx.url),
            postData=post_data,
            headersSize=-1 if tx.is_http2 else self._request_headers_size(tx),
            bodySize=tx.request_body.wire_size if tx.request_body is not None else 0,
        )

    def _build_response(self, tx: CanonicalTransaction) -> HarResponse:
        headers = [HarHeader(name=k, value=v) for k, v in tx.response_headers]
        cookies = merge_set_cookies(find_all_headers(tx.response_headers, 'set-cookie'))

        body = tx.response_body
        if body is None:
            mime_type = tx.get_response_header('content-type') or DEFAULT_MIME_TYPE
            content = HarContent(size=0, mimeType=mime_type)
        else:
            content = self._build_content(body)

        return HarResponse(
            status=tx.status,
            statusText=tx.status_text,
            httpVersion=tx.http_version,
            cookies=cookies,
            headers=headers,
            content=content,
            redirectURL=tx.get_response_header('location'),
            headersSize=-1 if tx.is_http2 else self._response_headers_size(tx),
            bodySize=body.wire_size if body is not None else 0,
        )

    def _empty_response(self) -> HarResponse:
        """Create an empty response for requests that never got one."""
        return HarResponse(
            status=0,
            statusText="",
            httpVersion="",
            content=HarContent(size=0, mimeType=""),
            comment="No response recorded",
        )

    def _build_post_data(self, body: CanonicalBody) -> HarPostData:
        text, encoding = encode_body_for_har(body.content, body.mime_type, self.large_body_threshold)

        params: List[HarPostDataParam] = []
        if encoding is None and 'application/x-www-form-urlencoded' in body.mime_type.lower():
            for name, value in parse_qsl(text, keep_blank_values=True):
                params.append(HarPostDataParam(name=name, value=value))

        return HarPostData(
            mimeType=body.mime_type,
            params=params,
            text=text,
            encoding=encoding,
            decodingFailed=body.decoding_failed,
            comment=self._encoding_comment(body),
        )

    def _build_content(self, body: CanonicalBody) -> HarContent:
        if not self.include_response_body:
            return HarContent(
                size=body.size,
                mimeType=body.mime_type,
                compression=body.compression_saved,
                decodingFailed=body.decoding_failed,
                comment=self._encoding_comment(body),
            )

        text, encoding = encode_body_for_har(body.content, body.mime_type, self.large_body_threshold)
        return HarContent(
            size=body.size,
            mimeType=body.mime_type,
            compression=body.compression_saved,
            text=text,
            encoding=encoding,
            decodingFailed=body.decoding_failed,
            comment=self._encoding_comment(body),
        )

    def _encoding_comment(self, body: CanonicalBody) -> Optional[str]:
        if not body.was_encoded:
            return None
        if body.decoding_failed:
            return f"Not decoded, raw bytes kept ({body.encoding_summary}): {body.decoding_error}"
        return f"Decoded from {body.encoding_summary}"

    def _request_headers_size(self, tx: CanonicalTransaction) -> int:
        """Size of the HTTP/1.x request line and headers as sent."""
        parsed = urlparse(tx.url)
        target = parsed.path or "/"
        if parsed.query:
            target += "?" + parsed.query
        lines = [f"{tx.method} {target} {tx.http_version}"]
        for name, value in tx.request_headers:
            lines.append(f"{name}: {value}")
        lines.append("")
        lines.append("")
        return len("\r\n".join(lines).encode('utf-8'))

    def _response_headers_size(self, tx: CanonicalTransaction) -> int:
        """Size of the HTTP/1.x status line and headers as sent."""
        lines = [f"{tx.http_version} {tx.status} {tx.status_text}"]
        for name, value in tx.response_headers:
            lines.append(f"{name}: {value}")
        lines.append("")
        lines.append("")
        return len("\r\n".join(lines).encode('utf-8'))
