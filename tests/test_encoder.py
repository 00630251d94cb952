"""Tests for encoding canonical transactions as HAR entries."""

import base64

from chls2har.encoder import HarEncoder
from chls2har.normalizer import TransactionNormalizer
from conftest import gzipped, make_record
from trace_parser.models import TimingMarks


def encode(record=None, **encoder_options):
    record = record if record is not None else make_record()
    tx = TransactionNormalizer().normalize(record)
    return HarEncoder(**encoder_options).encode(tx).to_dict()


class TestHarEncoder:
    def test_basic_entry(self) -> None:
        entry = encode()
        request = entry["request"]
        response = entry["response"]

        assert entry["startedDateTime"] == "2023-11-14T22:13:20.123+00:00"
        assert entry["serverIPAddress"] == "93.184.216.34"
        assert entry["connection"] == "conn-1"
        assert request["method"] == "GET"
        assert request["url"] == "https://example.com/items/0?page=1"
        assert request["httpVersion"] == "HTTP/1.1"
        assert request["headers"] == [
            {"name": "Host", "value": "example.com"},
            {"name": "User-Agent", "value": "pytest"},
        ]
        assert request["queryString"] == [{"name": "page", "value": "1"}]
        assert request["bodySize"] == 0
        assert "postData" not in request
        assert response["status"] == 200
        assert response["statusText"] == "OK"
        assert response["content"] == {"size": 5, "mimeType": "text/plain", "text": "hello"}
        assert response["bodySize"] == 5
        assert entry["cache"] == {}

    def test_time_is_sum_of_phases(self) -> None:
        entry = encode()
        timings = entry["timings"]

        assert timings == {
            "blocked": -1,
            "dns": 1.0,
            "connect": 2.0,
            "send": 0.5,
            "wait": 10.0,
            "receive": 1.5,
            "ssl": -1,
        }
        assert entry["time"] == 15.0
        assert "_durationUnknown" not in entry

    def test_ssl_not_counted_twice(self) -> None:
        record = make_record(timings=TimingMarks(dns=0, connect=4000, ssl=3000, send=0, wait=1000, receive=0))
        entry = encode(record)

        assert entry["timings"]["connect"] == 7.0
        assert entry["timings"]["ssl"] == 3.0
        assert entry["time"] == 8.0

    def test_unknown_duration(self) -> None:
        entry = encode(make_record(timings=TimingMarks()))

        assert entry["time"] == 0
        assert entry["_durationUnknown"] is True
        assert set(entry["timings"].values()) == {-1}

    def test_elapsed_only(self) -> None:
        entry = encode(make_record(timings=TimingMarks(elapsed=250_000)))

        assert entry["time"] == 250.0
        assert entry["timings"]["wait"] == 250.0
        assert entry["timings"]["send"] == -1

    def test_timezone_offset_kept(self) -> None:
        entry = encode(make_record(tz_offset=330))
        assert entry["startedDateTime"] == "2023-11-15T03:43:20.123+05:30"

    def test_large_body_is_base64(self) -> None:
        body = b"a" * (5 * 1024 * 1024)
        content = encode(make_record(response_body=body))["response"]["content"]

        assert content["encoding"] == "base64"
        assert content["size"] == len(body)
        assert base64.b64decode(content["text"]) == body

    def test_small_text_body_is_literal(self) -> None:
        content = encode(make_record(response_body=b"0123456789"))["response"]["content"]

        assert content["text"] == "0123456789"
        assert "encoding" not in content

    def test_threshold_option(self) -> None:
        content = encode(make_record(response_body=b"0123456789"), large_body_threshold=4)["response"]["content"]
        assert content["encoding"] == "base64"

    def test_decoded_body_reports_compression(self) -> None:
        plain = b"hello world " * 100
        raw = gzipped(plain)
        record = make_record(
            response_headers=[("Content-Type", "text/plain"), ("Content-Encoding", "gzip")],
            response_body=raw,
        )
        entry = encode(record)
        content = entry["response"]["content"]

        assert content["text"] == plain.decode()
        assert content["size"] == len(plain)
        assert content["compression"] == len(plain) - len(raw)
        assert content["comment"] == "Decoded from Content-Encoding: gzip"
        assert entry["response"]["bodySize"] == len(raw)
        assert "_decodingFailed" not in content

    def test_decoding_failure_is_flagged(self) -> None:
        raw = b"definitely not gzip"
        record = make_record(
            response_headers=[("Content-Type", "text/plain"), ("Content-Encoding", "gzip")],
            response_body=raw,
        )
        content = encode(record)["response"]["content"]

        assert content["_decodingFailed"] is True
        assert content["text"] == raw.decode()
        assert content["size"] == len(raw)
        assert "compression" not in content
        assert content["comment"].startswith("Not decoded, raw bytes kept")

    def test_no_response(self) -> None:
        record = make_record(has_response=False, response_headers=[], response_body=None)
        response = encode(record)["response"]

        assert response["status"] == 0
        assert response["comment"] == "No response recorded"
        assert response["content"] == {"size": 0, "mimeType": ""}

    def test_form_post(self) -> None:
        record = make_record(
            method="POST",
            request_headers=[("Content-Type", "application/x-www-form-urlencoded")],
            request_body=b"a=1&b=two+words",
        )
        request = encode(record)["request"]

        assert request["bodySize"] == len(b"a=1&b=two+words")
        assert request["postData"] == {
            "mimeType": "application/x-www-form-urlencoded",
            "params": [{"name": "a", "value": "1"}, {"name": "b", "value": "two words"}],
            "text": "a=1&b=two+words",
        }

    def test_binary_post_is_base64(self) -> None:
        record = make_record(
            method="PUT",
            request_headers=[("Content-Type", "application/octet-stream")],
            request_body=b"\x00\x01\x02",
        )
        post_data = encode(record)["request"]["postData"]

        assert post_data["_encoding"] == "base64"
        assert post_data["text"] == "AAEC"

    def test_cookies(self) -> None:
        record = make_record(
            request_headers=[("Cookie", "a=1; b=2"), ("cookie", "c=3")],
            response_headers=[
                ("Content-Type", "text/plain"),
                ("Set-Cookie", "sid=old; Path=/"),
                ("set-cookie", "SID=New; Path=/App; HttpOnly"),
            ],
        )
        entry = encode(record)

        assert [c["name"] for c in entry["request"]["cookies"]] == ["a", "b", "c"]
        assert entry["response"]["cookies"] == [
            {"name": "SID", "value": "New", "path": "/App", "httpOnly": True},
        ]

    def test_redirect_url(self) -> None:
        record = make_record(
            status=302,
            status_text="Found",
            response_headers=[("Location", "https://example.com/login")],
            response_body=b"",
        )
        assert encode(record)["response"]["redirectURL"] == "https://example.com/login"

    def test_header_sizes(self) -> None:
        http1 = encode()
        http2 = encode(make_record(protocol="HTTP/2.0"))

        request_head = (
            "GET /items/0?page=1 HTTP/1.1\r\n"
            "Host: example.com\r\n"
            "User-Agent: pytest\r\n"
            "\r\n"
        )
        assert http1["request"]["headersSize"] == len(request_head)
        assert http1["response"]["headersSize"] == len("HTTP/1.1 200 OK\r\nContent-Type: text/plain\r\n\r\n")
        assert http2["request"]["headersSize"] == -1
        assert http2["response"]["headersSize"] == -1

    def test_exclude_response_body(self) -> None:
        content = encode(include_response_body=False)["response"]["content"]

        assert content == {"size": 5, "mimeType": "text/plain"}
