"""Tests for the tagged line codec and address helpers."""

import pytest

from stdio2tcp import protocol
from stdio2tcp.protocol import ProtocolError


class TestEncode:
    def test_joins_fields_with_delimiter_and_newline(self):
        assert protocol.encode(protocol.TAG_RECEIVE, "5000", "hello") == "r:5000:hello\n"

    def test_tag_only(self):
        assert protocol.encode("x") == "x\n"

    def test_address_field_may_contain_delimiter(self):
        line = protocol.encode(protocol.TAG_ADDRESS, "127.0.0.1:4242")
        assert line == "a:127.0.0.1:4242\n"

    def test_rejects_newline_inside_field(self):
        with pytest.raises(ProtocolError):
            protocol.encode(protocol.TAG_RECEIVE, "1", "two\nlines")


class TestDecode:
    def test_splits_on_first_delimiter_only(self):
        assert protocol.decode("5000:a:b:c") == ("5000", "a:b:c")

    def test_empty_remainder(self):
        assert protocol.decode("5000:") == ("5000", "")

    def test_missing_delimiter_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            protocol.decode("no delimiter here")

    def test_protocol_error_is_value_error(self):
        with pytest.raises(ValueError):
            protocol.decode("")

    def test_decode_reverses_encode(self):
        line = protocol.encode(protocol.TAG_RECEIVE, "41000", "x:y")
        tag, rest = protocol.decode(protocol.strip_eol(line))
        assert tag == "r"
        assert protocol.decode(rest) == ("41000", "x:y")


class TestStripEol:
    @pytest.mark.parametrize(
        "line,expected",
        [
            ("abc\n", "abc"),
            ("abc\r\n", "abc"),
            ("abc", "abc"),
            ("  abc  \n", "  abc  "),
            ("\n", ""),
        ],
    )
    def test_strip(self, line, expected):
        assert protocol.strip_eol(line) == expected


class TestAddresses:
    def test_format_ipv4(self):
        assert protocol.format_address("127.0.0.1", 80) == "127.0.0.1:80"

    def test_format_ipv6_is_bracketed(self):
        assert protocol.format_address("::1", 80) == "[::1]:80"

    @pytest.mark.parametrize(
        "addr,expected",
        [
            ("127.0.0.1:0", ("127.0.0.1", 0)),
            ("localhost:8080", ("localhost", 8080)),
            ("[::1]:9000", ("::1", 9000)),
            (":5000", ("", 5000)),
        ],
    )
    def test_split(self, addr, expected):
        assert protocol.split_address(addr) == expected

    @pytest.mark.parametrize(
        "addr", ["127.0.0.1", "127.0.0.1:http", "127.0.0.1:70000", "::1:80", "host:-1"]
    )
    def test_split_rejects(self, addr):
        with pytest.raises(ValueError):
            protocol.split_address(addr)
