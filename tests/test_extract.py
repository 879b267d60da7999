"""Tests for credential extraction helpers."""

from __future__ import annotations

import pytest

from wasteops.auth.extract import extract_bearer_token, extract_level, extract_socket_token
from wasteops.errors import InvalidRequest, Unauthenticated


class TestBearerHeader:
    def test_valid_header(self):
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_surrounding_whitespace_is_trimmed(self):
        assert extract_bearer_token("  Bearer tok  ") == "tok"

    @pytest.mark.parametrize(
        "header",
        [None, "", "Bearer ", "Bearer", "Basic abcdef", "bearer tok", "Bearer a b", "tok"],
    )
    def test_rejected_headers(self, header):
        with pytest.raises(Unauthenticated):
            extract_bearer_token(header)


class TestSocketProtocolHeader:
    @pytest.mark.parametrize("header", ["Bearer, tok", "Bearer,tok", " Bearer ,  tok "])
    def test_valid_header(self, header):
        assert extract_socket_token(header) == "tok"

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer, ", "Basic, tok", "tok, Bearer"])
    def test_rejected_headers(self, header):
        with pytest.raises(Unauthenticated):
            extract_socket_token(header)


class TestLevel:
    def test_level_from_first_audience(self):
        assert extract_level(["level:9", "level:1"]) == 9

    @pytest.mark.parametrize("aud", [None, []])
    def test_missing_audience(self, aud):
        with pytest.raises(InvalidRequest, match="aud"):
            extract_level(aud)

    def test_audience_without_separator(self):
        with pytest.raises(InvalidRequest):
            extract_level(["level"])

    def test_non_integer_level(self):
        with pytest.raises(Unauthenticated):
            extract_level(["level:admin"])
