"""Referral page tokens."""

import pytest

from mining_rewards.referrals.pagination import decode_cursor, encode_cursor, slice_page


class TestCursor:
    def test_encode_decode(self):
        assert decode_cursor(encode_cursor("user-17")) == "user-17"

    @pytest.mark.parametrize("token", ["not-base64!!", "e30=", "WzFd"])
    def test_invalid_cursor(self, token):
        with pytest.raises(ValueError):
            decode_cursor(token)


class TestSlicePage:
    def test_more_rows_than_limit(self):
        items, cursor = slice_page(["a", "b", "c"], 2)
        assert items == ["a", "b"]
        assert decode_cursor(cursor) == "b"

    def test_last_page(self):
        assert slice_page(["a", "b"], 2) == (["a", "b"], None)

    def test_empty(self):
        assert slice_page([], 10) == ([], None)
