"""Tests for the color codec"""

import pytest

from lib.color_codec import (
    ASCII_TABLE, correct_red, corrected_packed, decode_ascii, encode_ascii,
    encode_frame, hex_to_rgb, pack, unpack,
)


class TestPack:
    def test_pack_places_red_in_high_byte(self):
        """Red is the most significant byte"""
        assert pack(255, 0, 0) == 0xFF0000
        assert pack(0, 155, 222) == 0x009BDE

    def test_pack_clamps_channels(self):
        """Out-of-range channels are clamped to 0-255"""
        assert pack(300, -5, 256) == 0xFF00FF

    def test_unpack(self):
        assert unpack(0x12AB34) == (0x12, 0xAB, 0x34)


class TestRedCorrection:
    def test_bright_pure_red_gets_green_one(self):
        """Pure red above 100 gets a green component of 1"""
        assert correct_red(255, 0, 0) == (255, 1, 0)
        assert corrected_packed((255, 0, 0)) == 0xFF0100

    def test_dim_red_is_untouched(self):
        assert correct_red(100, 0, 0) == (100, 0, 0)

    def test_mixed_color_is_untouched(self):
        assert correct_red(255, 0, 1) == (255, 0, 1)
        assert correct_red(255, 2, 0) == (255, 2, 0)


@pytest.mark.parametrize("r", range(256))
def test_red_correction_over_every_red(r):
    """Pure red gets green 1 exactly when red is above 100"""
    expected_g = 1 if r > 100 else 0
    assert correct_red(r, 0, 0) == (r, expected_g, 0)


def test_red_correction_boundary():
    assert correct_red(101, 0, 0) == (101, 1, 0)
    assert correct_red(100, 0, 0) == (100, 0, 0)


@pytest.mark.parametrize("g,b", [(g, b) for g in range(0, 256, 15) for b in range(0, 256, 15) if (g, b) != (0, 0)])
def test_red_correction_identity_off_pure_red(g, b):
    for r in (0, 101, 255):
        assert correct_red(r, g, b) == (r, g, b)


class TestAsciiEncoding:
    def test_alphabet_has_64_symbols(self):
        assert len(ASCII_TABLE) == 64
        assert len(set(ASCII_TABLE)) == 64

    def test_known_values(self):
        """Most significant digit first"""
        assert encode_ascii(0) == "AAAA"
        assert encode_ascii(0xFFFFFF) == "////"
        assert encode_ascii(0xFF0100) == "/wEA"

    def test_out_of_range_raises(self):
        with pytest.raises(ValueError):
            encode_ascii(-1)
        with pytest.raises(ValueError):
            encode_ascii(0x1000000)

    def test_decode_reverses_encode(self):
        for value in (0, 1, 63, 64, 0x009BDE, 0xFFFFFF):
            assert decode_ascii(encode_ascii(value)) == value

    def test_decode_rejects_bad_input(self):
        with pytest.raises(ValueError):
            decode_ascii("AAA")
        with pytest.raises(ValueError):
            decode_ascii("AA*A")


class TestFrame:
    def test_frame_is_four_characters_per_led(self):
        frame = encode_frame([(0, 0, 0), (255, 255, 255), (255, 0, 0)])
        assert frame == "AAAA" + "////" + "/wEA"

    def test_empty_frame(self):
        assert encode_frame([]) == ""


class TestHexToRgb:
    def test_with_and_without_hash(self):
        assert hex_to_rgb("#009bde") == (0, 155, 222)
        assert hex_to_rgb("FF8000") == (255, 128, 0)

    def test_invalid_colors_are_black(self):
        """Anything that is not 6 hex digits yields black"""
        for text in ("", None, "#fff", "#gg0000", "#1234567", "red"):
            assert hex_to_rgb(text) == (0, 0, 0)


CHANNELS = (0, 1, 63, 64, 100, 101, 127, 128, 191, 192, 254, 255)


@pytest.mark.parametrize("r", CHANNELS)
def test_encoding_round_trips_over_channel_grid(r):
    """Every grid color encodes to 4 alphabet symbols and decodes back"""
    for g in CHANNELS:
        for b in CHANNELS:
            packed = pack(r, g, b)
            text = encode_ascii(packed)
            assert len(text) == 4
            assert all(char in ASCII_TABLE for char in text)
            assert decode_ascii(text) == packed
