import struct
import threading

import pytest

from char_oracle import CharOracle
from stego_lm_coding import (
    ConversionMode,
    Steganography,
    SteganographyConfig,
    SteganographyMode,
    StegoError,
)


@pytest.fixture
def make_stego(tmp_path):
    def _make(mode, conversion, **kwargs):
        config = SteganographyConfig(
            cache_dir=tmp_path,
            steganography_mode=mode,
            conversion_mode=conversion,
            compression_precision=32,
            **kwargs,
        )
        return Steganography(CharOracle(), config)

    return _make


@pytest.mark.parametrize("mode", list(SteganographyMode))
@pytest.mark.parametrize("conversion", list(ConversionMode))
def test_message_roundtrip(make_stego, mode, conversion):
    """Test every codec/conversion pair recovers the secret message."""
    stego = make_stego(mode, conversion)
    context = "it was a bright cold day in april, and the clocks were striking"
    secret = "meet me at the old bridge."

    cover_text = stego.encode(context, secret)

    assert cover_text != secret
    assert stego.decode(context, cover_text) == secret


@pytest.mark.parametrize("mode", list(SteganographyMode))
def test_utf8_message_outside_vocabulary(make_stego, mode):
    """Test UTF-8 conversion hides characters the model cannot produce."""
    stego = make_stego(mode, ConversionMode.UTF8)
    secret = "Grüße ✓ 42"

    cover_text = stego.encode("hello there", secret)

    assert stego.decode("hello there", cover_text) == secret


def test_empty_message(make_stego):
    stego = make_stego(SteganographyMode.ARITHMETIC, ConversionMode.ARITHMETIC)

    cover_text = stego.encode("hello", "")

    assert stego.decode("hello", cover_text) == ""


def test_empty_context_is_rejected(make_stego):
    stego = make_stego(SteganographyMode.HUFFMAN, ConversionMode.UTF8)

    with pytest.raises(ValueError, match="Context must not be empty"):
        stego.encode("", "secret")
    with pytest.raises(ValueError, match="Context must not be empty"):
        stego.decode("", "cover")


def test_utf8_framing(make_stego):
    stego = make_stego(SteganographyMode.ARITHMETIC, ConversionMode.UTF8)

    assert stego.message_to_bytes("hi") == b"\x00\x00\x00\x02hi"
    assert stego.bytes_to_message(b"\x00\x00\x00\x02hi\x9c\x01") == "hi"


def test_utf8_framing_errors(make_stego):
    stego = make_stego(SteganographyMode.ARITHMETIC, ConversionMode.UTF8)

    with pytest.raises(StegoError, match="too short"):
        stego.bytes_to_message(b"\x00\x01")
    with pytest.raises(StegoError, match="announced"):
        stego.bytes_to_message(struct.pack(">I", 10) + b"abc")


def test_arithmetic_conversion_compresses(make_stego):
    """Test the compressed payload is shorter than the UTF-8 payload."""
    stego = make_stego(SteganographyMode.ARITHMETIC, ConversionMode.ARITHMETIC)
    secret = "a rather long secret message with plenty of ordinary words in it."

    assert len(stego.message_to_bytes(secret)) < len(secret.encode("utf-8"))


def test_lossy_compression_is_rejected(tmp_path):
    """Test the default compression precision fails loudly instead of corrupting the message."""
    config = SteganographyConfig(cache_dir=tmp_path, conversion_mode=ConversionMode.ARITHMETIC)
    stego = Steganography(CharOracle(), config)

    assert config.compression_precision is None
    with pytest.raises(StegoError, match="cannot be compressed losslessly"):
        stego.encode("hello", "the quick brown fox jumps over the lazy dog")


def test_uncompressible_token_is_rejected(make_stego):
    stego = make_stego(SteganographyMode.HUFFMAN, ConversionMode.ARITHMETIC)

    with pytest.raises(StegoError, match="cannot be compressed losslessly"):
        stego.message_to_bytes("a|b")


def test_concurrent_runs_share_oracle(make_stego):
    """Test codec runs sharing one oracle are serialized."""
    stego = make_stego(SteganographyMode.ARITHMETIC, ConversionMode.UTF8)
    context = "the weather is"
    expected = stego.encode(context, "storm")
    results = []

    def run():
        results.append(stego.encode(context, "storm"))

    threads = [threading.Thread(target=run) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == [expected] * 4
