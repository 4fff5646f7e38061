"""
Secret message <-> cover text.

The Steganography class ties the pieces together: the secret message is
turned into bytes (compressed with the arithmetic codec or framed UTF-8),
and the bytes are hidden in a continuation of the context with the selected
steganographic codec.
"""

import logging
import struct
from typing import Optional

from .arithmetic import ArithmeticCodec
from .config import ConversionMode, SteganographyConfig, SteganographyMode
from .errors import StegoError
from .huffman import HuffmanCodec
from .oracle import ProbabilityOracle

# Big-endian unsigned 32-bit byte count in front of UTF-8 payloads
_LENGTH_PREFIX = struct.Struct(">I")


class Steganography:
    """Hide secret messages in language-model generated text."""

    def __init__(self, oracle: ProbabilityOracle, config: Optional[SteganographyConfig] = None):
        """Initialize both codecs around a single oracle.

        Args:
            oracle: Source of tokenization and next-token probabilities
            config: Configuration object. If None, uses default configuration
        """
        self.config = config or SteganographyConfig()
        self.oracle = oracle
        self.arithmetic = ArithmeticCodec(
            oracle,
            temperature=self.config.temperature,
            top_k=self.config.top_k,
            precision=self.config.precision,
            compression_precision=self.config.compression_precision,
        )
        self.huffman = HuffmanCodec(oracle, bits_per_token=self.config.bits_per_token)
        self.logger = logging.getLogger("stego_lm_coding.steganography")

    def message_to_bytes(self, secret_message: str) -> bytes:
        """Turn the secret message into the bytes to hide.

        Raises:
            StegoError: If arithmetic conversion does not restore the message,
                e.g. because the model gives some of its tokens too little
                probability at the compression precision.
        """
        if self.config.conversion_mode is ConversionMode.ARITHMETIC:
            data = self.arithmetic.compress(secret_message)
            if self.arithmetic.decompress(data) != secret_message:
                raise StegoError(
                    "Secret message cannot be compressed losslessly with this model, "
                    "use UTF-8 conversion or a higher compression precision"
                )
            return data
        data = secret_message.encode("utf-8")
        return _LENGTH_PREFIX.pack(len(data)) + data

    def bytes_to_message(self, data: bytes) -> str:
        """Inverse of :meth:`message_to_bytes`; trailing filler bytes are ignored."""
        if self.config.conversion_mode is ConversionMode.ARITHMETIC:
            return self.arithmetic.decompress(data)

        if len(data) < _LENGTH_PREFIX.size:
            raise StegoError(f"Decoded payload is too short for a length prefix: {len(data)} bytes")
        (length,) = _LENGTH_PREFIX.unpack_from(data)
        payload = data[_LENGTH_PREFIX.size : _LENGTH_PREFIX.size + length]
        if len(payload) < length:
            raise StegoError(f"Decoded payload has {len(payload)} of {length} announced bytes")
        return payload.decode("utf-8")

    @staticmethod
    def _check_context(context: str) -> None:
        if not context:
            raise ValueError("Context must not be empty: an empty context selects compression mode")

    def encode(self, context: str, secret_message: str) -> str:
        """Hide a secret message in a continuation of the context.

        Args:
            context: The text the cover text continues
            secret_message: The message to hide

        Returns:
            The cover text, without the context
        """
        self._check_context(context)
        plain_bits = self.message_to_bytes(secret_message)
        # Encryption is not applied, cipher bits are the plain bits
        cipher_bits = plain_bits
        self.logger.info(
            f"Hiding {len(cipher_bits)} bytes with {self.config.steganography_mode.value} coding"
        )

        if self.config.steganography_mode is SteganographyMode.HUFFMAN:
            return self.huffman.encode(context, cipher_bits)
        return self.arithmetic.encode(context, cipher_bits)

    def decode(self, context: str, cover_text: str) -> str:
        """Recover the secret message hidden in a cover text by :meth:`encode`."""
        self._check_context(context)
        if self.config.steganography_mode is SteganographyMode.HUFFMAN:
            cipher_bits = self.huffman.decode(context, cover_text)
        else:
            cipher_bits = self.arithmetic.decode(context, cover_text)
        self.logger.info(f"Recovered {len(cipher_bits)} bytes from the cover text")
        return self.bytes_to_message(cipher_bits)
