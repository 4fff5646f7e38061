"""
Exception hierarchy for the language-model steganography library.
"""

from typing import Optional


class StegoError(Exception):
    """Base class for all errors raised by this library."""


class BitLengthError(StegoError, ValueError):
    """Raised when a bit vector has a length an operation cannot accept."""


class MissingSentinelError(StegoError, LookupError):
    """Raised when the vocabulary has no token detokenizing to ASCII NUL."""


class OracleError(StegoError, RuntimeError):
    """Raised when the probability oracle cannot produce a distribution."""


class HuffmanDecodeError(StegoError, ValueError):
    """Raised when a cover text token has no code in the step's Huffman table."""

    def __init__(self, position: int, token: int, message: Optional[str] = None):
        self.position = position
        self.token = token
        super().__init__(
            message
            or f"Cover text cannot be decoded: token {token} at position {position} "
            "is not among the candidates of its step"
        )
