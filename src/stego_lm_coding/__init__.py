"""
Language-model steganography library for hiding information in text.

This library hides secret messages in LLM-generated text with arithmetic or
per-step Huffman coding over next-token distributions, and compresses text
against the same distributions.
"""

from .arithmetic import ArithmeticCodec
from .config import ConversionMode, SteganographyConfig, SteganographyMode
from .errors import (
    BitLengthError,
    HuffmanDecodeError,
    MissingSentinelError,
    OracleError,
    StegoError,
)
from .huffman import HuffmanCodec, HuffmanCoding
from .oracle import ProbabilityOracle
from .steganography import Steganography

__version__ = "0.1.0"
__all__ = [
    "ArithmeticCodec",
    "BitLengthError",
    "ConversionMode",
    "HuffmanCodec",
    "HuffmanCoding",
    "HuffmanDecodeError",
    "MissingSentinelError",
    "OracleError",
    "ProbabilityOracle",
    "Steganography",
    "SteganographyConfig",
    "SteganographyMode",
    "StegoError",
]
