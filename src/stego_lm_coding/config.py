"""
Configuration management for language-model steganography.

This module contains the configuration class that holds all parameters
used by the codecs, the orchestrator and the OpenAI-backed oracle.
"""

import enum
import tempfile
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field


class SteganographyMode(enum.Enum):
    """Codec used to hide cipher bits in the cover text."""

    ARITHMETIC = "arithmetic"
    HUFFMAN = "huffman"


class ConversionMode(enum.Enum):
    """How the secret message is turned into bits before hiding it."""

    ARITHMETIC = "arithmetic"
    UTF8 = "utf8"


@dataclass
class SteganographyConfig:
    """Configuration object for steganography parameters."""

    # Model configuration
    model: str = "gpt-3.5-turbo-1106"

    # API parameters for token probability requests
    api_params: Dict[str, Any] = field(default_factory=lambda: {
        "seed": 42,
        "max_completion_tokens": 1,
        "logprobs": True,
        "top_logprobs": 20,
        "temperature": 1.0,
    })

    # Cache configuration
    cache_dir: Optional[Path] = None

    # API retry configuration
    max_retries: int = 3

    # Modes
    steganography_mode: SteganographyMode = SteganographyMode.ARITHMETIC
    conversion_mode: ConversionMode = ConversionMode.ARITHMETIC

    # Arithmetic coding
    temperature: float = 0.9
    top_k: int = 300
    precision: int = 16
    compression_precision: Optional[int] = None  # None: ceil(log2(vocabulary size))

    # Huffman coding
    bits_per_token: int = 3

    def __post_init__(self):
        """Coerce enum fields, validate ranges and create the cache directory."""
        self.steganography_mode = SteganographyMode(self.steganography_mode)
        self.conversion_mode = ConversionMode(self.conversion_mode)

        if self.temperature <= 0:
            raise ValueError(f"temperature must be positive, got {self.temperature}")
        if self.top_k < 2:
            raise ValueError(f"top_k must be at least 2, got {self.top_k}")
        for name in ("precision", "compression_precision"):
            value = getattr(self, name)
            if value is not None and not 1 <= value <= 62:
                raise ValueError(f"{name} must be between 1 and 62, got {value}")
        if self.bits_per_token < 1:
            raise ValueError(f"bits_per_token must be at least 1, got {self.bits_per_token}")

        if self.cache_dir is None:
            # Create cache directory in temporary directory
            temp_dir = Path(tempfile.gettempdir())
            self.cache_dir = temp_dir / "stego_lm_coding_cache" / "openai"
        self.cache_dir = Path(self.cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def get_api_params_with_model(self) -> Dict[str, Any]:
        """Get API parameters with model included."""
        params = self.api_params.copy()
        params["model"] = self.model
        return params

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "SteganographyConfig":
        """Create config from dictionary, ignoring unknown keys."""
        known = {key: value for key, value in config_dict.items() if key in cls.__dataclass_fields__}
        return cls(**known)
