"""
Interface between the codecs and a language model.

The codecs never talk to a model directly. They consume a
:class:`ProbabilityOracle`, which tokenizes text, detokenizes token ids and
returns the next-token distribution over the whole vocabulary.

An oracle is stateful: after the first call of a codec run it is only given
the token sampled in the previous step and must extend its own history. An
oracle instance must therefore not be shared by concurrent codec runs, and it
is reset at the start of every encode/decode call.
"""

import math
import threading
from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

from .errors import MissingSentinelError

SENTINEL_TEXT = "\x00"
END_OF_SENTENCE_MARKS = (".", "!", "?")


class ProbabilityOracle(ABC):
    """Next-token probability source backed by a language model."""

    def __init__(self):
        # Held by a codec for the whole of an encode/decode call
        self.lock = threading.RLock()

    @abstractmethod
    def tokenize(self, text: str) -> List[int]:
        """Split text into token ids. Empty text yields an empty list."""

    @abstractmethod
    def detokenize(self, tokens: Sequence[int]) -> str:
        """Join token ids back into text."""

    @abstractmethod
    def next_token_probabilities(self, tokens: Sequence[int]) -> List[float]:
        """Append ``tokens`` to the history and return the next-token distribution.

        Returns:
            A list of ``vocabulary_size()`` normalized probabilities, indexed by
            token id.
        """

    @abstractmethod
    def is_special(self, token: int) -> bool:
        """Whether the token is an end-of-generation or control token."""

    @abstractmethod
    def end_of_generation_token_id(self) -> int:
        pass

    @abstractmethod
    def sentinel_token_id(self) -> int:
        """Token id whose detokenization is ASCII NUL."""

    @abstractmethod
    def vocabulary_size(self) -> int:
        pass

    @abstractmethod
    def reset(self) -> None:
        """Forget the token history so the next call starts a new sequence."""

    def suppress_special_tokens(self, probabilities: List[float]) -> None:
        """Zero out the probabilities of special tokens, in place."""
        for token in range(len(probabilities)):
            if self.is_special(token):
                probabilities[token] = 0.0

    def is_end_of_sentence(self, token: int) -> bool:
        """Whether the token's text ends with ``.``, ``!`` or ``?``."""
        return self.detokenize([token]).endswith(END_OF_SENTENCE_MARKS)


def find_sentinel_token(oracle: ProbabilityOracle) -> int:
    """Find the token that detokenizes to ASCII NUL.

    Raises:
        MissingSentinelError: If no such token exists in the vocabulary.
    """
    for token in range(oracle.vocabulary_size()):
        if oracle.detokenize([token]) == SENTINEL_TEXT:
            return token
    raise MissingSentinelError("LLM vocabulary doesn't contain ASCII NUL character")


def rank_tokens(probabilities: Sequence[float], temperature: float = 1.0) -> List[Tuple[int, float]]:
    """Sort tokens by descending probability, each scaled by 1/temperature.

    The sort is stable, so equally likely tokens keep ascending id order.
    """
    scale = 1.0 / temperature
    ranked = [(token, p * scale) for token, p in enumerate(probabilities)]
    ranked.sort(key=lambda item: item[1], reverse=True)
    return ranked


def top_token(probabilities: Sequence[float]) -> int:
    """Most likely token, the lowest id on ties."""
    return max(range(len(probabilities)), key=probabilities.__getitem__)


def softmax(values: Sequence[float]) -> List[float]:
    """Normalize logits or log-probabilities into probabilities."""
    if not values:
        return []
    maximum = max(values)
    exps = [math.exp(value - maximum) for value in values]
    total = sum(exps)
    return [value / total for value in exps]
