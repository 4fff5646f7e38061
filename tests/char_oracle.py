"""Deterministic character-level ProbabilityOracle for codec tests."""

from typing import List, Sequence

from stego_lm_coding.oracle import ProbabilityOracle, find_sentinel_token

EOG = "<eog>"
MESSAGE_CHARS = "abcdefghijklmnopqrstuvwxyz .,!?'"
# Least likely tokens. During compression the last kept sub-interval belongs
# to the sentinel, so the least likely kept token cannot be compressed.
FILLER_CHARS = "~^|"
# Multi-character token with zero probability, produced only by merging tokenization
MERGED = "th"


class CharOracle(ProbabilityOracle):
    """One token per character; the distribution depends on the last token only.

    Token 0 is a special end-of-generation token with the highest raw weight,
    so codecs only work correctly if they suppress it. ``.`` is always the most
    likely non-special token and no more than twice as likely as the runner-up.
    """

    def __init__(self, merge_pairs: bool = False):
        super().__init__()
        self.vocab = [EOG, "\x00"] + list(MESSAGE_CHARS) + list(FILLER_CHARS) + [MERGED]
        self.ids = {text: token for token, text in enumerate(self.vocab)}
        self.merge_pairs = merge_pairs
        self.history: List[int] = []
        self.calls = 0
        self.resets = 0
        self.sentinel = find_sentinel_token(self)

    def tokenize(self, text: str) -> List[int]:
        tokens = []
        i = 0
        while i < len(text):
            if self.merge_pairs and text.startswith(MERGED, i):
                tokens.append(self.ids[MERGED])
                i += len(MERGED)
            else:
                tokens.append(self.ids[text[i]])
                i += 1
        return tokens

    def detokenize(self, tokens: Sequence[int]) -> str:
        return "".join(self.vocab[token] for token in tokens)

    def weights(self, last: int) -> List[float]:
        weights = [0.0] * len(self.vocab)
        weights[self.ids[EOG]] = 3.0
        for char in MESSAGE_CHARS:
            token = self.ids[char]
            weights[token] = 1.05 + 0.9 * ((last * 31 + token * 17) % 97) / 97
        weights[self.ids["."]] = 2.0
        for weight, char in zip((0.5, 0.4, 0.3), FILLER_CHARS):
            weights[self.ids[char]] = weight
        return weights

    def next_token_probabilities(self, tokens: Sequence[int]) -> List[float]:
        self.history.extend(tokens)
        self.calls += 1
        weights = self.weights(self.history[-1] if self.history else 0)
        total = sum(weights)
        return [weight / total for weight in weights]

    def is_special(self, token: int) -> bool:
        return token == self.ids[EOG]

    def end_of_generation_token_id(self) -> int:
        return self.ids[EOG]

    def sentinel_token_id(self) -> int:
        return self.sentinel

    def vocabulary_size(self) -> int:
        return len(self.vocab)

    def reset(self) -> None:
        self.history = []
        self.resets += 1
