"""
Arithmetic coding steganography.

This module contains the ArithmeticCodec class that hides cipher bits in the
token choices of a language model by narrowing a single integer interval over
the whole token sequence. Run with an empty context, the same codec compresses
a message against the unmodulated model distribution (decode) and restores it
again (encode).
"""

import itertools
import logging
import math
from typing import Callable, List, Optional, Sequence, Tuple

from .bits import (
    bit_string,
    bits_from_bytes,
    bits_from_bytes_strip_padding,
    bits_from_int,
    bytes_from_bits_truncated,
    bytes_with_padding_from_bits,
    int_from_bits,
    num_same_from_beg,
)
from .errors import OracleError
from .oracle import SENTINEL_TEXT, ProbabilityOracle, rank_tokens, top_token


class ArithmeticCodec:
    """Arithmetic coding over next-token distributions of a ProbabilityOracle."""

    def __init__(
        self,
        oracle: ProbabilityOracle,
        temperature: float = 0.9,
        top_k: int = 300,
        precision: int = 16,
        compression_precision: Optional[int] = None,
    ):
        """Initialize the codec.

        Args:
            oracle: Source of tokenization and next-token probabilities
            temperature: Default temperature for steganographic encode/decode
            top_k: Default maximum number of candidate tokens per step
            precision: Default number of bits of the coding interval
            compression_precision: Precision for compress/decompress. If None,
                ceil(log2(vocabulary size)) is used
        """
        self.oracle = oracle
        self.temperature = temperature
        self.top_k = top_k
        self.precision = precision
        self.compression_precision = compression_precision
        self.logger = logging.getLogger("stego_lm_coding.arithmetic")

    def _get_probabilities(self, tokens: Sequence[int]) -> List[float]:
        probabilities = list(self.oracle.next_token_probabilities(tokens))
        self.oracle.suppress_special_tokens(probabilities)
        return probabilities

    def _compute_interval_division(
        self,
        probabilities: Sequence[float],
        cur_interval: List[int],
        temperature: float,
        top_k: int,
        use_sentinel: bool = False,
    ) -> Tuple[List[int], List[int], List[Tuple[int, float]]]:
        """Partition the current interval among the most likely next tokens.

        Args:
            probabilities: Next-token distribution with special tokens suppressed
            cur_interval: Current interval [bottom, top) as [int, int]
            temperature: Probabilities are scaled by 1/temperature before ranking
            top_k: Upper bound for the number of candidates
            use_sentinel: Give the last sub-interval to the sentinel token

        Returns:
            Tuple of (cum_probs, tokens_temp, ranked) where:
            - cum_probs: Absolute upper bounds of the sub-intervals
            - tokens_temp: Token of each sub-interval in the same order
            - ranked: All (token, scaled probability) pairs, most likely first
        """
        ranked = rank_tokens(probabilities, temperature)

        # Cutoff low probabilities that would be rounded to 0
        cur_int_range = cur_interval[1] - cur_interval[0]
        if cur_int_range <= 0:
            raise ValueError("Interval has collapsed")
        cur_threshold = 1.0 / cur_int_range
        above_threshold = sum(1 for _, p in ranked if p >= cur_threshold)
        k = min(max(2, above_threshold), top_k, len(ranked))

        # Rescale to correct range
        probs_temp = [p for _, p in ranked[:k]]
        probs_sum = sum(probs_temp)
        if probs_sum <= 0:
            raise OracleError("No probability mass left among the candidate tokens")

        # Round probabilities to integers given precision
        probs_temp_int = [round(p / probs_sum * cur_int_range) for p in probs_temp]
        cum_probs = list(itertools.accumulate(probs_temp_int))

        # Remove any elements from the bottom if rounding caused total prob to be too large
        overfill = sum(1 for cp in cum_probs if cp > cur_int_range)
        if overfill:
            cum_probs = cum_probs[:-overfill]

        # Add any mass to the top if removing/rounding causes total prob to be too small
        gap = cur_int_range - cum_probs[-1]

        # Convert to position in range
        cum_probs = [cp + gap + cur_interval[0] for cp in cum_probs]

        if use_sentinel:
            cum_probs = self._reserve_sentinel_slot(cum_probs, cur_interval[0])

        tokens_temp = [token for token, _ in ranked[: len(cum_probs)]]
        if use_sentinel:
            last = len(cum_probs) - 1
            tokens_temp[last] = self.oracle.sentinel_token_id()
            ranked[last] = (tokens_temp[last], ranked[last][1])

        return cum_probs, tokens_temp, ranked

    @staticmethod
    def _reserve_sentinel_slot(cum_probs: List[int], bottom: int) -> List[int]:
        """Make sure the last sub-interval, which goes to the sentinel, is not empty.

        One unit is taken from the widest other sub-interval. If none is wide
        enough to give one up, the empty sub-intervals at the end are dropped.
        """
        last = len(cum_probs) - 1
        if last == 0 or cum_probs[last] > cum_probs[last - 1]:
            return cum_probs

        bounds = [bottom] + cum_probs
        widths = [bounds[j + 1] - bounds[j] for j in range(last)]
        widest = max(range(last), key=widths.__getitem__)
        if widths[widest] < 2:
            cum_probs = list(cum_probs)
            while len(cum_probs) > 1 and cum_probs[-1] == cum_probs[-2]:
                cum_probs.pop()
            return cum_probs

        return [cp - 1 if widest <= j < last else cp for j, cp in enumerate(cum_probs)]

    @staticmethod
    def _select_sub_interval(cum_probs: Sequence[int], message_idx: int) -> int:
        """Index of the sub-interval containing ``message_idx``."""
        for idx, cp in enumerate(cum_probs):
            if cp > message_idx:
                return idx
        raise ValueError(f"Message value {message_idx} lies above the interval top {cum_probs[-1]}")

    @staticmethod
    def _narrow_interval(
        cur_interval: List[int],
        new_int_bottom: int,
        new_int_top: int,
        precision: int,
        force_progress: bool = False,
    ) -> Tuple[int, List[int], List[int]]:
        """Move the interval to the selected sub-interval and drop its fixed bits.

        With ``force_progress`` a sub-interval whose bounds share no leading bit
        is clamped to its part above the midpoint, so at least one bit is fixed.

        Returns:
            Tuple of (num_bits_encoded, bottom_bits_inc, top_bits_inc)
        """
        new_int_bottom_bits_inc = bits_from_int(new_int_bottom, precision)
        new_int_top_bits_inc = bits_from_int(new_int_top - 1, precision)
        num_bits_encoded = num_same_from_beg(new_int_bottom_bits_inc, new_int_top_bits_inc)

        if force_progress and num_bits_encoded == 0:
            new_int_bottom_bits_inc = new_int_top_bits_inc[:1] + [0] * (precision - 1)
            num_bits_encoded = num_same_from_beg(new_int_bottom_bits_inc, new_int_top_bits_inc)

        new_int_bottom_bits = new_int_bottom_bits_inc[num_bits_encoded:] + [0] * num_bits_encoded
        new_int_top_bits = new_int_top_bits_inc[num_bits_encoded:] + [1] * num_bits_encoded

        cur_interval[0] = int_from_bits(new_int_bottom_bits)
        cur_interval[1] = int_from_bits(new_int_top_bits) + 1
        return num_bits_encoded, new_int_bottom_bits_inc, new_int_top_bits_inc

    def encode(
        self,
        context: str,
        cipher_bits: bytes,
        temperature: Optional[float] = None,
        top_k: Optional[int] = None,
        precision: Optional[int] = None,
    ) -> str:
        """Encode cipher bits into a cover text.

        With an empty context the call is a decompression: ``cipher_bits`` is a
        padded byte buffer produced by :meth:`compress`, sampling stops at the
        sentinel token and no sentence completion happens.

        Args:
            context: The context to continue
            cipher_bits: Bytes to hide
            temperature: Temperature for token sampling
            top_k: Maximum number of candidate tokens per step
            precision: Number of bits of the coding interval

        Returns:
            The generated cover text
        """
        temperature = self.temperature if temperature is None else temperature
        top_k = self.top_k if top_k is None else top_k
        precision = self.precision if precision is None else precision

        with self.oracle.lock:
            self.oracle.reset()
            context_tokens = self.oracle.tokenize(context)

            is_decompression = not context_tokens
            if is_decompression:
                message_bits = bits_from_bytes_strip_padding(cipher_bits)
                context_tokens = [self.oracle.end_of_generation_token_id()]
            else:
                message_bits = bits_from_bytes(cipher_bits)
            sentinel = self.oracle.sentinel_token_id()

            self.logger.info(
                f"Starting {'decompression' if is_decompression else 'encoding'} "
                f"with {len(message_bits)} message bits"
            )
            self.logger.debug(f"Message bits: {bit_string(message_bits)}")

            cur_interval = [0, 1 << precision]  # bottom inclusive, top exclusive
            cover_tokens: List[int] = []
            sampled_token: Optional[int] = None
            is_last_sentence_finished = False

            i = 0  # bit index
            step = 0

            while i < len(message_bits) or (not is_decompression and not is_last_sentence_finished):
                step += 1
                probabilities = self._get_probabilities(
                    context_tokens if sampled_token is None else [sampled_token]
                )

                if i < len(message_bits):
                    self.logger.debug(f"Encode step {step}: bit index {i}, interval {cur_interval}")
                    cum_probs, tokens_temp, _ = self._compute_interval_division(
                        probabilities, cur_interval, temperature, top_k, use_sentinel=is_decompression
                    )

                    # Get selected index based on binary fraction from message bits
                    current_message_bits = message_bits[i : i + precision]
                    current_message_bits += [0] * (precision - len(current_message_bits))
                    message_idx = int_from_bits(current_message_bits)

                    selection = self._select_sub_interval(cum_probs, message_idx)

                    # Calculate new range as ints
                    new_int_bottom = cum_probs[selection - 1] if selection > 0 else cur_interval[0]
                    new_int_top = cum_probs[selection]

                    num_bits_encoded, _, _ = self._narrow_interval(
                        cur_interval, new_int_bottom, new_int_top, precision, force_progress=is_decompression
                    )
                    i += num_bits_encoded

                    sampled_token = tokens_temp[selection]
                    self.logger.debug(
                        f"Selected token {sampled_token} (selection: {selection} of {len(cum_probs)}), "
                        f"bits encoded this step: {num_bits_encoded}"
                    )
                else:
                    # Greedy sentence completion
                    sampled_token = top_token(probabilities)
                    is_last_sentence_finished = self.oracle.is_end_of_sentence(sampled_token)

                cover_tokens.append(sampled_token)

                if is_decompression and sampled_token == sentinel:
                    cover_tokens.pop()
                    break

            self.logger.info(f"Encoding completed with {len(cover_tokens)} tokens in {step} steps")
            return self.oracle.detokenize(cover_tokens)

    def decode(
        self,
        context: str,
        cover_text: str,
        temperature: Optional[float] = None,
        top_k: Optional[int] = None,
        precision: Optional[int] = None,
    ) -> bytes:
        """Decode the cipher bits hidden in a cover text.

        With an empty context the call is a compression of ``cover_text``; the
        result is then a padded byte buffer ending with the sentinel's code.

        Returns:
            The cipher bits, followed by filler bits from the final interval and
            from sentence completion tokens. Compression output carries the
            padding header instead.
        """
        temperature = self.temperature if temperature is None else temperature
        top_k = self.top_k if top_k is None else top_k
        precision = self.precision if precision is None else precision

        with self.oracle.lock:
            self.oracle.reset()
            context_tokens = self.oracle.tokenize(context)
            cover_tokens = self.oracle.tokenize(cover_text)

            is_compression = not context_tokens
            if is_compression:
                context_tokens = [self.oracle.end_of_generation_token_id()]
                cover_tokens.append(self.oracle.sentinel_token_id())

            self.logger.info(
                f"Starting {'compression' if is_compression else 'decoding'} of {len(cover_tokens)} tokens"
            )

            cur_interval = [0, 1 << precision]
            message_bits: List[int] = []

            i = 0
            while i < len(cover_tokens):
                probabilities = self._get_probabilities(context_tokens if i == 0 else [cover_tokens[i - 1]])
                cum_probs, tokens_temp, ranked = self._compute_interval_division(
                    probabilities, cur_interval, temperature, top_k, use_sentinel=is_compression
                )

                def is_selectable(rank: int) -> bool:
                    if rank >= len(cum_probs):
                        return False
                    lower = cum_probs[rank - 1] if rank > 0 else cur_interval[0]
                    return cum_probs[rank] > lower

                # Rank of the actual token amongst all tokens
                rank = next(
                    (idx for idx, (token, _) in enumerate(ranked) if token == cover_tokens[i]),
                    len(ranked),
                )
                if not is_selectable(rank):
                    rank = self._fix_bpe_mismatch(cover_tokens, i, tokens_temp, is_selectable)

                new_int_bottom = cum_probs[rank - 1] if rank > 0 else cur_interval[0]
                new_int_top = cum_probs[rank]
                self.logger.debug(
                    f"Decode step {i + 1}: token {cover_tokens[i]} at rank {rank}, "
                    f"new range [{new_int_bottom}, {new_int_top})"
                )

                num_bits_encoded, bottom_bits_inc, top_bits_inc = self._narrow_interval(
                    cur_interval, new_int_bottom, new_int_top, precision, force_progress=is_compression
                )

                # The last token flushes the whole bottom of its sub-interval
                if i == len(cover_tokens) - 1:
                    message_bits.extend(bottom_bits_inc)
                else:
                    message_bits.extend(top_bits_inc[:num_bits_encoded])

                i += 1

            self.logger.info(f"Decoding completed with {len(message_bits)} bits")
            self.logger.debug(f"Decoded bits: {bit_string(message_bits)}")

            if is_compression:
                return bytes_with_padding_from_bits(message_bits)
            return bytes_from_bits_truncated(message_bits)

    def _fix_bpe_mismatch(
        self,
        cover_tokens: List[int],
        i: int,
        tokens_temp: Sequence[int],
        is_selectable: Callable[[int], bool],
    ) -> int:
        """Split a cover text token that is not among the candidates.

        Looks for a candidate whose text is a prefix of the actual token's text,
        replaces the token with it and inserts the tokens of the remaining
        suffix right after it. Falls back to rank 0 if there is none.

        Returns:
            Rank of the sub-interval to select
        """
        true_token_text = self.oracle.detokenize([cover_tokens[i]])

        for rank_idx, token in enumerate(tokens_temp):
            if not is_selectable(rank_idx):
                continue
            prop_token_text = self.oracle.detokenize([token])
            if prop_token_text and true_token_text.startswith(prop_token_text):
                suffix = true_token_text[len(prop_token_text):]
                suffix_tokens = self.oracle.tokenize(suffix) if suffix else []
                self.logger.debug(
                    f"Split token {true_token_text!r} at position {i} into "
                    f"{prop_token_text!r} and {len(suffix_tokens)} suffix tokens"
                )
                cover_tokens[i] = token
                cover_tokens[i + 1 : i + 1] = suffix_tokens
                return rank_idx

        self.logger.warning(
            f"Unable to fix BPE mismatch of token {true_token_text!r} at position {i}, using rank 0"
        )
        return 0

    def _compression_precision(self) -> int:
        if self.compression_precision is not None:
            return self.compression_precision
        return max(1, math.ceil(math.log2(self.oracle.vocabulary_size())))

    def compress(self, text: str) -> bytes:
        """Compress text into a padded byte buffer using arithmetic *decoding*.

        Raises:
            ValueError: If the text contains ASCII NUL, which marks the end of
                the compressed message.
        """
        if SENTINEL_TEXT in text:
            raise ValueError("Text to compress cannot contain the ASCII NUL character")
        return self.decode(
            "",
            text,
            temperature=1.0,
            top_k=self.oracle.vocabulary_size(),
            precision=self._compression_precision(),
        )

    def decompress(self, data: bytes) -> str:
        """Restore text compressed with :meth:`compress` using arithmetic *encoding*."""
        return self.encode(
            "",
            data,
            temperature=1.0,
            top_k=self.oracle.vocabulary_size(),
            precision=self._compression_precision(),
        )
