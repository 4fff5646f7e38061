"""
Huffman coding steganography.

Every generation step builds a fresh Huffman tree over the 2^bits_per_token
most likely next tokens. Cipher bits walk the tree from the root (0 = left,
1 = right) and the leaf reached is the sampled token. Decoding rebuilds the
same tree and emits the code of each cover text token.
"""

import heapq
import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from .bits import bit_string, bits_from_bytes, bytes_from_bits_truncated
from .errors import HuffmanDecodeError
from .oracle import ProbabilityOracle, rank_tokens, top_token


@dataclass(frozen=True)
class HuffmanLeaf:
    token: int
    weight: float


@dataclass(frozen=True)
class HuffmanInternal:
    weight: float
    left: "HuffmanNode"
    right: "HuffmanNode"


HuffmanNode = Union[HuffmanLeaf, HuffmanInternal]


class HuffmanCoding:
    """Huffman tree and code table for one set of weighted tokens."""

    def __init__(self, candidates: Sequence[Tuple[int, float]]):
        """Build the tree.

        Args:
            candidates: (token, weight) pairs. Ties between equal weights are
                broken by insertion order, so the same candidates always give
                the same tree.
        """
        if not candidates:
            raise ValueError("Cannot build a Huffman tree without candidates")
        self.root = self._build_tree(candidates)
        self.codes: Dict[int, List[int]] = {}
        self._generate_codes(self.root, [])

    @staticmethod
    def _build_tree(candidates: Sequence[Tuple[int, float]]) -> HuffmanNode:
        counter = itertools.count()
        heap = [(weight, next(counter), HuffmanLeaf(token, weight)) for token, weight in candidates]
        heapq.heapify(heap)
        while len(heap) > 1:
            left_weight, _, left = heapq.heappop(heap)
            right_weight, _, right = heapq.heappop(heap)
            merged = HuffmanInternal(left_weight + right_weight, left, right)
            heapq.heappush(heap, (merged.weight, next(counter), merged))
        return heap[0][2]

    def _generate_codes(self, node: HuffmanNode, code: List[int]) -> None:
        if isinstance(node, HuffmanLeaf):
            self.codes[node.token] = code
            return
        self._generate_codes(node.left, code + [0])
        self._generate_codes(node.right, code + [1])


class HuffmanCodec:
    """Per-step Huffman coding over next-token distributions of a ProbabilityOracle."""

    def __init__(self, oracle: ProbabilityOracle, bits_per_token: int = 3):
        self.oracle = oracle
        self.bits_per_token = bits_per_token
        self.logger = logging.getLogger("stego_lm_coding.huffman")

    def _candidate_coding(self, tokens: Sequence[int], bits_per_token: int) -> HuffmanCoding:
        probabilities = list(self.oracle.next_token_probabilities(tokens))
        self.oracle.suppress_special_tokens(probabilities)
        candidates = rank_tokens(probabilities)[: 1 << bits_per_token]
        return HuffmanCoding(candidates)

    def _resolve_bits_per_token(self, bits_per_token: Optional[int]) -> int:
        bits_per_token = self.bits_per_token if bits_per_token is None else bits_per_token
        if bits_per_token < 1:
            raise ValueError(f"bits_per_token must be at least 1, got {bits_per_token}")
        return bits_per_token

    def encode(self, context: str, cipher_bits: bytes, bits_per_token: Optional[int] = None) -> str:
        """Hide cipher bits in a continuation of the context.

        Each step consumes up to ``bits_per_token`` bits. Once the bits run out
        the text is completed greedily until a token ends a sentence.
        """
        bits_per_token = self._resolve_bits_per_token(bits_per_token)

        with self.oracle.lock:
            self.oracle.reset()
            context_tokens = self.oracle.tokenize(context) or [self.oracle.end_of_generation_token_id()]
            message_bits = bits_from_bytes(cipher_bits)
            self.logger.info(f"Starting Huffman encoding of {len(message_bits)} bits")

            cover_tokens: List[int] = []
            sampled_token: Optional[int] = None
            is_last_sentence_finished = False
            i = 0

            while i < len(message_bits) or not is_last_sentence_finished:
                history = context_tokens if sampled_token is None else [sampled_token]
                if i < len(message_bits):
                    coding = self._candidate_coding(history, bits_per_token)
                    start = i
                    node = coding.root
                    # Missing bits past the end of the message count as 0
                    while isinstance(node, HuffmanInternal):
                        bit = message_bits[i] if i < len(message_bits) else 0
                        node = node.right if bit else node.left
                        i += 1
                    sampled_token = node.token
                    self.logger.debug(
                        f"Bits {bit_string(message_bits[start:i])} -> token {sampled_token}"
                    )
                else:
                    probabilities = list(self.oracle.next_token_probabilities(history))
                    self.oracle.suppress_special_tokens(probabilities)
                    sampled_token = top_token(probabilities)
                    is_last_sentence_finished = self.oracle.is_end_of_sentence(sampled_token)
                cover_tokens.append(sampled_token)

            self.logger.info(f"Huffman encoding completed with {len(cover_tokens)} tokens")
            return self.oracle.detokenize(cover_tokens)

    def decode(self, context: str, cover_text: str, bits_per_token: Optional[int] = None) -> bytes:
        """Recover the cipher bits from a cover text produced by :meth:`encode`.

        Raises:
            HuffmanDecodeError: If a cover token is not one of the candidates of
                its step, e.g. because the text was altered or retokenized
                differently.
        """
        bits_per_token = self._resolve_bits_per_token(bits_per_token)

        with self.oracle.lock:
            self.oracle.reset()
            context_tokens = self.oracle.tokenize(context) or [self.oracle.end_of_generation_token_id()]
            cover_tokens = self.oracle.tokenize(cover_text)
            self.logger.info(f"Starting Huffman decoding of {len(cover_tokens)} tokens")

            message_bits: List[int] = []
            for position, token in enumerate(cover_tokens):
                history = context_tokens if position == 0 else [cover_tokens[position - 1]]
                coding = self._candidate_coding(history, bits_per_token)
                code = coding.codes.get(token)
                if code is None:
                    raise HuffmanDecodeError(position, token)
                message_bits.extend(code)

            self.logger.info(f"Huffman decoding completed with {len(message_bits)} bits")
            return bytes_from_bits_truncated(message_bits)
