"""
Probability oracle backed by the OpenAI chat completions API.

The API only reports the log-probabilities of the top few next tokens. They
are renormalized over the tokens that map to a single id of the model's
tiktoken encoding; every other token gets probability 0.
"""

import datetime
import hashlib
import json
import logging
import os
from typing import Dict, List, Optional, Sequence

import openai
import tiktoken

from .config import SteganographyConfig
from .errors import MissingSentinelError, OracleError
from .oracle import SENTINEL_TEXT, ProbabilityOracle, softmax


class OpenAIOracle(ProbabilityOracle):
    """ProbabilityOracle that queries an OpenAI chat model for next-token logprobs."""

    def __init__(self, config: Optional[SteganographyConfig] = None, openai_api_key: Optional[str] = None):
        """Initialize the oracle.

        Args:
            config: Configuration object. If None, uses default configuration
            openai_api_key: OpenAI API key. If None, uses OPENAI_API_KEY environment variable
        """
        super().__init__()
        self.config = config or SteganographyConfig()

        self.model = self.config.model
        self._openai_api_key = openai_api_key
        self.openai_client = None
        self.tokenizer = tiktoken.encoding_for_model(self.model)
        self.cached_system_fingerprint = None
        self.cache_dir = self.config.cache_dir

        self.logger = logging.getLogger("stego_lm_coding.openai_oracle")

        self._history: List[int] = []
        self._special_tokens = {
            self.tokenizer.encode_single_token(token) for token in self.tokenizer.special_tokens_set
        }

        sentinel_tokens = self.tokenizer.encode(SENTINEL_TEXT)
        if len(sentinel_tokens) != 1:
            raise MissingSentinelError("LLM vocabulary doesn't contain ASCII NUL character")
        self._sentinel_token = sentinel_tokens[0]

    def tokenize(self, text: str) -> List[int]:
        return self.tokenizer.encode(text, disallowed_special=())

    def detokenize(self, tokens: Sequence[int]) -> str:
        return self.tokenizer.decode(list(tokens))

    def is_special(self, token: int) -> bool:
        return token in self._special_tokens

    def end_of_generation_token_id(self) -> int:
        return self.tokenizer.eot_token

    def sentinel_token_id(self) -> int:
        return self._sentinel_token

    def vocabulary_size(self) -> int:
        return self.tokenizer.n_vocab

    def reset(self) -> None:
        self._history = []

    def next_token_probabilities(self, tokens: Sequence[int]) -> List[float]:
        self._history.extend(tokens)
        context = self.detokenize(self._history)
        token_logprobs = self._get_token_logprobs(context)

        # Only tokens that are a single id of the local encoding can be placed
        ids: List[int] = []
        logprobs: List[float] = []
        for token_text, logprob in token_logprobs.items():
            try:
                token_id = self.tokenizer.encode_single_token(token_text.encode("utf-8"))
            except KeyError:
                self.logger.debug(f"Skipping token {token_text!r} not in the vocabulary")
                continue
            ids.append(token_id)
            logprobs.append(logprob)

        if not ids:
            raise OracleError(f"None of the returned tokens map to the vocabulary: {list(token_logprobs)}")

        probabilities = [0.0] * self.vocabulary_size()
        for token_id, probability in zip(ids, softmax(logprobs)):
            probabilities[token_id] += probability
        return probabilities

    def _generate_cache_key(self, **params) -> str:
        """Generate a cache key based on request parameters."""
        cache_str = json.dumps(params, sort_keys=True)
        return hashlib.sha256(cache_str.encode()).hexdigest()

    def _load_from_cache(self, cache_key: str) -> Optional[Dict[str, float]]:
        """Load cached response if it exists."""
        cache_file = self.cache_dir / f"{cache_key}.json"
        if cache_file.exists():
            try:
                with open(cache_file, "r") as f:
                    cached_data = json.load(f)
                self.logger.debug(f"Loaded from cache: {cache_key}")
                return cached_data["token_logprobs"]
            except (json.JSONDecodeError, KeyError) as e:
                self.logger.warning(f"Error loading cache {cache_key}: {e}")
        return None

    def _save_to_cache(self, cache_key: str, token_logprobs: Dict[str, float], system_fingerprint: Optional[str]):
        cache_file = self.cache_dir / f"{cache_key}.json"
        cache_data = {
            "token_logprobs": token_logprobs,
            "system_fingerprint": system_fingerprint,
            "cached_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        }
        try:
            with open(cache_file, "w") as f:
                json.dump(cache_data, f, indent=2)
            self.logger.debug(f"Saved to cache: {cache_key}")
        except OSError as e:
            self.logger.warning(f"Error saving cache {cache_key}: {e}")

    def _get_token_logprobs(self, context: str) -> Dict[str, float]:
        """Get logprobs of next tokens for the given context.

        Args:
            context: The text context to get next token logprobs for

        Returns:
            Dictionary mapping token text to its logprob

        Raises:
            OracleError: If no usable response arrives within ``max_retries`` attempts
        """
        user_message = f"Continue this text:\n\n{context}"
        api_params = self.config.get_api_params_with_model()
        api_params["messages"] = [{"role": "user", "content": user_message}]

        cache_key = self._generate_cache_key(**api_params)
        cached_result = self._load_from_cache(cache_key)
        if cached_result is not None:
            return cached_result

        max_retries = self.config.max_retries

        if self.openai_client is None:
            self.openai_client = openai.OpenAI(api_key=self._openai_api_key or os.getenv("OPENAI_API_KEY"))

        last_error: Optional[Exception] = None
        for attempt in range(max_retries):
            try:
                self.logger.debug(f"OpenAI API call: {user_message=}")
                response = self.openai_client.chat.completions.create(**api_params)
            except openai.OpenAIError as e:
                last_error = e
                self.logger.warning(f"API call failed on attempt {attempt + 1}/{max_retries}: {e}")
                continue

            # Check and cache system fingerprint for consistency
            if self.cached_system_fingerprint is None:
                self.cached_system_fingerprint = response.system_fingerprint
                self.logger.debug(f"Cached system fingerprint: {self.cached_system_fingerprint}")
            elif self.cached_system_fingerprint != response.system_fingerprint:
                last_error = OracleError(
                    f"System fingerprint mismatch. Expected: {self.cached_system_fingerprint}, "
                    f"Got: {response.system_fingerprint}"
                )
                self.logger.warning(f"{last_error} (attempt {attempt + 1}/{max_retries})")
                continue

            logprobs = response.choices[0].logprobs if response.choices else None
            if logprobs and logprobs.content and logprobs.content[0].top_logprobs:
                token_logprobs = {tlp.token: tlp.logprob for tlp in logprobs.content[0].top_logprobs}
                self._save_to_cache(cache_key, token_logprobs, response.system_fingerprint)
                return token_logprobs

            last_error = OracleError(f"Failed to get logprobs from API response: {response.choices}")
            self.logger.warning(f"{last_error} (attempt {attempt + 1}/{max_retries})")

        raise OracleError(f"Failed to get token logprobs after {max_retries} attempts: {last_error}") from last_error
