"""
LLM Utilities - OpenAI API Integration and JSON Extraction.

This module is the central interface for the two external AI providers the
pipeline depends on:

- Embedding provider: `embed_text` / OpenAIEmbeddingProvider
- Reasoning provider: `call_llm` + `call_structured` / OpenAIReasoningProvider

Key Functions:
    - call_llm: Chat completion with automatic retry for transient failures
    - call_structured: call_llm in JSON mode, validated against a pydantic model
    - extract_json: Extracts the JSON object from a response that may carry extra text
    - embed_text: Embedding vector for a text
    - cosine_similarity: Similarity of two vectors

Environment Variables:
    OPENAI_API_KEY: OpenAI API key
    OPENAI_MODEL: Chat model name (default: "gpt-4o-mini")
    OPENAI_EMBEDDING_MODEL: Embedding model name (default: "text-embedding-3-small")

Note:
    The OpenAI client is created lazily on first use, so importing this module
    never requires credentials.
"""

import json
import math
import time
from typing import List, Optional, Sequence, Type, TypeVar

from openai import APIConnectionError, APITimeoutError, OpenAI, RateLimitError
from pydantic import BaseModel, ValidationError

from jobpilot.config.analysis_schemas import GeneratedDocuments, JobAnalysis
from jobpilot.config.entity_schemas import NormalizedPosting, Profile
from jobpilot.config.prompts import (
    GENERATED_DOCUMENTS_SCHEMA,
    GENERATION_SYSTEM_PROMPT,
    GENERATION_USER_PROMPT,
    JOB_ANALYSIS_SCHEMA,
    MATCH_SYSTEM_PROMPT,
    MATCH_USER_PROMPT,
)
from jobpilot.config.settings import (
    OPENAI_API_KEY,
    OPENAI_EMBEDDING_MODEL,
    OPENAI_MODEL,
)
from jobpilot.utils.exceptions import MalformedInputError, TransientUpstreamError
from jobpilot.utils.logger import get_logger

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

RETRYABLE_ERRORS = (RateLimitError, APIConnectionError, APITimeoutError)

_client: Optional[OpenAI] = None


def get_client() -> OpenAI:
    """Get or create the OpenAI client using lazy initialization.

    Raises:
        ValueError: If OPENAI_API_KEY is not configured.
    """
    global _client
    if _client is None:
        if not OPENAI_API_KEY:
            error_msg = (
                "OPENAI_API_KEY not found in environment variables. "
                "Please set OPENAI_API_KEY in your .env file or environment."
            )
            logger.error(error_msg)
            raise ValueError(error_msg)
        _client = OpenAI(api_key=OPENAI_API_KEY)
    return _client


def call_llm(
    system_prompt: str,
    user_prompt: str,
    max_tokens: int = 800,
    max_retries: int = 3,
    retry_delay: float = 1.0,
    json_mode: bool = False,
    client: Optional[OpenAI] = None,
) -> str:
    """Call the OpenAI chat API with system and user prompts.

    Features:
        - Automatic retry with exponential backoff for transient failures
        - Response validation to ensure data integrity
        - Low temperature (0.2) for consistent, focused outputs

    Args:
        system_prompt: System prompt defining role, rules and output format.
        user_prompt: User prompt carrying the input data.
        max_tokens: Maximum number of tokens in the response.
        max_retries: Maximum number of retry attempts for transient failures.
        retry_delay: Initial delay between retries in seconds (doubles each retry).
        json_mode: Request a JSON object response.
        client: OpenAI client (defaults to the lazily created module client).

    Returns:
        The response text of the first choice.

    Raises:
        TransientUpstreamError: If the provider keeps failing transiently.
        ValueError: If the response structure is invalid or missing content.
    """
    client = client or get_client()
    kwargs: dict = {
        "model": OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "max_tokens": max_tokens,
        "temperature": 0.2,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = None
    for attempt in range(max_retries + 1):
        try:
            response = client.chat.completions.create(**kwargs)
            break
        except RETRYABLE_ERRORS as e:
            if attempt < max_retries:
                delay = retry_delay * (2**attempt)
                logger.warning(
                    "LLM API call failed, retrying",
                    extra={
                        "extra_fields": {
                            "attempt": attempt + 1,
                            "max_attempts": max_retries + 1,
                            "delay_s": delay,
                            "error_type": type(e).__name__,
                        }
                    },
                )
                time.sleep(delay)
            else:
                logger.error(
                    "LLM API call failed after all retries",
                    extra={
                        "extra_fields": {
                            "attempts": max_retries + 1,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        }
                    },
                )
                raise TransientUpstreamError(f"Reasoning provider failed: {e}") from e

    if not response or not getattr(response, "choices", None):
        raise ValueError("OpenAI API returned no choices")

    message = response.choices[0].message
    text = getattr(message, "content", None)
    if text is None:
        raise ValueError("OpenAI API returned None content in response")

    logger.debug("LLM response", extra={"extra_fields": {"preview": text[:500]}})
    return text


def extract_json(text: str) -> Optional[str]:
    """Extract the first JSON object from LLM response text.

    LLMs often return JSON wrapped in markdown code blocks or with extra text.
    This finds the first opening brace and balances braces (ignoring braces
    inside string literals) to find the matching closing brace.

    Args:
        text: The raw LLM response text.

    Returns:
        The extracted JSON string, or None if no JSON object can be found.

    Example:
        Input: "Here is the analysis: ```json\\n{\\"match_score\\": 72}\\n```"
        Output: '{"match_score": 72}'
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def call_structured(
    schema: Type[M],
    system_prompt: str,
    user_prompt: str,
    max_tokens: int = 1500,
    client: Optional[OpenAI] = None,
) -> M:
    """Call the LLM in JSON mode and validate the answer against `schema`.

    Raises:
        MalformedInputError: If no JSON object is found or validation fails.
        TransientUpstreamError: If the provider keeps failing transiently.
    """
    text = call_llm(
        system_prompt,
        user_prompt,
        max_tokens=max_tokens,
        json_mode=True,
        client=client,
    )
    raw = extract_json(text)
    if raw is None:
        raise MalformedInputError(f"No JSON object in {schema.__name__} response")
    try:
        return schema.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(
            "Structured response failed validation",
            extra={
                "extra_fields": {
                    "schema": schema.__name__,
                    "error_count": e.error_count(),
                    "errors": e.errors(include_url=False)[:5],
                }
            },
        )
        raise MalformedInputError(
            f"Invalid {schema.__name__} response: {e.error_count()} validation errors"
        ) from e


def embed_text(text: str, client: Optional[OpenAI] = None) -> List[float]:
    """Return the embedding vector for `text`.

    Raises:
        TransientUpstreamError: If the provider is unreachable or throttling.
    """
    client = client or get_client()
    try:
        response = client.embeddings.create(model=OPENAI_EMBEDDING_MODEL, input=text)
    except RETRYABLE_ERRORS as e:
        raise TransientUpstreamError(f"Embedding provider failed: {e}") from e
    return list(response.data[0].embedding)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors (0.0 if either has zero norm)."""
    if len(a) != len(b):
        raise ValueError(f"Vector size mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


# ---------- PROVIDERS ----------


def profile_to_prompt(profile: Profile) -> str:
    """Serialize the parts of a profile the reasoning provider needs."""
    data = profile.model_dump(mode="json", exclude={"embedding", "baseline_cv"})
    return json.dumps(data, indent=2, ensure_ascii=False)


def posting_to_prompt(posting: NormalizedPosting) -> str:
    data = posting.model_dump(mode="json", exclude={"external_id"})
    return json.dumps(data, indent=2, ensure_ascii=False)


class OpenAIEmbeddingProvider:
    """Embedding provider backed by the OpenAI embeddings API."""

    def __init__(self, client: Optional[OpenAI] = None) -> None:
        self.client = client

    def embed(self, text: str) -> List[float]:
        return embed_text(text, client=self.client)


class OpenAIReasoningProvider:
    """Reasoning provider backed by OpenAI chat completions in JSON mode.

    Both operations either return a schema-validated model or raise.
    """

    def __init__(self, client: Optional[OpenAI] = None) -> None:
        self.client = client

    def analyze_match(
        self, profile: Profile, posting: NormalizedPosting
    ) -> JobAnalysis:
        return call_structured(
            JobAnalysis,
            MATCH_SYSTEM_PROMPT.format(output_schema=JOB_ANALYSIS_SCHEMA),
            MATCH_USER_PROMPT.format(
                profile=profile_to_prompt(profile),
                posting=posting_to_prompt(posting),
            ),
            max_tokens=1200,
            client=self.client,
        )

    def generate_documents(
        self,
        profile: Profile,
        baseline_cv: Optional[str],
        posting: NormalizedPosting,
    ) -> GeneratedDocuments:
        return call_structured(
            GeneratedDocuments,
            GENERATION_SYSTEM_PROMPT.format(output_schema=GENERATED_DOCUMENTS_SCHEMA),
            GENERATION_USER_PROMPT.format(
                profile=profile_to_prompt(profile),
                baseline_cv=baseline_cv or "(none provided)",
                posting=posting_to_prompt(posting),
            ),
            max_tokens=3000,
            client=self.client,
        )
