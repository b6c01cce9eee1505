# -*- coding: utf-8 -*-
"""
Together.ai language-model capability.

Implements generate(prompt, schema_hint) -> text. When a pydantic model (or a
raw JSON schema dict) is passed as schema_hint, it is sent as Together's
json_schema response format so the model is constrained to that shape; the
caller still validates, because constrained decoding is best-effort.

Example:
    llm = TogetherLLM()
    text = llm.generate(prompt, schema_hint=ExtractionOutput)
"""
# Standard library
import logging
from typing import Optional, Type, Union

# Third-party
from pydantic import BaseModel
from together import Together

# Config imports (direct)
from config.pipeline_config import LLM_CONFIG

# Local
from kgforge.utils.errors import ExtractionError, ModelTimeoutError
from kgforge.utils.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

SchemaHint = Union[Type[BaseModel], dict, None]


def _schema_dict(schema_hint: SchemaHint) -> Optional[dict]:
    if schema_hint is None:
        return None
    if isinstance(schema_hint, dict):
        return schema_hint
    return schema_hint.model_json_schema()


class TogetherLLM:
    """
    Chat-completions client with a shared rate limiter and a per-call timeout.

    Thread-safe: the Together client is stateless per request and the
    limiter serializes only its own bookkeeping.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: Optional[str] = None,
        config: Optional[dict] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.config = {**LLM_CONFIG, **(config or {})}
        api_key = api_key or self.config['api_key']
        if not api_key:
            raise ValueError("TOGETHER_API_KEY not set (env var or api_key argument)")

        self.model_name = model_name or self.config['model_name']
        self.client = Together(api_key=api_key, timeout=self.config['timeout'])
        self.rate_limiter = rate_limiter or RateLimiter(
            max_calls_per_minute=self.config['max_calls_per_minute']
        )
        logger.info(f"TogetherLLM ready (model={self.model_name})")

    def generate(self, prompt: str, schema_hint: SchemaHint = None) -> str:
        """
        Run one completion.

        Raises:
            ModelTimeoutError: Request exceeded the configured timeout
            ExtractionError: Any other provider failure or an empty answer
        """
        kwargs = {
            'model': self.model_name,
            'messages': [{"role": "user", "content": prompt}],
            'temperature': self.config['temperature'],
            'max_tokens': self.config['max_tokens'],
        }
        schema = _schema_dict(schema_hint)
        if schema is not None:
            kwargs['response_format'] = {"type": "json_schema", "schema": schema}

        self.rate_limiter.acquire()
        try:
            response = self.client.chat.completions.create(**kwargs)
        except Exception as e:
            # together's timeout class moved between SDK versions; match by name
            if 'timeout' in type(e).__name__.lower():
                raise ModelTimeoutError(f"LLM call timed out: {e}") from e
            raise ExtractionError(f"LLM call failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExtractionError("LLM returned an empty response")
        return content
