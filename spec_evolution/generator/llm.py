"""
LiteLLM adapter for structured generation.

Sends a system + user prompt with the output schema as `response_format` and
validates the reply against that schema, so callers always receive a typed
instance.
"""

import logging
from typing import Any, Dict, Optional, Type, TypeVar

from litellm import acompletion
from pydantic import BaseModel

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class LiteLLMStructuredModel:
    """StructuredModel backed by any LiteLLM-supported provider."""

    def __init__(
        self,
        model: str = "gpt-4o-mini",
        temperature: float = 0.2,
        api_base: Optional[str] = None,
        **completion_kwargs: Any,
    ):
        self.model = model
        self.temperature = temperature
        self.api_base = api_base
        self.completion_kwargs: Dict[str, Any] = completion_kwargs

    async def generate(self, system: str, prompt: str, schema: Type[SchemaT]) -> SchemaT:
        kwargs = dict(self.completion_kwargs)
        if self.api_base:
            kwargs["api_base"] = self.api_base

        response = await acompletion(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            response_format=schema,
            temperature=self.temperature,
            **kwargs,
        )
        content = response.choices[0].message.content or ""
        logger.debug("Structured reply from %s: %d chars", self.model, len(content))
        return schema.model_validate_json(content)
