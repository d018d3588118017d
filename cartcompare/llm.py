"""Schema-constrained generative model client."""

from typing import Optional, Protocol, Type, TypeVar

import anthropic
import structlog
from pydantic import BaseModel, ValidationError

from .errors import ConfigurationError, ExtractionError

logger = structlog.get_logger(__name__).bind(service="cartcompare")

T = TypeVar("T", bound=BaseModel)

TOOL_NAME = "record_result"


class GenerativeModel(Protocol):
    """Anything that turns a prompt into an instance of a pydantic schema."""

    async def generate(self, prompt: str, schema: Type[T]) -> T:
        ...


class ClaudeModel:
    """
    Claude via the Messages API, forced to answer through a single tool.

    The tool's ``input_schema`` is the pydantic schema, so the reply arrives
    as JSON matching it; the payload is validated again with pydantic.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "claude-sonnet-4-5-20250929",
        max_tokens: int = 4096,
        temperature: float = 0.2,
        timeout: float = 30.0,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        if client is None and not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not set", missing=["ANTHROPIC_API_KEY"])

        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key, timeout=timeout)

        logger.info("llm_initialized", model=model, max_tokens=max_tokens)

    async def generate(self, prompt: str, schema: Type[T]) -> T:
        """
        Run the prompt and return the validated structured result.

        Raises:
            ExtractionError: API failure, missing tool output or schema mismatch
        """
        tool = {
            "name": TOOL_NAME,
            "description": "Record the structured answer.",
            "input_schema": schema.model_json_schema(),
        }

        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                tools=[tool],
                tool_choice={"type": "tool", "name": TOOL_NAME},
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            logger.warning("llm_request_failed", model=self.model, error=str(e))
            raise ExtractionError(f"Model request failed: {e}") from e

        for block in response.content:
            if block.type == "tool_use" and block.name == TOOL_NAME:
                try:
                    return schema.model_validate(block.input)
                except ValidationError as e:
                    logger.warning(
                        "llm_output_invalid",
                        schema=schema.__name__,
                        errors=e.error_count(),
                    )
                    raise ExtractionError(f"Model output did not match {schema.__name__}") from e

        raise ExtractionError("Model returned no structured output")

    async def close(self) -> None:
        await self._client.close()
