"""Structured extraction through an OpenAI-compatible LLM endpoint."""

import json
import logging
import re
import time
from typing import Callable, Optional, Protocol, TypeVar

from openai import APIError, OpenAI
from pydantic import BaseModel, ValidationError

from ..errors import ExtractionFailedError, MalformedResponseError
from .tracing import NullTraceSink, TraceSink, safe_end_span, safe_start_span

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

OUTPUT_RULES = """CRITICAL INSTRUCTIONS:
1. Return ONLY valid JSON. No markdown code blocks, no explanations, no extra text.
2. The response must start with { and end with }.
3. Use double quotes for all keys and all string values.
4. Use null for any field that is not present in the text."""


class StructuredExtractor(Protocol):
    """Capability interface: text + schema description in, typed model out."""

    def extract_structured(
        self,
        text: str,
        schema: str,
        response_model: type[T],
        *,
        instructions: str = "",
        trace_name: str = "extract-structured",
        metadata: Optional[dict] = None,
    ) -> T:
        ...


class ExtractionClient:
    """Client for structured extraction using an OpenAI-compatible API (vLLM, OpenAI)."""

    def __init__(
        self,
        api_url: str,
        model_name: str = "Qwen/Qwen3-8B-FP8",
        api_key: str = "not-needed",
        trace_sink: Optional[TraceSink] = None,
        max_attempts: int = 3,
        retry_delay_sec: float = 1.0,
        temperature: float = 0.1,
        max_tokens: int = 1500,
        sleep: Callable[[float], None] = time.sleep,
        client: Optional[OpenAI] = None,
    ):
        """Initialize extraction client.

        Args:
            api_url: Base URL for the OpenAI-compatible API
            model_name: Model name to use for inference
            api_key: API key (vLLM ignores it)
            trace_sink: Receives one span per attempt; defaults to a no-op sink
            max_attempts: Attempts before giving up with ExtractionFailedError
            retry_delay_sec: Delay unit; attempt n waits n * retry_delay_sec
            temperature: Sampling temperature
            max_tokens: Completion token limit
            sleep: Sleep function (injectable for tests)
            client: Preconfigured OpenAI client
        """
        self.client = client or OpenAI(base_url=api_url, api_key=api_key)
        self.model_name = model_name
        self.trace_sink = trace_sink or NullTraceSink()
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_sec = retry_delay_sec
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.sleep = sleep
        logger.info(f"Extraction client initialized with model: {model_name}")

    @staticmethod
    def build_prompt(text: str, schema: str, instructions: str = "") -> str:
        sections = [
            "Extract structured data from the following text according to the schema.",
            OUTPUT_RULES,
        ]
        if instructions:
            sections.append(instructions.strip())
        sections.append(f"Schema:\n{schema.strip()}")
        sections.append(f"Text:\n{text}")
        sections.append("Return valid JSON now:")
        return "\n\n".join(sections)

    def _complete(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=[{"role": "user", "content": prompt}],
            temperature=self.temperature,
            top_p=0.95,
            max_tokens=self.max_tokens,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            raise MalformedResponseError("Empty response from extraction oracle")
        return content.strip()

    def extract_structured(
        self,
        text: str,
        schema: str,
        response_model: type[T],
        *,
        instructions: str = "",
        trace_name: str = "extract-structured",
        metadata: Optional[dict] = None,
    ) -> T:
        """Extract a typed object from text, retrying on malformed output.

        Args:
            text: Source text
            schema: Human-readable description of the expected JSON object
            response_model: Pydantic model the JSON must validate against
            instructions: Extra task-specific instructions for the prompt
            trace_name: Span name reported to the trace sink
            metadata: Extra span metadata

        Returns:
            Instance of response_model

        Raises:
            ExtractionFailedError: If every attempt failed
        """
        prompt = self.build_prompt(text, schema, instructions)
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            span_metadata = {**(metadata or {}), "attempt": attempt, "model": self.model_name}
            span = safe_start_span(self.trace_sink, trace_name, prompt, span_metadata)
            response_text = None

            try:
                response_text = self._complete(prompt)
                result = self.parse_response(response_text, response_model)
            except (MalformedResponseError, APIError) as e:
                last_error = e
                safe_end_span(span, output=response_text, error=str(e))
                logger.warning(f"{trace_name}: attempt {attempt}/{self.max_attempts} failed: {e}")

                if attempt < self.max_attempts:
                    delay = self.retry_delay_sec * attempt
                    logger.info(f"{trace_name}: retrying in {delay:.1f}s")
                    self.sleep(delay)
                continue

            safe_end_span(span, output=response_text)
            return result

        logger.error(f"{trace_name}: all {self.max_attempts} attempts exhausted")
        raise ExtractionFailedError(self.max_attempts, last_error)

    @classmethod
    def parse_response(cls, text: str, response_model: type[T]) -> T:
        """Reduce a raw response to JSON and validate it.

        Raises:
            MalformedResponseError: If the payload is not valid for response_model
        """
        cleaned = cls._extract_json(text)

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Invalid JSON: {e}", text) from e

        if not isinstance(data, dict):
            raise MalformedResponseError("Expected a JSON object", text)

        try:
            return response_model.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"Response does not match schema: {e}", text) from e

    @staticmethod
    def _extract_json(text: str) -> str:
        """Extract JSON from text that may contain markdown code blocks, thinking tags or prose.

        Args:
            text: Response text that may contain JSON

        Returns:
            str: The first balanced {...} span, or the cleaned text if there is none
        """
        # Remove thinking tags if present
        if "<think>" in text or "</think>" in text:
            text = re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL)
            text = text.replace("</think>", "")

        # Strip code fence markers
        text = re.sub(r"```(?:json|JSON)?", "", text).strip()

        start = text.find("{")
        if start == -1:
            return text

        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
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
                    return text[start:index + 1]

        # Unbalanced: hand back what we have and let json.loads report it
        return text[start:]
