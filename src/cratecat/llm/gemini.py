"""Gemini text generation for the planner."""

from concurrent.futures import Executor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Optional, Protocol

from google import genai
from google.genai import types
from loguru import logger

from cratecat.config import get_gemini_api_key
from cratecat.errors import ConfigError

DEFAULT_MODEL = "gemini-2.0-flash"


class LanguageModel(Protocol):
    """Anything that turns a prompt into text."""

    def execute(self, prompt: str) -> str: ...


class GeminiLLM:
    """Thin wrapper around the google-genai client.

    Args:
        api_key: Gemini API key. Looked up from env/config when omitted.
        model_name: Gemini model to use.
        temperature: Sampling temperature.
        max_output_tokens: Cap on response length.
        timeout_seconds: HTTP timeout for each call.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_name: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        max_output_tokens: int = 2000,
        top_p: float = 0.95,
        top_k: int = 40,
        timeout_seconds: Optional[float] = 60.0,
    ):
        api_key = api_key or get_gemini_api_key()
        if not api_key:
            raise ConfigError("Gemini API key not configured. Run 'cratecat auth' to set it.")

        http_options = None
        if timeout_seconds is not None:
            # google-genai expects milliseconds
            http_options = types.HttpOptions(timeout=int(timeout_seconds * 1000))

        self.client = genai.Client(api_key=api_key, http_options=http_options)
        self.model_name = model_name
        self.generation_config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            top_p=top_p,
            top_k=top_k,
        )

    def execute(self, prompt: str) -> str:
        """Send a prompt and return the response text.

        Raises:
            Exception: Whatever the client raises on API failure.
        """
        logger.debug(f"Gemini request ({self.model_name}, {len(prompt)} chars)")
        response = self.client.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config=self.generation_config,
        )
        return response.text or ""


def execute_with_deadline(
    llm: LanguageModel,
    prompt: str,
    timeout_seconds: float,
    executor: Executor,
    stage: str = "llm",
) -> Optional[str]:
    """Run a model call with a deadline.

    Returns:
        The response text, or None if the call failed or missed the
        deadline. Callers treat None like an unparseable reply.
    """
    future = executor.submit(llm.execute, prompt)
    try:
        return future.result(timeout=timeout_seconds)
    except FuturesTimeout:
        future.cancel()
        logger.warning(f"{stage}: language model did not answer within {timeout_seconds:g}s")
    except Exception as e:
        logger.warning(f"{stage}: language model call failed: {e}")
    return None
