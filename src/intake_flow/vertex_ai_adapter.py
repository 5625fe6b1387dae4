from __future__ import annotations

import json
import logging
from typing import Any

import vertexai
from vertexai.generative_models import GenerationConfig, GenerativeModel

logger = logging.getLogger(__name__)


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json fence if the model added one."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


class VertexAIAdapter:
    """Adapter for Vertex AI Gemini models used to draft routing proposals."""

    def __init__(
        self,
        *,
        project_id: str,
        location: str = "us-central1",
        model_name: str = "gemini-1.5-pro",
    ) -> None:
        """Initialize Vertex AI adapter.

        Args:
            project_id: GCP project ID
            location: Vertex AI location
            model_name: Model name (e.g., "gemini-1.5-pro")
        """
        self.project_id = project_id
        self.location = location
        self.model_name = model_name

        vertexai.init(project=project_id, location=location)
        self.model = GenerativeModel(model_name)

    def generate_content(
        self,
        prompt: str,
        *,
        temperature: float = 0.4,
        max_output_tokens: int = 8192,
        json_mode: bool = False,
    ) -> str:
        """Generate text for ``prompt``.

        Args:
            prompt: Input prompt
            temperature: Sampling temperature (0.0 - 1.0)
            max_output_tokens: Maximum output tokens
            json_mode: Ask the model for an application/json response

        Returns:
            Generated text
        """
        generation_config = GenerationConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json" if json_mode else None,
        )

        response = self.model.generate_content(
            prompt,
            generation_config=generation_config,
        )
        generated_text = response.text

        logger.info(
            "Generated content with Vertex AI",
            extra={
                "model": self.model_name,
                "temperature": temperature,
                "input_length": len(prompt),
                "output_length": len(generated_text),
            },
        )
        return generated_text

    def generate_json(
        self,
        prompt: str,
        *,
        temperature: float = 0.4,
        max_output_tokens: int = 8192,
    ) -> Any:
        """Generate a JSON document and parse it.

        Raises:
            ValueError: The model did not return parseable JSON.
        """
        response = self.generate_content(
            prompt,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            json_mode=True,
        )
        cleaned = strip_code_fence(response)
        try:
            return json.loads(cleaned)
        except json.JSONDecodeError as exc:
            logger.error(
                "Failed to parse JSON response",
                exc_info=True,
                extra={"response_length": len(cleaned)},
            )
            raise ValueError(f"Invalid JSON response: {exc}") from exc


__all__ = ["VertexAIAdapter", "strip_code_fence"]
