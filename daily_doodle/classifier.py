"""Doodle classification through a hosted vision model."""
import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from openai import AsyncOpenAI

logger = logging.getLogger(__name__)

CLASSIFIER_INSTRUCTIONS = (
    "You are an image classifier for simple doodles. "
    'Return ONLY valid JSON: {"guess":"...", "confidence":0..1}. '
    "guess must be one short lowercase word. No extra text."
)


class Classifier(Protocol):
    async def complete(self, instructions: str, target_word: str, image_bytes: bytes) -> str: ...


@dataclass(frozen=True)
class ClassifierGuess:
    guess: str
    confidence: Any  # As returned by the model; clamped by the scorer


def extract_json_span(text: str) -> str | None:
    """Return the substring from the first "{" to the last "}", if any."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start:end + 1]


def parse_guess(text: str | None) -> ClassifierGuess | None:
    """Pull {"guess", "confidence"} out of free-form model output.

    Tolerates prose around the object. Returns None when no JSON object with a
    string "guess" can be extracted.
    """
    chunk = extract_json_span(text or "")
    if chunk is None:
        return None
    try:
        parsed = json.loads(chunk)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or not isinstance(parsed.get("guess"), str):
        return None
    return ClassifierGuess(guess=parsed["guess"], confidence=parsed.get("confidence"))


class OpenAIClassifier:
    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4.1-mini"):
        self.client = client
        self.model = model

    async def complete(self, instructions: str, target_word: str, image_bytes: bytes) -> str:
        b64 = base64.b64encode(image_bytes).decode("ascii")
        response = await self.client.responses.create(
            model=self.model,
            input=[
                {
                    "role": "developer",
                    "content": [{"type": "input_text", "text": instructions}],
                },
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": f'Target word: "{target_word}". Guess the doodle.'},
                        {"type": "input_image", "image_url": f"data:image/png;base64,{b64}"},
                    ],
                },
            ],
        )
        text = response.output_text or ""
        logger.info(f"Classifier ({self.model}) returned {len(text)} chars for '{target_word}'")
        return text
