"""
OpenAI vision adapter for frame moderation labels.

Asks a vision model to rate each fixed moderation category for one frame
and returns the ratings as moderation labels.
"""

import base64
import json
import logging
from typing import List, Optional

import openai
from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from .base import LabelDetector
from ..errors import ClassificationError
from ..models import Category, ModerationLabel

logger = logging.getLogger("moderation_worker")

PROMPT = """You are a content moderation system. Rate this video frame for each of
these categories: {categories}.

For every category you detect, report:
1. The category name, exactly as listed
2. A short, specific label for what you see (for example "Graphic Violence")
3. Your confidence from 0 to 100 that the category applies

Omit categories that do not apply. Report nothing for a harmless frame."""


class DetectedCategory(BaseModel):
    """One category rating from the vision model"""
    category: str = Field(description="Moderation category name, exactly as listed")
    label: str = Field(description="Specific label for the detected content")
    confidence: float = Field(description="Confidence score 0-100", ge=0, le=100)


class FrameModeration(BaseModel):
    """Structured output from the moderation prompt"""
    detections: List[DetectedCategory] = Field(description="Categories detected in the frame")


def _strict_schema() -> dict:
    schema = FrameModeration.model_json_schema()

    # Structured outputs require additionalProperties: false on all objects
    def add_additional_properties_false(schema_part):
        if isinstance(schema_part, dict):
            if schema_part.get("type") == "object":
                schema_part["additionalProperties"] = False
            for value in schema_part.values():
                add_additional_properties_false(value)
        elif isinstance(schema_part, list):
            for item in schema_part:
                add_additional_properties_false(item)

    add_additional_properties_false(schema)
    return schema


class OpenAIVisionLabelDetector(LabelDetector):
    """Detects moderation labels with an OpenAI vision model"""

    name = "OpenAI Vision"

    def __init__(self, model: str = "gpt-4o", min_confidence: float = 50.0, client: Optional[OpenAI] = None):
        self.model = model
        self.min_confidence = min_confidence
        self.client = client
        self._schema = _strict_schema()

    def connect(self):
        if self.client is None:
            self.client = OpenAI()
            logger.info(f"OpenAI vision client initialized with model {self.model}")

    def detect_labels(self, image_bytes: bytes) -> List[ModerationLabel]:
        base64_image = base64.b64encode(image_bytes).decode('utf-8')
        prompt = PROMPT.format(categories=", ".join(category.value for category in Category))

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:image/jpeg;base64,{base64_image}"}
                            }
                        ]
                    }
                ],
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "frame_moderation",
                        "schema": self._schema,
                        "strict": True
                    }
                },
                temperature=0
            )
        except openai.RateLimitError as e:
            raise ClassificationError("OpenAI rate limit reached", throttled=True) from e
        except openai.OpenAIError as e:
            raise ClassificationError(f"OpenAI request failed: {e}") from e

        try:
            content = response.choices[0].message.content
            moderation = FrameModeration(**json.loads(content))
        except (TypeError, ValueError, ValidationError) as e:
            raise ClassificationError(f"Unreadable moderation response: {e}") from e

        labels = []
        for detection in moderation.detections:
            category = Category.lookup(detection.category)
            if category is None:
                logger.debug(f"Dropping unknown category from model output: {detection.category}")
                continue
            if detection.confidence < self.min_confidence:
                continue
            labels.append(ModerationLabel(
                name=detection.label,
                parent=category.value,
                confidence=detection.confidence
            ))
        return labels
