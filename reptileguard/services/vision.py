# reptileguard/services/vision.py
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from functools import lru_cache
from typing import List, Tuple

import google.generativeai as genai
from pydantic import ValidationError as PydanticValidationError

from reptileguard.errors import ClassificationError, ValidationError
from reptileguard.models.report import ReptileData

log = logging.getLogger(__name__)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

PROMPT = """Identify the reptile shown in the provided images.
There may be multiple images of the same individual from different angles.
Return ONLY JSON with these fields:
{
  "name": "common English name",
  "scientificName": "standard Latin binomial",
  "description": "short English description",
  "isVenomous": true/false,
  "dangerLevel": "Low" | "Medium" | "High" | "Critical",
  "precautions": ["short English instruction", ...],
  "habitat": "typical environment where this reptile is found"
}
"""

_DATA_URL = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)


@lru_cache(maxsize=1)
def get_model():
    if not GEMINI_API_KEY:
        raise ClassificationError("GEMINI_API_KEY is not set")
    genai.configure(api_key=GEMINI_API_KEY)
    return genai.GenerativeModel(
        GEMINI_MODEL,
        generation_config={"response_mime_type": "application/json"},
    )


def decode_image(image: str) -> Tuple[str, bytes]:
    """Accept a data URL or bare base64 (assumed JPEG). Returns (mime, bytes)."""
    mime = "image/jpeg"
    m = _DATA_URL.match(image.strip())
    payload = image.strip()
    if m:
        mime, payload = m.group("mime"), m.group("data")
    try:
        return mime, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Image is not valid base64 data.") from e


def parse_reptile_json(text: str) -> ReptileData:
    cleaned = re.sub(r"^```json|```$", "", (text or "").strip(), flags=re.MULTILINE).strip()
    if not cleaned:
        raise ClassificationError("No identification results received.")
    try:
        return ReptileData.model_validate_json(cleaned)
    except PydanticValidationError as e:
        raise ClassificationError("Could not read the identification result. Please retake the photo.") from e


def identify_reptile(images: List[str]) -> ReptileData:
    """
    Single attempt, no retry: on failure the user is asked to retake the photo.
    """
    if not images:
        raise ValidationError("At least one image is required.")

    parts = [{"mime_type": mime, "data": data} for mime, data in map(decode_image, images)]
    model = get_model()
    try:
        response = model.generate_content([*parts, PROMPT])
        text = response.text
    except Exception as e:
        log.exception("Gemini identification failed: %s", e)
        raise ClassificationError("Identification failed. Please retake the photo.") from e
    return parse_reptile_json(text)
