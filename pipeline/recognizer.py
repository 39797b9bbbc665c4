"""
Recognition Service — Turns a batch of sampled frames into subtitle
candidates.

Uses the Gemini generateContent REST API with a JSON response schema.
Frames and their timestamps are sent together so the model anchors each
detection to the timestamps of the batch.

Failures are never coerced into "no subtitles": any transport error or
malformed payload raises RecognitionFailure.
"""

import os
import json
import math
import time
import base64
import random
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import requests
from dotenv import load_dotenv

from .errors import ConfigurationError, RecognitionFailure
from .sampler import SampledFrame

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-3-pro-preview"
DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta"

SUPPORTED_LANGUAGES = (
    "English",
    "Japanese",
    "Korean",
    "Chinese (Simplified)",
    "Chinese (Traditional)",
    "Thai",
)

# Rate limiting and server-side errors are worth another attempt
RETRYABLE_STATUS = {429, 500, 502, 503, 504}

RESPONSE_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "text": {
                "type": "STRING",
                "description": "The exact dialogue text captured",
            },
            "startTime": {
                "type": "NUMBER",
                "description": "Exact start time in seconds based on batch metadata",
            },
            "endTime": {
                "type": "NUMBER",
                "description": "Exact end time in seconds based on batch metadata",
            },
        },
        "required": ["text", "startTime", "endTime"],
    },
}


def build_prompt(language: str) -> str:
    return f"""
OBJECTIVE: Extract all hard-coded subtitles/captions from the provided sequence of video frames.
LANGUAGE PRIORITY: {language}.

INSTRUCTIONS:
1. Examine EVERY frame carefully for text.
2. Record every unique line of dialogue or caption.
3. PRECISE TIMING: For each line, determine exactly which frame it FIRST appears in and which frame it LAST remains visible in.
4. SHORT DIALOGUE: Do not miss short phrases like "Yes", "No", "Look!", or single-word exclamations.
5. MULTIPLE LINES: If several lines are shown at once, keep them in a single "text" block separated by a newline.
6. CHARACTER LINES: Capture distinct lines from different characters sequentially.
7. OMIT: Ignore watermarks, station logos, or background signs that are not part of the hard-subtitles.

OUTPUT FORMAT: Return a JSON array of objects with keys: "text", "startTime", "endTime".
Example: [{{"text": "Hello, how are you?", "startTime": 12.5, "endTime": 14.2}}]
""".strip()


@dataclass
class SubtitleCandidate:
    """An unreconciled detection returned for one batch."""
    text: str
    start_sec: float
    end_sec: float

    def __repr__(self):
        return (f"SubtitleCandidate({self.start_sec:.2f}–{self.end_sec:.2f}s, "
                f"'{self.text[:40]}')")


def _to_seconds(value, field_name: str, index: int) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise RecognitionFailure(
            f"Item {index}: '{field_name}' is not a number: {value!r}"
        )
    try:
        seconds = float(value)
    except ValueError as e:
        raise RecognitionFailure(
            f"Item {index}: '{field_name}' is not a number: {value!r}"
        ) from e
    if not math.isfinite(seconds):
        raise RecognitionFailure(f"Item {index}: '{field_name}' is not finite")
    return seconds


def parse_candidates(payload, batch: Sequence[SampledFrame]) -> List[SubtitleCandidate]:
    """
    Validate a recognition payload and convert it to candidates.

    Args:
        payload: JSON text or an already decoded list.
        batch: The frames the payload was produced from; candidate times
            are clamped into the batch's time span.

    Raises:
        RecognitionFailure: If the payload is not a list of
            {text, startTime, endTime} objects.
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise RecognitionFailure(f"Response is not valid JSON: {e}") from e

    if not isinstance(payload, list):
        raise RecognitionFailure(
            f"Expected a JSON array, got {type(payload).__name__}"
        )

    span_start = batch[0].timestamp if batch else None
    span_end = batch[-1].timestamp if batch else None

    candidates = []
    for i, item in enumerate(payload):
        if not isinstance(item, dict):
            raise RecognitionFailure(f"Item {i} is not an object: {item!r}")

        text = item.get("text")
        if not isinstance(text, str):
            raise RecognitionFailure(f"Item {i}: 'text' missing or not a string")

        start = _to_seconds(item.get("startTime"), "startTime", i)
        end = _to_seconds(item.get("endTime"), "endTime", i)

        if span_start is not None:
            start = min(max(start, span_start), span_end)
            end = min(max(end, span_start), span_end)
        if end < start:
            end = start

        candidates.append(SubtitleCandidate(text=text, start_sec=start, end_sec=end))

    return candidates


class RecognitionService(ABC):
    """Abstract base class for batch subtitle recognizers."""

    @abstractmethod
    def recognize(
        self, batch: Sequence[SampledFrame], language: str
    ) -> List[SubtitleCandidate]:
        """
        Detect subtitles in an ordered batch of frames.

        Args:
            batch: Frames in timestamp order.
            language: Target language name (e.g. "English").

        Returns:
            Candidates with times inside the batch's span.

        Raises:
            RecognitionFailure: On any service error or malformed response.
        """


class GeminiRecognizer(RecognitionService):
    """Recognizes burned-in subtitles with a Gemini vision model."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = 120.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ConfigurationError(
                "Recognition API key is missing. Set it in the environment or a .env file."
            )
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, session: Optional[requests.Session] = None) -> "GeminiRecognizer":
        """
        Build a recognizer from a RecognitionConfig.

        The API key is read from the environment variable named by
        ``config.api_key_env``; a .env file in the working directory is
        loaded first if present.
        """
        load_dotenv()
        api_key = os.getenv(config.api_key_env, "")
        if not api_key:
            raise ConfigurationError(
                f"Environment variable {config.api_key_env} is not set; "
                f"the recognition service needs an API key."
            )
        return cls(
            api_key=api_key,
            model=config.model,
            endpoint=config.endpoint,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            session=session,
        )

    @property
    def url(self) -> str:
        return f"{self.endpoint}/models/{self.model}:generateContent"

    def recognize(
        self, batch: Sequence[SampledFrame], language: str
    ) -> List[SubtitleCandidate]:
        frames = [f for f in batch if not f.is_blank]
        if not frames:
            if batch:
                logger.warning(
                    f"Batch {batch[0].timestamp:.2f}-{batch[-1].timestamp:.2f}s has "
                    f"no captured frames; nothing to recognize"
                )
            return []

        body = self._build_request(frames, language)
        data = self._post(body)
        candidates = parse_candidates(self._response_text(data), frames)

        logger.debug(
            f"Batch {frames[0].timestamp:.2f}-{frames[-1].timestamp:.2f}s: "
            f"{len(candidates)} candidates"
        )
        return candidates

    @staticmethod
    def _build_request(frames: Sequence[SampledFrame], language: str) -> dict:
        parts = []
        for frame in frames:
            parts.append({"text": f"Frame at {frame.timestamp:.2f}s"})
            parts.append({
                "inline_data": {
                    "mime_type": "image/jpeg",
                    "data": base64.b64encode(frame.image).decode("ascii"),
                }
            })

        timestamps = "s, ".join(f"{f.timestamp:.2f}" for f in frames)
        parts.append({
            "text": f"{build_prompt(language)}\n\n"
                    f"BATCH METADATA (Timestamps): [{timestamps}s]"
        })

        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    def _post(self, body: dict) -> dict:
        """POST with retry and exponential backoff on transient failures."""
        headers = {"x-goog-api-key": self.api_key}
        delay = self.retry_delay
        error = "no attempt made"

        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.post(
                    self.url, json=body, headers=headers, timeout=self.timeout
                )
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                error = f"request failed: {e}"
            except requests.exceptions.RequestException as e:
                raise RecognitionFailure(f"Recognition request is invalid: {e}") from e
            else:
                if response.status_code in RETRYABLE_STATUS:
                    error = f"HTTP {response.status_code}: {response.text[:200]}"
                elif not response.ok:
                    raise RecognitionFailure(
                        f"Recognition service returned HTTP "
                        f"{response.status_code}: {response.text[:200]}"
                    )
                else:
                    try:
                        return response.json()
                    except ValueError as e:
                        raise RecognitionFailure(
                            f"Recognition service returned non-JSON body: {e}"
                        ) from e

            if attempt < self.max_retries:
                sleep_time = delay + random.uniform(0, 0.5 * delay)
                logger.warning(
                    f"Recognition attempt {attempt + 1} failed ({error}), "
                    f"retrying in {sleep_time:.1f}s"
                )
                time.sleep(sleep_time)
                delay = min(delay * 2, 30.0)

        raise RecognitionFailure(
            f"Recognition failed after {self.max_retries + 1} attempts: {error}"
        )

    @staticmethod
    def _response_text(data: dict) -> str:
        """Extract the model's text output from a generateContent response."""
        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not candidates:
            reason = (data.get("promptFeedback") or {}).get("blockReason") \
                if isinstance(data, dict) else None
            raise RecognitionFailure(
                f"Recognition response has no candidates"
                + (f" (blocked: {reason})" if reason else "")
            )

        parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        if not text.strip():
            finish = candidates[0].get("finishReason", "unknown")
            raise RecognitionFailure(
                f"Recognition response is empty (finish reason: {finish})"
            )
        return text
