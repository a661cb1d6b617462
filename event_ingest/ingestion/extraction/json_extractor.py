"""
Response JSON Extractor.

Locates and decodes the first well-formed JSON object embedded in a noisy
text response, e.g. model output wrapped in commentary or code fences.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from event_ingest.ingestion.errors import JsonNotFoundError, MalformedJsonError

logger = logging.getLogger(__name__)


class ResponseJsonExtractor:
    """
    Extract the first balanced brace-delimited object from text.

    Braces are matched recursively and braces inside JSON string literals
    are ignored, so nested objects/arrays never end the region early.

    Two failure modes are kept apart:
    - no balanced region at all -> ``extract`` returns None
    - balanced region that is not valid JSON -> MalformedJsonError
    """

    @staticmethod
    def find_object_span(text: str) -> tuple[int, int] | None:
        """
        Return (start, end) of the first balanced {...} region, end exclusive.

        One pass over the text. A region opens at the first "{" outside any
        region; if the text ends before it closes, there is no balanced region.
        Quotes only start string literals inside a region.
        """
        start = None
        depth = 0
        in_string = False
        escaped = False

        for i, ch in enumerate(text or ""):
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue

            if ch == "{":
                if depth == 0:
                    start = i
                depth += 1
            elif depth == 0:
                continue
            elif ch == '"':
                in_string = True
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return start, i + 1
        return None

    @classmethod
    def extract(cls, text: str) -> dict[str, Any] | None:
        """
        Decode the first JSON object found in text.

        Args:
            text: Arbitrary text blob (model output)

        Returns:
            The decoded object, or None if no balanced region exists.

        Raises:
            MalformedJsonError: If the region exists but fails to decode.
        """
        span = cls.find_object_span(text)
        if span is None:
            return None

        fragment = text[span[0] : span[1]]
        try:
            return json.loads(fragment)
        except json.JSONDecodeError as e:
            raise MalformedJsonError(
                f"JSON decoding error: {e.msg} at position {e.pos}", fragment=fragment
            ) from e

    @classmethod
    def extract_or_raise(cls, text: str) -> dict[str, Any]:
        """Like extract(), but a missing object raises JsonNotFoundError."""
        result = cls.extract(text)
        if result is None:
            raise JsonNotFoundError("No JSON object found in response text")
        return result
