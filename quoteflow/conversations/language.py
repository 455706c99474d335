"""Language detection for inbound email bodies."""

from __future__ import annotations

from langdetect import DetectorFactory, LangDetectException, detect

# langdetect is randomised unless seeded.
DetectorFactory.seed = 0


def detect_language(text: str | None) -> str:
    """Return an ISO 639-1 code for ``text`` or ``"unknown"``."""

    if not text or not text.strip():
        return "unknown"
    try:
        return detect(text)
    except LangDetectException:
        return "unknown"
