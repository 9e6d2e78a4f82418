"""
Encoding detection for census CSV bytes.

e-Stat downloads arrive either as UTF-8 or as Shift_JIS (cp932) depending on
where they were re-saved. Both decodings are attempted and scored by how many
expected header keywords they contain, minus a small penalty per U+FFFD
replacement character. This is a heuristic: a file with none of the keywords
is decided by the replacement penalty alone, and pure ASCII goes to UTF-8.
"""

import logging

from census_atlas.config import EncodingConfig
from census_atlas.logging_utils import log_event

REPLACEMENT_CHAR = "\ufffd"


def _decode(buf: bytes, encoding: str) -> str:
    try:
        text = buf.decode(encoding, errors="replace")
    except LookupError:
        return ""
    if text.startswith("\ufeff"):
        text = text[1:]
    return text


def score_text(text: str, config: EncodingConfig | None = None) -> float:
    """
    Score a decoded text by keyword presence.

    An empty decoding scores -1 so that any real text beats it.
    """
    config = config or EncodingConfig()
    if not text:
        return -1.0

    score = 0.0
    for keyword, weight in config.keywords:
        if keyword in text:
            score += weight
    score -= text.count(REPLACEMENT_CHAR) / config.replacement_penalty_divisor
    return score


def detect_encoding(buf: bytes, config: EncodingConfig | None = None) -> str:
    """Return the codec name that decode_smart() would pick for buf."""
    config = config or EncodingConfig()
    unicode_text = _decode(buf, config.unicode)
    legacy_text = _decode(buf, config.legacy)
    if score_text(legacy_text, config) > score_text(unicode_text, config):
        return config.legacy
    return config.unicode


def decode_smart(
    buf: bytes,
    config: EncodingConfig | None = None,
    logger: logging.Logger | None = None,
) -> str:
    """
    Decode CSV bytes as UTF-8 or cp932, whichever scores higher.

    Ties go to UTF-8: the legacy decoding must score strictly higher.
    """
    config = config or EncodingConfig()
    unicode_text = _decode(buf, config.unicode)
    legacy_text = _decode(buf, config.legacy)

    unicode_score = score_text(unicode_text, config)
    legacy_score = score_text(legacy_text, config)
    chosen = config.legacy if legacy_score > unicode_score else config.unicode

    if logger:
        log_event(logger, logging.DEBUG, f"Decoded {len(buf):,} bytes as {chosen}",
                  "encoding_detected", encoding=chosen,
                  unicode_score=unicode_score, legacy_score=legacy_score)

    return legacy_text if chosen == config.legacy else unicode_text

