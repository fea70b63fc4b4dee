"""
Text Segmentation for Oversized Content.

The synthesis service accepts at most ``max_chars`` characters per
request (200 by default). Longer text is split into an ordered cluster
of chunks, each synthesized separately and reassembled by the clip
cache.

Strategy:
    1. Break the text at sentence terminators (. ? ! ; newline).
    2. Greedily join consecutive pieces into chunks up to max_chars,
       never splitting a piece.
    3. A piece that alone exceeds max_chars is re-split at clause
       punctuation (, : ;), then at whitespace.
    4. A piece still too long after whitespace splitting (one enormous
       word) is dropped and reported; the rest of the text proceeds.

Chunk IDs are ``<id>_1``, ``<id>_2``, ... in source order; the suffix is
the cluster slot the chunk's audio will fill.

Text hygiene helpers used before synthesis also live here:
remove_formatting, contains_speech and remove_omitted_characters.

Example:
    >>> result = split("intro.1.1.1", long_text)
    >>> [c.chunk_id for c in result.chunks]
    ['intro.1.1.1_1', 'intro.1.1.1_2']
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Sequence

from tts_prefetch.core.config import Defaults
from tts_prefetch.core.errors import ErrorCode
from tts_prefetch.core.logging import error, get_logger, verbose
from tts_prefetch.tts.ids import chunk_id
from tts_prefetch.utils.timeit import timeit

_LOG = get_logger("tts-prefetch.segmenter")


# =============================================================================
# Delimiters and Patterns
# =============================================================================

SENTENCE_DELIMITERS = ".?!\n;"
CLAUSE_DELIMITERS = ",:;"
WHITESPACE_DELIMITERS = " \t"

# Tried in order; each level only re-splits pieces the previous level left too long
DELIMITER_CLASSES: Sequence[str] = (SENTENCE_DELIMITERS, CLAUSE_DELIMITERS, WHITESPACE_DELIMITERS)

OMITTED_LEADING_CHARACTERS = "-. "

# Markup such as <i>, <color=#fff> or <sfx ...>
_FORMATTING_TAG = re.compile(r"<[^<>]*>")

# Any letter or digit, in any script
_SPEECH = re.compile(r"[^\W_]", re.UNICODE)

# Literal backslash-n left over from escaped source strings
_ESCAPED_NEWLINE = "\\n"


def _piece_pattern(delimiters: str) -> "re.Pattern[str]":
    # A run of non-delimiters plus its trailing delimiters, or the tail
    cls = "".join(re.escape(c) for c in delimiters)
    return re.compile(rf"[^{cls}]*[{cls}]+|[^{cls}]+", re.UNICODE)


_PIECE_PATTERNS = {d: _piece_pattern(d) for d in DELIMITER_CLASSES}


# =============================================================================
# Data Classes
# =============================================================================

class TextChunk(NamedTuple):
    """One chunk of a cluster: its ID and its text."""
    chunk_id: str
    text: str


@dataclass
class SegmentResult:
    """
    Result of splitting one text.

    Attributes:
        chunks: Ordered chunks; chunk N fills cluster slot N.
        dropped: Fragments that could not be split under max_chars.
        timings_s: Timing measurements in seconds.
    """
    chunks: List[TextChunk]
    dropped: List[str] = field(default_factory=list)
    timings_s: Dict[str, float] = field(default_factory=dict)

    @property
    def chunk_ids(self) -> List[str]:
        return [c.chunk_id for c in self.chunks]


# =============================================================================
# Text Hygiene
# =============================================================================

def remove_formatting(text: str) -> str:
    """Replace markup tags with a space."""
    return _FORMATTING_TAG.sub(" ", text)


def contains_speech(text: str) -> bool:
    """True if the text has at least one letter or digit."""
    return bool(text) and _SPEECH.search(text) is not None


def remove_omitted_characters(text: str) -> str:
    """
    Strip characters that must not reach the synthesizer.

    Leading dashes, dots and spaces are removed (a leading dash is read
    aloud by some voices) and escaped newlines become spaces.
    """
    text = text.lstrip(OMITTED_LEADING_CHARACTERS)
    if _ESCAPED_NEWLINE in text:
        text = text.replace(_ESCAPED_NEWLINE, " ").strip()
    return text


# =============================================================================
# Segmentation
# =============================================================================

def is_oversized(text: str, max_chars: int = Defaults.SEGMENTER_MAX_CHARS) -> bool:
    return len(text) > max_chars


def split_pieces(text: str, delimiters: str) -> List[str]:
    """
    Break text after each run of delimiters.

    Delimiters stay attached to the piece they end. Pieces are trimmed
    and pieces with nothing speakable are discarded.
    """
    pieces: List[str] = []
    for m in _PIECE_PATTERNS.get(delimiters, _piece_pattern(delimiters)).finditer(text):
        piece = remove_omitted_characters(m.group(0)).strip()
        if contains_speech(piece):
            pieces.append(piece)
    return pieces


def split(content_id: str, text: str, max_chars: int = Defaults.SEGMENTER_MAX_CHARS) -> SegmentResult:
    """
    Split ``text`` into chunks of at most ``max_chars`` characters.

    Text that is not oversized comes back as a single chunk, trimmed but
    otherwise unchanged.

    Args:
        content_id: Cluster ID; chunk IDs are derived from it.
        text: Text to split.
        max_chars: Maximum characters per chunk.

    Returns:
        SegmentResult with ordered chunks and any dropped fragments.
    """
    timings: Dict[str, float] = {}
    chunks: List[TextChunk] = []
    dropped: List[str] = []

    with timeit("split") as t:
        stripped = text.strip()
        if not is_oversized(stripped, max_chars):
            if stripped:
                chunks.append(TextChunk(chunk_id(content_id, 1), stripped))
        else:
            _segment(content_id, stripped, 0, max_chars, chunks, dropped)

    timings["split"] = t.seconds
    verbose(
        _LOG, "segmented",
        clip_id=content_id,
        chars=len(text),
        chunks=len(chunks),
        dropped=len(dropped),
        seconds=round(timings["split"], 4),
    )
    return SegmentResult(chunks=chunks, dropped=dropped, timings_s=timings)


def _segment(
    content_id: str,
    text: str,
    level: int,
    max_chars: int,
    out: List[TextChunk],
    dropped: List[str],
) -> None:
    if level >= len(DELIMITER_CLASSES):
        error(
            _LOG, "unsplittable_text",
            clip_id=content_id,
            code=ErrorCode.UNSPLITTABLE_TEXT,
            chars=len(text),
            preview=text[:Defaults.LOGGING_TEXT_PREVIEW_CHARS],
        )
        dropped.append(text)
        return

    current = ""

    def flush() -> None:
        nonlocal current
        if current:
            out.append(TextChunk(chunk_id(content_id, len(out) + 1), current))
            current = ""

    for piece in split_pieces(text, DELIMITER_CLASSES[level]):
        if len(piece) > max_chars:
            flush()
            _segment(content_id, piece, level + 1, max_chars, out, dropped)
        elif not current:
            current = piece
        elif len(current) + 1 + len(piece) <= max_chars:
            current = f"{current} {piece}"
        else:
            flush()
            current = piece

    flush()
