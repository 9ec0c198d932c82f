"""Text helpers for slugs, live-recording heuristics and dedup keys.

1. **Slugs** -- ``slugify("Artist Name")`` -> ``"artist-name"``; used for
   artist and venue URL keys.

2. **Live heuristics** -- title/album patterns marking live performances
   ("Live at ...", "(Live)", "MTV Unplugged", broadcast sessions).  Album
   patterns additionally catch "tour" and "sessions" records.

3. **Dedup keys** -- ``clean_title`` strips remaster/version suffixes and
   punctuation so that re-releases of one recording collapse together when
   no ISRC is available.
"""

import re

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")

_LIVE_TRACK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(live|concert|acoustic|unplugged|session)\b", re.IGNORECASE),
    re.compile(r"\b(live at|live from|live in|live on)\b", re.IGNORECASE),
    re.compile(r"\b(acoustic version|live version|concert version)\b", re.IGNORECASE),
    re.compile(r"\(live\)", re.IGNORECASE),
    re.compile(r"\[live\]", re.IGNORECASE),
    re.compile(r"- live$", re.IGNORECASE),
    re.compile(r"\bmtv unplugged\b", re.IGNORECASE),
)

_LIVE_ALBUM_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(live|concert|acoustic|unplugged|sessions?|tour)\b", re.IGNORECASE),
    re.compile(r"\b(live at|live from|live in|live on)\b", re.IGNORECASE),
    re.compile(r"\b(acoustic album|live album|concert album)\b", re.IGNORECASE),
    re.compile(r"\(live\)", re.IGNORECASE),
    re.compile(r"\[live\]", re.IGNORECASE),
    re.compile(r"- live$", re.IGNORECASE),
)

# "Song - Remastered 2011", "Song (2009 Remaster)", "Song [Radio Edit]"
_VERSION_SUFFIX = re.compile(
    r"\s*(\(|\[|-\s)[^)\]]*\b(remaster(ed)?|version|edit|mix|mono|stereo|deluxe)\b[^)\]]*(\)|\])?\s*$",
    re.IGNORECASE,
)
_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def slugify(value: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to ``-``, trim dashes."""
    return _SLUG_STRIP.sub("-", value.lower()).strip("-")


def is_live_title(title: str) -> bool:
    """Return True when a track title carries live-performance markers."""
    return any(p.search(title) for p in _LIVE_TRACK_PATTERNS)


def is_live_album(name: str) -> bool:
    """Return True when an album name marks a live or tour record."""
    return any(p.search(name) for p in _LIVE_ALBUM_PATTERNS)


def clean_title(title: str) -> str:
    """Normalize a track title for fallback dedup.

    Lowercases, drops one trailing remaster/version suffix, strips
    punctuation and collapses whitespace.

    Args:
        title: Raw track title.

    Returns:
        The normalized title (may be empty for punctuation-only titles).
    """
    cleaned = _VERSION_SUFFIX.sub("", title.strip())
    cleaned = _NON_WORD.sub(" ", cleaned.lower())
    return _WHITESPACE.sub(" ", cleaned).strip()


def fallback_track_key(title: str, duration_ms: int) -> str:
    """Build the title+duration key used when a track has no ISRC.

    Duration is rounded to whole seconds so that 210000 and 210400 ms
    versions of one recording still collide.
    """
    return f"{clean_title(title)}:{round(duration_ms / 1000)}"
