"""
Song identifier generation.

IDs are slugs of "title-artist". Collisions get a numeric suffix
(-2, -3, ...). Generation only probes for existence; the coordinator
re-checks under its per-ID lock before writing.
"""

import hashlib
import re
import unicodedata
from typing import Callable

# Candidate slugs are cut here so disambiguated IDs stay under MAX_ID_LENGTH
MAX_SLUG_LENGTH = 96

# Letters that NFKD does not decompose to ASCII
_TRANSLITERATIONS = str.maketrans({
    "ß": "ss", "æ": "ae", "Æ": "AE", "œ": "oe", "Œ": "OE",
    "ø": "o", "Ø": "O", "đ": "d", "Đ": "D", "ł": "l", "Ł": "L",
    "þ": "th", "Þ": "TH", "ð": "d", "Ð": "D",
})


def slugify(text: str) -> str:
    """Convert text to URL-safe slug."""
    text = text.translate(_TRANSLITERATIONS)

    # Normalize unicode and drop what has no ASCII form
    text = unicodedata.normalize('NFKD', text)
    text = text.encode('ascii', 'ignore').decode('ascii')

    # Apostrophes join words ("Don't" -> "dont")
    text = re.sub(r"['`]", '', text.lower())
    text = re.sub(r'[^a-z0-9]+', '-', text)
    return text.strip('-')


def candidate_id(title: str, artist: str) -> str:
    """Deterministic base ID for a title/artist pair, before disambiguation."""
    slug = slugify(f"{title} {artist}")
    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:MAX_SLUG_LENGTH].rstrip('-')
    if not slug:
        digest = hashlib.sha1(f"{title}\x00{artist}".encode("utf-8")).hexdigest()
        slug = f"song-{digest[:8]}"
    return slug


def generate_id(title: str, artist: str, exists: Callable[[str], bool]) -> str:
    """
    Generate a free ID for a new song.

    Args:
        title: Song title
        artist: Song artist
        exists: Predicate telling whether an ID is already taken

    Returns:
        The base slug if free, otherwise the first free "-N" variant (N >= 2)
    """
    base = candidate_id(title, artist)
    song_id = base
    counter = 2
    while exists(song_id):
        song_id = f"{base}-{counter}"
        counter += 1
    return song_id
