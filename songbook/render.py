"""
Content negotiation and rendering of songs and search results.

Three representations are supported, in this preference order:
    text/song   the song text itself (interchange format)
    text/plain  the song text verbatim
    text/html   a structured markup fragment with highlighted chords
"""

import logging
from html import escape
from typing import Optional

from .song_format import directive, parse_song, split_chords, transpose_song
from .types import SearchHit

logger = logging.getLogger(__name__)

MIME_TEXT_SONG = "text/song"
MIME_TEXT_PLAIN = "text/plain"
MIME_TEXT_HTML = "text/html"

SUPPORTED_TYPES = (MIME_TEXT_SONG, MIME_TEXT_PLAIN, MIME_TEXT_HTML)

# Directives that go into the header block instead of the song body
_HEADER_DIRECTIVES = {"title", "artist", "subtitle", "key", "meta", "composer", "capo", "tempo"}

_SECTION_STARTS = {
    "start_of_chorus": "chorus", "soc": "chorus",
    "start_of_verse": "verse", "sov": "verse",
    "start_of_bridge": "bridge", "sob": "bridge",
}
_SECTION_ENDS = {"end_of_chorus", "eoc", "end_of_verse", "eov", "end_of_bridge", "eob"}


# -----------------------------------------------------------------------------
# Negotiation
# -----------------------------------------------------------------------------

def _parse_accept(header: str) -> list[tuple[str, str, float]]:
    """Parse an Accept header into (type, subtype, q) triples.

    Raises:
        ValueError: If a range or a q parameter is malformed
    """
    ranges = []
    for part in header.split(","):
        part = part.strip()
        if not part:
            continue
        fields = [f.strip() for f in part.split(";")]
        media = fields[0].lower()
        if media == "*":
            media = "*/*"
        main, sep, sub = media.partition("/")
        if not sep or not main or not sub:
            raise ValueError(f"Malformed media range: {part!r}")
        q = 1.0
        for param in fields[1:]:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                q = float(value)
                if not 0.0 <= q <= 1.0:
                    raise ValueError(f"q out of range: {value!r}")
        ranges.append((main, sub, q))
    return ranges


def _quality(mime: str, ranges: list[tuple[str, str, float]]) -> float:
    """Quality of a supported type: q of the most specific matching range."""
    main, _, sub = mime.partition("/")
    best_specificity = -1
    best_q = 0.0
    for r_main, r_sub, q in ranges:
        if r_main == main and r_sub == sub:
            specificity = 2
        elif r_main == main and r_sub == "*":
            specificity = 1
        elif r_main == "*" and r_sub == "*":
            specificity = 0
        else:
            continue
        if specificity > best_specificity:
            best_specificity = specificity
            best_q = q
    return best_q


def negotiate(accept: Optional[str], supported: tuple[str, ...] = SUPPORTED_TYPES) -> str:
    """
    Pick the representation for an Accept header.

    The highest q wins; ties go to the earlier entry of `supported`.
    Absent, unparseable or unsatisfiable headers give supported[0].
    """
    if not accept or not accept.strip():
        return supported[0]
    try:
        ranges = _parse_accept(accept)
    except ValueError:
        logger.debug("Unparseable Accept header: %r", accept)
        return supported[0]

    best = supported[0]
    best_q = 0.0
    for mime in supported:
        q = _quality(mime, ranges)
        if q > best_q:
            best, best_q = mime, q
    return best


# -----------------------------------------------------------------------------
# Songs
# -----------------------------------------------------------------------------

def render_song(body: str, content_type: str, *, transpose: int = 0) -> str:
    """
    Render a song body in the requested representation.

    Args:
        body: Raw song text
        content_type: One of SUPPORTED_TYPES
        transpose: Semitone offset applied to chords before rendering
    """
    if transpose:
        body = transpose_song(body, transpose)
    if content_type == MIME_TEXT_HTML:
        return song_to_html(body)
    return body


def song_to_html(body: str) -> str:
    """Structured markup for a song: metadata header plus chord-annotated lines."""
    song = parse_song(body)
    out = ['<article class="song" itemscope itemtype="http://schema.org/MusicComposition">']

    out.append('<header class="song-metadata">')
    out.append(f'<h1 class="song-title" itemprop="name">{escape(song.title)}</h1>')
    if song.artist:
        out.append(f'<span class="song-metadata-value" itemprop="byArtist">{escape(song.artist)}</span>')
    if song.key:
        out.append(f'<span class="song-metadata-value" itemprop="musicalKey">{escape(song.key)}</span>')
    out.append('</header>')

    out.append('<div class="song-content">')
    paragraph: list[str] = []

    def flush():
        if paragraph:
            out.append('<div class="song-paragraph">' + "".join(paragraph) + '</div>')
            paragraph.clear()

    for line in body.splitlines():
        parsed = directive(line)
        if parsed is not None:
            name, value = parsed
            if name in _HEADER_DIRECTIVES:
                continue
            flush()
            if name in _SECTION_STARTS:
                out.append(f'<div class="song-{_SECTION_STARTS[name]}">')
            elif name in _SECTION_ENDS:
                out.append('</div>')
            elif name in ("comment", "c", "comment_italic", "ci"):
                out.append(f'<p class="song-comment">{escape(value)}</p>')
            continue
        if not line.strip():
            flush()
            continue
        paragraph.append(_line_to_html(line))
    flush()

    out.append('</div>')
    out.append('</article>')
    return "\n".join(out)


def _line_to_html(line: str) -> str:
    chunks = []
    for chord, text in split_chords(line):
        if chord is None:
            chunks.append(escape(text))
        else:
            chunks.append(
                f'<span class="song-chunk"><span class="song-chord">{escape(chord)}</span>'
                f'{escape(text)}</span>'
            )
    return '<p class="song-line">' + "".join(chunks) + '</p>'


# -----------------------------------------------------------------------------
# Search results and messages
# -----------------------------------------------------------------------------

def render_results(hits: list[SearchHit], content_type: str) -> str:
    """Render ranked search hits; text forms are one tab-separated line per hit."""
    if content_type == MIME_TEXT_HTML:
        items = [
            f'<li class="song-item"><a href="/songs/{escape(hit.id)}">{escape(hit.title)}</a>'
            f' <span class="song-artist">{escape(hit.artist)}</span>'
            + (f' <span class="song-snippet">{escape(hit.snippet)}</span>' if hit.snippet else "")
            + '</li>'
            for hit in hits
        ]
        return '<ul class="song-list">' + "".join(items) + '</ul>'
    return "".join(f"{hit.id}\t{hit.title}\t{hit.artist}\n" for hit in hits)


def render_message(message: str, content_type: str, level: str = "danger") -> str:
    """Render a user-facing message (errors, confirmations)."""
    if content_type == MIME_TEXT_HTML:
        return f'<div class="alert alert-{level}" role="alert">{escape(message)}</div>'
    return message


def render_activation_alert(admin_key: str) -> str:
    """Markup shown until the administrator key is first used."""
    return (
        '<div class="alert alert-warning" role="alert">'
        'An administrator key was created for this songbook: '
        f'<code>{escape(admin_key)}</code>. '
        f'Open <a href="?key={escape(admin_key)}">this link</a> to activate it. '
        'This message disappears once the key has been used.'
        '</div>'
    )
