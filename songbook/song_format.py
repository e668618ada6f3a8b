"""
ChordPro-style song text: metadata extraction, lyric extraction, and
chord transposition.

A song looks like:

    {title: Yesterday}
    {artist: Beatles}
    {key: F}

    [F]Yesterday, [Em7]all my troubles seemed so [A7]far a[Dm]way

Directives may also use the extended {meta: name value} form.
"""

import re
from typing import Optional

from .types import SongDocument

# {name: value} or {name} on its own
_DIRECTIVE_RE = re.compile(r'\{\s*([A-Za-z_][\w-]*)\s*(?::\s*([^}]*))?\}')

# {meta: name value}
_META_RE = re.compile(r'\{\s*meta\s*:\s*(\w+)\s+([^}]+)\}', re.IGNORECASE)

# Inline chord annotations [G], [Am7], [D/F#]
_CHORD_RE = re.compile(r'\[([^\]\n]+)\]')

# Root note plus accidental at the start of a chord
_NOTE_RE = re.compile(r'^([A-G])([#b]?)')

_DIRECTIVE_ALIASES = {
    "t": "title",
    "a": "artist",
    "st": "subtitle",
    "k": "key",
}

_NOTE_INDEXES = {
    "C": 0, "C#": 1, "Db": 1, "D": 2, "D#": 3, "Eb": 3, "E": 4,
    "F": 5, "F#": 6, "Gb": 6, "G": 7, "G#": 8, "Ab": 8, "A": 9,
    "A#": 10, "Bb": 10, "B": 11,
}

_NOTES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


def extract_metadata(content: str) -> dict[str, str]:
    """
    Extract directive metadata from song text.

    The first occurrence of a directive wins. {meta: ...} entries only fill
    names that plain directives left empty.
    """
    metadata: dict[str, str] = {}
    for match in _DIRECTIVE_RE.finditer(content):
        name = match.group(1).lower()
        name = _DIRECTIVE_ALIASES.get(name, name)
        value = (match.group(2) or "").strip()
        if name == "meta" or not value:
            continue
        metadata.setdefault(name, value)

    for match in _META_RE.finditer(content):
        name = match.group(1).lower()
        if name == "writer":
            name = "composer"
        metadata.setdefault(name, match.group(2).strip())

    return metadata


def is_directive_line(line: str) -> bool:
    stripped = line.strip()
    return stripped.startswith('{') and stripped.endswith('}')


def extract_lyrics(content: str) -> str:
    """Extract plain lyrics (without chords and directives) from song text."""
    lines = []
    for line in content.splitlines():
        if is_directive_line(line) or line.lstrip().startswith('#'):
            continue
        clean_line = _CHORD_RE.sub('', line).strip()
        if clean_line:
            lines.append(' '.join(clean_line.split()))
    return '\n'.join(lines)


def extract_chords(content: str) -> list[str]:
    """Distinct chords in order of first appearance."""
    seen: dict[str, None] = {}
    for match in _CHORD_RE.finditer(content):
        seen.setdefault(match.group(1).strip(), None)
    return list(seen)


def parse_song(content: str, id: Optional[str] = None) -> SongDocument:
    """
    Build a SongDocument from raw song text.

    The artist falls back to the subtitle when no artist directive is
    present. Validation of mandatory fields is left to the caller.
    """
    metadata = extract_metadata(content)
    return SongDocument(
        id=id,
        title=metadata.get("title", ""),
        artist=metadata.get("artist") or metadata.get("subtitle", ""),
        body=content,
        key=metadata.get("key"),
        lyrics=extract_lyrics(content),
        chords=extract_chords(content),
    )


def transpose_chord(chord: str, semitones: int) -> str:
    """
    Transpose one chord name by a number of semitones.

    Spelling is sharps-only. The bass note of a slash chord moves too.
    Anything that does not start with a note name is returned unchanged.
    """
    match = _NOTE_RE.match(chord)
    if match is None or semitones % 12 == 0:
        return chord
    note = match.group(0)
    rest = chord[len(note):]
    slash = rest.find('/')
    if slash != -1 and slash < len(rest) - 1:
        rest = rest[:slash + 1] + transpose_chord(rest[slash + 1:], semitones)
    new_note = _NOTES[(_NOTE_INDEXES[note] + semitones) % 12]
    return new_note + rest


def transpose_song(content: str, semitones: int) -> str:
    """Transpose every inline chord and the key directive of a song."""
    if semitones % 12 == 0:
        return content

    def chord_sub(match: re.Match) -> str:
        return f"[{transpose_chord(match.group(1), semitones)}]"

    def key_sub(match: re.Match) -> str:
        return f"{match.group(1)}{transpose_chord(match.group(2), semitones)}{match.group(3)}"

    content = _CHORD_RE.sub(chord_sub, content)
    return re.sub(r'(\{\s*(?:key|k)\s*:\s*)([^}\s]+)(\s*\})', key_sub, content,
                  flags=re.IGNORECASE)


def split_chords(line: str) -> list[tuple[Optional[str], str]]:
    """
    Split a lyric line into (chord, text) segments.

    The first segment has chord None when the line does not start with a
    chord annotation.
    """
    segments: list[tuple[Optional[str], str]] = []
    position = 0
    chord: Optional[str] = None
    for match in _CHORD_RE.finditer(line):
        text = line[position:match.start()]
        if chord is not None or text:
            segments.append((chord, text))
        chord = match.group(1)
        position = match.end()
    tail = line[position:]
    if chord is not None or tail:
        segments.append((chord, tail))
    return segments


def directive(line: str) -> Optional[tuple[str, str]]:
    """Parse a whole-line directive into (name, value); None for other lines."""
    if not is_directive_line(line):
        return None
    match = _DIRECTIVE_RE.fullmatch(line.strip())
    if match is None:
        return None
    name = match.group(1).lower()
    return _DIRECTIVE_ALIASES.get(name, name), (match.group(2) or "").strip()
