"""
Atreides - Obfuscation Normalization

Each stage undoes one way of hiding a command from literal pattern
matching. Stages are pure string functions; repeated decoding is capped
at MAX_DECODE_ITERATIONS so nested encodings cannot amplify work.
"""

import re
import unicodedata
from urllib.parse import unquote

MAX_DECODE_ITERATIONS = 3

_HEX_ESCAPE = re.compile(r"\\x([0-9a-fA-F]{2})")
_OCTAL_ESCAPE = re.compile(r"\\([0-7]{1,3})")
_QUOTED_TOKEN = re.compile(r"(['\"])([a-zA-Z0-9_\-./]+)\1")
_QUOTED_CHAR = re.compile(r"(['\"])(.)\1")
_LINE_CONTINUATION = re.compile(r"\\\n")
_ESCAPED_LETTER = re.compile(r"\\([a-zA-Z\-])")
_WHITESPACE = re.compile(r"\s+")

# Cyrillic letters that render like Latin ones
HOMOGLYPHS = {
    "\u0430": "a",  # а
    "\u0435": "e",  # е
    "\u043e": "o",  # о
    "\u0440": "p",  # р
    "\u0441": "c",  # с
    "\u0445": "x",  # х
    "\u0443": "y",  # у
    "\u0456": "i",  # і
    "\u0458": "j",  # ј
    "\u0455": "s",  # ѕ
    "\u04bb": "h",  # һ
    "\u0501": "d",  # ԁ
    "\u051b": "q",  # ԛ
    "\u0410": "A",  # А
    "\u0415": "E",  # Е
    "\u041e": "O",  # О
    "\u0420": "P",  # Р
    "\u0421": "C",  # С
    "\u0425": "X",  # Х
}
_HOMOGLYPH_TABLE = str.maketrans(HOMOGLYPHS)


def _repeat(stage, text: str) -> str:
    for _ in range(MAX_DECODE_ITERATIONS):
        decoded = stage(text)
        if decoded == text:
            break
        text = decoded
    return text


def _url_decode_once(text: str) -> str:
    try:
        return unquote(text, errors="strict")
    except UnicodeDecodeError:
        return text


def url_decode(text: str) -> str:
    """Percent-decode, repeatedly for double encoding."""
    return _repeat(_url_decode_once, text)


def hex_decode(text: str) -> str:
    """Decode \\xNN escapes."""
    return _repeat(lambda t: _HEX_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), t), text)


def _octal_char(match: re.Match[str]) -> str:
    value = int(match.group(1), 8)
    return chr(value) if value <= 127 else match.group(0)


def octal_decode(text: str) -> str:
    """Decode \\NNN escapes within the ASCII range."""
    return _repeat(lambda t: _OCTAL_ESCAPE.sub(_octal_char, t), text)


def strip_quotes(text: str) -> str:
    """Remove quotes wrapped around single tokens or single characters."""
    text = _QUOTED_TOKEN.sub(r"\2", text)
    text = _QUOTED_CHAR.sub(r"\2", text)
    return text.replace("''", "").replace('""', "")


def strip_backslashes(text: str) -> str:
    """Remove line continuations and backslashes in front of letters."""
    text = _LINE_CONTINUATION.sub("", text)
    return _ESCAPED_LETTER.sub(r"\1", text)


def fold_homoglyphs(text: str) -> str:
    """Fold compatibility forms (full-width etc.) and Cyrillic look-alikes to ASCII."""
    return unicodedata.normalize("NFKC", text).translate(_HOMOGLYPH_TABLE)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


STAGES = (
    url_decode,
    hex_decode,
    octal_decode,
    strip_quotes,
    strip_backslashes,
    fold_homoglyphs,
)


def normalize_command(text: str) -> str:
    """
    Run every stage in order, then collapse whitespace.

    The full sequence is re-applied until the output stops changing, so
    a stage that exposes input for an earlier stage is still handled and
    normalize_command(normalize_command(x)) == normalize_command(x).
    Each decoder stays capped at MAX_DECODE_ITERATIONS per pass.

    Args:
        text: Raw command string

    Returns:
        Normalized command
    """
    # Each changing pass consumes at least one escape, quote or look-alike
    max_passes = len(text) + MAX_DECODE_ITERATIONS
    for _ in range(max_passes):
        result = text
        for stage in STAGES:
            result = stage(result)
        result = collapse_whitespace(result)
        if result == text:
            break
        text = result
    return text


def was_obfuscated(original: str, normalized: str) -> bool:
    """True when normalization changed more than whitespace."""
    return collapse_whitespace(original) != normalized


def normalize_path(path: str) -> str:
    """Decode a path and normalize its separators and quoting."""
    path = url_decode(path)
    path = path.replace("\\", "/")
    path = re.sub(r"/{2,}", "/", path)
    return re.sub(r"['\"]", "", path)
