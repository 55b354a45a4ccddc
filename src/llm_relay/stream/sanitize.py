"""Unicode clean-up for model output text."""

from __future__ import annotations

_DROPPED = frozenset((0xFFFD, 0xFEFF))

# UTF-8 BOM decoded as Latin-1
_MOJIBAKE_BOM = "\u00ef\u00bb\u00bf"

_INVISIBLE_RANGES = (
    (0x200B, 0x200F),
    (0x202A, 0x202E),
    (0x2060, 0x206F),
)


def _is_dropped(code: int) -> bool:
    if code in _DROPPED:
        return True
    if code < 0x20 and code not in (0x09, 0x0A, 0x0D):
        return True
    if 0x7F <= code <= 0x9F:
        return True
    return any(lo <= code <= hi for lo, hi in _INVISIBLE_RANGES)


def sanitize_ai_text(text: str) -> str:
    """Strip characters that corrupt rendering of streamed text.

    Removes replacement characters, byte-order marks (including a BOM
    misdecoded as ``ï»¿``), unpaired surrogates, C0/C1 control characters
    other than tab / LF / CR, and zero-width / bidi-control characters.
    A high+low surrogate pair is joined into the code point it encodes.
    Never raises.
    """
    if not text:
        return text

    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        code = ord(ch)

        if code == 0xEF and text.startswith(_MOJIBAKE_BOM, i):
            i += len(_MOJIBAKE_BOM)
            continue

        if 0xD800 <= code <= 0xDBFF:
            nxt = ord(text[i + 1]) if i + 1 < n else 0
            if 0xDC00 <= nxt <= 0xDFFF:
                out.append(chr(0x10000 + ((code - 0xD800) << 10) + (nxt - 0xDC00)))
                i += 2
            else:
                i += 1
            continue
        if 0xDC00 <= code <= 0xDFFF:
            i += 1
            continue

        if not _is_dropped(code):
            out.append(ch)
        i += 1

    return "".join(out)
