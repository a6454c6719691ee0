"""Sentence segmentation for ingestion.

Architectural role:
    Splits one document's raw text into the ordered sentences that become memory
    records. The ingestor calls it once per document, so no sentence ever spans
    two documents.

Segmentation strategy:
    1. Decode bytes strictly (no replacement characters).
    2. Split paragraphs on blank lines; paragraphs are hard boundaries.
    3. Join wrapped lines inside a paragraph with single spaces.
    4. Split at terminal punctuation (optionally followed by closing quotes or
       brackets) when whitespace and a non-lowercase character follow.
    5. Skip boundaries after known abbreviations and single-letter initials.

Determinism and performance:
    Deterministic regular-expression processing; linear in input length.
"""

import re

from memchat.core.errors import DecodingError


PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
WHITESPACE = re.compile(r"\s+")
SENTENCE_END = re.compile(r"[.!?…]+[\"'”’)\]]*(?=\s)")

ABBREVIATIONS = {
    "mr", "mrs", "ms", "dr", "prof", "sr", "jr", "vs", "etc",
    "e.g", "i.e", "inc", "ltd", "corp", "fig", "approx",
    "dept", "jan", "feb", "apr", "jun", "jul", "aug",
    "sep", "sept", "oct", "nov",
}

# Capitalized words that usually open a sentence rather than continue a name.
SENTENCE_OPENERS = {
    "a", "an", "and", "but", "he", "her", "his", "i", "if", "in", "it", "its",
    "my", "on", "our", "she", "so", "that", "the", "their", "then", "there",
    "these", "they", "this", "those", "we", "you",
}

INITIAL = re.compile(r"^[A-Z]\.$")


def decode_text(data, encoding="utf-8", source_id=None):
    """Return `data` as text, decoding bytes strictly.

    Raises:
        DecodingError: Bytes are not valid in `encoding`.
    """
    if isinstance(data, str):
        return data
    try:
        return bytes(data).decode(encoding, errors="strict")
    except (UnicodeDecodeError, LookupError) as exc:
        raise DecodingError(
            f"Text from {source_id or 'input'} is not valid {encoding}",
            source_id=source_id,
        ) from exc


def _is_initial(paragraph, token_start, end):
    """Return whether a single capital letter before `end` is a name initial.

    It is one only when it sits next to another initial or a following
    capitalized word that is not a common sentence opener ("J. Doe",
    "J. R. Tolkien", but not "plan B. It worked.").
    """
    before = paragraph[:token_start].split()
    after = paragraph[end:].split(maxsplit=1)
    if before and INITIAL.match(before[-1].lstrip("(\"'“‘")):
        return True
    if not after:
        return False

    following = after[0].lstrip("(\"'“‘")
    if INITIAL.match(following):
        return True
    word = following.strip(".,;:!?\"'”’)]").lower()
    return following[:1].isupper() and word not in SENTENCE_OPENERS


def _is_abbreviation(paragraph, end):
    """Return whether the period ending at `end` closes an abbreviation."""
    token_start = paragraph.rfind(" ", 0, end) + 1
    token = paragraph[token_start:end].rstrip(".").lstrip("(\"'“‘")
    if not token:
        return False
    if len(token) == 1 and token.isalpha() and token.isupper():
        return _is_initial(paragraph, token_start, end)
    return token.lower() in ABBREVIATIONS


def _split_paragraph(paragraph):
    sentences = []
    start = 0

    for match in SENTENCE_END.finditer(paragraph):
        end = match.end()
        rest = paragraph[end:].lstrip()
        if rest and rest[0].islower():
            continue
        if paragraph[match.start()] == "." and match.group().rstrip("\"'”’)]") == ".":
            if _is_abbreviation(paragraph, match.start() + 1):
                continue

        sentence = paragraph[start:end].strip()
        if sentence:
            sentences.append(sentence)
        start = end

    tail = paragraph[start:].strip()
    if tail:
        sentences.append(tail)

    return sentences


def iter_sentences(text, encoding="utf-8", source_id=None):
    """Yield sentences from one document, in order."""
    text = decode_text(text, encoding=encoding, source_id=source_id)

    for block in PARAGRAPH_BREAK.split(text):
        paragraph = WHITESPACE.sub(" ", block).strip()
        if paragraph:
            yield from _split_paragraph(paragraph)


def segment(text, encoding="utf-8", source_id=None):
    """Split one document into stripped, non-empty sentences.

    Args:
        text: Document text as `str`, or raw `bytes` in `encoding`.
        encoding: Encoding used for bytes input.
        source_id: Document label used in error messages.

    Returns:
        List of sentences in document order (possibly empty).

    Raises:
        DecodingError: Bytes input cannot be decoded.
    """
    return list(iter_sentences(text, encoding=encoding, source_id=source_id))
