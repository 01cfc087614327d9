"""Annotation classifier.

Turns comment lines such as ``// @Param id path int true "User ID"`` into
typed ``Annotation`` values. Keywords are case-insensitive; unknown ones
are kept as ``AnnotationKind.OTHER`` rather than dropped.
"""

import re
from collections.abc import Iterable, Iterator

from swagscan.parser.base import Annotation, AnnotationKind

ANNOTATION_RE = re.compile(r"^\s*(?://+|\*)\s*@(\w+)(?:\.([\w.\-]+))?(?:\s+(.*?))?\s*$")

# success/failure predate @response and mean the same thing
ALIASES = {
    "success": AnnotationKind.RESPONSE,
    "failure": AnnotationKind.RESPONSE,
}

_KINDS = {kind.value: kind for kind in AnnotationKind if kind is not AnnotationKind.OTHER}


def keyword_kind(keyword: str) -> AnnotationKind:
    key = keyword.lower()
    if key in ALIASES:
        return ALIASES[key]
    return _KINDS.get(key, AnnotationKind.OTHER)


def classify(line: str) -> Annotation | None:
    """Classify a single line, or return None if it is not an annotation."""
    match = ANNOTATION_RE.match(line)
    if not match:
        return None
    keyword, attribute, value = match.groups()
    return Annotation(
        kind=keyword_kind(keyword),
        keyword=keyword,
        attribute=attribute,
        value=value or "",
    )


def _block_text(line: str) -> str:
    text = line.strip()
    if text.startswith("/*"):
        text = text[2:]
    if text.endswith("*/"):
        text = text[:-2]
    text = text.strip()
    if text.startswith("//"):
        text = text[2:]
    elif text.startswith("*"):
        text = text[1:]
    return text.strip()


def scan(lines: Iterable[str]) -> Iterator[Annotation]:
    """Yield annotations for a stream of lines.

    Inside a ``/* ... */`` block, bare comment text and ``@description``
    values accumulate and are emitted as a single description annotation
    when the block closes.
    """
    in_block = False
    buffer: list[str] = []

    for line in lines:
        stripped = line.strip()
        if not in_block and stripped.startswith("/*"):
            in_block = True
            buffer = []

        if in_block:
            annotation = classify(line) or classify("// " + _block_text(line))
            if annotation is None:
                text = _block_text(line)
                if text:
                    buffer.append(text)
            elif annotation.kind is AnnotationKind.DESCRIPTION:
                buffer.append(annotation.value)
            else:
                yield annotation

            if stripped.endswith("*/"):
                in_block = False
                if buffer:
                    yield Annotation(
                        kind=AnnotationKind.DESCRIPTION,
                        keyword="description",
                        value="\n".join(buffer).strip(),
                    )
                buffer = []
            continue

        annotation = classify(line)
        if annotation is not None:
            yield annotation

    if in_block and buffer:
        yield Annotation(kind=AnnotationKind.DESCRIPTION, keyword="description", value="\n".join(buffer).strip())
