"""Directive ("tag") extraction from assembled response text."""

from __future__ import annotations

import re

# <vision>front_camera</vision>
_ELEMENT_TAG_RE = re.compile(r"<(\w+)>(.*?)</\1>", re.DOTALL)
# [face:Joy]
_BRACKET_TAG_RE = re.compile(r"\[(\w+):([^\]]+)\]")


def extract_tags(text: str) -> dict[str, str]:
    """Return a mapping of directive name to payload found in *text*.

    Both ``<name>payload</name>`` and ``[name:payload]`` are recognized.
    When a name occurs more than once the last occurrence wins.  Only call
    this on a fully assembled buffer; markers may be split across chunks.
    """
    found: list[tuple[int, str, str]] = []
    for regex in (_ELEMENT_TAG_RE, _BRACKET_TAG_RE):
        for match in regex.finditer(text):
            found.append((match.start(), match.group(1), match.group(2).strip()))

    tags: dict[str, str] = {}
    for _, name, payload in sorted(found):
        tags[name] = payload
    return tags
