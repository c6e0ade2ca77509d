"""
Citation post-processing for completed news summaries.

Perplexity answers end with a Sources block::

    ...body text citing [1] and [2].

    ---

    ## Sources

    1. [Label](https://example.com/a)
    2. [Label](https://example.com/b)

``process_inline_citations`` turns each ``[N]`` in the body into a markdown
link to source N and drops the block. Text without the exact block is
returned unchanged.
"""

import re
from typing import Dict, Optional, Tuple

SOURCES_BLOCK_PATTERN = re.compile(
    r"\n\n---\n\n## Sources\n\n((?:\d+\. \[.+?\]\(.+?\)\n?)+)"
)
SOURCE_LINE_PATTERN = re.compile(r"^(\d+)\. \[(.+?)\]\((.+?)\)$")


def _find_sources_block(text: str) -> Optional[re.Match]:
    return SOURCES_BLOCK_PATTERN.search(text)


def parse_sources(block: str) -> Dict[int, str]:
    """
    Map citation numbers to URLs from the lines of a Sources block.

    Lines that do not match ``N. [label](url)`` exactly are skipped.
    """
    citations: Dict[int, str] = {}
    for line in block.strip().split("\n"):
        match = SOURCE_LINE_PATTERN.match(line)
        if match:
            citations[int(match.group(1))] = match.group(3)
    return citations


def extract_citations(text: str) -> Dict[int, str]:
    """Return the citation map of a text, empty if it has no Sources block."""
    match = _find_sources_block(text)
    if not match:
        return {}
    return parse_sources(match.group(1))


def split_sources(text: str) -> Tuple[str, Dict[int, str]]:
    """
    Separate a text from its Sources block.

    Returns:
        The text with the block removed, and the citation map
    """
    match = _find_sources_block(text)
    if not match:
        return text, {}
    body = text[:match.start()] + text[match.end():]
    return body, parse_sources(match.group(1))


def process_inline_citations(text: str) -> str:
    """
    Link inline citation markers and strip the trailing Sources block.

    Args:
        text: Fully accumulated response text

    Returns:
        Display text
    """
    body, citations = split_sources(text)
    if body == text:
        return text

    for number, url in citations.items():
        body = body.replace(f"[{number}]", f"[[{number}]]({url})")
    return body
