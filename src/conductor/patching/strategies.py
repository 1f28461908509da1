"""Matching strategies for the search/replace cascade.

Each strategy is a generator ``(content, find) -> Iterator[str]`` that lazily
yields literal substrings of ``content`` which are equivalent to ``find`` under
the strategy's notion of equality. The cascade in :mod:`conductor.patching.engine`
decides which candidate is safe to replace.

Order, strict to fuzzy:
    1. exact
    2. line_trimmed          (trim each line)
    3. whitespace_normalized (collapse all whitespace runs)
    4. indentation_flexible  (remove common indent)
    5. escape_normalized     (unescape \\n, \\t, quotes, ...)
    6. trimmed_boundary      (trim the whole block)
    7. context_aware         (anchor first/last lines, tolerate drift in between)
    8. block_anchor          (anchor first/last lines, Levenshtein on the middle)
    9. multi_occurrence      (every exact occurrence, for replace_all)
"""
import re
from typing import Callable, Iterator

from conductor.config.defaults import (
    CONTEXT_AWARE_MATCH_RATIO,
    MULTI_CANDIDATE_SIMILARITY,
    SINGLE_CANDIDATE_SIMILARITY,
)

Strategy = Callable[[str, str], Iterator[str]]

_WHITESPACE = re.compile(r"\s+")
_ESCAPE = re.compile(r"\\([ntr'\"`\\\n$])")
_UNESCAPED = {"n": "\n", "t": "\t", "r": "\r"}


def _line_span(lines: list[str], start: int, end: int) -> tuple[int, int]:
    """Character offsets of lines[start..end] (inclusive) in the joined text."""
    begin = sum(len(line) + 1 for line in lines[:start])
    length = sum(len(line) for line in lines[start:end + 1]) + (end - start)
    return begin, begin + length


def _drop_trailing_blank(lines: list[str]) -> list[str]:
    if lines and lines[-1] == "":
        return lines[:-1]
    return lines


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def remove_indentation(text: str) -> str:
    """Strip the common leading indentation, leaving blank lines untouched."""
    lines = text.split("\n")
    non_empty = [line for line in lines if line.strip()]
    if not non_empty:
        return text

    min_indent = min(len(line) - len(line.lstrip()) for line in non_empty)
    return "\n".join(line if not line.strip() else line[min_indent:] for line in lines)


def unescape(text: str) -> str:
    """Resolve the escape sequences a patch author may have double-escaped."""
    return _ESCAPE.sub(lambda m: _UNESCAPED.get(m.group(1), m.group(1)), text)


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if not a or not b:
        return max(len(a), len(b))

    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def exact(content: str, find: str) -> Iterator[str]:
    yield find


def line_trimmed(content: str, find: str) -> Iterator[str]:
    original_lines = content.split("\n")
    search_lines = _drop_trailing_blank(find.split("\n"))

    for i in range(len(original_lines) - len(search_lines) + 1):
        if all(
            original_lines[i + j].strip() == search_line.strip()
            for j, search_line in enumerate(search_lines)
        ):
            start, end = _line_span(original_lines, i, i + len(search_lines) - 1)
            yield content[start:end]


def whitespace_normalized(content: str, find: str) -> Iterator[str]:
    normalized_find = normalize_whitespace(find)
    lines = content.split("\n")

    # Single-line matches
    words = find.split()
    pattern = re.compile(r"\s+".join(re.escape(word) for word in words)) if words else None
    for line in lines:
        normalized_line = normalize_whitespace(line)
        if normalized_line == normalized_find:
            yield line
        elif pattern is not None and normalized_find in normalized_line:
            match = pattern.search(line)
            if match:
                yield match.group(0)

    # Multi-line matches
    find_lines = find.split("\n")
    if len(find_lines) > 1:
        for i in range(len(lines) - len(find_lines) + 1):
            block = "\n".join(lines[i:i + len(find_lines)])
            if normalize_whitespace(block) == normalized_find:
                yield block


def indentation_flexible(content: str, find: str) -> Iterator[str]:
    normalized_find = remove_indentation(find)
    content_lines = content.split("\n")
    size = len(find.split("\n"))

    for i in range(len(content_lines) - size + 1):
        block = "\n".join(content_lines[i:i + size])
        if remove_indentation(block) == normalized_find:
            yield block


def escape_normalized(content: str, find: str) -> Iterator[str]:
    unescaped_find = unescape(find)
    if unescaped_find in content:
        yield unescaped_find

    lines = content.split("\n")
    size = len(unescaped_find.split("\n"))
    for i in range(len(lines) - size + 1):
        block = "\n".join(lines[i:i + size])
        if unescape(block) == unescaped_find:
            yield block


def trimmed_boundary(content: str, find: str) -> Iterator[str]:
    trimmed_find = find.strip()
    if trimmed_find == find:
        return

    if trimmed_find in content:
        yield trimmed_find

    lines = content.split("\n")
    size = len(find.split("\n"))
    for i in range(len(lines) - size + 1):
        block = "\n".join(lines[i:i + size])
        if block.strip() == trimmed_find:
            yield block


def context_aware(content: str, find: str) -> Iterator[str]:
    find_lines = find.split("\n")
    if len(find_lines) < 3:
        return
    find_lines = _drop_trailing_blank(find_lines)

    content_lines = content.split("\n")
    first_line = find_lines[0].strip()
    last_line = find_lines[-1].strip()

    for i, line in enumerate(content_lines):
        if line.strip() != first_line:
            continue

        for j in range(i + 2, len(content_lines)):
            if content_lines[j].strip() != last_line:
                continue

            block_lines = content_lines[i:j + 1]
            if len(block_lines) == len(find_lines):
                matching = 0
                non_empty = 0
                for block_line, find_line in zip(block_lines[1:-1], find_lines[1:-1]):
                    b, f = block_line.strip(), find_line.strip()
                    if b or f:
                        non_empty += 1
                        if b == f:
                            matching += 1

                if non_empty == 0 or matching / non_empty >= CONTEXT_AWARE_MATCH_RATIO:
                    yield "\n".join(block_lines)
            break


def _interior_similarity(original: list[str], search: list[str], start: int, end: int) -> float:
    actual_size = end - start + 1
    lines_to_check = min(len(search) - 2, actual_size - 2)
    if lines_to_check <= 0:
        return 1.0

    similarity = 0.0
    for j in range(1, min(len(search), actual_size) - 1):
        original_line = original[start + j].strip()
        search_line = search[j].strip()
        max_len = max(len(original_line), len(search_line))
        if max_len == 0:
            continue
        similarity += (1 - levenshtein(original_line, search_line) / max_len) / lines_to_check
    return similarity


def block_anchor(content: str, find: str) -> Iterator[str]:
    original_lines = content.split("\n")
    search_lines = find.split("\n")
    if len(search_lines) < 3:
        return
    search_lines = _drop_trailing_blank(search_lines)

    first = search_lines[0].strip()
    last = search_lines[-1].strip()

    candidates: list[tuple[int, int]] = []
    for i, line in enumerate(original_lines):
        if line.strip() != first:
            continue
        for j in range(i + 2, len(original_lines)):
            if original_lines[j].strip() == last:
                candidates.append((i, j))
                break

    if not candidates:
        return

    threshold = SINGLE_CANDIDATE_SIMILARITY if len(candidates) == 1 else MULTI_CANDIDATE_SIMILARITY
    best: tuple[int, int] | None = None
    best_similarity = -1.0
    for start, end in candidates:
        similarity = _interior_similarity(original_lines, search_lines, start, end)
        if similarity > best_similarity:
            best_similarity = similarity
            best = (start, end)

    if best is not None and best_similarity >= threshold:
        begin, finish = _line_span(original_lines, *best)
        yield content[begin:finish]


def multi_occurrence(content: str, find: str) -> Iterator[str]:
    if not find:
        return
    start = 0
    while True:
        index = content.find(find, start)
        if index == -1:
            return
        yield find
        start = index + len(find)


STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("exact", exact),
    ("line_trimmed", line_trimmed),
    ("whitespace_normalized", whitespace_normalized),
    ("indentation_flexible", indentation_flexible),
    ("escape_normalized", escape_normalized),
    ("trimmed_boundary", trimmed_boundary),
    ("context_aware", context_aware),
    ("block_anchor", block_anchor),
    ("multi_occurrence", multi_occurrence),
)
