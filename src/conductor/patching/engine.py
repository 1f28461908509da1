"""Search/replace cascade that turns a proposed patch into a file mutation."""
import logging
from dataclasses import dataclass, field
from typing import Iterable

from conductor.errors import NoChangeError, PatchAmbiguousError, PatchNotFoundError
from conductor.patching.strategies import STRATEGIES

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = (
    "Search text not found in the file. Read the exact lines, then use a "
    "line-number based edit instead."
)
AMBIGUOUS_MESSAGE = (
    "Search text matches multiple locations. Add more surrounding context "
    "lines or give a line hint."
)


@dataclass(frozen=True)
class PatchResult:
    """Outcome of a single successful replace."""
    content: str
    strategy_used: str
    match_count: int


@dataclass
class PatchApplication:
    """Outcome of applying a sequence of patches to one file."""
    content: str
    strategies: list[str] = field(default_factory=list)

    @property
    def fuzzy(self) -> bool:
        return any(name != "exact" for name in self.strategies)


def replace(
    content: str,
    search: str,
    replacement: str,
    replace_all: bool = False,
) -> PatchResult:
    """Replace ``search`` in ``content`` using the first strategy with a unique match.

    Strategies run strict to fuzzy. A candidate that occurs more than once is
    skipped unless ``replace_all`` is set, so at most one region is mutated.

    Raises:
        NoChangeError: search and replacement are identical
        PatchNotFoundError: no strategy located the search text
        PatchAmbiguousError: every located candidate occurs more than once
    """
    if search == replacement:
        raise NoChangeError("No changes to apply: search and replacement are identical.")
    if not search:
        raise PatchNotFoundError(NOT_FOUND_MESSAGE)

    found = False
    for name, strategy in STRATEGIES:
        for candidate in strategy(content, search):
            if not candidate:
                continue
            index = content.find(candidate)
            if index == -1:
                continue
            found = True

            if replace_all:
                count = content.count(candidate)
                return PatchResult(content.replace(candidate, replacement), name, count)

            if index != content.rfind(candidate):
                continue

            if name != "exact":
                logger.info("Patch matched via %s strategy", name)
            return PatchResult(
                content[:index] + replacement + content[index + len(candidate):],
                name,
                1,
            )

    if not found:
        raise PatchNotFoundError(NOT_FOUND_MESSAGE)
    raise PatchAmbiguousError(AMBIGUOUS_MESSAGE)


def apply_patches(
    content: str,
    patches: Iterable,
    line_range: tuple[int, int] | None = None,
) -> PatchApplication:
    """Apply ``(search, replace)`` patches in order, each against the previous result.

    Accepts anything with ``search`` and ``replace`` attributes. A failing
    patch raises its ``PatchError`` with ``patch_index`` set.

    With ``line_range`` (1-based, inclusive) the patches only see those lines;
    text outside the window is never matched and comes back unchanged.
    """
    if line_range is not None:
        start, end = line_range
        if start < 1 or end < start:
            raise ValueError(f"Invalid line range {start}-{end}")
        lines = content.splitlines(keepends=True)
        head, window, tail = lines[:start - 1], lines[start - 1:end], lines[end:]
        application = apply_patches("".join(window), patches)
        application.content = "".join(head) + application.content + "".join(tail)
        return application

    application = PatchApplication(content=content)
    for index, patch in enumerate(patches):
        try:
            result = replace(application.content, patch.search, patch.replace)
        except (PatchNotFoundError, PatchAmbiguousError, NoChangeError) as e:
            e.patch_index = index
            raise
        application.content = result.content
        application.strategies.append(result.strategy_used)
    return application
