"""
Citation Grounding

Maps the numbered citation markers a model writes into its answer back to
the context entries they refer to. This is the only place model output is
parsed for citations.

Accepted marker forms (case-insensitive, whitespace tolerant):
    [3]   [1, 2]   [1; 2]   [1-3]   [Entry 2]   [Entries 1, 2]   [Entry 1, Entry 4]

Policy:
- Numbers are 1-based positions in the context list the prompt was built from.
- Out-of-range numbers (0 or greater than the context size) are dropped. A
  marker left with no valid number is removed from the text together with
  the whitespace before it.
- A range "a-b" expands to a..b when a <= b and the range spans at most
  MAX_RANGE_WIDTH numbers; otherwise only its two endpoints are read.
- Duplicates collapse: an entry cited several times gets one citation, and a
  marker never lists the same number twice.
- Valid citations are renumbered 1..k in order of first appearance and the
  answer text is rewritten to use the new numbers, so citation_number always
  matches what the reader sees.
- Bracketed numbers of four or more digits (years such as [2023]) are not
  treated as markers and are left untouched.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List

MAX_RANGE_WIDTH = 10

_ITEM = r"(?:entry\s+)?\d{1,3}(?:\s*[-–]\s*\d{1,3})?"
_MARKER_RE = re.compile(
    r"\s*\[\s*(?:entr(?:y|ies)\s+)?(" + _ITEM + r"(?:\s*[,;]\s*" + _ITEM + r")*)\s*\]",
    re.IGNORECASE,
)
_ITEM_RE = re.compile(r"(\d{1,3})(?:\s*[-–]\s*(\d{1,3}))?")


@dataclass
class GroundedAnswer:
    """Answer text with markers renumbered, plus the entries it cites"""
    text: str
    # cited[i] is the 1-based context position of citation number i + 1
    cited: List[int] = field(default_factory=list)
    dropped: List[int] = field(default_factory=list)


def _expand(item: str) -> List[int]:
    match = _ITEM_RE.search(item)
    if not match:
        return []
    start = int(match.group(1))
    if match.group(2) is None:
        return [start]
    end = int(match.group(2))
    if start <= end and end - start < MAX_RANGE_WIDTH:
        return list(range(start, end + 1))
    return [start, end]


def ground_citations(answer: str, context_size: int) -> GroundedAnswer:
    """
    Parse, validate and renumber citation markers in a model answer.

    Args:
        answer: Raw model output
        context_size: Number of context entries the prompt listed

    Returns:
        GroundedAnswer with the rewritten text and cited context positions
    """
    renumbered: Dict[int, int] = {}
    cited: List[int] = []
    dropped: List[int] = []

    def _rewrite(match: "re.Match") -> str:
        numbers: List[int] = []
        for item in re.split(r"[,;]", match.group(1)):
            numbers.extend(_expand(item))

        new_numbers: List[int] = []
        for number in numbers:
            if not 1 <= number <= context_size:
                dropped.append(number)
                continue
            if number not in renumbered:
                cited.append(number)
                renumbered[number] = len(cited)
            if renumbered[number] not in new_numbers:
                new_numbers.append(renumbered[number])

        if not new_numbers:
            return ""
        leading = match.group(0)[: len(match.group(0)) - len(match.group(0).lstrip())]
        return leading + "[" + ", ".join(str(n) for n in new_numbers) + "]"

    text = _MARKER_RE.sub(_rewrite, answer)
    return GroundedAnswer(text=text.strip(), cited=cited, dropped=dropped)
