"""Post-hoc grounding check for model-written answers.

The answer prompt tells the model to use only the supplied context. This
module checks the result: every number in the answer must appear in the
context (after normalising separators and currency). Answers that fail get a
verification note prepended and a lower confidence; they are never rewritten.
"""

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

VERIFICATION_NOTE = (
    "**Note:** Some numbers in this response could not be matched to the "
    "retrieved records. Please verify them against the source data."
)

UNGROUNDED_CONFIDENCE_PENALTY = 0.3

_NUMBER = re.compile(r"(?<![\w.])-?\d[\d,]*(?:\.\d+)?")
_LIST_MARKER = re.compile(r"^\s*\d+[.)]\s+", re.MULTILINE)
_PHRASE_FIXES = [
    re.compile(r"according to our records", re.IGNORECASE),
    re.compile(r"our database shows", re.IGNORECASE),
    re.compile(r"we have data indicating", re.IGNORECASE),
]


def extract_numbers(text: str) -> list[float]:
    numbers = []
    for match in _NUMBER.findall(_LIST_MARKER.sub("", text or "")):
        cleaned = match.replace(",", "")
        try:
            numbers.append(float(cleaned))
        except ValueError:
            continue
    return numbers


@dataclass
class GroundingReport:
    """Outcome of checking one answer against its context."""

    grounded: bool
    answer: str
    unmatched_numbers: list[float] = field(default_factory=list)


def check_grounding(answer: str, context: str, *, tolerance: float = 0.01) -> GroundingReport:
    """Flag numbers in ``answer`` that do not occur in ``context``.

    Args:
        answer: Model-written answer
        context: The formatted context the model was given
        tolerance: Absolute tolerance when comparing numbers

    Returns:
        GroundingReport; ``answer`` carries the verification note when
        ungrounded numbers were found
    """
    context_numbers = extract_numbers(context)
    unmatched = [
        n for n in extract_numbers(answer)
        if not any(abs(n - c) < tolerance for c in context_numbers)
    ]

    checked = answer
    for pattern in _PHRASE_FIXES:
        checked = pattern.sub("Based on the query results", checked)

    if unmatched:
        logger.warning("[grounding] numbers not present in context: %s", unmatched[:10])
        return GroundingReport(
            grounded=False,
            answer=f"{VERIFICATION_NOTE}\n\n{checked}",
            unmatched_numbers=unmatched,
        )
    return GroundingReport(grounded=True, answer=checked)
