"""Result formatting and answer grounding."""

from crmassist.explain.formatter import format_for_model, format_table
from crmassist.explain.grounding import GroundingReport, check_grounding

__all__ = ["format_for_model", "format_table", "GroundingReport", "check_grounding"]
