"""crmassist: natural-language CRM query and coaching engine."""

__version__ = "0.1.0"
