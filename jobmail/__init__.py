"""jobmail: turns job postings discovered in email into enriched, filterable records."""

__version__ = "0.1.0"
