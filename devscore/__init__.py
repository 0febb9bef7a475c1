"""devscore - deterministic scoring and usage gating for AI project evaluations."""

__version__ = "0.1.0"
