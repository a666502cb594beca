"""Budgeting toolkit: LLM-assisted transaction categorization."""
