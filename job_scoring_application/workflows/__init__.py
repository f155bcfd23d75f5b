"""Temporal workflows and worker entrypoints for AI job scoring.

This package defines:
- A per-scrape scoring workflow that scores unscored postings in batches,
  copies scores from duplicate postings, and pauses when the AI quota runs out
- A delayed-start workflow that executes one run of a recurring scrape
  configuration and arms the next one
"""
