"""Arbiter: contradiction and misinformation detection for chat moderation."""

__version__ = "0.1.0"
