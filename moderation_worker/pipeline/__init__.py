"""Moderation pipeline stages: frame sampling, classification and scoring."""
