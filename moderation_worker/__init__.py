"""Video moderation worker: samples frames, classifies them and scores the result."""

__version__ = "0.1.0"
