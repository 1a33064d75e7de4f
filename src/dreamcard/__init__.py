"""DreamCard: turn a dream description into a three-panel illustrated card."""

__version__ = "0.1.0"
