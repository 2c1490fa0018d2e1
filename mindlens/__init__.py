"""
MindLens — Dwell and switch-scanning phrase selection for AAC.

Detected objects → stable keyword slots → dwell / scan confirmation →
generated first-person phrases → speech.
"""

__version__ = "1.0.0"
