"""
selection — Dwell and switch-scanning engines.

Both engines arm timers through the shared scheduler seam and report back
via callbacks; neither reads the session phase.
"""
