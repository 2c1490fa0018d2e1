"""
intent — Keyword slots and the Selectable Set.

Turns noisy per-frame detector labels into a small, stable list of options
the user can dwell on or scan through.
"""
