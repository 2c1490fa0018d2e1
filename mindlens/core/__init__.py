"""
core — Configuration, constants, logging, timers and the session orchestrator.

The orchestrator owns the phase machine and the busy guard; everything else
here is shared plumbing.
"""
