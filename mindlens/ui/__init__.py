"""
ui — FastAPI + WebSocket bridge for browser front ends.
"""
