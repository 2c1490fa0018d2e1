"""
output — Fire-and-forget speech output.
"""
