"""
vision — Object detector post-processing into label sets.
"""
