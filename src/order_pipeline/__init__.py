"""
Order retry pipeline.

Consumes order events, processes them, and escalates failures through a
bounded retry topic to a dead-letter topic.
"""

__version__ = "0.1.0"
