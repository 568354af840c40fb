"""
Nudge - Adaptive helper learning for AI coding sessions.

Nudge watches what happens in a session and learns from the outcome:

- Which helper agents measurably improve a session
- Which recurring failure messages share a root cause
- How eagerly each helper type should be suggested
- Which helper fits the current session, by similarity to past ones
"""

__version__ = "0.3.1"
