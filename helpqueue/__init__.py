"""
Help Queue Coordinator

Live office-hours help queues: requesters wait in FIFO order across many
independently openable queues, helpers claim them, and pluggable extensions
observe every lifecycle event without touching queue state.
"""

__version__ = "1.0.0"
