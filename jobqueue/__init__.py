"""
Persistent Job Queue

A database-backed job queue: any number of worker processes reserve jobs
through atomic locks, run them with lifecycle hooks, and retry failures
with exponential backoff until they succeed or fail permanently.
"""

__version__ = "1.0.0"
