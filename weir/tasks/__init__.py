"""Dramatiq actors for out-of-band ingestion work.

Import :mod:`weir.tasks.actors` from the worker entrypoint; importing it
declares the actors against the configured broker.
"""
