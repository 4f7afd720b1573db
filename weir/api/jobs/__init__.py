"""Ingestion job status resources."""
