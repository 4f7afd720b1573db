"""Weir HTTP API layer.

This package provides the Falcon Asynchronous Server Gateway Interface
(ASGI) application exposing webhook intake, ingestion job status and
health probes.

Usage
-----
Create the application::

    from weir.api import create_app

    app = create_app()              # health-only mode
    app = create_app(dependencies)  # webhooks and job status

Public API
----------
AppDependencies
    Collaborators enabling the database-backed endpoints.
create_app
    Application factory.
"""

from weir.api.app import AppDependencies, create_app

__all__ = ["AppDependencies", "create_app"]
