"""
seedkeeper.errors — Seeding Error Taxonomy
===========================================

Services raise these; the API maps each class to one HTTP status in
``seedkeeper.api.main`` and the bot turns them into ephemeral replies.
"""

from __future__ import annotations


class SeedingError(Exception):
    """Base class for every failure the seeding engine reports."""


class ValidationError(SeedingError):
    """Bad session config, threshold, or reward tracks.  Nothing was changed."""


class ConflictError(SeedingError):
    """An active session already exists for the target server."""


class InvalidStateError(SeedingError):
    """Operation attempted against a session in the wrong lifecycle state."""


class NotFoundError(SeedingError):
    """Session or participant does not exist (or does not belong together)."""


class DependencyFailure(SeedingError):
    """The whitelist service was unreachable or rejected a grant/retract."""
