"""Upstream access boundary for artifact routes.

Ownership and permissions live outside the storage service. The resolver
maps an identifier tuple to the architecture record id used as the metadata
key, and answers whether the caller may read or write that artifact.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from fastapi import Request

from boxstore.storage.models import ArtifactId


class ArtifactAccessResolver(ABC):
    """Resolves artifact identity and authorization for a request."""

    @abstractmethod
    def resolve_architecture_id(self, artifact_id: ArtifactId) -> str | None:
        """Return the architecture record id, or None if it does not exist."""
        ...

    @abstractmethod
    def can_read(self, request: Request, artifact_id: ArtifactId) -> bool:
        """Return True if the caller may download or inspect the artifact."""
        ...

    @abstractmethod
    def can_write(self, request: Request, artifact_id: ArtifactId) -> bool:
        """Return True if the caller may upload or delete the artifact."""
        ...


class AllowAllAccessResolver(ArtifactAccessResolver):
    """Authorizes every caller; the architecture id is the joined tuple."""

    def resolve_architecture_id(self, artifact_id: ArtifactId) -> str | None:
        return artifact_id.key

    def can_read(self, request: Request, artifact_id: ArtifactId) -> bool:
        return True

    def can_write(self, request: Request, artifact_id: ArtifactId) -> bool:
        return True
