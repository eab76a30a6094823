"""Model mixins shared by the externally referenced entities."""

from backend.src.models.mixins.guid import GuidMixin

__all__ = ["GuidMixin"]
