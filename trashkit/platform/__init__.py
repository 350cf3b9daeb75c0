"""Platform entities and the production module registry."""

from .registry import build_name_resolver, build_registry

__all__ = ["build_registry", "build_name_resolver"]
