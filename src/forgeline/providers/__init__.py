"""Providers built on the lifecycle runtime."""

from forgeline.providers.rest import (
    RestCollection,
    RestHandler,
    rest_effect_handlers,
    rest_resource,
)

__all__ = [
    "RestCollection",
    "RestHandler",
    "rest_effect_handlers",
    "rest_resource",
]
