from __future__ import annotations

from typing import Dict, List

from forgeline.runtime.resource import Resource


class ResourceRegistry:
    """Simple in-memory registry mapping resource kinds to their entry points."""

    def __init__(self) -> None:
        self._resources: Dict[str, Resource] = {}

    def register(self, resource: Resource) -> Resource:
        if not resource.kind:
            raise ValueError("Resource kind is required")
        if resource.kind in self._resources:
            raise ValueError(f"Resource kind '{resource.kind}' is already registered")
        self._resources[resource.kind] = resource
        return resource

    def get(self, kind: str) -> Resource:
        resource = self._resources.get(kind)
        if resource is None:
            raise KeyError(f"Resource kind '{kind}' is not registered")
        return resource

    def list(self) -> List[Resource]:
        return list(self._resources.values())

    def __contains__(self, kind: object) -> bool:
        return kind in self._resources


resource_registry = ResourceRegistry()


def register_resource(resource: Resource) -> Resource:
    return resource_registry.register(resource)


def get_resource(kind: str) -> Resource:
    return resource_registry.get(kind)


def list_resources() -> List[Resource]:
    return resource_registry.list()
