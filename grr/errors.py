from __future__ import annotations


class ReconcileError(Exception):
    """A reconciliation pass could not complete; the caller should retry the whole pass."""


class ValidationError(ReconcileError):
    """The desired state could not be computed from the route's inputs."""


class OwnershipConflictError(ReconcileError):
    def __init__(self, route: str, service: str):
        super().__init__(f"route: {route!r} does not own Service: {service!r}")
        self.route = route
        self.service = service


class PassCancelled(ReconcileError):
    pass


class LoadBalancerNotReady(ReconcileError):
    pass


class ConfigError(ValueError):
    """A configuration source could not be decoded or validated."""


class StoreError(Exception):
    pass


class NotFoundError(StoreError):
    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class AlreadyExistsError(StoreError):
    pass


class ConflictError(StoreError):
    """Optimistic concurrency failure: the object changed since it was read."""
