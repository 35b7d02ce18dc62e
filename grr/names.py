from __future__ import annotations

import hashlib

from .models import Route

# DNS label limit.
MAX_NAME_LEN = 63
DEFAULT_TARGET = ""


def child_name(parent: str, suffix: str) -> str:
    """Deterministic child name, shortened with a digest when it would exceed 63 chars."""
    name = parent + suffix
    if len(name) <= MAX_NAME_LEN:
        return name
    digest = hashlib.md5(name.encode("utf-8")).hexdigest()
    head = name[: MAX_NAME_LEN - len(digest)].rstrip("-.")
    return head + digest


def gateway(route: Route) -> str:
    return child_name(route.name, "")


def placeholder_service(route: Route, target: str) -> str:
    if target == DEFAULT_TARGET:
        return child_name(route.name, "")
    return child_name(f"{target}-", route.name)
