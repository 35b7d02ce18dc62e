import os
import sys
import uuid
from threading import Lock

import pytest

# Ensure project root is importable (so `import main` / `import grr` work without installing).
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from grr.context import background  # noqa: E402
from grr.errors import AlreadyExistsError, ConflictError, NotFoundError  # noqa: E402
from grr.models import ROUTE_LABEL, VISIBILITY_LABEL, BackendService, ObjectMeta, Route  # noqa: E402
from grr.traffic import RevisionTarget, TrafficConfig  # noqa: E402


class FakeStore:
    """In-memory store that behaves like a shared read cache plus a write API.

    `get`/`list` hand out the cached objects themselves, so any in-place
    mutation by the code under test shows up in the cache. Writes are
    recorded in `writes` as (verb, name) tuples. `fail_on[(verb, name)]`
    makes that write raise.
    """

    def __init__(self, kind):
        self.kind = kind
        self.objects = {}
        self.writes = []
        self.fail_on = {}
        self._lock = Lock()

    def seed(self, obj):
        obj = obj.model_copy(deep=True)
        obj.metadata.uid = obj.metadata.uid or str(uuid.uuid4())
        obj.metadata.resource_version = obj.metadata.resource_version or 1
        self.objects[(obj.metadata.namespace, obj.metadata.name)] = obj
        return obj

    def _maybe_fail(self, verb, name):
        exc = self.fail_on.get((verb, name)) or self.fail_on.get((verb, "*"))
        if exc is not None:
            raise exc

    def get(self, namespace, name):
        self._maybe_fail("get", name)
        try:
            return self.objects[(namespace, name)]
        except KeyError:
            raise NotFoundError(self.kind, namespace, name) from None

    def list(self, namespace, selector=None):
        self._maybe_fail("list", "*")
        out = [o for (ns, _), o in sorted(self.objects.items()) if ns == namespace]
        if selector:
            out = [o for o in out if all(o.metadata.labels.get(k) == v for k, v in selector.items())]
        return out

    def create(self, obj):
        name = obj.metadata.name
        with self._lock:
            self.writes.append(("create", name))
            self._maybe_fail("create", name)
            key = (obj.metadata.namespace, name)
            if key in self.objects:
                raise AlreadyExistsError(name)
            created = obj.model_copy(deep=True)
            created.metadata.uid = created.metadata.uid or str(uuid.uuid4())
            created.metadata.resource_version = 1
            self.objects[key] = created
            return created

    def update(self, obj):
        name = obj.metadata.name
        with self._lock:
            self.writes.append(("update", name))
            self._maybe_fail("update", name)
            key = (obj.metadata.namespace, name)
            current = self.objects.get(key)
            if current is None:
                raise NotFoundError(self.kind, obj.metadata.namespace, name)
            if current.metadata.resource_version != obj.metadata.resource_version:
                raise ConflictError(name)
            updated = obj.model_copy(deep=True)
            updated.metadata.resource_version += 1
            self.objects[key] = updated
            return updated

    def delete(self, namespace, name):
        with self._lock:
            self.writes.append(("delete", name))
            self._maybe_fail("delete", name)
            if self.objects.pop((namespace, name), None) is None:
                raise NotFoundError(self.kind, namespace, name)


class FakeEvents:
    def __init__(self):
        self.events = []

    def emit(self, obj, severity, reason, message):
        self.events.append((severity, reason, message))

    def reasons(self):
        return [r for _, r, _ in self.events]


class StubRollouts:
    """Deterministic stand-in for the rollout algebra; plans are plain dicts."""

    def __init__(self, step_fn=None):
        self.step_fn = step_fn or (lambda cur, prev: cur)
        self.build_calls = []
        self.step_calls = []

    def build(self, tc):
        self.build_calls.append(tc)
        return {"targets": sorted(tc.targets), "revisions": sorted(t.revision_name for ts in tc.targets.values() for t in ts)}

    def step(self, cur, prev):
        self.step_calls.append((cur, prev))
        return self.step_fn(cur, prev)


@pytest.fixture
def ctx():
    return background()


@pytest.fixture
def route():
    return Route(
        metadata=ObjectMeta(name="hello", namespace="default", uid="route-uid", labels={"app": "hello"})
    )


@pytest.fixture
def traffic():
    return TrafficConfig(
        targets={
            "": [RevisionTarget(configuration_name="hello", revision_name="hello-00001", percent=100, latest_revision=True)]
        }
    )


@pytest.fixture
def gateways():
    return FakeStore("Gateway")


@pytest.fixture
def services():
    return FakeStore("BackendService")


@pytest.fixture
def events():
    return FakeEvents()


def owned_service(route, name, owner_uid=None):
    return BackendService(
        metadata=ObjectMeta(
            name=name,
            namespace=route.namespace,
            labels={ROUTE_LABEL: route.name, VISIBILITY_LABEL: "external"},
            owner_references=[] if owner_uid == "" else [
                {"kind": "Route", "name": route.name, "uid": owner_uid or route.metadata.uid, "controller": True}
            ],
        )
    )
