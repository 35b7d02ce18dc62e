from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Iterable, Mapping, Protocol, TypeVar

from . import resources
from .codec import RolloutCodec
from .config import ConfigStore, from_context_or_defaults
from .context import PassContext
from .errors import NotFoundError, OwnershipConflictError, PassCancelled, ReconcileError, StoreError
from .events import NORMAL, WARNING, EventSink
from .logs import get_logger
from .models import (
    ROLLOUT_ANNOTATION,
    ROUTE_LABEL,
    VISIBILITY_CLUSTER_LOCAL,
    VISIBILITY_EXTERNAL,
    BackendService,
    Gateway,
    GatewayTLS,
    HTTP01Challenge,
    Route,
    get_names,
    is_controlled_by,
    semantic_equal,
)
from .traffic import RevisionTarget, RolloutAlgebra, TrafficConfig

log = get_logger(__name__)

M = TypeVar("M")


class Store(Protocol[M]):
    def get(self, namespace: str, name: str) -> M: ...

    def list(self, namespace: str, selector: Mapping[str, str] | None = None) -> list[M]: ...

    def create(self, obj: M) -> M: ...

    def update(self, obj: M) -> M: ...

    def delete(self, namespace: str, name: str) -> None: ...


class GatewayReconciler:
    """Creates or updates the single gateway owned by a route.

    The rollout plan is threaded through the gateway's metadata: a fresh plan
    is built from the traffic config each pass and stepped against the plan
    recovered from the existing gateway. No write is issued when spec, labels
    and annotations already match.
    """

    def __init__(
        self,
        gateways: Store[Gateway],
        events: EventSink,
        rollouts: RolloutAlgebra,
        codec: RolloutCodec | None = None,
        make_gateway: Callable[..., Gateway] = resources.make_gateway,
    ):
        self.gateways = gateways
        self.events = events
        self.rollouts = rollouts
        self.codec = codec or RolloutCodec()
        self.make_gateway = make_gateway

    def reconcile(
        self,
        ctx: PassContext,
        route: Route,
        tc: TrafficConfig,
        tls: Iterable[GatewayTLS],
        gateway_class: str,
        *challenges: HTTP01Challenge,
    ) -> Gateway:
        desired = self.make_gateway(ctx, route, tc, tls, gateway_class, challenges)
        cur_ro = self.rollouts.build(tc)

        try:
            gateway = self.gateways.get(desired.metadata.namespace, desired.metadata.name)
        except NotFoundError:
            # No gateway yet, so the current rollout is the rollout.
            desired.metadata.annotations[ROLLOUT_ANNOTATION] = self.codec.serialize(cur_ro)
            try:
                gateway = self.gateways.create(desired)
            except StoreError as e:
                self.events.emit(route, WARNING, "CreationFailed", f"Failed to create Gateway: {e}")
                raise ReconcileError(f"failed to create Gateway: {e}") from e
            self.events.emit(route, NORMAL, "Created", f"Created Gateway {gateway.metadata.name!r}")
            log.info("gateway_created", route=route.name, namespace=route.namespace, gateway=gateway.metadata.name)
            return gateway

        prev_ro = self.codec.deserialize(gateway.metadata.annotations.get(ROLLOUT_ANNOTATION, ""))
        effective_ro = self.rollouts.step(cur_ro, prev_ro)
        desired.metadata.annotations[ROLLOUT_ANNOTATION] = self.codec.serialize(effective_ro)

        if (
            semantic_equal(gateway.spec, desired.spec)
            and gateway.metadata.annotations == desired.metadata.annotations
            and gateway.metadata.labels == desired.metadata.labels
        ):
            return gateway

        # Never modify the copy we read.
        origin = gateway.model_copy(deep=True)
        origin.spec = desired.spec
        origin.metadata.annotations = dict(desired.metadata.annotations)
        origin.metadata.labels = dict(desired.metadata.labels)
        try:
            updated = self.gateways.update(origin)
        except StoreError as e:
            raise ReconcileError(f"failed to update Gateway: {e}") from e
        log.info("gateway_updated", route=route.name, namespace=route.namespace, gateway=updated.metadata.name)
        return updated


class ServiceSetReconciler:
    """Keeps the route's placeholder services equal to its set of traffic targets."""

    def __init__(
        self,
        services: Store[BackendService],
        events: EventSink,
        make_placeholder: Callable[..., BackendService] = resources.make_placeholder_service,
    ):
        self.services = services
        self.events = events
        self.make_placeholder = make_placeholder

    def reconcile_set(
        self,
        ctx: PassContext,
        route: Route,
        targets: Mapping[str, list[RevisionTarget]],
        visibility: Mapping[str, str] | None = None,
    ) -> list[BackendService]:
        ns = route.namespace
        features = from_context_or_defaults(ctx).features
        default_visibility = VISIBILITY_CLUSTER_LOCAL if features.cluster_local_by_default else VISIBILITY_EXTERNAL
        visibility = visibility or {}

        try:
            existing = self.services.list(ns, {ROUTE_LABEL: route.name})
        except StoreError as e:
            raise ReconcileError(f"failed to fetch existing services: {e}") from e
        existing_names = get_names(existing)

        services: list[BackendService] = []
        desired_names: set[str] = set()
        for target in sorted(targets):
            desired = self.make_placeholder(ctx, route, target, visibility.get(target, default_visibility))
            name = desired.metadata.name

            try:
                service = self.services.get(ns, name)
            except NotFoundError:
                try:
                    service = self.services.create(desired)
                except StoreError as e:
                    self.events.emit(
                        route, WARNING, "CreationFailed", f"Failed to create placeholder service {name!r}: {e}"
                    )
                    raise ReconcileError(f"failed to create placeholder service: {e}") from e
                log.info("service_created", route=route.name, namespace=ns, service=name)
                self.events.emit(route, NORMAL, "Created", f"Created placeholder service {name!r}")
            else:
                if not is_controlled_by(service, route):
                    route.mark_service_not_owned(name)
                    self.events.emit(route, WARNING, "NotOwned", f"Placeholder service {name!r} is not owned by route")
                    raise OwnershipConflictError(route.name, name)

            services.append(service)
            desired_names.add(name)

        self._delete_services(ns, existing_names - desired_names)
        return services

    def _delete_services(self, namespace: str, names: set[str]) -> None:
        # Stops at the first failure; earlier deletes stand.
        for name in sorted(names):
            try:
                self.services.delete(namespace, name)
            except StoreError as e:
                raise ReconcileError(f"failed to delete Service: {e}") from e
            log.info("service_deleted", namespace=namespace, service=name)


class ConcurrentServiceSync:
    """Refreshes every placeholder service against the gateway, one task per service.

    A hard failure cancels the shared context so siblings stop writing. A
    service whose desired spec cannot be computed yet (load balancer not
    ready) is skipped and left for the next pass.
    """

    def __init__(
        self,
        services: Store[BackendService],
        make_backend_service: Callable[..., BackendService] = resources.make_backend_service,
    ):
        self.services = services
        self.make_backend_service = make_backend_service

    def sync_all(self, ctx: PassContext, route: Route, services: list[BackendService], gateway: Gateway) -> None:
        if not services:
            return
        group = ctx.with_cancel()
        lock = Lock()
        errors: list[BaseException] = []

        def run(service: BackendService) -> None:
            try:
                self._sync_one(group, route, service, gateway)
            except PassCancelled:
                return
            except Exception as e:
                with lock:
                    if not errors:
                        errors.append(e)
                group.cancel()

        with ThreadPoolExecutor(max_workers=len(services), thread_name_prefix="grr-sync") as pool:
            for service in services:
                pool.submit(run, service)
        group.cancel()

        if errors:
            raise errors[0]
        ctx.raise_if_cancelled()

    def _sync_one(self, ctx: PassContext, route: Route, service: BackendService, gateway: Gateway) -> None:
        ctx.raise_if_cancelled()
        try:
            desired = self.make_backend_service(
                ctx,
                route,
                service.name,
                gateway,
                resources.is_cluster_local_service(service),
                service.spec.cluster_ip,
            )
        except ReconcileError as e:
            log.warning("service_sync_skipped", route=route.name, service=service.name, error=str(e))
            return

        if semantic_equal(service.spec, desired.spec):
            return
        ctx.raise_if_cancelled()
        # Never modify the copy we read.
        existing = service.model_copy(deep=True)
        existing.spec = desired.spec
        try:
            self.services.update(existing)
        except StoreError as e:
            raise ReconcileError(f"failed to update Service {service.name!r}: {e}") from e
        log.info("service_updated", route=route.name, service=service.name)


@dataclass
class PassResult:
    gateway: Gateway
    services: list[BackendService] = field(default_factory=list)


class RouteReconciler:
    """Runs one reconciliation pass for a route: gateway, placeholder services, service sync.

    The caller guarantees at most one pass per route at a time and retries
    the whole pass on error.
    """

    def __init__(
        self,
        gateways: Store[Gateway],
        services: Store[BackendService],
        events: EventSink,
        rollouts: RolloutAlgebra,
        config_store: ConfigStore | None = None,
        codec: RolloutCodec | None = None,
        make_gateway: Callable[..., Gateway] = resources.make_gateway,
        make_placeholder: Callable[..., BackendService] = resources.make_placeholder_service,
        make_backend_service: Callable[..., BackendService] = resources.make_backend_service,
    ):
        self.config_store = config_store or ConfigStore()
        self.gateway = GatewayReconciler(gateways, events, rollouts, codec, make_gateway)
        self.service_set = ServiceSetReconciler(services, events, make_placeholder)
        self.service_sync = ConcurrentServiceSync(services, make_backend_service)

    def reconcile(
        self,
        ctx: PassContext,
        route: Route,
        tc: TrafficConfig,
        tls: Iterable[GatewayTLS] = (),
        gateway_class: str = "",
        challenges: Iterable[HTTP01Challenge] = (),
    ) -> PassResult:
        ctx = self.config_store.to_context(ctx)

        gateway = self.gateway.reconcile(ctx, route, tc, tls, gateway_class, *challenges)
        route.mark_gateway_ready(gateway)

        services = self.service_set.reconcile_set(ctx, route, tc.targets, tc.visibility)
        self.service_sync.sync_all(ctx, route, services, gateway)

        route.mark_traffic_assigned()
        return PassResult(gateway=gateway, services=services)
