"""Builders for the desired state of a route's child resources."""
from __future__ import annotations

from typing import Iterable

from . import names
from .config import Defaults, from_context_or_defaults
from .context import PassContext
from .errors import LoadBalancerNotReady, ValidationError
from .models import (
    GATEWAY_CLASS_ANNOTATION,
    ROLLOUT_ANNOTATION,
    ROUTE_LABEL,
    VISIBILITY_CLUSTER_LOCAL,
    VISIBILITY_EXTERNAL,
    VISIBILITY_LABEL,
    BackendService,
    BackendServiceSpec,
    Gateway,
    GatewayRule,
    GatewaySpec,
    GatewaySplit,
    GatewayTLS,
    HTTP01Challenge,
    ObjectMeta,
    Route,
    ServicePort,
)
from .traffic import RevisionTarget, TrafficConfig

ROUTE_HEADER = "Grr-Route"
TAG_HEADER = "Grr-Route-Tag"


def _hosts(service: str, namespace: str, visibility: str, defaults: Defaults) -> list[str]:
    hosts = [f"{service}.{namespace}.{defaults.cluster_domain}"]
    if visibility == VISIBILITY_EXTERNAL:
        hosts.append(f"{service}.{namespace}.{defaults.domain}")
    return hosts


def _splits(route: Route, targets: list[RevisionTarget], port: int) -> list[GatewaySplit]:
    return [
        GatewaySplit(service_name=t.revision_name, service_namespace=route.namespace, service_port=port, percent=t.percent)
        for t in targets
        if t.percent > 0
    ]


def _validate_targets(target: str, targets: list[RevisionTarget]) -> None:
    if not targets:
        raise ValidationError(f"traffic target {target!r} has no revisions")
    total = sum(t.percent for t in targets)
    if total != 100:
        raise ValidationError(f"traffic target {target!r} percents sum to {total}, want 100")


def make_gateway(
    ctx: PassContext,
    route: Route,
    tc: TrafficConfig,
    tls: Iterable[GatewayTLS] = (),
    gateway_class: str = "",
    challenges: Iterable[HTTP01Challenge] = (),
) -> Gateway:
    """Desired gateway for a route; the traffic split is taken from `tc` as-is."""
    cfg = from_context_or_defaults(ctx)
    defaults, features = cfg.defaults, cfg.features
    if not tc.targets:
        raise ValidationError(f"route {route.name!r} has no traffic targets")

    rules: list[GatewayRule] = []
    external_hosts: list[str] = []
    default_hosts = _hosts(names.placeholder_service(route, names.DEFAULT_TARGET), route.namespace,
                           VISIBILITY_EXTERNAL, defaults)
    for target in sorted(tc.targets):
        targets = tc.targets[target]
        _validate_targets(target, targets)
        visibility = tc.visibility_for(target, features.cluster_local_by_default)
        hosts = _hosts(names.placeholder_service(route, target), route.namespace, visibility, defaults)
        if visibility == VISIBILITY_EXTERNAL:
            external_hosts.extend(hosts)
        splits = _splits(route, targets, defaults.service_port)
        append = {ROUTE_HEADER: route.name}
        if target:
            append[TAG_HEADER] = target
        rules.append(
            GatewayRule(
                hosts=hosts,
                visibility=visibility,
                splits=splits,
                timeout_seconds=defaults.timeout_seconds,
                append_headers=append,
            )
        )
        if target and features.tag_header_routing:
            rules.append(
                GatewayRule(
                    hosts=default_hosts,
                    visibility=visibility,
                    splits=splits,
                    timeout_seconds=defaults.timeout_seconds,
                    append_headers=append,
                    match_headers={TAG_HEADER: target},
                )
            )

    # Challenge paths must win over the regular rules for the same hosts.
    challenge_rules = [
        GatewayRule(
            hosts=external_hosts,
            visibility=VISIBILITY_EXTERNAL,
            path=ch.url_path,
            splits=[
                GatewaySplit(
                    service_name=ch.service_name,
                    service_namespace=ch.service_namespace,
                    service_port=ch.service_port,
                    percent=100,
                )
            ],
        )
        for ch in challenges
    ]

    annotations = {k: v for k, v in route.metadata.annotations.items() if k != ROLLOUT_ANNOTATION}
    annotations[GATEWAY_CLASS_ANNOTATION] = gateway_class or defaults.gateway_class
    return Gateway(
        metadata=ObjectMeta(
            name=names.gateway(route),
            namespace=route.namespace,
            labels={**route.metadata.labels, ROUTE_LABEL: route.name},
            annotations=annotations,
            owner_references=[route.owner_reference()],
        ),
        spec=GatewaySpec(rules=challenge_rules + rules, tls=list(tls)),
    )


def _service_meta(route: Route, name: str, visibility: str) -> ObjectMeta:
    return ObjectMeta(
        name=name,
        namespace=route.namespace,
        labels={ROUTE_LABEL: route.name, VISIBILITY_LABEL: visibility},
        owner_references=[route.owner_reference()],
    )


def make_placeholder_service(
    ctx: PassContext, route: Route, target: str, visibility: str = VISIBILITY_EXTERNAL
) -> BackendService:
    defaults = from_context_or_defaults(ctx).defaults
    port = defaults.service_port
    return BackendService(
        metadata=_service_meta(route, names.placeholder_service(route, target), visibility),
        spec=BackendServiceSpec(type="ClusterIP", ports=[ServicePort(port=port, target_port=port)]),
    )


def is_cluster_local_service(svc: BackendService) -> bool:
    return svc.metadata.labels.get(VISIBILITY_LABEL) == VISIBILITY_CLUSTER_LOCAL


def make_backend_service(
    ctx: PassContext,
    route: Route,
    name: str,
    gateway: Gateway,
    cluster_local: bool,
    cluster_ip: str | None = None,
) -> BackendService:
    """Desired runtime spec for a placeholder service, pointing at the gateway's load balancer.

    Raises LoadBalancerNotReady while the gateway has not published an address.
    """
    defaults = from_context_or_defaults(ctx).defaults
    lb = gateway.status.private_load_balancer if cluster_local else gateway.status.public_load_balancer
    if lb is None or not lb.ingress:
        raise LoadBalancerNotReady(f"gateway {gateway.metadata.name!r} has no load balancer address yet")

    ing = lb.ingress[0]
    port = defaults.service_port
    ports = [ServicePort(port=port, target_port=port)]
    visibility = VISIBILITY_CLUSTER_LOCAL if cluster_local else VISIBILITY_EXTERNAL
    if ing.domain_internal:
        spec = BackendServiceSpec(type="ExternalName", external_name=ing.domain_internal, ports=ports)
    elif ing.ip:
        spec = BackendServiceSpec(type="ClusterIP", cluster_ip=cluster_ip, ports=ports, endpoint_ips=[ing.ip])
    else:
        raise LoadBalancerNotReady(f"gateway {gateway.metadata.name!r} load balancer has no domain or ip")
    return BackendService(metadata=_service_meta(route, name, visibility), spec=spec)
