"""Resource models shared by the store, the reconcilers and the HTTP layer."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


ROUTE_LABEL = "grr.io/route"
VISIBILITY_LABEL = "grr.io/visibility"
ROLLOUT_ANNOTATION = "grr.io/rollout"
GATEWAY_CLASS_ANNOTATION = "grr.io/gateway.class"

VISIBILITY_EXTERNAL = "external"
VISIBILITY_CLUSTER_LOCAL = "cluster-local"


class OwnerReference(BaseModel):
    kind: str
    name: str
    uid: str
    controller: bool = True


class ObjectMeta(BaseModel):
    name: str
    namespace: str = "default"
    uid: str = ""
    resource_version: int = 0
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    owner_references: list[OwnerReference] = Field(default_factory=list)


class Condition(BaseModel):
    type: str
    status: Literal["True", "False", "Unknown"] = "Unknown"
    reason: str = ""
    message: str = ""


class RouteStatus(BaseModel):
    conditions: list[Condition] = Field(default_factory=list)

    def get_condition(self, type_: str) -> Condition | None:
        for c in self.conditions:
            if c.type == type_:
                return c
        return None

    def set_condition(self, cond: Condition) -> None:
        self.conditions = [c for c in self.conditions if c.type != cond.type] + [cond]


class Route(BaseModel):
    """The parent entity: owns one gateway and one placeholder service per target."""

    kind: Literal["Route"] = "Route"
    metadata: ObjectMeta
    status: RouteStatus = Field(default_factory=RouteStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def owner_reference(self) -> OwnerReference:
        return OwnerReference(kind=self.kind, name=self.name, uid=self.metadata.uid, controller=True)

    def mark_service_not_owned(self, name: str) -> None:
        self.status.set_condition(
            Condition(
                type="AllTrafficAssigned",
                status="False",
                reason="NotOwned",
                message=f"There is an existing placeholder Service {name!r} that we do not own.",
            )
        )

    def mark_traffic_assigned(self) -> None:
        self.status.set_condition(Condition(type="AllTrafficAssigned", status="True"))

    def mark_gateway_ready(self, gateway: "Gateway") -> None:
        if gateway.status.is_ready():
            self.status.set_condition(Condition(type="GatewayReady", status="True"))
        else:
            self.status.set_condition(
                Condition(type="GatewayReady", status="Unknown", reason="LoadBalancerNotReady")
            )


class LoadBalancerIngress(BaseModel):
    domain_internal: str | None = None
    ip: str | None = None


class LoadBalancerStatus(BaseModel):
    ingress: list[LoadBalancerIngress] = Field(default_factory=list)


class GatewaySplit(BaseModel):
    service_name: str
    service_namespace: str
    service_port: int = 80
    percent: int = Field(..., ge=0, le=100)


class GatewayRule(BaseModel):
    hosts: list[str]
    visibility: str = VISIBILITY_EXTERNAL
    path: str | None = None
    splits: list[GatewaySplit] = Field(default_factory=list)
    timeout_seconds: int | None = None
    append_headers: dict[str, str] = Field(default_factory=dict)
    match_headers: dict[str, str] = Field(default_factory=dict)


class GatewayTLS(BaseModel):
    hosts: list[str]
    secret_name: str
    secret_namespace: str


class HTTP01Challenge(BaseModel):
    url_path: str
    service_name: str
    service_namespace: str
    service_port: int = 80


class GatewaySpec(BaseModel):
    rules: list[GatewayRule] = Field(default_factory=list)
    tls: list[GatewayTLS] = Field(default_factory=list)


class GatewayStatus(BaseModel):
    public_load_balancer: LoadBalancerStatus | None = None
    private_load_balancer: LoadBalancerStatus | None = None

    def is_ready(self) -> bool:
        return bool(
            self.public_load_balancer
            and self.public_load_balancer.ingress
            and self.private_load_balancer
            and self.private_load_balancer.ingress
        )


class Gateway(BaseModel):
    kind: Literal["Gateway"] = "Gateway"
    metadata: ObjectMeta
    spec: GatewaySpec = Field(default_factory=GatewaySpec)
    status: GatewayStatus = Field(default_factory=GatewayStatus)


class ServicePort(BaseModel):
    name: str = "http"
    port: int = 80
    target_port: int = 80


class BackendServiceSpec(BaseModel):
    type: Literal["ClusterIP", "ExternalName"] = "ClusterIP"
    external_name: str | None = None
    cluster_ip: str | None = None
    ports: list[ServicePort] = Field(default_factory=list)
    endpoint_ips: list[str] = Field(default_factory=list)


class BackendService(BaseModel):
    kind: Literal["BackendService"] = "BackendService"
    metadata: ObjectMeta
    spec: BackendServiceSpec = Field(default_factory=BackendServiceSpec)

    @property
    def name(self) -> str:
        return self.metadata.name


def is_controlled_by(obj: Gateway | BackendService, owner: Route) -> bool:
    for ref in obj.metadata.owner_references:
        if ref.controller and ref.uid == owner.metadata.uid and ref.kind == owner.kind:
            return True
    return False


def get_names(objs: list[BackendService]) -> set[str]:
    return {o.metadata.name for o in objs}


def semantic_equal(a: BaseModel | None, b: BaseModel | None) -> bool:
    """Field-wise equality of two resource fragments, independent of how they were constructed."""
    if a is None or b is None:
        return a is b
    return a.model_dump(mode="json") == b.model_dump(mode="json")
