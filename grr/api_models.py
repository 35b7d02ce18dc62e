from __future__ import annotations

from pydantic import BaseModel, Field

from .models import GatewayTLS, HTTP01Challenge
from .traffic import TrafficConfig

NAME_PATTERN = r"^[a-z][a-z0-9\-]{0,62}$"


class RegisterRouteRequest(BaseModel):
    namespace: str = Field("default", pattern=NAME_PATTERN, description="Namespace (dns-safe)")
    name: str = Field(..., pattern=NAME_PATTERN, description="Route name (dns-safe)")
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ReconcileRequest(BaseModel):
    traffic: TrafficConfig = Field(..., description="Traffic split per target; '' is the default target")
    tls: list[GatewayTLS] = Field(default_factory=list)
    gateway_class: str = Field("", description="Gateway class; empty uses the configured default")
    challenges: list[HTTP01Challenge] = Field(default_factory=list)
