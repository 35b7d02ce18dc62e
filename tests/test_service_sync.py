import time

import pytest

from grr.errors import LoadBalancerNotReady, PassCancelled, ReconcileError, StoreError
from grr.models import (
    BackendServiceSpec,
    Gateway,
    GatewayStatus,
    LoadBalancerIngress,
    LoadBalancerStatus,
    ObjectMeta,
)
from grr.reconciler import ConcurrentServiceSync

from conftest import owned_service


def _gateway(domain="lb.grr-system.svc.cluster.local"):
    lb = LoadBalancerStatus(ingress=[LoadBalancerIngress(domain_internal=domain)])
    return Gateway(
        metadata=ObjectMeta(name="hello", namespace="default"),
        status=GatewayStatus(public_load_balancer=lb, private_load_balancer=lb),
    )


def _seed(services, route, *names):
    return [services.seed(owned_service(route, n)) for n in names]


def _desired(external_name="lb.example"):
    def build(ctx, route, svc_name, gateway, cluster_local, cluster_ip):
        s = owned_service(route, svc_name)
        s.spec = BackendServiceSpec(type="ExternalName", external_name=external_name)
        return s

    return build


def test_updates_services_whose_spec_differs(ctx, route, services):
    svcs = _seed(services, route, "a-hello", "b-hello")

    ConcurrentServiceSync(services).sync_all(ctx, route, svcs, _gateway())

    assert sorted(services.writes) == [("update", "a-hello"), ("update", "b-hello")]
    assert services.get("default", "a-hello").spec.external_name == "lb.grr-system.svc.cluster.local"
    # The listed objects are never modified in place.
    assert svcs[0].spec.type == "ClusterIP"


def test_no_write_when_spec_matches(ctx, route, services):
    svcs = _seed(services, route, "a-hello")
    sync = ConcurrentServiceSync(services)
    sync.sync_all(ctx, route, svcs, _gateway())
    services.writes.clear()

    sync.sync_all(ctx, route, [services.get("default", "a-hello")], _gateway())

    assert services.writes == []


def test_load_balancer_not_ready_is_soft(ctx, route, services):
    svcs = _seed(services, route, "a-hello")
    gw = Gateway(metadata=ObjectMeta(name="hello", namespace="default"))

    ConcurrentServiceSync(services).sync_all(ctx, route, svcs, gw)

    assert services.writes == []


def test_one_hard_failure_is_returned_soft_ones_succeed(ctx, route, services):
    svcs = _seed(services, route, "soft-hello", "bad-hello", "good-hello")
    services.fail_on[("update", "bad-hello")] = StoreError("conflict")
    desired = _desired()

    def build(ctx, route, name, gateway, cluster_local, cluster_ip):
        if name == "soft-hello":
            raise LoadBalancerNotReady("not yet")
        return desired(ctx, route, name, gateway, cluster_local, cluster_ip)

    with pytest.raises(ReconcileError, match="bad-hello") as exc:
        ConcurrentServiceSync(services, build).sync_all(ctx, route, svcs, _gateway())

    assert isinstance(exc.value.__cause__, StoreError)
    assert ("update", "soft-hello") not in services.writes


def test_hard_failure_cancels_siblings_before_they_write(ctx, route, services):
    svcs = _seed(services, route, "bad-hello", "slow-hello")
    services.fail_on[("update", "bad-hello")] = StoreError("boom")
    desired = _desired()

    def build(task_ctx, route, name, gateway, cluster_local, cluster_ip):
        if name == "slow-hello":
            deadline = time.monotonic() + 5
            while not task_ctx.cancelled and time.monotonic() < deadline:
                time.sleep(0.01)
        return desired(task_ctx, route, name, gateway, cluster_local, cluster_ip)

    with pytest.raises(ReconcileError):
        ConcurrentServiceSync(services, build).sync_all(ctx, route, svcs, _gateway())

    assert ("update", "slow-hello") not in services.writes
    # The caller's context is not cancelled by a failing task.
    assert not ctx.cancelled


def test_cancelled_pass_issues_no_writes(ctx, route, services):
    svcs = _seed(services, route, "a-hello", "b-hello")
    ctx.cancel()

    with pytest.raises(PassCancelled):
        ConcurrentServiceSync(services).sync_all(ctx, route, svcs, _gateway())
    assert services.writes == []


def test_ip_load_balancer_keeps_cluster_ip(ctx, route, services):
    svc = owned_service(route, "a-hello")
    svc.spec.cluster_ip = "10.0.0.7"
    svcs = [services.seed(svc)]
    lb = LoadBalancerStatus(ingress=[LoadBalancerIngress(ip="192.168.1.10")])
    gw = Gateway(
        metadata=ObjectMeta(name="hello", namespace="default"),
        status=GatewayStatus(public_load_balancer=lb, private_load_balancer=lb),
    )

    ConcurrentServiceSync(services).sync_all(ctx, route, svcs, gw)

    spec = services.get("default", "a-hello").spec
    assert spec.type == "ClusterIP"
    assert spec.cluster_ip == "10.0.0.7"
    assert spec.endpoint_ips == ["192.168.1.10"]


def test_empty_service_list_is_a_noop(ctx, route, services):
    ConcurrentServiceSync(services).sync_all(ctx, route, [], _gateway())
    assert services.writes == []
