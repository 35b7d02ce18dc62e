from __future__ import annotations

from contextlib import asynccontextmanager
from threading import Lock

from fastapi import FastAPI, HTTPException, Query, Request

from grr import db
from grr.api_models import ReconcileRequest, RegisterRouteRequest
from grr.config import ConfigStore
from grr.context import background
from grr.errors import (
    AlreadyExistsError,
    ConfigError,
    ConflictError,
    NotFoundError,
    OwnershipConflictError,
    ReconcileError,
    StoreError,
    ValidationError,
)
from grr.events import EventRecorder
from grr.logs import configure_logging, get_logger
from grr.models import BackendService, Gateway, GatewayStatus, ObjectMeta, Route
from grr.reconciler import RouteReconciler
from grr.settings import settings
from grr.traffic import WeightedRollouts

log = get_logger(__name__)


def create_app(db_path: str | None = None, config_store: ConfigStore | None = None) -> FastAPI:
    routes = db.ResourceStore("Route", Route, db_path)
    gateways = db.ResourceStore("Gateway", Gateway, db_path)
    services = db.ResourceStore("BackendService", BackendService, db_path)
    config_store = config_store or ConfigStore()
    reconciler = RouteReconciler(
        gateways,
        services,
        EventRecorder(db_path),
        WeightedRollouts(settings.rollout_step_percent),
        config_store,
    )

    # One pass per route at a time.
    locks_guard = Lock()
    route_locks: dict[tuple[str, str], Lock] = {}

    def route_lock(namespace: str, name: str) -> Lock:
        with locks_guard:
            return route_locks.setdefault((namespace, name), Lock())

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging(service_name=settings.service_name, level=settings.log_level, json=settings.log_json)
        db.init_db(db_path)
        yield

    app = FastAPI(title="Gateway Route Reconciler", lifespan=lifespan)

    def get_route(namespace: str, name: str) -> Route:
        try:
            return routes.get(namespace, name)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.put("/routes")
    def register_route(req: RegisterRouteRequest) -> dict:
        route = Route(
            metadata=ObjectMeta(
                name=req.name, namespace=req.namespace, labels=req.labels, annotations=req.annotations
            )
        )
        try:
            route = routes.create(route)
        except AlreadyExistsError:
            route = routes.get(req.namespace, req.name)
        return route.model_dump(mode="json")

    @app.get("/routes/{namespace}/{name}")
    def read_route(namespace: str, name: str) -> dict:
        return get_route(namespace, name).model_dump(mode="json")

    @app.post("/routes/{namespace}/{name}/reconcile")
    def reconcile_route(namespace: str, name: str, req: ReconcileRequest) -> dict:
        with route_lock(namespace, name):
            route = get_route(namespace, name)
            failure: HTTPException | None = None
            result = None
            try:
                result = reconciler.reconcile(
                    background(), route, req.traffic, req.tls, req.gateway_class, req.challenges
                )
            except ValidationError as e:
                failure = HTTPException(status_code=422, detail=str(e))
            except OwnershipConflictError as e:
                failure = HTTPException(status_code=409, detail=str(e))
            except (ReconcileError, StoreError) as e:
                log.error("reconcile_failed", route=name, namespace=namespace, error=str(e))
                failure = HTTPException(status_code=500, detail=str(e))

            # Status is persisted for failed passes too, so conflicts stay visible.
            try:
                route = routes.update(route)
            except ConflictError as e:
                raise HTTPException(status_code=409, detail=str(e)) from e
            if failure is not None:
                raise failure

        return {
            "gateway": result.gateway.model_dump(mode="json"),
            "services": [s.model_dump(mode="json") for s in result.services],
            "status": route.status.model_dump(mode="json"),
        }

    @app.put("/gateways/{namespace}/{name}/status")
    def publish_gateway_status(namespace: str, name: str, status: GatewayStatus) -> dict:
        try:
            gateway = gateways.get(namespace, name)
            gateway.status = status
            gateway = gateways.update(gateway)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except ConflictError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return gateway.model_dump(mode="json")

    @app.put("/config/{source}")
    async def update_config(source: str, request: Request) -> dict:
        if source not in config_store.sources:
            raise HTTPException(status_code=404, detail=f"unknown config source {source!r}")
        body = await request.body()
        try:
            config_store.on_update(source, body)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=f"unknown config source {source!r}") from e
        except ConfigError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        return {"source": source, "status": "updated"}

    @app.get("/config")
    def read_config() -> dict:
        snap = config_store.load()
        return {"defaults": snap.defaults.model_dump(), "features": snap.features.model_dump()}

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        return db.latest_events(limit, db_path)

    return app


app = create_app()
