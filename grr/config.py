"""Configuration snapshots built from independently updated named sources.

Each source ("defaults", "features") is a JSON blob decoded into its own
pydantic model. The store keeps the latest successfully decoded value per
source; a snapshot copies every slot and fills never-populated slots from the
model's hard defaults.
"""
from __future__ import annotations

from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from .context import PassContext
from .errors import ConfigError
from .logs import get_logger

log = get_logger(__name__)

DEFAULTS_CONFIG_NAME = "defaults"
FEATURES_CONFIG_NAME = "features"


class Defaults(BaseModel):
    gateway_class: str = "grr.gateway"
    domain: str = "example.com"
    cluster_domain: str = "svc.cluster.local"
    timeout_seconds: int = Field(300, ge=1)
    service_port: int = Field(80, ge=1, le=65535)


class Features(BaseModel):
    tag_header_routing: bool = False
    cluster_local_by_default: bool = False


def _decoder(model: type[BaseModel]) -> Callable[[bytes | str], BaseModel]:
    def decode(data: bytes | str) -> BaseModel:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        if not text or not text.strip():
            return model()
        return model.model_validate_json(text)

    return decode


CONSTRUCTORS: dict[str, Callable[[bytes | str], BaseModel]] = {
    DEFAULTS_CONFIG_NAME: _decoder(Defaults),
    FEATURES_CONFIG_NAME: _decoder(Features),
}


@dataclass
class ConfigSnapshot:
    defaults: Defaults | None = None
    features: Features | None = None


class _CfgKey:
    pass


_CFG_KEY = _CfgKey()


def to_context(ctx: PassContext, cfg: ConfigSnapshot) -> PassContext:
    return ctx.with_value(_CFG_KEY, cfg)


def from_context(ctx: PassContext) -> ConfigSnapshot | None:
    cfg = ctx.value(_CFG_KEY)
    return cfg if isinstance(cfg, ConfigSnapshot) else None


def from_context_or_defaults(ctx: PassContext) -> ConfigSnapshot:
    """Like `from_context`, but every missing slot is filled with its defaults."""
    cfg = from_context(ctx)
    if cfg is None:
        return ConfigSnapshot(defaults=Defaults(), features=Features())
    return ConfigSnapshot(
        defaults=cfg.defaults.model_copy(deep=True) if cfg.defaults is not None else Defaults(),
        features=cfg.features.model_copy(deep=True) if cfg.features is not None else Features(),
    )


class ConfigStore:
    """Holds the latest decoded value of each named configuration source."""

    def __init__(
        self,
        constructors: dict[str, Callable[[bytes | str], BaseModel]] | None = None,
        on_after_store: list[Callable[[str, Any], None]] | None = None,
    ) -> None:
        self._constructors = dict(constructors or CONSTRUCTORS)
        self._on_after_store = list(on_after_store or [])
        self._lock = Lock()
        self._values: dict[str, BaseModel] = {}

    @property
    def sources(self) -> list[str]:
        return sorted(self._constructors)

    def on_update(self, name: str, data: bytes | str) -> None:
        """Decode and store a new value for one source.

        Raises KeyError for unknown sources and ConfigError when the blob is
        invalid; in both cases every slot keeps its previous value.
        """
        if name not in self._constructors:
            raise KeyError(name)
        try:
            value = self._constructors[name](data)
        except (ValidationError, ValueError) as e:
            log.error("config_update_rejected", source=name, error=str(e))
            raise ConfigError(f"invalid {name!r} config: {e}") from e

        with self._lock:
            self._values[name] = value
        log.info("config_updated", source=name)
        for cb in self._on_after_store:
            cb(name, value)

    def untyped_load(self, name: str) -> Any:
        with self._lock:
            return self._values.get(name)

    def load(self) -> ConfigSnapshot:
        defaults = self.untyped_load(DEFAULTS_CONFIG_NAME)
        features = self.untyped_load(FEATURES_CONFIG_NAME)
        return ConfigSnapshot(
            defaults=defaults.model_copy(deep=True) if isinstance(defaults, Defaults) else Defaults(),
            features=features.model_copy(deep=True) if isinstance(features, Features) else Features(),
        )

    def to_context(self, ctx: PassContext) -> PassContext:
        return to_context(ctx, self.load())
