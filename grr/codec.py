"""Rollout state persisted as JSON in the gateway's metadata.

The annotation is editable by anyone with access to the gateway, so both
directions are fail-soft: failures are logged and read as "no rollout state".
"""
from __future__ import annotations

import pprint
from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from .logs import get_logger
from .traffic import Rollout

log = get_logger(__name__)

P = TypeVar("P")


class RolloutCodec(Generic[P]):
    def __init__(self, plan_type: Any = Rollout):
        self._adapter: TypeAdapter[P] = TypeAdapter(plan_type)

    def serialize(self, plan: P | None) -> str:
        if plan is None:
            return ""
        try:
            return self._adapter.dump_json(plan).decode("utf-8")
        except (PydanticSerializationError, TypeError, ValueError) as e:
            log.warning("rollout_serialize_failed", rollout=pprint.pformat(plan), error=str(e))
            return ""

    def deserialize(self, text: str | None) -> P | None:
        if not text:
            return None
        try:
            return self._adapter.validate_json(text)
        except ValidationError as e:
            log.warning("rollout_deserialize_failed", value=text, error=str(e))
            return None
