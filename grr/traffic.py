from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, Field

from .models import VISIBILITY_CLUSTER_LOCAL, VISIBILITY_EXTERNAL


class RevisionTarget(BaseModel):
    configuration_name: str = ""
    revision_name: str
    percent: int = Field(..., ge=0, le=100)
    latest_revision: bool = False


class TrafficConfig(BaseModel):
    """Traffic split handed to a pass: target name ("" = default) -> revision targets."""

    targets: dict[str, list[RevisionTarget]] = Field(default_factory=dict)
    visibility: dict[str, str] = Field(default_factory=dict)

    def visibility_for(self, target: str, cluster_local_by_default: bool = False) -> str:
        default = VISIBILITY_CLUSTER_LOCAL if cluster_local_by_default else VISIBILITY_EXTERNAL
        return self.visibility.get(target, default)


class RevisionRollout(BaseModel):
    revision_name: str
    percent: int


class ConfigurationRollout(BaseModel):
    configuration_name: str
    tag: str = ""
    percent: int
    # Oldest first; the last entry is the revision being rolled in.
    revisions: list[RevisionRollout] = Field(default_factory=list)


class Rollout(BaseModel):
    configurations: list[ConfigurationRollout] = Field(default_factory=list)


class RolloutAlgebra(Protocol):
    def build(self, tc: Any) -> Any: ...

    def step(self, cur: Any, prev: Any | None) -> Any: ...


class WeightedRollouts:
    """Moves traffic to a newly introduced latest revision `step_percent` at a time.

    Each call to `step` advances by one increment, so a rollout progresses by
    one step per reconciliation pass. Both operations are pure.
    """

    def __init__(self, step_percent: int = 25):
        self.step_percent = max(1, min(100, int(step_percent)))

    def build(self, tc: TrafficConfig) -> Rollout:
        configs: dict[tuple[str, str], ConfigurationRollout] = {}
        for tag, targets in tc.targets.items():
            for t in targets:
                if not t.latest_revision or not t.configuration_name:
                    continue
                key = (tag, t.configuration_name)
                cfg = configs.get(key)
                if cfg is None:
                    configs[key] = ConfigurationRollout(
                        configuration_name=t.configuration_name,
                        tag=tag,
                        percent=t.percent,
                        revisions=[RevisionRollout(revision_name=t.revision_name, percent=t.percent)],
                    )
                else:
                    cfg.percent += t.percent
                    cfg.revisions[-1].percent += t.percent
        return Rollout(configurations=[configs[k] for k in sorted(configs)])

    def step(self, cur: Rollout, prev: Rollout | None) -> Rollout:
        if prev is None:
            return cur
        prev_by_key = {(c.tag, c.configuration_name): c for c in prev.configurations}
        return Rollout(
            configurations=[
                self._step_config(c, prev_by_key.get((c.tag, c.configuration_name)))
                for c in cur.configurations
            ]
        )

    def _step_config(self, cur: ConfigurationRollout, prev: ConfigurationRollout | None) -> ConfigurationRollout:
        if prev is None or not prev.revisions or len(cur.revisions) != 1 or cur.percent <= 0:
            return cur
        new = cur.revisions[0].revision_name
        prev_latest = prev.revisions[-1]
        if prev_latest.revision_name == new:
            if len(prev.revisions) == 1:
                return cur
            # Mid-rollout: advance one more step.
            pct = prev_latest.percent + self.step_percent
            old = prev.revisions[-2].revision_name
        else:
            pct = self.step_percent
            old = prev_latest.revision_name
        if pct >= cur.percent:
            return cur
        return ConfigurationRollout(
            configuration_name=cur.configuration_name,
            tag=cur.tag,
            percent=cur.percent,
            revisions=[
                RevisionRollout(revision_name=old, percent=cur.percent - pct),
                RevisionRollout(revision_name=new, percent=pct),
            ],
        )
