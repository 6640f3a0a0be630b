"""Feature flags with user targeting, rules and percentage rollout.

Evaluation order for a known flag:
  1. disabled -> False
  2. user id listed in ``user_ids`` -> True
  3. rules present -> first matching rule decides; no match -> False
  4. percentage set and user known -> stable bucket < percentage
  5. otherwise -> enabled
Admin updates are layered over the defaults through the cache so every
worker sees them (memory backend: per process).
"""
from __future__ import annotations

import copy
from collections.abc import Iterable
from typing import Any, Literal

from typing_extensions import NotRequired, TypedDict

from . import cache as cache_mod

RuleType = Literal["user", "role", "plan", "percentage"]
OVERRIDE_TTL = 300


class FlagRule(TypedDict):
    type: RuleType
    value: Any  # str | list[str] | int
    enabled: bool


class FlagDefinition(TypedDict):
    name: str
    enabled: bool
    description: str
    percentage: NotRequired[int]
    user_ids: NotRequired[list[str]]
    rules: NotRequired[list[FlagRule]]


class FlagContext(TypedDict, total=False):
    user_id: str | int | None
    role: str | None
    plan: str | None


class FlagState(TypedDict):
    name: str
    enabled: bool
    description: str


_SEED_FLAGS: tuple[FlagDefinition, ...] = (
    {"name": "two-factor-auth", "enabled": True, "description": "Two-factor authentication"},
    {"name": "real-time-stocks", "enabled": True, "description": "Real-time stock price updates"},
    {"name": "push-notifications", "enabled": False, "description": "Browser push notifications"},
    {"name": "new-dashboard", "enabled": False, "description": "Redesigned dashboard", "percentage": 0},
    {"name": "ai-analysis", "enabled": False, "description": "AI stock analysis", "percentage": 0},
    {"name": "advanced-charts", "enabled": False, "description": "Advanced charting tools", "percentage": 0},
    {"name": "beta-features", "enabled": False, "description": "Beta features for testers", "user_ids": []},
    {
        "name": "premium-api-access",
        "enabled": True,
        "description": "API access for premium plans",
        "rules": [{"type": "plan", "value": "premium", "enabled": True}],
    },
    {
        "name": "unlimited-exports",
        "enabled": True,
        "description": "Unlimited data exports",
        "rules": [{"type": "plan", "value": ["pro", "premium"], "enabled": True}],
    },
)


def stable_hash(value: str) -> int:
    """32-bit signed string hash (``h = h*31 + c``) so buckets match other clients."""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def bucket(value: str) -> int:
    """Stable 0..99 bucket for a string."""
    return abs(stable_hash(value)) % 100


def _matches(rule: FlagRule, ctx: FlagContext) -> bool:
    values = rule["value"] if isinstance(rule["value"], list) else [rule["value"]]
    rtype = rule["type"]
    if rtype == "user":
        return ctx.get("user_id") is not None and str(ctx.get("user_id")) in {str(v) for v in values}
    if rtype == "role":
        return ctx.get("role") in values
    if rtype == "plan":
        return ctx.get("plan") in values
    if rtype == "percentage":
        uid = ctx.get("user_id")
        return uid is not None and bucket(str(uid)) < int(values[0])
    return False


def evaluate(flag: FlagDefinition, ctx: FlagContext | None = None) -> bool:
    ctx = ctx or {}
    if not flag["enabled"]:
        return False
    uid = ctx.get("user_id")
    if uid is not None and str(uid) in {str(u) for u in flag.get("user_ids") or []}:
        return True
    rules = flag.get("rules") or []
    if rules:
        for rule in rules:
            if _matches(rule, ctx):
                return bool(rule["enabled"])
        return False
    pct = flag.get("percentage")
    if pct is not None and uid is not None:
        return bucket(str(uid)) < int(pct)
    return True


class FeatureRegistry:
    """Flag registry seeded with defaults; unknown flags always evaluate False."""

    def __init__(self, seed: Iterable[FlagDefinition] | None = None, cache: cache_mod.Cache | None = None):
        base = list(seed) if seed is not None else list(_SEED_FLAGS)
        self._defs: dict[str, FlagDefinition] = {d["name"]: copy.deepcopy(d) for d in base}
        self._cache = cache or cache_mod.Cache("feature-flag")

    def has(self, name: str) -> bool:
        return name in self._defs

    def get(self, name: str) -> FlagDefinition | None:
        base = self._defs.get(name)
        if base is None:
            return None
        override = self._cache.get(name)
        if override:
            merged = copy.deepcopy(base)
            merged.update(override)  # type: ignore[typeddict-item]
            return merged
        return copy.deepcopy(base)

    def enabled(self, name: str, ctx: FlagContext | None = None) -> bool:
        flag = self.get(name)
        return evaluate(flag, ctx) if flag else False

    def update(self, name: str, changes: dict[str, Any]) -> FlagDefinition:
        if name not in self._defs:
            raise KeyError(name)
        allowed = {k: v for k, v in changes.items() if k in ("enabled", "description", "percentage", "user_ids", "rules")}
        current = self._cache.get(name) or {}
        current.update(allowed)
        self._cache.set(name, current, ttl=OVERRIDE_TTL)
        flag = self.get(name)
        assert flag is not None
        return flag

    def names(self) -> list[str]:
        return sorted(self._defs)

    def list(self) -> list[FlagState]:
        out: list[FlagState] = []
        for name in self.names():
            flag = self.get(name)
            assert flag is not None
            out.append({"name": name, "enabled": flag["enabled"], "description": flag["description"]})
        return out

    def evaluate_all(self, ctx: FlagContext | None = None) -> dict[str, bool]:
        return {name: self.enabled(name, ctx) for name in self.names()}


__all__ = [
    "FlagRule",
    "FlagDefinition",
    "FlagContext",
    "FlagState",
    "FeatureRegistry",
    "evaluate",
    "bucket",
    "stable_hash",
]
