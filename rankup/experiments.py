"""A/B test bucketing.

Assignment is deterministic: ``bucket("<test>:<user>")`` walks the cumulative
variant weights, so a user sees the same variant in every process without
storing assignments. Audience percentage is applied the same way with a
separate hash key so it is independent of the variant choice.
"""
from __future__ import annotations

import copy
import math
from typing import Any, Literal

from sqlalchemy.orm import Session
from typing_extensions import NotRequired, TypedDict

from .feature_flags import bucket
from .models import ExperimentResult

TestStatus = Literal["draft", "running", "paused", "completed"]


class ABVariant(TypedDict):
    id: str
    name: str
    weight: int  # 0..100, all variants sum to 100
    config: dict[str, Any]


class ABAudience(TypedDict, total=False):
    roles: list[str]
    plans: list[str]
    percentage: int


class ABTest(TypedDict):
    id: str
    name: str
    description: str
    status: TestStatus
    variants: list[ABVariant]
    audience: NotRequired[ABAudience]


class ExperimentManager:
    def __init__(self) -> None:
        self._tests: dict[str, ABTest] = {}

    def create_test(self, test: ABTest) -> None:
        if sum(v["weight"] for v in test["variants"]) != 100:
            raise ValueError("Variant weights must sum to 100")
        self._tests[test["id"]] = copy.deepcopy(test)

    def get(self, test_id: str) -> ABTest | None:
        return self._tests.get(test_id)

    def active_tests(self) -> list[ABTest]:
        return [t for t in self._tests.values() if t["status"] == "running"]

    def _in_audience(self, test: ABTest, user_key: str, role: str | None, plan: str | None) -> bool:
        aud = test.get("audience") or {}
        if aud.get("roles") and role not in aud["roles"]:
            return False
        if aud.get("plans") and (plan or "free") not in aud["plans"]:
            return False
        pct = aud.get("percentage", 100)
        return bucket(f"audience:{test['id']}:{user_key}") < pct

    def assign_variant(
        self, test_id: str, user_key: str, *, role: str | None = None, plan: str | None = None
    ) -> ABVariant | None:
        test = self._tests.get(test_id)
        if test is None or test["status"] != "running":
            return None
        if not self._in_audience(test, user_key, role, plan):
            return None
        point = bucket(f"{test_id}:{user_key}")
        cumulative = 0
        for variant in test["variants"]:
            cumulative += variant["weight"]
            if point < cumulative:
                return variant
        return test["variants"][-1]

    def track_result(
        self, db: Session, *, test_id: str, variant_id: str, user_key: str, metrics: dict[str, Any] | None
    ) -> ExperimentResult:
        test = self._tests.get(test_id)
        if test is None:
            raise KeyError(test_id)
        if variant_id not in {v["id"] for v in test["variants"]}:
            raise ValueError("unknown variant")
        row = ExperimentResult(test_id=test_id, variant_id=variant_id, user_key=user_key, metrics=metrics or {})
        db.add(row)
        db.commit()
        return row

    def statistics(self, db: Session, test_id: str) -> dict[str, Any]:
        """Per-variant conversion stats plus a two-proportion z-test of the first two variants."""
        test = self._tests.get(test_id)
        if test is None:
            raise KeyError(test_id)
        rows = db.query(ExperimentResult).filter(ExperimentResult.test_id == test_id).all()
        stats = []
        for variant in test["variants"]:
            mine = [r.metrics or {} for r in rows if r.variant_id == variant["id"]]
            n = len(mine)
            conversions = sum(1 for m in mine if m.get("conversion"))
            clicks = sum(1 for m in mine if m.get("clickThrough"))
            time_spent = sum(float(m.get("timeSpent") or 0) for m in mine)
            stats.append(
                {
                    "variantId": variant["id"],
                    "variantName": variant["name"],
                    "totalUsers": n,
                    "conversions": conversions,
                    "conversionRate": conversions / n if n else 0.0,
                    "clicks": clicks,
                    "clickThroughRate": clicks / n if n else 0.0,
                    "avgTimeSpent": time_spent / n if n else 0.0,
                }
            )
        p_value = None
        if len(stats) >= 2 and stats[0]["totalUsers"] and stats[1]["totalUsers"]:
            a, b = stats[0], stats[1]
            n1, n2 = a["totalUsers"], b["totalUsers"]
            pooled = (a["conversions"] + b["conversions"]) / (n1 + n2)
            se = math.sqrt(pooled * (1 - pooled) * (1 / n1 + 1 / n2))
            if se > 0:
                z = abs(a["conversionRate"] - b["conversionRate"]) / se
                p_value = 2 * (1 - 0.5 * (1 + math.erf(z / math.sqrt(2))))
        significant = p_value is not None and p_value < 0.05
        winner = max(stats, key=lambda s: s["conversionRate"])["variantId"] if significant else None
        return {
            "testId": test_id,
            "testName": test["name"],
            "variantStats": stats,
            "pValue": p_value,
            "isSignificant": significant,
            "winner": winner,
        }


_DEFAULT_TESTS: tuple[ABTest, ...] = (
    {
        "id": "homepage-layout-test",
        "name": "Homepage layout",
        "description": "Card layout vs existing list layout",
        "status": "running",
        "variants": [
            {"id": "control", "name": "List layout", "weight": 50, "config": {"layout": "list"}},
            {"id": "treatment", "name": "Card layout", "weight": 50, "config": {"layout": "card"}},
        ],
    },
    {
        "id": "cta-button-color-test",
        "name": "CTA button color",
        "description": "Blue vs green vs red button",
        "status": "running",
        "audience": {"plans": ["free", "premium"], "percentage": 50},
        "variants": [
            {"id": "blue", "name": "Blue", "weight": 34, "config": {"buttonColor": "blue"}},
            {"id": "green", "name": "Green", "weight": 33, "config": {"buttonColor": "green"}},
            {"id": "red", "name": "Red", "weight": 33, "config": {"buttonColor": "red"}},
        ],
    },
    {
        "id": "recommendation-algorithm-test",
        "name": "Recommendation algorithm",
        "description": "Content-based vs collaborative vs hybrid",
        "status": "running",
        "variants": [
            {"id": "content-based", "name": "Content based", "weight": 33,
             "config": {"algorithm": "content-based", "weights": {"content": 1.0, "collaborative": 0.0}}},
            {"id": "collaborative", "name": "Collaborative", "weight": 33,
             "config": {"algorithm": "collaborative", "weights": {"content": 0.0, "collaborative": 1.0}}},
            {"id": "hybrid", "name": "Hybrid", "weight": 34,
             "config": {"algorithm": "hybrid", "weights": {"content": 0.4, "collaborative": 0.6}}},
        ],
    },
)


def build_default_manager() -> ExperimentManager:
    mgr = ExperimentManager()
    for t in _DEFAULT_TESTS:
        mgr.create_test(t)
    return mgr


__all__ = ["ABTest", "ABVariant", "ABAudience", "ExperimentManager", "build_default_manager"]
