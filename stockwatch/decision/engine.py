# stockwatch/decision/engine.py

"""Ordered, declarative decision tables over extracted signals."""

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from stockwatch.models.signals import StockSignals
from stockwatch.models.verdict import (
    UNKNOWN_VERDICT,
    Reason,
    StockStatus,
    Verdict,
)

Predicate = Callable[[StockSignals], bool]


@dataclass(frozen=True)
class Rule:
    """One row of a decision table: when ``when`` holds, emit the verdict."""

    name: str
    when: Predicate
    status: StockStatus
    reason: Reason
    in_store_only: bool = False

    def verdict(self) -> Verdict:
        return Verdict(
            status=self.status,
            reason=self.reason,
            rule=self.name,
            in_store_only=self.in_store_only,
        )


@dataclass(frozen=True)
class Decision:
    """A verdict plus the rule names evaluated to reach it."""

    verdict: Verdict
    path: tuple[str, ...]


class DecisionEngine:
    """Strict priority ladder: rules are evaluated top-down, first match wins.

    The engine is total: any signal combination that no rule matches
    yields UNKNOWN rather than a guess.
    """

    def __init__(self, name: str, rules: Sequence[Rule]) -> None:
        names = [r.name for r in rules]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate rule names in '{name}' table")
        self.name = name
        self.rules: tuple[Rule, ...] = tuple(rules)

    def decide(self, signals: StockSignals) -> Verdict:
        """Return the verdict of the first matching rule."""
        return self.explain(signals).verdict

    def explain(self, signals: StockSignals) -> Decision:
        """Like :meth:`decide`, also reporting the decision path."""
        path: list[str] = []
        for rule in self.rules:
            path.append(rule.name)
            if rule.when(signals):
                return Decision(rule.verdict(), tuple(path))
        path.append(UNKNOWN_VERDICT.rule)
        return Decision(UNKNOWN_VERDICT, tuple(path))

    def rule_names(self) -> list[str]:
        return [r.name for r in self.rules]
