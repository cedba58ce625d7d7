# tests/test_decision_engine.py

"""Tests for the declarative decision tables."""

import itertools
import unittest

from stockwatch.decision.engine import DecisionEngine, Rule
from stockwatch.decision.retailer_rules import (
    BIGW_ENGINE,
    COLLECTIBLE_MADNESS_ENGINE,
    EBGAMES_ENGINE,
    GENERIC_ENGINE,
    KMART_ENGINE,
    STANDARD_ENGINE,
)
from stockwatch.models.signals import StockSignals
from stockwatch.models.verdict import (
    Availability,
    Reason,
    SignalSource,
    StockStatus,
)

ALL_ENGINES = (
    STANDARD_ENGINE,
    BIGW_ENGINE,
    COLLECTIBLE_MADNESS_ENGINE,
    KMART_ENGINE,
    GENERIC_ENGINE,
)

HYDRATED = SignalSource.HYDRATED


class TestDecisionEngine(unittest.TestCase):
    """Generic first-match-wins behaviour."""

    def test_first_match_wins(self) -> None:
        """Earlier rules shadow later ones."""
        engine = DecisionEngine("t", [
            Rule("a", lambda s: s.oos_strong, StockStatus.OUT_OF_STOCK,
                 Reason.EXPLICIT_OOS),
            Rule("b", lambda s: True, StockStatus.IN_STOCK,
                 Reason.ADD_TO_CART_AVAILABLE),
        ])
        verdict = engine.decide(StockSignals(oos_strong=True))
        self.assertIs(verdict.status, StockStatus.OUT_OF_STOCK)
        self.assertEqual(verdict.rule, "a")

    def test_default_is_unknown(self) -> None:
        """No matching rule yields UNKNOWN instead of a guess."""
        engine = DecisionEngine("t", [])
        verdict = engine.decide(StockSignals())
        self.assertIs(verdict.status, StockStatus.UNKNOWN)
        self.assertIs(verdict.reason, Reason.UNKNOWN)

    def test_explain_reports_path(self) -> None:
        """The decision path lists every rule tried."""
        decision = STANDARD_ENGINE.explain(StockSignals(oos_weak=True))
        self.assertEqual(decision.path[-1], "weak_oos_text")
        self.assertEqual(decision.path[0], "page_removed")
        self.assertIs(decision.verdict.reason, Reason.WEAK_OOS)

    def test_duplicate_rule_names_rejected(self) -> None:
        """Rule names must be unique within a table."""
        rule = Rule("x", lambda s: True, StockStatus.IN_STOCK,
                    Reason.ADD_TO_CART_AVAILABLE)
        with self.assertRaises(ValueError):
            DecisionEngine("dup", [rule, rule])


class TestSharedInvariants(unittest.TestCase):
    """Properties every retailer table must hold."""

    def test_jsonld_in_stock(self) -> None:
        """A lone JSON-LD InStock is IN_STOCK / JSONLD_IN_STOCK."""
        for engine in ALL_ENGINES:
            with self.subTest(engine=engine.name):
                verdict = engine.decide(
                    StockSignals(jsonld=Availability.IN_STOCK)
                )
                self.assertIs(verdict.status, StockStatus.IN_STOCK)
                self.assertIs(verdict.reason, Reason.JSONLD_IN_STOCK)

    def test_page_removed_beats_everything(self) -> None:
        """Removal wins regardless of any other signal."""
        signals = StockSignals(
            page_removed=True,
            api_in_stock=True,
            api_preorder=True,
            jsonld=Availability.IN_STOCK,
            explicit_preorder=True,
            in_store_only=True,
            stock_line_in_stock=True,
            add_to_cart=True,
            button_source=HYDRATED,
        )
        for engine in ALL_ENGINES:
            with self.subTest(engine=engine.name):
                verdict = engine.decide(signals)
                self.assertIs(verdict.status, StockStatus.REMOVED)
                self.assertIs(verdict.reason, Reason.PAGE_NOT_FOUND)

    def test_preorder_beats_sold_out_text(self) -> None:
        """JSON-LD PreOrder plus "sold out" wording is PREORDER."""
        signals = StockSignals(
            jsonld=Availability.PRE_ORDER, oos_strong=True, oos_weak=True,
        )
        for engine in ALL_ENGINES:
            with self.subTest(engine=engine.name):
                self.assertIs(
                    engine.decide(signals).status, StockStatus.PREORDER,
                )

    def test_totality_over_boolean_flags(self) -> None:
        """Every combination of flags maps to exactly one verdict."""
        flags = ("page_removed", "explicit_preorder", "oos_strong",
                 "oos_weak", "notify_me")
        for engine in ALL_ENGINES:
            for values in itertools.product((False, True), repeat=len(flags)):
                signals = StockSignals(**dict(zip(flags, values)))
                verdict = engine.decide(signals)
                self.assertIsInstance(verdict.status, StockStatus)
                self.assertEqual(engine.decide(signals), verdict)

    def test_empty_signals_are_unknown(self) -> None:
        """No evidence at all is UNKNOWN for every retailer."""
        for engine in ALL_ENGINES:
            with self.subTest(engine=engine.name):
                self.assertIs(
                    engine.decide(StockSignals()).status,
                    StockStatus.UNKNOWN,
                )


class TestStandardLadder(unittest.TestCase):
    """Reference ladder used by EB Games."""

    def test_ebgames_uses_standard(self) -> None:
        """EB Games decides with the reference ladder."""
        self.assertIs(EBGAMES_ENGINE, STANDARD_ENGINE)

    def test_api_boolean_beats_jsonld(self) -> None:
        """The inlined API boolean outranks structured data."""
        verdict = STANDARD_ENGINE.decide(StockSignals(
            api_in_stock=True, jsonld=Availability.OUT_OF_STOCK,
        ))
        self.assertIs(verdict.reason, Reason.API_IN_STOCK)

    def test_api_false_after_preorder(self) -> None:
        """Preorder pages report not-purchasable yet are PREORDER."""
        verdict = STANDARD_ENGINE.decide(StockSignals(
            api_in_stock=False, explicit_preorder=True,
        ))
        self.assertIs(verdict.status, StockStatus.PREORDER)

    def test_strong_oos_beats_jsonld_in_stock(self) -> None:
        """Explicit sold-out wording outranks a stale InStock offer."""
        verdict = STANDARD_ENGINE.decide(StockSignals(
            oos_strong=True, jsonld=Availability.IN_STOCK,
        ))
        self.assertIs(verdict.reason, Reason.EXPLICIT_OOS)

    def test_static_add_to_cart_not_trusted(self) -> None:
        """A static-fetch cart button alone stays UNKNOWN."""
        verdict = STANDARD_ENGINE.decide(StockSignals(add_to_cart=True))
        self.assertIs(verdict.status, StockStatus.UNKNOWN)

    def test_hydrated_add_to_cart_trusted(self) -> None:
        """A hydrated, enabled cart button is IN_STOCK as a last resort."""
        verdict = STANDARD_ENGINE.decide(StockSignals(
            add_to_cart=True, button_source=HYDRATED,
        ))
        self.assertIs(verdict.status, StockStatus.IN_STOCK)
        self.assertIs(verdict.reason, Reason.ADD_TO_CART_AVAILABLE)

    def test_weak_oos_beats_hydrated_button(self) -> None:
        """Weak OOS wording ranks above the button."""
        verdict = STANDARD_ENGINE.decide(StockSignals(
            oos_weak=True, add_to_cart=True, button_source=HYDRATED,
        ))
        self.assertIs(verdict.reason, Reason.WEAK_OOS)


class TestRetailerLadders(unittest.TestCase):
    """Retailer-specific orderings."""

    def test_bigw_api_preorder(self) -> None:
        """BIG W purchasable preorder items are PREORDER."""
        verdict = BIGW_ENGINE.decide(StockSignals(
            api_in_stock=True, api_preorder=True,
        ))
        self.assertIs(verdict.reason, Reason.API_PREORDER)

    def test_bigw_api_false_is_oos(self) -> None:
        """BIG W trusts its inventory boolean over JSON-LD."""
        verdict = BIGW_ENGINE.decide(StockSignals(
            api_in_stock=False, jsonld=Availability.IN_STOCK,
        ))
        self.assertIs(verdict.status, StockStatus.OUT_OF_STOCK)

    def test_bigw_wishlist_only_needs_hydration(self) -> None:
        """Wishlist-only is OOS only when read from a rendered DOM."""
        static = BIGW_ENGINE.decide(StockSignals(
            wishlist=True, add_to_cart=False,
        ))
        hydrated = BIGW_ENGINE.decide(StockSignals(
            wishlist=True, add_to_cart=False, button_source=HYDRATED,
        ))
        self.assertIs(static.status, StockStatus.UNKNOWN)
        self.assertIs(hydrated.reason, Reason.WISHLIST_ONLY)

    def test_kmart_in_store_only(self) -> None:
        """Kmart in-store-only listings count as in stock."""
        verdict = KMART_ENGINE.decide(StockSignals(
            in_store_only=True, oos_weak=True,
        ))
        self.assertIs(verdict.status, StockStatus.IN_STOCK)
        self.assertTrue(verdict.in_store_only)
        self.assertIs(verdict.reason, Reason.IN_STORE_ONLY)

    def test_kmart_trusts_server_button(self) -> None:
        """Kmart renders the cart button server-side."""
        verdict = KMART_ENGINE.decide(StockSignals(add_to_cart=True))
        self.assertIs(verdict.status, StockStatus.IN_STOCK)

    def test_collectible_madness_stock_line(self) -> None:
        """The stock line beats the enquire control."""
        verdict = COLLECTIBLE_MADNESS_ENGINE.decide(StockSignals(
            stock_line_in_stock=True, stock_line_enquire=True,
        ))
        self.assertIs(verdict.reason, Reason.STOCK_LINE_IN_STOCK)

    def test_collectible_madness_enquire_and_notify(self) -> None:
        """Enquire-only and notify-only pages are out of stock."""
        enquire = COLLECTIBLE_MADNESS_ENGINE.decide(
            StockSignals(stock_line_enquire=True)
        )
        notify = COLLECTIBLE_MADNESS_ENGINE.decide(
            StockSignals(notify_me=True)
        )
        self.assertIs(enquire.reason, Reason.ENQUIRE_ONLY)
        self.assertIs(notify.reason, Reason.NOTIFY_ME)

    def test_generic_sold_out_overrides_button(self) -> None:
        """Generic DOM: explicit OOS text overrides an enabled button."""
        verdict = GENERIC_ENGINE.decide(StockSignals(
            add_to_cart=True, oos_strong=True,
        ))
        self.assertIs(verdict.status, StockStatus.OUT_OF_STOCK)


if __name__ == "__main__":
    unittest.main()
