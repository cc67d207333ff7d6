"""
Tests for the counterparty matcher.

Covers exact and tolerance matches, amount mismatches, missing records,
ambiguous candidates, manual overrides and period validation.
"""

from datetime import date
from decimal import Decimal

import pytest

from gst_config.schema import EngineConfig
from gst_engines.matching import ItcMatcher, apply_override, clear_override, reconcile
from gst_kernel.domain.dtos import (
    BlockedCreditRule,
    MatchNote,
    PurchaseCategory,
    ReconciliationStatus,
)
from gst_kernel.domain.period import Period
from gst_kernel.domain.values import Money
from gst_kernel.exceptions import PeriodMismatchError
from tests.fakes import make_purchase, make_record

APRIL = Period(2024, 4)


class TestSingleMatch:
    """One counterparty record per purchase."""

    def test_exact_match(self):
        """Matching amounts: full credit eligible."""
        purchase = make_purchase("INV-001", "1800")
        [update] = reconcile([purchase], [make_record("INV-001", "1800")], APRIL)

        assert update.status == ReconciliationStatus.MATCHED
        assert update.note == MatchNote.EXACT
        assert update.itc_eligible == Money.of("1800")
        assert update.itc_blocked == Money.zero()
        assert update.itc_eligible + update.itc_blocked == purchase.tax_total

    def test_declared_lower_than_recorded(self):
        """Declared 1500 against 1800: mismatched, credit limited to declared."""
        purchase = make_purchase("INV-001", "1800")
        [update] = reconcile([purchase], [make_record("INV-001", "1500")], APRIL)

        assert update.status == ReconciliationStatus.MISMATCHED
        assert update.note == MatchNote.AMOUNT_MISMATCH
        assert update.itc_eligible == Money.of("1500")
        assert update.itc_blocked == Money.of("300")

    def test_declared_higher_than_recorded(self):
        """Credit never exceeds the recorded tax."""
        purchase = make_purchase("INV-001", "1800")
        [update] = reconcile([purchase], [make_record("INV-001", "2000")], APRIL)

        assert update.status == ReconciliationStatus.MISMATCHED
        assert update.itc_eligible == Money.of("1800")
        assert update.itc_blocked == Money.zero()

    def test_within_absolute_tolerance(self):
        purchase = make_purchase("INV-001", "1800")
        [update] = reconcile([purchase], [make_record("INV-001", "1799.50")], APRIL)

        assert update.status == ReconciliationStatus.MATCHED
        assert update.note == MatchNote.WITHIN_TOLERANCE
        assert update.itc_eligible == Money.of("1800")

    def test_absolute_tolerance_boundary(self):
        purchase = make_purchase("INV-001", "1800")
        [at_limit] = reconcile([purchase], [make_record("INV-001", "1799.00")], APRIL)
        [beyond] = reconcile([purchase], [make_record("INV-001", "1798.99")], APRIL)

        assert at_limit.status == ReconciliationStatus.MATCHED
        assert beyond.status == ReconciliationStatus.MISMATCHED

    def test_percent_tolerance_applies_to_small_invoices(self):
        """1% of 50 is 0.50, tighter than the 1.00 absolute tolerance."""
        purchase = make_purchase("INV-001", "50", inter_state=True)
        [update] = reconcile(
            [purchase], [make_record("INV-001", "49.40", inter_state=True)], APRIL
        )
        assert update.status == ReconciliationStatus.MISMATCHED

    def test_custom_tolerance(self):
        config = EngineConfig(match_tolerance_absolute=Decimal("0"))
        purchase = make_purchase("INV-001", "1800")
        [update] = reconcile(
            [purchase], [make_record("INV-001", "1799.99")], APRIL, config=config
        )
        assert update.status == ReconciliationStatus.MISMATCHED

    def test_invoice_number_normalized(self):
        purchase = make_purchase("inv-001 ")
        [update] = reconcile([purchase], [make_record(" INV-001")], APRIL)
        assert update.status == ReconciliationStatus.MATCHED

    def test_vendor_scoped(self):
        purchase = make_purchase("INV-001", vendor_ref="V1")
        [update] = reconcile([purchase], [make_record("INV-001", vendor_ref="V2")], APRIL)
        assert update.status == ReconciliationStatus.NOT_FOUND

    def test_matched_record_attached(self):
        record = make_record("INV-001")
        [update] = reconcile([make_purchase("INV-001")], [record], APRIL)
        assert update.counterparty == record
        assert update.candidate_count == 1


class TestNotFound:

    def test_no_record(self):
        purchase = make_purchase("INV-404", "1800")
        [update] = reconcile([purchase], [], APRIL)

        assert update.status == ReconciliationStatus.NOT_FOUND
        assert update.note == MatchNote.NOT_FOUND
        assert update.itc_eligible == Money.zero()
        assert update.itc_blocked == Money.of("1800")
        assert update.counterparty is None

    def test_output_order_follows_input(self):
        purchases = [make_purchase(f"INV-{i}") for i in range(5)]
        updates = reconcile(purchases, [make_record("INV-3")], APRIL)
        assert [u.purchase_id for u in updates] == [p.id for p in purchases]
        assert updates[3].status == ReconciliationStatus.MATCHED


class TestBlockedCredit:

    def setup_method(self):
        self.config = EngineConfig(
            blocked_credit_rules=(
                BlockedCreditRule(PurchaseCategory.CAPITAL_GOODS, "motor_vehicle"),
            ),
        )

    def test_matched_but_blocked(self):
        purchase = make_purchase(
            "INV-001", "1800", category="capital_goods", credit_block_reason="motor_vehicle"
        )
        [update] = reconcile(
            [purchase], [make_record("INV-001", "1800")], APRIL, config=self.config
        )
        assert update.status == ReconciliationStatus.MATCHED
        assert update.itc_eligible == Money.zero()
        assert update.itc_blocked == Money.of("1800")

    def test_mismatched_and_blocked(self):
        purchase = make_purchase(
            "INV-001", "1800", category="capital_goods", credit_block_reason="motor_vehicle"
        )
        [update] = reconcile(
            [purchase], [make_record("INV-001", "1500")], APRIL, config=self.config
        )
        assert update.status == ReconciliationStatus.MISMATCHED
        assert update.itc_eligible == Money.zero()
        assert update.itc_blocked == Money.of("1800")


class TestAmbiguous:
    """Several statement lines share the purchase's key."""

    def test_closest_date_wins(self):
        purchase = make_purchase("INV-001", "1800", invoice_date=date(2024, 4, 10))
        far = make_record("INV-001", "1800", invoice_date=date(2024, 4, 1))
        near = make_record("INV-001", "1700", invoice_date=date(2024, 4, 11))
        [update] = reconcile([purchase], [far, near], APRIL)

        assert update.status == ReconciliationStatus.MISMATCHED
        assert update.note == MatchNote.AMBIGUOUS
        assert update.counterparty == near
        assert update.candidate_count == 2
        assert update.itc_eligible == Money.of("1700")
        assert update.itc_blocked == Money.of("100")

    def test_smallest_difference_breaks_date_tie(self):
        purchase = make_purchase("INV-001", "1800", invoice_date=date(2024, 4, 10))
        worse = make_record("INV-001", "1500", invoice_date=date(2024, 4, 12))
        better = make_record("INV-001", "1790", invoice_date=date(2024, 4, 8))
        [update] = reconcile([purchase], [worse, better], APRIL)
        assert update.counterparty == better

    def test_input_order_breaks_full_tie(self):
        purchase = make_purchase("INV-001", "1800")
        first = make_record("INV-001", "1800", vendor_ref="V1")
        second = make_record("inv-001", "1800", vendor_ref="V1")
        [update] = reconcile([purchase], [first, second], APRIL)
        assert update.counterparty is first

    def test_ambiguous_is_mismatched_even_when_exact(self):
        purchase = make_purchase("INV-001", "1800")
        records = [make_record("INV-001", "1800"), make_record("INV-001", "1800")]
        [update] = reconcile([purchase], records, APRIL)
        assert update.status == ReconciliationStatus.MISMATCHED
        assert update.itc_eligible == Money.of("1800")


class TestManualOverride:

    def test_override_survives_run(self):
        purchase = make_purchase(
            "INV-001", "1800",
            status=ReconciliationStatus.MATCHED,
            manual_override=True,
        )
        [update] = reconcile([purchase], [], APRIL)

        assert update.note == MatchNote.MANUAL_OVERRIDE
        assert update.status == ReconciliationStatus.MATCHED
        assert update.itc_eligible == purchase.itc_eligible
        assert not update.is_change

    def test_apply_override_keeps_itc(self):
        purchase = make_purchase("INV-001", "1800", itc_eligible="0", itc_blocked="1800",
                                 status=ReconciliationStatus.NOT_FOUND)
        update = apply_override(purchase, ReconciliationStatus.MATCHED)

        assert update.status == ReconciliationStatus.MATCHED
        assert update.manual_override is True
        assert update.itc_eligible == Money.zero()
        assert update.itc_blocked == Money.of("1800")
        assert update.note == MatchNote.MANUAL_STATUS

    @pytest.mark.parametrize("status", [
        ReconciliationStatus.PENDING,
        ReconciliationStatus.NOT_FOUND,
    ])
    def test_override_only_to_matched_or_mismatched(self, status):
        with pytest.raises(ValueError, match="Cannot override"):
            apply_override(make_purchase(), status)

    def test_clear_override_releases_purchase(self):
        purchase = make_purchase(manual_override=True, status=ReconciliationStatus.MATCHED)
        update = clear_override(purchase)
        assert update.manual_override is False
        assert update.is_change
        assert update.status == ReconciliationStatus.MATCHED


class TestPeriodHandling:

    def test_out_of_period_purchase_unchanged(self):
        purchase = make_purchase("INV-001", invoice_date=date(2024, 3, 31))
        [update] = reconcile([purchase], [make_record("INV-001")], APRIL)
        assert update.note == MatchNote.OUT_OF_PERIOD
        assert not update.is_change

    def test_record_from_other_period_rejected(self):
        record = make_record("INV-001", period="2024-03", invoice_date=date(2024, 3, 5))
        with pytest.raises(PeriodMismatchError) as exc_info:
            reconcile([make_purchase()], [record], APRIL)
        assert exc_info.value.expected_period == "2024-04"
        assert exc_info.value.record_period == "2024-03"

    def test_period_accepts_filing_code(self):
        [update] = reconcile([make_purchase("INV-001")], [make_record("INV-001")], "042024")
        assert update.status == ReconciliationStatus.MATCHED


class TestDeterminism:

    def test_identical_inputs_identical_outputs(self):
        purchases = [make_purchase(f"INV-{i}", str(100 * (i + 1))) for i in range(10)]
        records = [make_record(f"INV-{i}", str(100 * (i + 1) - i)) for i in range(0, 10, 2)]
        matcher = ItcMatcher()
        assert matcher.reconcile(purchases, records, APRIL) == matcher.reconcile(
            purchases, records, APRIL
        )

    def test_trace_emitted(self, captured_logs):
        reconcile([make_purchase()], [make_record()], APRIL)
        traces = [r for r in captured_logs() if r["message"] == "GST_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "matching"
        assert len(traces[-1]["input_fingerprint"]) == 16
