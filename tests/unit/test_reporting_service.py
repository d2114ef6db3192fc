"""Unit tests for read-only reports."""

from datetime import date
from decimal import Decimal

import pytest

from chama.errors import NotFoundError
from chama.models import (
    ContributionStatus,
    CycleStatus,
    LedgerTransactionType,
    MemberRole,
    PayoutStatus,
)
from chama.services.balance_service import BalanceReconciler
from chama.services.contribution_service import ContributionService
from chama.services.cycle_service import CycleRegistry
from chama.services.db import transaction_scope
from chama.services.payment_service import PaymentService
from chama.services.payout_service import PayoutService
from chama.services.reporting_service import ReportingService, classify_balance


def pay(db_session, chama, member, amount, **extra):
    """Record a payment for a member."""
    return PaymentService(db_session).record_payment(
        {"chama_id": chama.id, "member_id": member.id, "amount": amount, **extra}
    )


@pytest.mark.parametrize(
    "balance,expected",
    [("0.00", "credit"), ("0.01", "credit"), ("-0.01", "arrears"), ("-500.00", "arrears")],
)
def test_classify_balance(balance, expected):
    """Zero counts as credit."""
    assert classify_balance(Decimal(balance)) == expected


class TestMemberStatus:
    """Tests for the member status report."""

    @pytest.fixture
    def two_type_cycle(self, make_cycle, monthly_type, welfare_type):
        return make_cycle(
            [(monthly_type.id, "1000.00"), (welfare_type.id, "200.00")],
            status=CycleStatus.ACTIVE,
        )

    def test_partial_payment(self, db_session, chama, member, two_type_cycle, monthly_type):
        """Breakdown follows composition order with remaining amounts."""
        pay(db_session, chama, member, "600.00")

        status = ReportingService(db_session).member_status(member.id, as_of=date(2025, 1, 15))

        assert status.cycle_id == two_type_cycle.id
        assert status.classification == "credit"
        assert [line.type_id for line in status.breakdown][0] == monthly_type.id
        assert [line.paid for line in status.breakdown] == [Decimal("600.00"), Decimal("0.00")]
        assert [line.status for line in status.breakdown] == [
            ContributionStatus.PARTIAL,
            ContributionStatus.PENDING,
        ]
        assert status.total_expected == Decimal("1200.00")
        assert status.total_paid == Decimal("600.00")
        assert status.total_outstanding == Decimal("600.00")
        assert status.is_overdue is False
        assert status.days_remaining == 16

    def test_overdue_after_due_date(self, db_session, chama, member, two_type_cycle):
        """Outstanding money past the due date is overdue."""
        status = ReportingService(db_session).member_status(member.id, as_of=date(2025, 2, 10))

        assert status.is_overdue is True
        assert status.days_remaining == 0

    def test_fully_paid_not_overdue(self, db_session, chama, member, two_type_cycle):
        """Nothing owed means not overdue even after the due date."""
        pay(db_session, chama, member, "1200.00")

        status = ReportingService(db_session).member_status(member.id, as_of=date(2025, 3, 1))

        assert status.total_outstanding == Decimal("0.00")
        assert status.is_overdue is False

    def test_waived_owes_nothing(
        self, db_session, chama, member, two_type_cycle, welfare_type
    ):
        """A waived type has zero remaining."""
        contributions = ContributionService(db_session)
        with transaction_scope(db_session):
            row = contributions.accumulate(
                member.id,
                two_type_cycle.id,
                welfare_type.id,
                Decimal("0.01"),
                expected_amount=Decimal("200.00"),
            )
        contributions.set_status(row.id, ContributionStatus.WAIVED)

        status = ReportingService(db_session).member_status(member.id)

        assert status.breakdown[1].status == ContributionStatus.WAIVED
        assert status.breakdown[1].remaining == Decimal("0.00")
        assert status.total_outstanding == Decimal("1000.00")

    def test_arrears_classification(self, db_session, member, two_type_cycle):
        """A negative balance is reported as arrears."""
        BalanceReconciler(db_session).adjust_balance(member.id, "-250.00", "missed cycle", 1)

        status = ReportingService(db_session).member_status(member.id)

        assert status.classification == "arrears"
        assert status.total_arrears == Decimal("250.00")
        assert status.total_credit == Decimal("0.00")

    def test_without_active_cycle(self, db_session, member):
        """Members of a chama without an active cycle get only balance figures."""
        status = ReportingService(db_session).member_status(member.id)

        assert status.cycle_id is None
        assert status.breakdown == []
        assert status.days_remaining is None
        assert status.compliance_rate == 0.0

    def test_unknown_member(self, db_session):
        """Missing members raise NotFoundError."""
        with pytest.raises(NotFoundError):
            ReportingService(db_session).member_status(999)


class TestOutstandingAndCompliance:
    """Tests for outstanding, overdue and compliance figures."""

    def test_outstanding(self, db_session, chama, member, active_cycle):
        """Outstanding is expected minus paid."""
        pay(db_session, chama, member, "250.00")
        reports = ReportingService(db_session)

        assert reports.outstanding(member.id, active_cycle.id) == Decimal("750.00")
        assert reports.is_overdue(member.id, active_cycle.id, as_of=date(2025, 1, 31)) is False
        assert reports.is_overdue(member.id, active_cycle.id, as_of=date(2025, 2, 1)) is True

    def test_unknown_cycle(self, db_session, member):
        """Missing cycles raise NotFoundError."""
        with pytest.raises(NotFoundError):
            ReportingService(db_session).outstanding(member.id, 404)

    def test_compliance_rate(
        self, db_session, chama, member, active_cycle, make_cycle, monthly_type
    ):
        """One of two closed-or-running cycles fully paid gives 0.5."""
        pay(db_session, chama, member, "1000.00")
        later = make_cycle([(monthly_type.id, "1000.00")], cycle_date=date(2025, 2, 1))
        CycleRegistry(db_session).activate_cycle(chama.id, later.id)

        reports = ReportingService(db_session)

        assert reports.compliance_rate(member.id) == 0.5
        assert reports.member_status(member.id).compliance_rate == 0.5

    def test_upcoming_cycles_ignored(self, db_session, chama, member, active_cycle, make_cycle):
        """Upcoming cycles do not count against compliance."""
        pay(db_session, chama, member, "1000.00")
        make_cycle(cycle_date=date(2025, 2, 1))

        assert ReportingService(db_session).compliance_rate(member.id) == 1.0


class TestChamaReports:
    """Tests for chama and cycle summaries."""

    def test_chama_report(self, db_session, chama, members, active_cycle):
        """Totals split credit from arrears across active members."""
        pay(db_session, chama, members[0], "1300.00")
        pay(db_session, chama, members[1], "400.00")
        BalanceReconciler(db_session).adjust_balance(members[2].id, "-100.00", "penalty", 1)

        report = ReportingService(db_session).chama_report(chama.id)

        assert report.cycle_id == active_cycle.id
        assert [row.member_id for row in report.members] == [m.id for m in members]
        assert report.members_with_credit == 1
        assert report.total_credit == Decimal("300.00")
        assert report.members_in_arrears == 1
        assert report.total_arrears == Decimal("100.00")
        assert report.total_paid == Decimal("1400.00")
        assert report.total_outstanding == Decimal("1600.00")
        assert report.members[2].classification == "arrears"

    def test_unknown_chama(self, db_session):
        """Missing chamas raise NotFoundError."""
        with pytest.raises(NotFoundError):
            ReportingService(db_session).chama_report(77)

    def test_cycle_summary(self, db_session, chama, members, active_cycle):
        """Members fully paid are counted; the collected total is reported."""
        pay(db_session, chama, members[0], "1000.00")
        pay(db_session, chama, members[1], "300.00")

        summary = ReportingService(db_session).cycle_summary(active_cycle.id)

        assert summary.expected_per_member == Decimal("1000.00")
        assert summary.member_count == 3
        assert summary.members_fully_paid == 1
        assert summary.collected_amount == Decimal("1300.00")
        assert [row.outstanding for row in summary.rows] == [
            Decimal("0.00"),
            Decimal("700.00"),
            Decimal("1000.00"),
        ]


class TestMemberStatement:
    """Tests for the member statement."""

    def test_contributions_and_payouts(self, db_session, chama, members, active_cycle):
        """Paid payouts count against contributions; cancelled ones are only listed."""
        pay(db_session, chama, members[0], "1000.00")
        pay(db_session, chama, members[1], "1300.00")
        payouts = PayoutService(db_session)
        cancelled = payouts.create_payout(chama.id, members[1].id, "500.00")
        payouts.update_status(cancelled.id, PayoutStatus.CANCELLED)
        paid = payouts.create_payout(chama.id, members[1].id, "1500.00")
        payouts.update_status(paid.id, PayoutStatus.PAID)

        statement = ReportingService(db_session).member_statement(members[1].id)

        assert statement.member_name == members[1].name
        assert statement.role == MemberRole.MEMBER
        assert statement.balance == Decimal("300.00")
        assert statement.total_contributed == Decimal("1000.00")
        assert statement.total_paid_out == Decimal("1500.00")
        assert statement.pending_payouts == Decimal("0.00")
        assert statement.net_position == Decimal("-500.00")
        assert statement.contribution_percentage == 100.0
        assert sorted(line.kind for line in statement.transactions) == [
            "contribution",
            "payout",
            "payout",
        ]
        contribution = next(line for line in statement.transactions if line.kind == "contribution")
        assert contribution.cycle_number == active_cycle.cycle_number
        assert contribution.type_name == "Monthly"
        assert contribution.status == "paid"

    def test_pending_payout_not_in_net_position(self, db_session, chama, member, active_cycle):
        """A pending payout is reported separately from money paid out."""
        pay(db_session, chama, member, "1000.00")
        PayoutService(db_session).create_payout(chama.id, member.id, "400.00")

        statement = ReportingService(db_session).member_statement(member.id)

        assert statement.pending_payouts == Decimal("400.00")
        assert statement.total_paid_out == Decimal("0.00")
        assert statement.net_position == Decimal("1000.00")

    def test_cancelled_contribution_excluded(self, db_session, chama, member, active_cycle):
        """Cancelled rows are listed with their status but not totalled."""
        pay(db_session, chama, member, "600.00")
        contributions = ContributionService(db_session)
        row = contributions.list_for_member_cycle(member.id, active_cycle.id)[0]
        contributions.set_status(row.id, ContributionStatus.CANCELLED)

        statement = ReportingService(db_session).member_statement(member.id)

        assert statement.total_contributed == Decimal("0.00")
        assert [line.status for line in statement.transactions] == ["cancelled"]

    def test_empty_statement(self, db_session, member):
        """A new member has no transactions and a zero position."""
        statement = ReportingService(db_session).member_statement(member.id)

        assert statement.transactions == []
        assert statement.net_position == Decimal("0.00")
        assert statement.contribution_percentage == 0.0
        assert statement.is_active is True

    def test_unknown_member(self, db_session):
        """Missing members raise NotFoundError."""
        with pytest.raises(NotFoundError):
            ReportingService(db_session).member_statement(999)


class TestFinancialReport:
    """Tests for contributions against payouts across the chama."""

    def test_members_and_cycles(self, db_session, chama, members, active_cycle):
        """Per-member and per-cycle totals agree with the pool."""
        pay(db_session, chama, members[0], "1000.00")
        pay(db_session, chama, members[1], "1300.00")
        pay(db_session, chama, members[2], "400.00")
        payouts = PayoutService(db_session)
        paid = payouts.create_payout(chama.id, members[1].id, "1500.00")
        payouts.update_status(paid.id, PayoutStatus.PAID)
        payouts.create_payout(chama.id, members[0].id, "200.00")

        report = ReportingService(db_session).financial_report(chama.id)

        assert report.chama_name == chama.name
        assert report.total_contributed == Decimal("2400.00")
        assert report.total_paid_out == Decimal("1500.00")
        assert report.pending_payouts == Decimal("200.00")
        assert report.available_funds == Decimal("700.00")
        assert report.available_funds == payouts.available_funds(chama.id)
        assert sum(report.by_payment_method.values(), Decimal("0.00")) == Decimal("2400.00")

        assert [row.member_id for row in report.members] == [
            members[0].id,
            members[2].id,
            members[1].id,
        ]
        assert [row.net_position for row in report.members] == [
            Decimal("1000.00"),
            Decimal("400.00"),
            Decimal("-500.00"),
        ]
        assert report.members[2].payouts_count == 1
        assert report.members[0].payouts_count == 0

        [cycle] = report.cycles
        assert cycle.cycle_id == active_cycle.id
        assert cycle.expected_total == Decimal("3000.00")
        assert cycle.collected_amount == Decimal("2400.00")
        assert cycle.members_contributed == 2
        assert cycle.total_paid_out == Decimal("1500.00")
        assert cycle.members_paid_out == 1

    def test_cycles_newest_first(self, db_session, chama, members, active_cycle, make_cycle):
        """Cycles without activity are listed with zero payouts."""
        upcoming = make_cycle(cycle_date=date(2025, 2, 1))

        report = ReportingService(db_session).financial_report(chama.id)

        assert [row.cycle_id for row in report.cycles] == [upcoming.id, active_cycle.id]
        assert report.cycles[0].expected_total == Decimal("0.00")
        assert report.cycles[0].total_paid_out == Decimal("0.00")

    def test_unknown_chama(self, db_session):
        """Missing chamas raise NotFoundError."""
        with pytest.raises(NotFoundError):
            ReportingService(db_session).financial_report(77)


class TestBalanceHistory:
    """Tests for the running-balance history."""

    def test_running_balance(self, db_session, member):
        """Entries come oldest first with a running balance."""
        reconciler = BalanceReconciler(db_session)
        for amount in ("100.00", "-30.00", "50.00"):
            reconciler.adjust_balance(member.id, amount, "correction", 1)

        history = ReportingService(db_session).balance_history(member.id)

        assert [entry.amount for entry in history] == [
            Decimal("100.00"),
            Decimal("-30.00"),
            Decimal("50.00"),
        ]
        assert [entry.running_balance for entry in history] == [
            Decimal("100.00"),
            Decimal("70.00"),
            Decimal("120.00"),
        ]
        assert all(e.transaction_type == LedgerTransactionType.ADJUSTMENT for e in history)

    def test_limit_keeps_latest(self, db_session, member):
        """A limit returns the most recent entries, still oldest first."""
        reconciler = BalanceReconciler(db_session)
        for amount in ("100.00", "-30.00", "50.00"):
            reconciler.adjust_balance(member.id, amount, "correction", 1)

        history = ReportingService(db_session).balance_history(member.id, limit=2)

        assert [entry.amount for entry in history] == [Decimal("-30.00"), Decimal("50.00")]
        assert history[0].running_balance == Decimal("70.00")

    def test_empty(self, db_session, member):
        """A member without ledger entries has no history."""
        assert ReportingService(db_session).balance_history(member.id) == []
