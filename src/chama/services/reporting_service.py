"""Reporting aggregator - read-only summaries over one consistent snapshot."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from chama.errors import NotFoundError
from chama.models import (
    Chama,
    Contribution,
    ContributionCycle,
    ContributionStatus,
    CycleStatus,
    LedgerEntry,
    Member,
    Payout,
    PayoutStatus,
)
from chama.money import ZERO
from chama.schemas.reports import (
    BalanceHistoryEntry,
    ChamaReport,
    ChamaReportRow,
    CycleSummary,
    CycleSummaryRow,
    FinancialCycleRow,
    FinancialMemberRow,
    FinancialReport,
    MemberStatement,
    MemberStatus,
    StatementLine,
    TypeBreakdown,
)
from chama.services.cycle_service import CycleRegistry, ExpectedShare
from chama.services.db import consistent_snapshot

logger = logging.getLogger(__name__)

COMPLIANCE_CYCLE_STATUSES = (CycleStatus.ACTIVE, CycleStatus.COMPLETED)


def classify_balance(balance: Decimal) -> str:
    """credit for a non-negative balance, arrears otherwise."""
    return "credit" if balance >= ZERO else "arrears"


class ReportingService:
    """Service for member, chama and cycle reports.

    Each public method reads inside consistent_snapshot() so its figures come
    from a single point in time even while payments are being recorded. The
    session is rolled back afterwards; use a session dedicated to reads.
    """

    def __init__(self, db: Session):
        """Initialize with database session."""
        self.db = db
        self.cycles = CycleRegistry(db)

    def member_status(self, member_id: int, as_of: date | None = None) -> MemberStatus:
        """Balance classification and active-cycle breakdown for one member."""
        today = as_of or date.today()
        with consistent_snapshot(self.db):
            member = self._get_member(member_id)
            balance = member.balance
            status = MemberStatus(
                member_id=member.id,
                member_name=member.name,
                balance=balance,
                classification=classify_balance(balance),
                total_credit=balance if balance > ZERO else ZERO,
                total_arrears=-balance if balance < ZERO else ZERO,
                compliance_rate=self._compliance_rate(member),
            )

            cycle = self._active_cycle_or_none(member.chama_id)
            if cycle is not None:
                breakdown = self._breakdown(member.id, cycle.id)
                status.cycle_id = cycle.id
                status.cycle_name = cycle.name
                status.due_date = cycle.due_date
                status.breakdown = breakdown
                status.total_expected = sum((line.expected for line in breakdown), ZERO)
                status.total_paid = sum((line.paid for line in breakdown), ZERO)
                status.total_outstanding = sum((line.remaining for line in breakdown), ZERO)
                status.is_overdue = cycle.due_date < today and status.total_outstanding > ZERO
                status.days_remaining = max(0, (cycle.due_date - today).days)
        return status

    def outstanding(self, member_id: int, cycle_id: int) -> Decimal:
        """What the member still owes in the cycle (waived types owe nothing)."""
        with consistent_snapshot(self.db):
            self._get_member(member_id)
            self.cycles.get_cycle(cycle_id)
            return self._outstanding(member_id, cycle_id)

    def is_overdue(self, member_id: int, cycle_id: int, as_of: date | None = None) -> bool:
        """True if the cycle's due date has passed with money still owed."""
        today = as_of or date.today()
        with consistent_snapshot(self.db):
            self._get_member(member_id)
            cycle = self.cycles.get_cycle(cycle_id)
            return cycle.due_date < today and self._outstanding(member_id, cycle_id) > ZERO

    def compliance_rate(self, member_id: int) -> float:
        """Share of active and completed cycles with at least one paid contribution."""
        with consistent_snapshot(self.db):
            return self._compliance_rate(self._get_member(member_id))

    def chama_report(self, chama_id: int) -> ChamaReport:
        """Per-member balances and totals for the whole chama."""
        with consistent_snapshot(self.db):
            if self.db.get(Chama, chama_id) is None:
                raise NotFoundError(f"Chama {chama_id} not found")
            cycle = self._active_cycle_or_none(chama_id)
            report = ChamaReport(chama_id=chama_id, cycle_id=cycle.id if cycle else None)

            for member in self._active_members(chama_id):
                row = ChamaReportRow(
                    member_id=member.id,
                    member_name=member.name,
                    balance=member.balance,
                    classification=classify_balance(member.balance),
                )
                if cycle is not None:
                    breakdown = self._breakdown(member.id, cycle.id)
                    row.total_paid = sum((line.paid for line in breakdown), ZERO)
                    row.total_outstanding = sum((line.remaining for line in breakdown), ZERO)
                report.members.append(row)

                if member.balance < ZERO:
                    report.members_in_arrears += 1
                    report.total_arrears += -member.balance
                elif member.balance > ZERO:
                    report.members_with_credit += 1
                    report.total_credit += member.balance
                report.total_paid += row.total_paid
                report.total_outstanding += row.total_outstanding
        return report

    def cycle_summary(self, cycle_id: int) -> CycleSummary:
        """Expected amount per member, who has fully paid, and the collected total."""
        with consistent_snapshot(self.db):
            cycle = self.cycles.get_cycle(cycle_id)
            composition = self.cycles.expected_composition(cycle_id)
            expected_per_member = sum((share.expected_amount for share in composition), ZERO)
            summary = CycleSummary(
                cycle_id=cycle.id,
                cycle_number=cycle.cycle_number,
                name=cycle.name,
                status=cycle.status,
                due_date=cycle.due_date,
                expected_per_member=expected_per_member,
                member_count=0,
                members_fully_paid=0,
                collected_amount=cycle.collected_amount,
            )
            for member in self._active_members(cycle.chama_id):
                breakdown = self._breakdown(member.id, cycle_id, composition)
                outstanding = sum((line.remaining for line in breakdown), ZERO)
                row = CycleSummaryRow(
                    member_id=member.id,
                    member_name=member.name,
                    expected=expected_per_member,
                    paid=sum((line.paid for line in breakdown), ZERO),
                    outstanding=outstanding,
                    fully_paid=outstanding == ZERO,
                )
                summary.rows.append(row)
                summary.member_count += 1
                if row.fully_paid:
                    summary.members_fully_paid += 1
        return summary

    def balance_history(self, member_id: int, limit: int = 50) -> list[BalanceHistoryEntry]:
        """The member's latest ledger entries, oldest first, with running balance."""
        with consistent_snapshot(self.db):
            self._get_member(member_id)
            entries = (
                self.db.query(LedgerEntry)
                .filter(LedgerEntry.member_id == member_id)
                .order_by(LedgerEntry.id.desc())
                .limit(limit)
                .all()
            )
            entries.reverse()
            history = []
            running = entries[0].balance_before if entries else ZERO
            for entry in entries:
                running += entry.amount
                history.append(
                    BalanceHistoryEntry(
                        id=entry.id,
                        created_at=entry.created_at,
                        transaction_type=entry.transaction_type,
                        amount=entry.amount,
                        balance_before=entry.balance_before,
                        balance_after=entry.balance_after,
                        running_balance=running,
                        description=entry.description,
                        cycle_id=entry.cycle_id,
                    )
                )
        return history

    def member_statement(self, member_id: int) -> MemberStatement:
        """Contributions and payouts of one member with net position.

        Removed members keep their statement; cancelled contributions and
        payouts are listed but excluded from the totals.
        """
        with consistent_snapshot(self.db):
            member = self._get_member(member_id)
            statement = MemberStatement(
                member_id=member.id,
                member_name=member.name,
                phone=member.phone,
                role=member.role,
                is_active=member.is_active,
                balance=member.balance,
                classification=classify_balance(member.balance),
                contribution_percentage=round(self._compliance_rate(member) * 100, 2),
            )

            contributions = (
                self.db.query(Contribution, ContributionCycle.cycle_number)
                .join(ContributionCycle, ContributionCycle.id == Contribution.cycle_id)
                .filter(Contribution.member_id == member_id)
                .all()
            )
            for row, cycle_number in contributions:
                if row.status != ContributionStatus.CANCELLED:
                    statement.total_contributed += row.amount
                statement.transactions.append(
                    StatementLine(
                        kind="contribution",
                        id=row.id,
                        cycle_id=row.cycle_id,
                        cycle_number=cycle_number,
                        amount=row.amount,
                        status=row.status.value,
                        recorded_at=row.created_at,
                        type_name=row.contribution_type.name if row.contribution_type else None,
                        payment_method=row.payment_method,
                    )
                )

            payouts = (
                self.db.query(Payout, ContributionCycle.cycle_number)
                .join(ContributionCycle, ContributionCycle.id == Payout.cycle_id)
                .filter(Payout.member_id == member_id)
                .all()
            )
            for payout, cycle_number in payouts:
                if payout.status == PayoutStatus.PAID:
                    statement.total_paid_out += payout.amount
                elif payout.status == PayoutStatus.PENDING:
                    statement.pending_payouts += payout.amount
                statement.transactions.append(
                    StatementLine(
                        kind="payout",
                        id=payout.id,
                        cycle_id=payout.cycle_id,
                        cycle_number=cycle_number,
                        amount=payout.amount,
                        status=payout.status.value,
                        recorded_at=payout.created_at,
                    )
                )

            statement.net_position = statement.total_contributed - statement.total_paid_out
            statement.transactions.sort(
                key=lambda line: (line.recorded_at, line.kind, line.id), reverse=True
            )
        return statement

    def financial_report(self, chama_id: int) -> FinancialReport:
        """Contributions against payouts for the chama, per member and per cycle.

        Member rows cover active members only; chama totals include money
        contributed by members who were later removed.
        """
        with consistent_snapshot(self.db):
            chama = self.db.get(Chama, chama_id)
            if chama is None:
                raise NotFoundError(f"Chama {chama_id} not found")
            report = FinancialReport(chama_id=chama.id, chama_name=chama.name)
            members = self._active_members(chama_id)
            rows = {
                member.id: FinancialMemberRow(member_id=member.id, member_name=member.name)
                for member in members
            }
            cycles = (
                self.db.query(ContributionCycle)
                .filter(ContributionCycle.chama_id == chama_id)
                .order_by(ContributionCycle.cycle_number.desc())
                .all()
            )
            contributors: dict[int, set[int]] = {cycle.id: set() for cycle in cycles}
            payees: dict[int, set[int]] = {cycle.id: set() for cycle in cycles}
            paid_out: dict[int, Decimal] = {cycle.id: ZERO for cycle in cycles}

            contributions = (
                self.db.query(Contribution)
                .join(ContributionCycle, ContributionCycle.id == Contribution.cycle_id)
                .filter(
                    ContributionCycle.chama_id == chama_id,
                    Contribution.status != ContributionStatus.CANCELLED,
                )
                .all()
            )
            for contribution in contributions:
                report.total_contributed += contribution.amount
                method = contribution.payment_method.value
                report.by_payment_method[method] = (
                    report.by_payment_method.get(method, ZERO) + contribution.amount
                )
                if contribution.status == ContributionStatus.PAID:
                    contributors[contribution.cycle_id].add(contribution.member_id)
                row = rows.get(contribution.member_id)
                if row is not None:
                    row.contributions_count += 1
                    row.total_contributed += contribution.amount

            payouts = (
                self.db.query(Payout)
                .filter(Payout.chama_id == chama_id, Payout.status != PayoutStatus.CANCELLED)
                .all()
            )
            for payout in payouts:
                if payout.status == PayoutStatus.PENDING:
                    report.pending_payouts += payout.amount
                    continue
                report.total_paid_out += payout.amount
                paid_out[payout.cycle_id] += payout.amount
                payees[payout.cycle_id].add(payout.member_id)
                row = rows.get(payout.member_id)
                if row is not None:
                    row.payouts_count += 1
                    row.total_paid_out += payout.amount

            report.available_funds = (
                report.total_contributed - report.total_paid_out - report.pending_payouts
            )
            for row in rows.values():
                row.net_position = row.total_contributed - row.total_paid_out
            report.members = sorted(
                rows.values(), key=lambda row: (-row.net_position, row.member_id)
            )

            for cycle in cycles:
                expected_per_member = sum(
                    (share.expected_amount for share in self.cycles.expected_composition(cycle.id)),
                    ZERO,
                )
                report.cycles.append(
                    FinancialCycleRow(
                        cycle_id=cycle.id,
                        cycle_number=cycle.cycle_number,
                        name=cycle.name,
                        status=cycle.status,
                        due_date=cycle.due_date,
                        expected_total=expected_per_member * len(members),
                        collected_amount=cycle.collected_amount,
                        members_contributed=len(contributors[cycle.id]),
                        total_paid_out=paid_out[cycle.id],
                        members_paid_out=len(payees[cycle.id]),
                    )
                )
        return report

    # Snapshot-internal helpers; callers hold the snapshot

    def _get_member(self, member_id: int) -> Member:
        member = self.db.get(Member, member_id, populate_existing=True)
        if member is None:
            raise NotFoundError(f"Member {member_id} not found")
        return member

    def _active_members(self, chama_id: int) -> list[Member]:
        return (
            self.db.query(Member)
            .filter(Member.chama_id == chama_id, Member.is_active.is_(True))
            .order_by(Member.id)
            .all()
        )

    def _active_cycle_or_none(self, chama_id: int) -> ContributionCycle | None:
        return (
            self.db.query(ContributionCycle)
            .filter(
                ContributionCycle.chama_id == chama_id,
                ContributionCycle.status == CycleStatus.ACTIVE,
            )
            .first()
        )

    def _breakdown(
        self,
        member_id: int,
        cycle_id: int,
        composition: list[ExpectedShare] | None = None,
    ) -> list[TypeBreakdown]:
        if composition is None:
            composition = self.cycles.expected_composition(cycle_id)
        rows = {
            row.type_id: row
            for row in self.db.query(Contribution).filter(
                Contribution.member_id == member_id,
                Contribution.cycle_id == cycle_id,
                Contribution.type_id.is_not(None),
            )
        }
        breakdown = []
        for share in composition:
            row = rows.get(share.type_id)
            paid = row.amount if row is not None else ZERO
            status = row.status if row is not None else ContributionStatus.PENDING
            if status == ContributionStatus.WAIVED:
                remaining = ZERO
            else:
                remaining = max(ZERO, share.expected_amount - paid)
            breakdown.append(
                TypeBreakdown(
                    type_id=share.type_id,
                    type_name=share.type_name,
                    expected=share.expected_amount,
                    paid=paid,
                    remaining=remaining,
                    status=status,
                )
            )
        return breakdown

    def _outstanding(self, member_id: int, cycle_id: int) -> Decimal:
        return sum((line.remaining for line in self._breakdown(member_id, cycle_id)), ZERO)

    def _compliance_rate(self, member: Member) -> float:
        cycle_ids = [
            cycle_id
            for (cycle_id,) in self.db.query(ContributionCycle.id).filter(
                ContributionCycle.chama_id == member.chama_id,
                ContributionCycle.status.in_(COMPLIANCE_CYCLE_STATUSES),
            )
        ]
        if not cycle_ids:
            return 0.0
        paid_cycles = (
            self.db.query(Contribution.cycle_id)
            .filter(
                Contribution.member_id == member.id,
                Contribution.cycle_id.in_(cycle_ids),
                Contribution.status == ContributionStatus.PAID,
            )
            .distinct()
            .count()
        )
        return paid_cycles / len(cycle_ids)


__all__ = ["ReportingService", "classify_balance"]
