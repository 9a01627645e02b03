"""Integration tests for settlement commit, retry and reversal."""

from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_engine.calculators.types import (
    CostRecord,
    DeductionCategory,
    ErrorCode,
    ObligationStatus,
    OtherEarning,
    PaidBy,
    PayeeClassification,
    PayType,
)
from settlement_engine.services import (
    ConcurrentModificationError,
    InvalidTransitionError,
    JobNotFoundError,
    OrderingViolationError,
    PayeeNotFoundError,
    SettlementNotFoundError,
    SettlementService,
)

from ..factories import BASE_TIME


class TestCommit:
    async def test_commit_persists_settlement_and_ledger(self, service, ledger, seed):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("1000.00"))
        job = await seed.job(payee, distance=Decimal("300"), detention=Decimal("50.00"))

        result = await service.create_settlement(payee, [job])

        assert result.success
        assert result.is_new
        assert result.attempts == 1
        settlement = result.settlement
        assert settlement.status == "finalized"
        assert settlement.settlement_number.startswith("ST-")
        assert settlement.settlement_number.endswith("-0001")
        assert settlement.gross_pay == Decimal("650.00")
        assert settlement.total_recoveries == Decimal("650.00")
        assert settlement.net_payable == Decimal("0.00")
        assert settlement.recoveries_json == {"fuel": "650.00"}
        assert [line.line_type for line in settlement.lines] == [
            "EARNING",
            "ACCESSORIAL",
            "RECOVERY",
        ]
        assert sum(line.amount for line in settlement.lines) == Decimal("0.00")
        [allocation] = settlement.allocations
        assert allocation.obligation_id == fuel
        assert allocation.version_before == 1
        assert allocation.version_after == 2

        obligation = await ledger.repository.get(fuel)
        assert obligation.amount_recovered == Decimal("650.00")
        assert obligation.remaining_balance == Decimal("350.00")
        assert obligation.status == ObligationStatus.ACTIVE.value
        assert obligation.settlement_id is None
        assert obligation.version == 2

        locked = await service.locking_service.get_locked_jobs(settlement.settlement_id)
        assert [j.job_id for j in locked] == [job]

    async def test_obligation_spills_across_settlements(self, service, ledger, seed):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("1000.00"))
        first_job = await seed.job(payee, distance=Decimal("300"))
        second_job = await seed.job(payee, distance=Decimal("1000"), days=7)

        first = (await service.create_settlement(payee, [first_job])).settlement
        second = (await service.create_settlement(payee, [second_job])).settlement

        assert first.net_payable == Decimal("0.00")
        assert second.gross_pay == Decimal("2000.00")
        assert second.total_recoveries == Decimal("400.00")
        assert second.net_payable == Decimal("1600.00")
        assert second.settlement_number.endswith("-0002")

        obligation = await ledger.repository.get(fuel)
        assert obligation.status == ObligationStatus.PAID.value
        assert obligation.remaining_balance == Decimal("0.00")
        assert obligation.settlement_id == second.settlement_id
        assert obligation.version == 3

    async def test_rejected_batch_persists_nothing(self, service, seed):
        payee = await seed.payee()
        other = await seed.payee()
        own_job = await seed.job(payee, distance=Decimal("100"))
        foreign_job = await seed.job(other, distance=Decimal("100"))

        result = await service.create_settlement(payee, [own_job, foreign_job])

        assert not result.success
        assert result.error.code == ErrorCode.PAYEE_MISMATCH
        assert result.error.job_ids == (foreign_job,)
        assert await service.list_settlements(payee) == []

    async def test_already_settled_job_rejected(self, service, seed):
        payee = await seed.payee()
        job = await seed.job(payee, distance=Decimal("100"))
        await service.create_settlement(payee, [job])

        result = await service.create_settlement(payee, [job])

        assert result.error.code == ErrorCode.JOB_ALREADY_SETTLED

    async def test_statutory_withholding_persisted(self, service, seed):
        payee = await seed.payee(
            pay_type=PayType.PERCENTAGE,
            rate=Decimal("70"),
            classification=PayeeClassification.STATUTORY_EMPLOYEE,
        )
        await seed.obligation(payee, Decimal("500.00"))
        job = await seed.job(payee, linehaul_rate=Decimal("3000.00"))

        settlement = (await service.create_settlement(payee, [job])).settlement

        assert settlement.gross_pay == Decimal("2100.00")
        assert settlement.withholding_json == {"social_security": "130.20", "medicare": "30.45"}
        assert settlement.total_recoveries == Decimal("0.00")
        assert settlement.allocations == []
        assert settlement.net_payable == Decimal("1939.35")

    async def test_missing_rate_commits_with_warning(self, service, seed):
        payee = await seed.payee(pay_type=PayType.PER_DISTANCE, rate=None)
        job = await seed.job(payee, distance=Decimal("400"), detention=Decimal("80.00"))

        settlement = (await service.create_settlement(payee, [job])).settlement

        assert settlement.gross_pay == Decimal("80.00")
        assert [w["code"] for w in settlement.warnings_json] == ["CONFIGURATION_MISSING"]
        assert settlement.warnings_json[0]["job_id"] == str(job)

    async def test_unknown_payee_and_job(self, service, seed):
        with pytest.raises(PayeeNotFoundError):
            await service.preview(uuid4(), [])

        payee = await seed.payee()
        missing = uuid4()
        with pytest.raises(JobNotFoundError) as exc_info:
            await service.preview(payee, [missing])
        assert exc_info.value.job_ids == (missing,)


class TestIdempotency:
    async def test_recommitting_a_draft_returns_existing(self, service, session, seed):
        payee = await seed.payee()
        await seed.obligation(payee, Decimal("100.00"))
        job = await seed.job(payee, distance=Decimal("300"))
        draft = (await service.preview(payee, [job])).draft
        await session.rollback()

        settlement, created = await service.commit(draft)
        again, created_again = await service.commit(draft)

        assert created is True
        assert created_again is False
        assert again.settlement_id == settlement.settlement_id
        assert len(await service.list_settlements(payee)) == 1

    async def test_identical_request_returns_existing(self, service, seed):
        payee = await seed.payee()

        bonus = [OtherEarning("Safety bonus", Decimal("150.00"))]
        first = await service.create_settlement(payee, [], other_earnings=bonus)
        second = await service.create_settlement(payee, [], other_earnings=bonus)

        assert first.is_new is True
        assert second.is_new is False
        assert second.settlement.settlement_id == first.settlement.settlement_id


class TestConcurrency:
    async def test_stale_draft_rejected(self, service, session, seed):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("1000.00"))
        stale_job = await seed.job(payee, distance=Decimal("300"))
        other_job = await seed.job(payee, distance=Decimal("100"), days=1)
        stale = (await service.preview(payee, [stale_job])).draft
        await session.rollback()

        await service.create_settlement(payee, [other_job])

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await service.commit(stale)

        assert exc_info.value.entity == "obligation"
        assert exc_info.value.entity_id == fuel
        assert await service.get_by_calculation_id(stale.calculation_id) is None
        [job] = await service.loader.load_jobs([stale_job])
        assert job.settlement_id is None

    async def test_create_retries_after_conflict(self, service, seed, monkeypatch):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("100.00"))
        job = await seed.job(payee, distance=Decimal("300"))
        real_commit = service.commit
        calls = []

        async def flaky_commit(draft):
            calls.append(draft.calculation_id)
            if len(calls) == 1:
                raise ConcurrentModificationError("obligation", fuel, 1)
            return await real_commit(draft)

        monkeypatch.setattr(service, "commit", flaky_commit)

        result = await service.create_settlement(payee, [job])

        assert result.success
        assert result.attempts == 2
        assert len(calls) == 2
        assert result.settlement.total_recoveries == Decimal("100.00")

    async def test_retries_exhausted(self, service, seed, settings, monkeypatch):
        payee = await seed.payee()
        job = await seed.job(payee, distance=Decimal("10"))
        calls = []

        async def always_conflicts(draft):
            calls.append(draft)
            raise ConcurrentModificationError("job", job)

        monkeypatch.setattr(service, "commit", always_conflicts)

        with pytest.raises(ConcurrentModificationError):
            await service.create_settlement(payee, [job])
        assert len(calls) == settings.commit_max_retries

    async def test_settlement_number_collision_retried(self, service, seed, monkeypatch):
        payee = await seed.payee()
        first_job = await seed.job(payee, distance=Decimal("100"))
        second_job = await seed.job(payee, distance=Decimal("200"), days=1)
        first = (await service.create_settlement(payee, [first_job])).settlement
        taken = first.settlement_number
        next_number = service._next_settlement_number
        years = []

        async def number_taken_once(year):
            years.append(year)
            if len(years) == 1:
                return taken
            return await next_number(year)

        monkeypatch.setattr(service, "_next_settlement_number", number_taken_once)

        result = await service.create_settlement(payee, [second_job])

        assert result.success
        assert result.attempts == 2
        assert result.settlement.settlement_number != taken
        [job] = await service.loader.load_jobs([second_job])
        assert job.settlement_id == result.settlement.settlement_id


class TestReversal:
    async def test_reversal_restores_ledger_and_jobs(self, service, ledger, seed):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("1000.00"))
        first_job = await seed.job(payee, distance=Decimal("300"))
        second_job = await seed.job(payee, distance=Decimal("1000"), days=7)
        first = (await service.create_settlement(payee, [first_job])).settlement
        second = (await service.create_settlement(payee, [second_job])).settlement

        voided = await service.reverse_settlement(second.settlement_id, reason="Wrong rate")

        assert voided.status == "void"
        assert voided.void_reason == "Wrong rate"
        assert voided.voided_at is not None
        assert all(a.reversed_at is not None for a in voided.allocations)
        obligation = await ledger.repository.get(fuel)
        assert obligation.status == ObligationStatus.ACTIVE.value
        assert obligation.amount_recovered == Decimal("600.00")
        assert obligation.settlement_id is None
        assert obligation.version == 4
        assert await service.locking_service.get_locked_jobs(second.settlement_id) == []

        await service.reverse_settlement(first.settlement_id)

        obligation = await ledger.repository.get(fuel)
        assert obligation.amount_recovered == Decimal("0.00")
        assert obligation.version == 5

    async def test_reversal_out_of_order_rejected(self, service, ledger, seed):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("1000.00"))
        first_job = await seed.job(payee, distance=Decimal("300"))
        second_job = await seed.job(payee, distance=Decimal("100"), days=7)
        first = (await service.create_settlement(payee, [first_job])).settlement
        second = (await service.create_settlement(payee, [second_job])).settlement

        with pytest.raises(OrderingViolationError) as exc_info:
            await service.reverse_settlement(first.settlement_id)

        assert exc_info.value.conflicting_settlement_id == second.settlement_id
        assert exc_info.value.obligation_id == fuel
        unchanged = await service.get_settlement(first.settlement_id)
        assert unchanged.status == "finalized"
        obligation = await ledger.repository.get(fuel)
        assert obligation.amount_recovered == Decimal("800.00")

    async def test_settlement_committed_mid_reversal_blocks_it(
        self, service, ledger, seed, session_factory, settings, monkeypatch
    ):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("1000.00"))
        first_job = await seed.job(payee, distance=Decimal("300"))
        late_job = await seed.job(payee, distance=Decimal("100"), days=7)
        first_id = (await service.create_settlement(payee, [first_job])).settlement.settlement_id
        check_ordering = service._later_allocation
        late_ids = []

        async def commit_late_settlement_after_check(*args):
            conflicting = await check_ordering(*args)
            if not late_ids:
                async with session_factory() as other_session:
                    other = SettlementService(other_session, settings)
                    late = await other.create_settlement(payee, [late_job])
                    late_ids.append(late.settlement.settlement_id)
            return conflicting

        monkeypatch.setattr(service, "_later_allocation", commit_late_settlement_after_check)

        with pytest.raises(OrderingViolationError) as exc_info:
            await service.reverse_settlement(first_id)

        assert exc_info.value.conflicting_settlement_id == late_ids[0]
        assert exc_info.value.obligation_id == fuel
        unchanged = await service.get_settlement(first_id)
        assert unchanged.status == "finalized"
        assert all(a.reversed_at is None for a in unchanged.allocations)
        obligation = await ledger.repository.get(fuel)
        assert obligation.amount_recovered == Decimal("800.00")
        assert obligation.status == ObligationStatus.ACTIVE.value
        assert obligation.settlement_id is None
        _, outstanding = await ledger.outstanding(payee)
        assert outstanding == Decimal("200.00")

    async def test_reverse_twice_rejected(self, service, seed):
        payee = await seed.payee()
        job = await seed.job(payee, distance=Decimal("100"))
        settlement = (await service.create_settlement(payee, [job])).settlement
        await service.reverse_settlement(settlement.settlement_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await service.reverse_settlement(settlement.settlement_id)

        assert exc_info.value.from_status == "void"

    async def test_reversed_jobs_can_be_settled_again(self, service, seed):
        payee = await seed.payee()
        await seed.obligation(payee, Decimal("100.00"))
        job = await seed.job(payee, distance=Decimal("300"))
        original = (await service.create_settlement(payee, [job])).settlement
        await service.reverse_settlement(original.settlement_id)

        redo = await service.create_settlement(payee, [job])

        assert redo.is_new
        assert redo.settlement.settlement_id != original.settlement_id
        assert redo.settlement.total_recoveries == Decimal("100.00")
        summaries = await service.list_settlements(payee)
        assert [s.status for s in summaries] == ["void", "finalized"]

    async def test_unknown_settlement(self, service):
        with pytest.raises(SettlementNotFoundError):
            await service.reverse_settlement(uuid4())


class TestLedgerService:
    async def test_open_obligation_from_cost_record(self, ledger, session, seed):
        payee = await seed.payee()
        record = CostRecord(
            record_id=uuid4(),
            cost_type="Fuel card - Pilot #412",
            amount=Decimal("312.40"),
            paid_by=PaidBy.EMPLOYER,
            incurred_at=BASE_TIME,
            payee_id=payee,
        )

        obligation = await ledger.open_obligation(record)
        await session.commit()

        assert obligation.obligation_id == record.record_id
        assert obligation.category == DeductionCategory.FUEL.value
        snapshot, outstanding = await ledger.outstanding(payee)
        assert outstanding == Decimal("312.40")
        assert [o.obligation_id for o in snapshot.obligations] == [record.record_id]

    async def test_payee_paid_record_opens_nothing(self, ledger, seed):
        payee = await seed.payee()
        record = CostRecord(
            record_id=uuid4(),
            cost_type="fuel",
            amount=Decimal("80.00"),
            paid_by=PaidBy.PAYEE,
            incurred_at=BASE_TIME,
            payee_id=payee,
        )

        assert await ledger.open_obligation(record) is None

    async def test_cancel_untouched_obligation(self, ledger, seed):
        payee = await seed.payee()
        insurance = await seed.obligation(
            payee, Decimal("200.00"), category=DeductionCategory.INSURANCE
        )

        cancelled = await ledger.cancel_obligation(insurance)

        assert cancelled.status == ObligationStatus.CANCELLED.value
        assert cancelled.version == 2
        _, outstanding = await ledger.outstanding(payee)
        assert outstanding == Decimal("0.00")

    async def test_snapshot_holds_only_recoverable_obligations(self, service, ledger, seed):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("100.00"))
        insurance = await seed.obligation(
            payee, Decimal("200.00"), days=1, category=DeductionCategory.INSURANCE
        )
        repair = await seed.obligation(
            payee, Decimal("900.00"), days=2, category=DeductionCategory.MAINTENANCE
        )
        await ledger.cancel_obligation(insurance)
        job = await seed.job(payee, distance=Decimal("100"))
        await service.create_settlement(payee, [job])

        snapshot = await ledger.repository.load_snapshot(payee)

        assert [o.obligation_id for o in snapshot.obligations] == [repair]
        assert snapshot.obligations[0].remaining_balance == Decimal("800.00")
        rows = await ledger.repository.list_for_payee(payee, include_closed=True)
        assert [(r.obligation_id, r.status) for r in rows] == [
            (fuel, ObligationStatus.PAID.value),
            (insurance, ObligationStatus.CANCELLED.value),
            (repair, ObligationStatus.ACTIVE.value),
        ]

    async def test_cancel_partly_recovered_rejected(self, service, ledger, seed):
        payee = await seed.payee()
        fuel = await seed.obligation(payee, Decimal("1000.00"))
        job = await seed.job(payee, distance=Decimal("100"))
        await service.create_settlement(payee, [job])

        with pytest.raises(InvalidTransitionError):
            await ledger.cancel_obligation(fuel)

    async def test_oldest_obligation_recovered_first(self, service, seed):
        payee = await seed.payee()
        newer = await seed.obligation(payee, Decimal("300.00"), days=10)
        older = await seed.obligation(payee, Decimal("300.00"), days=1)
        job = await seed.job(payee, distance=Decimal("200"), days=1)

        settlement = (await service.create_settlement(payee, [job])).settlement

        by_obligation = {a.obligation_id: a for a in settlement.allocations}
        assert by_obligation[older].amount == Decimal("300.00")
        assert by_obligation[older].status_after == ObligationStatus.PAID.value
        assert by_obligation[newer].amount == Decimal("100.00")
        assert by_obligation[newer].status_after == ObligationStatus.ACTIVE.value
