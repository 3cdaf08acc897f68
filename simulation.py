#!/usr/bin/env python3
"""Negotiation Engine — End-to-End Simulation.

Simulates four scenarios between a buyer and a seller:

    Scenario 1: Happy Path
        - Buyer opens a premium negotiation, seller counters, buyer accepts
        - Buyer funds escrow in two deposits
        - Parties exchange two contract revisions and compare them
        - The e-signature provider reports both signatures (buyer's three times)
        - Both parties approve the release -> COMPLETED

    Scenario 2: Cancellation With Refund
        - Seller accepts the opening offer, buyer deposits part of the escrow
        - Buyer cancels -> the deposit is refunded automatically

    Scenario 3: Concurrent Accepts
        - Two sessions accept the same offer at the same time
        - Exactly one wins, the other gets INVALID_TRANSITION

    Scenario 4: Scheduled Metrics Job
        - The premium-conversion-metrics job runs once and reports its health

Usage:
    # Option A: PostgreSQL from DATABASE_URL:
    python simulation.py

    # Option B: SQLite in a temporary file (no Docker needed):
    python simulation.py --sqlite

    # Run a specific scenario:
    python simulation.py --sqlite --scenario 3
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any

from negotiation_engine.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

BUYER = "buyer-ana"
SELLER = "seller-ben"

# Module-level state
_engine = None
_session_factory = None
_tmpdir: tempfile.TemporaryDirectory | None = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _engine, _session_factory, _tmpdir

    from negotiation_engine.infrastructure.database.engine import (
        build_session_factory,
        create_engine_for_url,
        get_engine,
        get_session_factory,
    )
    from negotiation_engine.infrastructure.database.orm_models import Base

    if use_sqlite:
        # A file, not :memory:, so concurrent sessions share one database
        _tmpdir = tempfile.TemporaryDirectory(prefix="negotiation-sim-")
        url = f"sqlite+aiosqlite:///{Path(_tmpdir.name) / 'simulation.db'}"
        _engine = create_engine_for_url(url)
        _session_factory = build_session_factory(_engine)
    else:
        _engine = get_engine()
        _session_factory = get_session_factory()

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.initialized", backend=_engine.url.get_backend_name())


def get_session() -> Any:
    """Get a fresh database session."""
    return _session_factory()


async def shutdown_database() -> None:
    global _engine, _session_factory, _tmpdir
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
    if _tmpdir is not None:
        _tmpdir.cleanup()
        _tmpdir = None


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------
def section(title: str) -> None:
    print(f"\n--- {title} " + "-" * max(0, 64 - len(title)))


def banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


async def print_audit_trail(session: Any, negotiation_id: str) -> None:
    from negotiation_engine.services.negotiation_service import NegotiationService

    events = await NegotiationService(session).list_events(negotiation_id, BUYER)
    section("Audit Trail")
    for evt in events:
        print(f"  {evt.event_type:<36} {str(evt.old_status):<16} -> {evt.new_status:<16} by {evt.actor}")


def webhook(negotiation_id: str, contract_id: str, participant_id: str, role: str, status: str) -> dict:
    return {
        "negotiationId": negotiation_id,
        "contractId": contract_id,
        "participant": {"id": participant_id, "role": role},
        "status": status,
    }


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    from negotiation_engine.domain.enums import PremiumTier, RevisionStatus
    from negotiation_engine.services.contract_revision_service import ContractRevisionService
    from negotiation_engine.services.esign_webhook_service import ESignatureWebhookService
    from negotiation_engine.services.negotiation_service import NegotiationService
    from negotiation_engine.services.premium_metrics_service import PremiumMetricsService

    banner("SCENARIO 1: Happy Path")

    async with get_session() as session:
        svc = NegotiationService(session)

        section("Bargaining")
        negotiation = await svc.open_negotiation(
            listing_id="listing-espresso-machine",
            buyer_id=BUYER,
            seller_id=SELLER,
            price=Decimal("1000.00"),
            quantity=2,
            premium_tier=PremiumTier.PREMIUM,
            message="Two units, delivered by March?",
        )
        nid = negotiation.id
        print(f"  Opened {nid} at 1000.00 x 2")
        await svc.submit_counter_offer(nid, SELLER, price=Decimal("1100.00"))
        print("  Seller countered at 1100.00")
        negotiation = await svc.accept_offer(nid, BUYER, agreed_price=Decimal("1100.00"))
        escrow = negotiation.escrow_account
        print(f"  Buyer accepted -> {negotiation.status}, escrow expects {escrow.expected_amount}")

        section("Escrow")
        await svc.fund_escrow(nid, BUYER, Decimal("1200.00"), reference="psp-001")
        access = await svc.get_negotiation(nid, BUYER)
        print(f"  Deposit 1200.00 -> funded ratio {access.escrow_funded_ratio}")
        negotiation = await svc.fund_escrow(nid, BUYER, Decimal("1000.00"), reference="psp-002")
        print(f"  Deposit 1000.00 -> {negotiation.status}")

        section("Contract Revisions")
        revisions = ContractRevisionService(session)
        v1 = await revisions.create_revision(
            nid,
            SELLER,
            body="1. Delivery within 30 days\n2. Warranty 12 months\n3. Payment via escrow",
            summary="Initial terms",
        )
        v2 = await revisions.create_revision(
            nid,
            BUYER,
            body="1. Delivery within 21 days\n2. Warranty 12 months\n3. Payment via escrow\n4. Free descaling kit",
            summary="Faster delivery, descaling kit",
        )
        comparison = await revisions.compare_revisions(nid, v1.id, v2.id, BUYER)
        print(f"  v{v1.version} -> v{v2.version}: {comparison.summary.to_dict()}")
        await revisions.add_comment(nid, v2.id, SELLER, "21 days works for us.")
        await revisions.update_revision_status(nid, v2.id, SELLER, RevisionStatus.ACCEPTED)
        print(f"  v{v2.version} accepted as the current revision")

        section("E-Signature Webhooks")
        contract_id = negotiation.contract.id
        hooks = ESignatureWebhookService(session)
        for participant, role, status in (
            (BUYER, "buyer", "sent"),
            (BUYER, "buyer", "signed"),
            (BUYER, "buyer", "signed"),
            (BUYER, "buyer", "completed"),
            (SELLER, "seller", "signed"),
        ):
            outcome = await hooks.handle(webhook(nid, contract_id, participant, role, status))
            print(f"  {role:<6} {status:<6} -> duplicate={outcome.duplicate}")

        section("Release and Completion")
        await svc.release_escrow(nid, BUYER, reason="Goods received")
        negotiation = await svc.release_escrow(nid, SELLER)
        print(f"  Both parties approved -> {negotiation.status}")
        for tx in negotiation.escrow_account.transactions:
            print(f"  Ledger: {tx.type:<7} {tx.amount} ref={tx.reference}")
        negotiation = await svc.complete_negotiation(nid, SELLER)
        print(f"  Final status: {negotiation.status}, contract {negotiation.contract.status}")

        await print_audit_trail(session, nid)

        metrics = await PremiumMetricsService(session).get_conversion_metrics()
        print(f"\n  Premium completions in window: {metrics['totals']['PREMIUM_NEGOTIATION_COMPLETED']}")


# ===========================================================================
# Scenario 2: Cancellation With Refund
# ===========================================================================
async def scenario_2_cancellation() -> None:
    from negotiation_engine.services.negotiation_service import NegotiationService

    banner("SCENARIO 2: Cancellation With Refund")

    async with get_session() as session:
        svc = NegotiationService(session)
        negotiation = await svc.open_negotiation(
            listing_id="listing-road-bike",
            buyer_id=BUYER,
            seller_id=SELLER,
            price=Decimal("750.00"),
        )
        nid = negotiation.id
        await svc.accept_offer(nid, SELLER)
        await svc.fund_escrow(nid, BUYER, Decimal("300.00"))
        print("  Seller accepted, buyer deposited 300.00 of 750.00")

        negotiation = await svc.cancel_negotiation(nid, BUYER, reason="Found a closer seller")
        escrow = negotiation.escrow_account
        print(f"  Cancelled -> {negotiation.status}")
        print(f"  Escrow {escrow.status}: refunded {escrow.refunded_amount}")
        for tx in escrow.transactions:
            print(f"  Ledger: {tx.type:<7} {tx.amount} ref={tx.reference}")

        await print_audit_trail(session, nid)


# ===========================================================================
# Scenario 3: Concurrent Accepts
# ===========================================================================
async def scenario_3_concurrent_accepts() -> None:
    from negotiation_engine.domain.exceptions import InvalidStateTransitionError
    from negotiation_engine.services.negotiation_service import NegotiationService

    banner("SCENARIO 3: Concurrent Accepts")

    async with get_session() as session:
        negotiation = await NegotiationService(session).open_negotiation(
            listing_id="listing-drone",
            buyer_id=BUYER,
            seller_id=SELLER,
            price=Decimal("480.00"),
        )
        nid = negotiation.id

    async def accept() -> str:
        async with get_session() as session:
            try:
                await NegotiationService(session).accept_offer(nid, SELLER)
            except InvalidStateTransitionError as exc:
                return f"rejected ({exc.code})"
            return "accepted"

    results = await asyncio.gather(accept(), accept())
    for i, result in enumerate(results, start=1):
        print(f"  Writer {i}: {result}")

    async with get_session() as session:
        access = await NegotiationService(session).get_negotiation(nid, SELLER)
        offers = len(access.negotiation.offers)
        print(f"  Final status: {access.negotiation.status}, offers on record: {offers}")


# ===========================================================================
# Scenario 4: Scheduled Metrics Job
# ===========================================================================
async def scenario_4_scheduler() -> None:
    from negotiation_engine.orchestration.jobs import PREMIUM_METRICS_JOB, register_default_jobs
    from negotiation_engine.orchestration.scheduler import JobScheduler

    banner("SCENARIO 4: Scheduled Metrics Job")

    scheduler = JobScheduler(_session_factory)
    register_default_jobs(scheduler)
    run = await scheduler.trigger(PREMIUM_METRICS_JOB)
    print(f"  {run.job_name}: {run.status.value}")
    print(f"  Summary totals: {run.result['totals']}")

    for job in await scheduler.get_job_health():
        print(
            f"  {job['name']}: next run {job['next_run_at']:%Y-%m-%d %H:%M}, "
            f"backlog {job['backlog']}, recent runs {len(job['recent_runs'])}"
        )


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_cancellation,
    3: scenario_3_concurrent_accepts,
    4: scenario_4_scheduler,
}


async def run(scenarios: list[int], use_sqlite: bool = False) -> None:
    await init_database(use_sqlite=use_sqlite)
    try:
        db_type = "SQLite (temporary file)" if use_sqlite else "configured DATABASE_URL"
        banner(f"NEGOTIATION ENGINE — SIMULATION ({db_type})")
        for num in scenarios:
            await SCENARIOS[num]()
        banner("ALL SCENARIOS COMPLETED")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Negotiation Engine Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        choices=[0, *SCENARIOS],
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in a temporary file instead of PostgreSQL.",
    )
    args = parser.parse_args()

    selected = sorted(SCENARIOS) if args.scenario == 0 else [args.scenario]
    asyncio.run(run(selected, use_sqlite=args.sqlite))
