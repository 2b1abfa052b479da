#!/usr/bin/env python3
"""
Quick start guide for the Shielded Lattice scheduler.

Runs a diamond topology (A->B, A->C, then B->D, C->D) against an in-process
ledger with the simulated prover.
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from zkl.config import Settings
from zkl.core.scheduler import TopologyScheduler
from zkl.core.topology import create_diamond_topology
from zkl.core.wallet import create_test_wallets
from zkl.prover.service import create_service
from zkl.storage.ledger import InMemoryLedger


async def main():
    """Fund a source wallet and drive a diamond topology to completion."""

    print("=" * 70)
    print("SHIELDED LATTICE QUICK START EXAMPLE")
    print("=" * 70)
    print()

    # Step 1: Ledger, prover and queue
    print("Step 1: Initialize ledger and proof service")
    print("-" * 70)
    settings = Settings(poll_interval=0.05, scheduler_max_concurrent=1)
    ledger = InMemoryLedger(tree_height=settings.tree_depth)
    service = create_service(ledger, settings)
    print(f"✓ Prover: {service.queue.backend.name}, queue bound {service.queue.max_concurrent}")
    print()

    # Step 2: Wallets and funding
    print("Step 2: Create wallets and fund A")
    print("-" * 70)
    wallets = create_test_wallets(4, run_id="quick-start")
    source = wallets[0]
    for amount in (150000, 100000):
        note = source.make_note(amount)
        source.add_utxo(note, ledger.deposit(note.commitment))
    for wallet in wallets:
        print(f"  {wallet.wallet_id}: {wallet.address[:20]}... balance={wallet.balance}")
    print()

    # Step 3: Topology
    print("Step 3: Build diamond topology")
    print("-" * 70)
    topology = create_diamond_topology(wallets)
    print(topology)
    print()

    # Step 4: Execute
    print("Step 4: Execute")
    print("-" * 70)
    scheduler = TopologyScheduler(topology, service, ledger, settings)
    report = await scheduler.execute()
    print(f"✓ {len(report.confirmed)} confirmed, {len(report.failed)} failed in {report.duration:.2f}s")
    for edge in report.failed:
        print(f"  ✗ Edge {edge.id}: {edge.error}")
    print()

    # Step 5: Results
    print("Step 5: Final balances")
    print("-" * 70)
    for result in report.balance_verification["final"]["results"]:
        mark = "✓" if result["consistent"] else "✗"
        print(f"  {mark} {result['wallet']}: {result['balance']} ({result['utxo_count']} UTXOs)")
    print(f"  Ledger commitments: {ledger.tree.leaf_count}")
    print(scheduler.get_report())


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except Exception as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(1)
