"""Post-hoc balance diagnostics. Violations are recorded, never raised."""

import logging
import time
from typing import List, Optional, Sequence

from zkl.core.metrics import MetricsCollector
from zkl.core.topology import Edge
from zkl.core.wallet import Wallet
from zkl.exceptions import BalanceInconsistency, WrongAmountReceived

logger = logging.getLogger(__name__)


def _wallet_check(wallet: Wallet) -> dict:
    utxo_sum = wallet.utxo_sum()
    return {
        "wallet": wallet.wallet_id,
        "balance": wallet.balance,
        "utxo_sum": utxo_sum,
        "utxo_count": len(wallet.utxos),
        "consistent": wallet.balance == utxo_sum,
    }


class BalanceVerifier:
    """Cross-checks wallet balances against the UTXOs they track."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.metrics = metrics
        self.verifications: List[dict] = []
        self.violations: List[Exception] = []

    def _record(self, violation: Exception, edge_id: Optional[int]) -> None:
        self.violations.append(violation)
        logger.warning(f"[Balance] {violation.message}")
        if self.metrics is not None:
            self.metrics.record_error(violation.code, violation.message, edge_id)

    def verify_edge(self, edge: Edge, sender: Wallet, recipient: Wallet) -> dict:
        """
        Check both parties of a confirmed edge.

        The receiver's newest UTXO must carry exactly the transferred amount.
        """
        sender_check = _wallet_check(sender)
        recipient_check = _wallet_check(recipient)

        last = recipient.utxos[-1] if recipient.utxos else None
        received = last.amount if last is not None else 0
        recipient_check["received_amount"] = received
        recipient_check["expected_amount"] = edge.amount
        recipient_check["received_correct_amount"] = received == edge.amount

        for check in (sender_check, recipient_check):
            if not check["consistent"]:
                self._record(
                    BalanceInconsistency(
                        f"{check['wallet']} balance inconsistent: "
                        f"balance={check['balance']}, utxo_sum={check['utxo_sum']}",
                        wallet=check["wallet"],
                    ),
                    edge.id,
                )
        if not recipient_check["received_correct_amount"]:
            self._record(
                WrongAmountReceived(
                    f"{recipient.wallet_id} received wrong amount: expected={edge.amount}, got={received}",
                    wallet=recipient.wallet_id,
                ),
                edge.id,
            )

        verification = {
            "edge_id": edge.id,
            "timestamp": time.time(),
            "checks": [sender_check, recipient_check],
        }
        self.verifications.append(verification)
        logger.info(
            f"[Balance] {sender.wallet_id}={sender.balance} ({len(sender.utxos)} UTXOs), "
            f"{recipient.wallet_id}={recipient.balance} ({len(recipient.utxos)} UTXOs)"
        )
        return verification

    def verify_final(self, wallets: Sequence[Wallet]) -> dict:
        """Same predicate over every wallet at the end of a run."""
        results = [_wallet_check(w) for w in wallets]
        all_match = all(r["consistent"] for r in results)
        for result in results:
            if not result["consistent"]:
                logger.warning(
                    f"[Balance] {result['wallet']}: balance={result['balance']}, "
                    f"utxo_sum={result['utxo_sum']} - MISMATCH"
                )
        logger.info(f"[Balance] Final: {'all balances consistent' if all_match else 'some balances inconsistent'}")
        return {"all_match": all_match, "results": results}

    def summary(self) -> dict:
        checks = [c for v in self.verifications for c in v["checks"]]
        inconsistent = sum(1 for c in checks if not c["consistent"])
        wrong_amounts = sum(1 for c in checks if c.get("received_correct_amount") is False)
        return {
            "total_verifications": len(self.verifications),
            "total_wallet_checks": len(checks),
            "inconsistent": inconsistent,
            "wrong_amounts": wrong_amounts,
            "all_valid": inconsistent == 0 and wrong_amounts == 0,
        }
