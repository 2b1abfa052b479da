"""Transfer topologies: directed graphs of edges between wallets.

Supported shapes:
    chain      A->B->C->D, each transfer after the previous one
    fan-out    A->B, A->C, A->D in parallel
    fan-in     B->A, C->A, D->A in parallel
    diamond    A->B, A->C, then B->D, C->D
    mesh       every wallet to every other wallet
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from zkl.core.wallet import Wallet
from zkl.exceptions import InvalidTransitionError, ValidationError


class EdgeStatus(str, Enum):
    """Edge lifecycle state."""
    READY = "ready"
    PROVING = "proving"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({EdgeStatus.CONFIRMED, EdgeStatus.FAILED})

_ALLOWED_TRANSITIONS = {
    EdgeStatus.READY: {EdgeStatus.PROVING, EdgeStatus.FAILED},
    EdgeStatus.PROVING: {EdgeStatus.SUBMITTED, EdgeStatus.FAILED},
    EdgeStatus.SUBMITTED: {EdgeStatus.CONFIRMED, EdgeStatus.FAILED},
    EdgeStatus.CONFIRMED: set(),
    EdgeStatus.FAILED: set(),
}


@dataclass
class Edge:
    """One transfer and its execution record."""

    id: int
    from_wallet: str
    to_wallet: str
    amount: int
    depends_on: List[int] = field(default_factory=list)
    status: EdgeStatus = EdgeStatus.READY

    # Filled during execution
    job_id: Optional[str] = None
    queue_position: Optional[int] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    history: List[EdgeStatus] = field(default_factory=list)

    start_time: Optional[float] = None
    proof_complete_time: Optional[float] = None
    end_time: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, new_status: EdgeStatus, error: Optional[str] = None, now: Optional[float] = None) -> None:
        """
        Move to `new_status`.

        Raises:
            InvalidTransitionError: If the move would revisit or skip a state
        """
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Edge {self.id} cannot move from {self.status.value} to {new_status.value}",
                edge=self.id,
            )
        self.history.append(self.status)
        self.status = new_status

        now = time.time() if now is None else now
        if new_status == EdgeStatus.PROVING:
            self.start_time = now
        elif new_status == EdgeStatus.SUBMITTED:
            self.proof_complete_time = now
        elif new_status in TERMINAL_STATUSES:
            self.end_time = now
        if error is not None:
            self.error = error

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from": self.from_wallet,
            "to": self.to_wallet,
            "amount": self.amount,
            "depends_on": list(self.depends_on),
            "status": self.status.value,
            "job_id": self.job_id,
            "queue_position": self.queue_position,
            "tx_hash": self.tx_hash,
            "error": self.error,
            "start_time": self.start_time,
            "proof_complete_time": self.proof_complete_time,
            "end_time": self.end_time,
        }


def _timing_stats(values: List[float]) -> dict:
    if not values:
        return {"count": 0, "avg": 0.0, "min": 0.0, "max": 0.0}
    return {
        "count": len(values),
        "avg": sum(values) / len(values),
        "min": min(values),
        "max": max(values),
    }


class Topology:
    """Directed graph of transfer edges over a set of wallets."""

    def __init__(self, wallets: Sequence[Wallet]):
        self.wallets = list(wallets)
        self.wallet_map: Dict[str, Wallet] = {w.wallet_id: w for w in self.wallets}
        self.edges: List[Edge] = []

    def add_edge(self, from_id: str, to_id: str, amount: int, depends_on: Optional[List[int]] = None) -> int:
        """
        Add a transfer between two known wallets.

        Args:
            depends_on: Ids of edges that must be CONFIRMED first

        Returns:
            int: Edge id

        Raises:
            ValidationError: Unknown wallet, non-positive amount or unknown dependency
        """
        for wallet_id in (from_id, to_id):
            if wallet_id not in self.wallet_map:
                raise ValidationError(f"Unknown wallet {wallet_id}")
        if amount <= 0:
            raise ValidationError("Edge amount must be positive", amount=amount)

        depends_on = list(depends_on or [])
        for dep in depends_on:
            # Dependencies must already exist, which also rules out cycles
            if dep < 0 or dep >= len(self.edges):
                raise ValidationError(f"Unknown dependency edge {dep}")

        edge = Edge(id=len(self.edges), from_wallet=from_id, to_wallet=to_id, amount=amount, depends_on=depends_on)
        self.edges.append(edge)
        return edge.id

    def get_wallet(self, wallet_id: str) -> Wallet:
        return self.wallet_map[wallet_id]

    def ready_edges(self) -> List[Edge]:
        """Edges not yet started whose dependencies are all CONFIRMED."""
        confirmed = {e.id for e in self.edges if e.status == EdgeStatus.CONFIRMED}
        return [
            e for e in self.edges
            if e.status == EdgeStatus.READY and all(dep in confirmed for dep in e.depends_on)
        ]

    def blocked_edges(self) -> List[Edge]:
        """Edges not yet started with at least one FAILED dependency."""
        failed = {e.id for e in self.edges if e.status == EdgeStatus.FAILED}
        return [
            e for e in self.edges
            if e.status == EdgeStatus.READY and any(dep in failed for dep in e.depends_on)
        ]

    def in_progress_edges(self) -> List[Edge]:
        return [e for e in self.edges if e.status in (EdgeStatus.PROVING, EdgeStatus.SUBMITTED)]

    def is_complete(self) -> bool:
        return all(e.is_terminal for e in self.edges)

    def get_summary(self) -> dict:
        by_status: Dict[str, int] = {}
        for edge in self.edges:
            by_status[edge.status.value] = by_status.get(edge.status.value, 0) + 1

        proof_times = [
            e.proof_complete_time - e.start_time
            for e in self.edges
            if e.proof_complete_time is not None and e.start_time is not None
        ]
        total_times = [
            e.end_time - e.start_time
            for e in self.edges
            if e.end_time is not None and e.start_time is not None
        ]
        return {
            "total_edges": len(self.edges),
            "by_status": by_status,
            "proof_times": _timing_stats(proof_times),
            "total_times": _timing_stats(total_times),
        }

    def __str__(self) -> str:
        lines = ["Topology:"]
        for edge in self.edges:
            deps = f" (after {','.join(str(d) for d in edge.depends_on)})" if edge.depends_on else ""
            lines.append(
                f"  {edge.id}: {edge.from_wallet} -> {edge.to_wallet} ({edge.amount}){deps} [{edge.status.value}]"
            )
        return "\n".join(lines)


def create_chain_topology(wallets: Sequence[Wallet], amount_per_tx: int) -> Topology:
    """A->B->C->..., each edge depending on the previous one."""
    topology = Topology(wallets)
    previous = None
    for sender, recipient in zip(wallets, wallets[1:]):
        previous = topology.add_edge(
            sender.wallet_id,
            recipient.wallet_id,
            amount_per_tx,
            [previous] if previous is not None else [],
        )
    return topology


def create_fan_out_topology(source: Wallet, destinations: Sequence[Wallet], amount_per_tx: int) -> Topology:
    topology = Topology([source, *destinations])
    for dest in destinations:
        topology.add_edge(source.wallet_id, dest.wallet_id, amount_per_tx)
    return topology


def create_fan_in_topology(sources: Sequence[Wallet], destination: Wallet, amount_per_tx: int) -> Topology:
    topology = Topology([*sources, destination])
    for source in sources:
        topology.add_edge(source.wallet_id, destination.wallet_id, amount_per_tx)
    return topology


def create_diamond_topology(wallets: Sequence[Wallet], amounts: Optional[Dict[str, int]] = None) -> Topology:
    """
    A->B and A->C in parallel, then B->D after A->B and C->D after A->C.

    Args:
        wallets: At least four wallets [A, B, C, D]
        amounts: Optional per-edge amounts keyed "ab", "ac", "bd", "cd"
    """
    if len(wallets) < 4:
        raise ValidationError("Diamond topology requires at least 4 wallets")
    amounts = amounts or {}

    a, b, c, d = wallets[:4]
    topology = Topology(wallets[:4])
    ab = topology.add_edge(a.wallet_id, b.wallet_id, amounts.get("ab", 100000))
    ac = topology.add_edge(a.wallet_id, c.wallet_id, amounts.get("ac", 100000))
    topology.add_edge(b.wallet_id, d.wallet_id, amounts.get("bd", 50000), [ab])
    topology.add_edge(c.wallet_id, d.wallet_id, amounts.get("cd", 50000), [ac])
    return topology


def create_mesh_topology(wallets: Sequence[Wallet], amount_per_tx: int) -> Topology:
    """Every wallet pays every other wallet; n*(n-1) independent edges."""
    topology = Topology(wallets)
    for sender in wallets:
        for recipient in wallets:
            if sender.wallet_id != recipient.wallet_id:
                topology.add_edge(sender.wallet_id, recipient.wallet_id, amount_per_tx)
    return topology


def create_custom_topology(wallets: Sequence[Wallet], edge_specs: Sequence[dict]) -> Topology:
    """
    Build a topology from specs {"from", "to", "amount", "name"?, "depends_on"?}.

    `depends_on` lists names of earlier specs.
    """
    topology = Topology(wallets)
    names: Dict[str, int] = {}
    for entry in edge_specs:
        depends_on = []
        for name in entry.get("depends_on", []):
            if name not in names:
                raise ValidationError(f'Dependency "{name}" not found')
            depends_on.append(names[name])

        edge_id = topology.add_edge(entry["from"], entry["to"], entry["amount"], depends_on)
        if entry.get("name"):
            names[entry["name"]] = edge_id
    return topology
