from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict

from educomm.observability.metrics import get_metrics_snapshot


@dataclass(frozen=True)
class OrderFlowSummary:
    checkout_accepted: int = 0
    checkout_rejected: int = 0
    checkout_failed: int = 0
    payments_reconciled: int = 0
    stock_rejections: int = 0
    webhook_outcomes: Dict[str, int] = field(default_factory=dict)

    @property
    def checkout_acceptance_rate(self) -> float:
        attempts = self.checkout_accepted + self.checkout_rejected + self.checkout_failed
        return round(self.checkout_accepted / attempts, 4) if attempts else 0.0

    def to_dict(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["checkout_acceptance_rate"] = self.checkout_acceptance_rate
        return payload


def _sum(series, **match) -> int:
    total = 0.0
    for entry in series:
        labels = entry["labels"]
        if all(labels.get(key) == value for key, value in match.items()):
            total += entry["value"]
    return int(total)


def compute_order_flow_summary() -> OrderFlowSummary:
    """Roll the raw order and payment counters up into one admin-facing view."""
    counters = get_metrics_snapshot()["counters"]
    webhook_outcomes: Dict[str, int] = {}
    for entry in counters.get("payment_webhooks_total", []):
        outcome = entry["labels"].get("outcome", "unknown")
        webhook_outcomes[outcome] = webhook_outcomes.get(outcome, 0) + int(entry["value"])

    return OrderFlowSummary(
        checkout_accepted=_sum(counters.get("orders_accepted_total", []), source="checkout"),
        checkout_rejected=_sum(counters.get("orders_rejected_total", [])),
        checkout_failed=_sum(counters.get("orders_failed_total", []), source="checkout"),
        payments_reconciled=_sum(counters.get("orders_accepted_total", []), source="payment"),
        stock_rejections=_sum(counters.get("stock_reservations_rejected_total", [])),
        webhook_outcomes=webhook_outcomes,
    )
