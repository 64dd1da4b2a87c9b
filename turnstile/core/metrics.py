"""
Prometheus metrics for reservations and ticket issuance
"""

from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labels: list) -> Counter:
    # Re-imports under test would otherwise raise on duplicate registration
    try:
        return Counter(name, documentation, labels)
    except ValueError:
        return REGISTRY._names_to_collectors[name]


RESERVATIONS = _counter(
    "turnstile_reservations_total",
    "Reservation attempts by flow and outcome",
    ["flow", "outcome"],
)
TICKET_ISSUANCE = _counter(
    "turnstile_ticket_issuance_total",
    "Ticket issuance attempts by outcome and failing stage",
    ["outcome", "stage"],
)
TICKET_VERIFICATIONS = _counter(
    "turnstile_ticket_verifications_total",
    "Ticket verifications by outcome",
    ["outcome"],
)


class MetricsCollector:
    """Thin facade so services don't touch label plumbing directly"""

    def record_reservation(self, flow: str, outcome: str) -> None:
        RESERVATIONS.labels(flow=flow, outcome=outcome).inc()

    def record_issuance(self, outcome: str, stage: str = "none") -> None:
        TICKET_ISSUANCE.labels(outcome=outcome, stage=stage).inc()

    def record_verification(self, outcome: str) -> None:
        TICKET_VERIFICATIONS.labels(outcome=outcome).inc()


metrics_collector = MetricsCollector()
