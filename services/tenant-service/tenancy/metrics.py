"""Prometheus counters exported on ``/metrics``."""

from __future__ import annotations

from prometheus_client import Counter

PROVISIONING_OUTCOMES = Counter(
    "tenancy_provisioning_total",
    "ensure_tenant calls by outcome",
    ["outcome"],
)

SNAPSHOT_READS = Counter(
    "tenancy_billing_snapshot_reads_total",
    "Billing snapshot reads by source",
    ["source"],
)

GATE_DECISIONS = Counter(
    "tenancy_access_gate_decisions_total",
    "Access gate decisions by resulting state",
    ["state"],
)
