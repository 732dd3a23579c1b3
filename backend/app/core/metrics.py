############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# metrics.py: Prometheus counters for the gateway pipeline
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Prometheus metrics for cache, ledger and upstream calls."""

from prometheus_client import Counter, Histogram

CACHE_LOOKUPS = Counter(
    "callgate_cache_lookups_total",
    "Cache lookups by result",
    ["result"],  # hit, miss, invalid
)
CALLS_RECORDED = Counter(
    "callgate_calls_recorded_total",
    "Logged calls written to the ledger",
    ["cache_hit", "outcome"],  # outcome: ok, error
)
TAG_WRITE_FAILURES = Counter(
    "callgate_tag_write_failures_total",
    "Tag writes that failed after the call committed",
)
TOKENS_RECORDED = Counter(
    "callgate_tokens_total",
    "Tokens recorded on model responses",
    ["type"],  # input, output
)
UPSTREAM_REQUESTS = Counter(
    "callgate_upstream_requests_total",
    "Upstream completion requests",
    ["provider", "status"],
)
UPSTREAM_LATENCY = Histogram(
    "callgate_upstream_latency_seconds",
    "Upstream completion latency in seconds",
    ["provider"],
)
