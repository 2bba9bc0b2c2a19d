"""Prometheus metrics for the memory tiers.

Metrics are module-level collectors registered on the default registry; an
application exposes them with ``prometheus_client.start_http_server`` or its
own scrape endpoint.
"""

from prometheus_client import Counter, Gauge, Histogram


# =============================================================================
# SEMANTIC MEMORY
# =============================================================================

memory_semantic_created_total = Counter(
    "memory_semantic_created_total",
    "Semantic memories inserted",
    labelnames=["category"],
)

memory_semantic_merged_total = Counter(
    "memory_semantic_merged_total",
    "Creates folded into an existing near-duplicate memory",
)

memory_semantic_evicted_total = Counter(
    "memory_semantic_evicted_total",
    "Semantic memories deleted by capacity eviction",
)

memory_semantic_skipped_total = Counter(
    "memory_semantic_skipped_total",
    "Semantic memory creations that produced no record",
    labelnames=["reason"],
)

memory_search_duration_seconds = Histogram(
    "memory_search_duration_seconds",
    "Duration of semantic similarity searches",
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

memory_search_results = Histogram(
    "memory_search_results",
    "Number of results returned by semantic search",
    buckets=(0, 1, 2, 3, 5, 10, 20, 50),
)

# =============================================================================
# CONTEXT ASSEMBLY
# =============================================================================

memory_context_tokens = Histogram(
    "memory_context_tokens",
    "Estimated tokens in assembled contexts",
    buckets=(100, 250, 500, 1000, 2000, 4000, 8000, 16000),
)

memory_context_block_total = Counter(
    "memory_context_block_total",
    "Optional context blocks by outcome",
    labelnames=["tier", "outcome"],  # outcome: included, over_budget, empty, disabled
)

memory_tier_degraded_total = Counter(
    "memory_tier_degraded_total",
    "Tiers skipped because a collaborator failed",
    labelnames=["tier", "operation"],
)

# =============================================================================
# WRITEBACK
# =============================================================================

memory_writeback_queue_depth = Gauge(
    "memory_writeback_queue_depth",
    "Jobs waiting in the writeback queue",
)

memory_writeback_total = Counter(
    "memory_writeback_total",
    "Writeback jobs by outcome",
    labelnames=["outcome"],  # outcome: completed, failed, dropped
)

memory_pruned_total = Counter(
    "memory_pruned_total",
    "Records removed by retention pruning",
    labelnames=["tier"],
)
