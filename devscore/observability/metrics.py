"""
Prometheus metrics for the evaluation pipeline.

Tracks evaluation outcomes, AI fallbacks, usage-policy decisions,
end-to-end latency and AI token consumption. Collectors register on the
default prometheus_client registry.
"""

from prometheus_client import Counter, Histogram

# AI calls dominate evaluation latency; the evaluator times out at 30s
EVALUATION_LATENCY_BUCKETS = (0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0)


class MetricsCollector:
    """
    Prometheus metrics collector for devscore.

    Usage:
        metrics = get_metrics()
        metrics.record_evaluation("evaluated", latency=4.2)
        metrics.record_usage_decision("quota_exhausted")
    """

    def __init__(self):
        self.evaluations = Counter(
            "devscore_evaluations_total",
            "Completed evaluation runs",
            ["status"],  # evaluated, failed
        )

        self.evaluation_fallbacks = Counter(
            "devscore_evaluation_fallbacks_total",
            "AI evaluations replaced by a fallback record",
            ["reason"],  # timeout, error, invalid_response, circuit_open, simulated
        )

        self.usage_decisions = Counter(
            "devscore_usage_decisions_total",
            "Usage policy decisions",
            ["reason"],  # unlimited, ok, quota_exhausted, grace_period
        )

        self.evaluation_conflicts = Counter(
            "devscore_evaluation_conflicts_total",
            "Evaluation requests rejected because one was already in flight",
        )

        self.evaluation_latency = Histogram(
            "devscore_evaluation_latency_seconds",
            "End-to-end evaluation latency",
            buckets=EVALUATION_LATENCY_BUCKETS,
        )

        self.ai_tokens = Counter(
            "devscore_ai_tokens_total",
            "AI tokens consumed by evaluations",
        )

    def record_evaluation(self, status: str, latency: float) -> None:
        """Record a completed evaluation and its latency."""
        self.evaluations.labels(status=status).inc()
        if latency > 0:
            self.evaluation_latency.observe(latency)

    def record_fallback(self, reason: str) -> None:
        self.evaluation_fallbacks.labels(reason=reason).inc()

    def record_usage_decision(self, reason: str) -> None:
        self.usage_decisions.labels(reason=reason).inc()

    def record_conflict(self) -> None:
        self.evaluation_conflicts.inc()

    def record_tokens(self, total_tokens: int) -> None:
        if total_tokens > 0:
            self.ai_tokens.inc(total_tokens)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
