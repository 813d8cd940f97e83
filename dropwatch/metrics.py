"""Prometheus metrics for dropwatch."""

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("dropwatch", "Dropwatch application info")
app_info.info({"version": "0.1.0", "name": "dropwatch"})

# Acquisition metrics
fetch_attempts_total = Counter(
    "dropwatch_fetch_attempts_total",
    "Outbound fetch attempts by acquisition step",
    ["adapter", "step", "outcome"],
)

fetch_escalations_total = Counter(
    "dropwatch_fetch_escalations_total",
    "Escalations from one acquisition step to the next",
    ["adapter", "from_step", "to_step"],
)

# Adapter metrics
adapter_calls_total = Counter(
    "dropwatch_adapter_calls_total",
    "Adapter calls by operation and result",
    ["adapter", "operation", "status"],
)

adapter_call_duration_seconds = Histogram(
    "dropwatch_adapter_call_duration_seconds",
    "Time spent in adapter calls",
    ["adapter"],
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

adapter_success_rate = Gauge(
    "dropwatch_adapter_success_rate",
    "Lifetime success rate per adapter (0.0-1.0)",
    ["adapter"],
)

adapter_avg_latency_ms = Gauge(
    "dropwatch_adapter_avg_latency_ms",
    "Average adapter response time in milliseconds",
    ["adapter"],
)

adapter_healthy = Gauge(
    "dropwatch_adapter_healthy",
    "Adapter health flag (1 = healthy)",
    ["adapter"],
)

# Signal metrics
signals_recorded_total = Counter(
    "dropwatch_signals_recorded_total",
    "Signal events appended",
    ["retailer", "signal_type"],
)

signals_deduped_total = Counter(
    "dropwatch_signals_deduped_total",
    "Signal events suppressed as duplicates",
    ["signal_type"],
)

# Prediction metrics
predictions_total = Counter(
    "dropwatch_predictions_total",
    "Window predictions served by source",
    ["retailer", "source"],
)

hot_markers_written_total = Counter(
    "dropwatch_hot_markers_written_total",
    "Hot-window markers written",
    ["retailer"],
)

# Training metrics
training_runs_total = Counter(
    "dropwatch_training_runs_total",
    "Model training runs",
    ["model", "status"],
)

hour_model_retailers = Gauge(
    "dropwatch_hour_model_retailers",
    "Retailers present in the published hour model",
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "dropwatch_scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "dropwatch_scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_fetch_attempt(adapter: str, step: str, success: bool):
    """Record one acquisition step."""
    fetch_attempts_total.labels(
        adapter=adapter, step=step, outcome="success" if success else "failure"
    ).inc()


def record_fetch_escalation(adapter: str, from_step: str, to_step: str):
    """Record an escalation between acquisition steps."""
    fetch_escalations_total.labels(
        adapter=adapter, from_step=from_step, to_step=to_step
    ).inc()


def record_adapter_call(adapter: str, operation: str, success: bool, duration: float):
    """Record an adapter call outcome."""
    adapter_calls_total.labels(
        adapter=adapter, operation=operation, status="success" if success else "error"
    ).inc()
    adapter_call_duration_seconds.labels(adapter=adapter).observe(duration)


def update_adapter_health(adapter: str, success_rate: float, avg_latency_ms: float, healthy: bool):
    """Publish the health snapshot of an adapter."""
    adapter_success_rate.labels(adapter=adapter).set(success_rate)
    adapter_avg_latency_ms.labels(adapter=adapter).set(avg_latency_ms)
    adapter_healthy.labels(adapter=adapter).set(1 if healthy else 0)


def record_signal(retailer: str, signal_type: str):
    """Record an appended signal event."""
    signals_recorded_total.labels(retailer=retailer, signal_type=signal_type).inc()


def record_signal_deduped(signal_type: str):
    """Record a suppressed duplicate signal."""
    signals_deduped_total.labels(signal_type=signal_type).inc()


def record_prediction(retailer: str, source: str):
    """Record which strategy produced a prediction."""
    predictions_total.labels(retailer=retailer, source=source).inc()


def record_hot_marker(retailer: str):
    """Record a hot-window marker write."""
    hot_markers_written_total.labels(retailer=retailer).inc()


def record_training_run(model: str, success: bool, retailer_count: int | None = None):
    """Record a training run."""
    training_runs_total.labels(model=model, status="success" if success else "error").inc()
    if retailer_count is not None:
        hour_model_retailers.set(retailer_count)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    import time

    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
