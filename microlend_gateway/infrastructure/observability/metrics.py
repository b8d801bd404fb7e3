"""Prometheus metrics for issuance, idempotency, disbursement and scoring"""

from prometheus_client import Counter, Histogram

# Issuance metrics
loan_issuance_counter = Counter(
    "microlend_loan_issuance_total",
    "Accept-offer outcomes",
    ["outcome"],  # created | replayed | rejected
)

idempotent_replay_counter = Counter(
    "microlend_idempotent_replay_total",
    "Accept-offer requests answered with an existing loan",
    ["path"],  # cache | database | after_lock | cooldown_match
)

lock_contention_counter = Counter(
    "microlend_issuance_lock_contention_total",
    "Accept-offer requests that could not take the issuance lock",
)

cooldown_rejection_counter = Counter(
    "microlend_cooldown_rejections_total",
    "Loans refused because the phone number has a recent active loan",
)

offers_counter = Counter(
    "microlend_offers_total",
    "Offer computations by outcome",
    ["outcome"],  # offered | not_eligible
)

eligibility_cache_counter = Counter(
    "microlend_eligibility_cache_total",
    "Per-borrower eligibility cache lookups",
    ["field", "result"],  # result: hit | miss
)

# Queue metrics
job_outcome_counter = Counter(
    "microlend_queue_jobs_total",
    "Queue job executions by outcome",
    ["queue", "outcome"],  # completed | retry | parked
)

disbursement_latency_histogram = Histogram(
    "disbursement_provider_latency_seconds",
    "Telco disbursement API response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed notification webhook deliveries",
)

# Scoring metrics
points_awarded_histogram = Histogram(
    "microlend_credit_points_awarded",
    "Credit score points awarded per repayment",
    buckets=[0, 5, 10, 25, 50, 100, 200, 500],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_points_awarded(points: int) -> None:
    points_awarded_histogram.observe(points)
