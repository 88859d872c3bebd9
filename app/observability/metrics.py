"""
Prometheus metrics for the accounting document service.
"""

from prometheus_client import Counter, Histogram


# ── Upload ───────────────────────────────────────────────────
documents_uploaded_total = Counter(
    "documents_uploaded_total",
    "Total documents uploaded",
    ["company", "storage_type"],
)

primary_storage_failures_total = Counter(
    "primary_storage_failures_total",
    "Uploads rejected because the primary store write failed",
)

secondary_storage_fallbacks_total = Counter(
    "secondary_storage_fallbacks_total",
    "Uploads that kept the primary URL because the secondary write failed",
)

task_handoffs_total = Counter(
    "task_handoffs_total",
    "File hand-offs to the external task service",
    ["outcome"],
)

# ── Reprocessing ─────────────────────────────────────────────
retrieval_attempts_total = Counter(
    "retrieval_attempts_total",
    "File retrieval attempts per storage source",
    ["source", "outcome"],
)

documents_reprocessed_total = Counter(
    "documents_reprocessed_total",
    "Documents run through AI extraction",
    ["outcome"],
)

document_processing_duration_seconds = Histogram(
    "document_processing_duration_seconds",
    "Time to retrieve, extract and reconcile a single document",
    buckets=[1, 5, 10, 30, 60, 120, 300],
)

analysis_parse_total = Counter(
    "analysis_parse_total",
    "How AI responses were turned into analysis results",
    ["mode"],
)

# ── External API ─────────────────────────────────────────────
ai_requests_total = Counter(
    "ai_requests_total",
    "AI extraction calls by outcome",
    ["engine_name", "outcome"],
)

ai_request_duration_seconds = Histogram(
    "ai_request_duration_seconds",
    "Latency of AI extraction calls",
    ["engine_name"],
    buckets=[0.5, 1, 2, 5, 10, 30, 60, 120],
)
