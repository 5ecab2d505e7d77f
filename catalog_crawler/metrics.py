"""Prometheus metrics for the catalog crawler."""

from prometheus_client import Counter, Histogram, Info

from catalog_crawler import __version__

# Application info
app_info = Info("catalog_crawler", "Catalog crawler application info")
app_info.info({"version": __version__, "name": "catalog-crawler"})

# Fetch metrics
fetch_attempts_total = Counter(
    "catalog_fetch_attempts_total",
    "Total number of HTTP/browser fetch attempts",
    ["status_class"],
)

fetch_retries_total = Counter(
    "catalog_fetch_retries_total",
    "Total number of fetch retries by reason",
    ["reason"],
)

fetch_duration_seconds = Histogram(
    "catalog_fetch_duration_seconds",
    "Time spent fetching a page including retries",
    ["fetcher"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0],
)

# Crawl metrics
pages_total = Counter(
    "catalog_pages_total",
    "Category pages processed by outcome",
    ["category", "outcome"],
)

records_extracted_total = Counter(
    "catalog_records_extracted_total",
    "Product records extracted from listing pages",
    ["category"],
)

crawl_terminations_total = Counter(
    "catalog_crawl_terminations_total",
    "Category crawls finished by termination reason",
    ["reason"],
)

# Persistence metrics
upserts_total = Counter(
    "catalog_upserts_total",
    "Product upserts by outcome",
    ["outcome"],
)

image_mirrors_total = Counter(
    "catalog_image_mirrors_total",
    "Image mirror attempts by status",
    ["status"],
)


def status_class(status_code: int | None) -> str:
    """Bucket an HTTP status code ("2xx", "429", "5xx", "4xx", "error")."""
    if status_code is None:
        return "error"
    if status_code == 429:
        return "429"
    return f"{status_code // 100}xx"


def record_fetch_attempt(status_code: int | None):
    """Record a single fetch attempt."""
    fetch_attempts_total.labels(status_class=status_class(status_code)).inc()


def record_retry(reason: str):
    """Record a retry and why it happened."""
    fetch_retries_total.labels(reason=reason).inc()


def record_fetch_duration(fetcher: str, duration: float):
    """Record total fetch time for a page."""
    fetch_duration_seconds.labels(fetcher=fetcher).observe(duration)


def record_page(category: str, outcome: str, records: int = 0):
    """Record a processed page (outcome: ok, empty, failed)."""
    pages_total.labels(category=category, outcome=outcome).inc()
    if records:
        records_extracted_total.labels(category=category).inc(records)


def record_upsert(outcome: str):
    """Record an upsert outcome."""
    upserts_total.labels(outcome=outcome).inc()


def record_image_mirror(success: bool):
    """Record an image mirror attempt."""
    status = "success" if success else "error"
    image_mirrors_total.labels(status=status).inc()


def record_termination(reason: str):
    """Record why a category crawl stopped."""
    crawl_terminations_total.labels(reason=reason).inc()
