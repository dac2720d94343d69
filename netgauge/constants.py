"""
Shared constants used across all netgauge modules.

Centralises endpoints, default headers, and tunables so they live in
exactly one place.
"""

# ---------------------------------------------------------------------------
# HTTP headers
# ---------------------------------------------------------------------------

USER_AGENT = "netgauge/1.0 (+https://speed.cloudflare.com)"

COMMON_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
}

# ---------------------------------------------------------------------------
# Measurement endpoint (Cloudflare speed test layout)
# ---------------------------------------------------------------------------

DEFAULT_HOSTNAME = "speed.cloudflare.com"
DEFAULT_PORT = 443
DEFAULT_SCHEME = "https"

DOWNLOAD_PATH = "/__down"
UPLOAD_PATH = "/__up"
META_PATH = "/meta"
TRACE_PATH = "/cdn-cgi/trace"

# ---------------------------------------------------------------------------
# Latency
# ---------------------------------------------------------------------------

DEFAULT_PING_COUNT = 15
MIN_PING_COUNT = 1
MAX_PING_COUNT = 100

DEFAULT_PROBE_TIMEOUT = 1.0      # seconds per single probe
DEFAULT_INTER_PROBE_DELAY = 0.1  # seconds between probes (not after the last)
WARMUP_PROBE_PAUSE = 0.05        # pause after the discarded warm-up probe

LATENCY_TRIM_FRACTION = 0.1

DEFAULT_LOADED_LATENCY_COUNT = 5
DEFAULT_LOADED_LATENCY_DELAY = 0.15

# ---------------------------------------------------------------------------
# Throughput
# ---------------------------------------------------------------------------

SAMPLE_INTERVAL = 0.25           # 250 ms between speed samples
DOWNLOAD_WARMUP_SECONDS = 0.5    # discard download samples in this window
UPLOAD_MIN_SAMPLES = 3           # upload always emits at least this many
UPLOAD_FORCE_SAMPLE_AFTER = 0.1  # ...forcing one once 100 ms have elapsed

READ_CHUNK_SIZE = 64 * 1024
UPLOAD_CHUNK_SIZE = 32 * 1024    # 32 KB upload chunks

DEFAULT_DOWNLOAD_BYTES = 25_000_000
DEFAULT_UPLOAD_BYTES = 10_000_000
MIN_TRANSFER_BYTES = 64 * 1024
MAX_TRANSFER_BYTES = 1_000_000_000

# StableWindowAverage tunables
STABLE_WARMUP_FRACTION = 0.3
STABLE_REFERENCE_PERCENTILE = 0.9
STABLE_SPIKE_FACTOR = 1.2

# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

DEFAULT_TRANSFER_TIMEOUT = 10.0
DEFAULT_PHASE_TIMEOUT = 20.0
DEFAULT_METADATA_TIMEOUT = 5.0
DEFAULT_RUN_DEADLINE = 60.0
CONNECT_TIMEOUT = 5.0
MAX_DURATION = 300.0

DEFAULT_RETRIES = 1
MAX_RETRIES = 5

# ---------------------------------------------------------------------------
# Subnet scanning
# ---------------------------------------------------------------------------

SCAN_HOST_COUNT = 254
DEFAULT_HOST_TIMEOUT = 1.0
DEFAULT_SCAN_CONCURRENCY = 50
CONSTRAINED_SCAN_CONCURRENCY = 30
MAX_SCAN_CONCURRENCY = 254
REVERSE_DNS_TIMEOUT = 2.0
HOSTNAME_RESOLVE_CONCURRENCY = 10

# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------

MONITOR_INTERVAL = 1.0
MONITOR_TIMEOUT = 2.0
