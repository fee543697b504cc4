import os

# Keep the test process free of global tracer providers and httpx patching.
os.environ.setdefault("AIJA_OTEL_ENABLED", "false")
