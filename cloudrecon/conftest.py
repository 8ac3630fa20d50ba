"""Pytest configuration for CloudRecon tests.

Environment defaults are set before any test module imports the app, so
settings load with the test environment.
"""

import os


def pytest_configure(config):
    """Configure the test environment before any tests run.

    Key test settings:
    - ENVIRONMENT=test
    - QUEUE_BACKEND=memory, WORKER_ENABLED=false: nothing consumes the queue
      unless a test starts a worker itself
    - a fixed SECRET_KEY so credential secrets stay decryptable across
      settings reloads
    - BOOTSTRAP_ADMIN_ENABLED=false to avoid admin creation during tests
    """
    config.addinivalue_line("markers", "security: Security-related tests (required gate)")
    config.addinivalue_line("markers", "slow: Slow-running tests (excluded from fast)")
    config.addinivalue_line("markers", "integration: Integration tests requiring external services")

    os.environ.setdefault("ENVIRONMENT", "test")
    os.environ.setdefault("SECRET_KEY", "cloudrecon-test-secret-key")
    os.environ.setdefault("QUEUE_BACKEND", "memory")
    os.environ.setdefault("WORKER_ENABLED", "false")
    os.environ.setdefault("PROVIDER_MODE", "live")

    cors_origins = os.environ.get("CORS_ORIGINS", "")
    if "localhost:3000" not in cors_origins:
        cors_origins = f"{cors_origins},http://localhost:3000" if cors_origins else "http://localhost:3000"
        os.environ["CORS_ORIGINS"] = cors_origins

    os.environ.setdefault("BOOTSTRAP_ADMIN_ENABLED", "false")
