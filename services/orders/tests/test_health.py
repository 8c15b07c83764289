import logging

from shared.core import ServiceHealth
from shared.core.health import HealthStatus
from shared.core.logging_config import SecurityFilter


def test_health_endpoints(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "pass"

    assert client.get("/health/live").json() == {"status": "alive"}

    resp = client.get("/health/ready")
    assert resp.status_code in [200, 503]
    assert "database:connectivity" in resp.json()["checks"]


def test_metrics_and_info(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200

    resp = client.get("/info")
    assert resp.json()["endpoints"]["webhook"] == "/orders/webhook"


def test_startup_checks_report_missing_config(engine):
    health = ServiceHealth(
        "orders-service",
        engine_factory=lambda: engine,
        required_config=lambda: {"STRIPE_SECRET_KEY": "", "JWT_SECRET": "x"},
    )

    checks = health.startup_checks()

    assert checks["config:environment"]["status"] == HealthStatus.FAIL
    assert "STRIPE_SECRET_KEY" in checks["config:environment"]["output"]
    # tables created without alembic
    assert checks["database:migrations"]["status"] == HealthStatus.WARN
    assert ServiceHealth.overall_status(checks) == HealthStatus.FAIL


def test_database_check_uses_engine(engine):
    health = ServiceHealth("orders-service", engine_factory=lambda: engine)
    assert health.readiness_checks()["database:connectivity"]["status"] == HealthStatus.PASS


def test_security_filter_redacts_credentials():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "retrying with api_key=sk_live_123", None, None)
    record.extra_fields = {"stripe_signature": "t=1,v1=abc", "order_id": 7}

    SecurityFilter().filter(record)

    assert "sk_live_123" not in record.msg
    assert record.extra_fields == {"stripe_signature": "***REDACTED***", "order_id": 7}
