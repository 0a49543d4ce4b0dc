"""
Integration tests for payrelay.

Repository tests run against SQLite (aiosqlite) and PostgreSQL. PostgreSQL
is provisioned through testcontainers and skipped automatically when
testcontainers or Docker is unavailable.

Run integration tests:
    pytest tests/integration/ -v

Run only PostgreSQL tests:
    pytest tests/integration/ -v -m postgres

Run only the end-to-end flows:
    pytest tests/integration/ -v -m e2e

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
