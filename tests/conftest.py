"""Root conftest: shared fixtures and engine markers."""

from __future__ import annotations

import os
import sqlite3

import pytest

_ENGINES = ("postgres", "mysql", "oracle", "sqlserver")


def pytest_configure(config):
    for engine in _ENGINES:
        config.addinivalue_line("markers", f"{engine}: requires a running {engine} server")


def pytest_collection_modifyitems(config, items):
    for engine in _ENGINES:
        env = f"QUERYGATE_TEST_{engine.upper()}"
        if os.environ.get(env):
            continue
        skip = pytest.mark.skip(reason=f"{engine} not available (set {env}=1)")
        for item in items:
            if engine in item.keywords:
                item.add_marker(skip)


@pytest.fixture
def sample_db(tmp_path):
    """SQLite file with a small shop schema: 250 orders, a view, an index, an FK."""
    path = tmp_path / "shop.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE customers (
            id INTEGER PRIMARY KEY,
            name VARCHAR(100) NOT NULL,
            email TEXT,
            balance DECIMAL(10, 2) DEFAULT 0
        );
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY,
            customer_id INTEGER NOT NULL REFERENCES customers(id) ON DELETE CASCADE,
            total REAL,
            status TEXT,
            created_at TEXT,
            receipt BLOB
        );
        CREATE INDEX idx_orders_customer ON orders(customer_id);
        CREATE UNIQUE INDEX idx_customers_email ON customers(email);
        CREATE VIEW big_orders AS SELECT id, total FROM orders WHERE total > 100;
        """
    )
    conn.executemany(
        "INSERT INTO customers (id, name, email, balance) VALUES (?, ?, ?, ?)",
        [(i, f"customer {i}", f"c{i}@example.com", i * 1.5) for i in range(1, 11)],
    )
    conn.executemany(
        "INSERT INTO orders (id, customer_id, total, status, created_at, receipt) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        [
            (
                i,
                (i % 10) + 1,
                float(i),
                "shipped" if i % 2 else "pending",
                f"2024-01-{(i % 28) + 1:02d}",
                b"\x00\x01" * 8,
            )
            for i in range(1, 251)
        ],
    )
    conn.commit()
    conn.close()
    return path
