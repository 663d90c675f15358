import asyncio
import copy
import re

import pytest
from fastapi.testclient import TestClient

from storefront.errors import GatewayError, NotFoundError
from storefront.gateway import Gateway, SelectResult, new_id, utcnow
from storefront.schemas import Product


def _matches(row, filters):
    for key, cond in filters.items():
        if key == "$or":
            if not any(_matches(row, c) for c in cond):
                return False
            continue
        if key == "$and":
            if not all(_matches(row, c) for c in cond):
                return False
            continue
        value = row.get(key)
        if isinstance(cond, dict):
            if "$regex" in cond:
                flags = re.I if "i" in cond.get("$options", "") else 0
                if not isinstance(value, str) or not re.search(cond["$regex"], value, flags):
                    return False
            if "$in" in cond and value not in cond["$in"]:
                return False
        elif value != cond:
            return False
    return True


class MemoryGateway(Gateway):
    """Gateway kept in dicts. Records every call; `fail(op)` makes an operation raise."""

    def __init__(self, public_base_url="http://testserver"):
        self.public_base_url = public_base_url
        self.tables = {}
        self.files = {}
        self.calls = []
        self.failing = set()

    def fail(self, *ops):
        self.failing.update(ops)

    def recover(self):
        self.failing.clear()

    def _check(self, op, table=None):
        if op in self.failing:
            raise GatewayError(f"{op} on {table} failed", table=table)

    def rows(self, table):
        return [dict(r) for r in self.tables.get(table, [])]

    def calls_for(self, op, table=None):
        return [c for c in self.calls if c[0] == op and (table is None or c[1] == table)]

    async def select(self, table, filters=None, *, order_by=None, descending=False,
                     offset=0, limit=None, count=False):
        self.calls.append(("select", table, copy.deepcopy(filters)))
        self._check("select", table)
        rows = [r for r in self.tables.get(table, []) if _matches(r, filters or {})]
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        total = len(rows) if count else None
        if limit == 0:
            return SelectResult([], total)
        end = None if limit is None else offset + limit
        return SelectResult([copy.deepcopy(r) for r in rows[offset:end]], total)

    async def insert(self, table, records):
        batch = [records] if isinstance(records, dict) else list(records)
        self.calls.append(("insert", table, copy.deepcopy(batch)))
        self._check("insert", table)
        now = utcnow()
        inserted = []
        for record in batch:
            row = dict(record)
            row["id"] = record.get("id") or new_id()
            row.setdefault("created_at", now)
            inserted.append(row)
        self.tables.setdefault(table, []).extend(inserted)
        return copy.deepcopy(inserted)

    async def update(self, table, patch, match):
        self.calls.append(("update", table, (dict(patch), dict(match))))
        self._check("update", table)
        hits = [r for r in self.tables.get(table, []) if _matches(r, match)]
        if not hits:
            raise NotFoundError(f"no {table} row matches {match}", table=table)
        for r in hits:
            r.update(patch)
        return len(hits)

    async def delete(self, table, match):
        self.calls.append(("delete", table, dict(match)))
        self._check("delete", table)
        before = self.tables.get(table, [])
        kept = [r for r in before if not _matches(r, match)]
        if len(kept) == len(before):
            raise NotFoundError(f"no {table} row matches {match}", table=table)
        self.tables[table] = kept
        return len(before) - len(kept)

    async def upload_file(self, bucket, path, data, content_type=None):
        self.calls.append(("upload_file", bucket, path))
        self._check("upload_file", bucket)
        self.files[(bucket, path)] = data
        return self.public_url(bucket, path)

    async def remove_file(self, bucket, path):
        self.calls.append(("remove_file", bucket, path))
        self._check("remove_file", bucket)
        if (bucket, path) not in self.files:
            raise NotFoundError(f"file {bucket}/{path} not found")
        del self.files[(bucket, path)]

    async def download_file(self, bucket, path):
        if (bucket, path) not in self.files:
            raise NotFoundError(f"file {bucket}/{path} not found")
        return self.files[(bucket, path)]


def run(coro):
    return asyncio.run(coro)


def make_product(id="p-1", name="Tire Gauge", price=500, **extra):
    return Product(id=id, name=name, description=f"{name} description", price=price,
                   image_url=f"http://testserver/files/product-images/{id}.jpg", **extra)


@pytest.fixture
def gateway():
    return MemoryGateway()


@pytest.fixture
def client(gateway):
    from storefront import main

    main.app.dependency_overrides[main.get_gateway] = lambda: gateway
    main.sessions.clear()
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()
    main.sessions.clear()


@pytest.fixture
def admin_token(client, gateway):
    from storefront import main
    from storefront.auth import AuthService

    auth = AuthService(gateway, main.settings.JWT_SECRET)
    run(auth.sign_up("admin@example.com", "secret123", is_admin=True))
    res = client.post("/auth/login", json={"email": "admin@example.com", "password": "secret123"})
    assert res.status_code == 200
    return res.json()["token"]
