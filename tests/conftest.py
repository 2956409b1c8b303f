"""Shared test fixtures."""

from __future__ import annotations

import copy
import struct
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

# ─── Image byte prefixes ──────────────────────────────────────────────────────


def png_bytes(width: int, height: int) -> bytes:
    ihdr = struct.pack(">II", width, height) + b"\x08\x02\x00\x00\x00"
    return b"\x89PNG\r\n\x1a\n" + struct.pack(">I", 13) + b"IHDR" + ihdr + b"\x00" * 4


def gif_bytes(width: int, height: int) -> bytes:
    return b"GIF89a" + struct.pack("<HH", width, height) + b"\xf7\x00\x00"


def jpeg_bytes(width: int, height: int, progressive: bool = False) -> bytes:
    app0 = b"\xff\xe0" + struct.pack(">H", 16) + b"JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
    dqt = b"\xff\xdb" + struct.pack(">H", 67) + b"\x00" + bytes(64)
    sof_marker = b"\xff\xc2" if progressive else b"\xff\xc0"
    sof = (
        sof_marker
        + struct.pack(">HBHHB", 17, 8, height, width, 3)
        + b"\x01\x22\x00\x02\x11\x01\x03\x11\x01"
    )
    return b"\xff\xd8" + app0 + dqt + sof + b"\xff\xda" + bytes(32)


def webp_lossy_bytes(width: int, height: int) -> bytes:
    frame = b"\x30\x01\x00" + b"\x9d\x01\x2a" + struct.pack("<HH", width, height)
    chunk = b"VP8 " + struct.pack("<I", len(frame) + 8) + frame + bytes(8)
    return b"RIFF" + struct.pack("<I", len(chunk) + 4) + b"WEBP" + chunk


def webp_lossless_bytes(width: int, height: int) -> bytes:
    bits = (width - 1) | ((height - 1) << 14)
    payload = b"\x2f" + struct.pack("<I", bits) + bytes(8)
    chunk = b"VP8L" + struct.pack("<I", len(payload)) + payload
    return b"RIFF" + struct.pack("<I", len(chunk) + 4) + b"WEBP" + chunk


# ─── HTTP ─────────────────────────────────────────────────────────────────────

Route = Union[Tuple[str, bytes], Tuple[str, bytes, int], type]


def image_transport(routes: Dict[str, Route], calls: Optional[List[Tuple[str, str]]] = None) -> httpx.MockTransport:
    """
    MockTransport serving `routes`: url -> (content_type, body[, status]) or an
    httpx exception class to raise. Unknown URLs are 404.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if calls is not None:
            calls.append((request.method, url))
        route = routes.get(url)
        if route is None:
            return httpx.Response(404)
        if isinstance(route, type):
            raise route("simulated failure", request=request)
        content_type, body = route[0], route[1]
        status = route[2] if len(route) > 2 else 200
        headers = {"content-type": content_type, "content-length": str(len(body))}
        if request.method == "HEAD":
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, headers=headers, content=body)

    return httpx.MockTransport(handler)


@pytest.fixture
def make_http_client():
    def factory(routes: Dict[str, Route], calls: Optional[list] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=image_transport(routes, calls), follow_redirects=True)

    return factory


# ─── Supabase ─────────────────────────────────────────────────────────────────


def _coerce(value: str) -> Any:
    return {"true": True, "false": False, "null": None}.get(value, value)


def _not_equal(actual: Any, expected: Any) -> bool:
    # SQL: NULL <> x is not true
    return actual is not None and actual != expected


class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]], count: Optional[int] = None) -> None:
        self.data = data
        self.count = count


class FakeQuery:
    """Just enough of the postgrest query builder for the gateway."""

    def __init__(self, db: "FakeSupabase", table: str) -> None:
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.on_conflict = ""
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self.ordering: List[Tuple[str, bool]] = []
        self.max_rows: Optional[int] = None
        self.window: Optional[Tuple[int, int]] = None
        self.count_mode: Optional[str] = None
        self.head = False

    # operations
    def select(self, *columns: str, count: Optional[str] = None, head: bool = False) -> "FakeQuery":
        self.op, self.count_mode, self.head = "select", count, head
        return self

    def update(self, values: Dict[str, Any]) -> "FakeQuery":
        self.op, self.payload = "update", values
        return self

    def upsert(self, rows: List[Dict[str, Any]], on_conflict: str = "") -> "FakeQuery":
        self.op, self.payload, self.on_conflict = "upsert", rows, on_conflict
        return self

    # filters
    def eq(self, col: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda r: r.get(col) == value)
        return self

    def neq(self, col: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda r: _not_equal(r.get(col), value))
        return self

    def lt(self, col: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) < value)
        return self

    def gt(self, col: str, value: Any) -> "FakeQuery":
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) > value)
        return self

    def in_(self, col: str, values: List[Any]) -> "FakeQuery":
        allowed = list(values)
        self.filters.append(lambda r: r.get(col) in allowed)
        return self

    def or_(self, expression: str) -> "FakeQuery":
        checks = []
        for clause in expression.split(","):
            col, op, raw = clause.split(".", 2)
            value = _coerce(raw)
            if op == "is":
                checks.append(lambda r, c=col, v=value: r.get(c) is v)
            elif op == "eq":
                checks.append(lambda r, c=col, v=value: r.get(c) == v)
            elif op == "neq":
                checks.append(lambda r, c=col, v=value: _not_equal(r.get(c), v))
            else:
                raise ValueError(f"unsupported operator {op}")
        self.filters.append(lambda r: any(check(r) for check in checks))
        return self

    # modifiers
    def order(self, col: str, desc: bool = False) -> "FakeQuery":
        self.ordering.append((col, desc))
        return self

    def limit(self, n: int) -> "FakeQuery":
        self.max_rows = n
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.window = (start, end)
        return self

    def _matching(self) -> List[Dict[str, Any]]:
        rows = self.db.tables.setdefault(self.table_name, [])
        return [r for r in rows if all(f(r) for f in self.filters)]

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table_name, self.op))
        remaining = self.db.failures.get((self.table_name, self.op), 0)
        if remaining:
            self.db.failures[(self.table_name, self.op)] = remaining - 1
            raise RuntimeError(f"simulated {self.op} failure on {self.table_name}")

        if self.op == "select":
            rows = self._matching()
            for col, desc in reversed(self.ordering):
                rows.sort(key=lambda r: r.get(col), reverse=desc)
            count = len(rows) if self.count_mode else None
            if self.window:
                rows = rows[self.window[0] : self.window[1] + 1]
            if self.max_rows is not None:
                rows = rows[: self.max_rows]
            return FakeResponse([] if self.head else copy.deepcopy(rows), count)

        if self.op == "update":
            updated = []
            for row in self._matching():
                row.update(self.payload)
                updated.append(copy.deepcopy(row))
            return FakeResponse(updated)

        keys = [k for k in self.on_conflict.split(",") if k]
        table = self.db.tables.setdefault(self.table_name, [])
        written = []
        for incoming in self.payload:
            existing = next((r for r in table if all(r.get(k) == incoming.get(k) for k in keys)), None)
            if existing is None:
                existing = {"review_status": "pending", **incoming}
                table.append(existing)
            else:
                existing.update(incoming)
            written.append(copy.deepcopy(existing))
        return FakeResponse(written)


class FakeSupabase:
    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = tables or {}
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], int] = {}

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def fail(self, table: str, op: str, times: int = 1) -> None:
        self.failures[(table, op)] = times

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def find(self, table: str, **match: Any) -> Optional[Dict[str, Any]]:
        return next(
            (r for r in self.rows(table) if all(r.get(k) == v for k, v in match.items())),
            None,
        )


@pytest.fixture
def supabase() -> FakeSupabase:
    return FakeSupabase({"providers": [], "provider_image_metadata": []})


def metadata_row(provider_id: Any, image_url: str, **fields: Any) -> Dict[str, Any]:
    """A stored provider_image_metadata row with sensible defaults."""
    row = {
        "provider_id": provider_id,
        "image_url": image_url,
        "source_field": "gallery",
        "image_type": "unknown",
        "classification_method": "no_signal",
        "classification_confidence": 0.3,
        "quality_score": 0.25,
        "width": None,
        "height": None,
        "file_size_bytes": None,
        "content_type": "image/jpeg",
        "is_accessible": True,
        "is_hero": False,
        "review_status": "pending",
    }
    row.update(fields)
    return row
