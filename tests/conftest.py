# CRM Console Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - An in-memory CRM backend served through httpx.MockTransport
# - Console app fixtures (fresh state directory per test)
# - Login helpers
# - Failure message formatting

import json
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from crmconsole import create_app
from crmconsole.extensions import VISITOR_KEY
from crmconsole.services import auth_service
from crmconsole.services.session_service import VISITOR_DIR, SessionManager


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class TestConfig:
    """Test configuration with environment variable overrides."""
    __test__ = False

    # The console never reaches this host; MockTransport answers instead
    backend_base_url: str = os.environ.get("TEST_BACKEND_URL", "http://crm.test")

    operator_phone: str = "13800000000"
    operator_password: str = "secret123"

    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "5"))


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(Exception):
    """
    Custom exception with detailed, human-readable failure messages.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    4. Likely Cause: Most probable reason for failure
    5. Code Location: Where to look in the codebase
    """
    __test__ = False

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response=None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        self.scenario = scenario
        self.expected = expected
        self.actual = actual
        self.likely_cause = likely_cause
        self.code_location = code_location
        self.response = response
        self.extra_context = extra_context or {}

        message = self._format_message()
        super().__init__(message)

    def _format_message(self) -> str:
        lines = [
            "",
            "=" * 80,
            "TEST FAILURE DETAILS",
            "=" * 80,
            f"SCENARIO: {self.scenario}",
            "-" * 80,
            f"EXPECTED: {self.expected}",
            f"ACTUAL: {self.actual}",
            "-" * 80,
            f"LIKELY CAUSE: {self.likely_cause}",
            f"CODE LOCATION: {self.code_location}",
        ]

        if self.response is not None:
            lines.extend([
                "-" * 80,
                f"HTTP STATUS: {self.response.status_code}",
                f"LOCATION: {self.response.headers.get('Location')}",
                f"RESPONSE BODY: {page_text(self.response)[:1000]}",
            ])

        if self.extra_context:
            lines.append("-" * 80)
            lines.append("EXTRA CONTEXT:")
            for key, value in self.extra_context.items():
                lines.append(f"  {key}: {value}")

        lines.append("=" * 80)
        return "\n".join(lines)


def page_text(response) -> str:
    return response.get_data(as_text=True)


def assert_response(
    response,
    expected_status: int,
    scenario: str,
    code_location: str,
    expected_body_contains: Optional[str] = None
):
    """
    Assert console response status and optionally body content.
    Raises TestFailure with detailed message on failure.
    """
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=code_location,
            response=response
        )

    if expected_body_contains and expected_body_contains not in page_text(response):
        raise TestFailure(
            scenario=scenario,
            expected=f"Response body contains: {expected_body_contains}",
            actual=f"Response body: {page_text(response)[:500]}",
            likely_cause="Template changed or wrong view rendered",
            code_location=code_location,
            response=response
        )


def _infer_cause(response) -> str:
    """Infer likely cause from console response status."""
    if response.status_code == 303:
        return "Redirected - session not authenticated or a 401 tore it down"
    elif response.status_code == 400:
        return "Form rejected - client-side validation or backend domain error"
    elif response.status_code == 404:
        return "Route not found - blueprint not registered or wrong URL"
    elif response.status_code == 409:
        return "Conflict - backend reported a duplicate"
    elif response.status_code == 500:
        return "Console error - check app logs for stack trace"
    else:
        return f"Unexpected status code {response.status_code}"


# =============================================================================
# FAKE BACKEND
# =============================================================================

SESSION_COOKIE = "crm_session"


def _json(status: int, body: Any, headers: Optional[Dict] = None) -> httpx.Response:
    return httpx.Response(status, json=body, headers=headers)


@dataclass
class RecordedCall:
    method: str
    path: str
    params: Dict[str, str]
    body: Any = None


@dataclass
class FakeBackend:
    """
    In-memory stand-in for the CRM REST API.

    Credentials travel as an HttpOnly cookie, every payload is wrapped as
    {"data": ...}, and 401 is returned for any unauthenticated call.
    """
    users: Dict[str, Dict] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)
    stores: List[Dict] = field(default_factory=list)
    employees: List[Dict] = field(default_factory=list)
    customers: List[Dict] = field(default_factory=list)
    fulfillments: List[Dict] = field(default_factory=list)
    calls: List[RecordedCall] = field(default_factory=list)
    # Hooks called before answering, for concurrency tests
    verify_gate: Optional[Callable[[], None]] = None
    dashboard_gate: Optional[Callable[[Dict], None]] = None
    fail_paths: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()
        self._next_id = 100
        self._token_seq = 0

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------
    def add_user(self, phone: str, password: str, role: str = "admin") -> Dict:
        user = {"id": len(self.users) + 1, "phone": phone, "password": password,
                "role": role, "createdAt": "2024-01-01T08:00:00Z"}
        self.users[phone] = user
        return user

    def new_id(self) -> int:
        with self._lock:
            self._next_id += 1
            return self._next_id

    def revoke_all(self):
        """Simulate the backend forgetting every session."""
        with self._lock:
            self.tokens.clear()

    def calls_to(self, method: str, path: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.method == method and c.path == path]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------
    def _session_user(self, request: httpx.Request) -> Optional[Dict]:
        header = request.headers.get("cookie", "")
        for part in header.split(";"):
            name, _, value = part.strip().partition("=")
            if name == SESSION_COOKIE and value in self.tokens:
                return self.users.get(self.tokens[value])
        return None

    @staticmethod
    def _public(user: Dict) -> Dict:
        return {k: v for k, v in user.items() if k != "password"}

    def _issue_cookie(self, user: Dict) -> Dict[str, str]:
        with self._lock:
            self._token_seq += 1
            token = f"tok{self._token_seq}"
            self.tokens[token] = user["phone"]
        return {"set-cookie": f"{SESSION_COOKIE}={token}; Path=/; HttpOnly"}

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        params = dict(request.url.params)
        body = json.loads(request.content) if request.content else None
        with self._lock:
            self.calls.append(RecordedCall(request.method, path, params, body))

        if path in self.fail_paths:
            return _json(self.fail_paths[path], {"message": "Injected failure"})

        if path == "/api/auth/login" and request.method == "POST":
            user = self.users.get((body or {}).get("phone"))
            if not user or user["password"] != body.get("password"):
                return _json(401, {"message": "Invalid phone number or password."})
            headers = self._issue_cookie(user)
            return _json(200, {"data": {"user": self._public(user), "token": "opaque",
                                        "expiresAt": "2099-01-01T00:00:00Z"}}, headers)

        if path == "/api/auth/register" and request.method == "POST":
            phone = (body or {}).get("phone")
            if phone in self.users:
                return _json(409, {"message": "Phone number already registered"})
            user = self.add_user(phone, body.get("password"), body.get("role") or "staff")
            headers = self._issue_cookie(user)
            return _json(201, {"data": {"user": self._public(user)}}, headers)

        if path == "/api/auth/logout" and request.method == "POST":
            header = request.headers.get("cookie", "")
            with self._lock:
                for part in header.split(";"):
                    name, _, value = part.strip().partition("=")
                    if name == SESSION_COOKIE:
                        self.tokens.pop(value, None)
            return _json(200, {"data": {"ok": True}}, {"set-cookie": f"{SESSION_COOKIE}=; Path=/; Max-Age=0"})

        user = self._session_user(request)
        if user is None:
            return _json(401, {"message": "Unauthorized"})

        if path == "/api/auth/verify":
            if self.verify_gate:
                self.verify_gate()
            return _json(200, {"data": self._public(user)})

        if path == "/api/dashboard":
            if self.dashboard_gate:
                self.dashboard_gate(params)
            return _json(200, {"data": self.dashboard_payload(params)})

        for prefix, handler in (
            ("/api/stores", self._stores),
            ("/api/employees", self._employees),
            ("/api/customers", self._customers),
            ("/api/fulfillments", self._fulfillments),
        ):
            if path == prefix or path.startswith(prefix + "/"):
                rest = path[len(prefix):].strip("/")
                return handler(request.method, int(rest) if rest else None, params, body)

        return _json(404, {"message": "Not found"})

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------
    @staticmethod
    def _find(rows: List[Dict], row_id: Optional[int]) -> Optional[Dict]:
        return next((r for r in rows if r["id"] == row_id), None)

    def _stores(self, method, store_id, params, body):
        if method == "GET":
            return _json(200, {"data": self.stores})
        if method == "POST":
            if any(s["code"] == body.get("code") for s in self.stores):
                return _json(409, {"message": "code must be unique"})
            store = {"id": self.new_id(), "city": None, "address": None, **body}
            self.stores.append(store)
            return _json(201, {"data": store})

        store = self._find(self.stores, store_id)
        if store is None:
            return _json(404, {"message": "Store not found"})
        if method == "PUT":
            if "code" in body and any(s["code"] == body["code"] and s["id"] != store_id for s in self.stores):
                return _json(409, {"message": "code must be unique"})
            store.update(body)
            return _json(200, {"data": store})
        if method == "DELETE":
            dependents = [e for e in self.employees if e.get("storeId") == store_id]
            dependents += [f for f in self.fulfillments if f.get("storeId") == store_id]
            if dependents:
                return _json(400, {"message": "Store has dependent records"})
            self.stores.remove(store)
            return httpx.Response(204)
        return _json(405, {"message": "Method not allowed"})

    def _employees(self, method, _id, params, body):
        rows = self.employees
        if params.get("storeId"):
            rows = [e for e in rows if str(e.get("storeId")) == params["storeId"]]
        return _json(200, {"data": rows})

    def _customers(self, method, customer_id, params, body):
        if method == "GET":
            rows = self.customers
            q = params.get("q")
            if q:
                rows = [c for c in rows if q in c["name"] or q in c["phone"]]
            return _json(200, {"data": rows})
        if method == "POST":
            customer = {"id": self.new_id(), "tags": [], "createdAt": "2024-03-14T09:30:00Z",
                        "updatedAt": "2024-03-14T09:30:00Z", **body}
            self.customers.append(customer)
            return _json(201, {"data": customer})
        customer = self._find(self.customers, customer_id)
        if customer is None:
            return _json(404, {"message": "Customer not found"})
        customer.update(body)
        return _json(200, {"data": customer})

    def _fulfillments(self, method, fulfillment_id, params, body):
        if method == "GET":
            rows = self.fulfillments
            if params.get("status"):
                rows = [f for f in rows if f["status"] == params["status"]]
            return _json(200, {"data": rows})
        if method == "POST":
            record = {"id": self.new_id(), "createdAt": "2024-03-14T10:00:00Z", **body}
            self.fulfillments.append(record)
            return _json(201, {"data": record})
        record = self._find(self.fulfillments, fulfillment_id)
        if record is None:
            return _json(404, {"message": "Fulfillment not found"})
        record.update(body)
        return _json(200, {"data": record})

    def dashboard_payload(self, params: Dict) -> Dict:
        days = 3 if params.get("startDate") else int(params.get("range", 7))
        # Distinct totals per range so tests can tell snapshots apart
        base = float(days * 100)
        trend = [
            {"date": f"2024-03-{10 + i:02d}", "totalAmount": base + i * 10,
             "orderCount": i + 1, "averageAmount": (base + i * 10) / (i + 1)}
            for i in range(days if days <= 7 else 7)
        ]
        return {
            "today": {"totalAmount": base, "orderCount": days, "averageAmount": 100.0},
            "trend": trend,
            "recentOrders": [{
                "id": 1, "customerName": "Li Lei", "customerPhone": "13900000001",
                "storeName": "Shanghai Flagship", "employeeName": "Alice",
                "amount": "199.00", "currency": "CNY", "status": "fulfilled",
                "channel": "store", "note": None, "paidAt": None,
                "createdAt": "2024-03-14T10:00:00Z",
            }],
            "recentCustomers": [{
                "id": 1, "name": "Li Lei", "phone": "13900000001", "tags": ["vip"],
                "gender": "male", "source": "walk-in", "preferredStoreName": "Shanghai Flagship",
                "ownerEmployeeName": "Alice", "status": "active",
                "createdAt": "2024-03-01T08:00:00Z",
            }],
        }


def seeded_backend(config: TestConfig) -> FakeBackend:
    backend = FakeBackend()
    backend.add_user(config.operator_phone, config.operator_password, role="admin")
    backend.stores = [
        {"id": 1, "code": "SH001", "name": "Shanghai Flagship", "city": "Shanghai",
         "address": "1 Nanjing Rd", "status": "open"},
        {"id": 2, "code": "BJ001", "name": "Beijing Outlet", "city": "Beijing",
         "address": None, "status": "closed"},
    ]
    backend.employees = [{"id": 1, "name": "Alice", "status": "active", "storeId": 1}]
    backend.customers = [
        {"id": 1, "name": "Li Lei", "phone": "13900000001", "gender": "male",
         "status": "active", "preferredStoreId": 1, "tags": ["vip"],
         "createdAt": "2024-03-01T08:00:00Z", "updatedAt": "2024-03-01T08:00:00Z"},
    ]
    backend.fulfillments = [
        {"id": 1, "customerId": 1, "storeId": 1, "employeeId": 1, "amount": 199,
         "currency": "CNY", "status": "fulfilled", "channel": "store",
         "createdAt": "2024-03-14T10:00:00Z"},
    ]
    return backend


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture
def backend(test_config: TestConfig) -> FakeBackend:
    """Fresh in-memory backend per test."""
    return seeded_backend(test_config)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """State directory: CLI session at the root, browser visitors under visitors/."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def make_app(backend: FakeBackend, state_dir: Path, test_config: TestConfig):
    """
    Build a console app. Calling it twice over the same state directory
    simulates a console restart.
    """
    def _make(**overrides):
        config = {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "CRM_API_BASE_URL": test_config.backend_base_url,
            "CRM_STATE_DIR": str(state_dir),
            "CRM_HTTP_TRANSPORT": backend.transport,
            "CRM_REQUEST_TIMEOUT": test_config.request_timeout,
        }
        config.update(overrides)
        return create_app(config)
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def web(app):
    """Flask test client for the console."""
    return app.test_client()


def login(web, config: TestConfig, next_path: Optional[str] = None):
    data = {"phone": config.operator_phone, "password": config.operator_password}
    if next_path:
        data["next"] = next_path
    return web.post("/login", data=data)


# Visitor keys live in Flask's signed session cookie; these read and plant them
# the way a browser would keep its cookie across a console restart.

def visitor_key_of(web) -> Optional[str]:
    with web.session_transaction() as cookie:
        return cookie.get(VISITOR_KEY)


def adopt_visitor(web, key: str):
    with web.session_transaction() as cookie:
        cookie[VISITOR_KEY] = key
    return web


def visitor_session(app, web) -> Optional[SessionManager]:
    return app.extensions["crm_sessions"].get(visitor_key_of(web))


def visitor_dashboard(app, web):
    return app.extensions["crm_dashboards"].for_key(visitor_key_of(web))


def visitor_dir(state_dir: Path, web) -> Path:
    """Directory holding this visitor's identity.json and cookies.txt."""
    return state_dir / VISITOR_DIR / visitor_key_of(web)


@pytest.fixture
def logged_in(web, test_config: TestConfig, backend: FakeBackend):
    """Console client with an authenticated operator session."""
    response = login(web, test_config)
    if response.status_code != 303:
        pytest.fail(f"Failed to log in: HTTP {response.status_code}")
    backend.calls.clear()
    return web


@pytest.fixture
def session_manager(backend: FakeBackend, state_dir: Path, test_config: TestConfig):
    """
    SessionManager used without the web layer, already logged in.
    """
    manager = SessionManager(state_dir, timeout=test_config.request_timeout, transport=backend.transport)
    with manager.anonymous_client(test_config.backend_base_url) as api:
        user = auth_service.login(api, test_config.operator_phone, test_config.operator_password)
    manager.login(user)
    backend.calls.clear()
    return manager


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "full: Full regression tests")
    config.addinivalue_line("markers", "auth: Login, logout and session lifecycle tests")
    config.addinivalue_line("markers", "client: API client error classification tests")
    config.addinivalue_line("markers", "validation: Client-side form validation tests")
    config.addinivalue_line("markers", "customers: Customer page tests")
    config.addinivalue_line("markers", "fulfillments: Fulfillment page tests")
    config.addinivalue_line("markers", "stores: Store configuration tests")
    config.addinivalue_line("markers", "dashboard: Dashboard tests")
    config.addinivalue_line("markers", "concurrent: Concurrency tests")
    config.addinivalue_line("markers", "cli: CLI command tests")
