import pytest

from freeagent_mcp.errors import UnknownCode, UpstreamCodeMissing
from freeagent_mcp.sessions import AuthSessionStore


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return AuthSessionStore(ttl_seconds=600, clock=clock)


def test_happy_path(store):
    code = store.create("chal1", "client-A", "https://caller/cb", "s1")
    store.attach_upstream_code(code, "up-code-1")
    context = store.consume(code)

    assert context.proxy_code == code
    assert context.pkce_challenge == "chal1"
    assert context.client_id == "client-A"
    assert context.redirect_uri == "https://caller/cb"
    assert context.state == "s1"
    assert context.upstream_code == "up-code-1"


def test_codes_are_unique_and_opaque(store):
    codes = {store.create("c", "client-A", "https://caller/cb") for _ in range(50)}
    assert len(codes) == 50
    assert all(len(code) >= 32 for code in codes)


def test_consume_is_single_use(store):
    code = store.create("chal1", "client-A", "https://caller/cb", "s1")
    store.attach_upstream_code(code, "up-code-1")
    store.consume(code)
    with pytest.raises(UnknownCode):
        store.consume(code)
    assert len(store) == 0


def test_consume_without_upstream_code(store):
    code = store.create("chal1", "client-A", "https://caller/cb", "s1")
    with pytest.raises(UpstreamCodeMissing):
        store.consume(code)
    # Callback can still arrive afterwards
    store.attach_upstream_code(code, "up-code-1")
    assert store.consume(code).upstream_code == "up-code-1"


def test_attach_unknown_code(store):
    with pytest.raises(UnknownCode):
        store.attach_upstream_code("missing", "up-code-1")


def test_consume_unknown_code(store):
    with pytest.raises(UnknownCode):
        store.consume("missing")


def test_state_is_optional(store):
    code = store.create("chal1", "client-A", "https://caller/cb")
    assert store.get(code).state is None


def test_expired_context_is_dropped(store, clock):
    code = store.create("chal1", "client-A", "https://caller/cb", "s1")
    store.attach_upstream_code(code, "up-code-1")
    clock.now += 601
    assert store.get(code) is None
    with pytest.raises(UnknownCode):
        store.consume(code)


def test_attach_after_expiry(store, clock):
    code = store.create("chal1", "client-A", "https://caller/cb", "s1")
    clock.now += 600
    with pytest.raises(UnknownCode):
        store.attach_upstream_code(code, "up-code-1")


def test_cold_start(store):
    code = store.create("chal1", "client-A", "https://caller/cb", "s1")
    store.clear()
    with pytest.raises(UnknownCode):
        store.attach_upstream_code(code, "up-code-1")
