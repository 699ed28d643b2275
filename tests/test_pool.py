import pytest

from clusteretcd.pool import (
    MAX_NUM_CACHED_CLIENTS,
    MAX_NUM_OPEN_CLIENTS,
    EtcdClientPool,
    PoolError,
    new_default_pool,
)

DEFAULT_ENDPOINTS = ["https://10.0.0.1:2379"]


class FakeClient:
    def __init__(self, endpoints):
        self.endpoints = list(endpoints)
        self.closed = False
        self.fail_list = False

    def member_list(self):
        if self.fail_list:
            raise OSError("down")
        return []

    def close(self):
        self.closed = True


class Recorder:
    def __init__(self):
        self.num_new_calls = 0
        self.num_endpoint_calls = 0
        self.num_health_calls = 0
        self.num_close_calls = 0
        self.new_func_err = None
        self.health_err = None
        self.endpoint_err = None
        self.close_err = None
        self.updated_endpoints = None

    def callbacks(self):
        return self._new, self._endpoints, self._health, self._close

    def _endpoints(self):
        self.num_endpoint_calls += 1
        if self.updated_endpoints is not None:
            eps, self.updated_endpoints = self.updated_endpoints, None
            return eps
        if self.endpoint_err is not None:
            err, self.endpoint_err = self.endpoint_err, None
            raise err
        return list(DEFAULT_ENDPOINTS)

    def _new(self):
        self.num_new_calls += 1
        if self.new_func_err is not None:
            err, self.new_func_err = self.new_func_err, None
            raise err
        return FakeClient(DEFAULT_ENDPOINTS)

    def _health(self, client):
        self.num_health_calls += 1
        err, self.health_err = self.health_err, None
        if err is not None:
            raise err

    def _close(self, client):
        self.num_close_calls += 1
        err, self.close_err = self.close_err, None
        if err is not None:
            raise err

    def counts(self):
        return (
            self.num_new_calls,
            self.num_endpoint_calls,
            self.num_health_calls,
            self.num_close_calls,
        )


@pytest.fixture
def rec():
    return Recorder()


def test_get_happy_path(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    client = pool.get()
    assert isinstance(client, FakeClient)
    assert rec.counts() == (1, 1, 1, 0)


def test_endpoint_failure_returns_immediately(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    rec.endpoint_err = RuntimeError("fail")
    with pytest.raises(PoolError):
        pool.get()
    assert rec.counts() == (0, 1, 0, 0)


def test_double_get_returns_new_client(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    first = pool.get()
    assert rec.counts() == (1, 1, 1, 0)
    second = pool.get()
    assert second is not first
    assert rec.counts() == (2, 2, 2, 0)


def test_reuses_clients_returned(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    first = pool.get()
    assert rec.counts() == (1, 1, 1, 0)
    pool.put_back(first)
    second = pool.get()
    assert second is first
    assert rec.counts() == (1, 2, 2, 0)


def test_closes_on_channel_capacity(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    clients = [pool.get() for _ in range(MAX_NUM_CACHED_CLIENTS + 1)]
    for client in clients:
        pool.put_back(client)
    n = MAX_NUM_CACHED_CLIENTS + 1
    assert rec.counts() == (n, n, n, 1)


def test_new_client_with_open_clients(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    clients = [pool.get() for _ in range(MAX_NUM_OPEN_CLIENTS)]
    n = MAX_NUM_OPEN_CLIENTS
    assert rec.counts() == (n, n, n, 0)

    with pytest.raises(PoolError, match="too many active cache clients"):
        pool.get()

    pool.put_back(clients[0])
    client = pool.get()
    assert client is clients[0]
    assert rec.counts() == (n, n + 2, n + 1, 0)


def test_closes_return_open_clients(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    clients = [pool.get() for _ in range(MAX_NUM_OPEN_CLIENTS)]
    n = MAX_NUM_OPEN_CLIENTS
    assert rec.counts() == (n, n, n, 0)

    for client in clients:
        pool.put_back(client)
    assert rec.num_close_calls == MAX_NUM_CACHED_CLIENTS

    for _ in range(MAX_NUM_OPEN_CLIENTS):
        assert isinstance(pool.get(), FakeClient)

    assert rec.num_new_calls == n + MAX_NUM_CACHED_CLIENTS
    assert pool.open_slots() == 0
    assert rec.num_endpoint_calls == n * 2
    assert rec.num_health_calls == n * 2
    assert rec.num_close_calls == MAX_NUM_CACHED_CLIENTS


def test_closes_return_open_client_close_error(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    clients = [pool.get() for _ in range(MAX_NUM_OPEN_CLIENTS)]
    n = MAX_NUM_OPEN_CLIENTS
    assert rec.counts() == (n, n, n, 0)

    rec.close_err = RuntimeError("fail")
    for client in clients:
        pool.put_back(client)
    assert rec.num_close_calls == MAX_NUM_CACHED_CLIENTS

    for _ in range(MAX_NUM_OPEN_CLIENTS):
        assert isinstance(pool.get(), FakeClient)

    assert rec.num_new_calls == n + MAX_NUM_CACHED_CLIENTS
    assert rec.num_endpoint_calls == n * 2
    assert rec.num_health_calls == n * 2
    assert rec.num_close_calls == MAX_NUM_CACHED_CLIENTS


def test_failing_on_creation_returns_clients(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    for _ in range(MAX_NUM_OPEN_CLIENTS):
        rec.new_func_err = RuntimeError("constant error")
        assert isinstance(pool.get(), FakeClient)
    n = MAX_NUM_OPEN_CLIENTS
    assert rec.counts() == (n * 2, n, n, 0)


def test_closes_and_creates_on_error(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    client = pool.get()
    assert rec.counts() == (1, 1, 1, 0)
    pool.put_back(client)

    rec.health_err = RuntimeError("some error")
    fresh = pool.get()
    assert fresh is not client
    assert rec.counts() == (2, 2, 3, 1)


def test_health_check_close_error_retries_and_returns_client(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    client = pool.get()
    assert rec.counts() == (1, 1, 1, 0)
    pool.put_back(client)

    rec.health_err = RuntimeError("some health error")
    rec.close_err = RuntimeError("some close error")
    fresh = pool.get()
    assert isinstance(fresh, FakeClient)
    assert rec.counts() == (2, 2, 3, 1)


def test_updates_endpoints(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    client = pool.get()
    assert rec.counts() == (1, 1, 1, 0)
    pool.put_back(client)

    expected = ["https://10.0.0.2:2379"]
    rec.updated_endpoints = expected
    client = pool.get()
    assert client.endpoints == expected
    assert rec.counts() == (1, 2, 2, 0)


def test_put_back_none_is_ignored(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    pool.put_back(None)
    assert rec.counts() == (0, 0, 0, 0)
    assert pool.open_slots() == MAX_NUM_OPEN_CLIENTS


def test_multi_returns_do_not_block(rec):
    pool = EtcdClientPool(*rec.callbacks(), acquire_timeout=0.05, retry_sleep=0)
    for _ in range(MAX_NUM_OPEN_CLIENTS * 3):
        pool.put_back(FakeClient(DEFAULT_ENDPOINTS))
    assert rec.counts() == (
        0,
        0,
        0,
        MAX_NUM_OPEN_CLIENTS * 3 - MAX_NUM_CACHED_CLIENTS,
    )


def test_gives_up_after_retries(rec):
    def always_unhealthy(client):
        raise RuntimeError("always unhealthy")

    pool = EtcdClientPool(
        rec._new,
        rec._endpoints,
        always_unhealthy,
        rec._close,
        acquire_timeout=0.05,
        retry_sleep=0,
    )
    with pytest.raises(PoolError, match="giving up"):
        pool.get()
    assert rec.num_new_calls == 3
    assert rec.num_close_calls == 3
    assert pool.open_slots() == MAX_NUM_OPEN_CLIENTS


def test_default_pool_health_and_close():
    created = []

    def new_func():
        client = FakeClient(DEFAULT_ENDPOINTS)
        created.append(client)
        return client

    pool = new_default_pool(new_func, lambda: list(DEFAULT_ENDPOINTS))
    clients = [pool.get() for _ in range(MAX_NUM_CACHED_CLIENTS + 1)]
    assert clients == created
    for client in clients:
        pool.put_back(client)
    assert [c.closed for c in clients] == [False] * MAX_NUM_CACHED_CLIENTS + [True]