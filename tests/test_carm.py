import pytest

from ackruntime.carm import (
    ACK_ROLE_ACCOUNT_MAP,
    CARMConfigMapNotFoundError,
    CARMError,
    CARMMap,
    ConfigMap,
    EmptyValueError,
    KeyNotFoundError,
)

TEST_ACCOUNT_1 = "012345678912"
TEST_ACCOUNT_ARN_1 = "arn:aws:iam::012345678912:role/S3Access"
TEST_ACCOUNT_2 = "219876543210"
TEST_ACCOUNT_ARN_2 = "arn:aws:iam::012345678912:role/root"
TEST_ACCOUNT_3 = "321987654321"
TEST_ACCOUNT_ARN_3 = ""


class FakeInformer:
    def __init__(self, synced=True):
        self.handlers = []
        self.started = False
        self.stopped = False
        self.synced = synced

    def add_event_handler(self, on_add, on_update, on_delete):
        self.handlers.append((on_add, on_update, on_delete))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def has_synced(self):
        return self.started and self.synced

    def add(self, obj):
        for on_add, _, _ in self.handlers:
            on_add(obj)

    def update(self, old, new):
        for _, on_update, _ in self.handlers:
            on_update(old, new)

    def delete(self, obj):
        for _, _, on_delete in self.handlers:
            on_delete(obj)


@pytest.fixture
def running():
    informer = FakeInformer()
    cache = CARMMap(None)
    cache.run(ACK_ROLE_ACCOUNT_MAP, informer)
    return cache, informer


def test_account_cache_lifecycle(running):
    cache, informer = running
    accounts_map_1 = {TEST_ACCOUNT_1: TEST_ACCOUNT_ARN_1, TEST_ACCOUNT_3: TEST_ACCOUNT_ARN_3}
    accounts_map_2 = {TEST_ACCOUNT_1: TEST_ACCOUNT_ARN_1, TEST_ACCOUNT_2: TEST_ACCOUNT_ARN_2}

    with pytest.raises(CARMConfigMapNotFoundError):
        cache.get_value(TEST_ACCOUNT_1)

    informer.add(ConfigMap(name="random-map", data=accounts_map_1))
    with pytest.raises(CARMConfigMapNotFoundError):
        cache.get_value("random-account-not-exist")
    with pytest.raises(CARMConfigMapNotFoundError):
        cache.get_value(TEST_ACCOUNT_1)

    created = ConfigMap(name=ACK_ROLE_ACCOUNT_MAP, namespace="ack-system", data=accounts_map_1)
    informer.add(created)
    with pytest.raises(KeyNotFoundError):
        cache.get_value("random-account-not-exist")
    with pytest.raises(EmptyValueError):
        cache.get_value(TEST_ACCOUNT_3)
    assert cache.get_value(TEST_ACCOUNT_1) == TEST_ACCOUNT_ARN_1

    updated = ConfigMap(name=ACK_ROLE_ACCOUNT_MAP, namespace="ack-system", data=accounts_map_2)
    informer.update(created, updated)
    with pytest.raises(KeyNotFoundError):
        cache.get_value("random-account-not-exist")
    with pytest.raises(KeyNotFoundError):
        cache.get_value(TEST_ACCOUNT_3)
    assert cache.get_value(TEST_ACCOUNT_1) == TEST_ACCOUNT_ARN_1
    assert cache.get_value(TEST_ACCOUNT_2) == TEST_ACCOUNT_ARN_2

    informer.delete(updated)
    for account in (TEST_ACCOUNT_1, TEST_ACCOUNT_2, TEST_ACCOUNT_3):
        with pytest.raises(CARMConfigMapNotFoundError):
            cache.get_value(account)


def test_error_messages():
    assert str(CARMConfigMapNotFoundError()) == "CARM configmap not found"
    assert str(KeyNotFoundError()) == "key not found in CARM configmap"
    assert str(EmptyValueError()) == "role value is empty in CARM configmap"


def test_errors_share_base_class(running):
    cache, _ = running
    with pytest.raises(CARMError):
        cache.get_value(TEST_ACCOUNT_1)
    with pytest.raises(LookupError):
        cache.get_value(TEST_ACCOUNT_1)


def test_update_of_other_map_is_ignored(running):
    cache, informer = running
    informer.add(ConfigMap(name=ACK_ROLE_ACCOUNT_MAP, data={TEST_ACCOUNT_1: TEST_ACCOUNT_ARN_1}))
    informer.update(None, ConfigMap(name="other", data={}))
    informer.delete(ConfigMap(name="other"))
    assert cache.get_value(TEST_ACCOUNT_1) == TEST_ACCOUNT_ARN_1


def test_non_config_map_objects_are_ignored(running):
    cache, informer = running
    informer.add({"name": ACK_ROLE_ACCOUNT_MAP})
    with pytest.raises(CARMConfigMapNotFoundError):
        cache.get_value(TEST_ACCOUNT_1)


def test_cached_data_is_a_copy(running):
    cache, informer = running
    data = {TEST_ACCOUNT_1: TEST_ACCOUNT_ARN_1}
    informer.add(ConfigMap(name=ACK_ROLE_ACCOUNT_MAP, data=data))
    data[TEST_ACCOUNT_1] = ""
    assert cache.get_value(TEST_ACCOUNT_1) == TEST_ACCOUNT_ARN_1


def test_has_synced_follows_informer():
    cache = CARMMap(None)
    assert cache.has_synced() is False
    informer = FakeInformer(synced=False)
    cache.run(ACK_ROLE_ACCOUNT_MAP, informer)
    assert informer.started is True
    assert cache.has_synced() is False
    informer.synced = True
    assert cache.has_synced() is True