import pytest

from ackruntime.namespace_cache import (
    ANNOTATION_DEFAULT_REGION,
    ANNOTATION_ENDPOINT_URL,
    ANNOTATION_OWNER_ACCOUNT_ID,
    ANNOTATION_TEAM_ID,
    Namespace,
    NamespaceCache,
)


class FakeInformer:
    def __init__(self, synced=True):
        self.handlers = []
        self.started = False
        self.synced = synced

    def add_event_handler(self, on_add, on_update, on_delete):
        self.handlers.append((on_add, on_update, on_delete))

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

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


def running_cache(watch_scope=(), ignored=()):
    cache = NamespaceCache(None, watch_scope, ignored)
    informer = FakeInformer()
    cache.run(informer)
    return cache, informer


def test_namespace_cache():
    cache, informer = running_cache()
    created = Namespace(
        "production",
        {
            ANNOTATION_DEFAULT_REGION: "us-west-2",
            ANNOTATION_OWNER_ACCOUNT_ID: "012345678912",
            ANNOTATION_ENDPOINT_URL: "https://amazon-service.region.amazonaws.com",
        },
    )
    informer.add(created)
    assert cache.get_default_region("production") == "us-west-2"
    assert cache.get_owner_account_id("production") == "012345678912"
    assert cache.get_endpoint_url("production") == "https://amazon-service.region.amazonaws.com"

    updated = Namespace(
        "production",
        {
            ANNOTATION_DEFAULT_REGION: "us-est-1",
            ANNOTATION_OWNER_ACCOUNT_ID: "21987654321",
            ANNOTATION_ENDPOINT_URL: "https://amazon-other-service.region.amazonaws.com",
        },
    )
    informer.update(created, updated)
    assert cache.get_default_region("production") == "us-est-1"
    assert cache.get_owner_account_id("production") == "21987654321"
    assert cache.get_endpoint_url("production") == "https://amazon-other-service.region.amazonaws.com"

    informer.delete(updated)
    assert cache.get_default_region("production") is None


def test_namespace_cache_with_team_id():
    cache, informer = running_cache()
    created = Namespace(
        "production",
        {
            ANNOTATION_DEFAULT_REGION: "us-west-2",
            ANNOTATION_TEAM_ID: "team-a",
            ANNOTATION_ENDPOINT_URL: "https://amazon-service.region.amazonaws.com",
        },
    )
    informer.add(created)
    assert cache.get_default_region("production") == "us-west-2"
    assert cache.get_team_id("production") == "team-a"
    assert cache.get_endpoint_url("production") == "https://amazon-service.region.amazonaws.com"
    assert cache.get_owner_account_id("production") is None

    updated = Namespace(
        "production",
        {
            ANNOTATION_DEFAULT_REGION: "us-est-1",
            ANNOTATION_TEAM_ID: "team-b",
            ANNOTATION_ENDPOINT_URL: "https://amazon-other-service.region.amazonaws.com",
        },
    )
    informer.update(created, updated)
    assert cache.get_default_region("production") == "us-est-1"
    assert cache.get_team_id("production") == "team-b"
    assert cache.get_endpoint_url("production") == "https://amazon-other-service.region.amazonaws.com"

    informer.delete(updated)
    assert cache.get_default_region("production") is None


DEFAULT_SCOPE = (["watch-scope", "watch-scope-2"], ["ignored", "ignored-2"])


@pytest.mark.parametrize(
    "watch_scope, ignored, namespace, expect_hit",
    [
        (*DEFAULT_SCOPE, "watch-scope", True),
        (*DEFAULT_SCOPE, "watch-scope-3", False),
        (*DEFAULT_SCOPE, "ignored", False),
        (*DEFAULT_SCOPE, "random-penguin", False),
        (*DEFAULT_SCOPE, "watch-scope-2", True),
        ([], [], "watch-scope", True),
        ([], ["kube-system"], "kube-system", False),
    ],
    ids=[
        "namespace in scope",
        "namespace not in scope",
        "namespace in ignored",
        "namespace is nor in scope or ignored",
        "namespace is in scope and ignored",
        "cache watching all namespaces - namespace in scope",
        "cache watching all namespaces - namespace is ignored",
    ],
)
def test_scoped_namespace_cache(watch_scope, ignored, namespace, expect_hit):
    cache, informer = running_cache(watch_scope, ignored)
    informer.add(Namespace(namespace, {ANNOTATION_DEFAULT_REGION: "us-west-2"}))
    assert (cache.get_default_region(namespace) is not None) is expect_hit
    assert cache.approved_namespace(namespace) is expect_hit


def test_deletion_policy_by_service():
    cache, informer = running_cache()
    informer.add(
        Namespace(
            "production",
            {
                "s3.services.k8s.aws/deletion-policy": "retain",
                "ecr.services.k8s.aws/deletion-policy": "delete",
            },
        )
    )
    assert cache.get_deletion_policy("production", "s3") == "retain"
    assert cache.get_deletion_policy("production", "S3") == "retain"
    assert cache.get_deletion_policy("production", "ecr") == "delete"
    assert cache.get_deletion_policy("production", "rds") is None
    assert cache.get_deletion_policy("other", "s3") is None


def test_empty_annotation_counts_as_unset():
    cache, informer = running_cache()
    informer.add(Namespace("production", {ANNOTATION_DEFAULT_REGION: ""}))
    assert cache.get_default_region("production") is None


def test_unknown_namespace_returns_none():
    cache, _ = running_cache()
    assert cache.get_team_id("missing") is None
    assert cache.get_endpoint_url("missing") is None


def test_has_synced():
    cache = NamespaceCache(None, [], [])
    assert cache.has_synced() is False
    informer = FakeInformer(synced=False)
    cache.run(informer)
    assert cache.has_synced() is False
    informer.synced = True
    assert cache.has_synced() is True