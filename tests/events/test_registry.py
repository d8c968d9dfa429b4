"""Tests for autospine.events.registry - SubscriptionRegistry."""

import threading

import pytest

from autospine.core.errors import RegistrationError
from autospine.events.registry import SubscriptionOptions, SubscriptionRegistry
from autospine.execution.retry import ConstantBackoff


async def handler_a(envelope):
    pass


async def handler_b(envelope):
    pass


async def handler_c(envelope, token):
    pass


@pytest.fixture
def registry():
    return SubscriptionRegistry()


class TestRegister:
    def test_lookup_unknown_is_empty(self, registry):
        assert registry.lookup("order.placed") == ()

    def test_registration_order(self, registry):
        registry.register("order.placed", "a", handler_a)
        registry.register("order.placed", "b", handler_b)
        registry.register("order.placed", "c", handler_c)
        assert registry.handler_ids("order.placed") == ["a", "b", "c"]

    def test_replacement_not_duplication(self, registry):
        registry.register("order.placed", "a", handler_a)
        registry.register("order.placed", "b", handler_b)
        registry.register("order.placed", "a", handler_c)

        subs = registry.lookup("order.placed")
        assert [s.handler_id for s in subs] == ["a", "b"]
        assert subs[0].handler is handler_c
        assert len(registry) == 2

    def test_replacement_updates_options(self, registry):
        registry.register("order.placed", "a", handler_a, SubscriptionOptions(max_retries=1))
        registry.register("order.placed", "a", handler_a, SubscriptionOptions(max_retries=7))
        assert registry.lookup("order.placed")[0].options.max_retries == 7

    def test_same_id_on_different_events(self, registry):
        registry.register("order.placed", "notify", handler_a)
        registry.register("order.shipped", "notify", handler_b)
        assert len(registry) == 2
        assert ("order.placed", "notify") in registry
        assert ("order.shipped", "notify") in registry

    def test_returns_subscription(self, registry):
        backoff = ConstantBackoff(max_retries=2, delay=0)
        sub = registry.register("order.placed", "a", handler_a, SubscriptionOptions(retry_backoff=backoff))
        assert sub.event_name == "order.placed"
        assert sub.handler_id == "a"
        assert sub.options.retry_backoff is backoff
        assert sub.is_pattern is False


class TestRegistrationErrors:
    @pytest.mark.parametrize("name", ["", "order..placed", "order placed", "order*"])
    def test_bad_event_name(self, registry, name):
        with pytest.raises(RegistrationError):
            registry.register(name, "a", handler_a)

    @pytest.mark.parametrize("handler_id", ["", "   ", None])
    def test_bad_handler_id(self, registry, handler_id):
        with pytest.raises(RegistrationError):
            registry.register("order.placed", handler_id, handler_a)

    def test_not_callable(self, registry):
        with pytest.raises(RegistrationError):
            registry.register("order.placed", "a", 42)

    def test_handler_taking_no_envelope(self, registry):
        with pytest.raises(RegistrationError):
            registry.register("order.placed", "a", lambda: None)

    def test_handler_needing_too_many_args(self, registry):
        with pytest.raises(RegistrationError):
            registry.register("order.placed", "a", lambda envelope, token, extra: None)

    def test_negative_retries(self):
        with pytest.raises(RegistrationError):
            SubscriptionOptions(max_retries=-1)

    def test_failed_registration_leaves_registry_untouched(self, registry):
        with pytest.raises(RegistrationError):
            registry.register("order.placed", "a", 42)
        assert len(registry) == 0


class TestUnregister:
    def test_remove(self, registry):
        registry.register("order.placed", "a", handler_a)
        registry.register("order.placed", "b", handler_b)
        assert registry.unregister("order.placed", "a") is True
        assert registry.handler_ids("order.placed") == ["b"]

    def test_remove_absent_is_noop(self, registry):
        assert registry.unregister("order.placed", "missing") is False
        registry.register("order.placed", "a", handler_a)
        assert registry.unregister("order.placed", "missing") is False
        assert registry.handler_ids("order.placed") == ["a"]

    def test_reregister_after_removal_goes_last(self, registry):
        registry.register("order.placed", "a", handler_a)
        registry.register("order.placed", "b", handler_b)
        registry.unregister("order.placed", "a")
        registry.register("order.placed", "a", handler_a)
        assert registry.handler_ids("order.placed") == ["b", "a"]

    def test_clear(self, registry):
        registry.register("order.placed", "a", handler_a)
        registry.register("order.*", "b", handler_b)
        registry.clear()
        assert len(registry) == 0
        assert registry.lookup("order.placed") == ()


class TestPatterns:
    def test_wildcards_interleave_by_registration(self, registry):
        registry.register("order.*", "audit", handler_a)
        registry.register("order.placed", "notify", handler_b)
        registry.register("*", "trace", handler_c)
        registry.register("order.placed", "segment", handler_a)

        assert registry.handler_ids("order.placed") == ["audit", "notify", "trace", "segment"]
        assert registry.handler_ids("order.shipped") == ["audit", "trace"]
        assert registry.handler_ids("customer.updated") == ["trace"]

    def test_subscriptions_lists_everything_in_order(self, registry):
        registry.register("order.placed", "a", handler_a)
        registry.register("order.*", "b", handler_b)
        registry.register("customer.updated", "c", handler_c)
        assert [s.handler_id for s in registry.subscriptions()] == ["a", "b", "c"]


class TestSnapshots:
    def test_lookup_is_a_snapshot(self, registry):
        registry.register("order.placed", "a", handler_a)
        snapshot = registry.lookup("order.placed")
        registry.register("order.placed", "b", handler_b)
        registry.unregister("order.placed", "a")
        assert [s.handler_id for s in snapshot] == ["a"]

    def test_concurrent_writers(self, registry):
        def register_many(prefix):
            for i in range(200):
                registry.register("order.placed", f"{prefix}-{i}", handler_a)

        threads = [threading.Thread(target=register_many, args=(p,)) for p in "wxyz"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        ids = registry.handler_ids("order.placed")
        assert len(ids) == 800
        assert len(set(ids)) == 800
