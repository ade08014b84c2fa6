"""Tests for ContextProxy attribute and item forwarding."""

import asyncio
from dataclasses import dataclass, field

import pytest

from ctxscope.runtime.context import AsyncLocalContext
from ctxscope.runtime.errors import (
    ContextScopeError,
    OutsideScopeError,
    UninitializedContextError,
)
from ctxscope.runtime.keys import ContextKey


@dataclass
class Counter:
    name: str
    count: int = 0
    tags: list = field(default_factory=list)

    def bump(self, by: int = 1) -> int:
        self.count += by
        return self.count


COUNTER = ContextKey[Counter]("counter")
SETTINGS = ContextKey[dict]("settings")


class TestAttributeAccess:
    def test_methods_bind_to_current_value(self, async_context: AsyncLocalContext):
        counter = async_context.register(COUNTER)
        value = Counter(name="c")

        def handler():
            counter.bump()
            return counter.bump(by=2)

        assert async_context.run_with_context(COUNTER, value, handler) == 3
        assert value.count == 3

    def test_in_place_mutation_of_nested_objects(self, async_context: AsyncLocalContext):
        counter = async_context.register(COUNTER)
        value = Counter(name="c")

        async_context.run_with_context(COUNTER, value, lambda: counter.tags.append("seen"))

        assert value.tags == ["seen"]

    def test_delete_attribute(self, async_context: AsyncLocalContext):
        class Bag:
            pass

        key = ContextKey[Bag]("bag")
        bag = async_context.register(key)
        value = Bag()
        value.extra = 1

        def handler():
            del bag.extra

        async_context.run_with_context(key, value, handler)

        assert not hasattr(value, "extra")

    def test_missing_attribute_raises_attribute_error(self, async_context: AsyncLocalContext):
        counter = async_context.register(COUNTER)

        def handler():
            return counter.does_not_exist

        with pytest.raises(AttributeError, match="does_not_exist"):
            async_context.run_with_context(COUNTER, Counter(name="c"), handler)

    def test_repr_works_outside_scope(self, async_context: AsyncLocalContext):
        counter = async_context.register(COUNTER)

        assert repr(counter) == "<ContextProxy counter>"

    def test_dunder_lookups_do_not_touch_scope(self, async_context: AsyncLocalContext):
        counter = async_context.register(COUNTER)

        assert not hasattr(counter, "__wrapped__")


class TestItemAccess:
    def test_mapping_values_support_item_access(self, async_context: AsyncLocalContext):
        settings = async_context.register(SETTINGS)
        value = {"region": "eu"}

        def handler():
            settings["tier"] = "gold"
            del settings["region"]
            return settings["tier"], "region" in settings

        assert async_context.run_with_context(SETTINGS, value, handler) == ("gold", False)
        assert value == {"tier": "gold"}


class TestErrors:
    def test_uninitialized_key_in_active_scope(self, async_context: AsyncLocalContext):
        counter = async_context.register(COUNTER)
        settings = async_context.register(SETTINGS)

        def handler():
            return settings["region"]

        with pytest.raises(UninitializedContextError) as exc_info:
            async_context.run_with_context(COUNTER, Counter(name="c"), handler)

        assert exc_info.value.key_name == "settings"
        assert "before it was initialized" in exc_info.value.message
        assert counter is async_context.accessor(COUNTER)

    def test_errors_share_base_class(self, async_context: AsyncLocalContext):
        counter = async_context.register(COUNTER)

        with pytest.raises(ContextScopeError):
            counter.bump()

        assert issubclass(OutsideScopeError, ContextScopeError)
        assert issubclass(UninitializedContextError, ContextScopeError)

    @pytest.mark.asyncio
    async def test_outside_scope_after_task_finishes(self, async_context: AsyncLocalContext):
        counter = async_context.register(COUNTER)

        async def handler():
            await asyncio.sleep(0)
            return counter.name

        assert await async_context.run_with_context(COUNTER, Counter(name="done"), handler) == "done"

        with pytest.raises(OutsideScopeError):
            _ = counter.name
