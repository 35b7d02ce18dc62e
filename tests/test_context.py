import pytest

from grr.context import background
from grr.errors import PassCancelled


def test_child_cancel_does_not_reach_parent():
    parent = background()
    child = parent.with_cancel()
    child.cancel()
    assert child.cancelled
    assert not parent.cancelled


def test_parent_cancel_reaches_descendants():
    parent = background()
    child = parent.with_cancel().with_value("k", 1)
    parent.cancel()
    assert child.cancelled
    with pytest.raises(PassCancelled):
        child.raise_if_cancelled()


def test_cancel_through_value_context_targets_nearest_scope():
    root = background()
    scope = root.with_cancel()
    leaf = scope.with_value("k", "v")
    leaf.cancel()
    assert scope.cancelled
    assert not root.cancelled


def test_values_are_looked_up_by_identity():
    key, other = object(), object()
    ctx = background().with_value(key, "a").with_value(other, "b")
    assert ctx.value(key) == "a"
    assert ctx.value(other) == "b"
    assert ctx.value(object()) is None
