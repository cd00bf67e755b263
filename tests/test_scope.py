import pytest

from msl.errors import TemplateError
from msl.scope import EMPTY_SCOPE, Scope, child, get, resolve_template


def test_child_copies_parent_and_adds_bindings():
    parent = child(EMPTY_SCOPE, {"user": "alice"})
    kid = child(parent, {"post": "42"})

    assert get(kid, "user") == "alice"
    assert get(kid, "post") == "42"
    assert get(parent, "post") is None


def test_child_is_a_snapshot_not_a_view():
    parent = Scope({"user": "alice"})
    kid = child(parent)
    rebound = parent.bind("user", "bob")

    assert get(kid, "user") == "alice"
    assert get(parent, "user") == "alice"
    assert get(rebound, "user") == "bob"


def test_shadowing_in_descendant_leaves_ancestor_untouched():
    parent = Scope({"id": "root"})
    kid = child(parent).bind("id", "leaf")

    assert kid["id"] == "leaf"
    assert parent["id"] == "root"


def test_bind_overwrites_within_same_scope():
    scope = EMPTY_SCOPE.bind("x", "1").bind("x", "2")
    assert dict(scope) == {"x": "2"}


def test_scope_is_read_only():
    scope = Scope({"x": "1"})
    with pytest.raises(TypeError):
        scope["x"] = "2"


def test_resolve_template():
    scope = Scope({"user": "alice", "post": "42"})
    assert resolve_template(scope, "{user}/{post}") == "alice/42"
    assert resolve_template(scope, "./media/{user}/{user}") == "./media/alice/alice"


def test_resolve_template_unbound_name():
    with pytest.raises(TemplateError) as excinfo:
        resolve_template(Scope({"user": "alice"}), "{user}/{post}")
    assert excinfo.value.name == "post"
    assert excinfo.value.error_code == "TEMPLATE_ERROR"


def test_non_placeholder_braces_are_literal():
    scope = Scope({"a": "1"})
    assert resolve_template(scope, "out/{a}/{not a name}/{}") == "out/1/{not a name}/{}"
    assert resolve_template(EMPTY_SCOPE, "plain/path") == "plain/path"
