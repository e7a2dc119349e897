"""Tests for tool parameters, calls and results."""

import json

import pytest

from doris.tools.base import ClientAction, ToolCall, ToolParameters, ToolResult

# -- ToolParameters ------------------------------------------------------------


def _params(**values) -> ToolParameters:
    return ToolParameters(values)


def test_typed_accessors() -> None:
    p = _params(name="levi", age=8, ratio=0.5, ok=True, tags=["a"], extra={"k": 1})
    assert p.get_str("name") == "levi"
    assert p.get_int("age") == 8
    assert p.get_float("ratio") == 0.5
    assert p.get_float("age") == 8.0
    assert p.get_bool("ok") is True
    assert p.get_list("tags") == ["a"]
    assert p.get_object("extra") == {"k": 1}


def test_accessors_return_default_on_type_mismatch() -> None:
    p = _params(name=3, age="eight", flag="yes")
    assert p.get_str("name") is None
    assert p.get_int("age", 0) == 0
    assert p.get_bool("flag", False) is False
    assert p.get_list("name") == []
    assert p.get_object("age") == {}


def test_bool_is_not_a_number() -> None:
    p = _params(flag=True)
    assert p.get_int("flag") is None
    assert p.get_float("flag") is None


def test_integral_float_reads_as_int() -> None:
    assert _params(n=3.0).get_int("n") == 3
    assert _params(n=3.5).get_int("n") is None


def test_require_str() -> None:
    p = _params(query="coffee", empty="")
    assert p.require_str("query") == "coffee"
    with pytest.raises(KeyError, match="empty"):
        p.require_str("empty")
    with pytest.raises(KeyError, match="missing"):
        p.require_str("missing")


def test_contains_len_keys() -> None:
    p = _params(a=1, b=None)
    assert "a" in p
    assert "c" not in p
    assert len(p) == 2
    assert p.keys() == ["a", "b"]


def test_tool_call_from_json() -> None:
    call = ToolCall.model_validate(
        {"tool_name": "get_directions", "parameters": {"lat": 40.7, "lon": -74.0}, "call_id": "t1"}
    )
    assert call.parameters.get_float("lat") == 40.7
    assert call.parameters.to_dict() == {"lat": 40.7, "lon": -74.0}


# -- ToolResult ----------------------------------------------------------------


def test_success_result() -> None:
    r = ToolResult(data={"time": "12:00 PM"})
    assert r.success
    assert r.status == "success"
    assert json.loads(r.to_content()) == {"time": "12:00 PM"}


def test_error_result() -> None:
    r = ToolResult(error="boom")
    assert not r.success
    assert r.status == "error"
    assert json.loads(r.to_content()) == {"error": "boom"}


def test_empty_data_serializes_as_object() -> None:
    assert ToolResult().to_content() == "{}"


def test_from_client_success() -> None:
    r = ToolResult.from_client(
        call_id="t1", tool_name="search_local_places", status="success", data=[{"name": "Joe's"}]
    )
    assert r.success
    assert r.call_id == "t1"
    assert r.data == [{"name": "Joe's"}]


def test_from_client_error_uses_error_field() -> None:
    r = ToolResult.from_client(
        call_id="t1", tool_name="get_directions", status="error", data={"error": "No route"}
    )
    assert not r.success
    assert r.error == "No route"


def test_from_client_error_without_detail() -> None:
    r = ToolResult.from_client(call_id="t1", tool_name="x", status="error", data=None)
    assert r.error == "Client tool failed"


def test_client_action_dump() -> None:
    action = ClientAction(type="open_maps", parameters={"lat": 1.0, "lon": 2.0})
    assert action.model_dump() == {"type": "open_maps", "parameters": {"lat": 1.0, "lon": 2.0}}
