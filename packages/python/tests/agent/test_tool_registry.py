"""Tests for the tool catalog: classification, definitions and execute dispatch."""
import json
from datetime import datetime, UTC

import pytest
from bson import ObjectId

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from erp_agent.agent.tool_registry import ToolCatalog, ToolOutcome, looks_mutating, normalize_result
from fakes import make_catalog


def test_read_only_and_mutating_classification():
    catalog = make_catalog()
    assert catalog.is_read_only_tool("list_customers")
    assert catalog.is_mutating("create_invoice")
    # explicit registration wins over the name
    assert catalog.is_read_only_tool("get_ledger")


@pytest.mark.parametrize("name,expected", [
    ("create_invoice", True),
    ("updateVendor", True),
    ("delete-item", True),
    ("post_journal_entry", True),
    ("patch_order", True),
    ("put_price", True),
    ("list_customers", False),
    ("compute_totals", False),
    ("get_input_schema", False),
])
def test_unlisted_tools_use_write_verbs(name, expected):
    assert looks_mutating(name) is expected
    assert ToolCatalog().is_mutating(name) is expected


def test_definitions_use_function_format():
    defs = make_catalog().definitions()
    names = {d["function"]["name"] for d in defs}
    assert names == {"list_customers", "create_invoice", "get_ledger"}
    for d in defs:
        assert d["type"] == "function"
        assert d["function"]["parameters"]["type"] == "object"


def test_decorator_registration():
    catalog = ToolCatalog()

    @catalog.tool("get_item", description="Get an item")
    async def get_item(context, params):
        return {"sku": params["sku"]}

    assert "get_item" in catalog
    assert catalog.is_read_only_tool("get_item")


@pytest.mark.asyncio
async def test_execute_unknown_tool():
    outcome = await ToolCatalog().execute("nope", None, {})
    assert outcome == ToolOutcome(success=False, error="Unknown tool: nope")


@pytest.mark.asyncio
async def test_execute_invalid_json_arguments():
    outcome = await make_catalog().execute("list_customers", None, "{not json")
    assert outcome.success is False
    assert outcome.error.startswith("Invalid JSON arguments")


@pytest.mark.asyncio
async def test_execute_parses_json_string_arguments():
    outcome = await make_catalog().execute("list_customers", None, '{"limit": 3}')
    assert outcome.success is True
    assert outcome.result["limit"] == 3


@pytest.mark.asyncio
async def test_execute_handler_exception_becomes_failure():
    outcome = await make_catalog().execute("get_ledger", None, {})
    assert outcome.success is False
    assert outcome.error == "ledger service unavailable"


def test_normalize_result_shapes():
    assert normalize_result({"error": "bad"}) == ToolOutcome(success=False, error="bad")
    assert normalize_result({"success": False, "error": "denied"}).error == "denied"
    ok = normalize_result({"success": True, "result": [1, 2]})
    assert ok.success and ok.result == [1, 2]
    assert normalize_result([1]) == ToolOutcome(success=True, result=[1])
    assert normalize_result(None) == ToolOutcome(success=True, result=None)


def test_to_content_serializes_dates_and_object_ids():
    oid = ObjectId()
    when = datetime(2026, 1, 2, tzinfo=UTC)
    content = json.loads(ToolOutcome(success=True, result={"id": oid, "at": when}).to_content())
    assert content == {"id": str(oid), "at": when.isoformat()}
    assert json.loads(ToolOutcome(success=False, error="x").to_content()) == {"error": "x"}
