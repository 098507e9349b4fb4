import asyncio

import pytest


@pytest.fixture
def server():
    pytest.importorskip("mcp")
    from mcp_server import ChipJobMCPServer

    return ChipJobMCPServer()


def test_lists_every_wrapper_tool(server):
    from src.tools.wrappers import mcp_tools

    tools = asyncio.run(server.list_tools())
    assert [t.name for t in tools] == [t.name for t in mcp_tools]
    design = next(t for t in tools if t.name == "design_chip")
    assert "verilog" in design.inputSchema["properties"]
    assert "verilog" in design.inputSchema.get("required", [])


def test_call_tool_runs_in_executor(server):
    content = asyncio.run(server.call_tool("estimate_ppa", {"cells": 100, "pdk": "asap7"}))
    assert content[0].type == "text"
    assert content[0].text.startswith("PPA Estimate (asap7, 100 cells")


def test_call_tool_reports_invalid_arguments(server):
    content = asyncio.run(server.call_tool("estimate_ppa", {}))
    assert content[0].text.startswith("Error executing estimate_ppa")


def test_unknown_tool(server):
    with pytest.raises(ValueError):
        asyncio.run(server.call_tool("sleep_tool", {}))


@pytest.mark.asyncio
async def test_prompts(server):
    prompts = await server.list_prompts()
    assert {p.name for p in prompts} == {"design-a-chip", "demo"}

    result = await server.get_prompt("design-a-chip", {"description": "a UART transmitter"})
    assert "a UART transmitter" in result.messages[0].content.text
    default = await server.get_prompt("design-a-chip", None)
    assert "ask them what kind" in default.messages[0].content.text
    with pytest.raises(ValueError):
        await server.get_prompt("nope", None)
