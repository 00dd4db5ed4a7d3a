import json
import unittest
from typing import Any, Dict, List

from parameterized import parameterized

from composeflow.compose import (
    CancellationToken,
    Chain,
    ToolsNode,
    ToolsNodeConfig,
    invokable_lambda,
    with_node_key,
    with_tool_option,
)
from composeflow.compose.tools_node import ToolMessageSlots, with_tool_list
from composeflow.exceptions import Canceled, NodeExecutionError, ToolError
from composeflow.schema.message import Message, RoleType
from composeflow.schema.stream import concat_stream

from fakes import FakeStreamTool, FakeTool, calling, tool_call, with_locale

WEATHER_PARAMS = {
    "type": "object",
    "properties": {"city": {"type": "string"}, "days": {"type": "integer", "minimum": 1}},
    "required": ["city"],
}


def _weather(arguments: str, options) -> str:
    city = json.loads(arguments)["city"]
    return f"sunny in {city} ({options.locale})"


class TestToolsNodeInvoke(unittest.TestCase):

    def test_one_message_per_call_in_order(self):
        slow = FakeTool("slow", result="slow done", delay=0.05)
        fast = FakeTool("fast", result="fast done")
        node = ToolsNode(ToolsNodeConfig(tools=[slow, fast]))
        output = node.invoke(calling(tool_call("slow"), tool_call("fast")))
        self.assertEqual([m.content for m in output], ["slow done", "fast done"])
        self.assertEqual([m.tool_call_id for m in output], ["call_slow", "call_fast"])
        self.assertTrue(all(m.role == RoleType.TOOL for m in output))
        self.assertEqual([m.name for m in output], ["slow", "fast"])

    def test_concurrent_by_default(self):
        a, b = FakeTool("a"), FakeTool("b")
        ToolsNode(ToolsNodeConfig(tools=[a, b])).invoke(calling(tool_call("a"), tool_call("b")))
        self.assertTrue(all(t.startswith("composeflow-tools") for t in a.threads + b.threads))

    def test_sequential(self):
        order: List[str] = []

        def record(name):
            return lambda args, options: order.append(name) or name

        tools = [FakeTool(n, result=record(n)) for n in ("x", "y", "z")]
        node = ToolsNode(ToolsNodeConfig(tools=tools, execute_sequentially=True))
        node.invoke(calling(tool_call("z"), tool_call("x"), tool_call("y")))
        self.assertEqual(order, ["z", "x", "y"])

    def test_no_calls(self):
        node = ToolsNode(ToolsNodeConfig(tools=[FakeTool("a")]))
        self.assertEqual(node.invoke(calling()), [])

    def test_stream_only_tool_is_concatenated(self):
        tool = FakeStreamTool("story", ["once ", "upon ", "a time"])
        output = ToolsNode(ToolsNodeConfig(tools=[tool])).invoke(calling(tool_call("story")))
        self.assertEqual(output[0].content, "once upon a time")

    def test_tool_options_reach_tools(self):
        tool = FakeTool("weather", result=_weather, params=WEATHER_PARAMS)
        node = ToolsNode(ToolsNodeConfig(tools=[tool]))
        output = node.invoke(calling(tool_call("weather", '{"city": "Oslo"}')), with_locale("nb"))
        self.assertEqual(output[0].content, "sunny in Oslo (nb)")

    def test_tool_list_override(self):
        configured = FakeTool("search", result="configured")
        override = FakeTool("search", result="override")
        node = ToolsNode(ToolsNodeConfig(tools=[configured]))
        output = node.invoke(calling(tool_call("search")), with_tool_list(override))
        self.assertEqual(output[0].content, "override")
        self.assertEqual(configured.calls, [])


class TestToolsNodeErrors(unittest.TestCase):

    def test_unknown_tool(self):
        node = ToolsNode(ToolsNodeConfig(tools=[FakeTool("a")]))
        with self.assertRaises(ToolError) as cm:
            node.invoke(calling(tool_call("ghost")))
        self.assertEqual(cm.exception.tool_name, "ghost")
        self.assertIsInstance(cm.exception.cause, LookupError)
        self.assertIn("tool 'ghost' failed: not found", str(cm.exception))

    def test_unknown_tools_handler(self):
        seen = []

        def handler(name: str, arguments: str) -> str:
            seen.append((name, arguments))
            return f"{name} is not available"

        node = ToolsNode(ToolsNodeConfig(tools=[FakeTool("a")], unknown_tools_handler=handler))
        output = node.invoke(calling(tool_call("ghost", '{"q": 1}')))
        self.assertEqual(output[0].content, "ghost is not available")
        self.assertEqual(output[0].tool_call_id, "call_ghost")
        self.assertEqual(seen, [("ghost", '{"q": 1}')])

    def test_tool_failure_names_tool(self):
        node = ToolsNode(ToolsNodeConfig(tools=[FakeTool("flaky", fail=RuntimeError("timeout"))]))
        with self.assertRaises(ToolError) as cm:
            node.invoke(calling(tool_call("flaky")))
        self.assertEqual(str(cm.exception), "tool 'flaky' failed: timeout")
        self.assertNotIsInstance(cm.exception, NodeExecutionError)

    @parameterized.expand([
        ("missing_required", "{}", "'city' is a required property"),
        ("wrong_type", '{"city": 3}', "city: 3 is not of type 'string'"),
        ("below_minimum", '{"city": "Oslo", "days": 0}', "days: 0 is less than the minimum of 1"),
        ("not_json", "{city", "not valid JSON"),
    ])
    def test_argument_validation(self, _, arguments, message):
        tool = FakeTool("weather", result=_weather, params=WEATHER_PARAMS)
        node = ToolsNode(ToolsNodeConfig(tools=[tool]))
        with self.assertRaises(ToolError) as cm:
            node.invoke(calling(tool_call("weather", arguments)))
        self.assertIn(message, str(cm.exception))
        self.assertEqual(tool.calls, [])

    def test_validation_can_be_disabled(self):
        tool = FakeTool("weather", params=WEATHER_PARAMS)
        node = ToolsNode(ToolsNodeConfig(tools=[tool], validate_arguments=False))
        self.assertEqual(node.invoke(calling(tool_call("weather", "{}")))[0].content, "ok")

    def test_empty_arguments_accepted_without_schema(self):
        tool = FakeTool("ping")
        node = ToolsNode(ToolsNodeConfig(tools=[tool]))
        self.assertEqual(node.invoke(calling(tool_call("ping", "")))[0].content, "ok")
        self.assertEqual(tool.calls, [""])

    def test_duplicate_tool_names(self):
        with self.assertRaisesRegex(ValueError, "duplicate tool name 'a'"):
            ToolsNode(ToolsNodeConfig(tools=[FakeTool("a"), FakeTool("a")]))

    def test_tool_without_run_method(self):
        class Mute:
            def info(self):
                return FakeTool("mute").info()

        with self.assertRaisesRegex(TypeError, "neither invokable_run nor streamable_run"):
            ToolsNode(ToolsNodeConfig(tools=[Mute()]))

    def test_cancelled_token(self):
        token = CancellationToken()
        token.cancel("user left")
        node = ToolsNode(ToolsNodeConfig(tools=[FakeTool("a")]))
        with self.assertRaises(Canceled):
            node.invoke(calling(tool_call("a")), token=token)


class TestToolsNodeStream(unittest.TestCase):

    def test_slots_per_call(self):
        story = FakeStreamTool("story", ["a", "b"])
        plain = FakeTool("plain", result="done")
        node = ToolsNode(ToolsNodeConfig(tools=[story, plain], execute_sequentially=True))
        chunks = list(node.stream(calling(tool_call("story"), tool_call("plain"))))
        self.assertEqual(len(chunks), 3)
        for chunk in chunks:
            self.assertIsInstance(chunk, ToolMessageSlots)
            self.assertEqual(len(chunk), 2)
            self.assertEqual(sum(slot is not None for slot in chunk), 1)
        self.assertEqual([c[0].content for c in chunks[:2]], ["a", "b"])
        self.assertEqual(chunks[2][1].content, "done")

    def test_concat_matches_invoke(self):
        tools = [FakeStreamTool("story", ["once ", "upon"]), FakeTool("plain", result="done")]
        node = ToolsNode(ToolsNodeConfig(tools=tools))
        message = calling(tool_call("story"), tool_call("plain"))
        streamed = concat_stream(node.stream(message))
        invoked = ToolsNode(ToolsNodeConfig(tools=tools)).invoke(message)
        self.assertEqual([m.content for m in streamed], [m.content for m in invoked])
        self.assertEqual([m.tool_call_id for m in streamed], ["call_story", "call_plain"])

    def test_error_mid_stream(self):
        tool = FakeStreamTool("story", ["a"], fail_after=IOError("disk"))
        reader = ToolsNode(ToolsNodeConfig(tools=[tool])).stream(calling(tool_call("story")))
        self.assertEqual(reader.recv()[0].content, "a")
        with self.assertRaises(ToolError) as cm:
            reader.recv()
        self.assertEqual(cm.exception.tool_name, "story")

    def test_unknown_tool_fails_before_streaming(self):
        node = ToolsNode(ToolsNodeConfig(tools=[FakeTool("a")]))
        with self.assertRaisesRegex(ToolError, "ghost"):
            node.stream(calling(tool_call("ghost")))


class TestToolsNodeInGraph(unittest.TestCase):

    def _chain(self, tool) -> Chain:
        chain = Chain(Message, List[str])
        chain.append_tools_node(ToolsNode(ToolsNodeConfig(tools=[tool])), with_node_key("tools"))
        chain.append_lambda(invokable_lambda(lambda msgs: [m.content for m in msgs], List[Message], List[str]))
        return chain

    def test_tool_options_routed_by_kind(self):
        tool = FakeTool("weather", result=_weather, params=WEATHER_PARAMS)
        runnable = self._chain(tool).compile()
        message = calling(tool_call("weather", '{"city": "Rome"}'))
        self.assertEqual(runnable.invoke(message, with_tool_option(with_locale("it"))), ["sunny in Rome (it)"])
        self.assertEqual(concat_stream(runnable.stream(message)), ["sunny in Rome (en)"])

    def test_tool_error_surfaces_host_key_and_tool_name(self):
        runnable = self._chain(FakeTool("flaky", fail=RuntimeError("down"))).compile()
        with self.assertRaises(NodeExecutionError) as cm:
            runnable.invoke(calling(tool_call("flaky")))
        self.assertEqual(cm.exception.node_key, "tools")
        self.assertIsInstance(cm.exception.cause, ToolError)
        self.assertEqual(cm.exception.cause.tool_name, "flaky")
        self.assertEqual(str(cm.exception), "node 'tools' failed: tool 'flaky' failed: down")

    def test_tool_error_under_custom_host_key(self):
        chain = Chain(Any, Any)
        chain.append_tools_node(
            ToolsNode(ToolsNodeConfig(tools=[FakeTool("greet", fail=RuntimeError("boom"))])),
            with_node_key("my_tools"),
        )
        runnable = chain.compile()
        with self.assertRaises(NodeExecutionError) as cm:
            runnable.invoke(calling(tool_call("greet")))
        self.assertIn("my_tools", str(cm.exception))
        self.assertIn("greet", str(cm.exception))
        with self.assertRaisesRegex(NodeExecutionError, "node 'my_tools' failed: tool 'greet' failed: boom"):
            concat_stream(runnable.stream(calling(tool_call("greet"))))

    def test_unknown_tool_under_host_key(self):
        runnable = self._chain(FakeTool("a")).compile()
        with self.assertRaises(NodeExecutionError) as cm:
            runnable.invoke(calling(tool_call("ghost")))
        self.assertEqual(cm.exception.node_key, "tools")
        self.assertIsInstance(cm.exception.cause.cause, LookupError)


if __name__ == "__main__":
    unittest.main()
