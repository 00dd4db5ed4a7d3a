import unittest
from typing import Any, Dict, List

from parameterized import parameterized

from composeflow.compose import (
    END,
    START,
    Graph,
    GraphBranch,
    invokable_lambda,
    streamable_lambda,
    with_input_key,
    with_output_key,
)
from composeflow.exceptions import CompileError, NodeExecutionError, PredicateError
from composeflow.schema.stream import StreamReader, concat_stream


def _kv(key: str, value: Any):
    return invokable_lambda(lambda kvs: {key: value}, Dict[str, Any], Dict[str, Any], name=f"emit_{key}")


def _identity(kvs: Dict[str, Any]) -> Dict[str, Any]:
    return kvs


def _upper(text: str) -> str:
    return text.upper()


def linear_graph(*keys: str) -> Graph:
    graph = Graph(Dict[str, Any], Dict[str, Any], name="linear")
    for key in keys:
        graph.add_lambda_node(key, invokable_lambda(_identity))
    graph.set_entry_point(keys[0])
    for a, b in zip(keys, keys[1:]):
        graph.add_edge(a, b)
    graph.set_finish_point(keys[-1])
    return graph


class TestGraphBuildErrors(unittest.TestCase):

    def test_duplicate_node(self):
        graph = Graph()
        graph.add_lambda_node("a", invokable_lambda(_identity))
        graph.add_lambda_node("a", invokable_lambda(_identity))
        with self.assertRaisesRegex(CompileError, "node 'a' already exists"):
            graph.compile()

    @parameterized.expand([
        ("start", START),
        ("end", END),
        ("empty", ""),
    ])
    def test_reserved_keys(self, _, key):
        graph = Graph()
        graph.add_lambda_node(key, invokable_lambda(_identity))
        with self.assertRaisesRegex(CompileError, "invalid node key"):
            graph.compile()

    def test_edge_to_unknown_node(self):
        graph = linear_graph("a")
        graph.add_edge("a", "ghost")
        with self.assertRaisesRegex(CompileError, "node 'ghost' does not exist"):
            graph.compile()

    def test_first_error_wins(self):
        graph = Graph()
        graph.add_edge("x", "y")
        graph.add_lambda_node("a", invokable_lambda(_identity))
        graph.add_lambda_node("a", invokable_lambda(_identity))
        with self.assertRaisesRegex(CompileError, "x -> y"):
            graph.compile()

    def test_empty_graph(self):
        with self.assertRaisesRegex(CompileError, "has no nodes"):
            Graph(name="empty").compile()

    def test_join_edge_needs_output_key(self):
        graph = Graph()
        graph.add_lambda_node("a", invokable_lambda(_identity))
        graph.add_fan_in_node("join")
        graph.add_edge("a", "join")
        with self.assertRaisesRegex(CompileError, "need an output_key"):
            graph.compile()

    def test_join_duplicate_output_key(self):
        graph = Graph()
        graph.add_lambda_node("a", invokable_lambda(_identity))
        graph.add_lambda_node("b", invokable_lambda(_identity))
        graph.add_fan_in_node("join")
        graph.add_edge("a", "join", output_key="x")
        graph.add_edge("b", "join", output_key="x")
        with self.assertRaisesRegex(CompileError, r"join 'join': output_key\[x\] is duplicated"):
            graph.compile()

    def test_branch_needs_two_targets(self):
        graph = linear_graph("a")
        graph.add_branch("a", GraphBranch(lambda v: "a", ["a"]))
        with self.assertRaisesRegex(CompileError, "at least 2 targets"):
            graph.compile()

    def test_node_lookup(self):
        graph = linear_graph("a", "b")
        self.assertEqual(graph.node("a").name, "_identity")
        self.assertEqual(graph.successors("a"), ["b"])
        with self.assertRaises(KeyError):
            graph.node(START)


class TestGraphStructure(unittest.TestCase):

    def test_start_not_connected(self):
        graph = Graph(name="g")
        graph.add_lambda_node("a", invokable_lambda(_identity))
        graph.set_finish_point("a")
        with self.assertRaisesRegex(CompileError, "start node is not connected"):
            graph.compile()

    def test_end_not_connected(self):
        graph = Graph(name="g")
        graph.add_lambda_node("a", invokable_lambda(_identity))
        graph.set_entry_point("a")
        with self.assertRaisesRegex(CompileError, "end node is not connected"):
            graph.compile()

    def test_dangling_node(self):
        graph = linear_graph("a")
        graph.add_lambda_node("orphan", invokable_lambda(_identity))
        graph.add_edge("a", "orphan")
        with self.assertRaisesRegex(CompileError, "node 'orphan' has no outbound edge"):
            graph.compile()

    def test_node_without_inbound_edge(self):
        graph = linear_graph("a")
        graph.add_lambda_node("source", invokable_lambda(_identity))
        graph.add_edge("source", "a")
        with self.assertRaisesRegex(CompileError, "node 'source' has no inbound edge"):
            graph.compile()

    def test_cycle_is_reported_with_path(self):
        graph = linear_graph("a", "b")
        graph.add_edge("b", "a")
        with self.assertRaises(CompileError) as cm:
            graph.compile()
        self.assertIn("has a cycle: a -> b -> a", str(cm.exception))

    def test_cycle_off_the_main_path(self):
        graph = linear_graph("a")
        graph.add_lambda_node("x", invokable_lambda(_identity))
        graph.add_lambda_node("y", invokable_lambda(_identity))
        graph.add_edge("x", "y")
        graph.add_edge("y", "x")
        with self.assertRaisesRegex(CompileError, "has a cycle"):
            graph.compile()

    def test_builder_stays_mutable_after_compile(self):
        graph = linear_graph("a")
        runnable = graph.compile()
        graph.add_lambda_node("b", invokable_lambda(_identity))
        self.assertNotIn("b", runnable.compiled.nodes)
        self.assertEqual(runnable.invoke({"k": 1}), {"k": 1})


class TestGraphTypes(unittest.TestCase):

    def test_edge_mismatch_message(self):
        graph = Graph(str, str, name="g")
        graph.add_lambda_node("a", invokable_lambda(_upper))
        graph.add_lambda_node("b", invokable_lambda(_identity))
        graph.set_entry_point("a")
        graph.add_edge("a", "b")
        graph.set_finish_point("b")
        with self.assertRaises(CompileError) as cm:
            graph.compile()
        self.assertEqual(
            str(cm.exception),
            "graph edge[a]-[b]: start node's output type[str] and "
            "end node's input type[Dict[str, Any]] mismatch",
        )

    def test_graph_input_mismatch(self):
        graph = Graph(int, str)
        graph.add_lambda_node("a", invokable_lambda(_upper))
        graph.set_entry_point("a")
        graph.set_finish_point("a")
        with self.assertRaisesRegex(CompileError, r"edge\[__start__\]-\[a\]"):
            graph.compile()

    def test_wider_source_is_checked_at_runtime(self):
        """
        An ``Any`` output feeding a mapping input compiles; the edge is
        checked when a value crosses it.
        """
        graph = Graph(Any, Dict[str, Any])
        graph.add_lambda_node("a", invokable_lambda(lambda v: v))
        graph.add_lambda_node("b", invokable_lambda(_identity))
        graph.set_entry_point("a")
        graph.add_edge("a", "b")
        graph.set_finish_point("b")
        runnable = graph.compile()
        self.assertEqual(runnable.graph.edges["a", "b"]["check_type"], Dict[str, Any])
        self.assertEqual(runnable.invoke({"x": 1}), {"x": 1})
        with self.assertRaises(NodeExecutionError) as cm:
            runnable.invoke("not a mapping")
        self.assertEqual(cm.exception.node_key, "b")
        self.assertIn("not assignable", str(cm.exception))

    def test_runtime_check_in_stream_mode(self):
        graph = Graph(Any, Dict[str, Any])
        graph.add_lambda_node("a", invokable_lambda(lambda v: v))
        graph.add_lambda_node("b", invokable_lambda(_identity))
        graph.set_entry_point("a")
        graph.add_edge("a", "b")
        graph.set_finish_point("b")
        with self.assertRaises(NodeExecutionError):
            concat_stream(graph.compile().stream(42))

    def test_invoke_rejects_wrong_graph_input(self):
        runnable = linear_graph("a").compile()
        with self.assertRaisesRegex(TypeError, "expects input of type Dict"):
            runnable.invoke("text")

    def test_passthrough_inherits_type(self):
        graph = Graph(str, str)
        graph.add_passthrough_node("p")
        graph.add_lambda_node("up", invokable_lambda(_upper))
        graph.set_entry_point("p")
        graph.add_edge("p", "up")
        graph.set_finish_point("up")
        runnable = graph.compile()
        self.assertEqual(runnable.compiled.nodes["p"].output_type, str)
        self.assertEqual(runnable.invoke("hi"), "HI")


class TestFanIn(unittest.TestCase):

    def _diamond(self, left, right) -> Graph:
        graph = Graph(Dict[str, Any], Dict[str, Any])
        graph.add_passthrough_node("split")
        graph.add_lambda_node("left", left)
        graph.add_lambda_node("right", right)
        graph.add_lambda_node("merge", invokable_lambda(_identity))
        graph.set_entry_point("split")
        graph.add_edge("split", "left")
        graph.add_edge("split", "right")
        graph.add_edge("left", "merge")
        graph.add_edge("right", "merge")
        graph.set_finish_point("merge")
        return graph

    def test_mapping_outputs_merge(self):
        runnable = self._diamond(_kv("x", 1), _kv("y", 2)).compile()
        self.assertEqual(runnable.invoke({}), {"x": 1, "y": 2})

    def test_mapping_outputs_merge_in_stream_mode(self):
        runnable = self._diamond(_kv("x", 1), _kv("y", 2)).compile()
        self.assertEqual(concat_stream(runnable.stream({})), {"x": 1, "y": 2})

    def test_duplicate_keys_fail(self):
        runnable = self._diamond(_kv("x", 1), _kv("x", 2)).compile()
        with self.assertRaises(NodeExecutionError) as cm:
            runnable.invoke({})
        self.assertEqual(cm.exception.node_key, "merge")
        self.assertIn("duplicate key 'x'", str(cm.exception))

    def test_duplicate_keys_fail_in_stream_mode(self):
        runnable = self._diamond(_kv("x", 1), _kv("x", 2)).compile()
        with self.assertRaises(NodeExecutionError) as cm:
            concat_stream(runnable.stream({}))
        self.assertEqual(cm.exception.node_key, "merge")
        self.assertIn("duplicate key 'x'", str(cm.exception))

    def test_join_collects_by_output_key(self):
        graph = Graph(str, Dict[str, str])
        graph.add_lambda_node("up", invokable_lambda(_upper))
        graph.add_lambda_node("rev", invokable_lambda(lambda s: s[::-1], str, str))
        graph.add_fan_in_node("join")
        graph.set_entry_point("up")
        graph.set_entry_point("rev")
        graph.add_edge("up", "join", output_key="upper")
        graph.add_edge("rev", "join", output_key="reversed")
        graph.set_finish_point("join")
        runnable = graph.compile()
        self.assertEqual(runnable.compiled.nodes["join"].output_type, Dict[str, str])
        self.assertEqual(runnable.invoke("abc"), {"upper": "ABC", "reversed": "cba"})
        self.assertEqual(concat_stream(runnable.stream("abc")), {"upper": "ABC", "reversed": "cba"})

    def test_io_keys(self):
        graph = Graph(Dict[str, Any], Dict[str, Any])
        graph.add_lambda_node("up", invokable_lambda(_upper), with_input_key("text"), with_output_key("shout"))
        graph.set_entry_point("up")
        graph.set_finish_point("up")
        runnable = graph.compile()
        self.assertEqual(runnable.compiled.nodes["up"].input_type, Dict[str, Any])
        self.assertEqual(runnable.compiled.nodes["up"].output_type, Dict[str, str])
        self.assertEqual(runnable.invoke({"text": "hi"}), {"shout": "HI"})
        with self.assertRaisesRegex(NodeExecutionError, "input key 'text' not found"):
            runnable.invoke({"other": "hi"})


class TestGraphBranch(unittest.TestCase):

    def _routed(self, predicate, stream: bool = False) -> Graph:
        graph = Graph(str, str, name="router")
        graph.add_passthrough_node("check")
        graph.add_lambda_node("loud", invokable_lambda(_upper))
        graph.add_lambda_node("quiet", invokable_lambda(lambda s: s.lower(), str, str))
        graph.set_entry_point("check")
        graph.add_branch("check", GraphBranch(predicate, {"yes": "loud", "no": "quiet"}, stream=stream))
        graph.set_finish_point("loud")
        graph.set_finish_point("quiet")
        return graph

    @parameterized.expand([
        ("loud", "Hello!", "HELLO!"),
        ("quiet", "Hello", "hello"),
    ])
    def test_routes_by_predicate(self, _, text, expected):
        runnable = self._routed(lambda s: "yes" if s.endswith("!") else "no").compile()
        self.assertEqual(runnable.invoke(text), expected)
        self.assertEqual(concat_stream(runnable.stream(text)), expected)

    def test_stream_predicate_reads_first_chunk(self):
        def first_chunk(reader: StreamReader[str]) -> str:
            return "yes" if reader.recv().startswith("!") else "no"

        runnable = self._routed(first_chunk, stream=True).compile()
        self.assertEqual(runnable.invoke("!Hi"), "!HI")
        self.assertEqual(runnable.invoke("Hi"), "hi")

    def test_unknown_target(self):
        runnable = self._routed(lambda s: "maybe").compile()
        with self.assertRaises(NodeExecutionError) as cm:
            runnable.invoke("x")
        self.assertEqual(cm.exception.node_key, "check_branch")
        self.assertIsInstance(cm.exception.cause, PredicateError)
        self.assertIn("unknown target 'maybe'", str(cm.exception))

    def test_predicate_failure(self):
        def broken(s):
            raise RuntimeError("no decision")

        with self.assertRaises(NodeExecutionError) as cm:
            self._routed(broken).compile().invoke("x")
        self.assertIsInstance(cm.exception.cause, PredicateError)
        self.assertIn("no decision", str(cm.exception))

    def test_skipped_side_does_not_run(self):
        ran: List[str] = []

        def track(name):
            def fn(s: str) -> str:
                ran.append(name)
                return s

            return invokable_lambda(fn, name=name)

        graph = Graph(str, str)
        graph.add_passthrough_node("check")
        graph.add_lambda_node("a", track("a"))
        graph.add_lambda_node("a2", track("a2"))
        graph.add_lambda_node("b", track("b"))
        graph.set_entry_point("check")
        graph.add_branch("check", GraphBranch(lambda s: "b", ["a", "b"]))
        graph.add_edge("a", "a2")
        graph.set_finish_point("a2")
        graph.set_finish_point("b")
        self.assertEqual(graph.compile().invoke("x"), "x")
        self.assertEqual(ran, ["b"])


class TestSubgraph(unittest.TestCase):

    def test_nested_graph_and_stream_lambda(self):
        inner = Graph(str, str, name="inner")
        inner.add_lambda_node("spell", streamable_lambda(lambda s: iter(s), str, str))
        inner.set_entry_point("spell")
        inner.set_finish_point("spell")

        outer = Graph(str, str, name="outer")
        outer.add_graph_node("sub", inner)
        outer.add_lambda_node("up", invokable_lambda(_upper))
        outer.set_entry_point("sub")
        outer.add_edge("sub", "up")
        outer.set_finish_point("up")
        runnable = outer.compile()
        self.assertEqual(runnable.invoke("abc"), "ABC")
        self.assertEqual(concat_stream(runnable.stream("abc")), "ABC")
        self.assertEqual(runnable.compiled.nodes["sub"].subgraph.name, "inner")

    def test_compiled_runnable_as_subgraph(self):
        inner = linear_graph("a").compile()
        outer = Graph(Dict[str, Any], Dict[str, Any])
        outer.add_graph_node("sub", inner)
        outer.set_entry_point("sub")
        outer.set_finish_point("sub")
        self.assertEqual(outer.compile().invoke({"k": "v"}), {"k": "v"})

    def test_subgraph_error_names_host(self):
        outer = Graph(Dict[str, Any], Dict[str, Any])
        outer.add_graph_node("sub", Graph(name="hollow"))
        outer.set_entry_point("sub")
        outer.set_finish_point("sub")
        with self.assertRaisesRegex(CompileError, "failed to compile subgraph 'sub'"):
            outer.compile()

    def test_not_a_subgraph(self):
        outer = Graph()
        outer.add_graph_node("sub", object())
        with self.assertRaisesRegex(CompileError, "cannot use object as a subgraph"):
            outer.compile()


if __name__ == "__main__":
    unittest.main()
