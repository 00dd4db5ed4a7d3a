import unittest
from typing import Any, Dict, Iterator, List

from composeflow.compose.lambdas import (
    any_lambda,
    collectable_lambda,
    invokable_lambda,
    streamable_lambda,
    transformable_lambda,
)
from composeflow.exceptions import Unsupported
from composeflow.schema.stream import StreamReader, concat_stream, stream_reader_from_array

CTX = object()


def add_role(kvs: Dict[str, Any], *opts) -> Dict[str, Any]:
    return {**kvs, "role": "cat", "opts": list(opts)}


def count_words(ctx, text: str) -> int:
    assert ctx is CTX
    return len(text.split())


def shout(text: str, options) -> str:
    suffix = "".join(options)
    return text.upper() + suffix


def spell(text: str) -> Iterator[str]:
    for ch in text:
        yield ch


def total(numbers: StreamReader[int]) -> int:
    return sum(numbers)


def doubled(numbers: StreamReader[int]) -> Iterator[int]:
    for n in numbers:
        yield n * 2


class TestLambdaTypes(unittest.TestCase):

    def test_types_from_annotations(self):
        node = invokable_lambda(add_role)
        self.assertEqual(node.input_type, Dict[str, Any])
        self.assertEqual(node.output_type, Dict[str, Any])
        self.assertEqual(node.name, "add_role")

    def test_ctx_parameter_skipped_for_input_type(self):
        node = invokable_lambda(count_words)
        self.assertEqual(node.input_type, str)
        self.assertEqual(node.output_type, int)

    def test_stream_element_types(self):
        self.assertEqual(streamable_lambda(spell).output_type, str)
        self.assertEqual(collectable_lambda(total).input_type, int)
        node = transformable_lambda(doubled)
        self.assertEqual((node.input_type, node.output_type), (int, int))

    def test_explicit_types_win(self):
        node = invokable_lambda(lambda x: x, str, str, name="identity")
        self.assertEqual((node.input_type, node.output_type, node.name), (str, str, "identity"))

    def test_unannotated_lambda_is_any(self):
        node = invokable_lambda(lambda x: x)
        self.assertEqual((node.input_type, node.output_type), (Any, Any))


class TestLambdaCalls(unittest.TestCase):

    def test_varargs_receive_options(self):
        node = invokable_lambda(add_role)
        output = node.adapter.invoke(CTX, {"a": 1}, ["o1", "o2"])
        self.assertEqual(output, {"a": 1, "role": "cat", "opts": ["o1", "o2"]})

    def test_ctx_first(self):
        self.assertEqual(invokable_lambda(count_words).adapter.invoke(CTX, "a b c", []), 3)

    def test_options_parameter(self):
        node = invokable_lambda(shout)
        self.assertEqual(node.adapter.invoke(CTX, "hi", ["!", "?"]), "HI!?")

    def test_keyword_only_ctx(self):
        def fn(x, *, ctx):
            return ctx is CTX

        self.assertTrue(invokable_lambda(fn).adapter.invoke(CTX, 1, []))

    def test_default_parameters_kept(self):
        def fn(x, factor=3):
            return x * factor

        self.assertEqual(invokable_lambda(fn).adapter.invoke(CTX, 2, []), 6)

    def test_required_extra_parameter_rejected(self):
        def fn(x, y):
            return x + y

        with self.assertRaisesRegex(ValueError, "Required parameter 'y'"):
            invokable_lambda(fn)

    def test_function_without_input_rejected(self):
        with self.assertRaisesRegex(ValueError, "positional parameter"):
            invokable_lambda(lambda: 1)

    def test_streamable_generator(self):
        node = streamable_lambda(spell)
        self.assertEqual(node.adapter.natives, ("stream",))
        self.assertEqual(list(node.adapter.stream(CTX, "abc", [])), ["a", "b", "c"])
        self.assertEqual(node.adapter.invoke(CTX, "abc", []), "abc")

    def test_streamable_must_return_iterable(self):
        node = streamable_lambda(lambda text: text.upper())
        with self.assertRaisesRegex(TypeError, "StreamReader or an iterable"):
            node.adapter.stream(CTX, "abc", [])

    def test_collectable_and_transformable(self):
        self.assertEqual(collectable_lambda(total).adapter.collect(CTX, stream_reader_from_array([1, 2, 3]), []), 6)
        reader = transformable_lambda(doubled).adapter.transform(CTX, stream_reader_from_array([1, 2]), [])
        self.assertEqual(list(reader), [2, 4])

    def test_any_lambda_uses_each_function(self):
        node = any_lambda(
            invoke=lambda x: f"invoke:{x}",
            stream=lambda x: iter([f"stream:{x}"]),
            input_type=str,
            output_type=str,
        )
        self.assertEqual(node.adapter.invoke(CTX, "a", []), "invoke:a")
        self.assertEqual(concat_stream(node.adapter.stream(CTX, "a", [])), "stream:a")
        self.assertEqual(node.adapter.natives, ("invoke", "stream"))

    def test_any_lambda_needs_one_function(self):
        with self.assertRaises(Unsupported):
            any_lambda()

    def test_lambda_list_output(self):
        node = invokable_lambda(lambda xs: [x * 2 for x in xs], List[int], List[int])
        self.assertEqual(node.adapter.invoke(CTX, [1, 2], []), [2, 4])


if __name__ == "__main__":
    unittest.main()
