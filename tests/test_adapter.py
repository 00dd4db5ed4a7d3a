import unittest

from parameterized import parameterized

from composeflow.compose.adapter import MODES, NodeAdapter, passthrough_adapter
from composeflow.exceptions import Unsupported
from composeflow.schema.stream import StreamReader, concat_stream, stream_reader_from_array


def _upper_invoke(ctx, text, opts):
    return text.upper()


def _upper_stream(ctx, text, opts):
    return stream_reader_from_array([c.upper() for c in text])


def _upper_collect(ctx, reader, opts):
    return "".join(reader).upper()


def _upper_transform(ctx, reader, opts):
    return stream_reader_from_array([c.upper() for c in reader])


NATIVES = {
    "invoke": _upper_invoke,
    "stream": _upper_stream,
    "collect": _upper_collect,
    "transform": _upper_transform,
}


def _call(adapter, mode, text):
    if mode in ("collect", "transform"):
        output = getattr(adapter, mode)(None, stream_reader_from_array(list(text)), [])
    else:
        output = getattr(adapter, mode)(None, text, [])
    if mode in ("stream", "transform"):
        assert isinstance(output, StreamReader), f"{mode} must return a StreamReader"
        return concat_stream(output)
    return output


class TestNodeAdapter(unittest.TestCase):

    @parameterized.expand([(native, mode) for native in MODES for mode in MODES])
    def test_every_mode_derived_from_any_native(self, native, mode):
        """
        A node implementing only one mode can be called in all four, and
        every mode produces the same value.
        """
        adapter = NodeAdapter(**{native: NATIVES[native]})
        self.assertEqual(_call(adapter, mode, "abc"), "ABC")

    @parameterized.expand([
        ("invoke_only", ["invoke"], {"invoke": "invoke", "stream": "invoke", "collect": "invoke", "transform": "invoke"}),
        ("stream_only", ["stream"], {"invoke": "stream", "transform": "stream", "collect": "stream"}),
        ("invoke_and_transform", ["invoke", "transform"], {"invoke": "invoke", "stream": "invoke", "collect": "transform", "transform": "transform"}),
        ("collect_only", ["collect"], {"invoke": "collect", "transform": "collect"}),
    ])
    def test_method_for(self, _, natives, expected):
        adapter = NodeAdapter(**{n: NATIVES[n] for n in natives})
        for mode, method in expected.items():
            self.assertEqual(adapter.method_for(mode), method, mode)
        self.assertEqual(adapter.natives, tuple(m for m in MODES if m in natives))

    def test_no_native_mode(self):
        with self.assertRaises(Unsupported):
            NodeAdapter()

    def test_passthrough(self):
        adapter = passthrough_adapter()
        self.assertEqual(adapter.invoke(None, {"a": 1}, []), {"a": 1})
        reader = stream_reader_from_array([1, 2])
        self.assertIs(adapter.transform(None, reader, []), reader)

    def test_options_forwarded(self):
        seen = []
        adapter = NodeAdapter(invoke=lambda ctx, x, opts: seen.append(opts) or x)
        concat_stream(adapter.stream(None, "x", ["opt"]))
        self.assertEqual(seen, [["opt"]])


if __name__ == "__main__":
    unittest.main()
