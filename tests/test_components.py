import unittest
from typing import Any, Dict, List

from jinja2.exceptions import UndefinedError
from parameterized import parameterized

from composeflow.components import document, embedding, indexer, model, prompt, retriever
from composeflow.components.prompt import FormatType, from_messages, messages_placeholder
from composeflow.compose import (
    END,
    START,
    Chain,
    Graph,
    invokable_lambda,
    with_embedding_option,
    with_indexer_option,
    with_loader_option,
    with_node_key,
    with_retriever_option,
)
from composeflow.exceptions import CompileError
from composeflow.schema import Document, Source
from composeflow.schema.message import Message, RoleType, assistant_message, system_message, user_message

from fakes import EchoModel, FakeRetriever


class SplitLoader:
    """Loads one document per line of ``src.uri``; the parser option may rewrite lines."""

    def __init__(self):
        self.encodings: List[str] = []

    def load(self, src: Source, *opts: Any) -> List[Document]:
        options = document.get_loader_common_options(None, *opts)
        settings = document.get_impl_specific_options(LoaderSettings(), *opts)
        self.encodings.append(settings.encoding)
        parse = options.parser or (lambda line: line)
        return [Document(id=str(i), content=parse(line)) for i, line in enumerate(src.uri.split("\n"))]


class LoaderSettings:
    def __init__(self):
        self.encoding = "utf-8"


class DropEmpty:
    def transform(self, docs: List[Document], *opts: Any) -> List[Document]:
        return [d for d in docs if d.content.strip()]


class MemoryIndexer:
    def __init__(self):
        self.stored: Dict[str, List[Document]] = {}

    def store(self, docs: List[Document], *opts: Any) -> List[str]:
        options = indexer.get_common_options(None, *opts)
        for sub_index in options.sub_indexes or ["default"]:
            self.stored.setdefault(sub_index, []).extend(docs)
        return [d.id for d in docs]


class LengthEmbedder:
    def embed_strings(self, texts: List[str], *opts: Any) -> List[List[float]]:
        options = embedding.get_common_options(None, *opts)
        scale = 2.0 if options.model == "double" else 1.0
        return [[len(t) * scale] for t in texts]


class TestChatTemplate(unittest.TestCase):

    def test_fstring(self):
        template = from_messages(
            FormatType.FSTRING,
            system_message("You are a {role}."),
            user_message("{query}"),
        )
        output = template.format({"role": "poet", "query": "hi"})
        self.assertEqual([m.content for m in output], ["You are a poet.", "hi"])
        self.assertEqual([m.role for m in output], [RoleType.SYSTEM, RoleType.USER])

    def test_jinja2(self):
        template = from_messages(
            FormatType.JINJA2,
            user_message("{% for item in items %}{{ item }};{% endfor %}"),
        )
        self.assertEqual(template.format({"items": ["a", "b"]})[0].content, "a;b;")

    def test_templates_are_not_modified(self):
        original = user_message("{query}")
        template = from_messages(FormatType.FSTRING, original)
        template.format({"query": "first"})
        self.assertEqual(original.content, "{query}")

    def test_unknown_fstring_variable(self):
        template = from_messages(FormatType.FSTRING, user_message("{query}"))
        with self.assertRaises(KeyError):
            template.format({})

    def test_unknown_jinja2_variable(self):
        template = from_messages(FormatType.JINJA2, user_message("{{ query }}"))
        with self.assertRaises(UndefinedError):
            template.format({})

    def test_placeholder_splices_history(self):
        history = [user_message("earlier"), assistant_message("reply")]
        template = from_messages(
            FormatType.FSTRING,
            system_message("sys"),
            messages_placeholder("history"),
            user_message("{query}"),
        )
        output = template.format({"history": history, "query": "now"})
        self.assertEqual([m.content for m in output], ["sys", "earlier", "reply", "now"])

    @parameterized.expand([
        ("absent", {}, []),
        ("none", {"history": None}, []),
        ("single_message", {"history": user_message("one")}, ["one"]),
    ])
    def test_optional_placeholder(self, _, variables, expected):
        placeholder = messages_placeholder("history", optional=True)
        output = placeholder.format(variables, FormatType.FSTRING)
        self.assertEqual([m.content for m in output], expected)

    def test_required_placeholder_missing(self):
        template = from_messages(FormatType.FSTRING, messages_placeholder("history"))
        with self.assertRaisesRegex(KeyError, "history"):
            template.format({})

    def test_placeholder_wrong_type(self):
        template = from_messages(FormatType.FSTRING, messages_placeholder("history"))
        with self.assertRaisesRegex(TypeError, "must hold a list of Message, got str"):
            template.format({"history": "not messages"})

    def test_template_feeding_a_model(self):
        template = from_messages(FormatType.FSTRING, system_message("be brief"), user_message("{q}"))
        echo = EchoModel()
        chain = Chain(Dict[str, Any], Message)
        chain.append_chat_template(template)
        chain.append_chat_model(echo)
        runnable = chain.compile()
        runnable.invoke({"q": "why"})
        self.assertEqual([m.content for m in echo.prompts[0]], ["be brief", "why"])


class TestComponentOptions(unittest.TestCase):

    @parameterized.expand([
        ("temperature", model.with_temperature(0.3), "temperature", 0.3),
        ("max_tokens", model.with_max_tokens(64), "max_tokens", 64),
        ("model", model.with_model("big"), "model", "big"),
        ("top_p", model.with_top_p(0.9), "top_p", 0.9),
        ("stop", model.with_stop(["\n"]), "stop", ["\n"]),
        ("tool_choice", model.with_tool_choice("none"), "tool_choice", "none"),
    ])
    def test_model_options(self, _, opt, field, value):
        options = model.get_common_options(None, opt)
        self.assertEqual(getattr(options, field), value)

    def test_later_option_wins(self):
        options = model.get_common_options(
            model.Options(temperature=1.0), model.with_temperature(0.1), model.with_temperature(0.2)
        )
        self.assertEqual(options.temperature, 0.2)

    def test_retriever_options(self):
        embedder = LengthEmbedder()
        options = retriever.get_common_options(
            None,
            retriever.with_index("kb"),
            retriever.with_sub_index("faq"),
            retriever.with_top_k(3),
            retriever.with_score_threshold(0.5),
            retriever.with_embedding(embedder),
        )
        self.assertEqual(
            options,
            retriever.Options(index="kb", sub_index="faq", top_k=3, score_threshold=0.5, embedding=embedder),
        )

    def test_indexer_options(self):
        embedder = LengthEmbedder()
        options = indexer.get_common_options(
            indexer.Options(), indexer.with_sub_indexes(["a", "b"]), indexer.with_embedding(embedder)
        )
        self.assertEqual(options, indexer.Options(sub_indexes=["a", "b"], embedding=embedder))
        self.assertEqual(indexer.get_common_options(None), indexer.Options())

    def test_impl_specific_options_target_their_type(self):
        def utf16(settings: LoaderSettings) -> None:
            settings.encoding = "utf-16"

        opt = document.wrap_loader_impl_specific_opt_fn(utf16)
        self.assertEqual(document.get_impl_specific_options(LoaderSettings(), opt).encoding, "utf-16")

        other = model.Options()
        model.get_impl_specific_options(other, opt)
        self.assertEqual(other, model.Options())

    def test_common_helpers_ignore_impl_specific_options(self):
        opt = model.wrap_impl_specific_opt_fn(lambda o: setattr(o, "temperature", 9.0))
        self.assertIsNone(model.get_common_options(None, opt).temperature)

    def test_unannotated_impl_specific_applies_to_any_object(self):
        opt = prompt.wrap_impl_specific_opt_fn(lambda o: setattr(o, "encoding", "latin-1"))
        self.assertEqual(prompt.get_impl_specific_options(LoaderSettings(), opt).encoding, "latin-1")


class TestDocumentPipeline(unittest.TestCase):

    def _ingest_chain(self, loader, store) -> Chain:
        chain = Chain(Source, List[str])
        chain.append_loader(loader, with_node_key("load"))
        chain.append_document_transformer(DropEmpty())
        chain.append_indexer(store, with_node_key("store"))
        return chain

    def test_load_transform_index(self):
        loader, store = SplitLoader(), MemoryIndexer()
        runnable = self._ingest_chain(loader, store).compile()
        ids = runnable.invoke(Source(uri="alpha\n\nbeta"))
        self.assertEqual(ids, ["0", "2"])
        self.assertEqual([d.content for d in store.stored["default"]], ["alpha", "beta"])

    def test_options_routed_by_component_kind(self):
        def utf16(settings: LoaderSettings) -> None:
            settings.encoding = "utf-16"

        loader, store = SplitLoader(), MemoryIndexer()
        runnable = self._ingest_chain(loader, store).compile()
        runnable.invoke(
            Source(uri="a\nb"),
            with_loader_option(document.with_parser(str.upper), document.wrap_loader_impl_specific_opt_fn(utf16)),
            with_indexer_option(indexer.with_sub_indexes(["x", "y"])),
        )
        self.assertEqual(loader.encodings, ["utf-16"])
        self.assertEqual(sorted(store.stored), ["x", "y"])
        self.assertEqual([d.content for d in store.stored["x"]], ["A", "B"])

    def test_stream_mode_concatenates_component_output(self):
        store = MemoryIndexer()
        runnable = self._ingest_chain(SplitLoader(), store).compile()
        self.assertEqual(list(runnable.stream(Source(uri="a\nb"))), [["0", "1"]])

    def test_retriever_and_embedder_side_by_side(self):
        graph = Graph(str, Dict[str, Any])
        graph.add_retriever_node("search", FakeRetriever())
        graph.add_lambda_node("words", invokable_lambda(lambda q: q.split(), str, List[str]))
        graph.add_embedding_node("embed", LengthEmbedder())
        graph.add_lambda_node(
            "titles", invokable_lambda(lambda docs: {"titles": [d.content for d in docs]}, List[Document], Dict[str, Any])
        )
        graph.add_lambda_node(
            "vectors", invokable_lambda(lambda vs: {"vectors": vs}, List[List[float]], Dict[str, Any])
        )
        graph.add_edge(START, "search")
        graph.add_edge(START, "words")
        graph.add_edge("search", "titles")
        graph.add_edge("words", "embed")
        graph.add_edge("titles", END)
        graph.add_edge("vectors", END)
        graph.add_edge("embed", "vectors")
        output = graph.compile().invoke(
            "to be",
            with_retriever_option(retriever.with_top_k(1)).designate_node("search"),
            with_embedding_option(embedding.with_model("double")),
        )
        self.assertEqual(output, {"titles": ["to"], "vectors": [[4.0], [4.0]]})

    @parameterized.expand([
        ("retriever", "append_retriever", "retriever object has no 'retrieve' method"),
        ("indexer", "append_indexer", "indexer object has no 'store' method"),
        ("embedding", "append_embedding", "embedder object has no 'embed_strings' method"),
        ("loader", "append_loader", "loader object has no 'load' method"),
        ("chat_model", "append_chat_model", "chat model object has no 'generate' method"),
    ])
    def test_wrong_component(self, _, method, message):
        chain = Chain(Any, Any)
        getattr(chain, method)(object())
        with self.assertRaisesRegex(CompileError, message):
            chain.compile()

    def test_missing_component(self):
        chain = Chain(str, List[Document])
        chain.append_retriever(None)
        with self.assertRaisesRegex(CompileError, "retriever is None"):
            chain.compile()


if __name__ == "__main__":
    unittest.main()
