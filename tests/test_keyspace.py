from __future__ import annotations

import unittest

from fake_store import FakeConnector, FakeStore, SortedSet

from keyscope.config.models import ConnectionSettings, ExecutorSettings
from keyscope.keyspace.inspect import inspect_key, type_label
from keyscope.keyspace.namespaces import list_namespaces, parse_keyspace_info, parse_namespace
from keyscope.keyspace.tree import project_keyspace, render_lines, walk
from keyscope.runtime_logging import configure_runtime_logging
from keyscope.store.errors import ErrorKind
from keyscope.store.executor import CommandExecutor


class KeyspaceTreeTests(unittest.TestCase):
    def test_groups_by_separator_in_first_seen_order(self) -> None:
        nodes = project_keyspace(["user:2:name", "order:1", "user:1:name", "user:2:mail", "flat"])

        self.assertEqual([(node.name, node.kind) for node in nodes], [("user", "folder"), ("order", "folder"), ("flat", "leaf")])
        user = nodes[0]
        self.assertEqual(user.path, "user")
        self.assertEqual(user.level, 0)
        self.assertEqual([child.path for child in user.children], ["user:2", "user:1"])
        leaf = user.children[0].children[1]
        self.assertEqual((leaf.name, leaf.path, leaf.level, leaf.kind), ("mail", "user:2:mail", 2, "leaf"))

    def test_key_that_is_also_a_prefix(self) -> None:
        nodes = project_keyspace(["a", "a:b"])

        self.assertEqual([(node.name, node.kind) for node in nodes], [("a", "leaf"), ("a", "folder")])
        self.assertEqual(nodes[1].children[0].path, "a:b")

    def test_custom_and_empty_separator(self) -> None:
        nodes = project_keyspace(["a/b", "a/c"], separator="/")
        self.assertEqual(nodes[0].child_count, 2)

        flat = project_keyspace(["a:b", "a:c"], separator="")
        self.assertEqual([(node.name, node.kind) for node in flat], [("a:b", "leaf"), ("a:c", "leaf")])

    def test_empty_segments_are_kept(self) -> None:
        nodes = project_keyspace(["a::b"])
        self.assertEqual([node.path for node in walk(nodes)], ["a", "a:", "a::b"])

    def test_projection_is_rederivable(self) -> None:
        keys = ["x:1", "x:2", "y"]
        self.assertEqual(project_keyspace(keys), project_keyspace(list(keys)))

    def test_render_lines(self) -> None:
        lines = render_lines(project_keyspace(["a:1", "a:2", "b"]))
        self.assertEqual(lines, ["a/ (2)", "  1", "  2", "b"])


class KeyInspectionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        configure_runtime_logging(level="off")
        self.store = FakeStore()
        self.store.set("s", "hello", ttl=30)
        self.store.set("h", {"f": "v"})
        self.store.set("l", ["1", "2"])
        self.store.set("st", {"m"})
        self.store.set("z", SortedSet({"b": 2.0, "a": 1.0}))
        self.executor = CommandExecutor(
            ConnectionSettings(),
            ExecutorSettings(retries=0),
            transport_factory=FakeConnector(self.store),
        )
        await self.executor.connect()

    async def test_string_with_ttl(self) -> None:
        record = await inspect_key(self.executor, "s")

        self.assertEqual((record.type, record.ttl, record.exists, record.value), ("string", 30, True, "hello"))
        self.assertEqual(record.label, "STR")
        self.assertTrue(record.expires)

    async def test_value_command_follows_type(self) -> None:
        cases = {
            "h": ("hash", {"f": "v"}, "HGETALL"),
            "l": ("list", ["1", "2"], "LRANGE"),
            "st": ("set", {"m"}, "SMEMBERS"),
            "z": ("zset", [("a", 1.0), ("b", 2.0)], "ZRANGE"),
        }
        for key, (type_name, value, command) in cases.items():
            with self.subTest(key=key):
                record = await inspect_key(self.executor, key)
                self.assertEqual(record.type, type_name)
                self.assertEqual(record.value, value)
                self.assertEqual(record.ttl, -1)
                self.assertFalse(record.expires)
                self.assertEqual(self.store.commands(command)[-1][2][0], key)
        self.assertEqual(self.store.commands("ZRANGE")[-1][2], ("z", 0, -1, "WITHSCORES"))

    async def test_missing_key(self) -> None:
        record = await inspect_key(self.executor, "nope")

        self.assertEqual(record.type, "none")
        self.assertFalse(record.exists)
        self.assertIsNone(record.value)
        self.assertEqual(self.store.commands("GET"), [])

    async def test_failed_probe_leaves_field_unset(self) -> None:
        self.store.fail_next("TTL", ErrorKind.REJECTED)

        record = await inspect_key(self.executor, "s")

        self.assertIsNone(record.ttl)
        self.assertEqual(record.value, "hello")

    async def test_value_failure_is_recorded(self) -> None:
        self.store.fail_next("HGETALL", ErrorKind.REJECTED, message="WRONGTYPE")

        record = await inspect_key(self.executor, "h")

        self.assertIsNone(record.value)
        self.assertEqual(record.error, "WRONGTYPE")

    def test_type_labels(self) -> None:
        self.assertEqual(type_label("hash"), "HSH")
        self.assertEqual(type_label("ZSET"), "ZST")
        self.assertEqual(type_label("ReJSON-RL"), "REJ")
        self.assertEqual(type_label("tx"), "TX_")
        self.assertEqual(type_label(""), "UNK")
        self.assertEqual(type_label(None), "UNK")
        self.assertEqual(type_label("--"), "UNK")


class NamespaceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        configure_runtime_logging(level="off")
        self.store = FakeStore({0: {"a": "1"}, 3: {"b": "1", "c": "2"}})
        self.executor = CommandExecutor(
            ConnectionSettings(),
            ExecutorSettings(retries=0),
            transport_factory=FakeConnector(self.store),
        )
        await self.executor.connect()

    async def test_lists_from_info(self) -> None:
        namespaces = await list_namespaces(self.executor)

        self.assertEqual([(item.name, item.key_count) for item in namespaces], [("db0", 1), ("db3", 2)])

    async def test_falls_back_to_dbsize(self) -> None:
        self.store.reply_next("INFO", "# Keyspace\r\n")

        namespaces = await list_namespaces(self.executor, current=0)

        self.assertEqual([(item.index, item.key_count) for item in namespaces], [(0, 1)])

    async def test_info_failure_falls_back_to_dbsize(self) -> None:
        self.store.fail_next("INFO", ErrorKind.REJECTED)

        namespaces = await list_namespaces(self.executor)

        self.assertEqual(len(namespaces), 1)

    def test_parse_text_info(self) -> None:
        text = "# Keyspace\r\ndb0:keys=12,expires=0,avg_ttl=0\r\ndb10:keys=3,expires=1,avg_ttl=5\r\n"
        self.assertEqual([(item.index, item.key_count) for item in parse_keyspace_info(text)], [(0, 12), (10, 3)])

    def test_parse_mapping_with_raw_values(self) -> None:
        info = {"db2": "keys=4,expires=0", "db1": {"keys": 9}, "other": 1}
        self.assertEqual([(item.index, item.key_count) for item in parse_keyspace_info(info)], [(1, 9), (2, 4)])

    def test_parse_namespace(self) -> None:
        self.assertEqual(parse_namespace("db3"), 3)
        self.assertEqual(parse_namespace("7"), 7)
        self.assertEqual(parse_namespace(" DB12 "), 12)
        self.assertEqual(parse_namespace("main"), 0)
        self.assertEqual(parse_namespace(-2), 0)


if __name__ == "__main__":
    unittest.main()
