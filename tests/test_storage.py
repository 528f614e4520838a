import json
import tempfile
import unittest
from pathlib import Path

from jukebox.storage import JsonStore


class JsonStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "nested" / "store.json"

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_values_are_written_to_disk(self) -> None:
        store = JsonStore(self.path)
        store.set("a", 1)
        store.update({"b": [1, 2], "c": {"d": "e"}})

        self.assertEqual(json.loads(self.path.read_text()), {"a": 1, "b": [1, 2], "c": {"d": "e"}})
        self.assertFalse(self.path.with_suffix(".tmp").exists())
        self.assertEqual(JsonStore(self.path).get("c"), {"d": "e"})

    def test_writers_sharing_a_file_keep_each_others_keys(self) -> None:
        bot_store = JsonStore(self.path)
        login_store = JsonStore(self.path)

        login_store.update({"spotify_access_token": "a", "spotify_refresh_token": "r"})
        bot_store.set("vote_ledger", {})

        saved = JsonStore(self.path)
        self.assertEqual(saved.get("spotify_refresh_token"), "r")
        self.assertEqual(saved.get("vote_ledger"), {})
        self.assertEqual(bot_store.get("spotify_access_token"), "a")

    def test_delete_keeps_foreign_keys(self) -> None:
        first = JsonStore(self.path)
        second = JsonStore(self.path)
        first.set("a", 1)
        second.set("b", 2)
        first.delete("a")
        self.assertEqual(JsonStore(self.path).get("b"), 2)

    def test_delete(self) -> None:
        store = JsonStore(self.path)
        store.set("a", 1)
        store.delete("a")
        store.delete("missing")
        self.assertIsNone(JsonStore(self.path).get("a"))
        self.assertEqual(store.get("a", "default"), "default")

    def test_corrupt_file_starts_empty(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json")
        with self.assertLogs("jukebox.storage", level="WARNING"):
            store = JsonStore(self.path)
        self.assertIsNone(store.get("a"))
        store.set("a", 1)
        self.assertEqual(JsonStore(self.path).get("a"), 1)


if __name__ == "__main__":
    unittest.main()
