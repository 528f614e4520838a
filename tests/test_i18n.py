import json
import tempfile
import unittest
from pathlib import Path

from jukebox import i18n
from jukebox.errors import ConfigError
from jukebox.i18n import available_locales, load_locales, missing_keys, require_locale, t


class TranslationTests(unittest.TestCase):
    def setUp(self) -> None:
        load_locales()

    def tearDown(self) -> None:
        load_locales()

    def test_bundled_locales(self) -> None:
        self.assertEqual(available_locales(), ["de", "en"])

    def test_locales_share_keys(self) -> None:
        en = json.loads((i18n._LOCALE_DIR / "en.json").read_text(encoding="utf-8"))
        de = json.loads((i18n._LOCALE_DIR / "de.json").read_text(encoding="utf-8"))
        self.assertEqual(set(en), set(de))
        self.assertEqual(missing_keys("de"), set())

    def test_substitution(self) -> None:
        self.assertEqual(t("rate_limited", seconds=42), "Limit exceeded, please wait 42 seconds!")

    def test_fallbacks(self) -> None:
        self.assertEqual(t("invalid_link", "fr"), t("invalid_link", "en"))
        self.assertEqual(t("no_such_key"), "no_such_key")
        # Missing placeholders leave the template untouched.
        self.assertEqual(t("rate_limited", other=1), "Limit exceeded, please wait {seconds} seconds!")

    def test_partial_locale_falls_back_to_english(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "en.json").write_text(json.dumps({"a": "A", "b": "B"}), encoding="utf-8")
            Path(tmp, "xx.json").write_text(json.dumps({"a": "Ä"}), encoding="utf-8")
            with self.assertLogs("jukebox.i18n", level="WARNING") as logs:
                load_locales(Path(tmp))
            self.assertIn("xx lacks 1 keys", logs.output[0])
            self.assertEqual(missing_keys("xx"), {"b"})
            self.assertEqual(t("a", "xx"), "Ä")
            self.assertEqual(t("b", "xx"), "B")

    def test_require_locale(self) -> None:
        require_locale("de")
        with self.assertRaises(ConfigError):
            require_locale("fr")

    def test_nothing_loaded(self) -> None:
        i18n._locales.clear()
        self.assertEqual(t("invalid_link"), "invalid_link")
        with self.assertRaises(ConfigError):
            require_locale("en")


if __name__ == "__main__":
    unittest.main()
