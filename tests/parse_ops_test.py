import unittest
from pathlib import Path

from modinstall.helpers import parse_ops
from modinstall.helpers.errors import UnsafeDestinationError


class TestParseOps(unittest.TestCase):
    def test_safe_join(self):
        root = Path("/mods/ModA")
        self.assertEqual(parse_ops.safe_join(root, "data\\foo.esp"), root / "data" / "foo.esp")
        self.assertEqual(parse_ops.safe_join(root, "data/../foo.esp"), root / "data" / ".." / "foo.esp")
        for unsafe in ("../foo.esp", "/etc/passwd", "C:/Windows/foo.dll", "a/../../b"):
            with self.assertRaises(UnsafeDestinationError):
                parse_ops.safe_join(root, unsafe)

    def test_archive_base_name(self):
        self.assertEqual(parse_ops.archive_base_name("/downloads/CoolMod.zip"), "CoolMod")
        self.assertEqual(parse_ops.archive_base_name("Cool.Mod.v1.7Z"), "Cool.Mod.v1")
        self.assertEqual(parse_ops.archive_base_name("mod.tar.gz"), "mod.tar")

    def test_derive_install_name(self):
        self.assertEqual(parse_ops.derive_install_name("CoolMod"), "CoolMod")
        meta = {"logical_file_name": "Cool Mod", "file_version": "2.0"}
        self.assertEqual(parse_ops.derive_install_name("cm", {"meta": meta}), "Cool Mod-2.0")
        self.assertEqual(parse_ops.derive_install_name(
            "cm", {"meta": meta, "custom_file_name": "Mine"}), "Mine")
        self.assertEqual(parse_ops.derive_install_name("  "), parse_ops.DEFAULT_INSTALL_NAME)

    def test_parse_bool_from_dict(self):
        self.assertTrue(parse_ops.parse_bool_from_dict({"a": "True"}, "a", False))
        self.assertFalse(parse_ops.parse_bool_from_dict({"a": 1}, "a", False))
        self.assertTrue(parse_ops.parse_bool_from_dict({}, "a", True))

    def test_cli_options(self):
        options = parse_ops.init_input_parser().parse_args(
            ["a.zip", "b.7z", "-game", "skyrim", "-enable"])
        self.assertEqual(options.archives, ["a.zip", "b.7z"])
        self.assertEqual(options.game, "skyrim")
        self.assertTrue(options.enable)
        self.assertFalse(options.no_dependencies)


if __name__ == "__main__":
    unittest.main()
