import unittest

from modinstall.install.instructions import CopyInstruction, MkDirInstruction
from modinstall.install.mod_types import ModTypeRegistry, matches_files


class TestModTypes(unittest.IsolatedAsyncioTestCase):
    async def test_highest_priority_match_wins(self):
        registry = ModTypeRegistry()
        registry.register("skyrim", "dinput", 30, matches_files(["dinput8.dll"]))
        registry.register("skyrim", "enb", 60, matches_files(["enbseries.ini"]))

        async def always(instructions):
            return True
        registry.register("skyrim", "anything", 10, always)

        instructions = [CopyInstruction(source="a/dinput8.dll", destination="bin/DInput8.dll"),
                        CopyInstruction(source="enbseries.ini", destination="enbseries.ini")]
        self.assertEqual(await registry.determine_mod_type("skyrim", instructions), "enb")
        self.assertEqual(await registry.determine_mod_type(
            "skyrim", [CopyInstruction(source="x", destination="dinput8.dll")]), "dinput")
        self.assertEqual(await registry.determine_mod_type("skyrim", []), "anything")

    async def test_no_match_gives_default_type(self):
        registry = ModTypeRegistry()
        registry.register("skyrim", "enb", 60, matches_files(["enbseries.ini"]))
        self.assertEqual(await registry.determine_mod_type(
            "skyrim", [MkDirInstruction(destination="enbseries.ini")]), "")
        self.assertEqual(await registry.determine_mod_type("oblivion", []), "")

    async def test_equal_priority_keeps_registration_order(self):
        registry = ModTypeRegistry()
        registry.register("skyrim", "first", 5, lambda instructions: True)
        registry.register("skyrim", "second", 5, lambda instructions: True)
        self.assertEqual(await registry.determine_mod_type("skyrim", []), "first")


if __name__ == "__main__":
    unittest.main()
