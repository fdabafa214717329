import tempfile
import unittest
from pathlib import Path

import yaml

from canvas_cli.components import (
    AssetLibrary,
    Component,
    find_component_directories,
    read_component,
    write_component,
)
from canvas_cli.errors import ComponentFormatError


def _component(**kwargs) -> Component:
    data = {
        "machine_name": "card",
        "name": "Card",
        "status": True,
        "required": ("heading",),
        "props": {"heading": {"type": "string", "title": "Heading"}},
        "slots": {"body": {"title": "Body"}},
        "source_code_js": "export default function Card() {}\n",
        "source_code_css": ".card { padding: 1rem; }\n",
    }
    data.update(kwargs)
    return Component(**data)


class TestFindComponentDirectories(unittest.TestCase):
    def test_lists_direct_children_with_metadata_in_lexical_order(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            for name in ("zeta", "alpha", "mid"):
                (root / name).mkdir()
                (root / name / "component.yml").write_text("name: x\n", encoding="utf-8")
            (root / "no-metadata").mkdir()
            (root / "alpha" / "nested").mkdir()
            (root / "alpha" / "nested" / "component.yml").write_text("name: y\n", encoding="utf-8")
            (root / "global.css").write_text("body {}", encoding="utf-8")

            found = find_component_directories(root)

        self.assertEqual([p.name for p in found], ["alpha", "mid", "zeta"])

    def test_missing_root_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(find_component_directories(Path(td) / "nope"), [])


class TestWriteComponent(unittest.TestCase):
    def test_writes_metadata_script_and_style(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            target = write_component(td, _component())
            files = sorted(p.name for p in target.iterdir())
            meta = yaml.safe_load((target / "component.yml").read_text(encoding="utf-8"))

        self.assertEqual(files, ["component.yml", "index.css", "index.jsx"])
        self.assertEqual(meta["machineName"], "card")
        self.assertEqual(meta["required"], ["heading"])
        self.assertEqual(meta["props"], {"properties": {"heading": {"type": "string", "title": "Heading"}}})
        self.assertEqual(meta["slots"], {"body": {"title": "Body"}})

    def test_component_without_sources_writes_only_metadata(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            target = write_component(td, _component(source_code_js=None, source_code_css=None))
            files = sorted(p.name for p in target.iterdir())
        self.assertEqual(files, ["component.yml"])

    def test_replaces_existing_directory(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            stale = Path(td) / "card" / "old.txt"
            stale.parent.mkdir()
            stale.write_text("stale", encoding="utf-8")
            write_component(td, _component())
            self.assertFalse(stale.exists())

    def test_rejects_machine_name_outside_root(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td) / "components"
            root.mkdir()
            keep = Path(td) / "keep.txt"
            keep.write_text("keep", encoding="utf-8")
            for bad in ("..", "a/b", "../card", ""):
                with self.subTest(machine_name=bad):
                    with self.assertRaises(ComponentFormatError):
                        write_component(root, _component(machine_name=bad))
            self.assertTrue(keep.exists())
            self.assertEqual(list(root.iterdir()), [])


class TestReadComponent(unittest.TestCase):
    def test_reads_back_written_component(self) -> None:
        original = _component()
        with tempfile.TemporaryDirectory() as td:
            target = write_component(td, original)
            loaded = read_component(target)
        self.assertEqual(loaded, original)

    def test_machine_name_defaults_to_directory(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            d = Path(td) / "badge"
            d.mkdir()
            (d / "component.yml").write_text("name: Badge\nstatus: false\n", encoding="utf-8")
            loaded = read_component(d)
        self.assertEqual(loaded.machine_name, "badge")
        self.assertFalse(loaded.status)
        self.assertIsNone(loaded.source_code_js)

    def test_mismatched_machine_name_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            d = Path(td) / "badge"
            d.mkdir()
            (d / "component.yml").write_text("machineName: other\n", encoding="utf-8")
            with self.assertRaises(ComponentFormatError):
                read_component(d)

    def test_invalid_yaml_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            d = Path(td) / "badge"
            d.mkdir()
            (d / "component.yml").write_text("name: [unclosed\n", encoding="utf-8")
            with self.assertRaises(ComponentFormatError):
                read_component(d)


class TestApiMapping(unittest.TestCase):
    def test_from_api_normalizes_php_empty_arrays(self) -> None:
        c = Component.from_api({"machineName": "x", "name": "X", "status": False, "props": [], "slots": []})
        self.assertEqual(c.props, {})
        self.assertEqual(c.slots, {})
        self.assertEqual(c.to_api()["machineName"], "x")

    def test_from_api_requires_machine_name(self) -> None:
        with self.assertRaises(ComponentFormatError):
            Component.from_api({"name": "X"})

    def test_asset_library_tolerates_missing_sections(self) -> None:
        self.assertEqual(AssetLibrary.from_api({"css": {"original": "a{}"}}).css_original, "a{}")
        self.assertEqual(AssetLibrary.from_api(None).css_original, "")
