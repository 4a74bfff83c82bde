from __future__ import annotations

import unittest

from assetbake.core.bitmap import Bitmap
from assetbake.core.data_structures import (
    Animation,
    AnimationDirection,
    FontSheet,
    RasterGlyph,
    Rect,
)
from assetbake.core.errors import DuplicateName, SpriteTooLarge
from assetbake.core.linker import (
    DocumentInfo,
    Linker,
    TagInfo,
    frame_sprite_name,
    layer_sprite_name,
    unresolved_references,
)
from assetbake.core.trimmer import trim

from tests.helpers import solid


def image(name: str, width: int = 4, height: int = 4):
    return trim(name, Bitmap(solid(width, height, (90, 90, 90, 255))))


def glyph_sheet(name: str) -> FontSheet:
    return FontSheet(
        name=name,
        bitmap=Bitmap(solid(12, 6, (255, 255, 255, 255))),
        baseline=5,
        line_height=7,
        font_height_px=6,
        glyphs=[
            RasterGlyph(65, Rect(0, 0, 4, 6), 1, 0, 5),
            RasterGlyph(300, Rect(4, 0, 8, 6), 0, 1, 9),
        ],
    )


class LinkerTests(unittest.TestCase):
    def test_document_animations_reference_composed_frames(self) -> None:
        linker = Linker(64)
        document = DocumentInfo(
            name="char",
            frame_durations=[100, 150],
            layer_names=["bg", "fg"],
            tags=[TagInfo("run", 0, 1, AnimationDirection.FORWARD)],
        )
        linker.add_document(document)
        for frame in range(2):
            linker.add_images([image(frame_sprite_name("char", frame))])
            linker.add_images(image(layer_sprite_name("char", layer, frame)) for layer in ("bg", "fg"))
        tables = linker.link()

        self.assertEqual(
            [sprite.name for sprite in tables.sprites],
            ["char.0", "char.1", "char.bg.0", "char.bg.1", "char.fg.0", "char.fg.1"],
        )
        animations = {animation.name: animation for animation in tables.animations}
        self.assertEqual(sorted(animations), ["char", "char.run"])
        self.assertEqual(animations["char.run"].frames, ["char.0", "char.1"])
        self.assertEqual(animations["char.run"].frame_duration_ms, [100, 150])
        self.assertEqual(animations["char"].frames, ["char.0", "char.1"])
        self.assertEqual(unresolved_references(tables), [])

    def test_tag_slices_frames(self) -> None:
        linker = Linker(64)
        linker.add_document(
            DocumentInfo("walk", [10, 20, 30], [], [TagInfo("tail", 1, 2, AnimationDirection.REVERSE)])
        )
        linker.add_images(image(frame_sprite_name("walk", i)) for i in range(3))
        tail = {a.name: a for a in linker.link().animations}["walk.tail"]
        self.assertEqual(tail.frames, ["walk.1", "walk.2"])
        self.assertEqual(tail.frame_duration_ms, [20, 30])
        self.assertEqual(tail.direction, AnimationDirection.REVERSE)

    def test_document_without_frames_has_no_default_animation(self) -> None:
        linker = Linker(64)
        linker.add_document(DocumentInfo("empty", [], ["a"]))
        self.assertEqual(linker.link().animations, [])

    def test_3d_documents_build_stacks(self) -> None:
        linker = Linker(64)
        linker.add_document(DocumentInfo("tree_3d", [100, 100], ["0", "1"], is_3d=True))
        for frame in range(2):
            linker.add_images(image(layer_sprite_name("tree_3d", layer, frame)) for layer in ("0", "1"))
        tables = linker.link()
        self.assertEqual([s.name for s in tables.sprites_3d], ["tree_3d.0", "tree_3d.1"])
        self.assertEqual(tables.sprites_3d[0].layers, ["tree_3d.0.0", "tree_3d.1.0"])
        self.assertEqual(tables.sprites_3d[0].draw_height, 1)
        self.assertEqual(tables.animations, [])
        self.assertEqual([a.name for a in tables.animations_3d], ["tree_3d"])
        self.assertEqual(tables.animations_3d[0].frames, ["tree_3d.0", "tree_3d.1"])
        self.assertEqual(unresolved_references(tables), [])

    def test_sprite_geometry(self) -> None:
        linker = Linker(32)
        linker.add_images([image("only", 8, 4)])
        sprite = linker.link().sprites[0]
        self.assertEqual(sprite.atlas_texture_index, 0)
        self.assertEqual(sprite.untrimmed_dimensions, (8, 4))
        uvs = sprite.trimmed_uvs
        self.assertEqual((uvs.left, uvs.top, uvs.right, uvs.bottom), (0.0, 0.0, 0.25, 0.125))
        self.assertEqual(sprite.attachment_points, [(0.0, 0.0)] * 4)

    def test_fonts_link_glyph_sprites(self) -> None:
        linker = Linker(64)
        linker.add_images([image("z_first", 20, 20)])
        linker.add_font_sheet(glyph_sheet("ui"))
        tables = linker.link()

        font = tables.fonts[0]
        self.assertEqual(font.name, "ui")
        self.assertEqual(font.baseline, 5)
        self.assertEqual(font.vertical_advance, 7)
        self.assertEqual(font.horizontal_advance_max, 9)
        self.assertFalse(font.is_fixed_width)
        self.assertEqual(font.fastpath[65].sprite_name, "ui_codepoint_65")
        self.assertIsNone(font.fastpath[66])
        self.assertEqual(font.unicode[300].horizontal_advance, 9)

        sprites = {sprite.name: sprite for sprite in tables.sprites}
        wide = sprites["ui_codepoint_300"]
        # Glyph rects carry the pen offset, not a position inside the untrimmed cell.
        self.assertEqual(wide.trimmed_rect, Rect(0, 1, 8, 6))
        self.assertEqual(wide.untrimmed_dimensions, (8, 6))
        narrow = sprites["ui_codepoint_65"]
        self.assertEqual(narrow.trimmed_rect, Rect(1, 0, 4, 6))
        self.assertEqual(narrow.untrimmed_dimensions, (4, 6))
        # Glyphs keep their position inside the sheet once it is placed.
        self.assertAlmostEqual(wide.trimmed_uvs.left - narrow.trimmed_uvs.left, 4 / 64)
        self.assertEqual(unresolved_references(tables), [])

    def test_duplicate_sprite_names(self) -> None:
        linker = Linker(64)
        linker.add_images([image("same"), image("same")])
        with self.assertRaises(DuplicateName):
            linker.link()

    def test_duplicate_font_names(self) -> None:
        linker = Linker(64)
        linker.add_font_sheet(glyph_sheet("ui"))
        linker.add_font_sheet(glyph_sheet("ui"))
        with self.assertRaises(DuplicateName):
            linker.link()

    def test_duplicate_names_reported_before_packing(self) -> None:
        linker = Linker(16)
        linker.add_images([image("dup"), image("dup"), image("huge", 32, 32)])
        with self.assertRaises(DuplicateName):
            linker.link()
        linker = Linker(16)
        linker.add_images([image("huge", 32, 32)])
        with self.assertRaises(SpriteTooLarge):
            linker.link()

    def test_unresolved_references_are_listed(self) -> None:
        linker = Linker(64)
        linker.add_images([image("a")])
        tables = linker.link()
        tables.animations.append(Animation("broken", ["a", "ghost"], [1, 1]))
        self.assertEqual(unresolved_references(tables), ["ghost"])


if __name__ == "__main__":
    unittest.main()
