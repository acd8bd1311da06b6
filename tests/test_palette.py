"""
Autolabel Tests - Dominant Color Palette
"""

from PIL import Image

from autolabel.vision.palette import extract_palette, nearest_color_name, to_hex


class TestColorNames:
    def test_nearest_color_name(self):
        assert nearest_color_name((250, 250, 250)) == "white"
        assert nearest_color_name((10, 10, 10)) == "black"
        assert nearest_color_name((30, 140, 40)) == "green"

    def test_to_hex(self):
        assert to_hex((170, 51, 0)) == "#aa3300"


class TestExtractPalette:
    def test_dominant_color_first(self, tmp_path):
        path = tmp_path / "pot.png"
        img = Image.new("RGB", (100, 100), (0, 0, 128))
        img.paste((255, 255, 255), (0, 0, 100, 20))
        img.save(path)

        palette = extract_palette(path)

        assert 1 <= len(palette) <= 3
        assert palette[0].name == "navy"
        assert {c.name for c in palette} >= {"navy", "white"}

    def test_count_is_capped(self, tmp_path):
        path = tmp_path / "noise.png"
        img = Image.new("RGB", (30, 30))
        img.putdata([((i * 37) % 256, (i * 91) % 256, (i * 13) % 256) for i in range(900)])
        img.save(path)

        assert len(extract_palette(path, count=10)) == 3
