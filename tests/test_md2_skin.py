import io

import numpy as np
import pytest
from PIL import Image

from md2_skin import SkinRef, SkinResolver, header_skin_refs, load_skin_image
from pak import PAK

from conftest import build_pak, write_tree


MODEL = "models/tank/tris.md2"
HEADER_SKINS = ["models/monsters/tank/skin.pcx"]


def png_bytes(size=(4, 2), color=(255, 0, 0)):
    img = Image.new("RGB", size, color)
    img.putpixel((0, 0), (0, 0, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def resolve(tmp_path, files, skin_names=HEADER_SKINS, model=MODEL):
    archive = PAK(write_tree(tmp_path / "models_root", {**files, model: b""}))
    return SkinResolver(archive).resolve(model, skin_names)


def test_header_skin_refs():
    refs = header_skin_refs(["models/monsters/tank/skin.pcx", "", "models\\tank\\pain.pcx"])

    assert refs == [
        SkinRef("skin", "models/monsters/tank/skin.pcx"),
        SkinRef("pain", "models\\tank\\pain.pcx"),
    ]


def test_pcx_preferred_over_png_and_jpg(tmp_path):
    skins = resolve(tmp_path, {
        "models/tank/skin.jpg": b"",
        "models/tank/skin.png": b"",
        "models/tank/skin.pcx": b"",
    })

    assert skins == [SkinRef("skin", "models/tank/skin.pcx")]


def test_png_preferred_over_jpg(tmp_path):
    skins = resolve(tmp_path, {
        "models/tank/skin.jpg": b"",
        "models/tank/skin.png": b"",
    })

    assert skins == [SkinRef("skin", "models/tank/skin.png")]


def test_header_order_kept_and_missing_names_skipped(tmp_path):
    skins = resolve(
        tmp_path,
        {"models/tank/pain.jpg": b"", "models/tank/skin.png": b""},
        skin_names=["a/b/skin.pcx", "a/b/gone.pcx", "a/b/pain.pcx"],
    )

    assert skins == [SkinRef("skin", "models/tank/skin.png"), SkinRef("pain", "models/tank/pain.jpg")]


def test_png_scan_when_nothing_matches(tmp_path):
    skins = resolve(tmp_path, {
        "models/tank/red.png": b"",
        "models/tank/blue.PNG": b"",
        "models/tank/notes.txt": b"",
        "models/tank/sub/deep.png": b"",
    })

    assert skins == [SkinRef("blue", "models/tank/blue.PNG"), SkinRef("red", "models/tank/red.png")]


def test_png_scan_without_header_skins(tmp_path):
    skins = resolve(tmp_path, {"models/tank/foo.png": b""}, skin_names=[])

    assert skins == [SkinRef("foo", "models/tank/foo.png")]


def test_model_at_archive_root(tmp_path):
    skins = resolve(tmp_path, {"skin.png": b""}, model="tris.md2")

    assert skins == [SkinRef("skin", "skin.png")]


def test_no_skins_anywhere(tmp_path):
    assert resolve(tmp_path, {}) == []


def test_packed_archive_keeps_header_names(tmp_path):
    archive = PAK(build_pak(tmp_path / "pak0.pak", {MODEL: b"", "models/tank/skin.png": b""}))

    skins = SkinResolver(archive).resolve(MODEL, HEADER_SKINS)

    assert skins == [SkinRef("skin", "models/monsters/tank/skin.pcx")]


@pytest.mark.parametrize("flip, corner", [(False, (0, 0)), (True, (1, 0))])
def test_load_skin_image(tmp_path, flip, corner):
    archive = PAK(write_tree(tmp_path / "root", {"models/tank/skin.png": png_bytes()}))

    pixels = load_skin_image(archive, SkinRef("skin", "models/tank/skin.png"), flip_vertical=flip)

    assert pixels.shape == (2, 4, 4)
    assert pixels.dtype == np.uint8
    assert (pixels[..., 3] == 255).all()
    assert tuple(pixels[corner]) == (0, 0, 255, 255)


def test_load_skin_image_from_pak(tmp_path):
    archive = PAK(build_pak(tmp_path / "pak0.pak", {"skins/skin.png": png_bytes(size=(8, 8))}))

    pixels = load_skin_image(archive, SkinRef("skin", "skins/skin.png"))

    assert pixels.shape == (8, 8, 4)
