import pytest

from md2_errors import PakError
from pak import PAK

from conftest import build_pak, write_tree


FILES = {
    "models/tank/tris.md2": b"tank model",
    "models/tank/skin.pcx": b"pcx data",
    "models/gunner/tris.md2": b"gunner model",
    "pics/colormap.pcx": b"palette",
}


@pytest.fixture
def pak_file(tmp_path):
    return PAK(build_pak(tmp_path / "pak0.pak", FILES))


@pytest.fixture
def pak_dir(tmp_path):
    return PAK(write_tree(tmp_path / "baseq2", FILES))


@pytest.fixture(params=["file", "directory"])
def archive(request):
    return request.getfixturevalue("pak_file" if request.param == "file" else "pak_dir")


def test_kind_follows_extension(pak_file, pak_dir):
    assert not pak_file.is_directory()
    assert pak_dir.is_directory()


def test_models_sorted(archive):
    assert archive.models() == ["models/gunner/tris.md2", "models/tank/tris.md2"]
    assert archive.has_models()


def test_exists(archive):
    assert archive.exists("models/tank/skin.pcx")
    assert archive.exists("models\\tank\\skin.pcx")
    assert not archive.exists("models/tank/skin.png")


def test_list_dir(archive):
    assert archive.list_dir("models/tank") == ["models/tank/skin.pcx", "models/tank/tris.md2"]
    assert archive.list_dir("models") == []
    assert archive.list_dir("nowhere") == []


def test_open_reads_entry(archive):
    with archive.open("models/gunner/tris.md2") as f:
        assert f.read() == b"gunner model"


def test_open_missing_entry(archive):
    with pytest.raises(FileNotFoundError):
        archive.open("models/tank/missing.md2")


@pytest.mark.parametrize("path", ["../secret.md2", "models/../../secret.md2", "..\\secret.md2"])
def test_directory_archive_stays_inside_root(tmp_path, pak_dir, path):
    (tmp_path / "secret.md2").write_bytes(b"outside")

    assert not pak_dir.exists(path)
    with pytest.raises(FileNotFoundError):
        pak_dir.open(path)


def test_list_dir_above_root_is_empty(pak_dir):
    assert pak_dir.list_dir("..") == []
    assert pak_dir.list_dir("models/../..") == []


def test_missing_pak_file(tmp_path):
    with pytest.raises(PakError):
        PAK(tmp_path / "absent.pak")


def test_missing_directory(tmp_path):
    with pytest.raises(PakError):
        PAK(tmp_path / "absent")


def test_bad_magic(tmp_path):
    path = tmp_path / "bad.pak"
    path.write_bytes(b"KCAP" + b"\x00" * 8)

    with pytest.raises(PakError):
        PAK(path)


def test_truncated_header(tmp_path):
    path = tmp_path / "short.pak"
    path.write_bytes(b"PACK")

    with pytest.raises(PakError):
        PAK(path)


def test_truncated_directory(tmp_path):
    path = build_pak(tmp_path / "pak1.pak", FILES)
    with open(path, "rb") as f:
        data = f.read()
    with open(path, "wb") as f:
        f.write(data[:-10])

    with pytest.raises(PakError):
        PAK(path)


def test_uppercase_extension_is_packed(tmp_path):
    archive = PAK(build_pak(tmp_path / "PAK2.PAK", {"a.md2": b"x"}))

    assert not archive.is_directory()
    assert archive.models() == ["a.md2"]


def test_empty_directory_has_no_models(tmp_path):
    archive = PAK(tmp_path)

    assert archive.models() == []
    assert not archive.has_models()
