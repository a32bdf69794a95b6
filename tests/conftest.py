import struct

import pytest

from md2_parser import MD2_IDENT, MD2_VERSION, HEADER_FIELDS


def build_md2(frames, triangles, texcoords, skins=(), skinwidth=64, skinheight=32, num_xyz=None, **overrides):
    """Serialize a synthetic .md2 stream.

    frames: list of (name, scale, translate, [(x, y, z, normal), ...])
    triangles: list of ((v0, v1, v2), (st0, st1, st2))
    texcoords: list of (s, t)
    overrides: header fields to force after layout (e.g. num_tris=5000)
    """
    if num_xyz is None:
        num_xyz = len(frames[0][3]) if frames else 0

    skin_data = b"".join(name.encode("ascii").ljust(64, b"\x00")[:64] for name in skins)
    st_data = b"".join(struct.pack("<2h", s, t) for s, t in texcoords)
    tri_data = b"".join(struct.pack("<3H3H", *v, *st) for v, st in triangles)

    framesize = 40 + 4 * num_xyz
    frame_data = b""
    for name, scale, translate, verts in frames:
        frame_data += struct.pack("<3f3f16s", *scale, *translate, name.encode("ascii"))
        frame_data += b"".join(struct.pack("<4B", *v) for v in verts)

    offset_skins = 68
    offset_st = offset_skins + len(skin_data)
    offset_tris = offset_st + len(st_data)
    offset_frames = offset_tris + len(tri_data)
    offset_glcmds = offset_frames + len(frame_data)
    offset_end = offset_glcmds

    header = {
        "ident": MD2_IDENT,
        "version": MD2_VERSION,
        "skinwidth": skinwidth,
        "skinheight": skinheight,
        "framesize": framesize,
        "num_skins": len(skins),
        "num_xyz": num_xyz,
        "num_st": len(texcoords),
        "num_tris": len(triangles),
        "num_glcmds": 0,
        "num_frames": len(frames),
        "offset_skins": offset_skins,
        "offset_st": offset_st,
        "offset_tris": offset_tris,
        "offset_frames": offset_frames,
        "offset_glcmds": offset_glcmds,
        "offset_end": offset_end,
    }
    header.update(overrides)

    return (struct.pack("<17i", *(header[name] for name in HEADER_FIELDS))
            + skin_data + st_data + tri_data + frame_data)


# 4 vertices, 2 triangles sharing an edge, 4 texcoords
SAMPLE_TRIANGLES = [((0, 1, 2), (0, 1, 2)), ((2, 1, 3), (2, 1, 3))]
SAMPLE_TEXCOORDS = [(0, 0), (64, 0), (0, 32), (32, 16)]
SAMPLE_FRAME_NAMES = ["stand1", "stand2", "run1", "run2", "run3"]
SAMPLE_SCALE = (1.0, 2.0, 0.5)
SAMPLE_TRANSLATE = (0.0, 1.0, -1.0)


def sample_vertices(i):
    return [(i, 0, 0, 0), (0, i + 1, 0, 1), (0, 0, i + 2, 2), (i, i, i, 3)]


def build_pak(path, files):
    """Write a .pak holding `files` ({archive path: bytes}), data then directory."""
    data = b""
    directory = b""
    for name, content in files.items():
        directory += struct.pack("<56sii", name.encode("ascii"), 12 + len(data), len(content))
        data += content
    with open(path, "wb") as f:
        f.write(struct.pack("<4sii", b"PACK", 12 + len(data), len(directory)))
        f.write(data)
        f.write(directory)
    return str(path)


def write_tree(root, files):
    """Create `files` ({relative path: bytes}) under directory `root`."""
    for name, content in files.items():
        target = root.joinpath(*name.split("/"))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    return str(root)


@pytest.fixture
def make_md2():
    return build_md2


@pytest.fixture
def sample_bytes():
    frames = [(name, SAMPLE_SCALE, SAMPLE_TRANSLATE, sample_vertices(i)) for i, name in enumerate(SAMPLE_FRAME_NAMES)]
    return build_md2(frames, SAMPLE_TRIANGLES, SAMPLE_TEXCOORDS, skins=["models/monsters/tank/skin.pcx"])
