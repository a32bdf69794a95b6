#!/usr/bin/env python3
"""
MD2 Parser - Quake II .md2 binary decoding

Turns a readable byte stream into validated, structured MD2 geometry.

STAGES:
    - read_header / validate_header: the 68-byte header, checked before any
      count in it is trusted to size a buffer
    - decode_skins / decode_triangles / decode_texcoords / decode_frame:
      fixed-size records read at header offsets, little-endian, field by field
    - unpack_frame: quantized vertices -> float positions, flattened per
      triangle corner (num_tris * 3 entries)
    - scale_texcoords: pixel texcoords -> [0, 1], flattened the same way

LAYOUT (little-endian):
    Header    17 x int32
    Skin      char[64]
    TexCoord  int16 s, int16 t
    Triangle  uint16 vertex[3], uint16 st[3]
    Frame     float scale[3], float translate[3], char name[16], Vertex[num_xyz]
    Vertex    uint8 v[3], uint8 normal_index

References:
    http://tfc.duke.free.fr/coding/md2-specs-en.html
"""

import io
import struct
from dataclasses import dataclass
from typing import BinaryIO, List, Tuple

import numpy as np

from md2_errors import MD2FormatError, MD2IndexError, MD2StreamError


# =============================================================================
# FORMAT CONSTANTS
# =============================================================================

MD2_IDENT = 844121161  # b"IDP2" read as little-endian int32
MD2_VERSION = 8

MAX_TRIS = 4096
MAX_VERTICES = 2048
MAX_TEXCOORDS = 2048
MAX_FRAMES = 512
MAX_SKINS = 32

HEADER_FIELDS = (
    "ident", "version",
    "skinwidth", "skinheight", "framesize",
    "num_skins", "num_xyz", "num_st", "num_tris", "num_glcmds", "num_frames",
    "offset_skins", "offset_st", "offset_tris", "offset_frames", "offset_glcmds",
    "offset_end",
)
HEADER_FMT = "<17i"
HEADER_SIZE = struct.calcsize(HEADER_FMT)

SKIN_NAME_SIZE = 64
FRAME_NAME_SIZE = 16

TEXCOORD_FMT = "<2h"
TEXCOORD_SIZE = struct.calcsize(TEXCOORD_FMT)

TRIANGLE_FMT = "<3H3H"
TRIANGLE_SIZE = struct.calcsize(TRIANGLE_FMT)

VERTEX_SIZE = 4

FRAME_HEADER_FMT = "<3f3f16s"
FRAME_HEADER_SIZE = struct.calcsize(FRAME_HEADER_FMT)

# MD2 is Z-up. Output is Y-up: out.x = x, out.y = z (vertical), out.z = y (depth).
AXIS_ORDER = (0, 2, 1)


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class Header:
    ident: int
    version: int
    skinwidth: int
    skinheight: int
    framesize: int
    num_skins: int
    num_xyz: int
    num_st: int
    num_tris: int
    num_glcmds: int
    num_frames: int
    offset_skins: int
    offset_st: int
    offset_tris: int
    offset_frames: int
    offset_glcmds: int
    offset_end: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "Header":
        return cls(*struct.unpack(HEADER_FMT, data))

    def to_dict(self):
        return {name: getattr(self, name) for name in HEADER_FIELDS}

    def describe(self) -> str:
        width = max(len(name) for name in HEADER_FIELDS) + 1
        return "\n".join(f"{name + ':':<{width}} {getattr(self, name)}" for name in HEADER_FIELDS)


@dataclass(frozen=True)
class Skin:
    name: str


@dataclass(frozen=True)
class TexCoord:
    s: int
    t: int


@dataclass(frozen=True)
class Triangle:
    vertex: Tuple[int, int, int]
    st: Tuple[int, int, int]


@dataclass(frozen=True, eq=False)
class Frame:
    """One raw keyframe.

    `vertices` is a (num_xyz, 3) uint8 array of quantized positions and
    `normal_indices` a (num_xyz,) uint8 array into the anorms table.
    """
    scale: Tuple[float, float, float]
    translate: Tuple[float, float, float]
    name: str
    vertices: np.ndarray
    normal_indices: np.ndarray


@dataclass(frozen=True, eq=False)
class MD2Data:
    """Everything decoded from one stream. Arrays are read-only."""
    header: Header
    skins: List[Skin]
    triangles: List[Triangle]
    texcoords: List[TexCoord]
    frames: List[Frame]
    keyframes: np.ndarray         # (num_frames, num_tris * 3, 3) float32
    scaled_texcoords: np.ndarray  # (num_tris * 3, 2) float32


# =============================================================================
# FIELD HELPERS
# =============================================================================

def decode_name(raw: bytes) -> str:
    """Decode a fixed-capacity name; stops at the first NUL or at capacity."""
    end = raw.find(b"\x00")
    if end != -1:
        raw = raw[:end]
    return raw.decode("ascii", errors="ignore")


def _readonly(array: np.ndarray) -> np.ndarray:
    array.flags.writeable = False
    return array


class _StreamReader:
    """Seekable view of the caller's stream, anchored where the header begins."""

    def __init__(self, stream: BinaryIO):
        try:
            if not stream.seekable():
                stream = io.BytesIO(stream.read())
            self.stream = stream
            self.base = stream.tell()
            self.end = stream.seek(0, io.SEEK_END)
            stream.seek(self.base)
        except OSError as e:
            raise MD2StreamError(f"stream is not readable: {e}") from e

    def read_exact(self, size: int, description: str) -> bytes:
        try:
            data = self.stream.read(size)
        except OSError as e:
            raise MD2StreamError(f"error reading {description}: {e}") from e
        if len(data) != size:
            raise MD2StreamError(
                f"unexpected end of stream reading {description}: "
                f"expected {size} bytes, got {len(data)}"
            )
        return data

    def read_section(self, offset: int, size: int, description: str) -> bytes:
        start = self.base + offset
        if start + size > self.end:
            raise MD2StreamError(
                f"{description} section overruns stream: "
                f"offset {offset} + {size} bytes > {self.end - self.base}"
            )
        try:
            self.stream.seek(start)
        except OSError as e:
            raise MD2StreamError(f"cannot seek to {description}: {e}") from e
        return self.read_exact(size, description)


# =============================================================================
# HEADER
# =============================================================================

def read_header(reader: _StreamReader) -> Header:
    return Header.from_bytes(reader.read_exact(HEADER_SIZE, "header"))


def validate_header(hdr: Header) -> None:
    """Reject a header whose magic or counts cannot be trusted.

    Must run before any count is used to size a read or an array.
    """
    if hdr.ident != MD2_IDENT:
        raise MD2FormatError(f"bad ident {hdr.ident}, expected {MD2_IDENT} ('IDP2')")
    if hdr.version != MD2_VERSION:
        raise MD2FormatError(f"unsupported version {hdr.version}, expected {MD2_VERSION}")

    limits = (
        ("num_tris", MAX_TRIS),
        ("num_xyz", MAX_VERTICES),
        ("num_st", MAX_TEXCOORDS),
        ("num_frames", MAX_FRAMES),
        ("num_skins", MAX_SKINS),
    )
    for name, maximum in limits:
        value = getattr(hdr, name)
        if not 0 <= value <= maximum:
            raise MD2FormatError(f"{name}={value} outside [0, {maximum}]")
    if hdr.num_glcmds < 0:
        raise MD2FormatError(f"num_glcmds={hdr.num_glcmds} is negative")

    for name in ("offset_skins", "offset_st", "offset_tris", "offset_frames", "offset_glcmds", "offset_end"):
        if getattr(hdr, name) < 0:
            raise MD2FormatError(f"{name}={getattr(hdr, name)} is negative")

    if hdr.num_frames == 0:
        raise MD2FormatError("model declares no frames")

    min_framesize = FRAME_HEADER_SIZE + VERTEX_SIZE * hdr.num_xyz
    if hdr.framesize < min_framesize:
        raise MD2FormatError(f"framesize={hdr.framesize} smaller than {min_framesize} for {hdr.num_xyz} vertices")

    if hdr.num_tris > 0 and (hdr.skinwidth <= 0 or hdr.skinheight <= 0):
        raise MD2FormatError(f"bad skin size {hdr.skinwidth}x{hdr.skinheight}")


def check_offsets_in_stream(hdr: Header, stream_size: int) -> None:
    """Offsets with no section read behind them must still fall inside the stream."""
    for name in ("offset_glcmds", "offset_end"):
        value = getattr(hdr, name)
        if value > stream_size:
            raise MD2StreamError(f"{name}={value} beyond end of stream ({stream_size} bytes)")


# =============================================================================
# SECTIONS
# =============================================================================

def decode_skins(data: bytes, count: int) -> List[Skin]:
    return [
        Skin(decode_name(data[i * SKIN_NAME_SIZE:(i + 1) * SKIN_NAME_SIZE]))
        for i in range(count)
    ]


def decode_triangles(data: bytes) -> List[Triangle]:
    return [
        Triangle(vertex=(a, b, c), st=(s0, s1, s2))
        for a, b, c, s0, s1, s2 in struct.iter_unpack(TRIANGLE_FMT, data)
    ]


def decode_texcoords(data: bytes) -> List[TexCoord]:
    return [TexCoord(s, t) for s, t in struct.iter_unpack(TEXCOORD_FMT, data)]


def decode_frame(data: bytes, num_xyz: int) -> Frame:
    fields = struct.unpack_from(FRAME_HEADER_FMT, data, 0)
    packed = np.frombuffer(
        data, dtype=np.uint8, count=num_xyz * VERTEX_SIZE, offset=FRAME_HEADER_SIZE
    ).reshape(num_xyz, VERTEX_SIZE)
    return Frame(
        scale=tuple(fields[0:3]),
        translate=tuple(fields[3:6]),
        name=decode_name(fields[6]),
        vertices=_readonly(packed[:, :3].copy()),
        normal_indices=_readonly(packed[:, 3].copy()),
    )


def triangle_index_arrays(triangles: List[Triangle]) -> Tuple[np.ndarray, np.ndarray]:
    vertex = np.array([t.vertex for t in triangles], dtype=np.intp).reshape(-1, 3)
    st = np.array([t.st for t in triangles], dtype=np.intp).reshape(-1, 3)
    return vertex, st


def check_triangle_indices(vertex_idx: np.ndarray, st_idx: np.ndarray, num_xyz: int, num_st: int) -> None:
    if vertex_idx.size and int(vertex_idx.max()) >= num_xyz:
        tri = int(np.argwhere(vertex_idx >= num_xyz)[0][0])
        raise MD2IndexError(f"triangle {tri} references vertex {int(vertex_idx[tri].max())}, model has {num_xyz}")
    if st_idx.size and int(st_idx.max()) >= num_st:
        tri = int(np.argwhere(st_idx >= num_st)[0][0])
        raise MD2IndexError(f"triangle {tri} references texcoord {int(st_idx[tri].max())}, model has {num_st}")


# =============================================================================
# UNPACKING
# =============================================================================

def unpack_frame(frame: Frame, vertex_idx: np.ndarray) -> np.ndarray:
    """Decompress a frame and flatten it to one position per triangle corner.

    value = scale * quantized + translate, per axis, then axes are
    remapped with AXIS_ORDER (Z-up -> Y-up).
    """
    scale = np.asarray(frame.scale, dtype=np.float32)
    translate = np.asarray(frame.translate, dtype=np.float32)
    positions = frame.vertices.astype(np.float32) * scale + translate
    positions = positions[:, AXIS_ORDER]
    return positions[vertex_idx.reshape(-1)]


def scale_texcoords(texcoords: List[TexCoord], st_idx: np.ndarray, skinwidth: int, skinheight: int) -> np.ndarray:
    """Normalize pixel texcoords by the skin size, flattened per triangle corner."""
    raw = np.array([(tc.s, tc.t) for tc in texcoords], dtype=np.float32).reshape(-1, 2)
    if st_idx.size == 0:
        return np.zeros((0, 2), dtype=np.float32)
    size = np.array([skinwidth, skinheight], dtype=np.float32)
    return (raw / size)[st_idx.reshape(-1)]


# =============================================================================
# ENTRY POINT
# =============================================================================

def decode_md2(stream: BinaryIO, name: str = "", verbose: bool = False) -> MD2Data:
    """Decode a complete MD2 model from `stream`.

    The stream may start anywhere (e.g. inside a .pak); offsets are taken
    relative to its current position. Raises MD2StreamError or
    MD2FormatError; nothing is returned on failure.
    """
    reader = _StreamReader(stream)
    hdr = read_header(reader)
    validate_header(hdr)
    check_offsets_in_stream(hdr, reader.end - reader.base)

    if verbose:
        print(f"Loading MD2: {name or '<stream>'}")
        print(hdr.describe())

    skins = decode_skins(
        reader.read_section(hdr.offset_skins, hdr.num_skins * SKIN_NAME_SIZE, "skins"),
        hdr.num_skins,
    )
    triangles = decode_triangles(
        reader.read_section(hdr.offset_tris, hdr.num_tris * TRIANGLE_SIZE, "triangles")
    )
    texcoords = decode_texcoords(
        reader.read_section(hdr.offset_st, hdr.num_st * TEXCOORD_SIZE, "texcoords")
    )

    vertex_idx, st_idx = triangle_index_arrays(triangles)
    check_triangle_indices(vertex_idx, st_idx, hdr.num_xyz, hdr.num_st)

    scaled_texcoords = scale_texcoords(texcoords, st_idx, hdr.skinwidth, hdr.skinheight)

    frame_bytes = FRAME_HEADER_SIZE + VERTEX_SIZE * hdr.num_xyz
    frames = []
    keyframes = []
    for i in range(hdr.num_frames):
        data = reader.read_section(hdr.offset_frames + i * hdr.framesize, frame_bytes, f"frame {i}")
        frame = decode_frame(data, hdr.num_xyz)
        frames.append(frame)
        keyframes.append(unpack_frame(frame, vertex_idx))

    if verbose:
        print(f"✅ MD2 decoded: {len(skins)} skins, {len(triangles)} triangles, "
              f"{len(texcoords)} texcoords, {len(frames)} frames")

    return MD2Data(
        header=hdr,
        skins=skins,
        triangles=triangles,
        texcoords=texcoords,
        frames=frames,
        keyframes=_readonly(np.stack(keyframes)),
        scaled_texcoords=_readonly(scaled_texcoords),
    )


def decode_md2_bytes(data: bytes, name: str = "", verbose: bool = False) -> MD2Data:
    return decode_md2(io.BytesIO(data), name=name, verbose=verbose)
