#!/usr/bin/env python3
"""
MD2 Core - Quake II model loading and keyframe playback

CLASSES:
    - MD2Model: decoded geometry + skins + animation player for one model

FUNCTIONS:
    - load_model: open a model through an archive, decode it, resolve skins
    - main: command line inspector

FEATURES:
    - Header validated before any buffer is sized from it
    - Per-corner flattened keyframes and texcoords (glDrawArrays-ready)
    - Animations derived from frame names ("run1".."run6" -> "run")
    - Linear blending between keyframes, driven by update(dt)
    - Skin lookup beside the model with .png fallback

USAGE:
    md2-inspect baseq2/pak0.pak --list
    md2-inspect models/ tank/tris.md2 --simulate 2.5 --json tank.json
"""

import argparse
import json
import math
import sys
from typing import BinaryIO, List, Optional, Union

import numpy as np

from md2_animation import Animation, AnimationPlayer, segment_animations
from md2_errors import MD2LoadError, MD2StreamError, PakError, PreconditionError
from md2_parser import Frame, Header, MD2Data, Triangle, decode_md2
from md2_skin import SkinRef, SkinResolver, header_skin_refs, load_skin_image
from pak import PAK


class MD2Model:
    """
    🎯 ONE LOADED MD2 MODEL

    Owns its decoded buffers and its playback state; nothing is shared
    between instances. Geometry is immutable after load, the interpolated
    buffer changes on every update().
    """

    DEFAULT_FPS = AnimationPlayer.DEFAULT_FPS

    def __init__(self, data: MD2Data, skins: List[SkinRef], name: str = "", fps: float = DEFAULT_FPS):
        self.name = name
        self._data = data
        self._skins = list(skins)
        self._skin_index = 0 if self._skins else None

        animations, index = segment_animations([frame.name for frame in data.frames])
        self.player = AnimationPlayer(data.keyframes, animations, index, fps)

    @classmethod
    def load(cls, stream: BinaryIO, name: str = "", verbose: bool = False, fps: float = DEFAULT_FPS) -> "MD2Model":
        """Decode a model from a binary stream, keeping the header skin names."""
        data = decode_md2(stream, name=name, verbose=verbose)
        model = cls(data, header_skin_refs([skin.name for skin in data.skins]), name=name, fps=fps)
        if verbose:
            model._print_animations()
        return model

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def header(self) -> Header:
        return self._data.header

    def skins(self) -> List[SkinRef]:
        return list(self._skins)

    def skin_index(self) -> Optional[int]:
        return self._skin_index

    def current_skin(self) -> Optional[SkinRef]:
        if self._skin_index is None:
            return None
        return self._skins[self._skin_index]

    def animations(self) -> List[Animation]:
        return self.player.animations

    def animation_index(self) -> int:
        return self.player.current_animation_index

    def current_animation(self) -> Animation:
        return self.player.animation

    def frames(self) -> List[Frame]:
        return list(self._data.frames)

    def triangles(self) -> List[Triangle]:
        return list(self._data.triangles)

    def keyframes(self) -> np.ndarray:
        """(num_frames, num_tris * 3, 3) float32, read-only."""
        return self._data.keyframes

    def texcoords(self) -> np.ndarray:
        """(num_tris * 3, 2) float32, read-only, shared by every frame."""
        return self._data.scaled_texcoords

    def current_interpolated_vertices(self) -> np.ndarray:
        """(num_tris * 3, 3) float32, read-only view of the live buffer."""
        return self.player.interpolated_vertices()

    def frames_per_second(self) -> float:
        return self.player.fps

    # =========================================================================
    # PLAYBACK
    # =========================================================================

    def set_animation(self, id_or_index: Union[str, int]) -> None:
        self.player.set_animation(id_or_index)

    def set_animation_loop(self, id_or_index: Union[str, int], loop: bool) -> None:
        self.player.set_animation_loop(id_or_index, loop)

    def set_frames_per_second(self, fps: float) -> None:
        self.player.set_frames_per_second(fps)

    def set_frame(self, frame: int) -> None:
        self.player.set_frame(frame)

    def set_skin_index(self, index: int) -> None:
        if not 0 <= index < len(self._skins):
            raise PreconditionError(f"skin index {index} outside [0, {len(self._skins)})")
        self._skin_index = index

    def update(self, delta_seconds: float) -> None:
        self.player.update(delta_seconds)

    # =========================================================================
    # REPORTING
    # =========================================================================

    def get_system_status(self):
        hdr = self.header()
        return {
            "name": self.name,
            "triangles": hdr.num_tris,
            "vertices": hdr.num_xyz,
            "texcoords": hdr.num_st,
            "frames": hdr.num_frames,
            "corners_per_frame": int(self.keyframes().shape[1]),
            "skins": len(self._skins),
            "animations": len(self.animations()),
            "current_animation": self.current_animation().name,
            "current_frame": self.player.current_frame,
            "next_frame": self.player.next_frame,
            "interpolation": self.player.interpolation,
            "fps": self.frames_per_second(),
            "state": self.player.state(),
        }

    def get_debug_info(self) -> str:
        info = ["🎯 MD2 MODEL DEBUG:"]
        for key, value in self.get_system_status().items():
            info.append(f"  {key}: {value}")

        info.append("\nHeader:")
        info.extend("  " + line for line in self.header().describe().splitlines())

        info.append("\nSkins:")
        if self._skins:
            for i, skin in enumerate(self._skins):
                marker = "*" if i == self._skin_index else " "
                info.append(f" {marker}{i:03d} - {skin.name} ({skin.path})")
        else:
            info.append("  (none)")

        info.append("\nAnimations:")
        for i, anim in enumerate(self.animations()):
            marker = "*" if i == self.animation_index() else " "
            info.append(f" {marker}{i:03d} - {anim.name} [{anim.start_frame}..{anim.end_frame}]"
                        f"{'' if anim.loop else ' once'}")
        return "\n".join(info)

    def to_json_dict(self):
        return {
            "name": self.name,
            "header": self.header().to_dict(),
            "skins": [{"name": s.name, "path": s.path} for s in self._skins],
            "animations": [
                {"name": a.name, "start_frame": a.start_frame, "end_frame": a.end_frame, "loop": a.loop}
                for a in self.animations()
            ],
            "frames": [frame.name for frame in self._data.frames],
        }

    def _print_animations(self):
        for anim in self.animations():
            print(anim.describe())


def load_model(archive, path: str, verbose: bool = False, fps: float = MD2Model.DEFAULT_FPS) -> MD2Model:
    """Open `path` through `archive`, decode it and resolve its skins.

    Raises MD2StreamError if the file cannot be opened or read and
    MD2FormatError if its contents are invalid.
    """
    try:
        stream = archive.open(path)
    except (OSError, PakError) as e:
        raise MD2StreamError(f"cannot open {path}: {e}") from e

    with stream:
        data = decode_md2(stream, name=path, verbose=verbose)

    skins = SkinResolver(archive, verbose=verbose).resolve(path, [skin.name for skin in data.skins])
    model = MD2Model(data, skins, name=path, fps=fps)
    if verbose:
        model._print_animations()
        print(f"✅ Model loaded: {path}")
    return model


def describe_skin_image(archive, skin: SkinRef) -> str:
    """One status line with the decoded size of a skin, or why it has none."""
    if not archive.exists(skin.path):
        return f"[INFO] Skin not in archive: {skin.path}"
    try:
        pixels = load_skin_image(archive, skin)
    except OSError as e:  # includes PIL.UnidentifiedImageError
        return f"[ERROR] Cannot decode skin {skin.path}: {e}"
    height, width = pixels.shape[:2]
    return f"✅ Skin {skin.name}: {width}x{height} RGBA"


# =============================================================================
# COMMAND LINE
# =============================================================================

SIMULATION_TICKS_PER_SECOND = 60


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="md2-inspect", description="Inspect and play back Quake II .md2 models")
    p.add_argument("archive", help=".pak file or directory holding the models")
    p.add_argument("model", nargs="?", help="model path inside the archive (default: first model)")
    p.add_argument("--list", action="store_true", help="list the models in the archive and exit")
    p.add_argument("--json", metavar="OUT", help="write a JSON description of the model")
    p.add_argument("--animation", help="animation name to select before simulating")
    p.add_argument("--fps", type=float, default=MD2Model.DEFAULT_FPS, help="playback rate (clamped to 0..60)")
    p.add_argument("--simulate", type=float, default=0.0, metavar="SECONDS",
                   help=f"advance playback this long at {SIMULATION_TICKS_PER_SECOND} ticks per second")
    p.add_argument("--verbose", action="store_true")
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if not math.isfinite(args.simulate):
        print(f"[ERROR] --simulate needs a finite number of seconds, got {args.simulate}")
        return 2

    try:
        archive = PAK(args.archive, verbose=args.verbose)
    except PakError as e:
        print(f"[ERROR] {e}")
        return 2

    if args.list:
        for path in archive.models():
            print(path)
        return 0

    model_path = args.model
    if model_path is None:
        if not archive.has_models():
            print(f"[ERROR] No .md2 models in {args.archive}")
            return 2
        model_path = archive.models()[0]

    try:
        model = load_model(archive, model_path, verbose=args.verbose, fps=args.fps)
    except MD2LoadError as e:
        print(f"[ERROR] Failed to load {model_path}: {e}")
        return 1
    except PreconditionError as e:
        print(f"[ERROR] {e}")
        return 2

    if args.verbose:
        for skin in model.skins():
            print(describe_skin_image(archive, skin))

    if args.animation:
        try:
            model.set_animation(args.animation)
        except PreconditionError as e:
            print(f"[ERROR] {e}")
            return 2

    if args.simulate > 0:
        dt = 1.0 / SIMULATION_TICKS_PER_SECOND
        for _ in range(int(round(args.simulate * SIMULATION_TICKS_PER_SECOND))):
            model.update(dt)

    print(model.get_debug_info())

    if args.json:
        with open(args.json, "w", encoding="utf-8") as f:
            json.dump(model.to_json_dict(), f, indent=2)
        print(f"✅ JSON written: {args.json}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
