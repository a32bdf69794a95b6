#!/usr/bin/env python3
"""
MD2 Animation - frame-name segmentation and keyframe playback

CLASSES:
    - Animation: a named, contiguous run of frames
    - AnimationPlayer: timing state machine producing the blended vertex buffer

FUNCTIONS:
    - animation_id_from_frame_name: "run12" -> "run"
    - segment_animations: ordered frame names -> animations + name index

PLAYBACK STATES:
    - Playing: fps > 0, more than one frame, not stopped at a non-looping end
    - Paused: fps == 0
    - Frozen: start_frame == end_frame
    - Stopped: not loop and current_frame == end_frame
    update() in Paused/Frozen/Stopped leaves the previous buffer untouched.
"""

import math
import operator
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from md2_errors import PreconditionError


@dataclass(frozen=True)
class Animation:
    name: str
    start_frame: int
    end_frame: int  # inclusive
    loop: bool = True

    @property
    def num_frames(self) -> int:
        return self.end_frame - self.start_frame + 1

    def describe(self) -> str:
        return (f"id:    {self.name}\n"
                f"start: {self.start_frame}\n"
                f"end:   {self.end_frame}\n"
                f"loop:  {str(self.loop).lower()}")


# =============================================================================
# SEGMENTATION
# =============================================================================

def animation_id_from_frame_name(name: str) -> str:
    """Longest prefix of `name` without a decimal digit."""
    for i, ch in enumerate(name):
        if ch.isdigit():
            return name[:i]
    return name


def segment_animations(frame_names: Sequence[str]) -> Tuple[List[Animation], Dict[str, int]]:
    """Group consecutive frames sharing an animation id.

    Returns the animations in frame order and a name -> index map. A name
    that appears again after another animation starts a new run; the map
    keeps the first run for it.
    """
    animations: List[Animation] = []
    index: Dict[str, int] = {}

    current = None  # (id, start, end)
    for i, frame_name in enumerate(frame_names):
        anim_id = animation_id_from_frame_name(frame_name)
        if current is not None and current[0] == anim_id:
            current = (anim_id, current[1], i)
            continue
        if current is not None:
            index.setdefault(current[0], len(animations))
            animations.append(Animation(*current))
        current = (anim_id, i, i)

    if current is not None:
        index.setdefault(current[0], len(animations))
        animations.append(Animation(*current))

    return animations, index


# =============================================================================
# PLAYER
# =============================================================================

class AnimationPlayer:
    """
    Advances through keyframes and linearly blends the current and next one.

    `keyframes` is a (num_frames, num_corners, 3) array. The blended buffer
    is recomputed in place on every update that is not a no-op.
    Not thread-safe; callers serialize update() and buffer reads.
    """

    DEFAULT_FPS = 8.0
    MAX_FPS = 60.0
    # accumulated dt * fps within this of 1.0 counts as a full frame
    ADVANCE_TOLERANCE = 1e-9

    def __init__(self, keyframes: np.ndarray, animations: List[Animation],
                 animation_index: Optional[Dict[str, int]] = None, fps: float = DEFAULT_FPS):
        if not animations:
            raise PreconditionError("player needs at least one animation")
        self.keyframes = keyframes
        self._animations = list(animations)
        self._index = dict(animation_index) if animation_index is not None else {
            anim.name: i for i, anim in reversed(list(enumerate(self._animations)))
        }

        self.fps = 0.0
        self.set_frames_per_second(fps)

        first = self._animations[0]
        self.current_animation_index = 0
        self.current_frame = first.start_frame
        self.next_frame = self._following(first, first.start_frame)
        self.interpolation = 0.0
        self._interpolated = np.array(keyframes[first.start_frame], dtype=np.float32, copy=True)

    # -------------------------------------------------------------------------
    # accessors

    @property
    def animations(self) -> List[Animation]:
        return list(self._animations)

    @property
    def animation(self) -> Animation:
        return self._animations[self.current_animation_index]

    def interpolated_vertices(self) -> np.ndarray:
        view = self._interpolated.view()
        view.flags.writeable = False
        return view

    def state(self) -> str:
        anim = self.animation
        if self.fps == 0.0:
            return "paused"
        if anim.start_frame == anim.end_frame:
            return "frozen"
        if not anim.loop and self.current_frame == anim.end_frame:
            return "stopped"
        return "playing"

    # -------------------------------------------------------------------------
    # modifiers

    def resolve(self, id_or_index: Union[str, int]) -> int:
        if isinstance(id_or_index, str):
            if id_or_index not in self._index:
                raise PreconditionError(f"no animation named {id_or_index!r}")
            return self._index[id_or_index]
        try:
            index = operator.index(id_or_index)
        except TypeError:
            raise PreconditionError(f"animation index must be an integer, got {id_or_index!r}") from None
        if not 0 <= index < len(self._animations):
            raise PreconditionError(f"animation index {index} outside [0, {len(self._animations)})")
        return index

    def set_animation(self, id_or_index: Union[str, int]) -> None:
        # current_frame is kept and may still point into the previous animation.
        index = self.resolve(id_or_index)
        if index != self.current_animation_index:
            self.current_animation_index = index
            self.next_frame = self._animations[index].start_frame
            self.interpolation = 0.0

    def set_animation_loop(self, id_or_index: Union[str, int], loop: bool) -> None:
        index = self.resolve(id_or_index)
        self._animations[index] = replace(self._animations[index], loop=bool(loop))

    def set_frames_per_second(self, fps: float) -> None:
        if math.isnan(fps):
            raise PreconditionError("frames per second is NaN")
        self.fps = float(min(max(fps, 0.0), self.MAX_FPS))

    def set_frame(self, frame: int) -> None:
        anim = self.animation
        if not anim.start_frame <= frame <= anim.end_frame:
            raise PreconditionError(
                f"frame {frame} outside animation {anim.name!r} [{anim.start_frame}, {anim.end_frame}]")
        self.current_frame = frame
        self.next_frame = self._following(anim, frame)
        self.interpolation = 0.0
        self._blend()

    def update(self, dt: float) -> None:
        if not math.isfinite(dt) or dt < 0:
            raise PreconditionError(f"time step must be finite and non-negative, got {dt}")
        if self.state() != "playing":
            return

        anim = self.animation
        self.interpolation += dt * self.fps

        if self.interpolation >= 1.0 - self.ADVANCE_TOLERANCE:
            self.current_frame = self.next_frame
            self.next_frame += 1
            if self.next_frame > anim.end_frame:
                if anim.loop:
                    self.next_frame = anim.start_frame
                else:
                    self.current_frame = anim.end_frame
                    self.next_frame = anim.end_frame
            # remainder is dropped, not carried into the next frame
            self.interpolation = 0.0

        self._blend()

    # -------------------------------------------------------------------------

    @staticmethod
    def _following(anim: Animation, frame: int) -> int:
        nxt = frame + 1
        if nxt > anim.end_frame:
            return anim.start_frame if anim.loop else anim.end_frame
        return nxt

    def _blend(self) -> None:
        a = self.keyframes[self.current_frame]
        b = self.keyframes[self.next_frame]
        t = np.float32(self.interpolation)
        np.subtract(b, a, out=self._interpolated)
        self._interpolated *= t
        self._interpolated += a
