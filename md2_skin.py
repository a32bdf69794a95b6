#!/usr/bin/env python3
"""
MD2 Skin - finds the image files behind the skin names stored in a model

Skin names inside an .md2 usually point into the game data tree
("models/monsters/tank/skin.pcx"), which rarely matches where the model
sits today. When the archive is a plain directory, each name is looked up
next to the model by file stem, trying .pcx, .png and .jpg in that order.
If nothing matches, every .png beside the model becomes a skin.

Packed archives keep the names from the header as they are.
"""

import os
import posixpath
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
from PIL import Image


@dataclass(frozen=True)
class SkinRef:
    name: str  # display name (file stem)
    path: str  # archive-relative path


def _stem(path: str) -> str:
    return posixpath.splitext(posixpath.basename(path.replace("\\", "/")))[0]


def header_skin_refs(skin_names: Sequence[str]) -> List[SkinRef]:
    """Skins exactly as the header names them, minus empty slots."""
    return [SkinRef(_stem(name), name) for name in skin_names if _stem(name)]


class SkinResolver:
    """
    Maps header skin names onto files that exist in the archive.

    `archive` needs is_directory(), exists(path) and list_dir(path).
    """

    SKIN_EXTENSIONS = (".pcx", ".png", ".jpg")
    FALLBACK_EXTENSION = ".png"

    def __init__(self, archive, verbose: bool = False):
        self.archive = archive
        self.verbose = verbose

    def resolve(self, model_path: str, skin_names: Sequence[str]) -> List[SkinRef]:
        if not self.archive.is_directory():
            return header_skin_refs(skin_names)

        root = posixpath.dirname(model_path.replace("\\", "/"))
        skins = []
        for name in skin_names:
            skin = self.find_skin(root, name)
            if skin is not None:
                skins.append(skin)
            elif self.verbose:
                print(f"[INFO] Skin not found beside model: {name}")

        if not skins:
            skins = self.scan_directory(root)

        if self.verbose:
            for skin in skins:
                print(f"✅ Skin: {skin.name} -> {skin.path}")
        return skins

    def find_skin(self, root: str, skin_name: str) -> Optional[SkinRef]:
        stem = _stem(skin_name)
        if not stem:
            return None
        for ext in self.SKIN_EXTENSIONS:
            candidate = posixpath.join(root, stem + ext)
            if self.archive.exists(candidate):
                return SkinRef(stem, candidate)
        return None

    def scan_directory(self, root: str) -> List[SkinRef]:
        return [
            SkinRef(_stem(path), path)
            for path in self.archive.list_dir(root)
            if os.path.splitext(path)[1].lower() == self.FALLBACK_EXTENSION
        ]


def load_skin_image(archive, skin: SkinRef, flip_vertical: bool = False) -> np.ndarray:
    """Decode a skin to a (height, width, 4) uint8 RGBA array."""
    with archive.open(skin.path) as f:
        img = Image.open(f)
        if flip_vertical:
            img = img.transpose(Image.Transpose.FLIP_TOP_BOTTOM)
        return np.array(img.convert("RGBA"))
