#!/usr/bin/env python3
"""
CAPTCHA Recognition Engine - fixed-pitch template matching.

Each character cell is scored against every template as
(ink pixels shared with the template) / (ink pixels in the template).
"""

import logging
import os
import pickle
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .binarizer import INK, PAPER, load_grid

logger = logging.getLogger(__name__)

UNKNOWN = "?"


@dataclass(frozen=True)
class CellLayout:
    count: int = 6
    width: int = 32
    height: int = 30
    offsets: Optional[Sequence[int]] = None
    pitch: int = 30

    def __post_init__(self):
        if self.offsets is None:
            object.__setattr__(self, "offsets", tuple(i * self.pitch for i in range(self.count)))
        else:
            object.__setattr__(self, "offsets", tuple(self.offsets))
        if len(self.offsets) != self.count:
            raise ValueError(f"Layout has {self.count} cells but {len(self.offsets)} offsets")

    @classmethod
    def from_settings(cls, settings) -> "CellLayout":
        return cls(
            count=settings.captcha_cells,
            width=settings.captcha_cell_width,
            height=settings.captcha_cell_height,
            offsets=settings.captcha_cell_offsets,
            pitch=settings.captcha_cell_pitch,
        )

    def cells(self, binary):
        """Yield each W x H cell, padded with paper where it runs off the image."""
        binary = np.asarray(binary)
        for x in self.offsets:
            cell = np.full((self.height, self.width), PAPER, dtype=np.uint8)
            piece = binary[:self.height, x:x + self.width]
            cell[:piece.shape[0], :piece.shape[1]] = piece
            yield cell


@dataclass(frozen=True, eq=False)
class CharacterTemplate:
    symbol: str
    bitmap: np.ndarray

    @property
    def ink(self):
        return np.asarray(self.bitmap) == INK


@dataclass
class OcrResult:
    text: str
    confidences: List[float]

    @property
    def min_confidence(self) -> float:
        return min(self.confidences) if self.confidences else 0.0


class TemplateLibrary:
    """Ordered symbol templates; registration order breaks score ties."""

    def __init__(self, templates=None):
        self.templates: List[CharacterTemplate] = list(templates or [])

    def __len__(self):
        return len(self.templates)

    def register(self, symbol: str, bitmap) -> CharacterTemplate:
        if len(symbol) != 1:
            raise ValueError(f"Template symbol must be a single character: {symbol!r}")
        template = CharacterTemplate(symbol, np.asarray(bitmap, dtype=np.uint8))
        self.templates.append(template)
        return template

    def learn(self, binary, text: str, layout: CellLayout) -> int:
        """Cut a labelled, cleaned CAPTCHA into cells and register each as a template."""
        if len(text) != layout.count:
            raise ValueError(f"Label {text!r} does not match {layout.count} cells")
        added = 0
        for symbol, cell in zip(text, layout.cells(binary)):
            if not (cell == INK).any():
                continue
            self.register(symbol, cell)
            added += 1
        return added

    def save(self, path):
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, "wb") as f:
            pickle.dump([(t.symbol, t.bitmap) for t in self.templates], f)

    @classmethod
    def load(cls, path) -> "TemplateLibrary":
        if not os.path.exists(path):
            raise FileNotFoundError(f"Template DB not found: {path}")
        with open(path, "rb") as f:
            entries = pickle.load(f)
        library = cls()
        for symbol, bitmap in entries:
            library.register(symbol, bitmap)
        return library


class TemplateMatcher:
    def __init__(self, library: TemplateLibrary, layout: Optional[CellLayout] = None):
        self.library = library
        self.layout = layout or CellLayout()

    def match_cell(self, cell):
        cell_ink = np.asarray(cell) == INK
        best_symbol, best_score = UNKNOWN, 0.0
        for template in self.library.templates:
            template_ink = template.ink
            total = int(template_ink.sum())
            if total == 0:
                continue
            h = min(cell_ink.shape[0], template_ink.shape[0])
            w = min(cell_ink.shape[1], template_ink.shape[1])
            shared = int((cell_ink[:h, :w] & template_ink[:h, :w]).sum())
            score = shared / total
            if score > best_score:
                best_symbol, best_score = template.symbol, score
        return best_symbol, best_score

    def match(self, binary) -> OcrResult:
        symbols, confidences = [], []
        for cell in self.layout.cells(binary):
            symbol, score = self.match_cell(cell)
            symbols.append(symbol)
            confidences.append(score)
        result = OcrResult("".join(symbols), confidences)
        logger.debug("OCR read %s (min confidence %.2f)", result.text, result.min_confidence)
        return result

    def solve(self, image_bytes: bytes) -> OcrResult:
        return self.match(load_grid(image_bytes))


_matchers = {}


def load_matcher(settings) -> TemplateMatcher:
    layout = CellLayout.from_settings(settings)
    try:
        library = TemplateLibrary.load(settings.template_db)
    except FileNotFoundError:
        logger.warning("No template DB at %s; OCR will read '?' until templates are built",
                       settings.template_db)
        library = TemplateLibrary()
    return TemplateMatcher(library, layout)


def get_matcher(settings) -> TemplateMatcher:
    """Shared matcher per template DB and cell layout."""
    layout = CellLayout.from_settings(settings)
    key = (str(settings.template_db), layout)
    if key not in _matchers:
        _matchers[key] = load_matcher(settings)
    return _matchers[key]
