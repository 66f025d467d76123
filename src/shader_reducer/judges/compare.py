from __future__ import annotations

from pathlib import Path
from typing import Protocol

import numpy as np
from PIL import Image


class ImageComparator(Protocol):
    def accepts(self, image: Path, reference: Path) -> bool:
        ...


def _load_rgba(path: Path) -> Image.Image:
    with Image.open(path) as image:
        return image.convert("RGBA")


def images_identical(image: Path, reference: Path) -> bool:
    left = _load_rgba(image)
    right = _load_rgba(reference)
    return left.size == right.size and left.tobytes() == right.tobytes()


def histogram_distance(image: Path, reference: Path) -> float:
    left = np.asarray(_load_rgba(image).histogram(), dtype=np.float64)
    right = np.asarray(_load_rgba(reference).histogram(), dtype=np.float64)
    total = left + right
    mask = total > 0
    return float(np.sum((left[mask] - right[mask]) ** 2 / total[mask]))


class ExactImageComparator:
    def __init__(self, identical: bool) -> None:
        self.identical = identical

    def accepts(self, image: Path, reference: Path) -> bool:
        return images_identical(image, reference) == self.identical


class HistogramImageComparator:
    """Below-threshold accepts distance < threshold; above accepts distance >= threshold."""

    def __init__(self, threshold: float, above: bool) -> None:
        if threshold < 0:
            raise ValueError("threshold must be non-negative")
        self.threshold = threshold
        self.above = above

    def accepts_distance(self, distance: float) -> bool:
        if self.above:
            return distance >= self.threshold
        return distance < self.threshold

    def accepts(self, image: Path, reference: Path) -> bool:
        return self.accepts_distance(histogram_distance(image, reference))
