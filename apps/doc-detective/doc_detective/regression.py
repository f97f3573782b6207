"""Baseline comparison for captured text and image output."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog
from PIL import Image, ImageChops
from rapidfuzz.distance import Levenshtein

LOGGER = structlog.get_logger("doc_detective", component="regression")


@dataclass
class BaselineComparison:
    """What happened when new output met the stored baseline."""

    status: str
    description: str
    difference: float = 0.0
    changed: bool = False


def levenshtein_distance(source: str, target: str) -> int:
    if source == target:
        return 0
    return Levenshtein.distance(source, target)


def text_difference(existing: str, new: str) -> float:
    """Edit distance as a fraction of the longer string; 0 means identical."""

    longest = max(len(existing), len(new))
    if longest == 0:
        return 0.0
    return levenshtein_distance(existing, new) / longest


def variation_message(difference: float, max_variation: float, subject: str = "output") -> str:
    return (
        f"The difference between the existing {subject} and the new {subject} ({difference:.2f}) "
        f"is greater than the max accepted variation ({max_variation})."
    )


def compare_text(
    path: str, content: str, max_variation: float, overwrite: str, subject: str = "output"
) -> BaselineComparison:
    """Compare ``content`` with the file at ``path``, writing it when policy allows."""

    baseline = Path(path)
    baseline.parent.mkdir(parents=True, exist_ok=True)
    if not baseline.exists():
        baseline.write_text(content, encoding="utf-8")
        return BaselineComparison("PASS", "Saved output to file.", changed=True)

    difference = text_difference(baseline.read_text(encoding="utf-8"), content)
    LOGGER.debug("text_difference_measured", path=path, difference=difference)
    notes = []
    if overwrite == "false":
        notes.append("Didn't save output. File already exists.")

    if difference > max_variation:
        if overwrite in {"aboveVariation", "true"}:
            baseline.write_text(content, encoding="utf-8")
            notes.append("Saved output to file.")
        notes.append(variation_message(difference, max_variation, subject))
        return BaselineComparison("WARNING", " ".join(notes), difference, changed=True)

    if overwrite == "true":
        baseline.write_text(content, encoding="utf-8")
        notes.append("Saved output to file.")
    return BaselineComparison("PASS", " ".join(notes), difference)


def image_difference(existing: Image.Image, new: Image.Image) -> Optional[float]:
    """Fraction of differing pixels, or ``None`` when aspect ratios differ."""

    if existing.width * new.height != new.width * existing.height:
        return None
    if existing.size != new.size:
        new = new.resize(existing.size)
    delta = ImageChops.difference(existing.convert("RGBA"), new.convert("RGBA"))
    changed = sum(1 for pixel in delta.getdata() if any(pixel))
    return changed / (existing.width * existing.height)


def compare_image(path: str, candidate: str, max_variation: float, overwrite: str) -> BaselineComparison:
    """Compare the image at ``candidate`` with the baseline at ``path``.

    The candidate replaces the baseline when policy allows; otherwise it is removed.
    """

    baseline = Path(path)
    new_file = Path(candidate)
    if not baseline.exists():
        new_file.replace(baseline)
        return BaselineComparison("PASS", "Saved screenshot.", changed=True)

    with Image.open(baseline) as existing, Image.open(new_file) as new:
        difference = image_difference(existing, new)
    if difference is None:
        new_file.unlink(missing_ok=True)
        return BaselineComparison("FAIL", "Couldn't compare images. Images have different aspect ratios.")

    LOGGER.debug("image_difference_measured", path=path, difference=difference)
    if difference > max_variation:
        if overwrite in {"aboveVariation", "true"}:
            new_file.replace(baseline)
        else:
            new_file.unlink(missing_ok=True)
        return BaselineComparison(
            "WARNING", variation_message(difference, max_variation, "screenshot"), difference, changed=True
        )

    if overwrite == "true":
        new_file.replace(baseline)
        return BaselineComparison("PASS", "Saved screenshot.", difference, changed=True)
    new_file.unlink(missing_ok=True)
    return BaselineComparison("PASS", "Screenshot is within the accepted variation.", difference)
