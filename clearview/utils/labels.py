"""
Class name and color list loading.

Both files are line-oriented and index-aligned: line N of the class file
names class id N, line N of the color file holds its ``r,g,b`` triple.
"""
from pathlib import Path
from typing import List, Tuple, Union

from clearview.utils.constants import PLACEHOLDER_COLOR
from clearview.utils.failures import ConfigError
from clearview.utils.logger import Logger

RGB = Tuple[int, int, int]

logger = Logger("Labels")


def _read_lines(path: Union[str, Path], what: str) -> List[str]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read().splitlines()
    except OSError as e:
        raise ConfigError(f"Cannot read {what} file {path}: {e}", critical=True) from e


def load_class_names(path: Union[str, Path]) -> List[str]:
    """Read class names, one per line. Every line counts so ids stay aligned."""
    names = _read_lines(path, "class names")
    if not names:
        raise ConfigError(f"Class names file is empty: {path}", critical=True)
    logger.info(f"Loaded {len(names)} class names from {path}")
    return names


def parse_rgb(line: str) -> RGB:
    parts = [p.strip() for p in line.split(',')]
    if len(parts) != 3:
        raise ValueError(f"expected 3 components, got {len(parts)}")
    r, g, b = (int(p) for p in parts)
    for c in (r, g, b):
        if not 0 <= c <= 255:
            raise ValueError(f"component {c} outside 0..255")
    return r, g, b


def load_colors(path: Union[str, Path]) -> List[RGB]:
    """
    Read ``r,g,b`` triples, one per line.

    Blank or malformed lines keep their slot with ``PLACEHOLDER_COLOR`` so
    every later color still lines up with its class id.
    """
    colors: List[RGB] = []
    valid = 0
    for lineno, line in enumerate(_read_lines(path, "colors"), start=1):
        try:
            colors.append(parse_rgb(line))
            valid += 1
        except ValueError as e:
            logger.warning(f"{path}:{lineno}: unusable color line {line!r} ({e}); using placeholder")
            colors.append(PLACEHOLDER_COLOR)
    if not valid:
        raise ConfigError(f"No valid colors in {path}", critical=True)
    logger.info(f"Loaded {len(colors)} colors from {path}")
    return colors
