from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from facemodes.embedders import Embedder


class ColorEmbedder(Embedder):
    """Embeds an image as its mean RGB colour scaled to [0, 1]."""

    embedding_size = 3

    def __init__(self) -> None:
        self.closed = False
        self.calls = 0

    def embed(self, img: np.ndarray) -> np.ndarray:
        self.calls += 1
        return (img.reshape(-1, 3).mean(axis=0) / 255.0).astype(np.float32)

    def close(self) -> None:
        self.closed = True


def write_jpeg(path: Path, color=(255, 0, 0), size=(16, 16)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="JPEG", quality=95)
    return path


@pytest.fixture
def color_embedder() -> ColorEmbedder:
    return ColorEmbedder()


@pytest.fixture
def faces_dir(tmp_path: Path) -> Path:
    root = tmp_path / "faces"
    write_jpeg(root / "a_red.jpg", (255, 0, 0))
    write_jpeg(root / "b_red.jpg", (250, 0, 0))
    write_jpeg(root / "nested" / "c_blue.jpg", (0, 0, 255))
    (root / "notes.txt").write_text("not an image", encoding="utf-8")
    return root
