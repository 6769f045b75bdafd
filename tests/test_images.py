from pathlib import Path

import pytest

from facemodes.errors import DecodeError, WalkError
from facemodes.images import collect_image_paths, decode_image, file_extension

from conftest import write_jpeg


def test_collect_is_recursive_and_sorted(faces_dir: Path) -> None:
    paths = collect_image_paths(faces_dir)
    assert paths == [faces_dir / "a_red.jpg", faces_dir / "b_red.jpg",
                     faces_dir / "nested" / "c_blue.jpg"]


def test_collect_top_level_only(faces_dir: Path) -> None:
    paths = collect_image_paths(faces_dir, recurse=False)
    assert paths == [faces_dir / "a_red.jpg", faces_dir / "b_red.jpg"]


def test_extension_is_case_sensitive(tmp_path: Path) -> None:
    write_jpeg(tmp_path / "upper.JPG")
    write_jpeg(tmp_path / "lower.jpg")
    assert collect_image_paths(tmp_path) == [tmp_path / "lower.jpg"]
    assert collect_image_paths(tmp_path, extension=".JPG") == [tmp_path / "upper.JPG"]


def test_missing_root_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(WalkError):
        collect_image_paths(tmp_path / "nowhere")


def test_decode_gives_rgb(tmp_path: Path) -> None:
    img = decode_image(write_jpeg(tmp_path / "x.jpg", (0, 0, 255), size=(8, 6)))
    assert img.shape == (6, 8, 3)
    assert img[..., 2].mean() > 200
    assert img[..., 0].mean() < 50


def test_decode_failure(tmp_path: Path) -> None:
    broken = tmp_path / "broken.jpg"
    broken.write_bytes(b"\xff\xd8 not really a jpeg")
    with pytest.raises(DecodeError):
        decode_image(broken)


def test_decode_rejects_other_formats(tmp_path: Path) -> None:
    from PIL import Image

    png = tmp_path / "fake.jpg"
    Image.new("RGB", (4, 4)).save(png, format="PNG")
    with pytest.raises(DecodeError):
        decode_image(png)


def test_dotfile_named_like_extension_matches(tmp_path: Path) -> None:
    write_jpeg(tmp_path / ".jpg")
    write_jpeg(tmp_path / "face.jpg")
    assert collect_image_paths(tmp_path) == [tmp_path / ".jpg", tmp_path / "face.jpg"]


def test_file_extension() -> None:
    assert file_extension("face.tar.jpg") == ".jpg"
    assert file_extension(".jpg") == ".jpg"
    assert file_extension("README") == ""
