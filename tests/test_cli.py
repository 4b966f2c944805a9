import zipfile
from pathlib import Path

from PIL import Image, ImageDraw
from typer.testing import CliRunner

from smart_batch_crop.cli import app

runner = CliRunner()


def _write_images(folder: Path, count: int) -> list[Path]:
    folder.mkdir(parents=True, exist_ok=True)
    paths = []
    for i in range(count):
        image = Image.new("RGB", (320, 240), color="#303030")
        ImageDraw.Draw(image).rectangle((20 + i * 40, 40, 80 + i * 40, 100), fill="#ff4040")
        path = folder / f"photo{i}.png"
        image.save(path)
        paths.append(path)
    return paths


def test_export_single_image(tmp_path: Path) -> None:
    [source] = _write_images(tmp_path / "in", 1)
    out = tmp_path / "out"
    result = runner.invoke(app, [
        "export", str(source), "--out", str(out), "--width", "100", "--height", "100",
        "--format", "png", "--no-remember",
    ])
    assert result.exit_code == 0, result.output
    written = out / "image-1.png"
    assert written.exists()
    with Image.open(written) as exported:
        assert exported.size == (100, 100)


def test_export_folder_writes_archive(tmp_path: Path) -> None:
    _write_images(tmp_path / "in", 3)
    out = tmp_path / "out"
    result = runner.invoke(app, [
        "export", str(tmp_path / "in"), "--out", str(out), "--format", "jpg",
        "--prefix", "set-", "--no-smart",
    ])
    assert result.exit_code == 0, result.output
    [archive_path] = list(out.glob("*.zip"))
    with zipfile.ZipFile(archive_path) as archive:
        assert archive.namelist() == ["set-1.jpg", "set-2.jpg", "set-3.jpg"]
    assert "exported=3 failed=0" in result.output


def test_export_without_images_fails(tmp_path: Path) -> None:
    empty = tmp_path / "empty"
    empty.mkdir()
    result = runner.invoke(app, ["export", str(empty), "--out", str(tmp_path / "out")])
    assert result.exit_code == 1


def test_unknown_format_is_rejected(tmp_path: Path) -> None:
    [source] = _write_images(tmp_path / "in", 1)
    result = runner.invoke(app, ["export", str(source), "--format", "gif"])
    assert result.exit_code != 0


def test_analyze_prints_framing(tmp_path: Path) -> None:
    paths = _write_images(tmp_path / "in", 2)
    result = runner.invoke(app, ["analyze", *map(str, paths), "--width", "1", "--height", "1"])
    assert result.exit_code == 0, result.output
    lines = [line for line in result.output.splitlines() if line.startswith("photo")]
    assert len(lines) == 2
    assert all(": smart center=" in line for line in lines)


def test_undecodable_file_is_reported(tmp_path: Path) -> None:
    [good] = _write_images(tmp_path / "in", 1)
    bad = tmp_path / "in" / "broken.jpg"
    bad.write_bytes(b"garbage")
    result = runner.invoke(app, ["export", str(good), str(bad), "--out", str(tmp_path / "out"), "--no-smart"])
    assert result.exit_code == 1
    assert "broken.jpg" in result.output
    assert (tmp_path / "out" / "image-1.jpg").exists()
