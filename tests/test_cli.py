from __future__ import annotations

import cv2
import numpy as np
from PIL import Image

from live_composite import cli
from live_composite import config as config_mod


def _write_dummy_image(path, w: int = 24, h: int = 16) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    img = np.full((h, w, 3), 90, dtype=np.uint8)
    assert cv2.imwrite(str(path), img)


def test_still_command_composites_a_directory(tmp_path):
    in_dir = tmp_path / "in"
    out_dir = tmp_path / "out"
    _write_dummy_image(in_dir / "a.jpg")
    _write_dummy_image(in_dir / "nested" / "b.png")
    (in_dir / "notes.txt").write_text("skip me")

    code = cli.main(
        ["--log-level", "WARNING", "still", "--input", str(in_dir), "--output", str(out_dir), "--background", "beach"]
    )
    assert code == 0
    assert (out_dir / "a.png").exists()
    out = Image.open(out_dir / "nested" / "b.png")
    assert out.size == (24, 16)
    assert out.mode == "RGBA"


def test_still_command_with_missing_background_uses_fallback(tmp_path):
    in_dir = tmp_path / "in"
    _write_dummy_image(in_dir / "a.png")
    code = cli.main(
        ["still", "--input", str(in_dir), "--output", str(tmp_path / "out"), "--background", str(tmp_path / "nope.jpg")]
    )
    assert code == 0
    out = np.asarray(Image.open(tmp_path / "out" / "a.png"))
    assert out[0, 0, :3].tolist() == list(config_mod.FALLBACK_COLOR)


def test_live_args_build_session_config(monkeypatch):
    monkeypatch.setenv("LIVE_COMPOSITE_INFERENCE_TIMEOUT_S", "0.5")
    args = cli._build_parser().parse_args(["live", "--enhance", "low_light", "--paused", "--fps", "30"])
    config = cli._session_config(args)
    assert config.enhancement.mode.value == "low_light"
    assert config.tick_hz == 30.0
    assert config.inference_timeout_s == 0.5
    assert not config.start_running


def test_env_overrides_fall_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("LIVE_COMPOSITE_TICK_HZ", "fast")
    assert config_mod.get_tick_hz() == config_mod.TICK_HZ
    monkeypatch.setenv("LIVE_COMPOSITE_TICK_HZ", "-5")
    assert config_mod.get_tick_hz() == config_mod.TICK_HZ
    monkeypatch.setenv("LIVE_COMPOSITE_BACKGROUND_TIMEOUT_S", "2.5")
    assert config_mod.get_background_timeout_s() == 2.5
