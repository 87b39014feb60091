from __future__ import annotations

import asyncio
import threading

import cv2
import numpy as np
import pytest
import requests

import live_composite.background as background_mod
from live_composite.background import BackgroundSnapshot, BackgroundStore, load_background, resolve_source
from live_composite.config import BACKGROUND_PRESETS
from live_composite.errors import BackgroundLoadError


class _FakeResp:
    def __init__(self, content: bytes):
        self.content = content

    def raise_for_status(self) -> None:
        return None


def _write_dummy_image(path, bgr=(0, 0, 255), size=(12, 8)) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    img = np.zeros((size[1], size[0], 3), dtype=np.uint8)
    img[:] = bgr
    assert cv2.imwrite(str(path), img)


def test_load_file_returns_rgb_snapshot(tmp_path):
    p = tmp_path / "bg" / "red.png"
    _write_dummy_image(p)
    snap = load_background(str(p))
    assert snap.size == (12, 8)
    assert snap.image[0, 0].tolist() == [255, 0, 0]
    assert not snap.image.flags.writeable


@pytest.mark.parametrize("name", sorted(BACKGROUND_PRESETS))
def test_presets_resolve_to_bundled_files(name):
    snap = load_background(name)
    assert snap.source == name
    assert snap.image.ndim == 3
    assert resolve_source(name).endswith(BACKGROUND_PRESETS[name])


def test_missing_or_corrupt_file_raises(tmp_path):
    with pytest.raises(BackgroundLoadError):
        load_background(str(tmp_path / "nope.png"))
    bad = tmp_path / "bad.png"
    bad.write_bytes(b"not an image")
    with pytest.raises(BackgroundLoadError):
        load_background(str(bad))


def test_load_url(monkeypatch):
    bgr = np.zeros((4, 6, 3), dtype=np.uint8)
    bgr[..., 1] = 200
    ok, encoded = cv2.imencode(".png", bgr)
    assert ok
    seen = {}

    def _fake_get(url, timeout=None):
        seen["url"] = url
        seen["timeout"] = timeout
        return _FakeResp(encoded.tobytes())

    monkeypatch.setattr(background_mod.requests, "get", _fake_get)
    snap = load_background("https://example.com/bg.png", timeout_s=3.0)
    assert seen == {"url": "https://example.com/bg.png", "timeout": 3.0}
    assert snap.size == (6, 4)
    assert snap.image[0, 0].tolist() == [0, 200, 0]


def test_url_failure_is_wrapped(monkeypatch):
    def _fake_get(url, timeout=None):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(background_mod.requests, "get", _fake_get)
    with pytest.raises(BackgroundLoadError):
        load_background("http://example.com/bg.png")


def _snapshot(source: str) -> BackgroundSnapshot:
    return BackgroundSnapshot.from_array(source, np.zeros((2, 2, 3), dtype=np.uint8))


@pytest.mark.asyncio
async def test_store_select_and_clear():
    store = BackgroundStore(loader=_snapshot)
    snap = await store.select("office")
    assert store.current is snap
    assert snap.source == "office"
    assert await store.select("") is None
    assert store.current is None


@pytest.mark.asyncio
async def test_store_failed_load_leaves_no_background():
    def _failing(source):
        raise BackgroundLoadError(f"cannot load {source}")

    store = BackgroundStore(loader=_snapshot)
    await store.select("office")
    store._loader = _failing
    assert await store.select("beach") is None
    assert store.current is None


@pytest.mark.asyncio
async def test_store_discards_superseded_load():
    release = threading.Event()

    def _loader(source):
        if source == "slow":
            assert release.wait(5.0)
        return _snapshot(source)

    store = BackgroundStore(loader=_loader)
    slow = asyncio.ensure_future(store.select("slow"))
    await asyncio.sleep(0.01)
    await store.select("fast")
    assert store.current.source == "fast"
    release.set()
    await slow
    assert store.current.source == "fast"
