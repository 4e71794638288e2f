from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import pytest
from bs4 import BeautifulSoup

from respimg import documents
from respimg.cache import ProcessedImageCache
from respimg.host import BuildFile, SiteBuild
from respimg.plugin import optimize_images, run_build
from respimg.settings import build_settings

from conftest import html_file


def _soup(files, path: str) -> BeautifulSoup:
    return BeautifulSoup(files[path].contents.decode("utf-8"), "html.parser")


def _generated(files, output_dir: str = "assets/images/responsive"):
    return sorted(p for p in files if p.startswith(output_dir + "/"))


def test_scenario_single_image(site: SiteBuild, make_image) -> None:
    files = {
        "index.html": html_file('<main><img src="/images/photo.jpg" alt="Photo"></main>'),
        "images/photo.jpg": BuildFile(make_image(1920, 1080), mtime=1000.0),
    }
    plugin = optimize_images({"widths": [320, 640], "formats": ["webp", "original"]})

    result = plugin(files, site)

    assert result.ok
    generated = _generated(files)
    assert len(generated) == 4
    assert sum(p.endswith(".webp") for p in generated) == 2
    assert sum(p.endswith(".jpg") for p in generated) == 2

    soup = _soup(files, "index.html")
    picture = soup.find("picture")
    assert picture is not None
    sources = picture.find_all("source")
    assert len(sources) == 1
    assert sources[0]["type"] == "image/webp"
    entries = [e.split() for e in sources[0]["srcset"].split(", ")]
    assert [e[1] for e in entries] == ["320w", "640w"]
    assert all(e[0].startswith("/assets/images/responsive/photo-") for e in entries)

    img = picture.find("img")
    assert img["src"] == "/images/photo.jpg"
    assert img["alt"] == "Photo"
    assert (img["width"], img["height"]) == ("640", "360")
    assert result.images_transcoded == 1


def test_done_callback_called_once_with_none(site: SiteBuild, make_image) -> None:
    calls = []
    files = {
        "index.html": html_file('<img src="images/a.jpg">'),
        "images/a.jpg": BuildFile(make_image(400, 200)),
    }
    optimize_images({"widths": [200], "formats": ["webp"]})(files, site, calls.append)
    assert calls == [None]


def test_external_and_data_sources_are_left_alone(site: SiteBuild, make_image) -> None:
    markup = (
        '<img src="https://cdn.example.com/a.jpg">'
        '<img src="//cdn.example.com/b.jpg">'
        '<img src="data:image/png;base64,iVBORw0KGgo=">'
        "<img>"
    )
    files = {"index.html": html_file(markup), "images/a.jpg": BuildFile(make_image(400, 200))}
    cache = ProcessedImageCache()
    s = build_settings({"widths": [200], "formats": ["webp"], "process_unused_images": False})

    result = asyncio.run(run_build(files, site, s, cache))

    assert result.ok
    assert files["index.html"].contents.decode("utf-8") == markup
    assert len(cache) == 0
    assert _generated(files) == []


def test_same_image_in_two_documents_is_transcoded_once(
    site: SiteBuild, make_image, monkeypatch: pytest.MonkeyPatch
) -> None:
    calls = []
    real = documents.transcode_image

    async def counting(data, path, s):
        calls.append(path)
        return await real(data, path, s)

    monkeypatch.setattr(documents, "transcode_image", counting)
    files = {
        "a.html": html_file('<img src="/images/tree.jpg" alt="A"><img src="images/tree.jpg" alt="again">'),
        "blog/b.html": html_file('<img src="/images/tree.jpg" alt="B">'),
        "images/tree.jpg": BuildFile(make_image(800, 400), mtime=42.0),
    }
    plugin = optimize_images({"widths": [200, 400], "formats": ["webp"], "concurrency": 2})

    result = plugin(files, site)

    assert calls == ["images/tree.jpg"]
    assert result.cache_hits == 2
    srcsets = [
        [s["srcset"] for s in _soup(files, name).find_all("source")]
        for name in ("a.html", "blog/b.html")
    ]
    assert srcsets[0][0] == srcsets[0][1] == srcsets[1][0]


def test_changed_mtime_is_a_new_cache_entry(site: SiteBuild, make_image) -> None:
    cache = ProcessedImageCache()
    s = build_settings({"widths": [200], "formats": ["webp"], "process_unused_images": False})
    image = make_image(400, 200)

    first = {"index.html": html_file('<img src="a.jpg">'), "a.jpg": BuildFile(image, mtime=1.0)}
    second = {"index.html": html_file('<img src="a.jpg">'), "a.jpg": BuildFile(image, mtime=2.0)}
    asyncio.run(run_build(first, site, s, cache))
    asyncio.run(run_build(second, site, s, cache))

    assert sorted(k.mtime for k, _ in cache.items()) == [1.0, 2.0]


def test_missing_image_is_skipped(
    site: SiteBuild, make_image, caplog: pytest.LogCaptureFixture
) -> None:
    markup = '<img src="/images/missing.jpg" alt="gone"><img src="/images/ok.jpg">'
    files = {"index.html": html_file(markup), "images/ok.jpg": BuildFile(make_image(400, 200))}

    with caplog.at_level(logging.WARNING, logger="respimg"):
        result = optimize_images({"widths": [200], "formats": ["webp"]})(files, site)

    assert result.ok
    assert [f.path for f in result.failures] == ["images/missing.jpg"]
    soup = _soup(files, "index.html")
    assert soup.find("img", src="/images/missing.jpg").parent.name != "picture"
    assert len(soup.find_all("picture")) == 1
    assert "images/missing.jpg" in caplog.text


def test_corrupt_image_does_not_fail_the_build(site: SiteBuild, make_image) -> None:
    files = {
        "index.html": html_file('<img src="bad.jpg"><img src="good.jpg">'),
        "bad.jpg": BuildFile(b"not an image"),
        "good.jpg": BuildFile(make_image(400, 200)),
    }

    result = optimize_images({"widths": [200], "formats": ["webp"]})(files, site)

    assert result.ok
    assert [f.path for f in result.failures] == ["bad.jpg"]
    assert len(_soup(files, "index.html").find_all("picture")) == 1


def test_image_read_from_build_directory(site: SiteBuild, make_image) -> None:
    target = site.destination() / "images" / "disk.jpg"
    target.parent.mkdir(parents=True)
    target.write_bytes(make_image(400, 200))
    files = {"index.html": html_file('<img src="/images/disk.jpg">')}

    result = optimize_images({"widths": [200], "formats": ["webp"]})(files, site)

    assert result.ok
    assert "images/disk.jpg" in files
    assert files["images/disk.jpg"].mtime == target.stat().st_mtime
    assert _soup(files, "index.html").find("picture") is not None


def test_opted_out_and_picture_wrapped_images_are_skipped(site: SiteBuild, make_image) -> None:
    markup = (
        '<img src="a.jpg" data-no-responsive>'
        '<picture><source srcset="a.webp"><img src="a.jpg"></picture>'
    )
    files = {"index.html": html_file(markup), "a.jpg": BuildFile(make_image(400, 200))}

    optimize_images({"widths": [200], "formats": ["webp"], "process_unused_images": False})(files, site)

    assert files["index.html"].contents.decode("utf-8") == markup


def test_html_pattern_limits_documents(site: SiteBuild, make_image) -> None:
    files = {
        "blog/post.html": html_file('<img src="a.jpg">'),
        "other/page.html": html_file('<img src="a.jpg">'),
        "a.jpg": BuildFile(make_image(400, 200)),
    }
    optimize_images({"widths": [200], "formats": ["webp"], "html_pattern": "blog/**/*.html"})(files, site)

    assert _soup(files, "blog/post.html").find("picture") is not None
    assert _soup(files, "other/page.html").find("picture") is None


def test_no_html_files_is_a_no_op(site: SiteBuild, make_image) -> None:
    files = {"images/a.jpg": BuildFile(make_image(400, 200))}
    result = optimize_images()(files, site)

    assert result.ok
    assert list(files) == ["images/a.jpg"]


def test_manifest(site: SiteBuild, make_image) -> None:
    files = {
        "index.html": html_file('<img src="images/a.jpg">'),
        "images/a.jpg": BuildFile(make_image(400, 200)),
    }
    optimize_images(
        {"widths": [100, 200], "formats": ["webp"], "generate_metadata": True, "output_dir": "img/out"}
    )(files, site)

    manifest = json.loads(files["img/out/responsive-images-manifest.json"].contents)
    assert list(manifest) == ["images/a.jpg"]
    records = sorted(manifest["images/a.jpg"], key=lambda r: r["width"])
    assert [(r["width"], r["height"], r["format"]) for r in records] == [(100, 50, "webp"), (200, 100, "webp")]
    for r in records:
        assert r["size"] == len(files[r["path"]].contents)


def test_progressive_mode(site: SiteBuild, make_image) -> None:
    files = {
        "index.html": html_file('<img src="/images/a.jpg" alt="A">'),
        "images/a.jpg": BuildFile(make_image(800, 400)),
    }
    result = optimize_images(
        {"widths": [200, 400, 600], "formats": ["webp", "original"], "is_progressive": True}
    )(files, site)

    assert result.ok
    wrapper = _soup(files, "index.html").find("div", class_="js-progressive-image-wrapper")
    assert wrapper is not None
    assert wrapper["style"] == "aspect-ratio: 800/400"
    low = wrapper.find("img", class_="low-res")
    assert low["src"] == "/assets/images/responsive/a-placeholder.jpg"
    assert "assets/images/responsive/a-placeholder.jpg" in files
    assert "assets/images/responsive/progressive-images.js" in files
    assert "assets/images/responsive/progressive-images.css" in files


class _BrokenBuild(SiteBuild):
    def destination(self) -> Path:
        raise PermissionError("destination not accessible")


def test_accessor_failure_is_reported_not_raised(tmp_path: Path) -> None:
    calls = []
    files = {"index.html": html_file('<img src="a.jpg">')}

    result = optimize_images()(files, _BrokenBuild(tmp_path), calls.append)

    assert result.state == "failed"
    assert isinstance(result.error, PermissionError)
    assert calls == [result.error]


class _NoDebugBuild(SiteBuild):
    def debug(self, namespace: str):
        raise RuntimeError("debug factory broken")


def test_debug_factory_failure_is_reported_not_raised(tmp_path: Path) -> None:
    calls = []
    files = {"index.html": html_file('<img src="a.jpg">')}

    result = optimize_images()(files, _NoDebugBuild(tmp_path), calls.append)

    assert result.state == "failed"
    assert isinstance(result.error, RuntimeError)
    assert calls == [result.error]


def test_images_per_document_stay_within_concurrency(
    site: SiteBuild, make_image, monkeypatch: pytest.MonkeyPatch
) -> None:
    in_flight = 0
    peak = 0
    calls = []

    async def slow(data, path, s):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        calls.append(path)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return []

    monkeypatch.setattr(documents, "transcode_image", slow)
    names = [f"images/{i}.jpg" for i in range(5)]
    files = {"index.html": html_file("".join(f'<img src="/{n}">' for n in names))}
    for n in names:
        files[n] = BuildFile(make_image(100, 50))

    result = optimize_images({"concurrency": 2, "process_unused_images": False})(files, site)

    assert result.ok
    assert sorted(calls) == names
    assert peak == 2


def test_second_progressive_run_leaves_output_alone(site: SiteBuild, make_image) -> None:
    files = {
        "index.html": html_file('<img src="/images/a.jpg" alt="A">'),
        "images/a.jpg": BuildFile(make_image(800, 400)),
    }
    plugin = optimize_images(
        {
            "widths": [200, 400],
            "formats": ["webp", "original"],
            "is_progressive": True,
            "process_unused_images": False,
        }
    )

    assert plugin(files, site).ok
    first = files["index.html"].contents
    generated = _generated(files)

    second = plugin(files, site)

    assert second.ok
    assert second.images_transcoded == 0
    assert files["index.html"].contents == first
    assert _generated(files) == generated
    assert len(_soup(files, "index.html").find_all("div", class_="js-progressive-image-wrapper")) == 1
    assert not any("placeholder-placeholder" in p for p in files)
