"""
Progressive loading markup.

A wrapper keeps the layout at the image's aspect ratio, shows a blurred
placeholder right away and carries the real image in data-source, for
LOADER_JS to swap in once the wrapper scrolls into view.
"""

from __future__ import annotations

import posixpath
from typing import Dict, Sequence

from bs4 import BeautifulSoup, Tag

from .picture import attr_text, fallback_group, largest
from .results import Placeholder, SizedVariant
from .settings import ResponsiveSettings

WRAPPER_CLASSES = "responsive-wrapper js-progressive-image-wrapper"

LOADER_JS_NAME = "progressive-images.js"
LOADER_CSS_NAME = "progressive-images.css"

LOADER_JS = """\
(function () {
  'use strict';

  var AVIF = 'data:image/avif;base64,AAAAIGZ0eXBhdmlmAAAAAGF2aWZtaWYxbWlhZk1BMUEAAADybWV0YQAAAAAAAAAoaGRscgAAAAAAAAAAcGljdAAAAAAAAAAAAAAAAGxpYmF2aWYAAAAADnBpdG0AAAAAAAEAAAAeaWxvYwAAAABEAAABAAEAAAABAAABGgAAABYAAAAoaWluZgAAAAAAAQAAABppbmZlAgAAAAABAABhdjAxQ29sb3IAAAAAamlwcnAAAABLaXBjbwAAABRpc3BlAAAAAAAAAAEAAAABAAAAEHBpeGkAAAAAAwgICAAAAAxhdjFDgSAAAAAAABNjb2xybmNseAACAAIABoAAAAAXaXBtYQAAAAAAAAABAAEEAQKDBAAAAB5tZGF0EgAKBzgADlAgIGkyCR/wAABAAACvcA==';
  var WEBP = 'data:image/webp;base64,UklGRiQAAABXRUJQVlA4IBgAAAAwAQCdASoCAAEAAQAcJaQAA3AA/v3AgAA=';

  function supports(uri) {
    if (!window.createImageBitmap || !window.fetch) { return Promise.resolve(false); }
    return fetch(uri).then(function (r) { return r.blob(); })
      .then(function (b) { return createImageBitmap(b); })
      .then(function () { return true; }, function () { return false; });
  }

  function bestFormat() {
    return supports(AVIF).then(function (ok) {
      if (ok) { return 'avif'; }
      return supports(WEBP).then(function (ok2) { return ok2 ? 'webp' : null; });
    });
  }

  function sourceFor(img, format) {
    var src = img.dataset.source;
    return format ? src.replace(/\\.(jpe?g|png)$/i, '.' + format) : src;
  }

  function reveal(wrapper, format) {
    var img = wrapper.querySelector('.high-res');
    if (!img || !img.dataset.source) { return; }
    img.onload = function () { wrapper.classList.add('done'); };
    img.onerror = function () { wrapper.classList.add('error'); };
    img.src = sourceFor(img, format);
  }

  function init() {
    bestFormat().then(function (format) {
      var wrappers = document.querySelectorAll('.js-progressive-image-wrapper');
      if (!('IntersectionObserver' in window)) {
        wrappers.forEach(function (w) { reveal(w, format); });
        return;
      }
      var observer = new IntersectionObserver(function (entries) {
        entries.forEach(function (entry) {
          if (entry.isIntersecting) {
            observer.unobserve(entry.target);
            reveal(entry.target, format);
          }
        });
      }, { rootMargin: '50px' });
      wrappers.forEach(function (w) { observer.observe(w); });
    });
  }

  if (document.readyState === 'loading') {
    document.addEventListener('DOMContentLoaded', init);
  } else {
    init();
  }
})();
"""

LOADER_CSS = """\
.responsive-wrapper {
  position: relative;
  overflow: hidden;
  background-color: #f0f0f0;
}

.responsive-wrapper .low-res,
.responsive-wrapper .high-res {
  position: absolute;
  top: 0;
  left: 0;
  width: 100%;
  height: 100%;
  object-fit: cover;
  transition: opacity 0.4s ease;
}

.responsive-wrapper .high-res { opacity: 0; }
.responsive-wrapper.done .high-res { opacity: 1; }
.responsive-wrapper.done .low-res { opacity: 0; }
.responsive-wrapper.error .low-res { filter: none; }
"""


def build_progressive_wrapper(
    soup: BeautifulSoup,
    img: Tag,
    variants: Sequence[SizedVariant],
    placeholder: Placeholder,
    s: ResponsiveSettings,
) -> Tag:
    alt = attr_text(img, "alt")
    class_name = attr_text(img, "class")

    group = fallback_group(variants, s)
    if not group:
        raise ValueError("no variants to load")

    if placeholder.original_width and placeholder.original_height:
        aspect = f"{placeholder.original_width}/{placeholder.original_height}"
    else:
        ref = largest(group)
        aspect = f"{ref.width}/{ref.height}"

    # Middle width: a balance between sharpness and bytes.
    high = group[len(group) // 2]

    classes = WRAPPER_CLASSES + (f" {class_name}" if class_name else "")
    wrapper = soup.new_tag("div", attrs={"class": classes, "style": f"aspect-ratio: {aspect}"})

    wrapper.append(
        soup.new_tag(
            "img",
            attrs={"class": "low-res", "src": f"/{placeholder.path}", "alt": alt, "loading": "eager"},
        )
    )
    wrapper.append(
        soup.new_tag(
            "img",
            attrs={"class": "high-res", "src": "", "alt": alt, "data-source": f"/{high.path}"},
        )
    )
    return wrapper


def loader_assets(s: ResponsiveSettings) -> Dict[str, bytes]:
    """Build paths and contents of the loader script and stylesheet."""
    return {
        posixpath.join(s.output_dir, LOADER_JS_NAME): LOADER_JS.encode("utf-8"),
        posixpath.join(s.output_dir, LOADER_CSS_NAME): LOADER_CSS.encode("utf-8"),
    }
