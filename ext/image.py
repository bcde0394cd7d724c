"""Blue stdlib module `image`: RGBA images backed by Pillow.

An image value is a host object wrapping a ``PIL.Image.Image``; colors are
lists ``[r, g, b]`` or ``[r, g, b, a]`` with channels in 0..255.
"""

from __future__ import annotations

import os
from typing import Any, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from ext import expect, expect_host, expect_int, expect_str
from extensions import ExtensionAPI
from numeric import make_integer
from objects import NULL, TYPE_LIST, BlueRuntimeError, Value, host_value, make_list, make_string

BLUE_EXTENSION_NAME = "image"
BLUE_EXTENSION_API_VERSION = 1

BLUE_MODULE_SOURCE = r"""
fun new(width, height, color=[0, 0, 0, 0]) {
    ## A blank RGBA image filled with `color`.
    return _new(width, height, color);
}
fun open(path) { return _open(path); }
fun size(img) {
    ## [width, height] of an image.
    return _size(img);
}
fun width(img) { return _size(img)[0]; }
fun height(img) { return _size(img)[1]; }
fun get_pixel(img, x, y) { return _get_pixel(img, x, y); }
fun set_pixel(img, x, y, color) { return _set_pixel(img, x, y, color); }
fun resize(img, width, height) { return _resize(img, width, height); }
fun save(img, path) {
    ## Write the image; the format follows the file extension.
    return _save(img, path);
}
fun mode(img) { return _mode(img); }
fun fill(img, color) {
    ## Paint every pixel of `img` with `color`.
    val dims = _size(img);
    for (var y = 0; y < dims[1]; y += 1) {
        for (var x = 0; x < dims[0]; x += 1) {
            _set_pixel(img, x, y, color);
        }
    }
    return img;
}
"""

# Refuse decompression bombs and absurd canvas sizes.
MAX_PIXELS = 100_000_000


def _image(value: Value, rule: str) -> Image.Image:
    return expect_host(value, rule, "image")


def _guard_size(width: int, height: int, rule: str) -> None:
    if width <= 0 or height <= 0:
        raise BlueRuntimeError(f"`{rule}`: invalid image dimensions {width}x{height}", kind="Argument")
    if width * height > MAX_PIXELS:
        raise BlueRuntimeError(f"`{rule}`: image too large", kind="Argument")


def _color(value: Value, rule: str, position: int) -> Tuple[int, int, int, int]:
    items = expect(value, rule, position, TYPE_LIST)
    if len(items) not in (3, 4):
        raise BlueRuntimeError(f"`{rule}` color must have 3 or 4 channels. got={len(items)}", kind="Argument")
    channels = [expect_int(item, rule, position) for item in items]
    if any(c < 0 or c > 255 for c in channels):
        raise BlueRuntimeError(f"`{rule}` color channels must be in [0,255]", kind="Argument")
    if len(channels) == 3:
        channels.append(255)
    return tuple(channels)  # type: ignore[return-value]


def _point(img: Image.Image, args: Any, rule: str) -> Tuple[int, int]:
    x = expect_int(args[1], rule, 2)
    y = expect_int(args[2], rule, 3)
    width, height = img.size
    if not (0 <= x < width and 0 <= y < height):
        raise BlueRuntimeError(f"`{rule}` pixel ({x}, {y}) outside {width}x{height} image", kind="Argument")
    return x, y


def _new(_interpreter, args, _arg_nodes, _env, location):
    width = expect_int(args[0], "new", 1)
    height = expect_int(args[1], "new", 2)
    _guard_size(width, height, "new")
    color = _color(args[2], "new", 3) if len(args) > 2 else (0, 0, 0, 0)
    return host_value("image", Image.new("RGBA", (width, height), color))


def _open(_interpreter, args, _arg_nodes, _env, location):
    path = expect_str(args[0], "open")
    if not os.path.isfile(path):
        raise BlueRuntimeError(f"`open`: file not found: {path}", kind="Runtime")
    try:
        with Image.open(path) as handle:
            _guard_size(handle.width, handle.height, "open")
            img = handle.convert("RGBA")
    except (UnidentifiedImageError, OSError) as exc:
        raise BlueRuntimeError(f"`open`: cannot read image {path}: {exc}", kind="Runtime")
    return host_value("image", img)


def _size(_interpreter, args, _arg_nodes, _env, location):
    width, height = _image(args[0], "size").size
    return make_list([make_integer(width), make_integer(height)])


def _get_pixel(_interpreter, args, _arg_nodes, _env, location):
    img = _image(args[0], "get_pixel")
    x, y = _point(img, args, "get_pixel")
    pixel = np.asarray(img.getpixel((x, y)), dtype=np.uint8).reshape(-1)
    return make_list([make_integer(int(c)) for c in pixel])


def _set_pixel(_interpreter, args, _arg_nodes, _env, location):
    img = _image(args[0], "set_pixel")
    x, y = _point(img, args, "set_pixel")
    img.putpixel((x, y), _color(args[3], "set_pixel", 4))
    return NULL


def _resize(_interpreter, args, _arg_nodes, _env, location):
    img = _image(args[0], "resize")
    width = expect_int(args[1], "resize", 2)
    height = expect_int(args[2], "resize", 3)
    _guard_size(width, height, "resize")
    return host_value("image", img.resize((width, height), Image.Resampling.LANCZOS))


def _save(_interpreter, args, _arg_nodes, _env, location):
    img = _image(args[0], "save")
    path = expect_str(args[1], "save", 2)
    ext = os.path.splitext(path)[1].lower()
    target = img.convert("RGB") if ext in (".jpg", ".jpeg", ".bmp") else img
    try:
        target.save(path)
    except (ValueError, OSError) as exc:
        raise BlueRuntimeError(f"`save`: cannot write {path}: {exc}", kind="Runtime")
    return NULL


def _mode(_interpreter, args, _arg_nodes, _env, location):
    return make_string(_image(args[0], "mode").mode)


def blue_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="image", version="0.1.0")
    ext.register_builtin("_new", 2, 3, _new, doc="_new(width, height[, color]) -> image")
    ext.register_builtin("_open", 1, 1, _open, doc="_open(path) -> image (converted to RGBA)")
    ext.register_builtin("_size", 1, 1, _size, doc="_size(img) -> [width, height]")
    ext.register_builtin("_get_pixel", 3, 3, _get_pixel, doc="_get_pixel(img, x, y) -> [r, g, b, a]")
    ext.register_builtin("_set_pixel", 4, 4, _set_pixel, doc="_set_pixel(img, x, y, color) -> NULL")
    ext.register_builtin("_resize", 3, 3, _resize, doc="_resize(img, width, height) -> image")
    ext.register_builtin("_save", 2, 2, _save, doc="_save(img, path) -> NULL")
    ext.register_builtin("_mode", 1, 1, _mode, doc="_mode(img) -> STRING")
