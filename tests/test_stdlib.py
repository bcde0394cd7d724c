import hashlib
import math

import pytest
from PIL import Image

from interpreter import BlueRuntimeError, RuntimeContext
from objects import TYPE_FLOAT, TYPE_HOST, TYPE_INTEGER

from helpers import make_interpreter, run, show


def test_math_constants_and_scalars():
    assert run("import math\nmath.PI").value == pytest.approx(math.pi)
    assert run("import math\nmath.sqrt(16)").value == 4.0
    assert run("import math\nmath.log(8, base=2)").value == pytest.approx(3.0)
    assert run("import math\nmath.hypot(3, 4)").value == 5.0
    assert run("import math\nmath.is_nan(math.sqrt(-1))").value is True
    assert run("import math\nmath.is_inf(math.INF)").value is True


def test_math_rounding_returns_integers():
    result = run("import math\nmath.floor(2.7)")
    assert (result.type, result.value) == (TYPE_INTEGER, 2)
    assert run("import math\nmath.ceil(2.1)").value == 3
    assert run("import math\nmath.round(2.567, 2)").value == pytest.approx(2.57)
    assert run("import math\nmath.abs(-3)").value == 3


def test_math_integer_helpers():
    assert show("import math\n[math.gcd(12, 18), math.lcm(4, 6)]") == "[6, 12]"


def test_math_statistics():
    assert run("import math\nmath.sum([1, 2, 3])").type == TYPE_INTEGER
    assert run("import math\nmath.sum([1, 2.5])").value == 3.5
    assert run("import math\nmath.mean([1, 2, 3, 4])").value == 2.5
    assert run("import math\nmath.median([3, 1, 2])").value == 2.0
    assert run("import math\nmath.stddev([2, 4, 4, 4, 5, 5, 7, 9])").value == 2.0
    assert run("import math\nmath.dot([1, 2], [3, 4])").value == 11.0
    assert show("import math\nmath.linspace(0, 1, 3)") == "[0.0, 0.5, 1.0]"
    assert show("import math\n[math.min([3, 1, 2]), math.max([3, 1, 2])]") == "[1, 3]"
    with pytest.raises(BlueRuntimeError, match="non-empty LIST"):
        run("import math\nmath.mean([])")
    with pytest.raises(BlueRuntimeError, match="equal length"):
        run("import math\nmath.dot([1], [1, 2])")


def test_math_rand_range():
    value = run("import math\nmath.rand()")
    assert value.type == TYPE_FLOAT
    assert 0.0 <= value.value < 1.0


def test_host_builtins_are_private_to_the_module():
    with pytest.raises(BlueRuntimeError, match="identifier not found: _sqrt"):
        run("import math\n_sqrt(4)")
    with pytest.raises(BlueRuntimeError, match="cannot use private object '_sqrt'"):
        run("import math\nmath._sqrt(4)")


def test_from_import_of_stdlib_names():
    assert run("from math import sqrt, PI\nsqrt(PI * PI)").value == pytest.approx(math.pi)


def test_help_for_stdlib_function():
    assert run("import math\nhelp(math.sqrt)").value.startswith("Square root of x")


def test_crypto_digests_and_encodings():
    expected = hashlib.sha256(b"abc").hexdigest()
    assert run('import crypto\ncrypto.sha("abc")').value == expected
    assert run('import crypto\ncrypto.sha("abc", "md5")').value == hashlib.md5(b"abc").hexdigest()
    assert run('import crypto\ncrypto.encode_hex("hi")').value == "6869"
    assert run('import crypto\ncrypto.decode_hex("6869")').value == "hi"
    assert run('import crypto\ncrypto.encode_base64("hi")').value == "aGk="
    assert run('import crypto\ncrypto.decode_base64("aGk=")').value == "hi"
    with pytest.raises(BlueRuntimeError, match="unknown algorithm"):
        run('import crypto\ncrypto.sha("abc", "sha0")')


def test_crypto_encrypt_round_trip():
    source = 'import crypto\nval c = crypto.encrypt("pw", "secret"); crypto.decrypt("pw", c)'
    assert run(source).value == "secret"
    with pytest.raises(BlueRuntimeError, match="wrong password"):
        run('import crypto\nval c = crypto.encrypt("pw", "secret"); crypto.decrypt("nope", c)')


def test_crypto_password_hashes():
    source = """
    import crypto
    val h = crypto.generate_from_password("hunter2");
    [crypto.compare_hash_and_password(h, "hunter2"), crypto.compare_hash_and_password(h, "nope")]
    """
    assert show(source) == "[true, false]"


def test_crypto_random_bytes():
    assert len(run("import crypto\ncrypto.random_bytes(8)").value) == 16


def test_time_module():
    assert run("import time\nval t = time.now(); time.since(t) >= 0").value is True
    assert run("import time\ntime.now_ms()").type == TYPE_INTEGER
    assert run('import time\ntime.format(0, "%Y")').value in ("1969", "1970")
    assert len(run("import time\ntime.format()").value) == len("2000-01-01 00:00:00")


def test_pubsub_publish_and_receive():
    source = """
    import pubsub
    val sub = pubsub.subscribe("news");
    val delivered = pubsub.publish("news", {"headline": "hi"});
    [delivered, recv(sub), pubsub.subscriber_count("news"), pubsub.topics()]
    """
    assert show(source) == '[1, {"topic": "news", "msg": {"headline": "hi"}}, 1, ["news"]]'


def test_pubsub_broadcast_and_unsubscribe():
    source = """
    import pubsub
    val sub = pubsub.subscribe("a");
    pubsub.add_topic("b");
    val sent = pubsub.broadcast("all");
    pubsub.unsubscribe("a");
    [sent, sub.recv(100), pubsub.publish("a", 1), recv(sub, 10)]
    """
    assert show(source) == '[1, {"topic": "a", "msg": "all"}, 0, null]'


def test_image_new_pixels_and_save(tmp_path):
    target = tmp_path / "out.png"
    source = f"""
    import image
    val img = image.new(4, 3, [255, 0, 0]);
    image.set_pixel(img, 1, 1, [0, 255, 0, 128]);
    image.save(img, "{target}");
    [image.size(img), image.get_pixel(img, 0, 0), image.get_pixel(img, 1, 1), image.mode(img)]
    """
    assert show(source) == '[[4, 3], [255, 0, 0, 255], [0, 255, 0, 128], "RGBA"]'
    with Image.open(target) as saved:
        assert saved.size == (4, 3)


def test_image_open_and_resize(tmp_path):
    path = tmp_path / "in.png"
    Image.new("RGB", (8, 8), (10, 20, 30)).save(path)
    source = f'import image\nval img = image.resize(image.open("{path}"), 2, 2); [image.width(img), image.height(img), image.get_pixel(img, 0, 0)]'
    assert show(source) == "[2, 2, [10, 20, 30, 255]]"


def test_image_value_is_host_object():
    assert run("import image\nimage.new(1, 1)").type == TYPE_HOST


def test_image_argument_errors(tmp_path):
    with pytest.raises(BlueRuntimeError, match="invalid image dimensions"):
        run("import image\nimage.new(0, 1)")
    with pytest.raises(BlueRuntimeError, match="outside 1x1 image"):
        run("import image\nimage.get_pixel(image.new(1, 1), 5, 0)")
    with pytest.raises(BlueRuntimeError, match="3 or 4 channels"):
        run("import image\nimage.new(1, 1, [1])")
    with pytest.raises(BlueRuntimeError, match="file not found"):
        run(f'import image\nimage.open("{tmp_path / "nope.png"}")')


def test_stdlib_module_is_cached_per_context():
    context = RuntimeContext()
    first, _ = make_interpreter("import math\nmath", context=context)
    second, _ = make_interpreter("import math\nmath", context=context)
    assert first.run().value is second.run().value
