import textwrap

import pytest

from extensions import (
    BlueExtensionError,
    ExtensionAPI,
    HookRegistry,
    RuntimeServices,
    StdlibLoader,
    gather_extension_paths,
    load_runtime_services,
    read_bxt,
)
from interpreter import BlueRuntimeError, Interpreter

GREETER = '''
from objects import make_string

BLUE_EXTENSION_NAME = "greeter"


def blue_register(ext):
    ext.metadata(name="greeter", version="1.0")

    @ext.builtin("greet", 1, 1, doc="greet(name) -> STRING")
    def greet(interpreter, args, arg_nodes, env, location):
        return make_string("hello " + args[0].value)

    ext.register_builtin("len", 1, 1, lambda *a: make_string("shadowed"))
'''

DOUBLER = '''
from numeric import make_integer

BLUE_EXTENSION_NAME = "doubler"
BLUE_MODULE_SOURCE = "fun twice(x) { _twice(x) }"


def blue_register(ext):
    ext.register_builtin("_twice", 1, 1, lambda interp, args, nodes, env, loc: make_integer(args[0].value * 2))
'''


def write(path, text):
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def run_with(services, source):
    return Interpreter(source=source, services=services, output_sink=lambda text: None).run()


def test_extension_adds_global_builtins(tmp_path):
    services = load_runtime_services([str(write(tmp_path / "greeter.py", GREETER))])
    assert run_with(services, 'greet("bo")').value == "hello bo"
    assert run_with(services, "help(greet)").value == "greet(name) -> STRING"
    assert [m.name for m in services.metadata] == ["greeter"]


def test_extension_cannot_shadow_core_builtins(tmp_path):
    services = load_runtime_services([str(write(tmp_path / "greeter.py", GREETER))])
    assert run_with(services, 'len("abc")').value == 3


def test_extension_with_module_source_is_importable(tmp_path):
    services = load_runtime_services([str(write(tmp_path / "doubler.py", DOUBLER))])
    assert run_with(services, "import doubler\ndoubler.twice(21)").value == 42
    with pytest.raises(BlueRuntimeError, match="identifier not found: _twice"):
        run_with(services, "_twice(1)")


def test_bxt_pointer_file(tmp_path):
    write(tmp_path / "greeter.py", GREETER)
    pointer = write(tmp_path / "exts.bxt", "# extensions\ngreeter.py  # relative to this file\n\n")
    assert read_bxt(str(pointer)) == [str(tmp_path / "greeter.py")]
    assert gather_extension_paths([str(pointer)]) == [str(tmp_path / "greeter.py")]
    services = load_runtime_services([str(pointer)])
    assert run_with(services, 'greet("x")').value == "hello x"


def test_missing_extension(tmp_path):
    with pytest.raises(BlueExtensionError, match="Extension not found"):
        load_runtime_services([str(tmp_path / "absent.py")])
    with pytest.raises(BlueExtensionError, match=".bxt file not found"):
        load_runtime_services([str(tmp_path / "absent.bxt")])


def test_extension_without_register_hook(tmp_path):
    path = write(tmp_path / "empty.py", "X = 1\n")
    with pytest.raises(BlueExtensionError, match="must define callable blue_register"):
        load_runtime_services([str(path)])


def test_extension_api_version_mismatch(tmp_path):
    path = write(tmp_path / "future.py", "BLUE_EXTENSION_API_VERSION = 99\ndef blue_register(ext):\n    pass\n")
    with pytest.raises(BlueExtensionError, match="requires API 99"):
        load_runtime_services([str(path)])


def test_duplicate_builtin_registration():
    ext = ExtensionAPI(services=RuntimeServices(), ext_name="dup")
    ext.register_builtin("f", 0, 0, lambda *a: None)
    with pytest.raises(BlueExtensionError, match="registered twice"):
        ext.register_builtin("f", 0, 0, lambda *a: None)


def test_event_hooks_run_by_priority():
    services = RuntimeServices()
    ext = ExtensionAPI(services=services, ext_name="hooks")
    seen = []
    ext.on_event("program_end", lambda interp, result: seen.append(("low", result.value)), priority=0)

    @ext.on_event("program_end", priority=10)
    def high(interp, result):
        seen.append(("high", result.value))

    run_with(services, "1 + 1")
    assert seen == [("high", 2), ("low", 2)]


def test_call_hooks_see_builtin_calls():
    services = RuntimeServices()
    ext = ExtensionAPI(services=services, ext_name="calls")
    names = []
    ext.on_event("before_call", lambda interp, name, args, env, location: names.append(name))
    run_with(services, 'fun f(x) { len(x) }; f("ab")')
    assert names == ["f", "len"]


def test_every_n_steps():
    services = RuntimeServices()
    ext = ExtensionAPI(services=services, ext_name="steps")
    steps = []

    @ext.every_n_steps(2)
    def record(interp, ctx):
        steps.append(ctx.step_index)

    run_with(services, "var a = 1; var b = 2; var c = 3; var d = 4")
    assert steps == [2, 4]
    with pytest.raises(BlueExtensionError, match="every_n_steps must be >= 1"):
        HookRegistry().add_step_rule(name="bad", every_n=0, handler=record, ext_name="steps")


def test_failing_hook_becomes_runtime_error():
    services = RuntimeServices()
    ext = ExtensionAPI(services=services, ext_name="broken")

    def explode(*args):
        raise ValueError("nope")

    ext.on_event("program_start", explode)
    with pytest.raises(BlueRuntimeError, match="Extension hook 'program_start' failed: nope"):
        run_with(services, "1")


def test_stdlib_loader_knows_shipped_modules():
    loader = StdlibLoader(RuntimeServices())
    assert loader.has("math")
    assert not loader.has("nothing")
    host = loader.host_module("time")
    assert any(builtin.name == "_now" for builtin in host.builtins)
    assert loader.program("time") is loader.program("time")
    with pytest.raises(BlueExtensionError, match="Unknown stdlib module"):
        loader.host_module("nothing")
