import pytest

from interpreter import BlueRuntimeError
from objects import NULL, TYPE_NULL, TYPE_PROCESS

from helpers import run, run_output, show


def test_spawn_send_and_recv():
    source = """
    val worker = spawn(fun() {
        val msg = recv();
        send(msg["from"], msg["n"] * 2);
    });
    send(worker, {"from": self(), "n": 21});
    recv(self(), 5000)
    """
    assert run(source).value == 42


def test_spawn_passes_arguments():
    assert run('spawn(fun(to, text) { send(to, text) }, [self(), "x"]); recv(self(), 5000)').value == "x"


def test_self_in_main_is_process_zero():
    result = run("self()")
    assert (result.type, result.value) == (TYPE_PROCESS, 0)
    assert run("self().id").value == 0
    assert run("self().name").value == "main"


def test_wait_and_is_alive():
    assert run("val p = spawn(fun() { sleep(10) }); wait(p); is_alive(p)").value is False
    assert run("val p = spawn(fun() { recv() }); val alive = is_alive(p); send(p, 1); wait(p); alive").value is True


def test_wait_accepts_a_list_of_processes():
    source = """
    val main = self();
    var ps = [];
    for (i in 1..3) { ps << spawn(fun(n) { send(main, n) }, [i]) }
    wait(ps);
    sorted([recv(main, 1000), recv(main, 1000), recv(main, 1000)])
    """
    assert show(source) == "[1, 2, 3]"


def test_process_name_and_id():
    source = """
    fun worker() { recv() }
    val p = spawn(worker);
    val n = p.name;
    send(p, 1);
    wait(p);
    [n, p.id > 0, p.name]
    """
    assert show(source) == '["worker", true, null]'


def test_spawned_rebinding_does_not_leak():
    assert run("var x = 1; val p = spawn(fun() { x = 2 }); wait(p); x").value == 1


def test_shared_containers_are_visible():
    assert show("var box = []; val p = spawn(fun() { box << 1 }); wait(p); box") == "[1]"


def test_process_errors_are_reported(capsys):
    assert run("val p = spawn(fun() { 1 / 0 }); wait(p); 5").value == 5
    assert "ProcessError: ArithmeticError: Division by zero" in capsys.readouterr().err


def test_process_output_uses_the_same_sink():
    _, output = run_output('val p = spawn(fun() { println("from task") }); wait(p)')
    assert output == "from task\n"


def test_send_to_finished_process():
    with pytest.raises(BlueRuntimeError, match="is not alive"):
        run("val p = spawn(fun() { 1 }); wait(p); send(p, 1)")


def test_recv_timeout_returns_null():
    assert run("recv(self(), 10)").type == TYPE_NULL


def test_spawn_requires_a_function():
    with pytest.raises(BlueRuntimeError, match="`spawn` expects a FUNCTION"):
        run("spawn(1)")


def test_pubsub_between_processes():
    source = """
    import pubsub
    val sub = pubsub.subscribe("jobs");
    val p = spawn(fun() { pubsub.publish("jobs", "done") });
    wait(p);
    recv(sub, 5000)
    """
    assert show(source) == '{"topic": "jobs", "msg": "done"}'


def test_subscriptions_end_with_their_process():
    source = """
    import pubsub
    val p = spawn(fun() { pubsub.subscribe("t"); null });
    wait(p);
    pubsub.subscriber_count("t")
    """
    assert run(source).value == 0


def test_process_records_start_empty():
    from pubsub import ProcessRecord

    first, second = ProcessRecord(pid=9, name="a"), ProcessRecord(pid=10, name="b")
    assert first.result is NULL
    assert first.error is None
    assert first.mailbox is not second.mailbox


def test_spawned_process_recurses_deeply():
    source = """
    spawn(fun(to) {
        fun f(n) { if (n == 0) { return 0 }; n + f(n - 1) };
        send(to, f(1000))
    }, [self()]);
    recv(self(), 5000)
    """
    assert run(source).value == 500500
