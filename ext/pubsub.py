"""Blue stdlib module `pubsub`: topic messaging over the runtime's shared broker.

The calling process's pid is its subscriber id, so a spawned task that
subscribes gets its own queue and loses it when it exits.
"""

from __future__ import annotations

from ext import expect, expect_str
from extensions import ExtensionAPI
from numeric import make_integer
from objects import NULL, TYPE_LIST, TYPE_NULL, host_value, make_list, make_string

BLUE_EXTENSION_NAME = "pubsub"
BLUE_EXTENSION_API_VERSION = 1

BLUE_MODULE_SOURCE = r"""
fun subscribe(topic) {
    ## Subscribe the current process to `topic`; returns its subscriber.
    ## Read messages with recv(sub) or sub.recv(); each is {topic, msg}.
    return _subscribe(topic);
}
fun unsubscribe(topic) { return _unsubscribe(topic); }
fun publish(topic, msg) {
    ## Deliver msg to every subscriber of topic; returns the delivery count.
    return _publish(topic, msg);
}
fun broadcast(msg, topics=null) {
    ## Publish msg on each of `topics`, or on every known topic.
    return _broadcast(msg, topics);
}
fun add_topic(topic) { return _add_topic(topic); }
fun remove_topic(topic) { return _remove_topic(topic); }
fun subscriber_count(topic) { return _subscriber_count(topic); }
fun topics() { return _topics(); }
"""


def _subscribe(interpreter, args, _arg_nodes, _env, location):
    topic = expect_str(args[0], "subscribe")
    broker = interpreter.context.broker
    sub = broker.add_subscriber(interpreter.pid)
    broker.subscribe(sub, topic)
    return host_value("subscriber", sub)


def _unsubscribe(interpreter, args, _arg_nodes, _env, location):
    topic = expect_str(args[0], "unsubscribe")
    broker = interpreter.context.broker
    sub = broker.get_subscriber(interpreter.pid)
    if sub is not None:
        broker.unsubscribe(sub, topic)
    return NULL


def _publish(interpreter, args, _arg_nodes, _env, location):
    topic = expect_str(args[0], "publish", 1)
    return make_integer(interpreter.context.broker.publish(topic, args[1]))


def _broadcast(interpreter, args, _arg_nodes, _env, location):
    broker = interpreter.context.broker
    if len(args) < 2 or args[1].type == TYPE_NULL:
        return make_integer(broker.broadcast_all(args[0]))
    topics = [expect_str(item, "broadcast", 2) for item in expect(args[1], "broadcast", 2, TYPE_LIST)]
    return make_integer(broker.broadcast(topics, args[0]))


def _add_topic(interpreter, args, _arg_nodes, _env, location):
    interpreter.context.broker.add_topic(expect_str(args[0], "add_topic"))
    return NULL


def _remove_topic(interpreter, args, _arg_nodes, _env, location):
    interpreter.context.broker.remove_topic(expect_str(args[0], "remove_topic"))
    return NULL


def _subscriber_count(interpreter, args, _arg_nodes, _env, location):
    return make_integer(interpreter.context.broker.subscriber_count(expect_str(args[0], "subscriber_count")))


def _topics(interpreter, args, _arg_nodes, _env, location):
    return make_list([make_string(name) for name in interpreter.context.broker.topic_names()])


def blue_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="pubsub", version="0.1.0")
    ext.register_builtin("_subscribe", 1, 1, _subscribe, doc="_subscribe(topic) -> subscriber")
    ext.register_builtin("_unsubscribe", 1, 1, _unsubscribe, doc="_unsubscribe(topic) -> NULL")
    ext.register_builtin("_publish", 2, 2, _publish, doc="_publish(topic, msg) -> INTEGER")
    ext.register_builtin("_broadcast", 1, 2, _broadcast, doc="_broadcast(msg[, topics]) -> INTEGER")
    ext.register_builtin("_add_topic", 1, 1, _add_topic, doc="_add_topic(topic) -> NULL")
    ext.register_builtin("_remove_topic", 1, 1, _remove_topic, doc="_remove_topic(topic) -> NULL")
    ext.register_builtin("_subscriber_count", 1, 1, _subscriber_count, doc="_subscriber_count(topic) -> INTEGER")
    ext.register_builtin("_topics", 0, 0, _topics, doc="_topics() -> LIST")
