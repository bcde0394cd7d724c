from __future__ import annotations
import itertools
import queue
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from objects import NULL, BlueRuntimeError, Value

# Enqueued when a subscriber or mailbox is closed; receivers then see null.
_CLOSED = object()


@dataclass
class Message:
    topic: str
    payload: Value


class Subscriber:
    def __init__(self, sid: int) -> None:
        self.id = sid
        self.messages: "queue.Queue[Any]" = queue.Queue()
        self.topics: Set[str] = set()
        self.active = True
        self._lock = threading.Lock()

    def add_topic(self, topic: str) -> None:
        with self._lock:
            self.topics.add(topic)

    def remove_topic(self, topic: str) -> None:
        with self._lock:
            self.topics.discard(topic)

    def get_topics(self) -> List[str]:
        with self._lock:
            return sorted(self.topics)

    def signal(self, message: Message) -> None:
        if self.active:
            self.messages.put(message)

    def poll(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Block for the next message; None once the subscriber is closed or on timeout."""
        try:
            item = self.messages.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            self.messages.put(_CLOSED)
            return None
        return item

    def destruct(self) -> None:
        self.active = False
        self.messages.put(_CLOSED)


class Broker:
    def __init__(self) -> None:
        self.subscribers: Dict[int, Subscriber] = {}
        self.topics: Dict[str, Dict[int, Subscriber]] = {}
        self._lock = threading.RLock()

    def add_subscriber(self, sid: int) -> Subscriber:
        with self._lock:
            sub = self.subscribers.get(sid)
            if sub is None or not sub.active:
                sub = Subscriber(sid)
                self.subscribers[sid] = sub
            return sub

    def get_subscriber(self, sid: int) -> Optional[Subscriber]:
        with self._lock:
            return self.subscribers.get(sid)

    def subscribe(self, sub: Subscriber, topic: str) -> None:
        with self._lock:
            self.topics.setdefault(topic, {})[sub.id] = sub
            sub.add_topic(topic)

    def unsubscribe(self, sub: Subscriber, topic: str) -> None:
        with self._lock:
            members = self.topics.get(topic)
            if members is not None:
                members.pop(sub.id, None)
            sub.remove_topic(topic)

    def add_topic(self, topic: str) -> None:
        with self._lock:
            self.topics.setdefault(topic, {})

    def remove_topic(self, topic: str) -> None:
        with self._lock:
            members = self.topics.pop(topic, {})
        for sub in members.values():
            sub.remove_topic(topic)

    def remove_subscriber(self, sid: int) -> None:
        with self._lock:
            sub = self.subscribers.pop(sid, None)
            if sub is None:
                return
            for topic in sub.get_topics():
                members = self.topics.get(topic)
                if members is not None:
                    members.pop(sid, None)
        sub.destruct()

    def _targets(self, topic: str) -> List[Subscriber]:
        with self._lock:
            return list(self.topics.get(topic, {}).values())

    def publish(self, topic: str, payload: Value) -> int:
        # Delivery happens outside the broker lock; each queue keeps publish order.
        targets = self._targets(topic)
        message = Message(topic=topic, payload=payload)
        for sub in targets:
            sub.signal(message)
        return len(targets)

    def broadcast(self, topics: Iterable[str], payload: Value) -> int:
        delivered = 0
        for topic in topics:
            delivered += self.publish(topic, payload)
        return delivered

    def broadcast_all(self, payload: Value) -> int:
        return self.broadcast(self.topic_names(), payload)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self.topics.get(topic, {}))

    def topic_names(self) -> List[str]:
        with self._lock:
            return list(self.topics.keys())


@dataclass
class ProcessRecord:
    pid: int
    name: str
    mailbox: "queue.Queue[Any]" = field(default_factory=queue.Queue)
    thread: Optional[threading.Thread] = None
    result: Value = field(default_factory=lambda: NULL)
    error: Optional[BlueRuntimeError] = None


class ProcessTable:
    """Registry of live processes keyed by pid. pid 0 is the main task."""

    def __init__(self) -> None:
        self._processes: Dict[int, ProcessRecord] = {}
        self._lock = threading.Lock()
        self._pids = itertools.count(1)
        self._processes[0] = ProcessRecord(pid=0, name="main")

    def register(self, name: str) -> ProcessRecord:
        with self._lock:
            pid = next(self._pids)
            record = ProcessRecord(pid=pid, name=name)
            self._processes[pid] = record
            return record

    def get(self, pid: int) -> Optional[ProcessRecord]:
        with self._lock:
            return self._processes.get(pid)

    def remove(self, pid: int) -> None:
        with self._lock:
            record = self._processes.pop(pid, None)
        if record is not None:
            record.mailbox.put(_CLOSED)

    def is_alive(self, pid: int) -> bool:
        with self._lock:
            return pid in self._processes

    def pids(self) -> List[int]:
        with self._lock:
            return list(self._processes.keys())

    def send(self, pid: int, value: Value) -> bool:
        record = self.get(pid)
        if record is None:
            return False
        record.mailbox.put(value)
        return True

    def receive(self, record: ProcessRecord, timeout: Optional[float] = None) -> Value:
        try:
            item = record.mailbox.get(timeout=timeout)
        except queue.Empty:
            return NULL
        if item is _CLOSED:
            record.mailbox.put(_CLOSED)
            return NULL
        return item

    def wait(self, pids: Iterable[int], timeout: Optional[float] = None) -> None:
        for pid in pids:
            record = self.get(pid)
            if record is not None and record.thread is not None:
                record.thread.join(timeout)
