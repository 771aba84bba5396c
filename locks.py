import threading
import weakref
from contextlib import contextmanager
from typing import Iterator

_registry_lock = threading.Lock()
# Entries disappear once no caller holds the account's lock.
_account_locks: "weakref.WeakValueDictionary[int, threading.RLock]" = (
    weakref.WeakValueDictionary()
)


def _lock_for(account_id: int) -> threading.RLock:
    with _registry_lock:
        lock = _account_locks.get(account_id)
        if lock is None:
            lock = threading.RLock()
            _account_locks[account_id] = lock
        return lock


@contextmanager
def account_lock(account_id: int) -> Iterator[None]:
    # One lock per account; different accounts never contend.
    lock = _lock_for(account_id)
    with lock:
        yield
