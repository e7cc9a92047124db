# Copyright (C) 2021 The Noteident Contributors
#
# This file is part of Noteident.
#
# Noteident is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# Noteident is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with Noteident.  If not, see <http://www.gnu.org/licenses/>.
"""The abstract storage layer of Noteident.

The abstract storage layer is centred on the concept of Record, which is the smallest storable unit in the abstract storage layer and can be either an atomic type or a composite type (see `RecordStorage`).

But in practice we cannot safely store an arbitrary composite type (say any Dataclass), so a special case of `RecordStorage` has been added: `CommonStorage`. A `CommonStorage` is a `RecordStorage` of dictionaries with string keys.

Most of the data structures in Noteident are declared with `dataclasses.dataclass`. `CommonStorageRecordWrapper` and `DataclassCommonStorageAdapter` turn a `CommonStorage` into a storage which reads and writes the dataclass directly.

Atomic operations across storages are described by `Transaction`, an undo log: each write registers how to revert itself, and the registered actions run in reverse order if the transaction does not commit. Use `transaction_scope` to open one.
"""
import asyncio
import dataclasses
import logging
import threading
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Literal,
    Optional,
    Sequence,
    Type,
    TypeVar,
)

from unqlite import Collection, UnQLite

T = TypeVar("T")


class RecordStorage(Generic[T]):
    """A protocol type which describes basic database operations on a type.

    This class describes all queries in `dict` with `str` as key.
    """

    def store(self, record: T) -> Awaitable[T]:
        """Save a record as new."""
        ...

    def store_unique(self, record: T, keys: Sequence[str]) -> Awaitable[T]:
        """Save a record as new, only if no stored record has the same values on `keys`.
        Raise `KeyError` otherwise. The check and the insertion are atomic.
        """
        ...

    def find(self, query: Dict[str, Any]) -> AsyncIterable[T]:
        """Find records which completely matchs `query`."""
        ...

    def find_one(self, query: Dict[str, Any]) -> Awaitable[Optional[T]]:
        """Find one record which completely matchs `query`."""
        ...

    def update_one(self, query: Dict[str, Any], updated: T) -> Awaitable[Optional[T]]:
        """Replace one record, which matchs `query`, with `updated`.
        Return `None` if nothing matched."""
        ...

    def patch_one(
        self, query: Dict[str, Any], fields: Dict[str, Any]
    ) -> Awaitable[Optional[T]]:
        """Set `fields` on one record which matchs `query`, keeping its other fields as stored.
        The read and the write are atomic. Return the whole record after the change, or `None` if nothing matched."""
        ...

    def remove_one(self, query: Dict[str, Any]) -> Awaitable[bool]:
        """Remove one record which matches `query`."""
        ...

    def remove(self, query: Dict[str, Any]) -> Awaitable[int]:
        """Remove all records match `query`."""
        ...


class CommonStorage(RecordStorage[Dict[str, Any]]):
    """A protocol type which is `RecordStorage` with `Dict[str, Any]` (read/write `dict`) for general purpose."""

    @staticmethod
    def doc_match(doc: Dict[str, Any], match: Dict[str, Any]) -> bool:
        """Check if `doc` completely matchs `match`. An empty `match` matchs everything."""
        for k in match:
            if doc.get(k) != match[k]:
                return False
        return True


class CommonStorageAdapter(Generic[T]):
    """Adapter for `CommonStorageRecordWrapper`.
    Implement `record2dict` and `dict2record` to transform the data between record and dict.
    """

    def record2dict(self, record: T) -> Dict[str, Any]:
        """Build a `dict` from `record`."""
        ...

    def dict2record(self, d: Dict[str, Any]) -> T:
        """Build a record from a `d`."""
        ...


class CommonStorageRecordWrapper(RecordStorage[T]):
    """
    A wrapper for `CommonStorage`, convert the common storage to a `RecordStorage` which can read and write a record type directly.

    The typical way to use this class is to extend this class, pass though the common storage and add an implementation of `CommonStorageAdapter`. For example:

    ````python
    class FolderRecordStorage(CommonStorageRecordWrapper[FolderRecord]):
        def __init__(self, common_storage: CommonStorage) -> None:
            super().__init__(common_storage, DataclassCommonStorageAdapter(FolderRecord))
    ````
    """

    def __init__(
        self, common_storage: CommonStorage, adapter: CommonStorageAdapter[T]
    ) -> None:
        self.common_storage = common_storage
        self.adapter = adapter
        super().__init__()

    async def store(self, record: T) -> T:
        d = self.adapter.record2dict(record)
        result = await self.common_storage.store(d)
        return self.adapter.dict2record(result)

    async def store_unique(self, record: T, keys: Sequence[str]) -> T:
        d = self.adapter.record2dict(record)
        result = await self.common_storage.store_unique(d, keys)
        return self.adapter.dict2record(result)

    async def find(self, query: Dict[str, Any]) -> AsyncIterable[T]:
        async for doc in self.common_storage.find(query):
            yield self.adapter.dict2record(doc)

    async def find_one(self, query: Dict[str, Any]) -> Optional[T]:
        result = await self.common_storage.find_one(query)
        if result:
            return self.adapter.dict2record(result)
        else:
            return None

    async def update_one(self, query: Dict[str, Any], updated: T) -> Optional[T]:
        result = await self.common_storage.update_one(
            query, self.adapter.record2dict(updated)
        )
        if result:
            return self.adapter.dict2record(result)
        return None

    async def patch_one(
        self, query: Dict[str, Any], fields: Dict[str, Any]
    ) -> Optional[T]:
        result = await self.common_storage.patch_one(query, fields)
        if result:
            return self.adapter.dict2record(result)
        return None

    async def remove(self, query: Dict[str, Any]) -> int:
        return await self.common_storage.remove(query)

    async def remove_one(self, query: Dict[str, Any]) -> bool:
        return await self.common_storage.remove_one(query)


class DataclassCommonStorageAdapter(Generic[T], CommonStorageAdapter[T]):
    """A `CommonStorageAdapter` for `dataclasses`.

    ..warning:: the checking is performed by dataclass itself. `dataclasses` does not check the actual data type, but checking the fields given.
    """

    def __init__(self, datacls: Type[T]) -> None:
        assert dataclasses.is_dataclass(datacls), "datacls should be a dataclass"
        self.datacls = datacls
        super().__init__()

    def dict2record(self, d: Dict[str, Any]) -> T:
        d = d.copy()
        if "__id" in d:
            d.pop("__id")
        return self.datacls(**d)  # type: ignore # it should work

    def record2dict(self, record: T) -> Dict[str, Any]:
        return dataclasses.asdict(record)


class UnQLiteStorage(CommonStorage):
    """An implementation of `CommonStorage` for `unqlite.UnQLite`.

    .. note:: This implementation using thead pool to avoid main thread blocking
        The API of `unqlite-python` is synchrounous. To prevent main thread blocking It is wrapped with thread pool executor.
        Every access to the database goes though `lock`, so `store_unique` is atomic for all users of the same lock.
        Storages on one database should share one lock; `noteident.StorageHub` keeps one lock for its database and one instance for each collection.

    .. caution:: I/O operation may unexceptedly block the main thread in constructing.
        The collection is created in constructor, and it may contains I/O operations.

    Related:

    - [unqlite-python API documentation](https://unqlite-python.readthedocs.io/en/latest/api.html)
    """

    def __init__(
        self,
        instance: UnQLite,
        collection_name: str,
        lock: Optional[threading.Lock] = None,
    ) -> None:
        self.executor = ThreadPoolExecutor(
            thread_name_prefix="noteident.utils.storage.UnQLiteStorage.executor"
        )
        self.instance = instance
        self.collection_name = collection_name
        self.lock = lock or threading.Lock()
        """The lock of the database. `unqlite.UnQLite` is used from the threads of `executor`."""
        self.global_collection = self.new_collection
        """The collection used for storing records.

        ..danger:: Don't use it to query.
            The query process will change the internal state of this instance of `unqlite.Collection`.
        """
        with self.lock:
            self.global_collection.create()
        super().__init__()

    @property
    def new_collection(self) -> Collection:
        """Return a new collection.

        ..note:: As the unqlite-python documentation, `unqlite.Collection` actually mantains states (seems like `unqlite.Cursor`) in it.
            We should create a new collection to prevent accidents in concurrent environment.
        """
        return self.instance.collection(self.collection_name)

    def _run(self, fn: Callable[..., Any], *args: Any) -> Awaitable[Any]:
        return asyncio.get_running_loop().run_in_executor(self.executor, fn, *args)

    def _filter_sync(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.new_collection.filter(lambda d: self.doc_match(d, query))

    def store_sync(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Store the `record` without thread pool."""
        with self.lock:
            self.global_collection.store(record)
        return record

    def store_unique_sync(
        self, record: Dict[str, Any], keys: Sequence[str]
    ) -> Dict[str, Any]:
        """Store the `record` without thread pool if no document has the same values on `keys`."""
        query = {k: record.get(k) for k in keys}
        with self.lock:
            if self._filter_sync(query):
                raise KeyError(query)
            self.global_collection.store(record)
        return record

    def store(self, record: Dict[str, Any]) -> Awaitable[Dict[str, Any]]:
        return self._run(self.store_sync, record)

    def store_unique(
        self, record: Dict[str, Any], keys: Sequence[str]
    ) -> Awaitable[Dict[str, Any]]:
        return self._run(self.store_unique_sync, record, keys)

    def _find(
        self,
        query: Dict[str, Any],
        queue: "asyncio.Queue[Optional[Dict[str, Any]]]",
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        try:
            with self.lock:
                docs = self._filter_sync(query)
            for doc in docs:
                loop.call_soon_threadsafe(queue.put_nowait, doc)
        finally:
            loop.call_soon_threadsafe(queue.put_nowait, None)

    async def find(self, query: Dict[str, Any]) -> AsyncIterable[Dict[str, Any]]:
        queue: asyncio.Queue[Optional[Dict[str, Any]]] = asyncio.Queue()
        loop = asyncio.get_running_loop()
        fut = asyncio.ensure_future(
            loop.run_in_executor(self.executor, self._find, query, queue, loop)
        )
        try:
            while el := (await queue.get()):
                yield el
            await fut
        finally:
            if not fut.done():
                fut.cancel()

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async for doc in self.find(query):
            return doc
        return None

    def _update_one_sync(
        self, query: Dict[str, Any], updated: Dict[str, Any], upsert: bool
    ) -> Optional[Dict[str, Any]]:
        with self.lock:
            docs = self._filter_sync(query)
            if docs:
                self.global_collection.update(docs[0]["__id"], updated)
                return updated
            elif upsert:
                self.global_collection.store(updated)
                return updated
        return None

    def update_one(
        self, query: Dict[str, Any], updated: Dict[str, Any], upsert: bool = False
    ) -> Awaitable[Optional[Dict[str, Any]]]:
        return self._run(self._update_one_sync, query, updated, upsert)

    def _patch_one_sync(
        self, query: Dict[str, Any], fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        with self.lock:
            docs = self._filter_sync(query)
            if not docs:
                return None
            doc_id = docs[0].pop("__id")
            patched = {**docs[0], **fields}
            self.global_collection.update(doc_id, patched)
        return patched

    def patch_one(
        self, query: Dict[str, Any], fields: Dict[str, Any]
    ) -> Awaitable[Optional[Dict[str, Any]]]:
        return self._run(self._patch_one_sync, query, fields)

    def _remove_sync(self, query: Dict[str, Any], limit: Optional[int]) -> int:
        with self.lock:
            doc_ids = [doc["__id"] for doc in self._filter_sync(query)]
            if limit is not None:
                doc_ids = doc_ids[:limit]
            for i in doc_ids:
                self.global_collection.delete(i)
        return len(doc_ids)

    async def remove(self, query: Dict[str, Any]) -> int:
        return await self._run(self._remove_sync, query, None)

    async def remove_one(self, query: Dict[str, Any]) -> bool:
        return (await self._run(self._remove_sync, query, 1)) > 0


class MemoryStorage(CommonStorage):
    """An implementation of `CommonStorage` in memory.

    Every operation completes without suspending in the middle, so the check and the insertion in `store_unique` cannot interleave with other coroutines.
    """

    def __init__(self) -> None:
        self.container: Dict[int, Dict[str, Any]] = {}
        self.next_id = 0
        super().__init__()

    def _matched_ids(self, query: Dict[str, Any]) -> List[int]:
        return [i for i, doc in self.container.items() if self.doc_match(doc, query)]

    async def store(self, record: Dict[str, Any]) -> Dict[str, Any]:
        self.container[self.next_id] = dict(record)
        self.next_id += 1
        return record

    async def store_unique(
        self, record: Dict[str, Any], keys: Sequence[str]
    ) -> Dict[str, Any]:
        query = {k: record.get(k) for k in keys}
        if self._matched_ids(query):
            raise KeyError(query)
        return await self.store(record)

    async def find(self, query: Dict[str, Any]) -> AsyncIterable[Dict[str, Any]]:
        for i in self._matched_ids(query):
            doc = self.container.get(i)
            if doc is not None:
                yield {**doc, "__id": i}

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        async for doc in self.find(query):
            return doc
        return None

    async def update_one(
        self, query: Dict[str, Any], updated: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        ids = self._matched_ids(query)
        if not ids:
            return None
        self.container[ids[0]] = dict(updated)
        return updated

    async def patch_one(
        self, query: Dict[str, Any], fields: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        ids = self._matched_ids(query)
        if not ids:
            return None
        patched = {**self.container[ids[0]], **fields}
        self.container[ids[0]] = patched
        return dict(patched)

    async def remove(self, query: Dict[str, Any]) -> int:
        ids = self._matched_ids(query)
        for i in ids:
            del self.container[i]
        return len(ids)

    async def remove_one(self, query: Dict[str, Any]) -> bool:
        ids = self._matched_ids(query)
        if ids:
            del self.container[ids[0]]
            return True
        return False


RollbackAction = Callable[[], Awaitable[Any]]
"""A type for an action which reverts one write. See `Transaction.add_rollback`."""


class Transaction(object):
    """An undo log over one or more storages.

    Each write done inside the transaction registers a `RollbackAction`.
    `commit` forgets them; `rollback` runs them in reverse order.
    It is typically opened by `transaction_scope`, which decides the outcome by how the block exits.

    ..caution:: Writes are visible to other readers before the transaction commits.
        Uniqueness constraints (see `RecordStorage.store_unique`) are what keeps concurrent writers apart.
    """

    __logger = logging.getLogger("noteident.utils.storage.Transaction")

    def __init__(self) -> None:
        self.rollback_actions: List[RollbackAction] = []
        self.state: Literal["open", "committed", "rolledback"] = "open"
        super().__init__()

    def add_rollback(self, action: RollbackAction) -> None:
        """Register `action` to be awaited if this transaction rolls back."""
        assert self.state == "open", "transaction is already {}".format(self.state)
        self.rollback_actions.append(action)

    def commit(self) -> None:
        self.rollback_actions.clear()
        self.state = "committed"

    async def rollback(self) -> None:
        """Run the registered actions, the latest first.
        A failed action is logged and the remaining ones still run."""
        actions = list(reversed(self.rollback_actions))
        self.rollback_actions.clear()
        self.state = "rolledback"
        for action in actions:
            try:
                await action()
            except Exception as e:
                self.__logger.exception(
                    "rollback action failed",
                    exc_info=e,
                    extra={"event": "rollback_error"},
                )


@asynccontextmanager
async def transaction_scope(
    parent: Optional[Transaction] = None,
) -> AsyncIterator[Transaction]:
    """Open a transaction, or join `parent` if it is given.

    A new transaction commits when the block exits normally, and rolls back when the block raises, including cancellation.
    The rollback is shielded from further cancellation.
    A joined transaction is left for its owner to commit or roll back.

    ````python
    async with transaction_scope() as tx:
        folder = await folder_records.create_folder(owner_id, transaction=tx)
        await user_records.set_folder_id(owner_id, folder.identity, transaction=tx)
    ````
    """
    if parent is not None:
        yield parent
        return
    tx = Transaction()
    try:
        yield tx
    except BaseException:
        await asyncio.shield(tx.rollback())
        raise
    else:
        tx.commit()
