import uuid
from typing import Callable, Dict, Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


def create_id() -> str:
    """Return a new random identifier, unique for all practical purposes."""
    return str(uuid.uuid4())


class Collection(Generic[T]):
    """Insertion-ordered records indexed by id.

    Backed by a plain dict, so lookups, inserts and removals are O(1) and
    iteration follows insertion order. Replacing a record keeps its position.
    """

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._items: Dict[str, T] = {}

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items.values()))

    def get(self, entity_id: Optional[str]) -> Optional[T]:
        if entity_id is None:
            return None
        return self._items.get(entity_id)

    def put(self, entity_id: str, record: T) -> None:
        self._items[entity_id] = record

    def remove(self, entity_id: str) -> T:
        return self._items.pop(entity_id)

    def values(self) -> List[T]:
        return list(self._items.values())

    def filter(self, predicate: Callable[[T], bool]) -> List[T]:
        return [record for record in self._items.values() if predicate(record)]

    def count(self, predicate: Callable[[T], bool]) -> int:
        return sum(1 for record in self._items.values() if predicate(record))

    def clear(self) -> None:
        self._items.clear()
