from __future__ import annotations
from dataclasses import dataclass
from typing import Generic, Iterator, List, Optional, Tuple, TypeVar

T = TypeVar("T")


@dataclass(frozen=True, order=True)
class Handle:
    """Stable reference into a SlotMap.

    The generation changes every time the slot is freed, so a handle kept
    across a removal never silently points at the slot's next occupant.
    """

    index: int
    generation: int = 0

    def __str__(self) -> str:
        return f"{self.index}v{self.generation}"


class StaleHandleError(KeyError):
    pass


@dataclass
class _Slot(Generic[T]):
    generation: int
    value: Optional[T] = None
    occupied: bool = False


class SlotMap(Generic[T]):
    def __init__(self) -> None:
        self._slots: List[_Slot[T]] = []
        self._free: List[int] = []
        self._len = 0

    def insert(self, value: T) -> Handle:
        if self._free:
            idx = self._free.pop()
            slot = self._slots[idx]
        else:
            idx = len(self._slots)
            slot = _Slot(generation=0)
            self._slots.append(slot)
        slot.value = value
        slot.occupied = True
        self._len += 1
        return Handle(idx, slot.generation)

    def restore(self, handle: Handle, value: T) -> None:
        # Re-create a slot under an exact handle (used when rebuilding a snapshot)
        if handle.index < 0 or handle.generation < 0:
            raise ValueError(f"invalid handle {handle}")
        while len(self._slots) <= handle.index:
            self._free.append(len(self._slots))
            self._slots.append(_Slot(generation=0))
        slot = self._slots[handle.index]
        if slot.occupied:
            raise ValueError(f"slot {handle.index} already occupied")
        self._free.remove(handle.index)
        slot.generation = handle.generation
        slot.value = value
        slot.occupied = True
        self._len += 1

    def get(self, handle: Handle) -> Optional[T]:
        if not isinstance(handle, Handle) or not 0 <= handle.index < len(self._slots):
            return None
        slot = self._slots[handle.index]
        if not slot.occupied or slot.generation != handle.generation:
            return None
        return slot.value

    def __getitem__(self, handle: Handle) -> T:
        value = self.get(handle)
        if value is None:
            raise StaleHandleError(handle)
        return value

    def __contains__(self, handle: object) -> bool:
        return isinstance(handle, Handle) and self.get(handle) is not None

    def remove(self, handle: Handle) -> T:
        value = self[handle]
        slot = self._slots[handle.index]
        slot.value = None
        slot.occupied = False
        slot.generation += 1
        self._free.append(handle.index)
        self._len -= 1
        return value

    def items(self) -> Iterator[Tuple[Handle, T]]:
        for idx, slot in enumerate(self._slots):
            if slot.occupied:
                yield Handle(idx, slot.generation), slot.value  # type: ignore[misc]

    def handles(self) -> List[Handle]:
        return [h for h, _ in self.items()]

    def __len__(self) -> int:
        return self._len
