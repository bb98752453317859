"""Positional index over element ids, used by derived collections.

A PositionIndex is a sequence of element ids, each carrying a boolean mark,
stored as a list of short blocks. Two Fenwick trees over the blocks keep
running totals of block sizes and of marked ids, so every query below
costs O(log n + load) instead of a scan of the whole sequence:

- key_at(index), mark_at(index)
- position(key): where an id currently sits
- marked_before(index): how many marked ids precede index
- bisect(goes_before): binary search with a caller-supplied order

insert() and pop() touch one block and the two trees. A block that grows
past twice the load factor is split and an empty block is dropped. Both
rebuild the trees; a split leaves blocks of at least ``load`` ids.
"""

from __future__ import annotations

from typing import Callable, Iterable


class _Fenwick:
    """Prefix sums over a fixed number of slots."""

    __slots__ = ("_tree",)

    def __init__(self, values: Iterable[int]) -> None:
        tree = [0, *values]
        for i in range(1, len(tree)):
            parent = i + (i & -i)
            if parent < len(tree):
                tree[parent] += tree[i]
        self._tree = tree

    def add(self, slot: int, delta: int) -> None:
        tree = self._tree
        i = slot + 1
        while i < len(tree):
            tree[i] += delta
            i += i & -i

    def prefix(self, slot: int) -> int:
        """Sum of slots [0, slot)."""
        tree = self._tree
        total = 0
        i = slot
        while i > 0:
            total += tree[i]
            i -= i & -i
        return total

    def locate(self, unit: int) -> tuple[int, int]:
        """(slot, offset) of the unit-th counted unit, both 0-based.

        Returns (number of slots, 0) when unit equals the grand total.
        """
        tree = self._tree
        size = len(tree) - 1
        slot = 0
        step = 1 << size.bit_length()
        while step:
            candidate = slot + step
            if candidate <= size and tree[candidate] <= unit:
                slot = candidate
                unit -= tree[candidate]
            step >>= 1
        return slot, unit


class _Block:
    __slots__ = ("ids", "marks", "marked", "number")

    def __init__(self, ids: list[int], marks: list[bool]) -> None:
        self.ids = ids
        self.marks = marks
        self.marked = sum(marks)
        self.number = 0


class PositionIndex:
    """Element ids in order, each with a mark, with logarithmic lookups.

    Usage:
        index = PositionIndex()
        index.insert(0, 7, mark=True)
        index.insert(0, 3, mark=False)
        index.position(7)        # 1
        index.marked_before(2)   # 1
    """

    __slots__ = ("_load", "_blocks", "_block_of", "_size", "_sizes", "_marked")

    def __init__(self, load: int = 64) -> None:
        self._load = load
        self._blocks: list[_Block] = []
        self._block_of: dict[int, _Block] = {}
        self._size = 0
        self._sizes = _Fenwick(())
        self._marked = _Fenwick(())

    def __len__(self) -> int:
        return self._size

    def __contains__(self, key: int) -> bool:
        return key in self._block_of

    def __iter__(self):
        for block in self._blocks:
            yield from block.ids

    # --- queries ---

    def key_at(self, index: int) -> int:
        block, offset = self._find(index)
        return block.ids[offset]

    def mark_at(self, index: int) -> bool:
        block, offset = self._find(index)
        return block.marks[offset]

    def position(self, key: int) -> int:
        """Current index of key. KeyError if absent."""
        block = self._block_of[key]
        return self._sizes.prefix(block.number) + block.ids.index(key)

    def marked_before(self, index: int) -> int:
        """Number of marked ids at positions [0, index)."""
        if index >= self._size:
            return self._marked.prefix(len(self._blocks))
        block, offset = self._find(index)
        return self._marked.prefix(block.number) + sum(block.marks[:offset])

    def bisect(self, goes_before: Callable[[int], bool]) -> int:
        """Index of the first id for which goes_before(id) is true.

        goes_before must be false for a prefix of the sequence and true for
        the rest. Returns len(self) when it is never true.
        """
        blocks = self._blocks
        lo, hi = 0, len(blocks)
        while lo < hi:
            mid = (lo + hi) // 2
            if goes_before(blocks[mid].ids[-1]):
                hi = mid
            else:
                lo = mid + 1
        if lo == len(blocks):
            return self._size
        ids = blocks[lo].ids
        left, right = 0, len(ids) - 1
        while left < right:
            mid = (left + right) // 2
            if goes_before(ids[mid]):
                right = mid
            else:
                left = mid + 1
        return self._sizes.prefix(lo) + left

    # --- edits ---

    def insert(self, index: int, key: int, mark: bool = True) -> None:
        """Put key before the id now at index (index == len appends)."""
        if not self._blocks:
            block = _Block([key], [mark])
            self._blocks.append(block)
            self._block_of[key] = block
            self._size = 1
            self._rebuild()
            return
        if index >= self._size:
            block = self._blocks[-1]
            offset = len(block.ids)
        else:
            block, offset = self._find(index)
        block.ids.insert(offset, key)
        block.marks.insert(offset, mark)
        self._block_of[key] = block
        self._size += 1
        if mark:
            block.marked += 1
        if len(block.ids) > 2 * self._load:
            self._split(block)
            return
        self._sizes.add(block.number, 1)
        if mark:
            self._marked.add(block.number, 1)

    def pop(self, index: int) -> tuple[int, bool]:
        """Remove the id at index; return it with its mark."""
        block, offset = self._find(index)
        key = block.ids.pop(offset)
        mark = block.marks.pop(offset)
        del self._block_of[key]
        self._size -= 1
        if mark:
            block.marked -= 1
        if not block.ids:
            del self._blocks[block.number]
            self._rebuild()
            return key, mark
        self._sizes.add(block.number, -1)
        if mark:
            self._marked.add(block.number, -1)
        return key, mark

    def set_mark(self, index: int, mark: bool) -> bool:
        """Set the mark at index; return the previous one."""
        block, offset = self._find(index)
        previous = block.marks[offset]
        if previous != mark:
            block.marks[offset] = mark
            delta = 1 if mark else -1
            block.marked += delta
            self._marked.add(block.number, delta)
        return previous

    # --- internals ---

    def _find(self, index: int) -> tuple[_Block, int]:
        if not 0 <= index < self._size:
            raise IndexError(f"position {index} out of range for {self._size}")
        number, offset = self._sizes.locate(index)
        return self._blocks[number], offset

    def _split(self, block: _Block) -> None:
        half = len(block.ids) // 2
        tail = _Block(block.ids[half:], block.marks[half:])
        del block.ids[half:]
        del block.marks[half:]
        block.marked -= tail.marked
        for key in tail.ids:
            self._block_of[key] = tail
        self._blocks.insert(block.number + 1, tail)
        self._rebuild()

    def _rebuild(self) -> None:
        for number, block in enumerate(self._blocks):
            block.number = number
        self._sizes = _Fenwick(len(block.ids) for block in self._blocks)
        self._marked = _Fenwick(block.marked for block in self._blocks)
