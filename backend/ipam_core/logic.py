from typing import Iterable, List, Tuple

Range = Tuple[int, int]


def ranges_overlap(a: Range, b: Range) -> bool:
    """Inclusive [start, end] ranges."""
    return not (a[1] < b[0] or a[0] > b[1])


def merge_ranges(ranges: Iterable[Range]) -> List[Range]:
    """Merge overlapping/adjacent ranges, sorted by start."""
    merged = []
    for start, end in sorted(ranges):
        if merged and merged[-1][1] + 1 >= start:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [(s, e) for s, e in merged]


def align_up(value: int, step: int) -> int:
    remainder = value % step
    if remainder:
        value += step - remainder
    return value


def find_free_slots(
    parent_start: int,
    parent_size: int,
    occupied: Iterable[Range],
    size: int,
    limit: int,
    aligned: bool = True,
) -> List[int]:
    """
    Start addresses of free slots of `size` addresses inside the parent range.

    Strategy ("gap hopping"):
    1. Merge the occupied ranges and walk them in address order.
    2. On overlap, jump to the end of the occupied range and re-align.
    3. Otherwise record the slot and step by `size`.

    With `aligned`, slot starts are multiples of `size` (CIDR blocks). Without
    it, slots start at the first free address of each gap (pool ranges).
    Results are ascending and capped at `limit`.
    """
    slots: List[int] = []
    if size <= 0 or limit <= 0 or size > parent_size:
        return slots

    used = merge_ranges(occupied)
    limit_addr = parent_start + parent_size - 1
    cursor = align_up(parent_start, size) if aligned else parent_start
    i = 0

    while cursor + size - 1 <= limit_addr and len(slots) < limit:
        end = cursor + size - 1

        # Skip ranges entirely behind the cursor
        while i < len(used) and used[i][1] < cursor:
            i += 1

        if i < len(used) and used[i][0] <= end:
            # Jump past the overlapping range
            cursor = used[i][1] + 1
            if aligned:
                cursor = align_up(cursor, size)
            continue

        slots.append(cursor)
        cursor += size

    return slots


def free_identifiers(first: int, last: int, used: Iterable[int], limit: int) -> List[int]:
    """Ascending identifiers in [first, last] not present in `used`."""
    taken = set(used)
    found = []
    ident = first
    while ident <= last and len(found) < limit:
        if ident not in taken:
            found.append(ident)
        ident += 1
    return found


def calculate_utilization(used: int, total: int) -> float:
    """
    Returns utilization percentage (0.0 to 100.0).
    """
    if total <= 0:
        return 100.0 if used > 0 else 0.0
    return round((used / total) * 100.0, 2)
