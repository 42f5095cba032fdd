from __future__ import annotations

"""
write_buffer.py

블록에 커밋하기 전에 write를 모아 재정렬하는 staging 계층입니다.

계약(Contract)
--------------
    write(sim, lpid, ts, prev_block)   # prev_block: 옛 사본이 있던 Block 또는 None
    flush(sim)

커밋은 항상 sim.commit_write(lpid, ts)로 들어가며, 그 안에서 GC가 동기적으로 돌 수 있습니다.

변형
----
- none (pass-through): write 즉시 커밋
- sort(capacity, dedup):
    * (sort_key, lpid, ts)를 capacity개까지 모음
      sort_key = prev_block.prior_ts() (옛 사본이 없으면 0)
    * capacity 도달 또는 명시적 flush에서 (sort_key, lpid) 오름차순 정렬 후 커밋
    * 순회 방향은 flush마다 오름차순/내림차순을 번갈아 사용(시간 편향 방지)
    * dedup=True면 한 batch 안에서 같은 lpid는 마지막 write만 남김

주의
----
- flush는 재진입 불가입니다. 커밋 도중 다시 flush가 들어오면 RuntimeError.
"""

from typing import Dict, List, Tuple


# ------------------------------------------------------------
# pass-through
# ------------------------------------------------------------

class NoWriteBuffer:
    """즉시 커밋."""

    name = "none"
    absorbed = 0

    def write(self, sim, lpid: int, ts: float, prev_block) -> None:
        sim.commit_write(lpid, ts)

    def flush(self, sim) -> None:
        return None

    def __len__(self) -> int:
        return 0


# ------------------------------------------------------------
# sort buffer
# ------------------------------------------------------------

class SortWriteBuffer:
    """
    prior ts 기준 정렬 버퍼.

    Attributes
    ----------
    capacity : 한 batch 크기(페이지)
    dedup    : batch 내 같은 lpid 중복 제거 여부
    reverse  : 다음 flush의 순회 방향 (False=오름차순)
    absorbed : dedup으로 흡수된 write 수
    """

    name = "sort"

    def __init__(self, capacity: int, dedup: bool = False):
        if capacity <= 0:
            raise ValueError("sort buffer capacity 는 양수여야 합니다")
        self.capacity = int(capacity)
        self.dedup = bool(dedup)
        self.reverse = False
        self.absorbed = 0
        self._entries: List[Tuple[float, int, float]] = []
        self._flushing = False

    def __len__(self) -> int:
        return len(self._entries)

    def write(self, sim, lpid: int, ts: float, prev_block) -> None:
        key = prev_block.prior_ts() if prev_block is not None else 0.0
        self._entries.append((key, lpid, ts))
        if len(self._entries) >= self.capacity:
            self.flush(sim)

    def _batch(self) -> List[Tuple[float, int, float]]:
        batch = self._entries
        self._entries = []
        if self.dedup:
            last: Dict[int, Tuple[float, int, float]] = {}
            for e in batch:
                last[e[1]] = e
            self.absorbed += len(batch) - len(last)
            batch = list(last.values())
        batch.sort(key=lambda e: (e[0], e[1]))
        if self.reverse:
            batch.reverse()
        return batch

    def flush(self, sim) -> None:
        if self._flushing:
            raise RuntimeError("SortWriteBuffer.flush 재진입")
        if not self._entries:
            return
        self._flushing = True
        try:
            for _, lpid, ts in self._batch():
                sim.commit_write(lpid, ts)
        finally:
            self._flushing = False
        self.reverse = not self.reverse


# ------------------------------------------------------------
# 팩토리
# ------------------------------------------------------------

WRITE_BUFFERS = ("none", "sort")


def make_write_buffer(name: str, capacity: int = 0, dedup: bool = False):
    """이름으로 write buffer를 만든다(시뮬레이션마다 새 객체)."""
    n = (name or "none").lower()
    if n == "none":
        return NoWriteBuffer()
    if n == "sort":
        return SortWriteBuffer(capacity, dedup=dedup)
    raise ValueError(f"unknown write buffer: {name}")
