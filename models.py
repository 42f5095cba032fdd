from __future__ import annotations

"""
models.py

로그 구조(log-structured) 저장장치를 단순화한 시뮬레이터용 물리 모델을 정의합니다.

핵심 목표
---------
1) 최소한의 flash/log 제약을 재현
   - 페이지는 블록에 순서대로(append-only) 기록됩니다.
   - 블록은 가득 차면 봉인(seal)되고, GC로 통째로 회수(reset)될 때까지 더 쓰지 않습니다.
   - overwrite는 in-place가 아니라 out-of-place(새 위치에 쓰고 옛 슬롯을 invalidate)입니다.

2) GC 정책이 보는 feature를 블록에 모아 둠
   - count/avail(=garbage) 카운터
   - 평균 write ts, 평균 prior ts(덮어쓴 옛 사본이 쓰였던 시각 = 나이 proxy),
     평균 update frequency(오라클 확률) 를 합계(sum)로 누적 관리
   - newest_ts / closed_ts

3) Arena/인덱스 소유 모델
   - Block, Line은 시뮬레이터가 가진 리스트 안에 살고,
     서로를 가리킬 때는 정수 인덱스만 사용합니다(포인터/순환 참조 없음).

용어
----
- lpid: 논리 페이지 id (1..max_lpid)
- C: 블록당 페이지 수(pages_per_block)
- avail: 블록 안에서 이미 무효화된 슬롯 수(= garbage)
- Line: 같은 라우팅 목적(hot/cold, multi-log 사다리의 한 칸)을 갖는 블록들의 논리 로그

상태 전이(Block)
----------------
FREE -> OPEN(라인의 쓰기 대상) -> USED(봉인) -> (GC relocate) -> FREE

주의
----
- 이 파일은 정책(policy)을 전혀 모릅니다. 순수한 데이터 + 장부(bookkeeping)입니다.
- 불변식 위반(이미 무효인 슬롯을 또 무효화 등)은 프로그래밍 오류이므로 assert로 잡습니다.
"""

from collections import OrderedDict
from enum import Enum
from typing import Iterator, List, Optional, Tuple
import math


# ============================================================
# Basic types
# ============================================================

# 슬롯이 비었거나 무효화되었음을 뜻하는 값
INVALID_SLOT = -1

# validProb 상한: 1에 너무 가까우면 비용식의 분모(1 - p)가 폭주합니다.
VALID_PROB_CAP = 0.999


class BlockState(Enum):
    """블록 생명주기 상태."""
    FREE = 0
    OPEN = 1
    USED = 2


class Block:
    """
    Physical erase-block (고정 크기 C 슬롯 배열).

    보유 상태
    --------
    - lpids: 슬롯별 lpid (INVALID_SLOT = 비었거나 무효)
    - count: 마지막 reset 이후 기록된 슬롯 수
    - avail: 그중 무효화된 슬롯 수
    - agg_ts_sum / prior_ts_sum / update_freq_sum: 평균을 만들기 위한 합계
    - update_ts_sum: 무효화 시각의 합(분석용)
    - newest_ts / closed_ts
    - line: 소유 라인 인덱스 (FREE면 -1)
    - state: BlockState

    불변식
    ------
    0 <= avail <= count <= capacity
    """

    __slots__ = (
        "index", "capacity", "lpids", "count", "avail",
        "agg_ts_sum", "prior_ts_sum", "update_ts_sum", "update_freq_sum",
        "newest_ts", "closed_ts", "line", "state",
    )

    def __init__(self, index: int, capacity: int):
        self.index = int(index)
        self.capacity = int(capacity)
        self.lpids: List[int] = [INVALID_SLOT] * self.capacity
        self.count = 0
        self.avail = 0
        self.agg_ts_sum = 0.0
        self.prior_ts_sum = 0.0
        self.update_ts_sum = 0.0
        self.update_freq_sum = 0.0
        self.newest_ts = 0.0
        self.closed_ts = 0.0
        self.line = -1
        self.state = BlockState.FREE

    def __repr__(self) -> str:
        return (f"Block(index={self.index}, state={self.state.name}, line={self.line}, "
                f"count={self.count}, avail={self.avail})")

    # -------------------------
    # Derived helpers (정책에서 읽기 편하게)
    # -------------------------

    @property
    def valid_count(self) -> int:
        """현재 유효 페이지 수 = count - avail."""
        return self.count - self.avail

    @property
    def is_full(self) -> bool:
        return self.count >= self.capacity

    def agg_ts(self) -> float:
        """평균 write ts. 비어 있으면 0."""
        return self.agg_ts_sum / self.count if self.count > 0 else 0.0

    def prior_ts(self) -> float:
        """평균 prior ts (덮어쓴 옛 사본의 write ts 평균). 비어 있으면 0."""
        return self.prior_ts_sum / self.count if self.count > 0 else 0.0

    def update_freq(self) -> float:
        """
        유효 페이지들의 평균 update frequency.

        - 무효화될 때 해당 lpid의 확률을 합계에서 빼므로,
          합계는 항상 "지금 살아있는 페이지"의 확률 합입니다.
        - 유효 페이지가 없으면 0.
        """
        valid = self.count - self.avail
        return self.update_freq_sum / valid if valid > 0 else 0.0

    # -------------------------
    # Low-level ops
    # -------------------------

    def add(self, lpid: int, ts: float, prior_ts: float, update_freq: float, newest_ts: float) -> int:
        """
        다음 빈 슬롯에 lpid를 append하고 슬롯 오프셋을 반환합니다.

        Parameters
        ----------
        ts : 이 사본의 write ts (GC 이동이면 원래 블록의 평균 ts를 물려받음)
        prior_ts : 덮어쓴 옛 사본의 ts (신규면 0)
        update_freq : lpid의 접근 확률(오라클)
        newest_ts : newest_ts 갱신 후보
        """
        assert self.state is BlockState.OPEN, f"OPEN 이 아닌 블록에 쓰기: {self!r}"
        assert self.count < self.capacity, f"가득 찬 블록에 쓰기: {self!r}"
        off = self.count
        self.lpids[off] = int(lpid)
        self.agg_ts_sum += ts
        self.prior_ts_sum += prior_ts
        self.update_freq_sum += update_freq
        if newest_ts > self.newest_ts:
            self.newest_ts = newest_ts
        self.count += 1
        return off

    def invalidate(self, ts: float, offset: int, update_freq: float) -> int:
        """
        offset 슬롯을 무효화하고, 그 슬롯에 있던 lpid를 반환합니다.

        - avail += 1
        - update_freq_sum 에서 해당 lpid의 확률을 뺍니다(음수가 되면 불변식 위반).
        """
        lpid = self.lpids[offset]
        assert lpid >= 0, f"이미 무효인 슬롯 무효화: block={self.index} offset={offset}"
        self.lpids[offset] = INVALID_SLOT
        self.update_ts_sum += ts
        self.update_freq_sum -= update_freq
        # 부동소수 누적 오차는 허용하고, 실제 음수 누적만 잡습니다.
        assert self.update_freq_sum >= -1e-9, f"update_freq_sum < 0: block={self.index}"
        if self.update_freq_sum < 0.0:
            self.update_freq_sum = 0.0
        self.avail += 1
        return lpid

    def reset(self) -> None:
        """
        블록 erase(회수).

        - 모든 슬롯/카운터/합계 초기화
        - state=FREE, line=-1
        """
        self.lpids = [INVALID_SLOT] * self.capacity
        self.count = 0
        self.avail = 0
        self.agg_ts_sum = 0.0
        self.prior_ts_sum = 0.0
        self.update_ts_sum = 0.0
        self.update_freq_sum = 0.0
        self.newest_ts = 0.0
        self.closed_ts = 0.0
        self.line = -1
        self.state = BlockState.FREE

    def valid_slots(self) -> Iterator[Tuple[int, int]]:
        """(offset, lpid) for 아직 유효한 슬롯."""
        for off in range(self.count):
            lpid = self.lpids[off]
            if lpid >= 0:
                yield off, lpid


# ============================================================
# Line (logical log)
# ============================================================

class Line:
    """
    하나의 논리 로그.

    - ts: 이 라인에 기록된 페이지 수(라인 로컬 시계)
    - sealed: 봉인된 블록 인덱스의 FIFO 큐(오래된 것이 앞)
    - open_block: 현재 쓰기 대상 블록 인덱스
    - valid_pages: 이 라인 블록들 안의 유효 페이지 수(증분 관리)
    - written_pages: 이 라인 블록들이 물리적으로 차지한 페이지 수(garbage 포함)
    - capacity: 라인 블록 수 * pages_per_block (open 블록의 빈 슬롯 포함)

    파생값
    ------
    alpha      = (capacity - valid_pages) / valid_pages   (여유 비율)
    valid_prob = min(exp(-0.9 * alpha), VALID_PROB_CAP)
    """

    def __init__(self, index: int, pages_per_block: int = 0):
        self.index = int(index)
        self.pages_per_block = int(pages_per_block)
        self.ts = 0
        self.sealed: "OrderedDict[int, None]" = OrderedDict()
        self.open_block: Optional[int] = None
        self.valid_pages = 0
        self.written_pages = 0

    def __repr__(self) -> str:
        return (f"Line(index={self.index}, blocks={self.num_blocks}, "
                f"valid={self.valid_pages}, written={self.written_pages})")

    # -------------------------
    # sealed-block queue
    # -------------------------

    def push(self, block_index: int) -> None:
        self.sealed[int(block_index)] = None

    def discard(self, block_index: int) -> None:
        self.sealed.pop(int(block_index), None)

    def pop_oldest(self) -> Optional[int]:
        """가장 먼저 봉인된 블록을 꺼냅니다. 없으면 None."""
        if not self.sealed:
            return None
        idx, _ = self.sealed.popitem(last=False)
        return idx

    @property
    def num_blocks(self) -> int:
        """봉인 블록 + open 블록 수."""
        return len(self.sealed) + (1 if self.open_block is not None else 0)

    @property
    def capacity(self) -> int:
        return self.num_blocks * self.pages_per_block

    # -------------------------
    # 파생값 (cost-derivative 계산용)
    # -------------------------

    @property
    def alpha(self) -> float:
        """유효 페이지가 없으면 inf(sentinel)."""
        if self.valid_pages <= 0:
            return math.inf
        return (self.capacity - self.valid_pages) / self.valid_pages

    def alpha_with(self, delta: float) -> float:
        """alpha를 delta만큼 섭동한 값(수치 미분용)."""
        return self.alpha + delta

    @property
    def valid_prob(self) -> float:
        """
        이 라인 블록이 GC 대상이 될 때 한 페이지가 아직 유효할 확률의 해석적 근사.

        유효 페이지가 없으면 0(sentinel).
        """
        a = self.alpha
        if math.isinf(a):
            return 0.0
        return min(math.exp(-0.9 * a), VALID_PROB_CAP)

    def size_ratio(self, total_lpids: int) -> float:
        """전체 주소공간 중 이 라인에 상주하는 비율."""
        return self.valid_pages / total_lpids if total_lpids > 0 else 0.0

    def beta(self, total_lpids: int) -> float:
        """주소공간 크기 대비 이 라인의 여유(무효 + 빈 슬롯) 페이지 비율."""
        if total_lpids <= 0:
            return 0.0
        return (self.capacity - self.valid_pages) / total_lpids


# ============================================================
# Address map
# ============================================================

UNMAPPED = -1


class AddressMap:
    """
    lpid -> (block_index, offset) 매핑.

    - 내부 표현: lpid로 인덱싱되는 평평한 리스트에 block*C + offset 으로 인코딩
    - UNMAPPED(-1)는 "아직 쓰이지 않았거나 삭제됨"
    - 매핑된 lpid 수를 증분으로 유지합니다(mapped_count).
    """

    def __init__(self, max_lpid: int, pages_per_block: int):
        self.max_lpid = int(max_lpid)
        self.pages_per_block = int(pages_per_block)
        self._table: List[int] = [UNMAPPED] * (self.max_lpid + 1)
        self._mapped = 0

    def __len__(self) -> int:
        return self._mapped

    @property
    def mapped_count(self) -> int:
        return self._mapped

    def _check(self, lpid: int) -> None:
        if not (0 < lpid <= self.max_lpid):
            raise ValueError(f"lpid 범위 밖: {lpid} (1..{self.max_lpid})")

    def is_mapped(self, lpid: int) -> bool:
        return 0 < lpid <= self.max_lpid and self._table[lpid] != UNMAPPED

    def lookup(self, lpid: int) -> Optional[Tuple[int, int]]:
        """(block_index, offset) 또는 None."""
        self._check(lpid)
        addr = self._table[lpid]
        if addr == UNMAPPED:
            return None
        return divmod(addr, self.pages_per_block)

    def update(self, lpid: int, block_index: int, offset: int) -> None:
        self._check(lpid)
        if self._table[lpid] == UNMAPPED:
            self._mapped += 1
        self._table[lpid] = block_index * self.pages_per_block + offset

    def clear(self, lpid: int) -> None:
        self._check(lpid)
        if self._table[lpid] != UNMAPPED:
            self._mapped -= 1
            self._table[lpid] = UNMAPPED

    def items(self) -> Iterator[Tuple[int, int, int]]:
        """(lpid, block_index, offset) for 매핑된 lpid."""
        c = self.pages_per_block
        for lpid in range(1, self.max_lpid + 1):
            addr = self._table[lpid]
            if addr != UNMAPPED:
                b, off = divmod(addr, c)
                yield lpid, b, off
