from __future__ import annotations

"""
block_selectors.py

Block selector(쓰기 라우팅 정책) 모음입니다.

블록 셀렉터는 "이 페이지를 어느 라인(line, 논리 로그)에 쓸지"를 정합니다.
- 사용자 write: select_user(lpid, prev_block) -> line
- GC relocation: select_gc(run, source_block) -> line
  (run = victim 블록 안에서 연속으로 살아남은 lpid 묶음)

계약(Contract)
--------------
    init(sim)          -> 초기 라인 수 (시뮬레이터가 그만큼 add_line()을 호출)
    select_user(lpid, prev_block)  -> line index
    select_gc(run, source_block)   -> line index
    update_freq(line)  -> 라인의 특성 update frequency (multi-log GC가 사용)

sim 에서 읽는 것
----------------
- sim.generator (get_prob / get_min_prob / get_max_prob)
- sim.max_lpid
- sim.lines (Line 리스트) / sim.add_line()

라인 방향 규약
-------------
모든 셀렉터에서 **line 0 이 가장 hot** 합니다. 인덱스가 클수록 cold.
(multi-log GC가 "한 칸 colder = line+1"로 재귀하는 것과 방향을 맞춤)

주의
----
- 셀렉터 객체는 시뮬레이션 인스턴스마다 새로 만들어야 합니다.
  multi-log는 사다리/배치 시각 같은 가변 상태를 가집니다.
- select_gc에 빈 run을 넘기는 것은 호출자 계약 위반(assert)입니다.
"""

from bisect import bisect_left
from typing import List, Optional
import random


# ------------------------------------------------------------
# none
# ------------------------------------------------------------

class NoBlockSelector:
    """라인 1개. 항상 0."""

    name = "none"

    def init(self, sim) -> int:
        return 1

    def select_user(self, lpid: int, prev_block) -> int:
        return 0

    def select_gc(self, run: List[int], source_block) -> int:
        assert run, "빈 GC run"
        return 0

    def update_freq(self, line: int) -> float:
        return 1.0


# ------------------------------------------------------------
# hot-cold
# ------------------------------------------------------------

class HotColdBlockSelector:
    """
    라인 2개: HOT=0, COLD=1.

    - 사용자 write: lpid 확률 >= 1/max_lpid 이면 hot
    - GC: 원본 블록의 평균 update_freq 로 같은 기준 적용
    """

    name = "hotcold"

    HOT = 0
    COLD = 1

    def __init__(self):
        self.sim = None
        self.base_prob = 0.0

    def init(self, sim) -> int:
        self.sim = sim
        self.base_prob = 1.0 / sim.max_lpid
        return 2

    def select_user(self, lpid: int, prev_block) -> int:
        return self.COLD if self.sim.generator.get_prob(lpid) < self.base_prob else self.HOT

    def select_gc(self, run: List[int], source_block) -> int:
        assert run, "빈 GC run"
        return self.COLD if source_block.update_freq() < self.base_prob else self.HOT

    def update_freq(self, line: int) -> float:
        gen = self.sim.generator
        return gen.get_max_prob() if line == self.HOT else gen.get_min_prob()


# ------------------------------------------------------------
# opt (oracle static)
# ------------------------------------------------------------

class OptBlockSelector:
    """
    생성기의 확률 테이블로 lpid마다 라인을 미리 고정하는 오라클 셀렉터.

    사다리 구성
    ----------
    thresholds = [2*min, 4*min, ..., (max 이하 마지막 값), 그다음 값]
    확률 p 인 lpid의 밴드 = thresholds에서 p 이상인 첫 위치(bisect_left)
    라인 = (밴드 수 - 1) - 밴드  → 가장 높은 확률 밴드가 line 0

    - 라인 수는 max_lines로 자르고, 넘치는 cold 밴드들은 마지막 라인으로 합칩니다.
    - min > max 이면 설정 오류(ValueError)
    - GC 시에는 원래 라인 유지(오라클이 이미 올바르게 배치함)
    """

    name = "opt"

    def __init__(self, max_lines: int = 8):
        if max_lines < 1:
            raise ValueError("max_lines 는 1 이상이어야 합니다")
        self.max_lines = int(max_lines)
        self.sim = None
        self.thresholds: List[float] = []
        self.lines_of: List[int] = []

    def init(self, sim) -> int:
        self.sim = sim
        gen = sim.generator
        lo = gen.get_min_prob()
        hi = gen.get_max_prob()
        if lo > hi:
            raise ValueError(f"확률 사다리 경계가 뒤집혔습니다: min={lo} > max={hi}")
        if lo <= 0.0:
            raise ValueError("확률 사다리의 min 확률은 양수여야 합니다")

        ths: List[float] = []
        curr = 2.0 * lo
        while curr <= hi:
            ths.append(curr)
            curr *= 2.0
        ths.append(curr)
        self.thresholds = ths

        top = len(ths) - 1
        n_lines = min(len(ths), self.max_lines)
        lines = [n_lines - 1] * (sim.max_lpid + 1)
        for lpid in range(1, sim.max_lpid + 1):
            pos = bisect_left(ths, gen.get_prob(lpid))
            lines[lpid] = min(top - min(pos, top), n_lines - 1)
        self.lines_of = lines
        return n_lines

    def select_user(self, lpid: int, prev_block) -> int:
        return self.lines_of[lpid]

    def select_gc(self, run: List[int], source_block) -> int:
        assert run, "빈 GC run"
        return self.lines_of[run[0]]

    def update_freq(self, line: int) -> float:
        """밴드의 상한 확률."""
        return self.thresholds[len(self.thresholds) - 1 - line]


# ------------------------------------------------------------
# multi-log (adaptive)
# ------------------------------------------------------------

class MultiLogBlockSelector:
    """
    적응형 multi-log 셀렉터.

    상태
    ----
    - intervals: 라인별 특성 간격 [1, 2, 4, ...] (라인 추가마다 2배)
    - placed_ts: lpid별 "현재 라인에 배치될 때의 그 라인 ts"
    - 카운터: user_total / user_intended / user_promoted / gc_total / gc_demoted

    사용자 write
    -----------
    - 처음 쓰는 lpid -> line 0
    - 다시 쓰는 lpid -> 이전 블록의 라인에 머무르되,
      elapsed = line.ts - placed_ts[lpid] 가 expected_interval(line)보다 짧으면
      (expected - elapsed) / expected 확률로 한 칸 hot(line-1)으로 승격

    GC relocation
    -------------
    - 1 - valid_prob(line) ** len(run) 확률로 한 칸 cold(line+1)로 강등
    - 대상 라인이 없으면 간격 2배짜리 라인을 추가(max_lines 상한)
    - 상한에 닿은 마지막 라인은 더 강등하지 않음
    """

    name = "multi_log"

    # valid_prob 이 1에 가까울 때 expected_interval 이 폭주하지 않도록
    MIN_TURNOVER = 0.01

    def __init__(self, max_lines: int = 8, rng_seed: int = 42):
        if max_lines < 1:
            raise ValueError("max_lines 는 1 이상이어야 합니다")
        self.max_lines = int(max_lines)
        self.rng = random.Random(int(rng_seed))
        self.sim = None
        self.intervals: List[int] = []
        self.placed_ts: List[int] = []

        self.user_total = 0
        self.user_intended = 0
        self.user_promoted = 0
        self.gc_total = 0
        self.gc_demoted = 0

    def init(self, sim) -> int:
        self.sim = sim
        self.intervals = [1]
        self.placed_ts = [0] * (sim.max_lpid + 1)
        return 1

    def expected_interval(self, line: int) -> float:
        """
        이 라인에서 페이지가 GC로 밀려나기 전까지 기대되는 라인-로컬 write 수.

        expected = size_ratio * max_lpid / max(1 - valid_prob, MIN_TURNOVER)
        """
        ln = self.sim.lines[line]
        n = self.sim.max_lpid
        turnover = max(1.0 - ln.valid_prob, self.MIN_TURNOVER)
        return ln.size_ratio(n) * n / turnover

    def select_user(self, lpid: int, prev_block) -> int:
        self.user_total += 1
        if prev_block is None:
            line = 0
        else:
            line = prev_block.line
            elapsed = self.sim.lines[line].ts - self.placed_ts[lpid]
            expected = self.expected_interval(line)
            if elapsed < expected:
                self.user_intended += 1
                if line > 0 and self.rng.random() < (expected - elapsed) / expected:
                    line -= 1
                    self.user_promoted += 1
        self.placed_ts[lpid] = self.sim.lines[line].ts
        return line

    def select_gc(self, run: List[int], source_block) -> int:
        assert run, "빈 GC run"
        line = source_block.line
        self.gc_total += len(run)

        target = line
        p_demote = 1.0 - self.sim.lines[line].valid_prob ** len(run)
        if self.rng.random() < p_demote:
            if line + 1 < len(self.intervals):
                target = line + 1
            elif len(self.intervals) < self.max_lines:
                self.intervals.append(self.intervals[-1] * 2)
                target = self.sim.add_line()
        if target != line:
            self.gc_demoted += len(run)

        ts = self.sim.lines[target].ts
        for lpid in run:
            self.placed_ts[lpid] = ts
        return target

    def update_freq(self, line: int) -> float:
        return 1.0 / self.intervals[line]

    def counters(self) -> dict:
        return {
            "ml_lines": len(self.intervals),
            "ml_user_total": self.user_total,
            "ml_user_intended": self.user_intended,
            "ml_user_promoted": self.user_promoted,
            "ml_gc_total": self.gc_total,
            "ml_gc_demoted": self.gc_demoted,
        }


# ------------------------------------------------------------
# 팩토리
# ------------------------------------------------------------

BLOCK_SELECTORS = ("none", "hotcold", "opt", "multi_log")


def make_block_selector(name: Optional[str], max_lines: int = 8, rng_seed: int = 42):
    """이름으로 셀렉터 인스턴스를 만든다(시뮬레이션마다 새 객체)."""
    n = (name or "none").lower()
    if n == "none":
        return NoBlockSelector()
    if n in ("hotcold", "hot_cold"):
        return HotColdBlockSelector()
    if n == "opt":
        return OptBlockSelector(max_lines=max_lines)
    if n in ("multi_log", "multilog"):
        return MultiLogBlockSelector(max_lines=max_lines, rng_seed=rng_seed)
    raise ValueError(f"unknown block selector: {name}")
