"""
simulator.py

GC Engine (Entry/Orchestrator)

이 모듈은 물리 모델(Block/Line/AddressMap)과 정책(score computer, block selector,
write buffer) 사이에 서서, write 경로와 GC 경로를 일관된 규칙으로 굴리는 엔진이다.

이 프로젝트에서의 위치
----------------------
- models.py: Block/Line/AddressMap 상태와 장부
- gc_algos.py: victim 점수(작을수록 먼저 청소) + 보조 정렬기
- block_selectors.py: 페이지를 어느 라인에 쓸지
- write_buffer.py: 커밋 전 재정렬
- workload.py: 다음에 쓸 lpid
- metrics.py: 실행이 끝난 후 결과 요약
- simulator.py: 위 것들을 연결해서 한 번의 시뮬레이션을 굴리는 엔진

설계 목표
---------
1) **실험 재현성**:
   - 같은 cfg + 같은 seed이면 같은 경로를 밟는다. 엔진 내부에는 시간/스레드 의존이 없다.

2) **Arena/인덱스 소유**:
   - blocks / lines 는 이 객체가 가진 리스트이고, 교차 참조는 정수 인덱스뿐이다.

3) **Fail-fast**:
   - relocation 중 free pool 고갈, GC가 진전 없이 도는 상황은 RuntimeError.
   - 불변식 위반은 assert (models.Block 참고).

핵심 계약(Contract)
-------------------
- write(lpid): 논리 시계에서 ts를 찍고 write buffer로 넘긴다.
- commit_write(lpid, ts): 실제 커밋 경로 (write buffer가 호출)
    1) 옛 사본이 있으면 그 슬롯 invalidate (+ prior ts 확보 = 옛 블록의 평균 write ts)
    2) block selector로 라인 선택
    3) 라인의 open 블록에 append, 가득 차면 봉인(USED, closed_ts) + free pool에서 새 open 블록
    4) address map 갱신
    5) GC check: free pool <= 임계치인 동안 cleaning
- delete(lpid): 새 write 없이 invalidate (trace DELETE)
- load(ids) / run(total_ops)

free pool 규약
--------------
매 write 뒤 GC check가 free pool을 임계치 위로 되돌려 놓으므로,
다음 write의 블록 할당은 항상 임계치 이상의 pool에서 일어난다.
GC relocation 중의 할당은 GC를 다시 부르지 않고 pool에서 바로 꺼낸다
(cfg.validate()가 임계치 >= 라인 수 + 1 을 보장).

통계(Stats)
-----------
- E = 1 - moved_pages / (C * moved_blocks)
- write cost = 2 / E
- GC cost = moved_pages / user_writes
load() / warm-up 뒤에 reset_window()로 측정 창을 다시 연다.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, asdict
from heapq import heappush, heapreplace
from typing import Callable, Deque, Dict, Iterable, List, Optional
import math

from config import SimConfig
from models import AddressMap, Block, BlockState, Line
from gc_algos import get_block_sorter, get_score_computer
from block_selectors import make_block_selector
from write_buffer import make_write_buffer
from workload import make_generator


# ============================================================
# 통계
# ============================================================

@dataclass
class Stats:
    """
    증폭(amplification) 통계. 시뮬레이션 인스턴스가 소유한다.

    - user_writes: 커밋된 사용자 write 수
    - moved_pages: GC가 옮긴 유효 페이지 수
    - moved_blocks: GC로 회수된 블록 수
    - gc_passes: cleaning 단위(flat pass 또는 multi-log 라인 청소) 수
    - deleted_pages: delete()로 무효화된 페이지 수
    """
    block_size: int = 64
    user_writes: int = 0
    moved_pages: int = 0
    moved_blocks: int = 0
    gc_passes: int = 0
    deleted_pages: int = 0

    def reset_window(self) -> None:
        """측정 창 리셋(load/warm-up 이후)."""
        self.user_writes = 0
        self.moved_pages = 0
        self.moved_blocks = 0
        self.gc_passes = 0
        self.deleted_pages = 0

    def e(self) -> float:
        """회수한 블록에서 얻은 빈 공간 비율. GC 전에는 1."""
        if self.moved_blocks == 0:
            return 1.0
        return 1.0 - self.moved_pages / (self.block_size * self.moved_blocks)

    def write_cost(self) -> float:
        e = self.e()
        return 2.0 / e if e > 0.0 else math.inf

    def gc_cost(self) -> float:
        return self.moved_pages / self.user_writes if self.user_writes > 0 else 0.0

    def waf(self) -> float:
        """(user + moved) / user. write가 없으면 0."""
        if self.user_writes <= 0:
            return 0.0
        return (self.user_writes + self.moved_pages) / self.user_writes

    def format_e(self) -> str:
        return f"{self.e():.4f}"

    def format_write_cost(self) -> str:
        return f"{self.write_cost():.4f}"

    def format_gc_cost(self) -> str:
        return f"{self.gc_cost():.4f}"

    def to_dict(self) -> Dict:
        return asdict(self)


# ============================================================
# Flat GC engine
# ============================================================

class GCSimulator:
    """
    단일 시뮬레이션 인스턴스 (단일 스레드).

    Parameters
    ----------
    cfg : prepare()된 SimConfig
    generator : workload 생성기 (get_prob 는 항상, generate 는 run()에서만 사용)
    score_computer / block_selector / write_buffer : 정책 객체 (인스턴스 전용)
    sorter : victim batch 재정렬 key 함수 또는 None
    max_lpid : 주소공간 크기. None이면 cfg.user_total_pages
    """

    def __init__(
        self,
        cfg: SimConfig,
        generator,
        score_computer,
        block_selector,
        write_buffer,
        sorter: Optional[Callable] = None,
        max_lpid: Optional[int] = None,
    ):
        self.cfg = cfg
        self.policy_name = cfg.policy
        self.block_size = int(cfg.pages_per_block)
        self.batch_blocks = int(cfg.batch_blocks)
        self.gc_trigger = int(cfg.free_block_threshold_abs)
        self.max_lpid = int(max_lpid if max_lpid is not None else cfg.user_total_pages)

        self.generator = generator
        self.score_computer = score_computer
        self.block_selector = block_selector
        self.write_buffer = write_buffer
        self.sorter = sorter

        self.blocks: List[Block] = [Block(i, self.block_size) for i in range(int(cfg.num_blocks))]
        self.free_blocks: Deque[int] = deque(range(len(self.blocks)))
        self.lines: List[Line] = []
        self.address_map = AddressMap(self.max_lpid, self.block_size)
        self.stats = Stats(block_size=self.block_size)

        # 논리 시계: 사용자 write가 제출될 때마다 1 증가
        self.current_ts = 0

        # 보조 정렬 방향(pass마다 뒤집음)
        self._sort_reverse = False

        # 연속으로 free pool을 못 늘린 cleaning 횟수 상한
        self._max_stalls = max(16, len(self.blocks))

        for _ in range(int(self.block_selector.init(self))):
            self.add_line()

    # -------------------------
    # Derived
    # -------------------------

    @property
    def free_count(self) -> int:
        return len(self.free_blocks)

    def block_of(self, lpid: int) -> Optional[Block]:
        """lpid의 현재 사본이 있는 블록. 매핑이 없으면 None."""
        loc = self.address_map.lookup(lpid)
        if loc is None:
            return None
        return self.blocks[loc[0]]

    # -------------------------
    # 라인 / 블록 할당
    # -------------------------

    def add_line(self) -> int:
        """새 라인을 만들고 open 블록을 하나 붙인다. 새 라인 인덱스를 반환."""
        idx = len(self.lines)
        line = Line(idx, self.block_size)
        self.lines.append(line)
        line.open_block = self._allocate(idx)
        return idx

    def _allocate(self, line_idx: int) -> int:
        if not self.free_blocks:
            raise RuntimeError(
                f"free block pool 고갈 (line={line_idx}, lines={len(self.lines)}, "
                f"threshold={self.gc_trigger})"
            )
        idx = self.free_blocks.popleft()
        blk = self.blocks[idx]
        assert blk.state is BlockState.FREE, f"free pool에 FREE가 아닌 블록: {blk!r}"
        blk.state = BlockState.OPEN
        blk.line = line_idx
        return idx

    def _seal(self, line: Line, blk: Block) -> None:
        blk.state = BlockState.USED
        blk.closed_ts = self.current_ts
        line.push(blk.index)
        line.open_block = None

    def _append(self, line_idx: int, lpid: int, ts: float, prior_ts: float,
                update_freq: float, newest_ts: float) -> None:
        """라인의 open 블록에 한 페이지 append + map 갱신. 가득 차면 봉인 후 새 블록."""
        line = self.lines[line_idx]
        blk = self.blocks[line.open_block]
        off = blk.add(lpid, ts, prior_ts, update_freq, newest_ts)
        line.ts += 1
        line.valid_pages += 1
        line.written_pages += 1
        self.address_map.update(lpid, blk.index, off)
        if blk.is_full:
            self._seal(line, blk)
            line.open_block = self._allocate(line_idx)

    def _invalidate(self, lpid: int, ts: float, update_freq: float) -> Optional[Block]:
        """lpid의 현재 사본을 무효화하고 그 블록을 반환. 매핑이 없으면 None."""
        loc = self.address_map.lookup(lpid)
        if loc is None:
            return None
        blk = self.blocks[loc[0]]
        assert blk.state is not BlockState.FREE, f"map이 FREE 블록을 가리킴: lpid={lpid} {blk!r}"
        blk.invalidate(ts, loc[1], update_freq)
        self.lines[blk.line].valid_pages -= 1
        return blk

    # -------------------------
    # write 경로
    # -------------------------

    def write(self, lpid: int) -> None:
        """사용자 write 제출: ts를 찍고 write buffer로 넘긴다."""
        ts = self.current_ts
        self.current_ts += 1
        self.write_buffer.write(self, lpid, ts, self.block_of(lpid))

    def commit_write(self, lpid: int, ts: Optional[float] = None) -> None:
        """
        커밋 경로.

        ts가 None이면(load 등 버퍼를 거치지 않는 호출) 여기서 시계를 진행한다.
        """
        if ts is None:
            ts = self.current_ts
            self.current_ts += 1

        freq = self.generator.get_prob(lpid)
        prior = 0.0
        loc = self.address_map.lookup(lpid)
        if loc is not None:
            prior = self.blocks[loc[0]].agg_ts()
        prev = self._invalidate(lpid, ts, freq)

        line_idx = self.block_selector.select_user(lpid, prev)
        self._append(line_idx, lpid, ts, prior, freq, ts)
        self.stats.user_writes += 1
        self._gc_check(line_idx)

    def delete(self, lpid: int) -> bool:
        """
        새 write 없이 lpid를 무효화한다(trace DELETE).

        버퍼에 같은 lpid가 남아 있을 수 있으므로 먼저 flush한다.
        반환: 실제로 무효화했으면 True
        """
        if len(self.write_buffer) > 0:
            self.write_buffer.flush(self)
        blk = self._invalidate(lpid, self.current_ts, self.generator.get_prob(lpid))
        if blk is None:
            return False
        self.address_map.clear(lpid)
        self.stats.deleted_pages += 1
        return True

    def load(self, lpids: Iterable[int]) -> None:
        """초기 적재: 버퍼 없이 바로 커밋하고, 끝나면 통계 창을 리셋."""
        for lpid in lpids:
            self.commit_write(lpid)
        self.write_buffer.flush(self)
        self.stats.reset_window()

    def run(self, total_ops: Optional[int] = None) -> Stats:
        """
        생성기에서 lpid를 뽑아 total_ops번 write.

        - cfg.warmup_ops > 0 이면 먼저 그만큼 쓰고 통계 창을 리셋
        - cfg.progress_every > 0 이면 [RUN] 진행 출력
        """
        n = self.cfg.total_ops if total_ops is None else int(total_ops)
        gen = self.generator.generate

        warm = int(self.cfg.warmup_ops)
        if warm > 0:
            for _ in range(warm):
                self.write(gen())
            self.write_buffer.flush(self)
            self.stats.reset_window()

        every = int(self.cfg.progress_every)
        for i in range(1, n + 1):
            self.write(gen())
            if every > 0 and i % every == 0:
                print(f"[RUN] completed {i}/{n} E={self.stats.format_e()} "
                      f"write_cost={self.stats.format_write_cost()} "
                      f"moved_pages={self.stats.moved_pages}")
        self.write_buffer.flush(self)
        return self.stats

    # -------------------------
    # GC 경로
    # -------------------------

    def _gc_check(self, line_idx: int) -> None:
        stalls = 0
        while len(self.free_blocks) <= self.gc_trigger:
            before = len(self.free_blocks)
            self._clean_pass()
            stalls = self._count_stall(before, stalls)

    def _count_stall(self, before: int, stalls: int) -> int:
        if len(self.free_blocks) > before:
            return 0
        stalls += 1
        if stalls > self._max_stalls:
            raise RuntimeError(
                f"GC가 free pool을 늘리지 못합니다 ({stalls}회 연속, free={len(self.free_blocks)})"
            )
        return stalls

    def select_victims(self) -> List[Block]:
        """
        USED 블록 중 점수가 가장 작은 batch_blocks개를 고른다.

        - (-score, index) 최소 힙에 최대 batch_blocks개만 유지
          → 힙의 top이 현재 후보 중 가장 나쁜(큰) 점수
        - sorter가 있으면 그 key로 재정렬하고, 방향은 pass마다 번갈아 뒤집는다
        - sorter가 없으면 점수 오름차순
        """
        now = self.current_ts
        compute = self.score_computer.compute
        k = self.batch_blocks
        heap: List = []
        for blk in self.blocks:
            if blk.state is not BlockState.USED:
                continue
            item = (-compute(blk, now), blk.index)
            if len(heap) < k:
                heappush(heap, item)
            elif item > heap[0]:
                heapreplace(heap, item)

        if self.sorter is not None:
            victims = sorted((self.blocks[i] for _, i in heap),
                             key=self.sorter, reverse=self._sort_reverse)
            self._sort_reverse = not self._sort_reverse
            return victims
        return [self.blocks[i] for _, i in sorted(heap, reverse=True)]

    def _clean_pass(self) -> None:
        victims = self.select_victims()
        if not victims:
            raise RuntimeError("GC 후보(USED 블록)가 없습니다: 설정을 확인하세요")
        self.stats.gc_passes += 1
        for blk in victims:
            self.clean_block(blk)

    def clean_block(self, blk: Block) -> None:
        """
        victim 하나를 청소한다.

        슬롯을 왼쪽부터 훑어 연속으로 유효한 lpid 묶음(run)을 모으고,
        run마다 block selector에 목적지 라인을 물어 옮긴 뒤 블록을 reset한다.
        """
        assert blk.state is BlockState.USED, f"USED가 아닌 victim: {blk!r}"
        src = self.lines[blk.line]
        src.discard(blk.index)

        run: List[int] = []
        for off in range(blk.count):
            lpid = blk.lpids[off]
            if lpid < 0:
                if run:
                    self._relocate(run, blk, src)
                    run = []
            else:
                run.append(lpid)
        if run:
            self._relocate(run, blk, src)

        src.written_pages -= blk.count
        blk.reset()
        self.free_blocks.append(blk.index)
        self.stats.moved_blocks += 1

    def _relocate(self, run: List[int], victim: Block, src: Line) -> None:
        target = self.block_selector.select_gc(run, victim)
        ts = victim.agg_ts()
        prior = victim.prior_ts()
        newest = victim.newest_ts
        prob = self.generator.get_prob
        for lpid in run:
            self._append(target, lpid, ts, prior, prob(lpid), newest)
        src.valid_pages -= len(run)
        self.stats.moved_pages += len(run)

    # -------------------------
    # 무결성 점검
    # -------------------------

    def check_invariants(self) -> List[str]:
        """
        상태 무결성 점검. 문제 목록을 반환한다(비어 있으면 정상).

        - 용량: 0 <= avail <= count <= C
        - map 배타성: map이 가리키는 슬롯에는 그 lpid가 있고, 두 lpid가 한 슬롯을 가리키지 않음
        - 보존: USED/OPEN 블록의 유효 페이지 합 == 매핑된 lpid 수
        - 라인: valid_pages 장부 == 라인 블록들의 유효 페이지 합, 라인마다 OPEN 블록 1개
        """
        problems: List[str] = []
        c = self.block_size

        valid_total = 0
        line_valid = [0] * len(self.lines)
        open_per_line = [0] * len(self.lines)
        for blk in self.blocks:
            if not (0 <= blk.avail <= blk.count <= c):
                problems.append(f"capacity: {blk!r}")
            if blk.state is BlockState.FREE:
                if blk.count != 0 or blk.line != -1:
                    problems.append(f"free block not reset: {blk!r}")
                continue
            valid_total += blk.valid_count
            if 0 <= blk.line < len(self.lines):
                line_valid[blk.line] += blk.valid_count
                if blk.state is BlockState.OPEN:
                    open_per_line[blk.line] += 1
            else:
                problems.append(f"block without line: {blk!r}")

        seen = set()
        for lpid, bi, off in self.address_map.items():
            blk = self.blocks[bi]
            if blk.state is BlockState.FREE:
                problems.append(f"map -> FREE block: lpid={lpid} block={bi}")
            if blk.lpids[off] != lpid:
                problems.append(f"map slot mismatch: lpid={lpid} block={bi} off={off}")
            if (bi, off) in seen:
                problems.append(f"slot shared: block={bi} off={off}")
            seen.add((bi, off))

        if valid_total != self.address_map.mapped_count:
            problems.append(f"conservation: valid={valid_total} mapped={self.address_map.mapped_count}")

        for line in self.lines:
            if line_valid[line.index] != line.valid_pages:
                problems.append(f"line valid mismatch: {line!r} actual={line_valid[line.index]}")
            if open_per_line[line.index] != 1:
                problems.append(f"line open blocks != 1: {line!r}")
        return problems


# ============================================================
# Multi-log GC engine
# ============================================================

class MultiLogSimulator(GCSimulator):
    """
    라인 단위 cost-derivative GC.

    흐름
    ----
    1) 트리거한 라인 L과 이웃(L-1, L+1)의 청소 비용 미분을 계산
    2) 미분이 가장 큰 라인(동점이면 L, 그다음 hotter 이웃)의 가장 오래된 봉인 블록을 청소
    3) free pool이 아직 낮으면 방금 청소한 라인보다 한 칸 cold한 라인에서 다시 시작

    청소 비용
    --------
    t(alpha)          = min(exp(-0.9 * alpha) / (1 + alpha), COST_CAP)
    cost(alpha, freq) = t * freq / (1 - t)
    d                 = (cost(alpha + DELTA) - cost(alpha)) / DELTA

    sentinel
    --------
    블록 수 <= line_min_blocks, 봉인 블록 없음, 유효 페이지 없음 → -inf (선택하지 않음).
    후보가 모두 -inf 이거나 라인 청소가 연속으로 진전이 없으면 flat pass 한 번으로 대체한다.
    """

    DELTA = 1e-4
    COST_CAP = 0.99

    @classmethod
    def clean_cost(cls, alpha: float) -> float:
        return min(math.exp(-0.9 * alpha) / (1.0 + alpha), cls.COST_CAP)

    @classmethod
    def line_cost(cls, alpha: float, update_freq: float) -> float:
        t = cls.clean_cost(alpha)
        return t * update_freq / (1.0 - t)

    def derivative(self, line_idx: int) -> float:
        line = self.lines[line_idx]
        if (line.num_blocks <= self.cfg.line_min_blocks
                or not line.sealed
                or line.valid_pages <= 0):
            return -math.inf
        freq = self.block_selector.update_freq(line_idx)
        a = line.alpha
        return (self.line_cost(line.alpha_with(self.DELTA), freq) - self.line_cost(a, freq)) / self.DELTA

    def pick_line(self, line_idx: int) -> Optional[int]:
        """{L, L-1, L+1} 중 미분이 가장 큰 라인. 모두 sentinel이면 None."""
        best: Optional[int] = None
        best_d = -math.inf
        for cand in (line_idx, line_idx - 1, line_idx + 1):
            if not (0 <= cand < len(self.lines)):
                continue
            d = self.derivative(cand)
            if d == -math.inf:
                continue
            if best is None or d > best_d:
                best, best_d = cand, d
        return best

    def _gc_check(self, line_idx: int) -> None:
        line_idx = min(max(line_idx, 0), len(self.lines) - 1)
        stalls = 0
        while len(self.free_blocks) <= self.gc_trigger:
            before = len(self.free_blocks)
            target = self.pick_line(line_idx) if stalls <= len(self.lines) else None
            if target is None:
                self._clean_pass()
            else:
                idx = self.lines[target].pop_oldest()
                self.stats.gc_passes += 1
                self.clean_block(self.blocks[idx])
                line_idx = min(target + 1, len(self.lines) - 1)
            stalls = self._count_stall(before, stalls)


# ============================================================
# 조립
# ============================================================

def make_simulator(cfg: SimConfig, generator, max_lpid: Optional[int] = None) -> GCSimulator:
    """
    prepare()된 cfg의 정책 이름으로 정책 객체를 새로 만들어 시뮬레이터를 조립한다.

    generator는 호출자가 넘긴다(trace 재생에서는 TrainedGenerator).
    """
    if not cfg._validated:
        cfg.prepare()
    seed = int(cfg.rng_seed)
    cls = MultiLogSimulator if cfg.multi_log else GCSimulator
    return cls(
        cfg,
        generator,
        score_computer=get_score_computer(cfg.score_computer, rng_seed=seed + 2),
        block_selector=make_block_selector(cfg.block_selector, max_lines=cfg.max_lines, rng_seed=seed + 1),
        write_buffer=make_write_buffer(cfg.write_buffer, capacity=cfg.sort_buffer_pages, dedup=cfg.buffer_dedup),
        sorter=get_block_sorter(cfg.sorter),
        max_lpid=max_lpid,
    )


def build_simulator(cfg: SimConfig) -> GCSimulator:
    """합성 워크로드용: cfg의 workload 설정으로 생성기까지 만들어 조립한다."""
    if not cfg._validated:
        cfg.prepare()
    max_lpid = cfg.user_total_pages
    gen = make_generator(
        cfg.workload,
        max_lpid,
        rng_seed=cfg.rng_seed,
        zipf_exp=cfg.zipf_exp,
        zipf_shuffle=cfg.zipf_shuffle,
        hot_skew=cfg.hot_skew,
    )
    return make_simulator(cfg, gen, max_lpid=max_lpid)
