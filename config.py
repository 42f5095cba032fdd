from __future__ import annotations

"""
config.py

로그 구조 저장장치 GC 시뮬레이터의 실험 설정(Experiment Config) 모듈입니다.

이 파일은 시뮬레이터의 동작을 결정하는 입력 파라미터들을 한 곳에 모아,
- 같은 설정이면 같은 조건의 실험을 재현할 수 있고(재현성),
- 실행 전에 잘못된 설정을 조기에 잡아내며(fail fast),
- 파생 값(총 페이지 수, 임계치 절대값, 총 ops 등)을 일관되게 계산하도록 합니다.

계약(Contract)
--------------
- 시뮬레이션을 시작하기 전에 반드시 `SimConfig.prepare()`를 호출합니다.
  prepare()는
  1) policy 프리셋을 풀어서 score_computer/block_selector/... 필드를 채우고,
  2) validate()로 값 범위를 검증합니다.

정책 프리셋(POLICY_PRESETS)
--------------------------
실험에서 자주 비교하는 조합에 이름을 붙여 둔 것입니다.
개별 필드(score_computer 등)를 명시하면 프리셋보다 우선합니다.

재현성(Reproducibility)에서 중요한 노브(knob)
--------------------------------------------
- `rng_seed`: 워크로드/셀렉터/랜덤 점수가 모두 이 seed에서 파생됩니다.
- Geometry(`num_blocks`, `pages_per_block`) + `fill_factor`:
  사용자 데이터가 물리 공간을 얼마나 채우는지(= GC 부담)를 결정합니다.
- `gc_free_block_threshold`: free pool이 몇 블록 이하일 때 GC를 돌릴지.

자주 생기는 실수(Common pitfalls)
---------------------------------
- 임계치의 “비율”과 “절대 개수”를 혼동하기:
  * `gc_free_block_threshold`는 비율(0~1)
  * `free_block_threshold_abs`는 이를 블록 개수로 환산한 파생값
- fill_factor를 너무 크게 잡기:
  예약(free threshold) + 라인별 open 블록을 빼고 남는 공간보다 사용자 데이터가 크면
  GC가 회수할 garbage가 없어 수렴하지 않습니다. validate()가 이를 거부합니다.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, Optional


# ------------------------------------------------------------
# 정책 프리셋
# ------------------------------------------------------------

POLICY_PRESETS: Dict[str, Dict] = {
    "greedy": dict(score_computer="max_avail", block_selector="none",
                   write_buffer="none", sorter="none", multi_log=False),
    "min_decline_nosort": dict(score_computer="min_decline", block_selector="none",
                               write_buffer="none", sorter="none", multi_log=False),
    "min_decline": dict(score_computer="min_decline", block_selector="none",
                        write_buffer="sort", sorter="prior_ts", multi_log=False),
    "min_decline_opt": dict(score_computer="min_decline_opt", block_selector="opt",
                            write_buffer="none", sorter="none", multi_log=False),
    "lru": dict(score_computer="oldest", block_selector="none",
                write_buffer="none", sorter="none", multi_log=False),
    "berkeley": dict(score_computer="berkeley", block_selector="none",
                     write_buffer="none", sorter="newest_ts", multi_log=False),
    # multi-log GC는 라인 단위로 고르고, 막힐 때만 점수 기반 flat pass를 씁니다.
    "multi_log": dict(score_computer="max_avail", block_selector="multi_log",
                      write_buffer="none", sorter="none", multi_log=True),
    "multi_log_oracle": dict(score_computer="max_avail", block_selector="opt",
                             write_buffer="none", sorter="none", multi_log=True),
}


@dataclass
class SimConfig:
    """
    실험 설정 컨테이너.

    크게 5 묶음으로 구성됩니다.

    1) Geometry: 블록 수, 블록당 페이지 수(C), fill factor
    2) GC 트리거: free block 임계치, victim batch 크기
    3) 정책: 프리셋 + 개별 오버라이드 (점수/셀렉터/버퍼/정렬기/multi-log)
    4) 워크로드: 분포 종류와 파라미터
    5) 실행: ops, warm-up, 진행 출력, seed
    """

    # ---------------------------------------------------------------------
    # 1) Geometry
    # ---------------------------------------------------------------------
    num_blocks: int = 256

    # 블록당 페이지 수(C)
    pages_per_block: int = 64

    # 사용자 lpid 수 / 물리 페이지 수 (0~1)
    fill_factor: float = 0.8

    # ---------------------------------------------------------------------
    # 2) GC 트리거
    # ---------------------------------------------------------------------
    # free block 비율 임계치 (0~1). free pool <= 이 값(절대 개수)이면 GC
    gc_free_block_threshold: float = 0.05

    # 한 cleaning pass에서 고르는 victim 수
    batch_blocks: int = 8

    # ---------------------------------------------------------------------
    # 3) 정책
    # ---------------------------------------------------------------------
    policy: str = "greedy"

    # 아래 값이 None이면 프리셋 값을 사용
    score_computer: Optional[str] = None
    block_selector: Optional[str] = None
    write_buffer: Optional[str] = None
    sorter: Optional[str] = None
    multi_log: Optional[bool] = None

    # sort buffer 크기(블록 단위). 0이면 batch_blocks를 사용
    buffer_blocks: int = 0
    buffer_dedup: bool = False

    # multi-log 사다리 상한 / 미분 계산에 필요한 최소 블록 수
    max_lines: int = 8
    line_min_blocks: int = 4

    # ---------------------------------------------------------------------
    # 4) 워크로드
    # ---------------------------------------------------------------------
    # uniform | zipf | hotcold
    workload: str = "uniform"
    zipf_exp: float = 0.99
    zipf_shuffle: bool = False
    # hot id 비율(%). hot id가 (100 - hot_skew)%의 접근을 받음
    hot_skew: int = 20

    # ---------------------------------------------------------------------
    # 5) 실행
    # ---------------------------------------------------------------------
    # 측정 구간 write 수. None이면 total_pages * scale_factor
    ops: Optional[int] = None
    scale_factor: int = 10

    # load 이후 추가 warm-up write 수 (끝나면 통계 창을 리셋)
    warmup_ops: int = 0

    # >0 이면 그 간격마다 [RUN] 진행 출력
    progress_every: int = 0

    rng_seed: int = 42

    # 내부 플래그: prepare()가 성공적으로 끝났는지 표시
    _validated: bool = field(default=False, init=False, repr=False)

    # ---------------------------------------------------------------------
    # 파생값
    # ---------------------------------------------------------------------

    @property
    def total_pages(self) -> int:
        """total_pages = num_blocks * pages_per_block"""
        return max(0, int(self.num_blocks) * int(self.pages_per_block))

    @property
    def user_total_pages(self) -> int:
        """
        사용자 lpid 개수(= max_lpid).

        user_total_pages = int(total_pages * fill_factor)
        """
        return int(self.total_pages * float(self.fill_factor))

    @property
    def free_block_threshold_abs(self) -> int:
        """
        free block 임계치를 블록 개수(절대값)로 환산한 값.

        abs_threshold = round(num_blocks * clamp(gc_free_block_threshold, 0..1))
        """
        r = min(max(float(self.gc_free_block_threshold), 0.0), 1.0)
        return int(round(self.num_blocks * r))

    @property
    def sort_buffer_pages(self) -> int:
        """sort buffer 용량(페이지)."""
        blocks = self.buffer_blocks if self.buffer_blocks > 0 else self.batch_blocks
        return int(blocks) * int(self.pages_per_block)

    @property
    def line_bound(self) -> int:
        """
        설정된 셀렉터가 열 수 있는 라인 수의 상한.

        - none: 1, hotcold: 2
        - opt / multi_log: max_lines를 보수적 상한으로 사용
        """
        sel = (self.block_selector or POLICY_PRESETS.get(self.policy, {}).get("block_selector") or "none")
        if sel == "none":
            return 1
        if sel in ("hotcold", "hot_cold"):
            return 2
        return max(1, int(self.max_lines))

    @property
    def total_ops(self) -> int:
        """측정 구간 write 수."""
        if self.ops is not None:
            return int(self.ops)
        return self.total_pages * int(self.scale_factor)

    # ---------------------------------------------------------------------
    # 프리셋 / 검증 / 준비
    # ---------------------------------------------------------------------

    def resolve_policy(self) -> None:
        """
        policy 프리셋으로 비어 있는(None) 정책 필드를 채웁니다.

        Raises
        ------
        ValueError: 알 수 없는 프리셋 이름
        """
        preset = POLICY_PRESETS.get((self.policy or "").lower())
        if preset is None:
            raise ValueError(f"unknown policy preset: {self.policy}")
        for k, v in preset.items():
            if getattr(self, k) is None:
                setattr(self, k, v)

    def validate(self) -> None:
        """
        설정 값의 범위와 기본 일관성을 검증합니다.

        Raises
        ------
        ValueError:
            값이 허용 범위를 벗어나면 예외를 발생시킵니다.

        Guarantees
        ----------
        - 성공하면 `_validated=True`가 됩니다.
        - free pool 예약이 라인별 open 블록을 감당할 수 있습니다.
        - 사용자 데이터가 예약/open 블록을 뺀 공간 안에 들어갑니다.
        """
        if self.num_blocks <= 0 or self.pages_per_block <= 0:
            raise ValueError("num_blocks/pages_per_block 는 양수여야 합니다")
        if not (0.0 < self.fill_factor < 1.0):
            raise ValueError("fill_factor 는 (0,1) 범위여야 합니다")
        if not (0.0 <= self.gc_free_block_threshold < 1.0):
            raise ValueError("gc_free_block_threshold 는 [0,1) 범위여야 합니다")
        if self.batch_blocks < 1:
            raise ValueError("batch_blocks 는 1 이상이어야 합니다")
        if self.max_lines < 1:
            raise ValueError("max_lines 는 1 이상이어야 합니다")
        if self.line_min_blocks < 0:
            raise ValueError("line_min_blocks 는 0 이상이어야 합니다")
        if (self.workload or "").lower() not in ("uniform", "zipf", "hotcold", "hot_cold"):
            raise ValueError(f"unknown workload: {self.workload}")
        if self.zipf_exp < 0:
            raise ValueError("zipf_exp 는 0 이상이어야 합니다")
        if not (0 < self.hot_skew < 100):
            raise ValueError("hot_skew 는 (0,100) 범위여야 합니다")
        if self.scale_factor <= 0 and self.ops is None:
            raise ValueError("scale_factor 는 양수여야 합니다")
        if self.ops is not None and self.ops < 0:
            raise ValueError("ops 는 0 이상이어야 합니다")
        if self.warmup_ops < 0:
            raise ValueError("warmup_ops 는 0 이상이어야 합니다")

        thr = self.free_block_threshold_abs
        lines = self.line_bound
        if thr < lines + 1:
            raise ValueError(
                f"free block 임계치({thr})가 라인 수 상한({lines})+1 보다 작습니다: "
                f"GC relocation 중 free pool이 바닥날 수 있습니다"
            )
        usable_pages = (self.num_blocks - thr - lines - 1) * self.pages_per_block
        if self.user_total_pages >= usable_pages:
            raise ValueError(
                f"fill_factor 가 너무 큽니다: user_pages={self.user_total_pages} "
                f">= 사용 가능 페이지 {usable_pages}"
            )

        self._validated = True

    def prepare(self) -> None:
        """
        실행 전 권장 초기화 함수.

        1) resolve_policy()로 프리셋을 풀고,
        2) validate()로 설정을 검증합니다.
        """
        self.resolve_policy()
        self.validate()

    # ---------------------------------------------------------------------
    # 직렬화(실험 메타데이터 저장용)
    # ---------------------------------------------------------------------

    def to_dict(self) -> Dict:
        """
        설정을 dict로 변환합니다(로그/메타데이터 저장용).

        `_validated` 같은 내부 상태는 제거하여 실험 정의만 남깁니다.
        """
        d = asdict(self)
        d.pop("_validated", None)
        return d
