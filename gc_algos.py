from __future__ import annotations

"""
gc_algos.py

GC victim 점수 계산기(score computer)와 보조 정렬기(sorter) 모음입니다.

이 프로젝트에서 점수 계산기는 아래 형태의 객체로 정의됩니다.

    computer.compute(block, now) -> score

- block: models.Block (state == USED 인 봉인 블록)
- now  : 시뮬레이터의 논리 시계(current_ts)

점수 규약(중요)
--------------
모든 변형에서 **점수가 가장 작은 블록이 먼저 청소됩니다.**
(블록을 고르는 쪽은 simulator.GCSimulator의 bounded heap이며,
 batch_blocks개의 "가장 작은 점수"만 유지하고 가장 나쁜(큰) 점수를 버립니다.)

- "후보에서 사실상 제외"가 필요한 경우는 math.inf 를 돌려줍니다.
  제외된 블록도 다른 후보가 없으면 여전히 선택될 수 있으므로,
  GC가 "후보 0개"로 멈추는 일은 없습니다.

이 파일의 목적
--------------
1) 정책 구현의 분리
   - 시뮬레이터의 write/GC 흐름과 "어떤 블록을 먼저 지울지"를 분리합니다.
2) 비교 실험의 단순화
   - greedy / min-decline / min-decline-opt / berkeley / lru 를 같은 인터페이스로 제공합니다.
3) 재현 가능한 점수 정의
   - random 기준선(calibration)을 제외하면 모두 블록 상태 + now 만으로 결정적입니다.

블록에서 읽는 값(Contract)
--------------------------
- capacity(C), avail, count, valid_count
- prior_ts(), update_freq(), newest_ts, closed_ts, prior_ts_sum

확장 포인트
-----------
- 새 점수를 추가할 때는 compute(block, now)를 가진 클래스를 만들고
  get_score_computer에 이름 매핑을 추가하면 됩니다.
"""

from typing import Callable, Optional
import math
import random


# ------------------------------------------------------------
# 1) 기본 점수 (baseline)
# ------------------------------------------------------------

class MaxAvail:
    """
    Greedy: garbage(avail)가 가장 많은 블록 우선.

    score = 1 / max(1, avail)
    - 옮길 유효 페이지가 가장 적은 블록을 고르므로 블록당 이동 비용이 최소.
    """

    name = "max_avail"

    def compute(self, block, now: float) -> float:
        return 1.0 / max(1, block.avail)


class Oldest:
    """
    LRU: 가장 오래전에 봉인된 블록 우선.

    score = 1 / max(1, now - closed_ts)
    """

    name = "oldest"

    def compute(self, block, now: float) -> float:
        return 1.0 / max(1.0, now - block.closed_ts)


class RandomScore:
    """보정(calibration)용 랜덤 기준선. 유일하게 비결정적인 점수."""

    name = "random"

    def __init__(self, rng_seed: int = 42):
        self.rng = random.Random(int(rng_seed))

    def compute(self, block, now: float) -> float:
        return self.rng.random()


# ------------------------------------------------------------
# 2) 비용-편익 계열
# ------------------------------------------------------------

class MinDecline:
    """
    Min-Decline: 청소 비용 곡선의 한계 감소량이 가장 작은 블록 우선.

    E   = avail / C
    age = max(now - prior_ts(), 1)
    score = (1 - E) / E^2 / age

    - garbage가 많고(E↑) 데이터가 오래된(age↑) 블록일수록 작아집니다.
    - E == 0 (garbage 없음) 이면 inf: 청소해도 얻는 게 없습니다.
    """

    name = "min_decline"

    def compute(self, block, now: float) -> float:
        e = block.avail / block.capacity
        if e <= 0.0:
            return math.inf
        age = max(now - block.prior_ts(), 1.0)
        return (1.0 - e) / (e * e) / age


class MinDeclineOpt:
    """
    Min-Decline (oracle): age 대신 유효 페이지들의 평균 update frequency 사용.

    score = update_freq * (1 - E) / E^2

    - 유효 페이지가 하나도 없으면 0 (공짜로 회수 가능한 최선의 블록)
    - E == 0 이면 inf
    """

    name = "min_decline_opt"

    def compute(self, block, now: float) -> float:
        if block.valid_count <= 0:
            return 0.0
        e = block.avail / block.capacity
        if e <= 0.0:
            return math.inf
        return block.update_freq() * (1.0 - e) / (e * e)


class Berkeley:
    """
    LFS(Berkeley) cost-benefit 의 역수 형태.

    active = C - avail,  u = active / C
    - u >= 0.95 이면 inf (거의 꽉 찬 블록은 제외)
    - 그 외 score = (C + active) / (C - active) / age,  age = max(now - newest_ts, 1)
      = (1 + u) / ((1 - u) * age)  → 작을수록 benefit/cost 가 큼
    """

    name = "berkeley"

    LIVE_CUTOFF = 0.95

    def compute(self, block, now: float) -> float:
        c = block.capacity
        active = c - block.avail
        if active / c >= self.LIVE_CUTOFF:
            return math.inf
        age = max(now - block.newest_ts, 1.0)
        return (c + active) / (c - active) / age


# ------------------------------------------------------------
# 3) 보조 정렬기 (선택된 batch 재정렬용)
# ------------------------------------------------------------

def _prior_ts_key(block) -> float:
    return block.prior_ts_sum


def _newest_ts_key(block) -> float:
    return block.newest_ts


def _closed_ts_key(block) -> float:
    return block.closed_ts


def get_block_sorter(name: Optional[str]) -> Optional[Callable]:
    """
    victim batch를 재정렬할 key 함수를 반환합니다.

    - None / "none" -> None (점수 순서를 그대로 사용)
    - 정렬 방향은 시뮬레이터가 pass마다 번갈아 뒤집습니다.
    """
    n = (name or "none").lower()
    if n == "none":
        return None
    if n == "prior_ts":
        return _prior_ts_key
    if n == "newest_ts":
        return _newest_ts_key
    if n == "closed_ts":
        return _closed_ts_key
    raise ValueError(f"unknown sorter: {name}")


# ------------------------------------------------------------
# 팩토리
# ------------------------------------------------------------

SCORE_COMPUTERS = ("max_avail", "min_decline", "min_decline_opt", "berkeley", "oldest", "random")


def get_score_computer(name: str, rng_seed: int = 42):
    """
    문자열 이름으로 점수 계산기 인스턴스를 얻는 팩토리.

    별칭
    ----
    - greedy -> max_avail
    - lru    -> oldest
    """
    n = (name or "").lower()

    if n in ("max_avail", "greedy"):
        return MaxAvail()
    if n == "min_decline":
        return MinDecline()
    if n == "min_decline_opt":
        return MinDeclineOpt()
    if n == "berkeley":
        return Berkeley()
    if n in ("oldest", "lru"):
        return Oldest()
    if n == "random":
        return RandomScore(rng_seed)

    raise ValueError(f"unknown score computer: {name}")
