"""
workload.py

호스트가 "어떤 lpid를 다음에 쓸지"를 생성하는 모듈.

핵심 역할
---------
GC 시뮬레이터의 행동은 결국 워크로드에 의해 결정된다.
- 균등(uniform) 접근이면 모든 블록이 비슷한 속도로 garbage를 쌓고,
- Zipf/hot-cold처럼 치우친 접근이면 hot 데이터와 cold 데이터가 섞인 블록이 생겨
  라우팅(block selector)과 victim 선택(score computer)의 차이가 크게 드러난다.

따라서 workload.py는 실험 재현성의 출발점이다.
- 같은 seed + 같은 파라미터이면 항상 같은 lpid 시퀀스를 생성한다.

생성기 계약(Contract)
---------------------
모든 생성기는 같은 메서드 이름을 가진다(상속 계층 없음, duck typing).

    generate()      -> lpid           # [1, max_lpid] 범위
    get_prob(lpid)  -> float          # 그 lpid의 접근 확률(오라클)
    get_min_prob()  -> float
    get_max_prob()  -> float

get_prob는 시뮬레이터가 쓰기마다 호출하므로(블록 update_freq 합계),
내부 테이블은 numpy 배열이 아니라 파이썬 list로 들고 있다(스칼라 접근이 더 빠름).

변형(Variants)
--------------
- uniform : 1/max_lpid
- zipf    : p(i) = i^-exp / H(max_lpid, exp), 옵션으로 id shuffle
- hotcold : hot_skew(%)개의 id가 (100-hot_skew)%의 접근을 받음
- trained : trace 재생으로 빈도를 학습한 고정 테이블 (generate는 지원하지 않음)

흔한 함정
---------
1) zipf exp=0은 uniform과 같다. 이 경우 테이블을 만들지 않고 uniform 경로로 간다.
2) hotcold의 num_hot/num_cold는 max_lpid//100 단위로 내림되므로,
   max_lpid가 100의 배수가 아니면 꼬리 id 몇 개는 생성되지 않는다(확률은 cold로 보고).
3) trained 생성기에서 generate()를 부르는 것은 설정 오류다(NotImplementedError).
"""

from __future__ import annotations

from typing import List, Optional
import random

import numpy as np


# ------------------------------------------------------------
# uniform
# ------------------------------------------------------------

class UniformGenerator:
    """모든 lpid가 같은 확률 1/max_lpid."""

    name = "uniform"

    def __init__(self, max_lpid: int, rng_seed: int = 42):
        if max_lpid <= 0:
            raise ValueError("max_lpid 는 양수여야 합니다")
        self.max_lpid = int(max_lpid)
        self.rng = random.Random(int(rng_seed))
        self._prob = 1.0 / self.max_lpid

    def generate(self) -> int:
        return self.rng.randint(1, self.max_lpid)

    def get_prob(self, lpid: int) -> float:
        return self._prob

    def get_min_prob(self) -> float:
        return self._prob

    def get_max_prob(self) -> float:
        return self._prob


# ------------------------------------------------------------
# zipf
# ------------------------------------------------------------

class ZipfGenerator:
    """
    Zipf 분포 생성기.

    확률
    ----
    rank r(1..N)의 확률 = r^-exp / sum_k k^-exp

    shuffle=False 이면 lpid == rank (작은 id가 hot).
    shuffle=True  이면 seed 고정 순열로 rank -> lpid 를 섞어
    "hot id = 작은 id" 상관을 없앤다.

    샘플링
    ------
    numpy Generator로 uniform 난수를 batch만큼 뽑아 누적분포(cdf)에 searchsorted.
    매 호출마다 numpy를 부르지 않도록 batch 결과를 list로 풀어서 소비한다.
    """

    name = "zipf"

    def __init__(self, max_lpid: int, exp: float = 0.99, shuffle: bool = False,
                 rng_seed: int = 42, batch: int = 8192):
        if max_lpid <= 0:
            raise ValueError("max_lpid 는 양수여야 합니다")
        if exp < 0:
            raise ValueError("zipf exp 는 0 이상이어야 합니다")
        self.max_lpid = int(max_lpid)
        self.exp = float(exp)
        self.shuffle = bool(shuffle)
        self.batch = int(batch)
        self._np_rng = np.random.default_rng(int(rng_seed))

        ranks = np.arange(1, self.max_lpid + 1, dtype=np.float64)
        weights = ranks ** (-self.exp)
        probs = weights / weights.sum()
        self._cdf = np.cumsum(probs)
        self._cdf[-1] = 1.0

        if self.shuffle:
            # rank index(0-based) -> lpid
            self._rank_to_lpid = self._np_rng.permutation(self.max_lpid) + 1
        else:
            self._rank_to_lpid = np.arange(1, self.max_lpid + 1)

        by_lpid = np.zeros(self.max_lpid + 1, dtype=np.float64)
        by_lpid[self._rank_to_lpid] = probs
        self._probs: List[float] = by_lpid.tolist()
        self._min_prob = float(probs[-1])
        self._max_prob = float(probs[0])

        self._buf: List[int] = []
        self._pos = 0

    def _refill(self) -> None:
        u = self._np_rng.random(self.batch)
        idx = np.searchsorted(self._cdf, u, side="right")
        np.minimum(idx, self.max_lpid - 1, out=idx)
        self._buf = self._rank_to_lpid[idx].tolist()
        self._pos = 0

    def generate(self) -> int:
        if self._pos >= len(self._buf):
            self._refill()
        lpid = self._buf[self._pos]
        self._pos += 1
        return lpid

    def get_prob(self, lpid: int) -> float:
        return self._probs[lpid]

    def get_min_prob(self) -> float:
        return self._min_prob

    def get_max_prob(self) -> float:
        return self._max_prob


# ------------------------------------------------------------
# hot-cold
# ------------------------------------------------------------

class HotColdGenerator:
    """
    hot/cold 2단계 평탄 분포.

    hot_skew=20 이면
    - id 1..num_hot (전체의 20%)가 접근의 80%를 받고
    - 나머지 80% id가 20%를 받는다.

    generate:
        rng.randrange(100) < hot_skew  -> cold id 중 하나
        그 외                          -> hot id 중 하나
    """

    name = "hotcold"

    def __init__(self, max_lpid: int, hot_skew: int = 20, rng_seed: int = 42):
        if not (0 < hot_skew < 100):
            raise ValueError("hot_skew 는 (0,100) 범위여야 합니다")
        self.max_lpid = int(max_lpid)
        self.hot_skew = int(hot_skew)
        self.num_hot = self.max_lpid // 100 * self.hot_skew
        self.num_cold = self.max_lpid // 100 * (100 - self.hot_skew)
        if self.num_hot <= 0 or self.num_cold <= 0:
            raise ValueError("max_lpid 가 너무 작아 hot/cold 구간을 만들 수 없습니다 (>=100 필요)")
        self.cold_prob = self.hot_skew / 100.0 / self.num_cold
        self.hot_prob = (100 - self.hot_skew) / 100.0 / self.num_hot
        self.rng = random.Random(int(rng_seed))

    def generate(self) -> int:
        if self.rng.randrange(100) < self.hot_skew:
            return self.num_hot + 1 + self.rng.randrange(self.num_cold)
        return 1 + self.rng.randrange(self.num_hot)

    def is_hot(self, lpid: int) -> bool:
        return lpid <= self.num_hot

    def get_prob(self, lpid: int) -> float:
        return self.hot_prob if lpid <= self.num_hot else self.cold_prob

    def get_min_prob(self) -> float:
        return min(self.hot_prob, self.cold_prob)

    def get_max_prob(self) -> float:
        return max(self.hot_prob, self.cold_prob)


# ------------------------------------------------------------
# trained (trace 기반)
# ------------------------------------------------------------

class TrainedGenerator:
    """
    trace를 한 번 재생하며 lpid별 빈도를 학습하고, 이후 고정 테이블로 조회만 한다.

    사용 순서
    --------
    1) add(lpid) 를 trace의 WRITE마다 호출
    2) compute() 로 확률 테이블 고정
    3) get_prob / get_min_prob / get_max_prob 조회

    generate()는 지원하지 않는다. 이 생성기는 trace 재생용 확률 오라클이다.
    """

    name = "trained"

    def __init__(self, max_lpid: int):
        self.max_lpid = int(max_lpid)
        self._freq: List[int] = [0] * (self.max_lpid + 1)
        self._count = 0
        self._probs: Optional[List[float]] = None
        self._min_prob = 0.0
        self._max_prob = 0.0

    def add(self, lpid: int) -> None:
        if self._probs is not None:
            raise RuntimeError("compute() 이후에는 add 할 수 없습니다")
        self._freq[lpid] += 1
        self._count += 1

    def compute(self) -> None:
        if self._count == 0:
            raise ValueError("학습된 write가 없습니다")
        self._probs = [f / self._count for f in self._freq]
        seen = [p for p in self._probs[1:] if p > 0.0]
        self._min_prob = min(seen)
        self._max_prob = max(seen)

    def generate(self) -> int:
        raise NotImplementedError("trained 생성기는 샘플링을 지원하지 않습니다 (trace 재생 전용)")

    def _table(self) -> List[float]:
        if self._probs is None:
            raise RuntimeError("compute() 를 먼저 호출하세요")
        return self._probs

    def get_prob(self, lpid: int) -> float:
        return self._table()[lpid]

    def get_min_prob(self) -> float:
        self._table()
        return self._min_prob

    def get_max_prob(self) -> float:
        self._table()
        return self._max_prob


# ------------------------------------------------------------
# 팩토리 / 로드 시퀀스
# ------------------------------------------------------------

WORKLOADS = ("uniform", "zipf", "hotcold")


def make_generator(
    name: str,
    max_lpid: int,
    rng_seed: int = 42,
    zipf_exp: float = 0.99,
    zipf_shuffle: bool = False,
    hot_skew: int = 20,
):
    """
    이름으로 생성기를 만든다(시뮬레이션 인스턴스마다 새 객체).

    - zipf에서 exp == 0 이면 uniform으로 대체한다.
    - trained는 trace.train_generator()로 만든다(여기서는 지원하지 않음).
    """
    n = (name or "").lower()
    if n == "uniform":
        return UniformGenerator(max_lpid, rng_seed=rng_seed)
    if n == "zipf":
        if zipf_exp == 0:
            return UniformGenerator(max_lpid, rng_seed=rng_seed)
        return ZipfGenerator(max_lpid, exp=zipf_exp, shuffle=zipf_shuffle, rng_seed=rng_seed)
    if n in ("hotcold", "hot_cold"):
        return HotColdGenerator(max_lpid, hot_skew=hot_skew, rng_seed=rng_seed)
    raise ValueError(f"unknown workload: {name}")


def make_load_sequence(max_lpid: int, rng_seed: int = 0) -> List[int]:
    """
    초기 적재(load)용 lpid 순서: 1..max_lpid 를 seed 고정으로 섞은 리스트.

    seed만 다르면 "같은 데이터 집합, 다른 배치 순서"가 되어
    seed 간 결과 차이가 배치 순서에서만 오도록 한다.
    """
    ids = list(range(1, int(max_lpid) + 1))
    random.Random(int(rng_seed)).shuffle(ids)
    return ids
