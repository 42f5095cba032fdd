from __future__ import annotations

"""
experiments.py

여러 run을 한 번에 돌리는 실험 드라이버.

conf 목록은 세 가지로 만듭니다.
    --grid "policy=greedy,min_decline; fill_factor=0.7,0.8"   데카르트 곱
    --scenarios runs.yaml                                     YAML 오버라이드 목록
    --repeat N                                                seed, seed+1, ... 반복

각 run은 run_sim.simulate 와 같은 경로로 실행되고, 결과 행은 summary.csv에 누적됩니다.

--workers N
-----------
- 시뮬레이션끼리 공유 상태가 없으므로 run 단위로 ProcessPoolExecutor 에 나눕니다.
- 결과는 제출 순서대로 모으고 CSV 기록은 부모 프로세스만 합니다.
- 1(기본)이면 풀 없이 순차 실행.

QC
--
--qc off|warn|strict. strict 에서 경고가 하나라도 있으면 CSV를 쓴 뒤 종료 코드 2.
"""

import argparse
import itertools
import os
from concurrent.futures import ProcessPoolExecutor
from typing import Any, Dict, List, Tuple

from run_sim import _quick_qc, add_sim_args, simulate
from metrics import append_rows_csv, summary_row


SUMMARY_COLS = ["policy", "fill_factor", "seed", "E", "write_cost", "gc_cost"]


# ------------------------------------------------------------
# run 1회
# ------------------------------------------------------------

def run_once(conf: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """
    단일 실험을 1회 실행하고 (row, ok)를 반환합니다.

    - row: summary_row(sim, meta)
    - ok : QC 통과 여부 (qc=off 이면 항상 True)

    프로세스 풀에서 호출되므로 모듈 최상위 함수여야 하고, conf는 pickle 가능한 dict입니다.
    """
    sim, meta = simulate(conf)
    row = summary_row(sim, meta)
    if conf.get("qc", "warn") == "off":
        return row, True
    return row, _quick_qc(row)


# ------------------------------------------------------------
# 실험 목록 만들기: grid / 반복 / 시나리오
# ------------------------------------------------------------

def _coerce_value(x: str) -> Any:
    """
    grid 값 문자열 -> 파이썬 값.

    none/null 은 None, true/false 는 bool, 정수/실수 표기는 숫자, 나머지는 문자열 그대로.
    """
    low = x.lower()
    if low in ("none", "null"):
        return None
    if low in ("true", "false"):
        return low == "true"
    for cast in (int, float):
        try:
            return cast(x)
        except ValueError:
            pass
    return x


def _parse_grid(spec: str) -> List[Tuple[str, List[Any]]]:
    """'policy=greedy,lru; fill_factor=0.7,0.8' -> [(키, [값...]), ...]"""
    axes: List[Tuple[str, List[Any]]] = []
    for chunk in spec.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        key, sep, raw = chunk.partition("=")
        if not sep:
            raise ValueError(f"grid 항목은 key=v1,v2 형식이어야 합니다: {chunk!r}")
        values = [_coerce_value(v.strip()) for v in raw.split(",") if v.strip()]
        axes.append((key.strip(), values))
    return axes


def build_grid(args: argparse.Namespace) -> List[Dict[str, Any]]:
    """
    --grid 의 데카르트 곱으로 conf 목록을 만듭니다(먼저 쓴 키가 바깥 루프).
    --grid 가 없으면 args 하나짜리 목록.
    """
    base = vars(args).copy()
    if not args.grid:
        return [base]

    axes = _parse_grid(args.grid)
    keys = [k for k, _ in axes]
    confs: List[Dict[str, Any]] = []
    for combo in itertools.product(*(vals for _, vals in axes)):
        conf = base.copy()
        conf.update(zip(keys, combo))
        confs.append(conf)
    return confs


def expand_repeats(confs: List[Dict[str, Any]], repeat: int) -> List[Dict[str, Any]]:
    """conf마다 seed, seed+1, ... 로 repeat번 복제(conf에 repeat 키가 있으면 그 값 우선)."""
    out: List[Dict[str, Any]] = []
    for conf in confs:
        seed0 = int(conf.get("seed", 42))
        for r in range(int(conf.get("repeat") or repeat)):
            out.append(dict(conf, seed=seed0 + r))
    return out


def load_scenarios(path: str) -> List[Dict[str, Any]]:
    """
    YAML 시나리오 파일 -> 오버라이드 dict 목록.

    최상위가 리스트이거나, scenarios 키 아래 리스트인 두 형태를 받습니다.
    """
    try:
        import yaml
    except ImportError:
        raise RuntimeError("PyYAML이 필요합니다: pip install pyyaml")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if isinstance(data, dict) and "scenarios" in data:
        data = data["scenarios"]
    if not isinstance(data, list):
        raise RuntimeError(f"시나리오 파일은 list 또는 {{scenarios: [...]}} 이어야 합니다: {path}")
    return list(data)


# ------------------------------------------------------------
# 실행
# ------------------------------------------------------------

def run_all(confs: List[Dict[str, Any]], workers: int = 1) -> List[Tuple[Dict[str, Any], bool]]:
    """conf 목록을 실행하고 결과를 제출 순서대로 반환합니다."""
    if workers <= 1 or len(confs) <= 1:
        return [run_once(c) for c in confs]
    with ProcessPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(run_once, c) for c in confs]
        return [f.result() for f in futures]


def _print_summary(rows: List[Dict[str, Any]]) -> None:
    print("\t".join(SUMMARY_COLS))
    for r in rows:
        print("\t".join("" if r.get(c) is None else str(r.get(c)) for c in SUMMARY_COLS))


# ------------------------------------------------------------
# CLI 엔트리포인트
# ------------------------------------------------------------

def _scenario_confs(args: argparse.Namespace) -> List[Dict[str, Any]]:
    base = vars(args)
    return [dict(base, **sc) for sc in load_scenarios(args.scenarios)]


def main() -> None:
    ap = argparse.ArgumentParser(description="GC experiment driver (grid / YAML scenarios / seed repeats)")
    add_sim_args(ap)
    ap.add_argument("--grid", type=str, default=None, help='"key=v1,v2; key2=v3" 형식의 파라미터 격자')
    ap.add_argument("--repeat", type=int, default=1, help="conf마다 seed를 +1씩 바꿔 반복할 횟수")
    ap.add_argument("--scenarios", type=str, default=None, help="YAML 시나리오 파일(지정 시 --grid 무시)")
    ap.add_argument("--workers", type=int, default=1, help="프로세스 풀 크기")
    ap.add_argument("--out_dir", type=str, default="results/exp", help="출력 디렉토리")
    ap.add_argument("--out_csv", type=str, default="results/exp/summary.csv", help="결과 누적 CSV")
    args = ap.parse_args()

    os.makedirs(args.out_dir, exist_ok=True)
    confs = _scenario_confs(args) if args.scenarios else build_grid(args)
    confs = expand_repeats(confs, args.repeat)

    print(f"[EXP] runs={len(confs)} workers={args.workers}")
    results = run_all(confs, workers=args.workers)
    rows = [row for row, _ in results]

    if args.out_csv and rows:
        append_rows_csv(args.out_csv, rows)
        print(f"[EXP DONE] {len(rows)} rows → {args.out_csv}")
    _print_summary(rows)

    if args.qc == "strict" and not all(ok for _, ok in results):
        raise SystemExit(2)


if __name__ == "__main__":
    main()
