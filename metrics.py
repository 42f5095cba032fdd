from __future__ import annotations

"""
metrics.py

GC 시뮬레이터 실행 결과를 숫자(메트릭)로 뽑아내고, summary.csv로 저장하는 모듈입니다.

이 프로젝트에서 metrics.py의 역할
---------------------------------
1) 메트릭 추출(Collect)
   - Stats(E / write cost / GC cost / WAF / 카운터)와 실행 종료 시점의 상태 스냅샷
     (free pool, 라인 수, 매핑된 lpid, 블록 점유율 분포)을 한 dict로 만듭니다.
2) 요약 기록(Log)
   - 실험 1회(run)마다 한 행(row)을 summary.csv에 append 합니다.
3) 재현성(Reproducibility)
   - meta(설정/정책/seed 등)를 row에 합쳐 "이 결과가 어떤 조건에서 나왔는지" 남깁니다.

입력/출력 계약(Contract)
-----------------------
- collect_run_metrics(sim) -> Dict[str, Any]
- summary_row(sim, meta) -> Dict[str, Any]
- append_summary_csv(path, sim, meta)
- append_rows_csv(path, rows)

주의
----
- write cost는 E == 0 이면 inf 입니다. CSV에는 "inf" 문자열로 남고,
  analyze_results의 숫자 변환에서 inf 로 다시 읽힙니다.
- multi-log 셀렉터를 쓴 run에는 ml_* 카운터 컬럼이 추가됩니다.
"""

from typing import Any, Dict, Iterable, List, Optional
import csv
import math
import os

from models import BlockState


# ------------------------------------------------------------
# 내부 유틸
# ------------------------------------------------------------

def _list_stat(xs: List[float]) -> Dict[str, float]:
    """
    리스트 통계(min/max/avg/std). std는 모집단 기준(분모=n).
    """
    if not xs:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "std": 0.0}

    n = len(xs)
    mn = min(xs)
    mx = max(xs)
    avg = sum(xs) / n
    var = sum((x - avg) ** 2 for x in xs) / n
    return {"min": mn, "max": mx, "avg": avg, "std": math.sqrt(var)}


def _round(x: float, nd: int = 6) -> float:
    return x if math.isinf(x) else round(x, nd)


# ------------------------------------------------------------
# 메트릭 수집
# ------------------------------------------------------------

def collect_run_metrics(sim: Any) -> Dict[str, Any]:
    """
    시뮬레이터 1회 실행의 핵심 메트릭.

    반환 메트릭(주요)
    -----------------
    - E, write_cost, gc_cost, waf
    - user_writes, moved_pages, moved_blocks, gc_passes, deleted_pages
    - free_blocks, num_lines, mapped_lpids, total_pages, pages_per_block
    - util_min/max/avg/std: USED 블록의 유효 페이지 비율 분포
    - absorbed_writes: sort buffer dedup으로 흡수된 write 수
    - ml_*: multi-log 셀렉터 카운터(있을 때만)
    """
    st = sim.stats
    c = sim.block_size

    util = [b.valid_count / c for b in sim.blocks if b.state is BlockState.USED]
    util_stat = _list_stat(util)

    row: Dict[str, Any] = {
        "policy": sim.policy_name,
        "E": _round(st.e()),
        "write_cost": _round(st.write_cost()),
        "gc_cost": _round(st.gc_cost()),
        "waf": _round(st.waf()),

        "user_writes": st.user_writes,
        "moved_pages": st.moved_pages,
        "moved_blocks": st.moved_blocks,
        "gc_passes": st.gc_passes,
        "deleted_pages": st.deleted_pages,

        "free_blocks": sim.free_count,
        "num_lines": len(sim.lines),
        "mapped_lpids": sim.address_map.mapped_count,
        "total_pages": len(sim.blocks) * c,
        "pages_per_block": c,

        "util_min": _round(util_stat["min"]),
        "util_max": _round(util_stat["max"]),
        "util_avg": _round(util_stat["avg"]),
        "util_std": _round(util_stat["std"]),

        "absorbed_writes": int(getattr(sim.write_buffer, "absorbed", 0)),
    }

    counters = getattr(sim.block_selector, "counters", None)
    if callable(counters):
        row.update(counters())
    return row


def summary_row(sim: Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    sim + meta 를 합친 summary.csv 1행 (meta 우선).

    사용처: experiments.py 의 QC/콘솔 출력, 워커 프로세스의 결과 반환
    """
    row = collect_run_metrics(sim)
    if meta:
        row.update(meta)
    return row


# ------------------------------------------------------------
# 요약 CSV 저장
# ------------------------------------------------------------

def _read_header(path: str) -> List[str]:
    with open(path, "r", newline="", encoding="utf-8") as f:
        r = csv.reader(f)
        try:
            return next(r)
        except StopIteration:
            return []


def append_rows_csv(path: str, rows: Iterable[Dict[str, Any]]) -> int:
    """
    여러 행을 append 합니다. 기록한 행 수를 반환.

    동작 규칙
    --------
    - 파일이 없거나 비어 있으면: 첫 행 키를 알파벳 정렬한 헤더로 새로 씀
    - 파일이 있으면: 기존 헤더 순서를 유지
    - 새 컬럼이 등장하면: 헤더 뒤에 붙이고 파일 전체를 새 헤더로 다시 씀
      (기존 행의 새 컬럼은 빈 칸)
    """
    rows = list(rows)
    if not rows:
        return 0
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)

    header = _read_header(path) if os.path.exists(path) else []
    fieldnames = list(header) if header else sorted(rows[0].keys())
    for row in rows:
        for k in row.keys():
            if k not in fieldnames:
                fieldnames.append(k)

    if header and fieldnames != header:
        with open(path, "r", newline="", encoding="utf-8") as f:
            old = list(csv.DictReader(f))
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=fieldnames)
            w.writeheader()
            w.writerows(old)
            w.writerows(rows)
        return len(rows)

    with open(path, "a", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames)
        if not header:
            w.writeheader()
        w.writerows(rows)
    return len(rows)


def append_summary_csv(path: str, sim: Any, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """summary.csv에 한 run의 결과를 1행 append 하고, 그 행을 반환합니다."""
    row = summary_row(sim, meta)
    append_rows_csv(path, [row])
    return row
