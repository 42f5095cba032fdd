from __future__ import annotations

"""
run_sim.py

로그 구조 저장장치 GC 시뮬레이터 실행기(Entry Point).

이 파일의 역할
--------------
1) 이 조건으로 한 번 돌려보고
2) 결과를 CSV로 남기고
3) 결과 row를 QC로 한 번 걸러서 이상한 run을 바로 알아채기

run_sim.py는 그 3가지를 명령줄(CLI)로 묶어주는 실행 스크립트다.
experiments.py도 여기의 add_sim_args / config_from_args / simulate / _quick_qc 를 그대로 쓴다.

실행 흐름
---------
합성 워크로드:
    SimConfig.prepare() -> build_simulator(cfg)
    -> load(섞인 1..max_lpid) -> run(total_ops)

trace 재생(--trace):
    trace 읽기 -> train_generator(확률 오라클 학습) -> make_simulator(cfg, gen)
    -> (옵션) --load_trace 재생 후 통계 창 리셋 -> --trace 재생 (--stop_fill 에서 중단)

실행 예시
---------
    python run_sim.py --policy min_decline --fill_factor 0.8 --workload zipf --out_csv summary.csv

PowerShell에서는 줄바꿈에 '\' 대신 백틱(`)을 쓴다.

주의 / 흔한 함정
----------------
- out_csv를 results/run/summary.csv처럼 주면서 out_dir도 results/run으로 주면
  results/run/results/run/summary.csv가 된다. out_csv는 파일명만 주는 것을 권장.
- E/write cost는 load 이후(그리고 --warmup_ops 이후) 구간의 값이다.
"""

import os
import argparse
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from config import POLICY_PRESETS, SimConfig
from simulator import GCSimulator, build_simulator, make_simulator
from workload import make_load_sequence
from trace_io import FileMapper, read_trace, replay_trace, train_generator
from metrics import append_summary_csv, summary_row


# ============================================================
# Helpers
# ============================================================

def _resolve_path(path: Optional[str], out_dir: str) -> Optional[str]:
    """
    출력 경로 해석기.

    - None이면 None
    - 절대경로면 그대로
    - 상대경로면 out_dir 밑으로
    """
    if path is None:
        return None
    return path if os.path.isabs(path) else os.path.join(out_dir, path)


# CLI 이름 -> SimConfig 필드 이름 (같으면 생략)
_ARG_TO_FIELD = {
    "blocks": "num_blocks",
    "seed": "rng_seed",
}

_CONFIG_FIELDS = (
    "num_blocks", "pages_per_block", "fill_factor",
    "gc_free_block_threshold", "batch_blocks",
    "policy", "score_computer", "block_selector", "write_buffer", "sorter", "multi_log",
    "buffer_blocks", "buffer_dedup", "max_lines", "line_min_blocks",
    "workload", "zipf_exp", "zipf_shuffle", "hot_skew",
    "ops", "scale_factor", "warmup_ops", "progress_every", "rng_seed",
)


def add_sim_args(ap: argparse.ArgumentParser) -> None:
    """시뮬레이션 공통 인자(run_sim / experiments 공용)."""
    # 장치
    ap.add_argument("--blocks", type=int, default=256, help="블록 수")
    ap.add_argument("--pages_per_block", type=int, default=64, help="블록당 페이지 수(C)")
    ap.add_argument("--fill_factor", type=float, default=0.8, help="사용자 lpid / 물리 페이지 (0~1)")
    ap.add_argument("--gc_free_block_threshold", type=float, default=0.05, help="free blocks 비율 임계치 (0~1)")
    ap.add_argument("--batch_blocks", type=int, default=8, help="cleaning pass당 victim 수")

    # 정책
    ap.add_argument("--policy", type=str, default="greedy", choices=sorted(POLICY_PRESETS),
                    help="정책 프리셋")
    ap.add_argument("--score_computer", type=str, default=None, help="프리셋 오버라이드: 점수 계산기")
    ap.add_argument("--block_selector", type=str, default=None, help="프리셋 오버라이드: 블록 셀렉터")
    ap.add_argument("--write_buffer", type=str, default=None, help="프리셋 오버라이드: none|sort")
    ap.add_argument("--sorter", type=str, default=None, help="프리셋 오버라이드: victim 보조 정렬기")
    ap.add_argument("--multi_log", action="store_true", default=None, help="multi-log GC 강제")
    ap.add_argument("--buffer_blocks", type=int, default=0, help="sort buffer 크기(블록). 0이면 batch_blocks")
    ap.add_argument("--buffer_dedup", action="store_true", help="sort buffer 안의 중복 lpid 흡수")
    ap.add_argument("--max_lines", type=int, default=8, help="라인 사다리 상한")
    ap.add_argument("--line_min_blocks", type=int, default=4, help="multi-log 미분 계산 최소 블록 수")

    # 워크로드
    ap.add_argument("--workload", type=str, default="uniform", choices=["uniform", "zipf", "hotcold"])
    ap.add_argument("--zipf_exp", type=float, default=0.99)
    ap.add_argument("--zipf_shuffle", action="store_true")
    ap.add_argument("--hot_skew", type=int, default=20, help="hot id 비율(%%)")

    # 실행
    ap.add_argument("--ops", type=int, default=None, help="측정 write 수 (기본: total_pages * scale_factor)")
    ap.add_argument("--scale_factor", type=int, default=10)
    ap.add_argument("--warmup_ops", type=int, default=0, help="load 이후 통계에서 뺄 write 수")
    ap.add_argument("--progress_every", type=int, default=0, help=">0이면 [RUN] 진행 출력 간격")
    ap.add_argument("--seed", type=int, default=42, help="랜덤 시드")

    # trace
    ap.add_argument("--trace", type=str, default=None, help="재생할 trace 파일 (합성 워크로드 대신)")
    ap.add_argument("--load_trace", type=str, default=None, help="--trace 전에 재생할 적재 trace")
    ap.add_argument("--stop_fill", type=float, default=None, help="사용 lpid 비율이 이 값에 닿으면 trace 중단")
    ap.add_argument("--trace_warmup_fill", type=float, default=0.0,
                    help="사용 lpid 비율이 처음 이 값에 닿을 때 통계 창 리셋")

    ap.add_argument("--note", type=str, default="", help="메모/주석")
    ap.add_argument(
        "--qc", type=str, default="warn", choices=["off", "warn", "strict"],
        help="off=미실행, warn=경고만 출력, strict=경고 시 비정상 종료"
    )


def config_from_args(conf: Dict[str, Any]) -> SimConfig:
    """CLI/grid/YAML dict -> prepare()된 SimConfig. 모르는 키는 무시한다."""
    kw: Dict[str, Any] = {}
    for k, v in conf.items():
        field = _ARG_TO_FIELD.get(k, k)
        if field in _CONFIG_FIELDS:
            kw[field] = v
    cfg = SimConfig(**kw)
    cfg.prepare()
    return cfg


def _replay(cfg: SimConfig, conf: Dict[str, Any]) -> GCSimulator:
    """trace 재생 경로."""
    num_lpids = cfg.user_total_pages
    load_records: List = read_trace(conf["load_trace"]) if conf.get("load_trace") else []
    run_records = read_trace(conf["trace"])
    print(f"[TRACE] load={len(load_records)} run={len(run_records)} records, lpids={num_lpids}")

    gen = train_generator(load_records + run_records, num_lpids)
    sim = make_simulator(cfg, gen, max_lpid=num_lpids)
    mapper = FileMapper(num_lpids)
    every = int(cfg.progress_every)

    if load_records:
        replay_trace(sim, load_records, mapper, progress_every=every)
        sim.stats.reset_window()

    stop_fill = conf.get("stop_fill")
    stop = int(num_lpids * float(stop_fill)) if stop_fill else None
    warm = int(num_lpids * float(conf.get("trace_warmup_fill") or 0.0))
    replay_trace(sim, run_records, mapper, warmup_lpids=warm, stop_lpids=stop, progress_every=every)
    return sim


def simulate(conf: Dict[str, Any]) -> Tuple[GCSimulator, Dict[str, Any]]:
    """
    한 run을 끝까지 실행하고 (sim, meta)를 반환한다.

    meta에는 설정 전체(cfg.to_dict)와 재현용 식별자(run_id/seed/note/ts)가 들어간다.
    """
    cfg = config_from_args(conf)
    if conf.get("trace"):
        sim = _replay(cfg, conf)
    else:
        sim = build_simulator(cfg)
        sim.load(make_load_sequence(sim.max_lpid, rng_seed=cfg.rng_seed))
        sim.run()

    meta: Dict[str, Any] = cfg.to_dict()
    meta.update({
        "run_id": conf.get("note") or f"{cfg.policy}_{cfg.rng_seed}",
        "seed": cfg.rng_seed,
        "ops": cfg.total_ops if not conf.get("trace") else None,
        "trace": conf.get("trace") or "",
        "invariant_problems": len(sim.check_invariants()),
        "note": conf.get("note", ""),
        "ts": datetime.now().isoformat(timespec="seconds"),
    })
    return sim, meta


def _quick_qc(row: Dict[str, Any]) -> bool:
    """
    결과 요약 row에 대한 상식 선의 무결성 점검.

    - 정답 판별기가 아니라, 물리적으로 말이 안 되는 값을 빠르게 잡는 용도
    - 문제가 없으면 True, 경고가 있으면 False (strict 모드에서는 중단 트리거)
    """
    warn: List[str] = []
    g = row.get

    e = g("E")
    wc = g("write_cost")
    gcc = g("gc_cost")
    waf = g("waf")
    uw = g("user_writes")
    fb = g("free_blocks")
    mapped = g("mapped_lpids")
    tp = g("total_pages")
    umin = g("util_min")
    umax = g("util_max")
    bad = g("invariant_problems")

    if e is not None and not (0.0 <= e <= 1.0):
        warn.append(f"E={e} (0~1 범위 밖)")
    if wc is not None and (wc < 2.0 or wc == float("inf")):
        warn.append(f"write_cost={wc} (2 이상 유한값이어야 정상)")
    if gcc is not None and gcc < 0:
        warn.append(f"gc_cost={gcc} (<0)")
    if uw and waf is not None and waf < 1.0:
        warn.append(f"WAF={waf} (write가 있으면 >= 1.0)")
    if fb is not None and fb <= 0:
        warn.append(f"free_blocks={fb} (<=0)")
    if mapped is not None and tp is not None and mapped > tp:
        warn.append(f"mapped_lpids({mapped}) > total_pages({tp})")
    if umin is not None and umax is not None and not (0.0 <= umin <= umax <= 1.0):
        warn.append(f"util 범위 이상 (min={umin}, max={umax})")
    if bad:
        warn.append(f"invariant_problems={bad}")

    if warn:
        print("[QC] WARN:", " | ".join(warn))
        return False

    print("[QC] OK  :", f"policy={g('policy')} seed={g('seed')} write_cost={wc}")
    return True


def _print_multi_log(sim: GCSimulator) -> None:
    counters = getattr(sim.block_selector, "counters", None)
    if not callable(counters):
        return
    c = counters()
    print(f"[multi-log] lines={c['ml_lines']} user={c['ml_user_total']} "
          f"intended={c['ml_user_intended']} promoted={c['ml_user_promoted']} "
          f"gc={c['ml_gc_total']} demoted={c['ml_gc_demoted']}")


# ============================================================
# Main
# ============================================================

def main():
    ap = argparse.ArgumentParser(
        description="Log-structured store GC simulator runner: reproducible experiment entry point"
    )
    add_sim_args(ap)
    ap.add_argument("--out_dir", type=str, default="results/run", help="결과를 저장할 디렉토리")
    ap.add_argument("--out_csv", type=str, default=None, help="요약 CSV append 경로 (권장: summary.csv)")
    args = ap.parse_args()

    out_dir = args.out_dir
    os.makedirs(out_dir, exist_ok=True)
    out_csv_path = _resolve_path(args.out_csv, out_dir) if args.out_csv else None

    conf = vars(args).copy()
    sim, meta = simulate(conf)

    st = sim.stats
    print(f"[RUN DONE] policy={sim.policy_name} E={st.format_e()} "
          f"write_cost={st.format_write_cost()} gc_cost={st.format_gc_cost()}")
    _print_multi_log(sim)

    row = summary_row(sim, meta)
    if args.qc != "off":
        ok = _quick_qc(row)
        if args.qc == "strict" and not ok:
            raise SystemExit(2)

    if out_csv_path:
        append_summary_csv(out_csv_path, sim, meta)
        print(f"[RUN DONE] 결과 CSV append → {out_csv_path}")


if __name__ == "__main__":
    main()
