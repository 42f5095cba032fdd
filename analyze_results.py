from __future__ import annotations

"""
analyze_results.py

GC 시뮬레이터의 실험 결과(summary.csv)를 수집/병합하고,
정책별 요약표와 기본 분석 플롯을 만드는 후처리(analysis) 엔트리포인트입니다.

이 스크립트의 목적
------------------
1) 결과 수집(Collection)
   - 여러 실험 폴더에 흩어진 summary.csv를 찾아 한 번에 병합합니다.
2) 출처 추적(Provenance)
   - 병합한 각 row에 "__source__" 컬럼을 추가합니다.
3) 요약(Summary)
   - 정책별 write cost / E / GC cost 의 중앙값과 사분위수(25%, 75%)
     seed가 여러 개일 때 한 번 튀는 run에 덜 흔들리도록 평균 대신 중앙값을 씁니다.
4) 빠른 검증 플롯
   - 정책별 write cost 분포, fill factor 대비 write cost, 정책별 E 분포

입력/출력 계약(Contract)
-----------------------
Input:
- base_dir 아래의 summary.csv (또는 --filename)
- 파일마다 컬럼이 달라도 outer-merge로 합칩니다.

Output (옵션):
- --out_csv: 병합된 전체 결과 CSV
- --summary_csv: 정책별 요약 CSV
- --plots_dir: 기본 플롯(PNG)

가정/주의
---------
- write_cost 는 E == 0 인 run에서 inf 입니다. 요약/플롯에서는 NaN 으로 바꿔 제외합니다.
- fill_factor 같은 float 비교는 저장 방식에 따라 미세 오차가 있으므로 np.isclose 로 비교합니다.
- matplotlib은 헤드리스 환경에서도 저장되도록 Agg 백엔드를 사용합니다.
"""

import os
import sys
import argparse
import glob
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

# 디스플레이 없는 서버/CI에서도 PNG 저장
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt


NUMERIC_COLS = [
    "E", "write_cost", "gc_cost", "waf",
    "user_writes", "moved_pages", "moved_blocks", "gc_passes", "deleted_pages",
    "free_blocks", "num_lines", "mapped_lpids",
    "fill_factor", "num_blocks", "pages_per_block", "gc_free_block_threshold",
    "batch_blocks", "zipf_exp", "hot_skew", "ops", "seed",
    "util_avg", "util_std",
]

SUMMARY_METRICS = ("write_cost", "E", "gc_cost")


# ------------------------------------------------------------
# 1) 결과 파일 수집 / 로딩
# ------------------------------------------------------------

def _find_summary_csvs(base_dir: str, merge_subdirs: bool, filename: str = "summary.csv") -> List[str]:
    """
    base_dir에서 summary.csv(또는 filename) 경로를 수집합니다.

    - merge_subdirs=True 면 하위 폴더까지 재귀 탐색(**/filename)
    - 없으면 빈 리스트, base_dir 자체가 없으면 FileNotFoundError
    """
    root = os.path.abspath(base_dir)
    if not os.path.isdir(root):
        raise FileNotFoundError(f"[analyze_results] base 디렉토리 없음: {root}")

    pattern = os.path.join(root, "**", filename) if merge_subdirs else os.path.join(root, filename)
    return sorted(glob.glob(pattern, recursive=merge_subdirs))


def _read_csvs(paths: List[str]) -> pd.DataFrame:
    """
    여러 summary.csv를 읽어 하나의 DataFrame으로 병합합니다.

    - 컬럼 union으로 reindex 후 concat (outer-merge)
    - 각 행에 "__source__" 추가
    - 읽기 실패 파일은 [WARN] 후 스킵, 전부 실패하면 RuntimeError
    """
    frames = []
    for p in paths:
        try:
            df = pd.read_csv(p)
        except (OSError, ValueError) as e:
            print(f"[WARN] CSV 읽기 실패: {p}: {e}", file=sys.stderr)
            continue
        df["__source__"] = p
        frames.append(df)

    if not frames:
        raise RuntimeError("[analyze_results] 읽을 수 있는 summary CSV가 없습니다.")

    all_cols = sorted(set().union(*[set(f.columns) for f in frames]))
    frames = [f.reindex(columns=all_cols) for f in frames]
    return pd.concat(frames, ignore_index=True)


# ------------------------------------------------------------
# 2) 데이터 안전 처리 / 필터
# ------------------------------------------------------------

def _ensure_out_dir(file_path: str) -> None:
    os.makedirs(os.path.dirname(file_path) or ".", exist_ok=True)


def _to_num(s: pd.Series) -> pd.Series:
    """숫자 변환 불가 값은 NaN ("inf" 문자열은 inf)."""
    return pd.to_numeric(s, errors="coerce")


def _finite(s: pd.Series) -> pd.Series:
    return _to_num(s).replace([np.inf, -np.inf], np.nan).dropna()


def _coerce_numeric_cols(df: pd.DataFrame, cols: Sequence[str]) -> pd.DataFrame:
    """df에 존재하는 숫자 후보 컬럼을 숫자형으로 강제 변환한 사본."""
    out = df.copy()
    for c in cols:
        if c in out.columns:
            out[c] = _to_num(out[c])
    return out


def apply_filters(
    df: pd.DataFrame,
    policy: Optional[str] = None,
    fill_factor: Optional[float] = None,
    workload: Optional[str] = None,
    min_write_cost: Optional[float] = None,
    max_write_cost: Optional[float] = None,
) -> pd.DataFrame:
    """
    결과 탐색용 필터. 해당 컬럼이 없으면 그 조건은 건너뜁니다.

    Returns
    -------
    필터 적용 후 사본(원본 유지)
    """
    out = df.copy()

    if policy is not None and "policy" in out.columns:
        out = out[out["policy"] == policy]

    if fill_factor is not None and "fill_factor" in out.columns:
        out = out[np.isclose(_to_num(out["fill_factor"]), float(fill_factor))]

    if workload is not None and "workload" in out.columns:
        out = out[out["workload"] == workload]

    if min_write_cost is not None and "write_cost" in out.columns:
        out = out[_to_num(out["write_cost"]) >= float(min_write_cost)]

    if max_write_cost is not None and "write_cost" in out.columns:
        out = out[_to_num(out["write_cost"]) <= float(max_write_cost)]

    return out


# ------------------------------------------------------------
# 3) 정책별 요약
# ------------------------------------------------------------

def summarize_by_policy(df: pd.DataFrame, by: Sequence[str] = ("policy",)) -> pd.DataFrame:
    """
    그룹(기본: policy)별 run 수와 write_cost / E / gc_cost 의 중앙값, 25%, 75%.

    반환 컬럼: <by...>, runs, write_cost_med, write_cost_p25, write_cost_p75, E_med, ...
    inf 는 NaN으로 바꿔 제외합니다.
    """
    keys = [c for c in by if c in df.columns]
    if not keys:
        raise ValueError(f"그룹 컬럼이 없습니다: {list(by)}")

    metrics = [m for m in SUMMARY_METRICS if m in df.columns]
    tmp = _coerce_numeric_cols(df, metrics)
    if metrics:
        tmp[metrics] = tmp[metrics].replace([np.inf, -np.inf], np.nan)

    g = tmp.groupby(keys)
    out = g.size().rename("runs").to_frame()
    for m in metrics:
        out[f"{m}_med"] = g[m].median()
        out[f"{m}_p25"] = g[m].quantile(0.25)
        out[f"{m}_p75"] = g[m].quantile(0.75)
    return out.reset_index()


# ------------------------------------------------------------
# 4) 플롯 생성
# ------------------------------------------------------------

def _box_by_policy(df: pd.DataFrame, col: str, title: str, out_path: str) -> bool:
    _ensure_out_dir(out_path)
    if not {"policy", col}.issubset(df.columns):
        print(f"[plot] skip: missing columns(policy, {col})")
        return False

    order = sorted(df["policy"].dropna().unique())
    data = [_finite(df.loc[df["policy"] == p, col]) for p in order]
    if not any(len(d) for d in data):
        print(f"[plot] skip: no finite {col}")
        return False

    plt.figure()
    plt.boxplot(data, showmeans=True)
    plt.xticks(range(1, len(order) + 1), order, rotation=30, ha="right")
    plt.title(title)
    plt.ylabel(col)
    plt.grid(True, linestyle=":", alpha=0.5)
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()
    return True


def plot_write_cost_by_policy(df: pd.DataFrame, out_path: str) -> bool:
    """정책별 write cost 분포(박스플롯). seed 반복의 퍼짐을 함께 봅니다."""
    return _box_by_policy(df, "write_cost", "Write Cost by Policy", out_path)


def plot_e_by_policy(df: pd.DataFrame, out_path: str) -> bool:
    return _box_by_policy(df, "E", "E by Policy", out_path)


def plot_write_cost_vs_fill(df: pd.DataFrame, out_path: str) -> bool:
    """
    fill factor 대비 write cost (정책별 선, 같은 fill factor의 seed들은 중앙값).

    fill factor가 올라갈수록 회수할 garbage가 줄어 write cost가 가파르게 오르는지 확인합니다.
    """
    _ensure_out_dir(out_path)
    if not {"policy", "fill_factor", "write_cost"}.issubset(df.columns):
        print("[plot] skip: missing columns(policy, fill_factor, write_cost)")
        return False

    tmp = _coerce_numeric_cols(df, ["fill_factor", "write_cost"])
    tmp["write_cost"] = tmp["write_cost"].replace([np.inf, -np.inf], np.nan)
    tmp = tmp.dropna(subset=["fill_factor", "write_cost"])
    if tmp.empty:
        print("[plot] skip: no finite write_cost")
        return False

    plt.figure()
    for pol, grp in tmp.groupby("policy"):
        med = grp.groupby("fill_factor")["write_cost"].median().sort_index()
        plt.plot(med.index, med.values, marker="o", label=str(pol))
    plt.xlabel("fill_factor")
    plt.ylabel("write_cost")
    plt.title("Write Cost vs Fill Factor")
    plt.legend(fontsize="small")
    plt.grid(True, linestyle=":", alpha=0.5)
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()
    return True


# ------------------------------------------------------------
# 5) 엔트리포인트
# ------------------------------------------------------------

def main() -> None:
    """
    Flow
    ----
    1) summary.csv 수집 → 2) 병합 → 3) 숫자 변환 → 4) 필터
    5) (옵션) 병합 CSV / 요약 CSV 저장 → 6) (옵션) 플롯 → 7) 콘솔 요약
    """
    ap = argparse.ArgumentParser(description="Analyze GC results (merge/summary/plots)")
    ap.add_argument("--base", type=str, required=True, help="기준 디렉토리")
    ap.add_argument("--merge-subdirs", action="store_true", help="하위 폴더의 summary.csv까지 병합")
    ap.add_argument("--filename", type=str, default="summary.csv", help="요약 파일명(기본 summary.csv)")
    ap.add_argument("--out_csv", type=str, default=None, help="병합 결과 CSV 저장 경로")
    ap.add_argument("--summary_csv", type=str, default=None, help="정책별 요약 CSV 저장 경로")
    ap.add_argument("--by", type=str, default="policy", help="요약 그룹 컬럼(콤마 구분, 예: policy,fill_factor)")
    ap.add_argument("--plots_dir", type=str, default=None, help="플롯 저장 디렉토리")

    ap.add_argument("--policy", type=str, default=None, help="특정 policy만 보기")
    ap.add_argument("--fill_factor", type=float, default=None, help="특정 fill factor만 보기")
    ap.add_argument("--workload", type=str, default=None, help="특정 workload만 보기")
    ap.add_argument("--min_write_cost", type=float, default=None)
    ap.add_argument("--max_write_cost", type=float, default=None)

    args = ap.parse_args()

    csvs = _find_summary_csvs(args.base, args.merge_subdirs, filename=args.filename)
    if not csvs:
        print("[analyze_results] 합칠 CSV가 없습니다.")
        return

    df = _coerce_numeric_cols(_read_csvs(csvs), NUMERIC_COLS)
    df_view = apply_filters(
        df,
        policy=args.policy,
        fill_factor=args.fill_factor,
        workload=args.workload,
        min_write_cost=args.min_write_cost,
        max_write_cost=args.max_write_cost,
    )

    print(f"[analyze_results] rows: view={len(df_view)} / total={len(df)}")
    if len(df_view) == 0:
        print("[analyze_results] (WARN) 필터 결과가 비었습니다. 조건을 완화해보세요.")
        return

    if args.out_csv:
        _ensure_out_dir(args.out_csv)
        df.to_csv(args.out_csv, index=False)
        print(f"[analyze_results] merged CSV saved: {args.out_csv}  (rows={len(df)})")

    summary = summarize_by_policy(df_view, by=[c.strip() for c in args.by.split(",") if c.strip()])
    if args.summary_csv:
        _ensure_out_dir(args.summary_csv)
        summary.to_csv(args.summary_csv, index=False)
        print(f"[analyze_results] summary CSV saved: {args.summary_csv}")

    if args.plots_dir:
        os.makedirs(args.plots_dir, exist_ok=True)
        plot_write_cost_by_policy(df_view, os.path.join(args.plots_dir, "write_cost_by_policy.png"))
        plot_e_by_policy(df_view, os.path.join(args.plots_dir, "e_by_policy.png"))
        plot_write_cost_vs_fill(df_view, os.path.join(args.plots_dir, "write_cost_vs_fill.png"))
        print(f"[analyze_results] plots saved to: {args.plots_dir}")

    print(summary.to_string(index=False))


if __name__ == "__main__":
    main()
