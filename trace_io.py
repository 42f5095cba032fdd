from __future__ import annotations

"""
trace_io.py

파일 단위 write/delete trace를 읽고 쓰고, 시뮬레이터에 재생하는 모듈입니다.

포맷
----
레코드 = op(1 byte) + 인자(varint)

    WRITE  (1): file, page
    DELETE (2): file

varint: 7 bit씩 little-endian 그룹, 상위 bit = 다음 바이트 있음, 최대 5 바이트(32 bit).

흐름
----
1) read_trace(path) 로 레코드 목록을 얻고
2) (oracle 정책이면) train_generator(records, num_lpids) 로 확률 테이블을 학습
3) FileMapper(num_lpids) 로 (file, page) -> lpid 를 배정하며 replay_trace(sim, records, mapper)

흔한 함정
---------
- trace의 (file, page)는 lpid가 아닙니다. FileMapper가 FIFO 큐에서 lpid를 빌려주고,
  DELETE 시 그 파일의 lpid를 모두 큐에 돌려준 뒤 sim.delete(lpid)로 무효화합니다.
- 학습(train_generator)도 같은 FileMapper 규칙으로 lpid를 배정해야
  재생 때와 같은 lpid에 확률이 붙습니다.
"""

from collections import deque
from typing import BinaryIO, Dict, Iterable, Iterator, List, NamedTuple, Optional

from workload import TrainedGenerator


WRITE = 1
DELETE = 2

_MAX_VINT_BYTES = 5


class TraceRecord(NamedTuple):
    op: int
    file: int
    page: int = 0


# ------------------------------------------------------------
# varint
# ------------------------------------------------------------

def write_vint(out: bytearray, value: int) -> None:
    """value(0 <= value < 2^32)를 varint로 out 뒤에 붙인다."""
    value = int(value)
    if not (0 <= value < (1 << 32)):
        raise ValueError(f"varint 범위 밖: {value}")
    while value >= 0x80:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)


def read_vint(data: bytes, pos: int) -> tuple:
    """
    data[pos:] 에서 varint 하나를 읽는다.

    Returns
    -------
    (value, next_pos)

    Raises
    ------
    ValueError: 입력이 중간에 끊겼거나 5 바이트를 넘음
    """
    value = 0
    shift = 0
    for i in range(_MAX_VINT_BYTES):
        if pos >= len(data):
            raise ValueError(f"varint가 중간에 끊겼습니다 (offset={pos})")
        b = data[pos]
        pos += 1
        if i == _MAX_VINT_BYTES - 1 and b & 0xF0:
            raise ValueError("varint가 32 bit를 넘습니다")
        value |= (b & 0x7F) << shift
        if not b & 0x80:
            return value, pos
        shift += 7
    raise ValueError("varint가 32 bit를 넘습니다")


# ------------------------------------------------------------
# 레코드 입출력
# ------------------------------------------------------------

def iter_trace(fileobj: BinaryIO) -> Iterator[TraceRecord]:
    """열린 바이너리 파일에서 레코드를 순서대로 읽는다."""
    data = fileobj.read()
    pos = 0
    n = len(data)
    while pos < n:
        op = data[pos]
        pos += 1
        if op == WRITE:
            file, pos = read_vint(data, pos)
            page, pos = read_vint(data, pos)
            yield TraceRecord(WRITE, file, page)
        elif op == DELETE:
            file, pos = read_vint(data, pos)
            yield TraceRecord(DELETE, file)
        else:
            raise ValueError(f"unknown trace op: {op} (offset={pos - 1})")


def read_trace(path: str) -> List[TraceRecord]:
    with open(path, "rb") as f:
        return list(iter_trace(f))


def encode_trace(records: Iterable) -> bytes:
    out = bytearray()
    for rec in records:
        op = int(rec[0])
        if op == WRITE:
            out.append(WRITE)
            write_vint(out, rec[1])
            write_vint(out, rec[2])
        elif op == DELETE:
            out.append(DELETE)
            write_vint(out, rec[1])
        else:
            raise ValueError(f"unknown trace op: {op}")
    return bytes(out)


def write_trace(path: str, records: Iterable) -> int:
    """레코드를 파일로 쓴다. 쓴 바이트 수를 반환."""
    data = encode_trace(records)
    with open(path, "wb") as f:
        f.write(data)
    return len(data)


# ------------------------------------------------------------
# file -> lpid
# ------------------------------------------------------------

class FileMapper:
    """
    (file, page) -> lpid 배정기.

    - lpid 1..num_lpids 를 FIFO 큐로 관리
    - 같은 (file, page)는 DELETE 전까지 같은 lpid
    - delete(file, sim): 파일의 lpid를 큐에 반납하고 sim.delete(lpid) 호출 (sim이 None이면 반납만)
    """

    def __init__(self, num_lpids: int):
        if num_lpids <= 0:
            raise ValueError("num_lpids 는 양수여야 합니다")
        self.num_lpids = int(num_lpids)
        self._free: deque = deque(range(1, self.num_lpids + 1))
        self._files: Dict[int, Dict[int, int]] = {}

    @property
    def used_lpids(self) -> int:
        return self.num_lpids - len(self._free)

    @property
    def num_files(self) -> int:
        return len(self._files)

    def write(self, file: int, page: int) -> int:
        pages = self._files.setdefault(file, {})
        lpid = pages.get(page)
        if lpid is None:
            if not self._free:
                raise RuntimeError(
                    f"lpid 풀 고갈: files={len(self._files)} used={self.used_lpids}/{self.num_lpids}"
                )
            lpid = self._free.popleft()
            pages[page] = lpid
        return lpid

    def delete(self, file: int, sim=None) -> int:
        """파일을 지우고 반납한 lpid 수를 반환. 모르는 파일이면 KeyError."""
        pages = self._files.pop(file, None)
        if pages is None:
            raise KeyError(f"unknown file: {file}")
        for lpid in pages.values():
            self._free.append(lpid)
            if sim is not None:
                sim.delete(lpid)
        return len(pages)


# ------------------------------------------------------------
# 학습 / 재생
# ------------------------------------------------------------

def train_generator(records: Iterable, num_lpids: int) -> TrainedGenerator:
    """재생과 같은 lpid 배정 규칙으로 write 빈도를 세어 확률 테이블을 만든다."""
    gen = TrainedGenerator(num_lpids)
    mapper = FileMapper(num_lpids)
    for rec in records:
        if rec[0] == WRITE:
            gen.add(mapper.write(rec[1], rec[2]))
        else:
            mapper.delete(rec[1])
    gen.compute()
    return gen


def replay_trace(
    sim,
    records: Iterable,
    mapper: FileMapper,
    warmup_lpids: int = 0,
    stop_lpids: Optional[int] = None,
    progress_every: int = 0,
) -> int:
    """
    레코드를 sim에 재생하고 처리한 레코드 수를 반환한다.

    - warmup_lpids > 0: 사용 중 lpid가 처음 그 값에 닿을 때 통계 창을 리셋
    - stop_lpids: 사용 중 lpid가 그 값 이상이 되면 중단
    - progress_every > 0: [TRACE] 진행 출력
    """
    warmed = warmup_lpids <= 0
    n = 0
    for rec in records:
        op = rec[0]
        if op == WRITE:
            sim.write(mapper.write(rec[1], rec[2]))
        elif op == DELETE:
            mapper.delete(rec[1], sim)
        else:
            raise ValueError(f"unknown trace op: {op}")
        n += 1

        used = mapper.used_lpids
        if not warmed and used >= warmup_lpids:
            sim.write_buffer.flush(sim)
            sim.stats.reset_window()
            warmed = True
        if progress_every > 0 and n % progress_every == 0:
            print(f"[TRACE] completed {n} ops. used lpids {used}/{mapper.num_lpids}")
        if stop_lpids is not None and used >= stop_lpids:
            break

    sim.write_buffer.flush(sim)
    return n
