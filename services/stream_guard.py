"""生成ストリーム用の反復ガード。チャンクを受け取るたびに末尾だけを再検査する。

全文を毎回検査せず、直前の末尾 window 文字 + 新チャンクのみを detect() に渡す。
window は最大の最小ループ（汎用 20×4 / CJK 10×6）が収まる長さ以上が必要。
"""

from __future__ import annotations

from dataclasses import replace
from typing import Callable, Iterable, Iterator

from services.repetition_detector import (
    MAX_PATTERN_SPAN,
    NO_MATCH,
    DetectionResult,
    detect,
    truncate_at_repetition,
)

DEFAULT_WINDOW = MAX_PATTERN_SPAN


class RepetitionStream:
    def __init__(
        self,
        window: int = DEFAULT_WINDOW,
        *,
        notifier: Callable[[str], None] | None = None,
    ) -> None:
        if window < MAX_PATTERN_SPAN:
            raise ValueError(f"window は {MAX_PATTERN_SPAN} 文字以上が必要です: {window}")
        self.window = window
        self._notify = notifier or (lambda _msg: None)
        self.reset()

    def reset(self) -> None:
        self._chunks: list[str] = []
        self._length = 0
        self._tail = ""
        self.result: DetectionResult = NO_MATCH

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    @property
    def tripped(self) -> bool:
        return self.result.matched

    @property
    def truncated_text(self) -> str:
        return truncate_at_repetition(self.text, self.result)

    def feed(self, chunk: str) -> DetectionResult:
        """チャンクを追加して検査する。

        一度検出したら以降は追加せず同じ結果を返す（生成の打ち切りは呼び出し側の責務）。
        オフセットはバッファ全体基準。区切りを落とした 4 回目がバッファ末尾で終わる場合は
        次のチャンク（語が続くかどうか）か finish() まで判定を保留する。
        """
        if self.result or not isinstance(chunk, str) or not chunk:
            return self.result

        offset = self._length - len(self._tail)
        self._chunks.append(chunk)
        self._length += len(chunk)
        scan = self._tail + chunk
        self._tail = scan[-self.window :]
        return self._check(scan, offset, at_end=False)

    def finish(self) -> DetectionResult:
        """ストリーム終端として末尾を再検査する"""
        if self.result:
            return self.result
        return self._check(self._tail, self._length - len(self._tail), at_end=True)

    def _check(self, scan: str, offset: int, *, at_end: bool) -> DetectionResult:
        found = detect(scan, at_end=at_end)
        if found:
            self.result = replace(found, start=found.start + offset, end=found.end + offset)
            self._notify(
                f"反復ループを検出 ({found.rule}): {found.unit!r} ×{found.count} @ {self.result.start}"
            )
        return self.result


def guard_stream(
    chunks: Iterable[str],
    *,
    window: int = DEFAULT_WINDOW,
    notifier: Callable[[str], None] | None = None,
) -> Iterator[str]:
    """チャンク列をそのまま流し、ループ検出時点で打ち切るジェネレータ。

    検出したチャンクは反復単位の最初の1回の終わりまでだけ流し、以降は元のイテレータを消費しない。
    """
    stream = RepetitionStream(window, notifier=notifier)
    emitted = 0
    for chunk in chunks:
        if not isinstance(chunk, str) or not chunk:
            continue
        result = stream.feed(chunk)
        if result:
            cut = result.start + len(result.unit)
            if cut > emitted:
                yield stream.text[emitted:cut]
            return
        emitted += len(chunk)
        yield chunk
