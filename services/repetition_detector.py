"""反復ループ検出器。LLM 応答の退化生成（同一部分文字列の連続反復）を検出する。

2種類の正規表現で判定:
  CJK)   漢字 1〜10 文字の単位が 6 回以上連続
  汎用)  任意 5〜20 文字の単位が 4 回以上連続

漢字は1文字あたりの情報量が多く、単語単位の窓（5〜20文字）では「旺柴旺柴…」のような
1〜2文字ループを取りこぼすため、CJK 専用の短い窓を別に持つ。
"""

from __future__ import annotations

import re
from dataclasses import dataclass

RULE_GENERIC = "generic"
RULE_CJK = "cjk"

# --- 設定値 ---
_GENERIC_MIN_UNIT = 5
_GENERIC_MAX_UNIT = 20
_GENERIC_REPEATS = 4  # 汎用: 先頭 + 3 回
_CJK_MIN_UNIT = 1
_CJK_MAX_UNIT = 10
_CJK_REPEATS = 6  # CJK: 先頭 + 5 回

# ストリーム検査で最低限保持すべき末尾の長さ（最大の最小ループが収まる長さ）
MAX_PATTERN_SPAN = max(_GENERIC_MAX_UNIT * _GENERIC_REPEATS, _CJK_MAX_UNIT * _CJK_REPEATS)

# 単位は非貪欲: 同じ開始位置なら最短の単位を報告する（判定結果自体は貪欲版と同じ）
_RE_CJK = re.compile(
    r"([\u4e00-\u9fff]{%d,%d}?)\1{%d,}" % (_CJK_MIN_UNIT, _CJK_MAX_UNIT, _CJK_REPEATS - 1)
)
_RE_GENERIC = re.compile(
    r"(.{%d,%d}?)\1{%d,}" % (_GENERIC_MIN_UNIT, _GENERIC_MAX_UNIT, _GENERIC_REPEATS - 1)
)
# 最終回だけ区切りが欠けるケース用。全開始位置で「3 回連続」の候補を拾う
_RE_GENERIC_HEAD = re.compile(
    r"(?=((.{%d,%d}?)\2{%d,}))" % (_GENERIC_MIN_UNIT, _GENERIC_MAX_UNIT, _GENERIC_REPEATS - 2)
)
_RE_TRAILING_SEPARATOR = re.compile(r"[\W_]+\Z")
_RE_WORD_CHAR = re.compile(r"[^\W_]")
_RE_CJK_CHAR = re.compile(r"[\u4e00-\u9fff]")

# --- collapse_repetition \u7528\uff08\u691c\u51fa\u30eb\u30fc\u30eb\u3068\u306f\u5225\u306e\u4fee\u5fa9\u7528\u30d1\u30bf\u30fc\u30f3\uff09 ---
_RE_COLLAPSE_SHORT = re.compile(r"(.{1,20})\1{3,}")
_RE_COLLAPSE_PHRASE = re.compile(r"(.{10,50})\1{2,}")
_RE_COLLAPSE_CJK = re.compile(r"([\u4e00-\u9fff]{1,10})\1{5,}")
_RE_FIRST_SENTENCE = re.compile(r"[^.!?]*[.!?]")
_BRAKE_MIN_LENGTH = 100
_BRAKE_UNIQUE_RATIO = 0.2
_BRAKE_KEEP_CHARS = 200


@dataclass(frozen=True)
class DetectionResult:
    rule: str | None = None
    unit: str | None = None
    count: int = 0
    start: int = 0
    end: int = 0

    @property
    def matched(self) -> bool:
        return self.rule is not None

    def __bool__(self) -> bool:
        return self.matched


NO_MATCH = DetectionResult()


def detect(text: str, *, at_end: bool = True) -> DetectionResult:
    """テキスト中の反復ループを検出する。

    CJK ルールを先に評価し、両方に該当する場合は単位の細かい CJK 側を返す。
    文字列以外（None 含む）は例外にせず NO_MATCH を返す。
    at_end=False は末尾がまだ続く可能性のあるバッファ（ストリーム途中）用で、
    区切りを落とした 4 回目が末尾で終わる場合は判定を保留する。
    """
    if not isinstance(text, str) or not text:
        return NO_MATCH

    m = _RE_CJK.search(text)
    if m:
        unit = m.group(1)
        return DetectionResult(RULE_CJK, unit, len(m.group(0)) // len(unit), m.start(), m.end())

    return _detect_generic(text, at_end)


def _detect_generic(text: str, at_end: bool = True) -> DetectionResult:
    found = NO_MATCH
    m = _RE_GENERIC.search(text)
    if m:
        unit = m.group(1)
        found = DetectionResult(
            RULE_GENERIC, unit, len(m.group(0)) // len(unit), m.start(), m.end()
        )

    # 列挙の最後は区切り（", " や "! " など）を伴わないので、
    # 3 回連続の直後に区切りを落とした単位が続けば 4 回目として数える
    for head in _RE_GENERIC_HEAD.finditer(text):
        if found and head.start() >= found.start:
            break
        run, unit = head.group(1), head.group(2)
        core = _RE_TRAILING_SEPARATOR.sub("", unit)
        if not core or core == unit:
            continue
        run_end = head.start() + len(run)
        if not text.startswith(core, run_end):
            continue
        # 4 回目は語の途中で終わってはいけない（"hello, " ×3 + "helloworld" は対象外）
        after = run_end + len(core)
        if after == len(text):
            if not at_end:
                continue
        elif _RE_WORD_CHAR.match(text, after):
            continue
        return DetectionResult(
            RULE_GENERIC, unit, len(run) // len(unit) + 1, head.start(), after
        )

    return found


def is_repetitive(text: str) -> bool:
    return bool(detect(text))


def truncate_at_repetition(text: str, result: DetectionResult | None = None) -> str:
    """ループ部分を切り落とし、反復単位の最初の1回までを残す。

    検出なしならそのまま返す。
    """
    if not isinstance(text, str):
        return text
    if result is None:
        result = detect(text)
    if not result:
        return text
    return text[: result.start + len(result.unit)]


def collapse_repetition(text: str) -> str:
    """各ループを最初の1回に畳み、前後の本文は残す。

    順に適用:
      1) 1〜20 文字 × 4 回以上
      2) 10〜50 文字のフレーズ × 3 回以上
      3) 漢字 1〜10 文字 × 6 回以上
      4) 緊急ブレーキ: 100 文字超で文字種が 2 割未満なら最初の1文（無ければ先頭 200 文字）だけ残す
    """
    if not isinstance(text, str) or not text:
        return text

    for pattern in (_RE_COLLAPSE_SHORT, _RE_COLLAPSE_PHRASE, _RE_COLLAPSE_CJK):
        text = pattern.sub(r"\1", text)

    if len(text) > _BRAKE_MIN_LENGTH and len(set(text)) / len(text) < _BRAKE_UNIQUE_RATIO:
        sentence = _RE_FIRST_SENTENCE.search(text)
        if sentence:
            return sentence.group(0)
        return text[:_BRAKE_KEEP_CHARS] + "..."
    return text


def count_cjk_chars(text: str) -> int:
    """U+4E00〜U+9FFF の文字数"""
    if not isinstance(text, str):
        return 0
    return len(_RE_CJK_CHAR.findall(text))
