#!/usr/bin/env python3
"""中国語 LLM 応答の反復ループ診断レポート。サンプル応答を検査し推奨パラメータを表示する。"""

import os, pathlib
from typing import Callable

import yaml
from dotenv import load_dotenv
from services.parameter_profile import ParameterProfile
from services.repetition_detector import (
    DetectionResult,
    collapse_repetition,
    count_cjk_chars,
    detect,
)

# ---------- 設定 ----------
# .env.local を優先的に読む（存在しない場合のみデフォルトの .env を読む）
env_path = pathlib.Path(".env.local")
load_dotenv(dotenv_path=env_path if env_path.exists() else None)
SAMPLES_PATH = pathlib.Path(os.getenv("SAMPLES_PATH", "samples.yaml"))
PREVIEW_CHARS = int(os.getenv("PREVIEW_CHARS", "80"))  # 応答プレビューの最大文字数

# samples.yaml が無い・壊れている場合の既定サンプル
DEFAULT_QUERIES = (
    "跟我聊聊旺柴",  # 元々ループを起こしたクエリ
    "什么是NYLA Go?",
    "如何发送加密货币?",
    "旺柴的社区在哪里?",
    "中文加密货币项目有哪些?",
    "我可以用NYLA转账吗?",
    "区块链和加密货币的区别是什么?",
)
DEFAULT_RESPONSES = (
    "旺柴是一个很好的项目。旺柴旺柴旺柴旺柴旺柴旺柴旺柴旺柴旺柴旺柴旺柴旺柴旺柴",
    "WangChai is great! WangChai is great! WangChai is great! WangChai is great!",
    "关于旺柴的信息，关于旺柴的信息，关于旺柴的信息，关于旺柴的信息",
    "Visit https://x.com/WangChaidotbonk https://x.com/WangChaidotbonk https://x.com/WangChaidotbonk",
    '{"text": "旺柴", "text": "旺柴", "text": "旺柴", "text": "旺柴"}',
)


# ========== サンプル読み込み ==========
def _clean(items, default) -> list[str]:
    if not isinstance(items, list):
        return list(default)
    return [s.strip() for s in items if isinstance(s, str) and s.strip()]


def load_samples(path: pathlib.Path | None = None) -> tuple[list[str], list[str]]:
    """(queries, responses) を返す。キー欠落や型違いは既定サンプルで補う"""
    path = path or SAMPLES_PATH
    if not path.exists():
        return list(DEFAULT_QUERIES), list(DEFAULT_RESPONSES)

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        print(f"   - {path} を読めないため既定サンプルを使用: {e}")
        raw = {}
    if not isinstance(raw, dict):
        print(f"   - {path} の形式が想定外のため既定サンプルを使用")
        raw = {}
    return (
        _clean(raw.get("queries"), DEFAULT_QUERIES),
        _clean(raw.get("responses"), DEFAULT_RESPONSES),
    )


# ========== 表示 ==========
def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def format_verdict(result: DetectionResult) -> str:
    if not result:
        return "❌ NO"
    return f"✅ YES ({result.rule}: {result.unit!r} ×{result.count})"


def report(out: Callable[[str], None] = print) -> int:
    """レポートを出力し、検出できた応答パターン数を返す"""
    profile = ParameterProfile.from_env()
    queries, responses = load_samples()

    out("=== Chinese LLM Query Safety Test ===")
    out("")
    out("✅ Recommended LLM Parameters for Chinese Text:")
    for key, value in profile.as_options().items():
        out(f"   {key}: {value}")

    out("")
    out("🚨 Testing Problematic Response Patterns:")
    detected = 0
    for i, response in enumerate(responses, 1):
        result = detect(response)
        detected += bool(result)
        out(f"\nPattern {i}:")
        out(f"Original: {preview(response)}")
        out(f"Would be detected: {format_verdict(result)}")
        if result:
            out(f"Collapsed: {preview(collapse_repetition(response))}")

    out("\n📋 Chinese Query Test Cases:")
    for i, query in enumerate(queries, 1):
        out(f'{i}. "{query}"')
        out(f"   Length: {len(query)} chars")
        out(f"   Chinese chars: {count_cjk_chars(query)}")

    # 既知の検出漏れ: 20 文字超の単位（URL など）や 3 回以下の反復は閾値未満
    out("\n⚠ Known gap: units longer than 20 chars (e.g. repeated URLs) are not flagged")
    out(f"\n=== {detected}/{len(responses)} patterns detected ===")
    return detected


if __name__ == "__main__":
    report()
