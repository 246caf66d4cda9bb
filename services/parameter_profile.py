"""中国語生成向けの推奨サンプリングパラメータ。

外部の生成サービスへそのまま渡す設定値。ここでは範囲チェックをしない。
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from typing import Mapping


@dataclass(frozen=True)
class ParameterProfile:
    temperature: float = 0.3
    max_tokens: int = 600
    top_p: float = 0.8
    top_k: int = 40
    repetition_penalty: float = 1.15  # ループ抑止の要
    frequency_penalty: float = 0.3
    presence_penalty: float = 0.1

    def as_options(self) -> dict[str, float | int]:
        return asdict(self)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, prefix: str = "LLM_"
    ) -> "ParameterProfile":
        """LLM_TEMPERATURE, LLM_TOP_K などで既定値を上書きする。

        未設定・空文字は既定値のまま。数値にできない値は ValueError。
        """
        env = os.environ if environ is None else environ
        base = cls()
        overrides = {}
        for f in fields(cls):
            name = f"{prefix}{f.name.upper()}"
            raw = (env.get(name) or "").strip()
            if not raw:
                continue
            cast = int if isinstance(getattr(base, f.name), int) else float
            try:
                overrides[f.name] = cast(raw)
            except ValueError:
                raise ValueError(f"{name} の値が不正です: {raw!r}") from None
        return cls(**{**asdict(base), **overrides})


CHINESE_PROFILE = ParameterProfile()
