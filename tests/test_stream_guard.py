"""stream_guard のテスト。逐次投入での打ち切りとオフセットを検証する。"""

import pytest

from services.repetition_detector import NO_MATCH, RULE_CJK, RULE_GENERIC, detect
from services.stream_guard import RepetitionStream, guard_stream

# 重複しない漢字 150 文字（反復を含まない前置き）
PREFIX = "".join(chr(0x4E00 + i * 7) for i in range(150))


def chunked(text, size):
    return [text[i : i + size] for i in range(0, len(text), size)]


class TestRepetitionStream:
    def test_trips_as_soon_as_threshold_crossed(self):
        stream = RepetitionStream()
        results = [stream.feed(ch) for ch in "旺柴" * 13]

        first = next(i for i, r in enumerate(results) if r)
        assert first == 11  # 12 文字目（旺柴 × 6）で検出
        assert stream.result.rule == RULE_CJK
        assert stream.result.unit == "旺柴"
        assert stream.result.count == 6
        assert stream.text == "旺柴" * 6  # 検出後は追加しない

    def test_offsets_are_relative_to_whole_buffer(self):
        stream = RepetitionStream()
        for chunk in chunked(PREFIX, 10) + chunked("旺柴" * 8, 3):
            stream.feed(chunk)

        assert stream.tripped
        assert stream.result.rule == RULE_CJK
        assert stream.result.start == len(PREFIX)
        assert stream.result.count >= 6
        assert stream.truncated_text == PREFIX + "旺柴"

    def test_normal_text_never_trips(self):
        stream = RepetitionStream()
        for chunk in chunked(PREFIX, 7):
            assert stream.feed(chunk) == NO_MATCH
        assert stream.text == PREFIX
        assert stream.truncated_text == PREFIX

    @pytest.mark.parametrize(
        "text",
        [
            "WangChai is great! WangChai is great! WangChai is great! WangChai is great!",
            "关于旺柴的信息，关于旺柴的信息，关于旺柴的信息，关于旺柴的信息",
            '{"text": "旺柴", "text": "旺柴", "text": "旺柴", "text": "旺柴"}',
        ],
    )
    def test_same_loop_as_whole_text(self, text):
        stream = RepetitionStream()
        for chunk in chunked(text, 7):
            stream.feed(chunk)
        stream.finish()

        expected = detect(text)
        assert stream.result.rule == RULE_GENERIC
        assert stream.result.unit == expected.unit
        assert stream.result.start == expected.start

    def test_word_continuing_after_fourth_does_not_trip(self):
        """4 回目が語の途中かどうかは次のチャンクを見るまで決めない"""
        stream = RepetitionStream()
        assert stream.feed("hello, hello, hello, hello") == NO_MATCH
        assert stream.feed("world") == NO_MATCH
        assert stream.finish() == NO_MATCH

    def test_fourth_confirmed_by_next_chunk(self):
        stream = RepetitionStream()
        assert stream.feed("hello, hello, hello, hello") == NO_MATCH
        result = stream.feed(".")
        assert result.rule == RULE_GENERIC
        assert result.count == 4

    def test_finish_confirms_fourth_at_end_of_stream(self):
        stream = RepetitionStream()
        stream.feed("Intro: hello, hello, hello, hello")
        result = stream.finish()
        assert result.rule == RULE_GENERIC
        assert result.start == len("Intro: ")
        assert stream.finish() is result

    def test_earlier_loop_wins_over_whole_text_priority(self):
        """逐次検査では先に閾値を越えた汎用ループで止まり、全文なら CJK が優先される"""
        text = "abcde" * 4 + "旺" * 6
        stream = RepetitionStream()
        for ch in text:
            stream.feed(ch)

        assert stream.result.rule == RULE_GENERIC
        assert stream.result.unit == "abcde"
        assert stream.text == "abcde" * 4
        whole = detect(text)
        assert whole.rule == RULE_CJK
        assert whole.unit == "旺"

    def test_notifier_called_once(self):
        messages = []
        stream = RepetitionStream(notifier=messages.append)
        for chunk in chunked("旺柴" * 20, 4):
            stream.feed(chunk)

        assert len(messages) == 1
        assert "旺柴" in messages[0]

    def test_ignores_empty_and_non_string_chunks(self):
        stream = RepetitionStream()
        assert stream.feed("") == NO_MATCH
        assert stream.feed(None) == NO_MATCH
        assert stream.text == ""

    def test_reset_clears_state(self):
        stream = RepetitionStream()
        stream.feed("旺" * 6)
        assert stream.tripped

        stream.reset()
        assert not stream.tripped
        assert stream.text == ""
        assert stream.feed("什么是NYLA Go?") == NO_MATCH

    def test_window_too_small_raises(self):
        with pytest.raises(ValueError):
            RepetitionStream(window=40)

    def test_larger_window_allowed(self):
        assert RepetitionStream(window=200).window == 200


class TestGuardStream:
    def test_passes_normal_chunks_through(self):
        chunks = chunked(PREFIX, 9)
        assert list(guard_stream(chunks)) == chunks

    def test_cuts_inside_tripping_chunk(self):
        chunks = ["abc ", "旺柴" * 6 + "tail", "more"]
        assert "".join(guard_stream(chunks)) == "abc 旺柴"

    def test_stops_consuming_source(self):
        consumed = []

        def source():
            for chunk in ["旺柴是一个", "很好的项目。", "旺柴旺柴旺柴", "旺柴旺柴旺柴", "旺柴旺柴", "never"]:
                consumed.append(chunk)
                yield chunk

        out = list(guard_stream(source()))

        # 既に流したチャンクは取り消せないので、検出チャンク以降を止める
        assert "".join(out) == "旺柴是一个很好的项目。旺柴旺柴旺柴"
        assert consumed == ["旺柴是一个", "很好的项目。", "旺柴旺柴旺柴", "旺柴旺柴旺柴"]

    def test_notifier_forwarded(self):
        messages = []
        list(guard_stream(["旺" * 10], notifier=messages.append))
        assert len(messages) == 1
