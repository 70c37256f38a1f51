from processing.slot_parser import (
    BracketColonStrategy,
    FallbackContextStrategy,
    SlotParser,
    extract,
)


def test_bracket_colon_lines():
    parser = SlotParser()
    slots = parser.extract("[DIALOGUE_A]: 你好。\n[INTERNAL_B]: 他心里一沉。")
    assert slots == {"DIALOGUE_A": "你好。", "INTERNAL_B": "他心里一沉。"}
    assert parser.last_strategy == "bracket-colon"


def test_bracket_colon_strips_quotes():
    slots = extract('[DIALOGUE_A]: "你来了。"')
    assert slots == {"DIALOGUE_A": "你来了。"}


def test_multiline_blocks():
    parser = SlotParser()
    slots = parser.extract("[DIALOGUE_A]\n“你好。”\n\n[ACTION_B]\n他拔出剑。")
    assert parser.last_strategy == "multiline-block"
    assert slots["ACTION_B"] == "他拔出剑。"
    assert "你好" in slots["DIALOGUE_A"]


def test_embedded_json_without_brackets():
    parser = SlotParser()
    slots = parser.extract('好的，结果如下：{"DIALOGUE_A": "站住！", "ACTION_B": "他转身就跑。"}')
    assert slots == {"DIALOGUE_A": "站住！", "ACTION_B": "他转身就跑。"}
    assert parser.last_strategy == "embedded-json"


def test_markdown_bold_headings():
    parser = SlotParser()
    slots = parser.extract("**[DIALOGUE_A]**\n你好。\n**[ACTION_B]**\n他拔出剑。")
    assert slots == {"DIALOGUE_A": "你好。", "ACTION_B": "他拔出剑。"}
    assert parser.last_strategy == "markdown-heading"


def test_markdown_plain_heading():
    slots = SlotParser().extract("### DESCRIPTION_ROOM\n屋里一片昏暗。")
    assert slots == {"DESCRIPTION_ROOM": "屋里一片昏暗。"}


def test_numbered_list():
    parser = SlotParser()
    slots = parser.extract("1. [DIALOGUE_A] 你好。\n2. [ACTION_B] 拔剑。")
    assert slots == {"DIALOGUE_A": "你好。", "ACTION_B": "拔剑。"}
    assert parser.last_strategy == "numbered-list"


def test_fallback_context_takes_following_prose():
    text = "他推开门[DESCRIPTION_ROOM] 屋里一片昏暗，只有一盏油灯摇曳着微弱的光。"
    parser = SlotParser((FallbackContextStrategy(),))
    slots = parser.extract(text)
    assert slots == {"DESCRIPTION_ROOM": "屋里一片昏暗，只有一盏油灯摇曳着微弱的光。"}


def test_first_successful_strategy_wins():
    parser = SlotParser()
    text = '[DIALOGUE_A]: 你好。\n\n{"DIALOGUE_B": "另一个"}'
    slots = parser.extract(text)
    assert parser.last_strategy == "bracket-colon"
    assert "DIALOGUE_B" not in slots


def test_non_string_and_blank_input():
    parser = SlotParser()
    assert parser.extract(None) == {}
    assert parser.extract(42) == {}
    assert parser.extract("   ") == {}
    assert parser.last_strategy is None


def test_unparsable_text_returns_empty_map():
    assert extract("这里只有普通的叙述，没有任何槽位。") == {}


class _Exploding:
    name = "exploding"

    def attempt(self, text):
        raise RuntimeError("boom")


def test_broken_strategy_is_skipped():
    parser = SlotParser((_Exploding(), BracketColonStrategy()))
    assert parser.extract("[DIALOGUE_A]: 你好。") == {"DIALOGUE_A": "你好。"}
    assert parser.last_strategy == "bracket-colon"
