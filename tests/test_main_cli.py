import json

import main
import pytest
from orchestration import cli_runner
from rich.console import Console

from models import ChapterData, ChapterGenerationResult, PhaseResult
from ui.rich_display import RichDisplayManager, phase_table


def test_parse_plans_accepts_list_and_chapters_object():
    plans = [{"title": "夜探古宅", "summary": "林墨潜入古宅"}]
    assert cli_runner.parse_plans(json.dumps(plans))[0].title == "夜探古宅"
    wrapped = cli_runner.parse_plans(json.dumps({"chapters": plans}))
    assert wrapped[0].summary == "林墨潜入古宅"


def test_parse_characters_accepts_mapping_and_list():
    assert cli_runner.parse_characters('{"林墨": "剑客", "苏晚": null}') == {
        "林墨": "剑客",
        "苏晚": "",
    }
    listed = json.dumps([{"name": "林墨", "description": "剑客"}, {"description": "无名"}])
    assert cli_runner.parse_characters(listed) == {"林墨": "剑客"}


def test_build_parser_flags():
    args = main.build_parser().parse_args(
        ["--plans", "plans.json", "--start-chapter", "3", "--no-polish", "--fallback-retry"]
    )
    assert args.plans == "plans.json"
    assert args.start_chapter == 3
    assert args.no_polish and args.fallback_retry


def test_start_chapter_must_be_positive():
    with pytest.raises(SystemExit):
        main.main(["--plans", "plans.json", "--start-chapter", "0"])


def test_missing_plans_file_exits_with_input_error(tmp_path, monkeypatch):
    monkeypatch.setattr(cli_runner, "setup_logging", lambda: None)
    assert main.main(["--plans", str(tmp_path / "missing.json")]) == 2


def test_phase_table_lists_every_phase():
    result = ChapterGenerationResult(
        success=False,
        chapter_number=2,
        chapter_data=ChapterData(title="夜探古宅", content="", plan="", summary=""),
        phases=[
            PhaseResult(name="Context Preparation", duration_ms=3.0, success=True),
            PhaseResult(
                name="Specialist Generation",
                duration_ms=12.0,
                success=False,
                errors=["empty skeleton"],
            ),
        ],
    )
    console = Console(record=True, width=120)
    console.print(phase_table(result))
    text = console.export_text()
    assert "Specialist Generation" in text
    assert "empty skeleton" in text
    assert "coherence 0 / integration 0 / polish 0" in text


def test_display_counts_results_when_disabled(monkeypatch):
    monkeypatch.setattr("ui.rich_display.settings.ENABLE_RICH_PROGRESS", False)
    display = RichDisplayManager(console=Console(record=True))
    ok = ChapterGenerationResult(
        success=True,
        chapter_number=1,
        chapter_data=ChapterData(title="一", content="正文", plan="", summary=""),
    )
    display.update(chapter_num=1, step="Generating")
    display.show_result(ok)
    assert not display.enabled
    assert display.lines["chapters"].plain == "Chapters: 1 ok / 0 failed"
    assert display.lines["step"].plain == "Current Step: Initializing..."
    assert display.console.export_text() == ""
