import json

from processing.repetition_tracker import RepetitionTracker, is_mostly_cjk, phrase_ngrams


def test_phrase_ngrams_stay_inside_cjk_runs():
    assert phrase_ngrams("剑光，如虹", 2) == ["剑光", "如虹"]
    assert phrase_ngrams("alpha beta gamma", 2) == ["alpha beta", "beta gamma"]
    assert is_mostly_cjk("他说 ok")
    assert not is_mostly_cjk("")


def test_tracker_persists_counts(tmp_path):
    stats_file = tmp_path / "stats.json"
    tracker = RepetitionTracker(file_path=str(stats_file), n=2)
    tracker.update_from_text("alpha beta gamma alpha beta")
    assert json.loads(stats_file.read_text(encoding="utf-8"))["alpha beta"] == 2

    reloaded = RepetitionTracker(file_path=str(stats_file), n=2)
    assert reloaded.phrase_counts["alpha beta"] == 2
    assert reloaded.find_overused("alpha beta", threshold=2) == {"alpha beta"}
    assert reloaded.find_overused("beta gamma", threshold=2) == set()


def test_tracker_tolerates_corrupt_stats(tmp_path):
    stats_file = tmp_path / "stats.json"
    stats_file.write_text("not json", encoding="utf-8")
    tracker = RepetitionTracker(file_path=str(stats_file), n=2)
    assert not tracker.phrase_counts


def test_memory_only_tracker_writes_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    tracker = RepetitionTracker(file_path=None, n=2)
    tracker.update_from_text("剑光如虹")
    assert tracker.phrase_counts["剑光"] == 1
    assert list(tmp_path.iterdir()) == []


def test_overused_phrases_are_ordered_and_thresholded():
    tracker = RepetitionTracker(file_path=None, n=4)
    for _ in range(6):
        tracker.update_from_text("剑光如虹")
    for _ in range(5):
        tracker.update_from_text("夜色深沉")
    tracker.update_from_text("月明星稀")
    assert tracker.overused_phrases() == ["剑光如虹", "夜色深沉"]
    assert tracker.overused_phrases(limit=1) == ["剑光如虹"]
    assert tracker.overused_phrases(threshold=6) == ["剑光如虹"]
