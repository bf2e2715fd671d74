from relay_agent.client.run_cache import RunMetadataCache
from relay_agent.config import Settings
from relay_agent.types import RunMetadata, RunState, utc_now


def test_save_and_load_per_thread(tmp_path) -> None:
    cache = RunMetadataCache(tmp_path / "runs")
    now = utc_now()
    cache.save("thread_1", "msg_1", RunMetadata("run_1", RunState.DONE, now, now, now))
    cache.save("thread_1", "msg_2", RunMetadata("run_2", RunState.FAILED, now, now, now))
    cache.save("thread_2", "msg_3", RunMetadata("run_3", RunState.CANCELLED, now, now, now))

    loaded = cache.load("thread_1")

    assert set(loaded) == {"msg_1", "msg_2"}
    assert loaded["msg_2"].state is RunState.FAILED
    assert cache.load("thread_2")["msg_3"].run_id == "run_3"
    assert cache.load("thread_unknown") == {}


def test_corrupt_cache_file_is_ignored(tmp_path) -> None:
    cache = RunMetadataCache(tmp_path)
    cache.path_for("thread_1").write_text("{not json", encoding="utf-8")

    assert cache.load("thread_1") == {}


def test_thread_ids_are_sanitized_in_file_names(tmp_path) -> None:
    cache = RunMetadataCache(tmp_path)
    assert cache.path_for("../etc/passwd").parent == tmp_path


def test_cache_directory_comes_from_settings(tmp_path) -> None:
    cache = RunMetadataCache.from_settings(Settings(run_cache_dir=str(tmp_path / "cache")))
    assert cache.path_for("thread_1") == tmp_path / "cache" / "run_metadata_thread_1.json"
