from cache import CACHE_KEYS, LocalCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_fresh_then_stale(tmp_path):
    clock = FakeClock()
    cache = LocalCache(str(tmp_path), ttl_seconds=300, clock=clock)
    cache.save(CACHE_KEYS["skills"], [{"id": 1}])

    clock.now += 299
    result = cache.load(CACHE_KEYS["skills"])
    assert result.data == [{"id": 1}]
    assert result.is_stale is False

    clock.now += 2
    assert cache.load(CACHE_KEYS["skills"]).is_stale is True


def test_missing_key_is_a_miss(tmp_path):
    assert LocalCache(str(tmp_path)).load("nada") is None


def test_corrupt_file_is_a_miss(tmp_path, caplog):
    cache = LocalCache(str(tmp_path))
    (tmp_path / f"{CACHE_KEYS['projects']}.json").write_text("{no es json", encoding="utf-8")

    assert cache.load(CACHE_KEYS["projects"]) is None
    assert "ilegible" in caplog.text


def test_wrong_structure_is_a_miss(tmp_path):
    cache = LocalCache(str(tmp_path))
    (tmp_path / "devorbit_cache_stats.json").write_text('{"data": 1}', encoding="utf-8")
    assert cache.load("devorbit_cache_stats") is None


def test_unserializable_data_is_ignored(tmp_path):
    cache = LocalCache(str(tmp_path))
    cache.save("x", {"bad": object()})
    assert cache.load("x") is None


def test_clear_all(tmp_path):
    cache = LocalCache(str(tmp_path))
    for key in CACHE_KEYS.values():
        cache.save(key, [])
    cache.clear_all()
    assert all(cache.load(key) is None for key in CACHE_KEYS.values())
    cache.clear("ya-borrada")
