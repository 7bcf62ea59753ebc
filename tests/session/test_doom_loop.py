from tessera.session.doom_loop import RepetitionGuard


def test_guard_warns_once_when_streak_reaches_threshold() -> None:
    guard = RepetitionGuard(threshold=3)

    assert guard.record("read", {"path": "a"}) is None
    assert guard.record("read", {"path": "a"}) is None

    warning = guard.record("read", {"path": "a"})
    assert warning is not None
    assert "`read`" in warning
    assert "3 times" in warning

    assert guard.record("read", {"path": "a"}) is None
    assert guard.record("read", {"path": "a"}) is None
    assert guard.streak == 5


def test_guard_ignores_non_identical_sequence() -> None:
    guard = RepetitionGuard(threshold=3)

    guard.record("read", {"path": "a"})
    guard.record("read", {"path": "b"})

    assert guard.record("read", {"path": "a"}) is None
    assert guard.streak == 1


def test_signature_is_key_order_independent() -> None:
    guard = RepetitionGuard(threshold=2)

    guard.record("grep", {"a": 1, "b": [1, 2]})

    assert guard.record("grep", {"b": [1, 2], "a": 1}) is not None


def test_reset_clears_streak() -> None:
    guard = RepetitionGuard(threshold=2)
    guard.record("read", {})
    guard.reset()

    assert guard.record("read", {}) is None
    assert guard.record("read", {}) is not None


def test_window_bounds_memory() -> None:
    guard = RepetitionGuard(threshold=3, window=5)

    for _ in range(20):
        guard.record("read", {"path": "a"})

    assert guard.streak == 5
    assert guard.record("read", {"path": "a"}) is None


def test_window_equal_to_threshold_still_warns_once() -> None:
    guard = RepetitionGuard(threshold=3, window=3)

    warnings = [guard.record("read", {}) for _ in range(6)]

    assert [w is not None for w in warnings] == [False, False, True, False, False, False]
