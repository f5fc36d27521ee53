"""
Unit tests for the optimistic update helper.
"""
import pytest

from cafe_pos.services.optimistic import Result, apply_optimistic


def test_commit_success_keeps_local_change():
    state = {'value': 1}

    result = apply_optimistic(
        apply=lambda: state.update(value=2),
        commit=lambda: 'saved',
        revert=lambda: state.update(value=1),
    )

    assert result.ok
    assert result.unwrap() == 'saved'
    assert state['value'] == 2


def test_commit_failure_reverts():
    state = {'value': 1}

    def commit():
        raise ConnectionError('offline')

    result = apply_optimistic(
        apply=lambda: state.update(value=2),
        commit=commit,
        revert=lambda: state.update(value=1),
    )

    assert not result.ok
    assert isinstance(result.error, ConnectionError)
    assert state['value'] == 1
    with pytest.raises(ConnectionError):
        result.unwrap()


def test_apply_failure_propagates_without_commit():
    calls = []

    def apply():
        raise ValueError('bad input')

    with pytest.raises(ValueError):
        apply_optimistic(apply=apply, commit=lambda: calls.append('commit'), revert=lambda: calls.append('revert'))

    assert calls == []


def test_result_constructors():
    assert Result.success(5).value == 5
    assert Result.failure(RuntimeError('x')).ok is False
