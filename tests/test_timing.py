from datetime import date, datetime, timedelta, timezone

import pytest

from visitor_service.utils.timing import (
    UnparseableTimestamp,
    format_elapsed,
    parse_instant,
    retry_with_backoff,
    to_instant,
)

INSTANT = datetime(2024, 5, 10, 8, 30, 0, tzinfo=timezone.utc)
EPOCH_MS = int(INSTANT.timestamp() * 1000)


class FirestoreLikeTimestamp:
    def __init__(self, value):
        self._value = value

    def to_datetime(self):
        return self._value


class JsLikeTimestamp:
    def __init__(self, value):
        self._value = value

    def toDate(self):
        return self._value


class BrokenTimestamp:
    def to_datetime(self):
        raise RuntimeError('boom')


@pytest.mark.parametrize('value', [
    INSTANT,
    EPOCH_MS,
    float(EPOCH_MS),
    str(EPOCH_MS),
    '2024-05-10T08:30:00Z',
    '2024-05-10T08:30:00.000000+00:00',
    '2024-05-10T11:30:00+03:00',
    FirestoreLikeTimestamp(INSTANT),
    JsLikeTimestamp(EPOCH_MS),
])
def test_all_representations_resolve_to_same_instant(value):
    assert parse_instant(value) == INSTANT


def test_naive_datetime_is_treated_as_utc():
    assert parse_instant(datetime(2024, 5, 10, 8, 30)) == INSTANT


def test_date_resolves_to_midnight_utc():
    assert parse_instant(date(2024, 5, 10)) == datetime(2024, 5, 10, tzinfo=timezone.utc)


def test_result_is_timezone_aware_utc():
    result = parse_instant('2024-05-10T11:30:00+03:00')
    assert result.utcoffset() == timedelta(0)


@pytest.mark.parametrize('value', [None, '', 'not a date', True, object(), BrokenTimestamp(), float('nan')])
def test_parse_instant_rejects_unusable_values(value):
    with pytest.raises(UnparseableTimestamp):
        parse_instant(value)


@pytest.mark.parametrize('value', [None, 'garbage', {'seconds': 1}])
def test_to_instant_defaults_to_now(value):
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert to_instant(value, now) == now


def test_to_instant_without_now_uses_current_time():
    before = datetime.now(timezone.utc)
    result = to_instant(None)
    after = datetime.now(timezone.utc)
    assert before <= result <= after


def test_to_instant_logs_unparseable_value(caplog):
    with caplog.at_level('WARNING'):
        to_instant('garbage', INSTANT)
    assert 'garbage' in caplog.text


def test_format_elapsed():
    assert format_elapsed(0) == '0s'
    assert format_elapsed(3725) == '1h 2m 5s'
    assert format_elapsed(90061) == '1d 1h 1m 1s'
    assert format_elapsed(86401) == '1d 0h 0m 1s'
    assert format_elapsed(-3) == '0s'
    assert format_elapsed(None) is None


def test_retry_with_backoff_retries_listed_errors(monkeypatch):
    monkeypatch.setattr('visitor_service.utils.timing.time.sleep', lambda _: None)
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError('down')
        return 'ok'

    assert retry_with_backoff(flaky, retry_on=(ConnectionError,)) == 'ok'
    assert len(calls) == 3


def test_retry_with_backoff_does_not_retry_other_errors(monkeypatch):
    monkeypatch.setattr('visitor_service.utils.timing.time.sleep', lambda _: None)
    calls = []

    def broken():
        calls.append(1)
        raise KeyError('nope')

    with pytest.raises(KeyError):
        retry_with_backoff(broken, retry_on=(ConnectionError,))
    assert len(calls) == 1
