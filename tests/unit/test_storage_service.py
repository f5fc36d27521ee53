"""
Unit tests for local key/value storage.
"""
from decimal import Decimal

import pytest

from cafe_pos.services.storage_service import MemoryStorage, RedisStorage


class TestMemoryStorage:

    def test_roundtrip_keeps_decimals(self):
        storage = MemoryStorage('pos')

        assert storage.set('log', {'total': Decimal('110000'), 'lines': [0, 1]})
        assert storage.get('log') == {'total': Decimal('110000'), 'lines': [0, 1]}

    def test_missing_key(self):
        assert MemoryStorage().get('nope') is None

    def test_unreadable_value_is_a_miss(self):
        storage = MemoryStorage()
        storage.set_raw('state', '{not json')

        assert storage.get('state') is None

    @pytest.mark.parametrize('raw', ['{"total": {"__decimal__": "abc"}}', '{"total": {"__decimal__": null}}'])
    def test_bad_decimal_is_a_miss(self, raw):
        storage = MemoryStorage()
        storage.set_raw('log', raw)

        assert storage.get('log') is None

    def test_keys_strip_prefix(self):
        storage = MemoryStorage('pos')
        storage.set('settlement:B', 1)
        storage.set('settlement:A', 2)
        storage.set('posState', 3)

        assert storage.keys('settlement:*') == ['settlement:A', 'settlement:B']

    def test_delete(self):
        storage = MemoryStorage()
        storage.set('k', 'v')
        storage.delete('k')

        assert storage.get('k') is None


class TestRedisStorageUnavailable:

    def test_unreachable_redis_degrades_to_misses(self):
        storage = RedisStorage('redis://127.0.0.1:1/0')

        assert storage.is_available() is False
        assert storage.set('k', 'v') is False
        assert storage.get('k') is None
        assert storage.keys() == []
