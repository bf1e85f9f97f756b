import pytest

from stable_radar.core.custom_types import QueryResult, RawLog
from stable_radar.live.metrics import Metrics
from stable_radar.onchain.feed_store import AggregateFeedStore
from stable_radar.onchain.hypersync_client import HeightCheckFailed, QueryFailed, parse_query_response
from stable_radar.onchain.ingest import TransferIngestEngine
from stable_radar.onchain.state import ChainState


def _engine(client, store=None, metrics=None):
    return TransferIngestEngine(client, store or AggregateFeedStore(100), metrics=metrics, clock=lambda: 5_000)


def _state(chain, height=1000, ceiling=10_000):
    state = ChainState.create(chain, ceiling)
    state.cursor.last_known_height = height
    return state


@pytest.mark.asyncio
async def test_first_fetch_starts_below_height_and_advances_cursor(base_chain, fake_client_cls, make_log):
    logs = [make_log('0xt1', ts_ms=1_000), make_log('0xt2')]
    client = fake_client_cls(responses=[QueryResult(logs, 1001, 1000)])
    store = AggregateFeedStore(100)
    state = _state(base_chain)
    res = await _engine(client, store).fetch_new_transfers(state)

    assert client.queries == [(990, 10_990)]
    assert res.ok and [t.transaction_id for t in res.accepted] == ['0xt1', '0xt2']
    assert state.cursor.last_queried_block == 1001
    assert state.loading is False
    feed = store.get_feed(8453)
    assert feed.total_observed_count == 2
    t1, t2 = feed.recent_transfers
    assert t1.block_timestamp_ms == 1_000 and t1.event_time_ms == 1_000
    # no block header: timestamp stays unknown, event time falls back to ingestion time
    assert t2.block_timestamp_ms is None and t2.event_time_ms == 5_000
    assert res.debug['fromBlock'] == 990 and res.debug['accepted'] == 2


@pytest.mark.asyncio
async def test_unknown_height_is_fetched_first(base_chain, fake_client_cls):
    client = fake_client_cls(heights=[50])
    state = ChainState.create(base_chain)
    await _engine(client).fetch_new_transfers(state)
    assert client.height_calls == 1
    assert client.queries == [(40, 10_040)]


@pytest.mark.asyncio
async def test_next_fetch_continues_from_cursor(base_chain, fake_client_cls, make_log):
    client = fake_client_cls(responses=[QueryResult([make_log('0xt1')], 1001, None),
                                        QueryResult([], 1005, None)])
    state = _state(base_chain)
    engine = _engine(client)
    await engine.fetch_new_transfers(state)
    await engine.fetch_new_transfers(state)
    assert client.queries[1][0] == 1001
    assert state.cursor.last_queried_block == 1005


@pytest.mark.asyncio
async def test_duplicates_within_and_across_batches(base_chain, fake_client_cls, make_log):
    batch = [make_log('0xt1'), make_log('0xt1'), make_log('0xt2')]
    client = fake_client_cls(responses=[QueryResult(batch, 1001, None), QueryResult(batch, 1002, None)])
    store = AggregateFeedStore(100)
    state = _state(base_chain)
    engine = _engine(client, store)

    first = await engine.fetch_new_transfers(state)
    assert len(first.accepted) == 2 and first.duplicates == 1
    second = await engine.fetch_new_transfers(state)
    assert second.accepted == [] and second.duplicates == 3
    assert store.get_feed(8453).total_observed_count == 2
    assert [t.transaction_id for t in store.get_feed(8453).recent_transfers] == ['0xt1', '0xt2']


@pytest.mark.asyncio
async def test_query_failure_leaves_state_untouched(base_chain, fake_client_cls, make_log):
    client = fake_client_cls(responses=[QueryFailed('Hypersync query failed: 500 - boom', 8453, 500),
                                        QueryResult([make_log('0xt1')], 1001, None)])
    metrics = Metrics()
    store = AggregateFeedStore(100)
    state = _state(base_chain)
    engine = _engine(client, store, metrics)

    res = await engine.fetch_new_transfers(state)
    assert not res.ok
    assert res.error.startswith('Chain 8453:')
    assert state.last_error == res.error
    assert state.cursor.last_queried_block is None
    assert state.loading is True
    assert store.get_feed(8453).total_observed_count == 0
    assert metrics.counters['query_errors'] == 1

    # retry covers the same range and clears the error
    res = await engine.fetch_new_transfers(state)
    assert res.ok and len(res.accepted) == 1
    assert client.queries[0] == client.queries[1]
    assert state.last_error is None


@pytest.mark.asyncio
async def test_height_failure_while_resolving_start(base_chain, fake_client_cls):
    client = fake_client_cls(heights=[HeightCheckFailed('down', 8453)])
    state = ChainState.create(base_chain)
    res = await _engine(client).fetch_new_transfers(state)
    assert not res.ok
    assert client.queries == []
    assert state.cursor.last_queried_block is None


@pytest.mark.asyncio
@pytest.mark.parametrize('next_block, expected', [(None, 990), (500, 990), (995, 995)])
async def test_cursor_never_regresses(base_chain, fake_client_cls, next_block, expected):
    client = fake_client_cls(responses=[QueryResult([], next_block, None)])
    state = _state(base_chain)
    await _engine(client).fetch_new_transfers(state)
    assert state.cursor.last_queried_block == expected


@pytest.mark.asyncio
async def test_bad_logs_are_skipped_individually(base_chain, fake_client_cls, make_log):
    good = make_log('0xgood')
    bad_topics = RawLog('0xbad', 100, good.address, good.topics[:2], good.data)
    no_hash = RawLog('', 100, good.address, good.topics, good.data)
    client = fake_client_cls(responses=[QueryResult([bad_topics, good, no_hash], 1001, None)])
    metrics = Metrics()
    state = _state(base_chain)
    res = await _engine(client, metrics=metrics).fetch_new_transfers(state)
    assert [t.transaction_id for t in res.accepted] == ['0xgood']
    assert res.decode_failures == 2
    assert metrics.counters['decode_errors'] == 2
    assert '0xbad' not in state.seen
    assert metrics.gauges['seen_ids_base'] == 1


@pytest.mark.asyncio
async def test_seen_set_memory_is_bounded(base_chain, fake_client_cls, make_log):
    responses = [QueryResult([make_log(f'0x{b}-{i}') for i in range(7)], 1001 + b, None) for b in range(10)]
    client = fake_client_cls(responses=responses)
    store = AggregateFeedStore(100)
    state = _state(base_chain, ceiling=20)
    engine = _engine(client, store)
    for _ in range(10):
        await engine.fetch_new_transfers(state)
        assert len(state.seen) <= 20
    assert store.get_feed(8453).total_observed_count == 70


def test_from_settings(settings_fixture, fake_client_cls):
    engine = TransferIngestEngine.from_settings(fake_client_cls(), AggregateFeedStore(), settings_fixture.ingest)
    assert engine.range_limit == 10_000
    assert engine.start_margin_blocks == 10


@pytest.mark.asyncio
async def test_non_string_fields_do_not_block_the_chain(base_chain, fake_client_cls, make_log):
    good = make_log('0xgood')
    payload = {
        'data': [{
            'logs': [
                {'transaction_hash': '0xbad-data', 'block_number': 100, 'topics': list(good.topics), 'data': 5},
                {'transaction_hash': '0xbad-topic', 'block_number': 100,
                 'topics': [7, good.topics[1], good.topics[2]], 'data': good.data},
                {'transaction_hash': '0xgood', 'block_number': 100, 'topics': list(good.topics), 'data': good.data},
                'not-a-log',
            ],
        }, 5],
        'next_block': 1001,
    }
    client = fake_client_cls(responses=[parse_query_response(payload)])
    state = _state(base_chain)
    res = await _engine(client).fetch_new_transfers(state)
    assert res.ok
    assert [t.transaction_id for t in res.accepted] == ['0xgood']
    assert res.decode_failures == 2
    assert state.cursor.last_queried_block == 1001
