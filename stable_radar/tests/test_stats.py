import pytest

from stable_radar.radar.stats import VolumeRateTracker, format_rate, format_usdc


def test_rate_uses_batch_span(make_transfer):
    tracker = VolumeRateTracker(block_time_sec=2)
    rate = tracker.record([make_transfer('0xa', '100000000', ts_ms=0),
                           make_transfer('0xb', '50000000', ts_ms=10_000)])
    assert rate == pytest.approx(15.0)


def test_short_batches_use_block_time_floor(make_transfer):
    tracker = VolumeRateTracker(block_time_sec=2)
    assert tracker.record([make_transfer('0xa', '100000000', ts_ms=1_000)]) == pytest.approx(50.0)
    assert tracker.record([]) is None
    assert tracker.average == pytest.approx(50.0)


def test_average_over_bounded_window(make_transfer):
    tracker = VolumeRateTracker(block_time_sec=1, max_samples=2)
    for units in (10, 20, 30):
        tracker.record([make_transfer(f'0x{units}', str(units * 10 ** 6), ts_ms=0)])
    assert list(tracker.samples) == [20.0, 30.0]
    assert tracker.average == pytest.approx(25.0)


def test_warmup_hides_label(make_transfer):
    tracker = VolumeRateTracker(block_time_sec=2, warmup_sec=5)
    assert tracker.label(100.0) is None
    tracker.start(0.0)
    tracker.record([make_transfer('0xa', '2000000000', ts_ms=0)], now=1.0)
    assert tracker.label(4.9) is None
    assert tracker.label(5.0) == '1.0k'


@pytest.mark.parametrize('value, text', [
    (1_500_000, '1.5M'),
    (2_500, '2.5k'),
    (12.4, '12'),
    (0.3, '0.3'),
    (0, '0'),
])
def test_format_rate(value, text):
    assert format_rate(value) == text


def test_format_usdc():
    assert format_usdc('1234567890') == '$1,234 USDC'
    assert format_usdc('999999') == '$0 USDC'
    assert format_usdc('n/a') == 'Unknown'
