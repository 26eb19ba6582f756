import pytest

from trustee_kbs.metrics import (
    REQUEST_DURATION,
    REQUEST_SIZES,
    REQUEST_TOTAL,
    RESOURCE_READS_TOTAL,
    RESOURCE_WRITES_TOTAL,
    RESPONSE_SIZES,
    Counter,
    CounterVec,
    Histogram,
    Registry,
    export_metrics,
    exponential_buckets,
)


def test_metrics_recording():
    RESOURCE_READS_TOTAL.labels("default/key/read").inc()
    RESOURCE_READS_TOTAL.labels("default/key/read").inc()
    RESOURCE_WRITES_TOTAL.labels("default/key/write").inc()
    REQUEST_TOTAL.inc()
    REQUEST_TOTAL.inc()
    REQUEST_TOTAL.inc()
    REQUEST_DURATION.observe(10.0)
    REQUEST_SIZES.observe(1024.0)
    RESPONSE_SIZES.observe(2048.0)

    metrics = export_metrics()
    assert 'resource_reads_total{resource_path="default/key/read"} 2' in metrics
    assert 'resource_writes_total{resource_path="default/key/write"} 1' in metrics
    assert "http_requests_total 3" in metrics
    assert "http_request_duration_seconds_count 1" in metrics
    assert "http_request_duration_seconds_sum 10" in metrics
    assert "http_request_size_bytes_sum 1024" in metrics
    assert "http_request_size_bytes_count 1" in metrics
    assert "http_response_size_bytes_sum 2048" in metrics
    assert "http_response_size_bytes_count 1" in metrics


def test_exponential_buckets_values():
    assert exponential_buckets(32.0, 4.0, 5) == [32.0, 128.0, 512.0, 2048.0, 8192.0]


@pytest.mark.parametrize(
    "start, factor, count",
    [(32.0, 4.0, 0), (0.0, 4.0, 5), (-1.0, 4.0, 5), (32.0, 1.0, 5)],
)
def test_exponential_buckets_rejects_bad_arguments(start, factor, count):
    with pytest.raises(ValueError):
        exponential_buckets(start, factor, count)


def test_counter_rejects_negative_increment():
    counter = Counter("things_total", "Things")
    with pytest.raises(ValueError):
        counter.inc(-1)
    assert counter.value == 0


def test_counter_vec_label_count_checked():
    vec = CounterVec("paths_total", "Paths", ["path"])
    with pytest.raises(ValueError):
        vec.labels("a", "b")


def test_counter_vec_returns_same_child():
    vec = CounterVec("paths_total", "Paths", ["path"])
    vec.labels("a").inc()
    vec.labels("a").inc(2)
    assert vec.labels("a").value == 3


def test_registry_renders_help_type_and_sorted_children():
    registry = Registry()
    vec = CounterVec("paths_total", "Paths seen", ["path"])
    registry.register(vec)
    vec.labels("b").inc()
    vec.labels("a").inc()
    lines = registry.render().splitlines()
    assert lines == [
        "# HELP paths_total Paths seen",
        "# TYPE paths_total counter",
        'paths_total{path="a"} 1',
        'paths_total{path="b"} 1',
    ]


def test_empty_counter_vec_is_omitted():
    registry = Registry()
    registry.register(CounterVec("paths_total", "Paths", ["path"]))
    assert registry.render() == ""


def test_label_values_are_escaped():
    registry = Registry()
    vec = CounterVec("paths_total", "Paths", ["path"])
    registry.register(vec)
    vec.labels('a"b\\c').inc()
    assert 'paths_total{path="a\\"b\\\\c"} 1' in registry.render()


def test_duplicate_registration_fails():
    registry = Registry()
    registry.register(Counter("things_total", "Things"))
    with pytest.raises(ValueError):
        registry.register(Counter("things_total", "Other things"))


def test_histogram_buckets_are_cumulative():
    registry = Registry()
    histogram = Histogram("latency", "Latency", [1.0, 2.0])
    registry.register(histogram)
    for value in (0.5, 1.5, 5.0):
        histogram.observe(value)
    text = registry.render()
    assert '# TYPE latency histogram' in text
    assert 'latency_bucket{le="1"} 1' in text
    assert 'latency_bucket{le="2"} 2' in text
    assert 'latency_bucket{le="+Inf"} 3' in text
    assert "latency_sum 7" in text
    assert "latency_count 3" in text


def test_histogram_rejects_unsorted_buckets():
    with pytest.raises(ValueError):
        Histogram("latency", "Latency", [2.0, 1.0])


def test_invalid_metric_name_rejected():
    with pytest.raises(ValueError):
        Counter("bad name", "Bad")