from application.tag_classification import analog_tags, classify_tag, classify_tags
from domain.historian import TagType


def test_binary_values_are_digital(series):
    result = classify_tag(series([0, 1, 1, 0, 1], tag="PUMP.RUN"))
    assert result.tag_name == "PUMP.RUN"
    assert result.tag_type == TagType.DIGITAL
    assert result.confidence == 1.0
    assert result.unique_values == 2


def test_zero_hundred_is_digital(series):
    assert classify_tag(series([0, 100, 0, 100])).tag_type == TagType.DIGITAL


def test_many_distinct_values_are_analog(series):
    result = classify_tag(series([v * 0.5 for v in range(20)]))
    assert result.tag_type == TagType.ANALOG
    assert result.confidence == 0.95
    assert result.value_range == 9.5


def test_constant_series_is_low_confidence_analog(series):
    result = classify_tag(series([7, 7, 7]))
    assert result.tag_type == TagType.ANALOG
    assert result.confidence == 0.3


def test_few_spread_values(series):
    result = classify_tag(series([1, 2, 3, 2, 1]))
    assert result.tag_type == TagType.ANALOG
    assert result.confidence == 0.5


def test_empty_series():
    result = classify_tag([])
    assert result.tag_name == "UNKNOWN"
    assert result.confidence == 0.0


def test_classify_tags_uses_mapping_keys(series):
    data = {
        "A": series([0, 1, 0], tag="other"),
        "B": series(list(range(15))),
    }
    results = classify_tags(data)
    assert results["A"].tag_name == "A"
    assert results["A"].tag_type == TagType.DIGITAL
    assert analog_tags(results) == ["B"]
