"""Tests for the interpolation evaluator and its function library."""

import base64

import pytest

from service_broker.exceptions import EvaluationError
from service_broker.interpolation import (
    RESERVED_NAMES,
    Counter,
    Evaluator,
    Function,
    ValueType,
    expand_dotted,
    format_value,
    is_literal,
    is_reserved_name,
    parse_bool,
    to_value,
    type_of,
)
from service_broker.interpolation.functions import coerce_argument


@pytest.fixture
def evaluator() -> Evaluator:
    return Evaluator()


class TestEvaluate:
    def test_plain_text_is_returned_unchanged(self, evaluator):
        assert evaluator.evaluate("hello world") == "hello world"

    def test_single_region_returns_native_value(self, evaluator):
        assert evaluator.evaluate("${1+1}") == 2
        assert evaluator.evaluate("${size > 5}", {"size": 10}) is True
        assert evaluator.evaluate("${labels}", {"labels": {"a": "b"}}) == {"a": "b"}

    def test_mixed_template_renders_text(self, evaluator):
        result = evaluator.evaluate("${name}-${size}", {"name": "db", "size": 3})
        assert result == "db-3"

    def test_booleans_render_lowercase(self, evaluator):
        assert evaluator.evaluate("flag=${enabled}", {"enabled": True}) == "flag=true"

    def test_maps_render_as_json(self, evaluator):
        result = evaluator.evaluate("labels=${labels}", {"labels": {"b": 1, "a": 2}})
        assert result == 'labels={"a":2,"b":1}'

    def test_dotted_variables_are_nested(self, evaluator):
        scope = {"request.plan_id": "p1", "request.instance_id": "i1"}
        assert evaluator.evaluate("${request.plan_id}/${request.instance_id}", scope) == "p1/i1"

    def test_map_keys_shadow_dict_methods(self, evaluator):
        assert evaluator.evaluate("${m.items}", {"m": {"items": "x"}}) == "x"

    def test_conditional_expression(self, evaluator):
        template = '${name if name != "" else "generated"}'
        assert evaluator.evaluate(template, {"name": ""}) == "generated"
        assert evaluator.evaluate(template, {"name": "mine"}) == "mine"

    def test_unknown_variable_is_an_error(self, evaluator):
        with pytest.raises(EvaluationError) as exc_info:
            evaluator.evaluate("${a}")
        assert "unknown variable accessed: a" in str(exc_info.value)
        assert exc_info.value.template == "${a}"

    def test_unknown_variable_inside_text_is_an_error(self, evaluator):
        with pytest.raises(EvaluationError, match="unknown variable accessed: missing"):
            evaluator.evaluate("prefix-${missing}")

    def test_unknown_nested_key_is_an_error(self, evaluator):
        with pytest.raises(EvaluationError, match="unknown variable accessed"):
            evaluator.evaluate("${request.nothing}", {"request.plan_id": "p"})

    def test_syntax_error_is_an_evaluation_error(self, evaluator):
        with pytest.raises(EvaluationError, match="parse error"):
            evaluator.evaluate("${1 +}")

    def test_type_error_is_an_evaluation_error(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.evaluate('${1 + "a"}')

    def test_unsafe_attribute_access_is_rejected(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.evaluate("${name.__class__.__mro__}", {"name": "x"})

    @pytest.mark.parametrize(
        "template",
        ["${name.upper()}", "${name.split(',')}", '${name.replace("o", "0")}', '${name["upper"]}'],
    )
    def test_values_have_no_methods(self, evaluator, template):
        with pytest.raises(EvaluationError):
            evaluator.evaluate(template, {"name": "orders,db"})

    def test_map_methods_are_not_callable(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.evaluate("${m.keys()}", {"m": {"a": 1}})

    def test_list_index(self, evaluator):
        assert evaluator.evaluate("${zones[1]}", {"zones": ["a", "b"]}) == "b"
        with pytest.raises(EvaluationError, match="unknown variable accessed"):
            evaluator.evaluate("${zones[5]}", {"zones": ["a", "b"]})

    def test_integer_division_stays_integral(self, evaluator):
        assert evaluator.evaluate("${7 / 2}") == 3
        assert evaluator.evaluate("${-7 / 2}") == -3
        assert evaluator.evaluate("vol-${disk_gb / 2}", {"disk_gb": 100}) == "vol-50"

    def test_float_division(self, evaluator):
        assert evaluator.evaluate("${7.0 / 2}") == 3.5
        assert evaluator.evaluate("${size / 4}", {"size": 5.0}) == 1.25

    def test_integer_division_by_zero(self, evaluator):
        with pytest.raises(EvaluationError, match="division by zero"):
            evaluator.evaluate("${size / 0}", {"size": 1})

    def test_reserved_names_are_not_variables(self, evaluator):
        assert evaluator.evaluate("${none}", {"none": "x"}) is None
        assert is_reserved_name("true")
        assert is_reserved_name("self.link")
        assert not is_reserved_name("request.none")
        assert "else" in RESERVED_NAMES

    def test_python_builtins_are_not_available(self, evaluator):
        with pytest.raises(EvaluationError, match="unknown variable accessed: range"):
            evaluator.evaluate("${range(3)}")

    def test_jinja_block_syntax_is_plain_text(self, evaluator):
        assert evaluator.evaluate("{% if x %}{# note #}") == "{% if x %}{# note #}"


class TestFunctions:
    def test_truncate(self, evaluator):
        assert evaluator.evaluate("${str.truncate(3, name)}", {"name": "orders"}) == "ord"
        assert evaluator.evaluate("${str.truncate(10, name)}", {"name": "ab"}) == "ab"

    def test_truncate_coerces_numeric_text(self, evaluator):
        assert evaluator.evaluate('${str.truncate("2", "abc")}') == "ab"

    def test_query_escape(self, evaluator):
        assert evaluator.evaluate('${str.queryEscape("a b&c")}') == "a+b%26c"

    def test_regexp_matches(self, evaluator):
        assert evaluator.evaluate('${regexp.matches("^[a-z]+$", "abc")}') is True
        assert evaluator.evaluate('${regexp.matches("^[a-z]+$", "ABC")}') is False

    def test_regexp_invalid_pattern(self, evaluator):
        with pytest.raises(EvaluationError, match="invalid pattern"):
            evaluator.evaluate('${regexp.matches("(", "abc")}')

    def test_counter_sequence(self, evaluator):
        assert evaluator.evaluate("${counter.next()},${counter.next()}") == "1,2"

    def test_counter_shared_across_calls(self, evaluator):
        first = evaluator.evaluate("${counter.next()}")
        second = evaluator.evaluate("${counter.next()}")
        assert second > first

    def test_counter_is_per_evaluator(self):
        one, two = Evaluator(), Evaluator()
        one.evaluate("${counter.next()}")
        assert two.evaluate("${counter.next()}") == 1

    def test_counter_can_be_injected_and_reset(self):
        counter = Counter(start=41)
        evaluator = Evaluator(counter=counter)
        assert evaluator.evaluate("${counter.next()}") == 42
        counter.reset()
        assert evaluator.evaluate("${counter.next()}") == 1

    def test_rand_base64(self, evaluator):
        value = evaluator.evaluate("${rand.base64(32)}")
        assert len(base64.urlsafe_b64decode(value)) == 32
        assert value != evaluator.evaluate("${rand.base64(32)}")

    def test_time_nano(self, evaluator):
        assert evaluator.evaluate("${time.nano()}").isdigit()

    def test_assert_false_fails_with_message(self, evaluator):
        with pytest.raises(EvaluationError, match="disk size exceeds maximum"):
            evaluator.evaluate('${assert(false, "disk size exceeds maximum")}')

    def test_assert_true_is_noop(self, evaluator):
        assert evaluator.evaluate('${assert(true, "never shown")}') is True

    def test_assert_with_expression(self, evaluator):
        template = '${assert(size <= 100, "too big")}'
        assert evaluator.evaluate(template, {"size": 50}) is True
        with pytest.raises(EvaluationError, match="Assertion failed: too big"):
            evaluator.evaluate(template, {"size": 500})

    def test_json_marshal(self, evaluator):
        assert evaluator.evaluate("${json.marshal(m)}", {"m": {"b": [1], "a": True}}) == (
            '{"a":true,"b":[1]}'
        )

    def test_map_flatten(self, evaluator):
        result = evaluator.evaluate('${map.flatten(":", ";", m)}', {"m": {"b": "2", "a": "1"}})
        assert result == "a:1;b:2"

    def test_wrong_arity(self, evaluator):
        with pytest.raises(EvaluationError, match=r"str.truncate: expected 2 argument\(s\), got 1"):
            evaluator.evaluate('${str.truncate("abc")}')

    def test_wrong_argument_type(self, evaluator):
        with pytest.raises(EvaluationError, match="str.truncate: argument 1: expected type int"):
            evaluator.evaluate('${str.truncate("many", "abc")}')

    def test_undefined_argument(self, evaluator):
        with pytest.raises(EvaluationError, match="unknown variable accessed: nope"):
            evaluator.evaluate("${str.truncate(3, nope)}")

    def test_unknown_function(self, evaluator):
        with pytest.raises(EvaluationError):
            evaluator.evaluate("${str.reverse(name)}", {"name": "abc"})

    def test_custom_function(self):
        double = Function("math.double", (ValueType.INT,), ValueType.INT, lambda x: x * 2)
        evaluator = Evaluator(functions={"math.double": double})
        assert evaluator.evaluate("${math.double(21)}") == 42

    def test_functions_shadow_variables(self, evaluator):
        assert evaluator.evaluate("${counter.next()}", {"counter": {"next": "x"}}) == 1


class TestIsLiteral:
    @pytest.mark.parametrize("text", ["db-primary", "", "50%", "{% raw %}", "a}b"])
    def test_literals(self, text):
        assert is_literal(text)

    @pytest.mark.parametrize("text", ["${name}-db", "${1+1}", "${counter.next()}"])
    def test_templates(self, text):
        assert not is_literal(text)

    def test_check_does_not_advance_evaluator_counter(self):
        evaluator = Evaluator()
        assert not evaluator.is_literal("${counter.next()}")
        assert evaluator.counter.value == 0


class TestValues:
    def test_type_of(self):
        assert type_of(True) is ValueType.BOOL
        assert type_of(1) is ValueType.INT
        assert type_of(1.5) is ValueType.FLOAT
        assert type_of("x") is ValueType.STRING
        assert type_of([1]) is ValueType.LIST
        assert type_of({"a": 1}) is ValueType.MAP
        assert type_of(None) is ValueType.NULL

    def test_to_value_rejects_foreign_objects(self):
        with pytest.raises(EvaluationError):
            to_value(object())

    def test_to_value_converts_tuples_and_key_types(self):
        assert to_value({1: (1, 2)}) == {"1": [1, 2]}

    def test_format_value(self):
        assert format_value(None) == ""
        assert format_value(False) == "false"
        assert format_value([1, "a"]) == '[1,"a"]'

    @pytest.mark.parametrize("text", ["true", "T", "1", "TRUE"])
    def test_parse_bool_true(self, text):
        assert parse_bool(text) is True

    def test_parse_bool_invalid(self):
        with pytest.raises(ValueError):
            parse_bool("maybe")

    def test_coerce_argument(self):
        assert coerce_argument(5, ValueType.STRING) == "5"
        assert coerce_argument(2.0, ValueType.INT) == 2
        assert coerce_argument(2, ValueType.FLOAT) == 2.0
        assert coerce_argument("false", ValueType.BOOL) is False
        with pytest.raises(EvaluationError, match="expected type map"):
            coerce_argument("x", ValueType.MAP)


def test_expand_dotted_does_not_mutate_input():
    nested = {"request": {"a": 1}}
    flat = {"request.b": 2}
    variables = {**nested, **flat}
    scope = expand_dotted(variables)
    assert scope == {"request": {"a": 1, "b": 2}}
    assert nested == {"request": {"a": 1}}
