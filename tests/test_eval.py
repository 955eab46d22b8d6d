"""Tests for predicate parsing and evaluation."""

from __future__ import annotations

import pytest

from taskrouter.errors import BadValueError, EvaluatorError, ExpressionError, InternalError
from taskrouter.eval import (
    AndNode,
    ComparisonNode,
    ConstantNode,
    OrNode,
    evaluate,
    parse,
    validate,
)
from taskrouter.model.attributes import AttributeGroup


class Explode:
    """A node no evaluation function is registered for; evaluating it raises."""


@pytest.fixture
def attrs() -> AttributeGroup:
    return AttributeGroup.from_dict(
        {"lang": "en", "age": 30, "vip": True, "skills": ["billing", "sales"]}
    )


class TestParser:
    def test_comparison(self) -> None:
        assert parse("lang==en") == ComparisonNode("lang", "==", ("en",))

    def test_operator_aliases(self) -> None:
        assert parse("age=gt=5") == parse("age>5")
        assert parse("age=ge=5").operator == ">="
        assert parse("age=lt=5").operator == "<"
        assert parse("age=le=5").operator == "<="

    def test_and_binds_tighter_than_or(self) -> None:
        node = parse("a==1,b==2;c==3")
        assert isinstance(node, OrNode)
        assert node.children[0] == ComparisonNode("a", "==", ("1",))
        assert isinstance(node.children[1], AndNode)

    def test_keywords_and_parentheses(self) -> None:
        node = parse("(a==1 or b==2) and c==3")
        assert isinstance(node, AndNode)
        assert isinstance(node.children[0], OrNode)

    def test_argument_list(self) -> None:
        assert parse("lang=in=(en, de)").arguments == ("en", "de")

    def test_quoted_strings(self) -> None:
        assert parse('name=="John Doe"').arguments == ("John Doe",)
        assert parse("name=='it\\'s'").arguments == ("it's",)

    def test_constants(self) -> None:
        assert parse("true") == ConstantNode(True)
        assert parse("FALSE") == ConstantNode(False)

    def test_parse_is_cached(self) -> None:
        assert parse("lang==en;age>5") is parse("lang==en;age>5")

    @pytest.mark.parametrize(
        "expression",
        ["", "   ", "lang==", "(lang==en", "lang==en)", "lang=foo=en", "lang en", "==en", "a==1;"],
    )
    def test_malformed(self, expression: str) -> None:
        with pytest.raises(ExpressionError):
            parse(expression)

    def test_expression_error_is_bad_value(self) -> None:
        with pytest.raises(BadValueError, match="position"):
            parse("lang==en)")

    def test_validate_checks_arity(self) -> None:
        validate("lang=in=(en,de)")
        with pytest.raises(ExpressionError, match="expects 1 argument"):
            validate("age>(1,2)")


class TestShortCircuit:
    def test_and_stops_at_first_false(self, attrs: AttributeGroup) -> None:
        assert evaluate(AndNode((ConstantNode(False), Explode())), attrs) is False  # type: ignore[arg-type]

    def test_or_stops_at_first_true(self, attrs: AttributeGroup) -> None:
        assert evaluate(OrNode((ConstantNode(True), Explode())), attrs) is True  # type: ignore[arg-type]

    def test_unknown_node_raises(self, attrs: AttributeGroup) -> None:
        with pytest.raises(InternalError):
            evaluate(AndNode((ConstantNode(True), Explode())), attrs)  # type: ignore[arg-type]

    def test_invalid_second_operand_skipped(self, attrs: AttributeGroup) -> None:
        # ordering over a multi-valued attribute would raise if evaluated
        assert evaluate("lang==fr;skills>a", attrs) is False
        assert evaluate("lang==en,skills>a", attrs) is True


class TestMissingSelector:
    @pytest.mark.parametrize("expression", ["age2==5", "age2>5", "age2>=5", "age2<5", "age2<=5"])
    def test_positive_tests_fail(self, expression: str) -> None:
        assert evaluate(expression, AttributeGroup()) is False

    def test_not_equal_holds(self) -> None:
        assert evaluate("age!=5", AttributeGroup()) is True

    def test_membership(self) -> None:
        assert evaluate("lang=in=(en,de)", AttributeGroup()) is False
        assert evaluate("lang=out=(en,de)", AttributeGroup()) is True

    def test_still_requires_single_argument(self) -> None:
        with pytest.raises(EvaluatorError):
            evaluate(ComparisonNode("age", ">", ("1", "2")), AttributeGroup())

    def test_numeric_literal_comparison_is_a_missing_selector(self) -> None:
        assert evaluate("1==1", AttributeGroup()) is False


class TestComparison:
    def test_string_equality(self, attrs: AttributeGroup) -> None:
        assert evaluate("lang==en", attrs)
        assert not evaluate("lang==de", attrs)
        assert evaluate("lang!=de", attrs)

    def test_multi_valued_equality(self, attrs: AttributeGroup) -> None:
        assert evaluate("skills==sales", attrs)
        assert not evaluate("skills!=billing", attrs)

    def test_double_ordering(self, attrs: AttributeGroup) -> None:
        assert evaluate("age>29.5", attrs)
        assert evaluate("age>=30", attrs)
        assert not evaluate("age<30", attrs)
        assert evaluate("age<=30", attrs)
        assert evaluate("age==30.0", attrs)

    def test_string_ordering_is_lexicographic(self, attrs: AttributeGroup) -> None:
        assert evaluate("lang>de", attrs)
        assert evaluate("lang<fr", attrs)

    def test_boolean(self, attrs: AttributeGroup) -> None:
        assert evaluate("vip==TRUE", attrs)
        assert evaluate("vip>false", attrs)
        assert not evaluate("vip==false", attrs)

    def test_in_and_out(self, attrs: AttributeGroup) -> None:
        assert evaluate("lang=in=(de,en)", attrs)
        assert not evaluate("lang=out=(de,en)", attrs)
        assert evaluate("age=in=(10,30)", attrs)

    def test_ordering_needs_single_attribute(self, attrs: AttributeGroup) -> None:
        with pytest.raises(EvaluatorError):
            evaluate("skills>a", attrs)

    def test_ordering_needs_single_argument(self, attrs: AttributeGroup) -> None:
        with pytest.raises(EvaluatorError):
            evaluate(ComparisonNode("age", ">", ("1", "2")), attrs)

    def test_membership_needs_single_attribute(self, attrs: AttributeGroup) -> None:
        with pytest.raises(EvaluatorError):
            evaluate("skills=in=(billing)", attrs)

    def test_unparsable_double_is_internal(self, attrs: AttributeGroup) -> None:
        with pytest.raises(InternalError):
            evaluate("age==thirty", attrs)

    def test_combined(self, attrs: AttributeGroup) -> None:
        assert evaluate("(lang==de,lang==en);age>=18;vip==true", attrs)
