import pytest
from flex.flex_datatypes import (
    FNULL, FlexArray, FlexDict, Program, NativeFunction,
    Stack, FlexError, ErrorKind, Termination, new_context
)
from flex.flex_interpreter import Evaluator, evaluate
from flex.flex_io import RecordingSink


def run(program, ctx=None, **kwargs):
    """Evaluates `program` on a fresh (or given) context, returning (ctx, sink)."""
    sink = RecordingSink()
    ctx = ctx if ctx is not None else new_context(**kwargs)
    ctx = Evaluator(sink).evaluate(ctx, program)
    return ctx, sink

def raises_kind(kind, program, ctx=None, **kwargs):
    with pytest.raises(FlexError) as exc:
        run(program, ctx, **kwargs)
    assert exc.value.kind is kind, exc.value.message
    return exc.value


# --- Literals ---

def test_scalar_literals_are_pushed_in_order():
    ctx, sink = run([1, 2.5, True, False])
    assert ctx.stack.snapshot() == (1, 2.5, True, False)
    assert ctx.vars == {}
    assert sink.side_effects == []

def test_null_literal_becomes_flex_null():
    ctx, _ = run([None])
    assert ctx.stack.snapshot() == (FNULL,)

def test_text_literal_is_pushed_as_text():
    ctx, _ = run([["hello"]])
    assert ctx.stack.snapshot() == ("hello",)

def test_program_literal_is_pushed_as_function():
    ctx, _ = run([[1, 2, "+"]])
    (fn,) = ctx.stack.snapshot()
    assert isinstance(fn, Program)
    assert fn == [1, 2, "+"]

def test_unknown_literal_shape():
    raises_kind(ErrorKind.UNKNOWN_TYPE, [{"a": 1, "b": 2}])

def test_malformed_token():
    err = raises_kind(ErrorKind.MALFORMED_INSTRUCTION, ["Bad!"])
    assert err.message == "On `Bad!': Malformed instruction"

def test_program_must_be_a_sequence():
    with pytest.raises(FlexError) as exc:
        Evaluator().evaluate(new_context(), "$x")
    assert exc.value.kind is ErrorKind.MALFORMED_INSTRUCTION


# --- Context handling ---

def test_main_is_bound_once():
    ctx, _ = run([1])
    assert ctx.functions["main"] == [1]
    ctx, _ = run([2], ctx)
    assert ctx.functions["main"] == [1]
    assert ctx.stack.snapshot() == (1, 2)

def test_invalid_context_is_invalid_api():
    with pytest.raises(FlexError) as exc:
        evaluate(object(), [1])
    assert exc.value.kind is ErrorKind.INVALID_API
    assert exc.value.message == "Invalid API"

def test_corrupted_vars_is_invalid_api():
    ctx = new_context()
    ctx.vars = []
    raises_kind(ErrorKind.INVALID_API, [1], ctx)

def test_session_state_accumulates_across_calls():
    ctx, _ = run([7, "&count"])
    ctx, _ = run(["$count", "$count", "+"], ctx)
    assert ctx.stack.snapshot() == (14,)

def test_committed_state_survives_a_failure():
    ctx = new_context()
    with pytest.raises(FlexError):
        run([1, "&a", 2, "$nope"], ctx)
    assert ctx.vars == {"a": 1}
    assert ctx.stack.snapshot() == (2,)


# --- Push / pop expressions ---

def test_pop_then_push_variable():
    ctx, _ = run([7, "&count", "$count"])
    assert ctx.vars["count"] == 7
    assert ctx.stack.snapshot() == (7,)

def test_push_unbound_variable_fails():
    err = raises_kind(ErrorKind.UNDEFINED_VARIABLE, ["$x"])
    assert err.message.startswith("On `$x': ")

def test_pop_rebinds_variable():
    ctx, _ = run([1, "&a", 2, "&a"])
    assert ctx.vars == {"a": 2}

def test_pop_on_empty_stack_underflows():
    raises_kind(ErrorKind.STACK_UNDERFLOW, ["&a"])

def test_push_indexed():
    ctx, _ = run(["$xs.1", "$doc.name"],
                 vars={"xs": FlexArray([10, 20]), "doc": FlexDict({"name": "flex"})})
    assert ctx.stack.snapshot() == (20, "flex")

def test_push_nested_path():
    doc = FlexDict({"a": FlexArray([FlexDict({"b": 5})])})
    ctx, _ = run(["$doc.a.0.b"], vars={"doc": doc})
    assert ctx.stack.snapshot() == (5,)

def test_push_absent_index_is_undefined_variable():
    raises_kind(ErrorKind.UNDEFINED_VARIABLE, ["$xs.5"], vars={"xs": FlexArray([1])})

def test_push_with_stack_segment():
    ctx, _ = run([2, "$xs.&0"], vars={"xs": FlexArray([10, 20, 30])})
    assert ctx.stack.snapshot() == (30,)

def test_push_with_variable_segment():
    ctx, _ = run(["$xs.$i"], vars={"xs": FlexArray([10, 20]), "i": 1})
    assert ctx.stack.snapshot() == (20,)

def test_pop_indexed_sets_slot():
    xs = FlexArray([1, 2, 3])
    ctx, _ = run([9, "&xs.1"], vars={"xs": xs})
    assert ctx.vars["xs"] == [1, 9, 3]
    assert ctx.stack.snapshot() == ()

def test_pop_indexed_pops_value_before_stack_segments():
    xs = FlexArray(["a", "b"])
    ctx, _ = run([0, 99, "&xs.&0"], vars={"xs": xs})
    assert xs == [99, "b"]
    assert ctx.stack.snapshot() == ()

def test_pop_indexed_into_unbound_variable_fails():
    ctx = new_context()
    with pytest.raises(FlexError) as exc:
        run([1, "&xs.0"], ctx)
    assert exc.value.kind is ErrorKind.UNDEFINED_VARIABLE
    assert ctx.stack.snapshot() == (1,)

def test_pop_indexed_into_scalar_is_shape_mismatch():
    raises_kind(ErrorKind.SHAPE_MISMATCH, [1, "&n.0"], vars={"n": 5})


# --- Class expressions ---

def test_class_expression_pushes_receiver_then_runs_member():
    obj = FlexDict({"name": "flex", "greet": Program(["&self", "$self.name", "#put"])})
    ctx, sink = run([1, ":$obj.greet"], vars={"obj": obj})
    assert sink.output == ["flex"]
    assert ctx.stack.snapshot() == (1,)
    assert ctx.vars["self"] is obj

def test_class_expression_receiver_sits_on_top_of_existing_stack():
    obj = FlexDict({"noop": Program([])})
    ctx, _ = run([1, 2, ":$obj.noop"], vars={"obj": obj})
    assert ctx.stack.snapshot() == (1, 2, obj)

def test_class_expression_with_native_member():
    def size(ctx):
        receiver = ctx.stack.pop()
        ctx.stack.push(len(receiver))
        return ctx
    obj = FlexDict({"a": 1, "size": NativeFunction(size)})
    ctx, _ = run([":$obj.size"], vars={"obj": obj})
    assert ctx.stack.snapshot() == (2,)

def test_class_expression_member_must_be_function():
    raises_kind(ErrorKind.NOT_A_FUNCTION, [":$obj.name"], vars={"obj": FlexDict({"name": "x"})})

def test_class_expression_missing_member_is_not_a_function():
    raises_kind(ErrorKind.NOT_A_FUNCTION, [":$obj.nope"], vars={"obj": FlexDict()})

def test_class_expression_without_member_is_malformed():
    raises_kind(ErrorKind.MALFORMED_INSTRUCTION, [":$obj"], vars={"obj": FlexDict()})

def test_class_expression_on_unbound_variable():
    raises_kind(ErrorKind.UNDEFINED_VARIABLE, [":$obj.f"])


# --- Calls ---

def test_call_program_function():
    ctx, _ = run(["double"], functions={"double": ["&n", "$n", "$n", "+"]}, stack=[21])
    assert ctx.stack.snapshot() == (42,)

def test_call_undefined_function():
    err = raises_kind(ErrorKind.UNDEFINED_FUNCTION, ["nope"])
    assert "nope" in err.message

def test_call_native_receives_and_returns_context():
    seen = []
    def probe(ctx):
        seen.append(ctx.stack.snapshot())
        ctx.stack.push("probed")
        return ctx
    ctx, _ = run([1, "probe"], functions={"probe": probe})
    assert seen == [(1,)]
    assert ctx.stack.snapshot() == (1, "probed")

def test_native_may_replace_the_context():
    def swap(ctx):
        fresh = new_context(stack=[42], functions=ctx.functions)
        return fresh
    original = new_context(functions={"swap": swap})
    ctx, _ = run(["swap", 1], original)
    assert ctx is not original
    assert ctx.stack.snapshot() == (42, 1)

@pytest.mark.parametrize("bad_return", [None, 5, {"stack": [], "vars": {}, "functions": {}}])
def test_native_returning_garbage_is_unsafe(bad_return):
    err = raises_kind(ErrorKind.UNSAFE_CONTEXT, ["bad"], functions={"bad": lambda ctx: bad_return})
    assert err.message == "On `bad': Unsafe: unknown api alteration"

def test_native_that_corrupts_stack_is_unsafe():
    def corrupt(ctx):
        ctx.stack = []
        return ctx
    raises_kind(ErrorKind.UNSAFE_CONTEXT, ["corrupt"], functions={"corrupt": corrupt})

def test_native_python_exception_is_wrapped():
    def boom(ctx):
        raise ValueError("kaboom")
    err = raises_kind(ErrorKind.NATIVE_FAILURE, ["boom"], functions={"boom": boom})
    assert "ValueError: kaboom" in err.message
    assert isinstance(err.__cause__.__cause__, ValueError)

def test_native_flex_error_keeps_its_kind():
    def pop_twice(ctx):
        ctx.stack.pop()
        ctx.stack.pop()
        return ctx
    raises_kind(ErrorKind.STACK_UNDERFLOW, [1, "pop-twice"], functions={"pop-twice": pop_twice})


# --- Error propagation ---

def test_errors_are_annotated_frame_by_frame():
    functions = {"outer": ["inner"], "inner": [1, "$missing"]}
    err = raises_kind(ErrorKind.UNDEFINED_VARIABLE, ["outer"], functions=functions)
    assert err.message == (
        "On `outer': On `inner': On `$missing': "
        "Invalid push expression: Undefined master variable: `missing'"
    )
    assert err.trace == ["$missing", "inner", "outer"]

def test_literal_instructions_are_annotated_as_json():
    err = raises_kind(ErrorKind.MALFORMED_INSTRUCTION, [{"@": ["oops"]}])
    assert err.message.startswith('On `{"@":["oops"]}\': ')


# --- Control tokens ---

@pytest.mark.parametrize("token", ["#exit", "~exit"])
def test_exit_terminates(token):
    with pytest.raises(Termination) as exc:
        run([1, token, 2])
    assert exc.value.kind is ErrorKind.TERMINATED

def test_exit_passes_through_nested_calls_unannotated():
    functions = {"a": ["b"], "b": ["c"], "c": ["#exit"]}
    ctx = new_context(functions=functions)
    with pytest.raises(Termination) as exc:
        run(["a", "never"], ctx)
    assert exc.value.message == "dead"
    assert exc.value.trace == []

def test_exit_inside_class_member():
    obj = FlexDict({"stop": Program(["~exit"])})
    with pytest.raises(Termination):
        run([":$obj.stop"], vars={"obj": obj})

@pytest.mark.parametrize("token", ["#return", "~return"])
def test_return_halts_only_current_sequence(token):
    ctx, _ = run(["inner", 1], functions={"inner": [token, 5]})
    assert ctx.stack.snapshot() == (1,)

def test_return_at_top_level_stops_evaluation():
    ctx, _ = run([1, "#return", 2])
    assert ctx.stack.snapshot() == (1,)

def test_nop_and_flush():
    ctx, _ = run([1, 2, "#nop", "#flush", 3, "~nop"])
    assert ctx.stack.snapshot() == (3,)

def test_put_formats_values():
    program = [
        ["hi"], "#put",
        1.0, "#put",
        2.5, "~put",
        True, "#put",
        None, "#put",
        {"@": [1, 2]}, "#put",
        {"!": {"a": 1}}, "#put",
        [1, "+"], "#put",
    ]
    ctx, sink = run(program)
    assert sink.output == ["hi", "1", "2.5", "true", "null", "[1,2]", '{"a":1}', '[1,"+"]']
    assert ctx.stack.snapshot() == ()

def test_put_on_empty_stack_underflows():
    raises_kind(ErrorKind.STACK_UNDERFLOW, ["#put"])

def test_clear_resets_output():
    _, sink = run([["a"], "#put", "#clear", ["b"], "~put"])
    assert sink.output == ["b"]
    assert {'topics': ['clear']} in sink.side_effects


# --- Arithmetic ---

def test_subtraction_uses_first_popped_as_left_operand():
    ctx, _ = run([3, 4, "-"])
    assert ctx.stack.snapshot() == (1,)

def test_addition_of_numbers_and_text():
    ctx, _ = run([1, 2, "+", ["lo"], ["hel"], "+"])
    assert ctx.stack.snapshot() == (3, "hello")

def test_multiplication_and_division():
    ctx, _ = run([3, 4, "*", 2, 10, "/"])
    assert ctx.stack.snapshot() == (12, 5.0)

def test_division_by_zero():
    raises_kind(ErrorKind.DIVISION_BY_ZERO, [0, 1, "/"])

@pytest.mark.parametrize(
    "program",
    [
        [1, ["a"], "+"],
        [True, False, "+"],
        [["a"], ["b"], "-"],
        [1, True, "-"],
        [FNULL, FNULL, "*"],
    ],
)
def test_arithmetic_type_errors(program):
    raises_kind(ErrorKind.TYPE_MISMATCH, program)

def test_arithmetic_underflow():
    raises_kind(ErrorKind.STACK_UNDERFLOW, [1, "+"])


# --- Output sink ---

def test_default_evaluator_records_output():
    ev = Evaluator()
    ev.evaluate(new_context(), [["x"], "#put"])
    assert ev.output.output == ["x"]

def test_evaluate_accepts_program_objects():
    ctx = evaluate(new_context(), Program([1, 2, "+"]))
    assert ctx.stack.snapshot() == (3,)

def test_stack_snapshot_type():
    ctx, _ = run([1])
    assert isinstance(ctx.stack, Stack)

def test_arithmetic_overflow_is_a_flex_error():
    raises_kind(ErrorKind.NUMBER_OVERFLOW, [7, int("9" * 400), "/"])
    raises_kind(ErrorKind.NUMBER_OVERFLOW, [1.5, 10 ** 400, "*"])


# --- Call depth ---

def test_unbounded_recursion_hits_depth_limit():
    ev = Evaluator(RecordingSink(), max_depth=5)
    ctx = new_context(functions={"loop": ["loop"]})
    with pytest.raises(FlexError) as exc:
        ev.evaluate(ctx, ["loop"])
    assert exc.value.kind is ErrorKind.RECURSION_LIMIT
    assert exc.value.trace == ["loop"] * 5
    assert exc.value.message.startswith("On `loop': On `loop': ")

def test_depth_is_released_after_a_failed_call():
    ev = Evaluator(RecordingSink(), max_depth=3)
    ctx = new_context(functions={"loop": ["loop"], "one": [1]})
    with pytest.raises(FlexError):
        ev.evaluate(ctx, ["loop"])
    ctx = ev.evaluate(ctx, ["one", "one"])
    assert ctx.stack.snapshot() == (1, 1)

def test_default_depth_limit_stays_within_python_recursion():
    raises_kind(ErrorKind.RECURSION_LIMIT, ["again"], functions={"again": ["again"]})
