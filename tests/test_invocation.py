import numpy as np
import pytest

from clkit.arguments import LocalMemory
from clkit.errors import ContractViolation, DriverError
from clkit.invocation import KernelInvocation

from _utils import ADD_SOURCE


@pytest.fixture(scope="function")
def invocation_override(request):
    """Override KernelInvocation keyword arguments."""
    return request.param if hasattr(request, "param") else {}


@pytest.fixture(scope="function")
def add_call(gpu_ctx, invocation_override):
    gpu_ctx.register_source_code(ADD_SOURCE, ["add"])
    settings = {"minimum_work_size": 70, "local_size": 16}
    settings.update(invocation_override)
    return gpu_ctx.kernel_call("add", **settings)


def launches(ctx, queue=0):
    return [c for c in ctx.queue(queue).commands if c["type"] == "kernel"]


class TestCall:
    """Calling a kernel like a function."""

    def test_call_binds_and_launches(self, gpu_ctx, add_call):
        n = np.int32(70)
        event = add_call("a", "b", "c", n)
        (launch,) = launches(gpu_ctx)
        assert launch is event.command
        assert launch["args"] == {0: "a", 1: "b", 2: "c", 3: n}
        assert launch["global_size"] == (80,)
        assert launch["local_size"] == (16,)

    def test_consecutive_calls_are_independent(self, gpu_ctx, add_call):
        add_call("a", "b", "c", np.int32(1))
        add_call("x", "y", "z", np.int32(2))
        first, second = launches(gpu_ctx)
        assert first["args"][0] == "a"
        assert second["args"][0] == "x"
        assert add_call.num_bound_arguments == 0

    def test_invoke_alias(self, gpu_ctx, add_call):
        add_call.invoke("a", "b", "c", np.int32(1))
        assert len(launches(gpu_ctx)) == 1

    def test_local_memory_argument(self, gpu_ctx, add_call):
        add_call("a", "b", LocalMemory(64), np.int32(1))
        (launch,) = launches(gpu_ctx)
        assert launch["args"][2] == ("local", 64)

    def test_too_many_arguments(self, gpu_ctx, add_call):
        """A binding failure launches nothing and resets the binder."""
        with pytest.raises(DriverError, match="-49"):
            add_call("a", "b", "c", np.int32(1), "extra")
        assert launches(gpu_ctx) == []
        assert add_call.num_bound_arguments == 0

    def test_call_after_failure_works(self, gpu_ctx, add_call):
        with pytest.raises(DriverError):
            add_call("a", "b", "c", np.int32(1), "extra")
        add_call("a", "b", "c", np.int32(1))
        assert len(launches(gpu_ctx)) == 1

    def test_minimum_work_size_can_change(self, gpu_ctx, add_call):
        add_call.minimum_work_size = 100
        add_call("a", "b", "c", np.int32(100))
        assert launches(gpu_ctx)[0]["global_size"] == (112,)

    def test_minimum_work_size_dimensions_checked(self, add_call):
        with pytest.raises(ContractViolation):
            add_call.minimum_work_size = (10, 10)


class TestConfiguration:
    def test_mismatched_dimensions(self, gpu_ctx):
        gpu_ctx.register_source_code(ADD_SOURCE, ["add"])
        with pytest.raises(ContractViolation, match="dimensionality"):
            gpu_ctx.kernel_call("add", (64, 64), 16)

    def test_unknown_kernel(self, gpu_ctx):
        with pytest.raises(LookupError):
            gpu_ctx.kernel_call("add", 64, 16)

    def test_properties(self, add_call):
        assert add_call.local_size == (16,)
        assert add_call.minimum_work_size == (70,)
        assert add_call.kernel.name == "add"

    @pytest.mark.parametrize(
        "invocation_override", [{"event_sink": []}], indirect=True
    )
    def test_event_sink(self, add_call):
        first = add_call("a", "b", "c", np.int32(1))
        second = add_call("a", "b", "c", np.int32(1))
        assert add_call._event_sink == [first, second]

    def test_set_event_sink(self, add_call):
        sink = []
        add_call.set_event_sink(sink)
        event = add_call("a", "b", "c", np.int32(1))
        assert sink == [event]

    def test_set_dependencies(self, gpu_ctx, add_call):
        deps = [object()]
        add_call.set_dependencies(deps)
        add_call("a", "b", "c", np.int32(1))
        assert launches(gpu_ctx)[0]["wait_for"] is deps

    @pytest.mark.parametrize(
        "invocation_override", [{"offset": 8, "queue": 1}], indirect=True
    )
    def test_offset_and_queue(self, gpu_ctx, add_call):
        gpu_ctx.add_queue()
        add_call("a", "b", "c", np.int32(1))
        assert launches(gpu_ctx, 0) == []
        assert launches(gpu_ctx, 1)[0]["offset"] == (8,)

    def test_offset_dimensions_checked(self, gpu_ctx):
        gpu_ctx.register_source_code(ADD_SOURCE, ["add"])
        with pytest.raises(ContractViolation):
            KernelInvocation(
                gpu_ctx, gpu_ctx.get_kernel("add"), 64, 16, offset=(0, 0)
            )


class TestPartialArguments:
    """Composing arguments across calls."""

    def test_partial_then_enqueue(self, gpu_ctx, add_call):
        add_call.partial_argument_list("a", "b")
        assert add_call.num_bound_arguments == 2
        add_call.partial_argument_list("c", np.int32(1))
        add_call.enqueue()
        (launch,) = launches(gpu_ctx)
        assert [launch["args"][i] for i in range(3)] == ["a", "b", "c"]

    def test_discard(self, add_call):
        add_call.partial_argument_list("a", "b")
        add_call.discard_partial_arguments()
        assert add_call.num_bound_arguments == 0

    def test_call_resets_partial_arguments(self, gpu_ctx, add_call):
        """A full call always binds from the first parameter."""
        add_call.partial_argument_list("stale")
        add_call("a", "b", "c", np.int32(1))
        assert launches(gpu_ctx)[0]["args"][0] == "a"
