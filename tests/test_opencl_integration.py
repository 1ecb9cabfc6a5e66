"""End-to-end tests against a real OpenCL device.

Skipped when no OpenCL platform with a device is installed.
"""

import numpy as np
import pytest

from clkit import (
    CompilationError,
    ContextConfig,
    DeviceContext,
    LocalMemory,
    SourceModule,
)

from _utils import ADD_SOURCE

pytestmark = pytest.mark.opencl

REDUCE_SOURCE = """
__kernel void block_sum(__global const float* x, __global float* out,
                        __local float* scratch, const int n)
{
  int gid = get_global_id(0);
  int lid = get_local_id(0);
  scratch[lid] = gid < n ? x[gid] : 0.0f;
  barrier(CLK_LOCAL_MEM_FENCE);
  for (int s = get_local_size(0) / 2; s > 0; s >>= 1) {
    if (lid < s) scratch[lid] += scratch[lid + s];
    barrier(CLK_LOCAL_MEM_FENCE);
  }
  if (lid == 0) out[get_group_id(0)] = scratch[0];
}
"""


@pytest.fixture(scope="module")
def ctx(cl_device):
    return DeviceContext(cl_device, config=ContextConfig(verbosity="default"))


def test_vector_add(ctx):
    n = 70
    a = np.arange(n, dtype=np.float32)
    b = np.full(n, 2.0, dtype=np.float32)
    out = np.zeros(n, dtype=np.float32)

    ctx.register_source_code(ADD_SOURCE, ["add"], program_id="it_add")
    buf_a = ctx.create_input_buffer(n, initial_data=a)
    buf_b = ctx.create_input_buffer(n, initial_data=b)
    buf_c = ctx.create_output_buffer(n)

    add = ctx.kernel_call("add", n, 16)
    add(buf_a, buf_b, buf_c, np.int32(n))
    ctx.memcpy_d2h(out, buf_c)
    ctx.finish()
    np.testing.assert_allclose(out, a + b)


def test_register_twice_builds_once(ctx):
    ctx.register_source_code(ADD_SOURCE, ["add"], program_id="it_twice")
    builds = ctx.time_logger.count("stop", category="build")
    ctx.register_source_code(ADD_SOURCE, ["add"], program_id="it_twice")
    assert ctx.time_logger.count("stop", category="build") == builds


def test_local_memory_reduction(ctx):
    n, local = 256, 64
    x = np.ones(n, dtype=np.float32)
    out = np.zeros(n // local, dtype=np.float32)
    ctx.register_source_code(REDUCE_SOURCE, ["block_sum"])
    buf_x = ctx.create_input_buffer(n, initial_data=x)
    buf_out = ctx.create_output_buffer(out.size)

    call = ctx.kernel_call("block_sum", n, local)
    call(buf_x, buf_out, LocalMemory.of(local), np.int32(n))
    ctx.memcpy_d2h(out, buf_out)
    np.testing.assert_allclose(out, np.full(out.size, local))


def test_range_transfers(ctx):
    buf = ctx.create_buffer(8, np.float32)
    ctx.memcpy_h2d(buf, np.zeros(8, dtype=np.float32))
    ctx.memcpy_h2d(buf, np.array([5.0, 6.0], dtype=np.float32), 3, 5)
    out = np.zeros(8, dtype=np.float32)
    ctx.memcpy_d2h(out, buf)
    np.testing.assert_array_equal(out, [0, 0, 0, 5, 6, 0, 0, 0])


def test_source_module_instantiations(ctx):
    fill = SourceModule(
        "fill",
        """
        __kernel void fill(__global T* y)
        {
          int gid = get_global_id(0);
          if (gid < N) y[gid] = (T)VALUE;
        }
        """,
        entrypoints="fill",
        types={"T": np.float32},
        constants={"N": 10, "VALUE": 3},
    )
    ints = fill.instantiate(types={"T": np.int32}, constants={"VALUE": 7})

    for module, dtype, value in ((fill, np.float32, 3), (ints, np.int32, 7)):
        buf = ctx.create_buffer(10, dtype)
        module.kernel(ctx, "fill", 10, 8)(buf)
        out = np.zeros(10, dtype=dtype)
        ctx.memcpy_d2h(out, buf)
        np.testing.assert_array_equal(out, np.full(10, value, dtype=dtype))


def test_compile_error_reports_log(ctx):
    with pytest.raises(CompilationError) as excinfo:
        ctx.register_source_code(
            "__kernel void bad(__global float* x) { x[0] = undefined_name; }",
            ["bad"],
        )
    assert ctx.device_name in str(excinfo.value)
    assert "bad" not in ctx.cache
