import numpy as np
import pytest

from clkit import (
    ContextConfig,
    DeviceContext,
    DriverError,
    get_devices,
    get_platforms,
)

from _utils import FakeDevice, FakeDriver

np.set_printoptions(linewidth=120, precision=12)


# --------------------------------------------------------------------------- #
#                           Real-device test gating                           #
# --------------------------------------------------------------------------- #
def _first_real_device():
    for platform in get_platforms():
        devices = get_devices(platform)
        if devices:
            return devices[0]
    return None


@pytest.fixture(scope="session")
def cl_device():
    """First device of the first OpenCL platform that has one."""
    try:
        device = _first_real_device()
    except DriverError as e:
        pytest.skip(f"OpenCL platforms could not be queried: {e}")
    if device is None:
        pytest.skip("No OpenCL platform with a device available")
    return device


# --------------------------------------------------------------------------- #
#                              Fake driver fixtures                           #
# --------------------------------------------------------------------------- #
@pytest.fixture(scope="function")
def driver():
    """Fresh recording driver for each test."""
    return FakeDriver()


@pytest.fixture(scope="function")
def cpu_device():
    return FakeDevice.cpu()


@pytest.fixture(scope="function")
def gpu_device():
    return FakeDevice.gpu()


@pytest.fixture(scope="function")
def config_override(request):
    """Override ContextConfig values; parametrize indirectly to change."""
    return request.param if hasattr(request, "param") else {}


@pytest.fixture(scope="function")
def config(config_override):
    return ContextConfig(**config_override)


@pytest.fixture(scope="function")
def cpu_ctx(cpu_device, config, driver):
    """Device context for a fake CPU-class device."""
    return DeviceContext(cpu_device, config=config, driver=driver)


@pytest.fixture(scope="function")
def gpu_ctx(gpu_device, config, driver):
    """Device context for a fake GPU-class device."""
    return DeviceContext(gpu_device, config=config, driver=driver)
