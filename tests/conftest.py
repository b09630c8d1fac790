"""Pytest configuration and fixtures."""

import pytest

from fakes import FakeDeviceFarmClient, FakeSageMakerClient

from no8s_provider.acceptance import AcceptanceRunner
from no8s_provider.config import (
    AWSConfig,
    Config,
    LifecycleConfig,
    LoggingConfig,
    ResourceConfig,
    RetryConfig,
)
from no8s_provider.resources.devicefarm.upload import DESCRIPTOR as UPLOAD
from no8s_provider.resources.registry import ResourceRegistry
from no8s_provider.resources.sagemaker.endpoint_configuration import (
    DESCRIPTOR as ENDPOINT_CONFIGURATION,
)


@pytest.fixture
def fast_retry():
    """Retry policy without meaningful sleeps."""
    return RetryConfig(
        max_attempts=3,
        backoff_base_delay=0.001,
        backoff_max_delay=0.01,
        backoff_jitter_factor=0.1,
    )


@pytest.fixture
def fast_lifecycle(fast_retry):
    """Lifecycle settings with short polling and timeouts."""
    return LifecycleConfig(
        create_timeout=2.0,
        update_timeout=2.0,
        delete_timeout=2.0,
        poll_interval=0.001,
        retry=fast_retry,
    )


@pytest.fixture
def fast_config(fast_lifecycle):
    return Config(
        lifecycle=fast_lifecycle,
        aws=AWSConfig(),
        logging=LoggingConfig(),
        resources=ResourceConfig(),
    )


@pytest.fixture
def devicefarm():
    """Device Farm fake with one project."""
    client = FakeDeviceFarmClient()
    client.create_project(name="tf-acc-test")
    client.calls.clear()
    return client


@pytest.fixture
def project_arn(devicefarm):
    return next(iter(devicefarm.projects))


@pytest.fixture
def sagemaker():
    return FakeSageMakerClient()


@pytest.fixture
def registry():
    """Registry holding the built-in resource types."""
    reg = ResourceRegistry()
    reg.register(UPLOAD)
    reg.register(ENDPOINT_CONFIGURATION)
    return reg


@pytest.fixture
def runner(registry, devicefarm, sagemaker, fast_config):
    return AcceptanceRunner(
        registry,
        {"devicefarm": devicefarm, "sagemaker": sagemaker},
        config=fast_config,
    )


@pytest.fixture
def sample_variant():
    """A minimal instance-backed production variant."""
    return {
        "variant_name": "variant-1",
        "model_name": "tf-acc-test-model",
        "initial_instance_count": 2,
        "instance_type": "ml.t2.medium",
        "initial_variant_weight": 1,
    }
