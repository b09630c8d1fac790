"""Unit tests for lifecycle.py - The generic lifecycle controller."""

import asyncio
import dataclasses

import pytest

from fakes import client_error

from no8s_provider.errors import (
    ConflictError,
    LifecycleError,
    NotFoundError,
    ProviderError,
    ProvisioningFailedError,
    ResourceTimeoutError,
    RetryExhaustedError,
    ValidationError,
)
from no8s_provider.events import EventBus, EventType
from no8s_provider.lifecycle import LifecycleController, LifecycleState
from no8s_provider.reconciler import ChangeAction
from no8s_provider.resources.devicefarm.upload import DESCRIPTOR as UPLOAD

# ==================== Test Helpers ====================


async def next_events(subscription, count):
    return [
        await asyncio.wait_for(subscription.__anext__(), timeout=1.0)
        for _ in range(count)
    ]


@pytest.fixture
def desired(project_arn):
    return {
        "project_arn": project_arn,
        "name": "tf-acc-test-upload",
        "type": "APPIUM_JAVA_TESTNG_TEST_SPEC",
    }


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def controller(devicefarm, fast_lifecycle, bus):
    return LifecycleController(UPLOAD, devicefarm, config=fast_lifecycle, event_bus=bus)


def throttled(operation="GetUpload"):
    return client_error("ThrottlingException", "Rate exceeded", operation)


# ==================== Create Tests ====================


@pytest.mark.asyncio
class TestCreate:
    """Tests for LifecycleController.create."""

    async def test_create(self, controller, devicefarm, desired, bus):
        _, sub = bus.subscribe()

        observed = await controller.create(desired)

        assert controller.state == LifecycleState.ACTIVE
        assert controller.identifier == observed["arn"]
        assert observed["arn"] in devicefarm.uploads
        assert observed["name"] == "tf-acc-test-upload"
        assert observed["category"] == "PRIVATE"
        assert observed["project_arn"] == desired["project_arn"]

        (event,) = await next_events(sub, 1)
        assert event.event_type == EventType.CREATED
        assert event.identifier == observed["arn"]
        assert event.state == "active"

    async def test_invalid_config_makes_no_remote_call(self, controller, devicefarm, desired):
        desired["type"] = "NOT_A_TYPE"

        with pytest.raises(ValidationError):
            await controller.create(desired)

        assert devicefarm.calls == []
        assert controller.state == LifecycleState.ABSENT

    async def test_computed_attribute_rejected(self, controller, devicefarm, desired):
        desired["url"] = "https://example.com"

        with pytest.raises(ValidationError, match="computed"):
            await controller.create(desired)
        assert devicefarm.calls == []

    async def test_waits_until_ready(self, controller, devicefarm, desired):
        devicefarm.processing_reads = 2

        observed = await controller.create(desired)

        assert observed["status"] == "SUCCEEDED"
        assert devicefarm.count("get_upload") == 3

    async def test_terminal_failure(self, controller, devicefarm, desired, bus):
        devicefarm.fail_processing = True
        _, sub = bus.subscribe()

        with pytest.raises(LifecycleError) as exc_info:
            await controller.create(desired)

        error = exc_info.value
        assert isinstance(error.cause, ProvisioningFailedError)
        assert error.state == "creating"
        assert error.identifier is not None
        assert "Invalid test spec file" in str(error)
        assert controller.state == LifecycleState.ERROR

        (event,) = await next_events(sub, 1)
        assert event.event_type == EventType.FAILED

    async def test_timeout_reports_last_observed(self, controller, devicefarm, desired):
        devicefarm.processing_reads = 10**6

        with pytest.raises(LifecycleError) as exc_info:
            await controller.create(desired, timeout=0.05)

        cause = exc_info.value.cause
        assert isinstance(cause, ResourceTimeoutError)
        assert cause.last_observed["status"] == "PROCESSING"
        # Nothing is rolled back
        assert cause.identifier in devicefarm.uploads

    async def test_throttling_is_retried(self, controller, devicefarm, desired):
        devicefarm.inject("create_upload", throttled("CreateUpload"))

        await controller.create(desired)

        assert devicefarm.count("create_upload") == 2
        assert len(devicefarm.uploads) == 1

    async def test_retries_exhausted(self, controller, devicefarm, desired):
        devicefarm.inject("create_upload", throttled("CreateUpload"), times=3)

        with pytest.raises(LifecycleError) as exc_info:
            await controller.create(desired)

        assert isinstance(exc_info.value.cause, RetryExhaustedError)
        assert exc_info.value.identifier is None
        assert "(new) failed while creating" in str(exc_info.value)

    async def test_missing_parent_is_annotated(self, controller, desired):
        desired["project_arn"] = (
            "arn:aws:devicefarm:us-west-2:123456789012:project:missing"
        )

        with pytest.raises(LifecycleError) as exc_info:
            await controller.create(desired)
        assert isinstance(exc_info.value.cause, NotFoundError)


# ==================== Read Tests ====================


@pytest.mark.asyncio
class TestRead:
    """Tests for LifecycleController.read."""

    async def test_read(self, controller, desired):
        created = await controller.create(desired)
        observed = await controller.read()
        assert observed["arn"] == created["arn"]
        assert controller.state == LifecycleState.ACTIVE

    async def test_read_without_identifier(self, controller):
        assert await controller.read() is None

    async def test_missing_object_is_drift(self, controller, devicefarm, desired, bus):
        created = await controller.create(desired)
        devicefarm.delete_upload(arn=created["arn"])
        _, sub = bus.subscribe()

        assert await controller.read() is None
        assert controller.state == LifecycleState.ABSENT

        (event,) = await next_events(sub, 1)
        assert event.event_type == EventType.DRIFTED

    async def test_other_errors_are_annotated(self, controller, devicefarm, desired):
        created = await controller.create(desired)
        devicefarm.inject(
            "get_upload", client_error("AccessDeniedException", "denied", "GetUpload")
        )

        with pytest.raises(LifecycleError) as exc_info:
            await controller.read()

        assert exc_info.value.identifier == created["arn"]
        assert type(exc_info.value.cause) is ProviderError


# ==================== Update Tests ====================


@pytest.mark.asyncio
class TestUpdate:
    """Tests for LifecycleController.update."""

    async def test_update_in_place(self, controller, devicefarm, desired, bus):
        created = await controller.create(desired)
        _, sub = bus.subscribe()

        desired["name"] = "tf-acc-test-upload-updated"
        diff = controller.reconciler.diff(desired, created)
        observed = await controller.update(diff)

        assert observed["arn"] == created["arn"]
        assert observed["name"] == "tf-acc-test-upload-updated"
        assert devicefarm.uploads[created["arn"]]["name"] == "tf-acc-test-upload-updated"
        (event,) = await next_events(sub, 1)
        assert event.event_type == EventType.UPDATED

    async def test_update_is_repeatable(self, controller, desired):
        created = await controller.create(desired)
        desired["content_type"] = "application/x-yaml"
        diff = controller.reconciler.diff(desired, created)

        await controller.update(diff)
        observed = await controller.update(diff)

        assert observed["content_type"] == "application/x-yaml"

    async def test_replace_diff_rejected(self, controller, desired):
        created = await controller.create(desired)
        desired["type"] = "APPIUM_PYTHON_TEST_SPEC"
        diff = controller.reconciler.diff(desired, created)
        assert diff.action == ChangeAction.REPLACE

        with pytest.raises(ValueError, match="replacement"):
            await controller.update(diff)

    async def test_empty_diff_reads(self, controller, devicefarm, desired):
        created = await controller.create(desired)
        diff = controller.reconciler.diff(desired, created)

        observed = await controller.update(diff)

        assert observed["arn"] == created["arn"]
        assert devicefarm.count("update_upload") == 0

    async def test_type_without_updates(self, devicefarm, fast_lifecycle, desired):
        descriptor = dataclasses.replace(UPLOAD, update=None)
        controller = LifecycleController(descriptor, devicefarm, config=fast_lifecycle)
        created = await controller.create(desired)
        desired["name"] = "renamed"

        with pytest.raises(LifecycleError) as exc_info:
            await controller.update(controller.reconciler.diff(desired, created))

        assert isinstance(exc_info.value.cause, ConflictError)
        assert exc_info.value.state == "updating"


# ==================== Delete Tests ====================


@pytest.mark.asyncio
class TestDelete:
    """Tests for LifecycleController.delete."""

    async def test_delete(self, controller, devicefarm, desired, bus):
        created = await controller.create(desired)
        _, sub = bus.subscribe()

        await controller.delete()

        assert created["arn"] not in devicefarm.uploads
        assert controller.state == LifecycleState.ABSENT
        assert controller.identifier is None
        (event,) = await next_events(sub, 1)
        assert event.event_type == EventType.DELETED

    async def test_delete_absent_is_noop(self, controller, devicefarm, desired):
        created = await controller.create(desired)
        devicefarm.delete_upload(arn=created["arn"])

        await controller.delete(created["arn"])

        assert controller.state == LifecycleState.ABSENT

    async def test_delete_without_identifier(self, controller, devicefarm):
        await controller.delete()
        assert devicefarm.calls == []
        assert controller.state == LifecycleState.ABSENT

    async def test_delete_failure(self, controller, devicefarm, desired):
        created = await controller.create(desired)
        devicefarm.inject(
            "delete_upload", client_error("ConflictException", "in use", "DeleteUpload")
        )

        with pytest.raises(LifecycleError) as exc_info:
            await controller.delete()

        assert exc_info.value.state == "deleting"
        assert isinstance(exc_info.value.cause, ConflictError)
        assert created["arn"] in devicefarm.uploads


# ==================== Plan / Reconcile Tests ====================


@pytest.mark.asyncio
class TestReconcile:
    """Tests for LifecycleController.plan and reconcile."""

    async def test_plan_create(self, controller, devicefarm, desired):
        plan = await controller.plan(desired)
        assert plan.action == "create"
        assert devicefarm.calls == []

    async def test_reconcile_create_then_noop(self, controller, devicefarm, desired):
        first = await controller.reconcile(desired)
        second = await controller.reconcile(desired, first.identifier)

        assert first.action == "create"
        assert second.action == "no-op"
        assert second.identifier == first.identifier
        assert devicefarm.count("create_upload") == 1

    async def test_reconcile_update(self, controller, desired):
        first = await controller.reconcile(desired)
        desired["name"] = "renamed"

        result = await controller.reconcile(desired, first.identifier)

        assert result.action == "update"
        assert result.identifier == first.identifier
        assert result.observed["name"] == "renamed"

    async def test_reconcile_replace(self, controller, devicefarm, desired, bus):
        first = await controller.reconcile(desired)
        desired["type"] = "APPIUM_PYTHON_TEST_SPEC"
        _, sub = bus.subscribe()

        result = await controller.reconcile(desired, first.identifier)

        assert result.action == "replace"
        assert result.identifier != first.identifier
        assert first.identifier not in devicefarm.uploads
        assert devicefarm.uploads[result.identifier]["type"] == "APPIUM_PYTHON_TEST_SPEC"
        events = await next_events(sub, 3)
        assert [e.event_type for e in events] == [
            EventType.DELETED,
            EventType.CREATED,
            EventType.REPLACED,
        ]

    async def test_reconcile_recreates_after_drift(self, controller, devicefarm, desired):
        first = await controller.reconcile(desired)
        devicefarm.delete_upload(arn=first.identifier)

        result = await controller.reconcile(desired, first.identifier)

        assert result.action == "create"
        assert result.identifier in devicefarm.uploads

    async def test_plan_validates(self, controller, desired):
        del desired["name"]
        with pytest.raises(ValidationError):
            await controller.plan(desired)

    async def test_tainted_object_is_replaced(self, controller, devicefarm, desired):
        first = await controller.reconcile(desired)

        plan = await controller.plan(desired, first.identifier, tainted=True)
        assert plan.action == "replace"
        assert plan.diff is None

        result = await controller.reconcile(desired, first.identifier, tainted=True)

        assert result.action == "replace"
        assert list(devicefarm.uploads) == [result.identifier]

    async def test_vanished_tainted_object_is_created(
        self, controller, devicefarm, desired
    ):
        first = await controller.reconcile(desired)
        devicefarm.delete_upload(arn=first.identifier)

        plan = await controller.plan(desired, first.identifier, tainted=True)

        assert plan.action == "create"
