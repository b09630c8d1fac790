"""Unit tests for workspace.py and the acceptance harness built on it."""

import pytest

from no8s_provider.acceptance import Case, Step, check_attr, expect_resource_action
from no8s_provider.errors import LifecycleError, ValidationError
from no8s_provider.state import StateEntry, StateStore
from no8s_provider.workspace import Workspace, type_of

UPLOAD = "aws_devicefarm_upload.app"
CONFIG = "aws_sagemaker_endpoint_configuration.main"

@pytest.fixture
def workspace(registry, devicefarm, sagemaker, fast_config):
    return Workspace(
        registry,
        {"devicefarm": devicefarm, "sagemaker": sagemaker},
        config=fast_config,
    )

@pytest.fixture
def manifest(project_arn, sample_variant):
    return {
        UPLOAD: {"project_arn": project_arn, "name": "app.apk", "type": "ANDROID_APP"},
        CONFIG: {"name": "tf-acc-test-main", "production_variants": [sample_variant]},
    }

def test_type_of():
    assert type_of("aws_devicefarm_upload.app") == "aws_devicefarm_upload"
    assert type_of("aws_devicefarm_upload.app.v2") == "aws_devicefarm_upload"

# ==================== Workspace Tests ====================

@pytest.mark.asyncio
class TestWorkspace:
    """Tests for Workspace plan, apply, refresh and destroy."""

    async def test_validate(self, workspace, manifest):
        workspace.validate(manifest)

        manifest[CONFIG]["production_variants"] = []
        with pytest.raises(ValidationError):
            workspace.validate(manifest)

    async def test_validate_unknown_type(self, workspace):
        with pytest.raises(ValueError, match="Unknown resource type"):
            workspace.validate({"aws_s3_bucket.x": {}})

    async def test_plan_fresh(self, workspace, manifest, devicefarm, sagemaker):
        plans = await workspace.plan(manifest)

        assert {a: p.action for a, p in plans.items()} == {
            UPLOAD: "create",
            CONFIG: "create",
        }
        assert devicefarm.calls == []
        assert sagemaker.calls == []

    async def test_apply_records_state(self, workspace, manifest, sagemaker):
        actions = await workspace.apply(manifest)

        assert actions == {UPLOAD: "create", CONFIG: "create"}
        assert workspace.state.addresses() == [UPLOAD, CONFIG]
        assert workspace.state.get(CONFIG).identifier == "tf-acc-test-main"
        assert "tf-acc-test-main" in sagemaker.endpoint_configs

        plans = await workspace.plan(manifest)
        assert not any(p.has_changes for p in plans.values())

    async def test_removed_address_is_destroyed(self, workspace, manifest, devicefarm):
        await workspace.apply(manifest)
        upload_arn = workspace.state.get(UPLOAD).identifier
        del manifest[UPLOAD]

        plans = await workspace.plan(manifest)
        assert plans[UPLOAD].action == "destroy"

        actions = await workspace.apply(manifest)
        assert actions[UPLOAD] == "destroy"
        assert UPLOAD not in workspace.state
        assert upload_arn not in devicefarm.uploads

    async def test_partial_apply_keeps_progress(self, workspace, manifest, sagemaker):
        manifest[CONFIG]["name"] = "existing"
        sagemaker.create_endpoint_config(
            EndpointConfigName="existing",
            ProductionVariants=[{"VariantName": "v"}],
        )

        with pytest.raises(LifecycleError, match="already existing"):
            await workspace.apply(manifest)

        assert workspace.state.addresses() == [UPLOAD]

    async def test_refresh_drops_vanished(self, workspace, manifest, devicefarm):
        await workspace.apply(manifest)
        devicefarm.delete_upload(arn=workspace.state.get(UPLOAD).identifier)

        await workspace.refresh()

        assert workspace.state.addresses() == [CONFIG]

    async def test_exists(self, workspace, manifest):
        assert await workspace.exists(UPLOAD) is False
        await workspace.apply(manifest)
        assert await workspace.exists(UPLOAD) is True

    async def test_destroy_unknown_address(self, workspace):
        with pytest.raises(KeyError):
            await workspace.destroy(UPLOAD)

    async def test_destroy_all_reverse_order(self, workspace, manifest, devicefarm, sagemaker):
        await workspace.apply(manifest)

        destroyed = await workspace.destroy_all()

        assert list(destroyed) == [CONFIG, UPLOAD]
        assert len(workspace.state) == 0
        assert devicefarm.uploads == {}
        assert sagemaker.endpoint_configs == {}

    async def test_timed_out_create_is_tainted(self, workspace, manifest, devicefarm):
        devicefarm.processing_reads = 10**6
        workspace.config.lifecycle.create_timeout = 0.05

        with pytest.raises(LifecycleError, match="timed out"):
            await workspace.apply(manifest)

        entry = workspace.state.get(UPLOAD)
        first_arn = entry.identifier
        assert entry.tainted is True
        assert entry.attributes["status"] == "PROCESSING"
        assert first_arn in devicefarm.uploads
        assert CONFIG not in workspace.state

        devicefarm.processing_reads = 0
        plans = await workspace.plan(manifest)
        assert plans[UPLOAD].action == "replace"

        actions = await workspace.apply(manifest)

        assert actions[UPLOAD] == "replace"
        entry = workspace.state.get(UPLOAD)
        assert entry.tainted is False
        assert list(devicefarm.uploads) == [entry.identifier]
        assert entry.identifier != first_arn

    async def test_failed_provisioning_is_tainted(self, workspace, manifest, devicefarm):
        devicefarm.fail_processing = True

        with pytest.raises(LifecycleError, match="Invalid test spec file"):
            await workspace.apply(manifest)

        entry = workspace.state.get(UPLOAD)
        assert entry.tainted is True
        assert entry.identifier in devicefarm.uploads

        # A tainted object that is no longer configured is simply destroyed
        del manifest[UPLOAD]
        actions = await workspace.apply(manifest)
        assert actions[UPLOAD] == "destroy"
        assert devicefarm.uploads == {}

    async def test_failed_create_call_records_nothing(self, workspace, manifest, devicefarm):
        devicefarm.delete_project(arn=manifest[UPLOAD]["project_arn"])

        with pytest.raises(LifecycleError, match="Project not found"):
            await workspace.apply(manifest)

        assert len(workspace.state) == 0

    async def test_existing_state_is_used(self, registry, devicefarm, sagemaker, fast_config, manifest):
        first = Workspace(
            registry, {"devicefarm": devicefarm, "sagemaker": sagemaker}, config=fast_config
        )
        await first.apply(manifest)

        second = Workspace(
            registry,
            {"devicefarm": devicefarm, "sagemaker": sagemaker},
            config=fast_config,
            state=StateStore(
                [StateEntry.from_dict(e) for e in first.state.to_dict()["resources"]]
            ),
        )
        manifest[UPLOAD]["name"] = "renamed.apk"
        plans = await second.plan(manifest)

        assert plans[UPLOAD].action == "update"
        assert plans[CONFIG].action == "no-op"

# ==================== Acceptance Harness Tests ====================

@pytest.mark.asyncio
class TestAcceptanceRunner:
    """Failure reporting of the acceptance harness itself."""

    async def test_missing_expected_error(self, runner, manifest):
        case = Case(steps=[Step(config=manifest, expect_error="never happens")])
        with pytest.raises(AssertionError, match="expected an error"):
            await runner.run(case)
        assert len(runner.state) == 0

    async def test_unexpected_error_propagates(self, runner, manifest):
        manifest[UPLOAD]["type"] = "NOT_A_TYPE"
        with pytest.raises(ValidationError):
            await runner.run(Case(steps=[Step(config=manifest)]))

    async def test_failed_check_still_destroys(self, runner, manifest, devicefarm, sagemaker):
        case = Case(steps=[Step(config=manifest, checks=[check_attr(UPLOAD, "name", "other")])])

        with pytest.raises(AssertionError, match="expected 'other'"):
            await runner.run(case)

        assert devicefarm.uploads == {}
        assert sagemaker.endpoint_configs == {}

    async def test_failed_plan_check(self, runner, manifest):
        case = Case(
            steps=[
                Step(config=manifest, plan_checks=[expect_resource_action(UPLOAD, "update")])
            ]
        )
        with pytest.raises(AssertionError, match="expected planned action 'update'"):
            await runner.run(case)

    async def test_non_empty_plan_is_reported(self, runner, manifest, devicefarm):
        async def rename_remotely(runner):
            arn = runner.state.get(UPLOAD).identifier
            devicefarm.update_upload(arn=arn, name="changed-out-of-band")

        case = Case(steps=[Step(config=manifest, checks=[rename_remotely])])

        with pytest.raises(AssertionError, match="plan was not empty"):
            await runner.run(case)

    async def test_import_verify_reports_differences(self, runner, manifest, devicefarm):
        async def rename_remotely(runner):
            arn = runner.state.get(UPLOAD).identifier
            devicefarm.update_upload(arn=arn, name="changed-out-of-band")

        case = Case(
            steps=[
                Step(config=manifest, checks=[rename_remotely], expect_non_empty_plan=True),
                Step(
                    import_state=True,
                    resource_name=UPLOAD,
                    import_state_verify=True,
                    import_state_verify_ignore=["url"],
                ),
            ]
        )
        with pytest.raises(AssertionError, match="name: state='app.apk' imported='changed"):
            await runner.run(case)

    async def test_import_unknown_address(self, runner):
        case = Case(steps=[Step(import_state=True, resource_name=UPLOAD)])
        with pytest.raises(AssertionError, match="Not found in state"):
            await runner.run(case)

    async def test_empty_step_rejected(self, runner):
        with pytest.raises(ValueError, match="neither a config nor import_state"):
            await runner.run(Case(steps=[Step()]))
