"""Acceptance tests for aws_devicefarm_upload."""

import uuid

import pytest

from no8s_provider.acceptance import (
    Case,
    Step,
    check_attr,
    check_attr_match,
    check_attr_pair,
    check_attr_set,
    check_disappears,
    check_exists,
    expect_resource_action,
)

ADDRESS = "aws_devicefarm_upload.test"


@pytest.fixture
def rname():
    return f"tf-acc-test-{uuid.uuid4().hex[:8]}"


def upload_config(project_arn, name, upload_type="APPIUM_JAVA_TESTNG_TEST_SPEC", **extra):
    return {
        ADDRESS: {
            "project_arn": project_arn,
            "name": name,
            "type": upload_type,
            **extra,
        }
    }


@pytest.mark.asyncio
class TestDeviceFarmUpload:
    """Acceptance cases for Device Farm uploads."""

    async def test_basic(self, runner, devicefarm, project_arn, rname):
        upload = {}
        renamed = f"{rname}-updated"

        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config(project_arn, rname),
                        plan_checks=[expect_resource_action(ADDRESS, "create")],
                        checks=[
                            check_exists(ADDRESS, upload),
                            check_attr(ADDRESS, "name", rname),
                            check_attr(ADDRESS, "type", "APPIUM_JAVA_TESTNG_TEST_SPEC"),
                            check_attr(ADDRESS, "category", "PRIVATE"),
                            check_attr(ADDRESS, "project_arn", project_arn),
                            check_attr_set(ADDRESS, "url"),
                            check_attr_match(ADDRESS, "arn", r"upload:.+"),
                            check_attr_pair(ADDRESS, "id", ADDRESS, "arn"),
                        ],
                    ),
                    Step(
                        import_state=True,
                        resource_name=ADDRESS,
                        import_state_verify=True,
                        # Presigned; differs on every read
                        import_state_verify_ignore=["url"],
                    ),
                    Step(
                        config=upload_config(project_arn, renamed),
                        plan_checks=[expect_resource_action(ADDRESS, "update")],
                        checks=[
                            check_exists(ADDRESS),
                            check_attr(ADDRESS, "name", renamed),
                        ],
                    ),
                ]
            )
        )

        assert devicefarm.count("create_upload") == 1
        assert devicefarm.count("update_upload") == 1
        assert upload["arn"] not in devicefarm.uploads

    async def test_content_type(self, runner, devicefarm, project_arn, rname):
        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config(project_arn, rname),
                        checks=[
                            check_attr(ADDRESS, "content_type", "application/octet-stream")
                        ],
                    ),
                    Step(
                        config=upload_config(
                            project_arn, rname, content_type="application/x-yaml"
                        ),
                        plan_checks=[expect_resource_action(ADDRESS, "update")],
                        checks=[check_attr(ADDRESS, "content_type", "application/x-yaml")],
                    ),
                ]
            )
        )

    async def test_type_change_replaces(self, runner, devicefarm, project_arn, rname):
        first = {}
        second = {}

        async def check_replaced(runner):
            assert first["arn"] != second["arn"]
            assert first["arn"] not in devicefarm.uploads

        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config(project_arn, rname),
                        checks=[check_exists(ADDRESS, first)],
                    ),
                    Step(
                        config=upload_config(project_arn, rname, "APPIUM_PYTHON_TEST_SPEC"),
                        plan_checks=[expect_resource_action(ADDRESS, "replace")],
                        checks=[
                            check_exists(ADDRESS, second),
                            check_attr(ADDRESS, "type", "APPIUM_PYTHON_TEST_SPEC"),
                            check_replaced,
                        ],
                    ),
                ]
            )
        )

    async def test_disappears(self, runner, project_arn, rname):
        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config(project_arn, rname),
                        checks=[check_exists(ADDRESS), check_disappears(ADDRESS)],
                        expect_non_empty_plan=True,
                    )
                ]
            )
        )

    async def test_disappears_project(self, runner, devicefarm, project_arn, rname):
        async def delete_project(runner):
            devicefarm.delete_project(arn=project_arn)

        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config(project_arn, rname),
                        checks=[check_exists(ADDRESS), delete_project],
                        expect_non_empty_plan=True,
                    )
                ]
            )
        )

        assert devicefarm.uploads == {}

    async def test_waits_for_processing(self, runner, devicefarm, project_arn, rname):
        devicefarm.processing_reads = 3

        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config(project_arn, rname),
                        checks=[check_attr(ADDRESS, "status", "SUCCEEDED")],
                    )
                ]
            )
        )

        assert devicefarm.count("get_upload") > 3

    async def test_processing_failure(self, runner, devicefarm, project_arn, rname):
        devicefarm.fail_processing = True

        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config(project_arn, rname),
                        expect_error=r"failed while creating: Invalid test spec file",
                    )
                ]
            )
        )

        # The failed upload was recorded as tainted, so teardown removed it
        assert len(runner.state) == 0
        assert devicefarm.uploads == {}
        assert devicefarm.count("delete_upload") == 1

    async def test_invalid_type(self, runner, devicefarm, project_arn, rname):
        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config(project_arn, rname, "NOT_A_REAL_TYPE"),
                        expect_error=r"is not one of",
                    )
                ]
            )
        )

        assert devicefarm.calls == []

    async def test_invalid_project_arn(self, runner, devicefarm, rname):
        await runner.run(
            Case(
                steps=[
                    Step(
                        config=upload_config("arn:aws:s3:::bucket", rname),
                        expect_error=r"project_arn: .* does not match",
                    )
                ]
            )
        )

        assert devicefarm.calls == []
