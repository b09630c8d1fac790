"""
aws_devicefarm_upload - An app, test package or test spec uploaded to a
Device Farm project.

Only the name and content type can change in place; the project and the
upload type are fixed at creation. Deleting the parent project deletes its
uploads.
"""

import logging
from typing import Any, Dict, Optional

from no8s_provider.resources.aws import expand, flatten, translate_errors
from no8s_provider.resources.base import ObservedState, ResourceDescriptor
from no8s_provider.schema import Attribute, AttributeType, Presence, ResourceSchema

logger = logging.getLogger(__name__)

TYPE_NAME = "aws_devicefarm_upload"

UPLOAD_TYPES = [
    "ANDROID_APP",
    "IOS_APP",
    "WEB_APP",
    "EXTERNAL_DATA",
    "APPIUM_JAVA_JUNIT_TEST_PACKAGE",
    "APPIUM_JAVA_TESTNG_TEST_PACKAGE",
    "APPIUM_PYTHON_TEST_PACKAGE",
    "APPIUM_NODE_TEST_PACKAGE",
    "APPIUM_RUBY_TEST_PACKAGE",
    "APPIUM_WEB_JAVA_JUNIT_TEST_PACKAGE",
    "APPIUM_WEB_JAVA_TESTNG_TEST_PACKAGE",
    "APPIUM_WEB_PYTHON_TEST_PACKAGE",
    "APPIUM_WEB_NODE_TEST_PACKAGE",
    "APPIUM_WEB_RUBY_TEST_PACKAGE",
    "INSTRUMENTATION_TEST_PACKAGE",
    "XCTEST_TEST_PACKAGE",
    "XCTEST_UI_TEST_PACKAGE",
    "APPIUM_JAVA_JUNIT_TEST_SPEC",
    "APPIUM_JAVA_TESTNG_TEST_SPEC",
    "APPIUM_PYTHON_TEST_SPEC",
    "APPIUM_NODE_TEST_SPEC",
    "APPIUM_RUBY_TEST_SPEC",
    "APPIUM_WEB_JAVA_JUNIT_TEST_SPEC",
    "APPIUM_WEB_JAVA_TESTNG_TEST_SPEC",
    "APPIUM_WEB_PYTHON_TEST_SPEC",
    "APPIUM_WEB_NODE_TEST_SPEC",
    "APPIUM_WEB_RUBY_TEST_SPEC",
    "INSTRUMENTATION_TEST_SPEC",
    "XCTEST_UI_TEST_SPEC",
]

SCHEMA = ResourceSchema(
    [
        Attribute("arn", AttributeType.STRING, Presence.COMPUTED, api_name="arn"),
        Attribute(
            "project_arn",
            AttributeType.STRING,
            Presence.REQUIRED,
            force_new=True,
            constraints={"pattern": r"^arn:[^:]+:devicefarm:"},
        ),
        Attribute(
            "name",
            AttributeType.STRING,
            Presence.REQUIRED,
            constraints={"minLength": 1, "maxLength": 256},
            api_name="name",
        ),
        Attribute(
            "type",
            AttributeType.STRING,
            Presence.REQUIRED,
            force_new=True,
            constraints={"enum": UPLOAD_TYPES},
            api_name="type",
        ),
        Attribute(
            "content_type",
            AttributeType.STRING,
            Presence.OPTIONAL_COMPUTED,
            constraints={"maxLength": 64},
            api_name="contentType",
        ),
        Attribute(
            "category", AttributeType.STRING, Presence.COMPUTED, api_name="category"
        ),
        Attribute(
            "metadata", AttributeType.STRING, Presence.COMPUTED, api_name="metadata"
        ),
        Attribute("url", AttributeType.STRING, Presence.COMPUTED, api_name="url"),
    ]
)


def project_arn_from_upload_arn(arn: str) -> str:
    """
    Derive the parent project ARN.

    Upload ARNs look like
    arn:aws:devicefarm:<region>:<account>:upload:<project-id>/<upload-id>.
    """
    prefix, _, resource = arn.rpartition(":upload:")
    project_id = resource.split("/", 1)[0]
    return f"{prefix}:project:{project_id}"


def create_upload(client: Any, values: Dict[str, Any]) -> str:
    request = expand(SCHEMA, values)
    request["projectArn"] = values["project_arn"]
    with translate_errors():
        response = client.create_upload(**request)
    arn = response["upload"]["arn"]
    logger.debug(f"Device Farm upload created: {arn}")
    return arn


def find_upload(client: Any, arn: str) -> ObservedState:
    with translate_errors():
        response = client.get_upload(arn=arn)
    upload = response["upload"]
    observed = flatten(SCHEMA, upload)
    observed["project_arn"] = project_arn_from_upload_arn(upload["arn"])
    observed["status"] = upload.get("status")
    observed["message"] = upload.get("message")
    return observed


def update_upload(
    client: Any, arn: str, changes: Dict[str, Any], previous: Dict[str, Any]
) -> None:
    request: Dict[str, Any] = {"arn": arn}
    if "name" in changes:
        request["name"] = changes["name"]
    if "content_type" in changes:
        request["contentType"] = changes["content_type"]
    with translate_errors():
        client.update_upload(**request)


def delete_upload(client: Any, arn: str) -> None:
    with translate_errors():
        client.delete_upload(arn=arn)


def is_ready(observed: ObservedState) -> bool:
    return observed.get("status") != "PROCESSING"


def failure_reason(observed: ObservedState) -> Optional[str]:
    if observed.get("status") == "FAILED":
        return observed.get("message") or "upload processing failed"
    return None


DESCRIPTOR = ResourceDescriptor(
    type_name=TYPE_NAME,
    service="devicefarm",
    schema=SCHEMA,
    id_attribute="arn",
    create=create_upload,
    find=find_upload,
    delete=delete_upload,
    update=update_upload,
    is_ready=is_ready,
    failure_reason=failure_reason,
)
