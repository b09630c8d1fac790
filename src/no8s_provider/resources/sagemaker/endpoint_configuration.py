"""
aws_sagemaker_endpoint_configuration - Model hosting configuration for a
SageMaker endpoint.

Endpoint configurations are immutable once created: every attribute except
tags forces a replacement. They are usable as soon as the create call
returns, so there is no readiness polling.
"""

import logging
import re
import uuid
from typing import Any, Dict, Optional

from no8s_provider.resources.aws import (
    expand,
    flatten,
    list_to_tags,
    tags_to_list,
    translate_errors,
)
from no8s_provider.resources.base import ObservedState, ResourceDescriptor
from no8s_provider.schema import (
    AtLeastOneOf,
    Attribute,
    AttributeType,
    Block,
    MutuallyExclusive,
    Presence,
    ResourceSchema,
)

logger = logging.getLogger(__name__)

TYPE_NAME = "aws_sagemaker_endpoint_configuration"

DEFAULT_NAME_PREFIX = "terraform-"

# SageMaker reports a missing endpoint configuration as a plain ValidationException
NOT_FOUND_MESSAGES = ("Could not find endpoint configuration",)

UNIQUE_SUFFIX_LENGTH = 26
_GENERATED_NAME = re.compile(rf"^(.*)[0-9a-f]{{{UNIQUE_SUFFIX_LENGTH}}}$")

INSTANCE_TYPE_PATTERN = r"^ml\.[a-z0-9]+\.[a-z0-9]+$"
S3_URI_PATTERN = r"^(https|s3)://"


def _single(
    name: str, block: Block, presence: Presence = Presence.OPTIONAL, api_name=None
):
    return Attribute(
        name,
        AttributeType.BLOCK,
        presence,
        block=block,
        min_items=1 if presence == Presence.REQUIRED else None,
        max_items=1,
        api_name=api_name,
    )


CORE_DUMP_CONFIG = Block(
    [
        Attribute(
            "destination_s3_uri",
            AttributeType.STRING,
            Presence.REQUIRED,
            constraints={"pattern": S3_URI_PATTERN, "maxLength": 512},
            api_name="DestinationS3Uri",
        ),
        Attribute("kms_key_id", AttributeType.STRING, api_name="KmsKeyId"),
    ]
)

SERVERLESS_CONFIG = Block(
    [
        Attribute(
            "max_concurrency",
            AttributeType.INTEGER,
            Presence.REQUIRED,
            constraints={"minimum": 1, "maximum": 200},
            api_name="MaxConcurrency",
        ),
        Attribute(
            "memory_size_in_mb",
            AttributeType.INTEGER,
            Presence.REQUIRED,
            constraints={"enum": [1024, 2048, 3072, 4096, 5120, 6144]},
            api_name="MemorySizeInMB",
        ),
        Attribute(
            "provisioned_concurrency",
            AttributeType.INTEGER,
            constraints={"minimum": 1, "maximum": 200},
            api_name="ProvisionedConcurrency",
        ),
    ]
)

ROUTING_CONFIG = Block(
    [
        Attribute(
            "routing_strategy",
            AttributeType.STRING,
            Presence.REQUIRED,
            constraints={"enum": ["LEAST_OUTSTANDING_REQUESTS", "RANDOM"]},
            api_name="RoutingStrategy",
        ),
    ]
)

MANAGED_INSTANCE_SCALING = Block(
    [
        Attribute(
            "status",
            AttributeType.STRING,
            constraints={"enum": ["ENABLED", "DISABLED"]},
            api_name="Status",
        ),
        Attribute(
            "min_instance_count",
            AttributeType.INTEGER,
            constraints={"minimum": 0},
            api_name="MinInstanceCount",
        ),
        Attribute(
            "max_instance_count",
            AttributeType.INTEGER,
            constraints={"minimum": 1},
            api_name="MaxInstanceCount",
        ),
    ]
)

PRODUCTION_VARIANT = Block(
    [
        Attribute(
            "variant_name",
            AttributeType.STRING,
            Presence.OPTIONAL_COMPUTED,
            constraints={"maxLength": 63},
            api_name="VariantName",
        ),
        Attribute("model_name", AttributeType.STRING, api_name="ModelName"),
        Attribute(
            "initial_instance_count",
            AttributeType.INTEGER,
            constraints={"minimum": 1},
            api_name="InitialInstanceCount",
        ),
        Attribute(
            "instance_type",
            AttributeType.STRING,
            constraints={"pattern": INSTANCE_TYPE_PATTERN},
            api_name="InstanceType",
        ),
        Attribute(
            "initial_variant_weight",
            AttributeType.NUMBER,
            Presence.OPTIONAL_COMPUTED,
            constraints={"minimum": 0},
            api_name="InitialVariantWeight",
        ),
        Attribute(
            "accelerator_type",
            AttributeType.STRING,
            constraints={
                "enum": [
                    "ml.eia1.medium",
                    "ml.eia1.large",
                    "ml.eia1.xlarge",
                    "ml.eia2.medium",
                    "ml.eia2.large",
                    "ml.eia2.xlarge",
                ]
            },
            api_name="AcceleratorType",
        ),
        Attribute(
            "enable_ssm_access",
            AttributeType.BOOLEAN,
            default=False,
            api_name="EnableSSMAccess",
        ),
        Attribute(
            "inference_ami_version",
            AttributeType.STRING,
            api_name="InferenceAmiVersion",
        ),
        Attribute(
            "volume_size_in_gb",
            AttributeType.INTEGER,
            constraints={"minimum": 1, "maximum": 512},
            api_name="VolumeSizeInGB",
        ),
        Attribute(
            "model_data_download_timeout_in_seconds",
            AttributeType.INTEGER,
            constraints={"minimum": 60, "maximum": 3600},
            api_name="ModelDataDownloadTimeoutInSeconds",
        ),
        Attribute(
            "container_startup_health_check_timeout_in_seconds",
            AttributeType.INTEGER,
            constraints={"minimum": 60, "maximum": 3600},
            api_name="ContainerStartupHealthCheckTimeoutInSeconds",
        ),
        _single("core_dump_config", CORE_DUMP_CONFIG, api_name="CoreDumpConfig"),
        _single("serverless_config", SERVERLESS_CONFIG, api_name="ServerlessConfig"),
        _single("routing_config", ROUTING_CONFIG, api_name="RoutingConfig"),
        _single(
            "managed_instance_scaling",
            MANAGED_INSTANCE_SCALING,
            api_name="ManagedInstanceScaling",
        ),
    ]
)

CAPTURE_CONTENT_TYPE_HEADER = Block(
    [
        Attribute(
            "csv_content_types",
            AttributeType.SET,
            element_type=AttributeType.STRING,
            min_items=1,
            max_items=10,
            api_name="CsvContentTypes",
        ),
        Attribute(
            "json_content_types",
            AttributeType.SET,
            element_type=AttributeType.STRING,
            min_items=1,
            max_items=10,
            api_name="JsonContentTypes",
        ),
    ],
    rules=[AtLeastOneOf("csv_content_types", "json_content_types")],
)

DATA_CAPTURE_CONFIG = Block(
    [
        Attribute(
            "enable_capture",
            AttributeType.BOOLEAN,
            default=False,
            api_name="EnableCapture",
        ),
        Attribute(
            "initial_sampling_percentage",
            AttributeType.INTEGER,
            Presence.REQUIRED,
            constraints={"minimum": 0, "maximum": 100},
            api_name="InitialSamplingPercentage",
        ),
        Attribute(
            "destination_s3_uri",
            AttributeType.STRING,
            Presence.REQUIRED,
            constraints={"pattern": S3_URI_PATTERN},
            api_name="DestinationS3Uri",
        ),
        Attribute("kms_key_id", AttributeType.STRING, api_name="KmsKeyId"),
        Attribute(
            "capture_options",
            AttributeType.BLOCK,
            Presence.REQUIRED,
            block=Block(
                [
                    Attribute(
                        "capture_mode",
                        AttributeType.STRING,
                        Presence.REQUIRED,
                        constraints={"enum": ["Input", "Output", "InputAndOutput"]},
                        api_name="CaptureMode",
                    )
                ],
                ordered=False,
            ),
            min_items=1,
            max_items=2,
            api_name="CaptureOptions",
        ),
        _single(
            "capture_content_type_header",
            CAPTURE_CONTENT_TYPE_HEADER,
            api_name="CaptureContentTypeHeader",
        ),
    ]
)

NOTIFICATION_CONFIG = Block(
    [
        Attribute("success_topic", AttributeType.STRING, api_name="SuccessTopic"),
        Attribute("error_topic", AttributeType.STRING, api_name="ErrorTopic"),
        Attribute(
            "include_inference_response_in",
            AttributeType.SET,
            element_type=AttributeType.STRING,
            constraints={
                "enum": ["SUCCESS_NOTIFICATION_TOPIC", "ERROR_NOTIFICATION_TOPIC"]
            },
            api_name="IncludeInferenceResponseIn",
        ),
    ]
)

ASYNC_INFERENCE_CONFIG = Block(
    [
        _single(
            "client_config",
            Block(
                [
                    Attribute(
                        "max_concurrent_invocations_per_instance",
                        AttributeType.INTEGER,
                        constraints={"minimum": 1, "maximum": 1000},
                        api_name="MaxConcurrentInvocationsPerInstance",
                    )
                ]
            ),
            api_name="ClientConfig",
        ),
        _single(
            "output_config",
            Block(
                [
                    Attribute(
                        "s3_output_path",
                        AttributeType.STRING,
                        Presence.REQUIRED,
                        constraints={"pattern": S3_URI_PATTERN},
                        api_name="S3OutputPath",
                    ),
                    Attribute(
                        "s3_failure_path",
                        AttributeType.STRING,
                        constraints={"pattern": S3_URI_PATTERN},
                        api_name="S3FailurePath",
                    ),
                    Attribute("kms_key_id", AttributeType.STRING, api_name="KmsKeyId"),
                    _single(
                        "notification_config",
                        NOTIFICATION_CONFIG,
                        api_name="NotificationConfig",
                    ),
                ]
            ),
            Presence.REQUIRED,
            api_name="OutputConfig",
        ),
    ]
)

SCHEMA = ResourceSchema(
    [
        Attribute(
            "arn", AttributeType.STRING, Presence.COMPUTED, api_name="EndpointConfigArn"
        ),
        Attribute(
            "name",
            AttributeType.STRING,
            Presence.OPTIONAL_COMPUTED,
            force_new=True,
            constraints={"maxLength": 63, "pattern": r"^[a-zA-Z0-9](-*[a-zA-Z0-9])*$"},
            api_name="EndpointConfigName",
        ),
        Attribute(
            "name_prefix",
            AttributeType.STRING,
            Presence.OPTIONAL_COMPUTED,
            force_new=True,
            constraints={"maxLength": 63 - UNIQUE_SUFFIX_LENGTH},
        ),
        Attribute(
            "kms_key_arn", AttributeType.STRING, force_new=True, api_name="KmsKeyId"
        ),
        Attribute(
            "production_variants",
            AttributeType.BLOCK,
            Presence.REQUIRED,
            force_new=True,
            block=PRODUCTION_VARIANT,
            min_items=1,
            max_items=10,
            api_name="ProductionVariants",
        ),
        Attribute(
            "shadow_production_variants",
            AttributeType.BLOCK,
            force_new=True,
            block=PRODUCTION_VARIANT,
            max_items=10,
            api_name="ShadowProductionVariants",
        ),
        Attribute(
            "data_capture_config",
            AttributeType.BLOCK,
            force_new=True,
            block=DATA_CAPTURE_CONFIG,
            max_items=1,
            api_name="DataCaptureConfig",
        ),
        Attribute(
            "async_inference_config",
            AttributeType.BLOCK,
            force_new=True,
            block=ASYNC_INFERENCE_CONFIG,
            max_items=1,
            api_name="AsyncInferenceConfig",
        ),
        Attribute("tags", AttributeType.MAP, element_type=AttributeType.STRING),
        Attribute(
            "tags_all",
            AttributeType.MAP,
            Presence.COMPUTED,
            element_type=AttributeType.STRING,
        ),
    ],
    rules=[MutuallyExclusive("name", "name_prefix")],
)


def unique_suffix() -> str:
    return uuid.uuid4().hex[:UNIQUE_SUFFIX_LENGTH]


def generate_name(name: Optional[str], name_prefix: Optional[str]) -> str:
    """Use the given name, or build one from the prefix and a unique suffix."""
    if name:
        return name
    return f"{name_prefix or DEFAULT_NAME_PREFIX}{unique_suffix()}"


def name_prefix_from_name(name: str) -> Optional[str]:
    """Recover the prefix of a generated name, or None if it was not generated."""
    match = _GENERATED_NAME.match(name)
    return match.group(1) if match else None


def _with_variant_names(variants: Any) -> Any:
    for variant in variants or []:
        if not variant.get("VariantName"):
            variant["VariantName"] = f"variant-{unique_suffix()}"
    return variants


def create_endpoint_configuration(client: Any, values: Dict[str, Any]) -> str:
    name = generate_name(values.get("name"), values.get("name_prefix"))
    request = expand(SCHEMA, values)
    request["EndpointConfigName"] = name
    _with_variant_names(request.get("ProductionVariants"))
    _with_variant_names(request.get("ShadowProductionVariants"))
    if values.get("tags"):
        request["Tags"] = tags_to_list(values["tags"])

    with translate_errors():
        client.create_endpoint_config(**request)
    logger.debug(f"SageMaker endpoint configuration created: {name}")
    return name


def find_endpoint_configuration(client: Any, name: str) -> ObservedState:
    with translate_errors(NOT_FOUND_MESSAGES):
        response = client.describe_endpoint_config(EndpointConfigName=name)
        tags = client.list_tags(ResourceArn=response["EndpointConfigArn"])

    observed = flatten(SCHEMA, response)
    observed["name_prefix"] = name_prefix_from_name(response["EndpointConfigName"])
    observed["tags"] = list_to_tags(tags.get("Tags"))
    observed["tags_all"] = dict(observed["tags"])
    return observed


def update_endpoint_configuration(
    client: Any, name: str, changes: Dict[str, Any], previous: Dict[str, Any]
) -> None:
    """Only tags change in place; repeating the same call is harmless."""
    if "tags" not in changes:
        return
    new_tags = changes.get("tags") or {}
    old_tags = previous.get("tags") or {}

    with translate_errors(NOT_FOUND_MESSAGES):
        described = client.describe_endpoint_config(EndpointConfigName=name)
        arn = described["EndpointConfigArn"]
        removed = sorted(k for k in old_tags if k not in new_tags)
        if removed:
            client.delete_tags(ResourceArn=arn, TagKeys=removed)
        added = {k: v for k, v in new_tags.items() if old_tags.get(k) != v}
        if added:
            client.add_tags(ResourceArn=arn, Tags=tags_to_list(added))


def delete_endpoint_configuration(client: Any, name: str) -> None:
    with translate_errors(NOT_FOUND_MESSAGES):
        client.delete_endpoint_config(EndpointConfigName=name)


DESCRIPTOR = ResourceDescriptor(
    type_name=TYPE_NAME,
    service="sagemaker",
    schema=SCHEMA,
    id_attribute="name",
    create=create_endpoint_configuration,
    find=find_endpoint_configuration,
    delete=delete_endpoint_configuration,
    update=update_endpoint_configuration,
)
