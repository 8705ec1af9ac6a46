"""
Deployment descriptor helpers.

Returns the environment variables and the IAM statement a function needs for
tracelog to assume the delivery role, in the [hook, options] pair format used
by serverless framework helpers.
"""

from .config import TraceConfig


def serverless_configuration(config: TraceConfig) -> list[list]:
    """
    Build the deployment hooks for the given configuration.

    Example:
        [
            ["envVars", {"TRACE_LOG_ROLE_ARN": "...", ...}],
            ["iamStatement", {"action": "Sts:AssumeRole", "resource": "..."}],
        ]
    """
    return [
        [
            "envVars",
            {
                "LOG_ROLE_ARN": config.role_arn,
                "TRACE_LOG_ROLE_ARN": config.role_arn,
                "TRACE_FIREHOSE_DELIVERY_STREAM": config.delivery_stream,
                "TRACE_EXTENSION_USE_INVOKE_EVENT": 1,
            },
        ],
        [
            "iamStatement",
            {
                "action": "Sts:AssumeRole",
                "resource": config.role_arn,
            },
        ],
    ]
