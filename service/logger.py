"""Shared structured logger for the declarations service."""

import logging

from aws_lambda_powertools.logging import Logger

logger: Logger = Logger(service="customs-declarations")

for name in ["boto", "urllib3", "s3transfer", "boto3", "botocore", "nose"]:
    logging.getLogger(name).setLevel(logging.CRITICAL)
