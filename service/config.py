"""Configuration module for the customs declarations service."""

import os

import boto3
from dotenv import load_dotenv

from logger import logger

load_dotenv()

AWS_PROFILE = os.getenv("AWS_PROFILE")
AWS_REGION = os.getenv("AWS_REGION")
STAGE = os.getenv("STAGE")

DECLARATIONS_TABLE_NAME = os.getenv("DECLARATIONS_TABLE_NAME")
COMPANIES_TABLE_NAME = os.getenv("COMPANIES_TABLE_NAME")

NBU_API_URL = os.getenv("NBU_API_URL", "https://bank.gov.ua/NBUStatService/v1/statdirectory/exchange")
NBU_TIMEOUT_SECONDS = float(os.getenv("NBU_TIMEOUT_SECONDS", "10"))
STATISTICS_CACHE_TYPE = os.getenv("STATISTICS_CACHE_TYPE", "SimpleCache")
FLASK_SECRET_KEY = os.getenv("FLASK_SECRET_KEY")
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:8080")

if STAGE == "dev":
    session = boto3.session.Session(profile_name=AWS_PROFILE, region_name=AWS_REGION)
else:
    session = boto3.session.Session() # Use the default session (e.g., in AppRunner)

ddb = session.resource("dynamodb")
declarations_table = ddb.Table(DECLARATIONS_TABLE_NAME)
companies_table = ddb.Table(COMPANIES_TABLE_NAME)

logger.debug("Configuration loaded", stage=STAGE, region=AWS_REGION)
