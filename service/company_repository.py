from dataclasses import dataclass
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

import cache_provider
from config import companies_table
from logger import logger


@dataclass(frozen=True)
class CompanyRepository:
    """Repository wrapper around the Companies DynamoDB table."""

    _table = companies_table

    @classmethod
    def get_item(cls, company_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a single company record by ID."""
        if not company_id:
            return None

        response = cls._table.get_item(Key={"CompanyID": company_id})
        return response.get("Item")

    @classmethod
    def get_settings(cls, company_id: str) -> Dict[str, Any]:
        """Company sync settings, read through the shared cache."""
        cached = cache_provider.get_company_settings_cache(company_id)
        if cached is not None:
            return cached

        item = cls.get_item(company_id) or {}
        settings = item.get("SyncSettings")
        settings = dict(settings) if isinstance(settings, dict) else {}
        cache_provider.set_company_settings_cache(company_id, settings)
        return settings

    @classmethod
    def show_ee_declarations(cls, company_id: str) -> bool:
        """Whether the company shows declarations whose type ends in "ЕЕ"; False on lookup failure."""
        try:
            return cls.get_settings(company_id).get("ShowEeDeclarations") is True
        except ClientError as exc:
            logger.warning("Company settings lookup failed", company_id=company_id, error=str(exc))
            return False
