from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from boto3.dynamodb.conditions import Key
from pydantic import ValidationError

from config import declarations_table
from core.constants import EXPORT_BATCH_SIZE
from core.filtering import DeclarationQuery
from core.models import Declaration
from logger import logger


def declaration_from_item(item: Dict[str, Any]) -> Optional[Declaration]:
    """Build a ``Declaration`` from a DynamoDB item; None when the item is malformed."""
    data = dict(item)
    data.setdefault("id", data.pop("DeclarationID", None))
    data.setdefault("companyId", data.pop("CompanyID", None))
    try:
        return Declaration.model_validate(data)
    except ValidationError as exc:
        logger.warning("Skipping malformed declaration item", declaration_id=data.get("id"), error=str(exc))
        return None


@dataclass(frozen=True)
class DeclarationRepository:
    """Repository wrapper around the Declarations DynamoDB table.

    Items are keyed by ``CompanyID`` (partition) and ``DeclarationID`` (sort), so a
    company's declarations come back ordered by ID.
    """

    _table = declarations_table

    @classmethod
    def get_item(cls, company_id: str, declaration_id: str) -> Optional[Declaration]:
        if not company_id or not declaration_id:
            return None

        response = cls._table.get_item(Key={"CompanyID": company_id, "DeclarationID": declaration_id})
        item = response.get("Item")
        return declaration_from_item(item) if item else None

    @classmethod
    def find_in_companies(cls, declaration_id: str, company_ids: Sequence[str]) -> Optional[Declaration]:
        """Return the declaration from the first accessible company that holds it."""
        for company_id in company_ids:
            declaration = cls.get_item(company_id, declaration_id)
            if declaration is not None:
                return declaration
        return None

    @classmethod
    def _pages(cls, company_id: str, page_size: int) -> Iterator[List[Dict[str, Any]]]:
        kwargs: Dict[str, Any] = {"KeyConditionExpression": Key("CompanyID").eq(company_id), "Limit": page_size}
        while True:
            resp = cls._table.query(**kwargs)
            items = resp.get("Items", [])
            lek = resp.get("LastEvaluatedKey")
            logger.debug("Fetched declaration page", company_id=company_id, batch=len(items), has_more=bool(lek))
            yield items
            if not lek:
                break
            kwargs["ExclusiveStartKey"] = lek

    @classmethod
    def iter_batches(cls, query: DeclarationQuery, batch_size: int = EXPORT_BATCH_SIZE) -> Iterator[List[Declaration]]:
        """Yield matching declarations in ID order, reading ``batch_size`` items per request.

        Companies are scanned one after another in the order given by the query.
        """
        for company_id in query.company_ids:
            for items in cls._pages(company_id, batch_size):
                batch = [d for d in (declaration_from_item(item) for item in items) if d is not None and query.matches(d)]
                if batch:
                    yield batch

    @classmethod
    def list_for_company(cls, company_id: str) -> List[Declaration]:
        """Every declaration of one company."""
        declarations: List[Declaration] = []
        for items in cls._pages(company_id, EXPORT_BATCH_SIZE):
            declarations.extend(d for d in (declaration_from_item(item) for item in items) if d is not None)
        logger.info("Collected declarations", company_id=company_id, count=len(declarations))
        return declarations
