"""
Repository layer over the MongoDB collections.

Every document carries its own `<entity>_id` (uuid4 string) plus `created_at`
and `updated_at`. Reads always project out Mongo's `_id` so documents can be
returned from routes unchanged.
"""
import logging
import re
from typing import Optional, Dict, Any, List, Tuple

from pymongo import ReturnDocument

from database import database
from models import utc_now, new_id

logger = logging.getLogger(__name__)

NO_ID = {"_id": 0}


class Repository:
    """Generic CRUD over one collection."""

    collection_name: str = ""
    id_field: str = ""

    def _collection(self):
        return getattr(database.get_db(), self.collection_name)

    async def find_by_id(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return await self._collection().find_one({self.id_field: doc_id}, NO_ID)

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._collection().find_one(query, NO_ID)

    async def find_many(
        self,
        query: Dict[str, Any],
        sort: Optional[List[Tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self._collection().find(query, NO_ID)
        if sort:
            cursor = cursor.sort(sort)
        if skip:
            cursor = cursor.skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=limit or None)

    async def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        return await self._collection().count_documents(query or {})

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = utc_now()
        doc = {self.id_field: new_id(), **data, "created_at": now, "updated_at": now}
        await self._collection().insert_one(doc)
        # insert_one adds the ObjectId in place
        doc.pop("_id", None)
        return doc

    async def update(self, doc_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._collection().find_one_and_update(
            {self.id_field: doc_id},
            {"$set": {**updates, "updated_at": utc_now()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )

    async def delete(self, doc_id: str) -> bool:
        result = await self._collection().delete_one({self.id_field: doc_id})
        return result.deleted_count > 0


class UserRepository(Repository):
    collection_name = "users"
    id_field = "user_id"

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self.find_one({"email": email.strip().lower()})

    async def create(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return await super().create({**data, "email": data["email"].strip().lower()})

    async def update_by_email(self, email: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._collection().find_one_and_update(
            {"email": email.strip().lower()},
            {"$set": {**updates, "updated_at": utc_now()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )

    async def find_all(
        self,
        page: int = 1,
        page_size: int = 10,
        search_name: Optional[str] = None,
        filter_plan: Optional[str] = None,
        filter_status: Optional[str] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Paginated user listing joined with each user's subscription."""
        pipeline: List[Dict[str, Any]] = []
        if search_name:
            pipeline.append({"$match": {"name": {"$regex": re.escape(search_name), "$options": "i"}}})
        pipeline += [
            {"$lookup": {
                "from": "subscriptions",
                "localField": "user_id",
                "foreignField": "user_id",
                "as": "subscription",
            }},
            {"$unwind": {"path": "$subscription", "preserveNullAndEmptyArrays": True}},
        ]
        sub_filter: Dict[str, Any] = {}
        if filter_plan:
            sub_filter["subscription.plan"] = filter_plan
        if filter_status:
            sub_filter["subscription.status"] = filter_status
        if sub_filter:
            pipeline.append({"$match": sub_filter})
        pipeline.append({"$facet": {
            "users": [
                {"$sort": {"created_at": -1}},
                {"$skip": max(page - 1, 0) * page_size},
                {"$limit": page_size},
                {"$project": {"_id": 0, "password_hash": 0, "subscription._id": 0}},
            ],
            "total": [{"$count": "count"}],
        }})

        result = await self._collection().aggregate(pipeline).to_list(length=1)
        if not result:
            return [], 0
        facet = result[0]
        total = facet["total"][0]["count"] if facet.get("total") else 0
        return facet.get("users", []), total


class SubscriptionRepository(Repository):
    collection_name = "subscriptions"
    id_field = "subscription_id"

    async def find_by_user_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one({"user_id": user_id})

    async def find_by_customer_id(self, customer_id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one({"customer_id": customer_id})

    async def update_by_user_id(self, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._collection().find_one_and_update(
            {"user_id": user_id},
            {"$set": {**updates, "updated_at": utc_now()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )

    async def update_by_customer_id(self, customer_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._collection().find_one_and_update(
            {"customer_id": customer_id},
            {"$set": {**updates, "updated_at": utc_now()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )


class VerificationTokenRepository(Repository):
    collection_name = "verification_tokens"
    id_field = "token"

    async def find_valid(self, token: str, identifier: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query: Dict[str, Any] = {"token": token, "expires": {"$gt": utc_now()}}
        if identifier:
            query["identifier"] = identifier.strip().lower()
        return await self.find_one(query)

    async def create_token(self, identifier: str, token: str, expires) -> Dict[str, Any]:
        doc = {"identifier": identifier.strip().lower(), "token": token, "expires": expires}
        await self._collection().insert_one(doc)
        doc.pop("_id", None)
        return doc

    async def delete_token(self, identifier: str, token: str) -> bool:
        result = await self._collection().delete_one(
            {"identifier": identifier.strip().lower(), "token": token}
        )
        return result.deleted_count > 0


class NoteRepository(Repository):
    collection_name = "notes"
    id_field = "note_id"

    SORTS = {
        "newest": [("created_at", -1)],
        "oldest": [("created_at", 1)],
        "title": [("title", 1)],
    }

    def _query(self, user_id: str, company_id: Optional[str], search: Optional[str]) -> Dict[str, Any]:
        query: Dict[str, Any] = {"user_id": user_id}
        if company_id:
            query["company_id"] = company_id
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"title": pattern}, {"content": pattern}]
        return query

    async def find_for_user(
        self,
        user_id: str,
        company_id: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = "newest",
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[Dict[str, Any]], int]:
        query = self._query(user_id, company_id, search)
        notes = await self.find_many(query, sort=self.SORTS.get(sort_by, self.SORTS["newest"]), skip=skip, limit=limit)
        total = await self.count(query)
        return notes, total


class CompanyRepository(Repository):
    collection_name = "companies"
    id_field = "company_id"

    async def find_by_user_id(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.find_many({"user_id": user_id}, sort=[("created_at", -1)])

    async def find_all(self) -> List[Dict[str, Any]]:
        return await self.find_many({}, sort=[("created_at", -1)])

    async def delete(self, doc_id: str) -> bool:
        """Delete the company and everything hanging off it."""
        db = database.get_db()
        contract_ids = [
            c["contract_id"]
            for c in await db.contracts.find({"company_id": doc_id}, {"_id": 0, "contract_id": 1}).to_list(length=None)
        ]
        if contract_ids:
            scoped = {"contract_id": {"$in": contract_ids}}
            await db.files.delete_many(scoped)
            await db.work_items.delete_many(scoped)
            await db.relevant_parties.delete_many(scoped)
            await db.contracts.delete_many(scoped)
        for name in ("company_contacts", "company_notes", "company_finances", "finance_line_items", "incorporations"):
            await getattr(db, name).delete_many({"company_id": doc_id})
        return await super().delete(doc_id)


class CompanyContactRepository(Repository):
    collection_name = "company_contacts"
    id_field = "contact_id"

    async def find_by_company_id(self, company_id: str) -> List[Dict[str, Any]]:
        return await self.find_many({"company_id": company_id}, sort=[("is_primary", -1), ("created_at", 1)])


class CompanyNoteRepository(Repository):
    collection_name = "company_notes"
    id_field = "company_note_id"

    async def find_by_company_id(self, company_id: str) -> List[Dict[str, Any]]:
        return await self.find_many({"company_id": company_id}, sort=[("created_at", -1)])


class CompanyFinanceRepository(Repository):
    collection_name = "company_finances"
    id_field = "finance_id"

    async def find_by_company_id(self, company_id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one({"company_id": company_id})

    async def update_by_company_id(self, company_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._collection().find_one_and_update(
            {"company_id": company_id},
            {"$set": {**updates, "updated_at": utc_now()}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )


class FinanceLineItemRepository(Repository):
    collection_name = "finance_line_items"
    id_field = "line_item_id"

    async def find_by_company_id(self, company_id: str) -> List[Dict[str, Any]]:
        return await self.find_many({"company_id": company_id}, sort=[("occurred_at", -1)])


class ContractRepository(Repository):
    collection_name = "contracts"
    id_field = "contract_id"

    async def find_by_company_id(self, company_id: str) -> List[Dict[str, Any]]:
        return await self.find_many({"company_id": company_id}, sort=[("created_at", -1)])

    async def find_by_ids(self, contract_ids: List[str]) -> List[Dict[str, Any]]:
        return await self.find_many({"contract_id": {"$in": contract_ids}}, sort=[("created_at", -1)])

    async def count_by_company_id(self, company_id: str) -> int:
        return await self.count({"company_id": company_id})

    async def delete(self, doc_id: str) -> bool:
        db = database.get_db()
        for name in ("files", "work_items", "relevant_parties"):
            await getattr(db, name).delete_many({"contract_id": doc_id})
        return await super().delete(doc_id)


class FileRepository(Repository):
    collection_name = "files"
    id_field = "file_id"

    async def find_by_contract_id(self, contract_id: str) -> List[Dict[str, Any]]:
        return await self.find_many({"contract_id": contract_id}, sort=[("created_at", 1)])


class WorkItemRepository(Repository):
    collection_name = "work_items"
    id_field = "work_item_id"

    async def find_by_contract_id(self, contract_id: str) -> List[Dict[str, Any]]:
        return await self.find_many({"contract_id": contract_id}, sort=[("position", 1), ("created_at", 1)])


class RelevantPartyRepository(Repository):
    collection_name = "relevant_parties"
    id_field = "party_id"

    async def find_by_contract_id(self, contract_id: str) -> List[Dict[str, Any]]:
        return await self.find_many({"contract_id": contract_id}, sort=[("created_at", 1)])

    async def find_by_email(self, email: str) -> List[Dict[str, Any]]:
        return await self.find_many({"email": email.strip().lower()})

    async def find_by_ids(self, party_ids: List[str]) -> List[Dict[str, Any]]:
        return await self.find_many({"party_id": {"$in": party_ids}})


class IncorporationRepository(Repository):
    collection_name = "incorporations"
    id_field = "incorporation_id"

    async def find_by_company_id(self, company_id: str) -> Optional[Dict[str, Any]]:
        return await self.find_one({"company_id": company_id})


class Repositories:
    """Single access point used by routes and services."""

    def __init__(self):
        self.user = UserRepository()
        self.subscription = SubscriptionRepository()
        self.verification_token = VerificationTokenRepository()
        self.note = NoteRepository()
        self.company = CompanyRepository()
        self.company_contact = CompanyContactRepository()
        self.company_note = CompanyNoteRepository()
        self.company_finance = CompanyFinanceRepository()
        self.finance_line_item = FinanceLineItemRepository()
        self.contract = ContractRepository()
        self.file = FileRepository()
        self.work_item = WorkItemRepository()
        self.relevant_party = RelevantPartyRepository()
        self.incorporation = IncorporationRepository()


repos = Repositories()
