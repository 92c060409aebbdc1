from motor.motor_asyncio import AsyncIOMotorClient
import logging
import settings

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None
    db = None

    async def connect(self):
        try:
            self.client = AsyncIOMotorClient(settings.MONGO_URL, serverSelectionTimeoutMS=5000)
            self.db = self.client[settings.DB_NAME]
            # Verify connection
            await self.db.command("ping")
            logger.info(f"Connected to MongoDB: {settings.DB_NAME}")

            await self._create_indexes()
        except Exception as e:
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise

    async def close(self):
        if self.client:
            self.client.close()
            logger.info("MongoDB connection closed")

    def get_db(self):
        return self.db

    async def ping(self) -> bool:
        if self.db is None:
            return False
        await self.db.command("ping")
        return True

    async def _create_indexes(self):
        """Create MongoDB indexes for ownership lookups and uniqueness rules."""
        try:
            await self.db.users.create_index("user_id", unique=True)
            await self.db.users.create_index("email", unique=True)
            await self.db.users.create_index("name")

            # One subscription per user, one user per Stripe customer
            await self.db.subscriptions.create_index("user_id", unique=True)
            await self.db.subscriptions.create_index("customer_id", unique=True, sparse=True)

            await self.db.verification_tokens.create_index([("identifier", 1), ("token", 1)], unique=True)
            await self.db.verification_tokens.create_index("token")

            await self.db.notes.create_index("note_id", unique=True)
            await self.db.notes.create_index([("user_id", 1), ("created_at", -1)])

            await self.db.companies.create_index("company_id", unique=True)
            await self.db.companies.create_index("user_id")
            await self.db.company_contacts.create_index("company_id")
            await self.db.company_notes.create_index("company_id")
            await self.db.company_finances.create_index("company_id", unique=True)
            await self.db.finance_line_items.create_index([("company_id", 1), ("occurred_at", -1)])

            await self.db.contracts.create_index("contract_id", unique=True)
            await self.db.contracts.create_index("company_id")
            await self.db.files.create_index("contract_id")
            await self.db.work_items.create_index([("contract_id", 1), ("position", 1)])
            await self.db.relevant_parties.create_index(
                [("contract_id", 1), ("email", 1)], unique=True
            )
            await self.db.relevant_parties.create_index("email")

            await self.db.incorporations.create_index("company_id", unique=True)

            logger.info("MongoDB indexes created successfully")
        except Exception as e:
            logger.warning(f"Index creation warning (may already exist): {e}")

database = Database()
