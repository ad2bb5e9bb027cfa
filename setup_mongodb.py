"""
MongoDB Setup Script
Tests connection and initializes the database with collections and indexes.
The intelligence commit uses multi-document transactions, so the server must
be a replica set or sharded cluster.
"""
import asyncio
from deal_intel.repositories import db_manager
from deal_intel.repositories.connection import INDEXES
from deal_intel.config import settings

COLLECTIONS = tuple(dict.fromkeys(collection for collection, _, _ in INDEXES))


async def setup_mongodb():
    """Initialize MongoDB database with collections and indexes."""
    print("🔄 Connecting to MongoDB...")
    print(f"   Database: {settings.mongodb_database}")
    print()

    try:
        await db_manager.connect()
        print("✅ Connection successful!")
        print()

        db = db_manager.database

        if not await db_manager.supports_transactions():
            print("⚠️  Server is standalone: intelligence commits need transactions (replica set)")
            print()

        existing_collections = await db.list_collection_names()
        print(f"📦 Existing collections: {existing_collections or 'None'}")
        print()

        # Transactions cannot create collections implicitly on older servers
        for name in COLLECTIONS:
            if name not in existing_collections:
                await db.create_collection(name)
                print(f"   Created collection: {name}")

        print("🔨 Creating indexes...")
        await db_manager.create_indexes()
        print("✅ Indexes created successfully!")
        print()

        print("📊 Verifying indexes:")
        total = 0
        for name in COLLECTIONS:
            indexes = await db[name].index_information()
            total += len(indexes)
            print(f"   {name} collection: {len(indexes)} indexes")
            for idx_name in indexes:
                print(f"      - {idx_name}")

        print()
        print("🎉 MongoDB setup complete!")
        print()
        print("📝 Summary:")
        print(f"   ✅ Database: {settings.mongodb_database}")
        print(f"   ✅ Collections: {', '.join(COLLECTIONS)}")
        print(f"   ✅ Indexes: {total} total")
        print()

    except Exception as e:
        print(f"❌ Error: {e}")
        print()
        print("💡 Troubleshooting:")
        print("   1. Verify MONGODB_URI points at a reachable server")
        print("   2. Check that the username and password are correct")
        print("   3. Ensure the deployment is a replica set")
        raise

    finally:
        await db_manager.disconnect()
        print("👋 Disconnected from MongoDB")


if __name__ == "__main__":
    asyncio.run(setup_mongodb())
