from sitestats.db.models import Base


async def init_db(db):
    # create_all skips existing tables, so this is safe against a live store
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
