import asyncio

from wastelink.core.db import get_client, get_db
from wastelink.core.indexes import ensure_indexes

async def main():
    await ensure_indexes(get_db())
    get_client().close()

if __name__ == "__main__":
    asyncio.run(main())
