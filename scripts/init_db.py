#!/usr/bin/env python3
import asyncio
import sys

from mathsolver.config.loader import get_provider_seeds
from mathsolver.constants import DATABASE_URL, PROVIDER_CONFIG_PATH
from mathsolver.db import SqlProviderStore, get_engine, init_db
from mathsolver.llm import ProviderRegistry


async def main() -> int:
    print(f"Initializing database schema at {DATABASE_URL}...")
    engine = get_engine()
    try:
        await init_db(engine)
        print("✓ Database schema created successfully")
        print("  Tables: ai_providers, ai_tokens")

        registry = ProviderRegistry(SqlProviderStore(engine))
        created = await registry.bootstrap(get_provider_seeds(PROVIDER_CONFIG_PATH))
        if created:
            print(f"✓ Created {created} AI provider(s)")
        else:
            print("  Providers already present, nothing to seed")
        return 0
    except Exception as e:
        print(f"✗ Database initialization failed: {e}", file=sys.stderr)
        return 1
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
