#!/usr/bin/env python3
############################################################
#
# callgate - LLM Call Gateway, Response Cache and Call Ledger
#
# seed_dev_data.py: Seed database with development test data
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Seed development data for callgate."""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db import crud
from backend.app.db.session import close_db, get_async_db_context, init_db
from backend.app.security import generate_api_key
from backend.app.settings import get_settings

DEV_PRUNING_RULES = [
    "You are a helpful assistant that classifies support tickets.",
    "Respond with a single category name.",
]


async def seed_project(slug: str, inference_url: str, base_model: str):
    """Create a project, an API key, a dataset with pruning rules and a fine-tune."""
    async with get_async_db_context() as db:
        existing = await crud.get_fine_tune_by_slug(db, slug)
        if existing:
            print(f"Fine-tune '{slug}' already exists (project {existing.project_id}), skipping...")
            return

        project = await crud.create_project(db, "Development")
        print(f"Created project: {project.name} ({project.id})")

        full_key, key_hash, key_prefix = generate_api_key()
        await crud.create_api_key(
            db=db,
            project_id=project.id,
            key_hash=key_hash,
            key_prefix=key_prefix,
            name="Default Key",
        )
        print(f"  Created API key: {key_prefix}...")
        print(f"  FULL KEY (save this!): {full_key}")

        dataset = await crud.create_dataset(db, project.id, "support-tickets", DEV_PRUNING_RULES)
        print(f"  Created dataset: {dataset.name} ({len(DEV_PRUNING_RULES)} pruning rules)")

        await crud.create_fine_tune(
            db,
            project_id=project.id,
            slug=slug,
            base_model=base_model,
            dataset_id=dataset.id,
            inference_url=inference_url,
        )
        prefix = get_settings().fine_tune_model_prefix
        print(f"  Created fine-tune: {prefix}{slug} -> {inference_url}")

        await db.commit()


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Seed callgate development data")
    parser.add_argument("--slug", default="support-classifier")
    parser.add_argument("--inference-url", default="http://localhost:8001/v1/chat/completions")
    parser.add_argument("--base-model", default="OpenPipe/mistral-ft-optimized-1227")
    args = parser.parse_args()

    print("=" * 60)
    print("callgate Development Data Seeder")
    print("=" * 60)
    print()

    await init_db()
    await seed_project(args.slug, args.inference_url, args.base_model)
    await close_db()

    print()
    print("=" * 60)
    print("Seeding complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
