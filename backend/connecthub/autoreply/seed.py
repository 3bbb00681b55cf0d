"""Seed a user directory and welcome conversations.

The directory is a YAML file::

    users:
      - id: alice
        name: Alice Smith
        profilePicture: https://img.example/alice.png
        email: alice@connecthub.dev
      - id: sample-carol
        name: Carol (demo)

Every entry is upserted as display data. Each regular account then gets a
welcome message from up to ``per_user`` synthetic accounts it has no
conversation with yet. Running the seed twice does not duplicate messages.
"""
import logging
import random
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import BaseModel, Field

from connecthub.conversations.store import ConversationStore

from .service import AutoResponder

logger = logging.getLogger(__name__)


class DirectoryUser(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    profilePicture: Optional[str] = None
    email: Optional[str] = None


class SeedResult(BaseModel):
    users: int = 0
    welcomes: int = 0
    skipped: int = 0


def load_directory(path: Union[str, Path]) -> List[DirectoryUser]:
    """Read the ``users`` list of a directory file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return [DirectoryUser.model_validate(entry) for entry in data.get("users") or []]


async def seed_directory(
    store: ConversationStore,
    responder: AutoResponder,
    users: List[DirectoryUser],
    per_user: int = 3,
    rng: Optional[random.Random] = None,
) -> SeedResult:
    """Upsert ``users`` and open welcome conversations for regular accounts."""
    rng = rng or random.Random()
    result = SeedResult()

    for user in users:
        await store.upsert_user(user.id, user.name, user.profilePicture, user.email)
        result.users += 1

    synthetic = [u.id for u in users if responder.is_synthetic(u.id)]
    regular = [u.id for u in users if not responder.is_synthetic(u.id)]
    if not synthetic:
        logger.warning("[Seed] No synthetic accounts in directory; no welcome messages sent")
        return result

    for user_id in regular:
        for synthetic_id in rng.sample(synthetic, min(per_user, len(synthetic))):
            if await store.get_page(synthetic_id, user_id, 1, 1):
                logger.info(f"[Seed] Skipping {synthetic_id} -> {user_id} (conversation exists)")
                result.skipped += 1
                continue
            if await responder.initialize_conversation(user_id, synthetic_id) is not None:
                result.welcomes += 1

    logger.info(
        f"[Seed] {result.users} user(s) upserted, {result.welcomes} welcome message(s), "
        f"{result.skipped} existing conversation(s) skipped"
    )
    return result
