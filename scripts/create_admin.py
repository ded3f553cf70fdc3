#!/usr/bin/env python3
"""Admin script to register the first administrator.

Every membership change goes through an admin, so a fresh database needs one
created out of band.

Usage:
    python scripts/create_admin.py <email> [--first-name NAME] [--last-name NAME]
"""

import asyncio
import logging
import sys

from src.core import db_client
from src.domain.create_models import MemberCreate
from src.domain.user import Member, MemberRole
from src.services import user_service


logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger(__name__)


async def create_admin(email: str, first_name: str = "", last_name: str = "") -> Member:
    """Create the schema if needed and register an admin member.

    Raises:
        InvalidInputError: If the email is malformed or already registered
    """
    await db_client.init_db()
    try:
        return await user_service.create_member(
            MemberCreate(email=email, first_name=first_name, last_name=last_name, role=MemberRole.ADMIN)
        )
    finally:
        await db_client.close_connection()


def _option(args: list[str], flag: str) -> str:
    if flag not in args:
        return ""
    index = args.index(flag)
    if index + 1 >= len(args):
        logger.error("%s needs a value", flag)
        sys.exit(1)
    return args[index + 1]


async def main() -> None:
    """Main entry point."""
    args = sys.argv[1:]

    if not args or "--help" in args or "-h" in args:
        logger.info(__doc__)
        return

    try:
        admin = await create_admin(
            args[0], first_name=_option(args, "--first-name"), last_name=_option(args, "--last-name")
        )
    except ValueError as e:
        logger.error("Could not create admin: %s", e)
        sys.exit(1)

    logger.info("Created admin %s (id %s)", admin.email, admin.id)


if __name__ == "__main__":
    asyncio.run(main())
