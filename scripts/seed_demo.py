from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from decimal import Decimal
import sys

from sqlalchemy import select

from relayhub.domain.models import ROLE_USER, KnowledgeEntry, Page, Product, Profile
from relayhub.persistence.db import SessionLocal
from relayhub.services.credentials import apply_page_credentials


DEMO_PROFILE_ID = "demo-profile"
DEMO_PAGE_ID = "demo-page"
DEMO_PAGE_NAME = "Demo Shop"
DEMO_WIDGET_KEY = "demo-widget-key"
DEMO_CREDITS = 100


@dataclass(frozen=True)
class DemoProduct:
    name: str
    description: str
    price: Decimal
    stock_quantity: int


DEMO_KNOWLEDGE = (
    ("Opening hours", "We are open Monday to Friday, 9am to 6pm."),
    ("Shipping", "Orders ship within two business days; shipping is free over $50."),
    ("Returns", "Unused items can be returned within 30 days for a full refund."),
)

DEMO_PRODUCTS = (
    DemoProduct("Canvas Tote", "Heavy cotton tote bag", Decimal("19.90"), 42),
    DemoProduct("Ceramic Mug", "12oz stoneware mug", Decimal("12.00"), 8),
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed a demo account with one page, knowledge and products")
    parser.add_argument("--channel-id", default="1234567890", help="external page id the webhook routes on")
    parser.add_argument("--verify-token", default="demo-verify-token")
    parser.add_argument("--access-token", default=None, help="page access token for the send API")
    parser.add_argument("--openrouter-key", default=None, help="tenant-level completion key")
    parser.add_argument("--allowed-domain", action="append", default=[], help="widget origin allow-list entry")
    return parser


async def seed_demo(args: argparse.Namespace) -> int:
    # Use the shared async session factory so env config matches the API process.
    async with SessionLocal() as session:
        profile = await session.get(Profile, DEMO_PROFILE_ID)
        if profile is None:
            profile = Profile(id=DEMO_PROFILE_ID, email="demo@example.com", role=ROLE_USER, credits=DEMO_CREDITS)
            session.add(profile)

        page = await session.get(Page, DEMO_PAGE_ID)
        if page is None:
            page = Page(id=DEMO_PAGE_ID, profile_id=DEMO_PROFILE_ID)
            session.add(page)
        # Keep demo page metadata aligned on every run without touching other tenants.
        page.name = DEMO_PAGE_NAME
        page.fb_page_id = args.channel_id
        page.widget_key = DEMO_WIDGET_KEY
        page.is_enabled = True
        page.allowed_domains = list(args.allowed_domain)
        apply_page_credentials(
            page,
            access_token=args.access_token,
            verify_token=args.verify_token,
            openrouter_key=args.openrouter_key,
        )

        existing = await session.execute(
            select(KnowledgeEntry.id).where(KnowledgeEntry.profile_id == DEMO_PROFILE_ID).limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            await session.commit()
            print("Demo knowledge already seeded; page settings refreshed.")
            return 0

        session.add_all(
            KnowledgeEntry(profile_id=DEMO_PROFILE_ID, title=title, content=content)
            for title, content in DEMO_KNOWLEDGE
        )
        session.add_all(
            Product(
                profile_id=DEMO_PROFILE_ID,
                name=item.name,
                description=item.description,
                price=item.price,
                stock_quantity=item.stock_quantity,
                is_active=True,
            )
            for item in DEMO_PRODUCTS
        )
        await session.commit()
    print(
        f"Seeded demo page {DEMO_PAGE_ID} (channel id {args.channel_id}, widget key {DEMO_WIDGET_KEY}) "
        f"with {len(DEMO_KNOWLEDGE)} knowledge entries and {len(DEMO_PRODUCTS)} products."
    )
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    # Surface clear failures and exit non-zero so dev scripts can detect issues.
    try:
        return asyncio.run(seed_demo(args))
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
