from __future__ import annotations

import argparse
import asyncio
import sys

from relayhub.core.logging import configure_logging
from relayhub.persistence.db import SessionLocal
from relayhub.persistence.repos.tenants import list_pages_with_credentials
from relayhub.services.credentials import reencrypt_page_credentials
from relayhub.services.crypto.vault import get_vault_keys


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Re-encrypt legacy plaintext and default-key credentials under the configured key"
    )
    parser.add_argument("--dry-run", action="store_true", help="report changes without writing them")
    parser.add_argument(
        "--allow-default-key",
        action="store_true",
        help="proceed even when only the built-in default key is available",
    )
    return parser


async def _reencrypt(dry_run: bool, allow_default_key: bool) -> int:
    keys = get_vault_keys()
    if keys.is_fallback and not allow_default_key:
        print(
            "No TOKEN_ENCRYPTION_KEY or SUPABASE_SERVICE_ROLE_KEY set; refusing to re-encrypt "
            "under the default key (pass --allow-default-key to override).",
            file=sys.stderr,
        )
        return 2

    pages_changed = 0
    seen_digests: dict[str, str] = {}
    async with SessionLocal() as session:
        for page in await list_pages_with_credentials(session):
            changed = reencrypt_page_credentials(page)
            digest = page.verify_token_digest
            if digest is not None and digest in seen_digests:
                # Shared verify tokens stay on the legacy scan, where the handshake rejects them.
                print(f"  {page.id}: verify token shared with {seen_digests[digest]}; digest left empty")
                page.verify_token_digest = None
            elif digest is not None:
                seen_digests[digest] = page.id
            if changed:
                pages_changed += 1
                print(f"  {page.id}: {', '.join(changed)}")
        if dry_run:
            await session.rollback()
        else:
            await session.commit()

    verb = "would update" if dry_run else "updated"
    print(f"Key source: {keys.source}; {verb} {pages_changed} page(s).")
    return 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_reencrypt(args.dry_run, args.allow_default_key))
    except Exception as exc:  # noqa: BLE001 - surface operational failures in CLI output.
        print(f"reencrypt_secrets failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
