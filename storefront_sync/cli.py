import argparse
import sys
import logging

from storefront_sync.db import get_session
from storefront_sync.exceptions import SyncError
from storefront_sync.moysklad_client import get_moysklad_client
from storefront_sync.services.moysklad.categories import CategorySyncHandler
from storefront_sync.services.moysklad.products import ProductSyncHandler
from storefront_sync.services.sync_status import list_statuses
from storefront_sync.settings import settings

logger = logging.getLogger("storefront_sync.cli")


def run_sync_command(args) -> int:
    """동기화 명령 실행기. 카테고리를 먼저 동기화해야 상품의 category_id가 연결됩니다."""
    settings.require_sync_config()
    session = next(get_session())
    client = get_moysklad_client()
    try:
        if args.target in ("categories", "all"):
            logger.info("[CLI] Starting category sync")
            result = CategorySyncHandler(session=session, client=client).sync()
            logger.info(f"[CLI] Categories: {result.to_dict()}")

        if args.target in ("products", "all"):
            logger.info("[CLI] Starting product sync")
            result = ProductSyncHandler(session=session, client=client).sync()
            logger.info(f"[CLI] Products: {result.to_dict()}")
        return 0
    finally:
        session.close()


def run_status_command(args) -> int:
    session = next(get_session())
    try:
        for row in list_statuses(session):
            print(
                f"{row.entity:<12} {row.status:<12} {row.processed}/{row.total} ({row.percent}%) "
                f"synced={row.records_synced} last={row.last_sync_at or '-'} {row.message or ''}"
            )
        return 0
    finally:
        session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="MoySklad → storefront catalog sync")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run a sync")
    sync_parser.add_argument("target", choices=["categories", "products", "all"])
    sync_parser.set_defaults(func=run_sync_command)

    status_parser = subparsers.add_parser("status", help="Show sync status rows")
    status_parser.set_defaults(func=run_status_command)
    return parser


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s'
    )
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except SyncError as e:
        logger.error(f"[CLI] {e.error_code}: {e.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
