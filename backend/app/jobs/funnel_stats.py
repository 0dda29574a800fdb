from __future__ import annotations

import argparse
import logging

from sqlalchemy.orm import Session

from app.core.db import SessionLocal
from app.funnels.stats import FunnelRefreshResult, refresh_funnel_stats


logger = logging.getLogger(__name__)


def run_funnel_stats_job(db: Session, *, funnel_id: str | None = None) -> list[FunnelRefreshResult]:
    results = refresh_funnel_stats(db, funnel_id=funnel_id)
    logger.info(
        "funnel_stats_job.completed",
        extra={"funnel_id": funnel_id, "funnels": len(results)},
    )
    return results


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh cached funnel step visitors, drop-off and conversion.")
    parser.add_argument("--funnel-id", type=str, default=None, help="Refresh a single funnel.")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    with SessionLocal() as db:
        run_funnel_stats_job(db, funnel_id=args.funnel_id)


if __name__ == "__main__":
    main()
