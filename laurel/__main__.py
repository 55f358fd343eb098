"""
laurel.__main__ — Entry point for ``python -m laurel``
=======================================================

Wiring:
1. Load .env (``DATABASE_URL``).
2. Load config.yaml (soft settings), falling back to defaults if absent.
3. Configure logging at the configured level.
4. Create the SQLAlchemy engine and run the requested command.

Run with::

    python -m laurel init-db
    python -m laurel seed --tenant acme
    python -m laurel tier-info u-42
    python -m laurel summary u-42 --tenant acme
    python -m laurel rewards --page 2
    python -m laurel leaderboard --period month
    python -m laurel claim u-42 7 --issuer staff-1
    python -m laurel analytics --tenant acme
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from laurel.config import LaurelConfig, load_config
from laurel.database.engine import create_db_engine, init_db
from laurel.errors import LaurelError
from laurel.services.analytics_service import (
    PERIODS,
    get_points_distribution,
    get_points_leaderboard,
    get_reward_claims_analytics,
    get_task_completion_stats,
)
from laurel.services.hooks import threaded_hooks
from laurel.services.points_service import get_user_tier_info
from laurel.services.progress_service import get_user_summary
from laurel.services.redemption_service import claim_reward
from laurel.services.seed import seed_rewards
from laurel.services.template_service import list_reward_templates

logger = logging.getLogger("laurel")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="laurel", description="Reward progress engine")
    parser.add_argument("--config", default="config.yaml", help="path to config.yaml")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create all tables")

    seed = sub.add_parser("seed", help="load the default reward catalogue")
    seed.add_argument("--tenant", default=None)

    tier = sub.add_parser("tier-info", help="show a user's tier standing")
    tier.add_argument("user")

    summary = sub.add_parser("summary", help="show a user's reward counts")
    summary.add_argument("user")
    summary.add_argument("--tenant", default=None)

    rewards = sub.add_parser("rewards", help="list reward templates")
    rewards.add_argument("--tenant", default=None)
    rewards.add_argument("--page", type=int, default=1)

    board = sub.add_parser("leaderboard", help="rank users by points")
    board.add_argument("--tenant", default=None)
    board.add_argument("--period", choices=PERIODS, default="all")
    board.add_argument("--limit", type=int, default=None)

    claim = sub.add_parser("claim", help="redeem an earned reward for a user")
    claim.add_argument("user")
    claim.add_argument("reward_id", type=int)
    claim.add_argument("--issuer", default=None)

    analytics = sub.add_parser("analytics", help="points, completion and claim aggregates")
    analytics.add_argument("--tenant", default=None)
    return parser


def _load_config(path: str) -> LaurelConfig:
    try:
        return load_config(path)
    except FileNotFoundError:
        return LaurelConfig()


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _claim(engine, cfg: LaurelConfig, args: argparse.Namespace) -> int:
    hooks = threaded_hooks(engine, cfg.side_effect_workers)
    try:
        activity = claim_reward(
            engine,
            args.reward_id,
            args.user,
            issuer_id=args.issuer,
            hooks=hooks,
            voucher_prefix=cfg.voucher_prefix,
        )
    except LaurelError as exc:
        logger.error("Claim failed: %s", exc)
        return 1
    finally:
        hooks.dispatcher.shutdown(wait=True)
    _print_json({
        "activityId": activity.id,
        "rewardId": activity.reward_id,
        "status": activity.status,
        "voucherCode": activity.voucher_code,
    })
    return 0


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run one command, return the exit code."""
    args = _build_parser().parse_args(argv)

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = _load_config(args.config)
    except ValueError as exc:
        print(f"laurel: {exc}", file=sys.stderr)
        return 2

    # 3. Logging.
    logging.basicConfig(
        level=cfg.log_level,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )

    # 4. Database.
    try:
        engine = create_db_engine()
    except RuntimeError as exc:
        logger.critical("%s", exc)
        return 1

    tenant_id = getattr(args, "tenant", None) or cfg.tenant_id
    if args.command == "init-db":
        init_db(engine)
    elif args.command == "seed":
        init_db(engine)
        created = seed_rewards(engine, tenant_id)
        print(f"Seeded {created} reward template(s).")
    elif args.command == "tier-info":
        _print_json(get_user_tier_info(engine, args.user).to_dict())
    elif args.command == "summary":
        _print_json(get_user_summary(engine, args.user, tenant_id).to_dict())
    elif args.command == "rewards":
        page = list_reward_templates(
            engine,
            tenant_id=tenant_id,
            enforce_schedule=cfg.enforce_schedule,
            page=args.page,
            limit=cfg.page_size,
        )
        _print_json({
            "page": page.page,
            "pages": page.pages,
            "total": page.total,
            "items": [
                {"id": r.id, "name": r.name, "category": r.category, "points": r.points}
                for r in page.items
            ],
        })
    elif args.command == "leaderboard":
        board = get_points_leaderboard(
            engine, tenant_id=tenant_id, period=args.period, limit=args.limit or cfg.page_size
        )
        _print_json([entry.to_dict() for entry in board])
    elif args.command == "claim":
        return _claim(engine, cfg, args)
    elif args.command == "analytics":
        _print_json({
            "points": get_points_distribution(engine, tenant_id=tenant_id),
            "completion": get_task_completion_stats(engine, tenant_id=tenant_id),
            "claims": get_reward_claims_analytics(engine, tenant_id=tenant_id),
        })
    return 0


if __name__ == "__main__":
    sys.exit(main())
