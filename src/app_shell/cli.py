import argparse
import logging
import sys
from collections.abc import Callable
from datetime import timedelta
from uuid import UUID

from src.api.auth_utils import ACCESS_TOKEN_EXPIRE_MINUTES, create_identity_token
from src.app_shell.config import db_path, rules_path, secret_key, validate_ops_rules
from src.app_shell.context import ServiceContext, migrator
from src.domain.entities import InviteCode
from src.domain.errors import InviteError, UnavailableError
from src.rules.loader import load_rules
from src.rules.models import Rules

logger = logging.getLogger("cli")


def load_cli_rules() -> Rules:
    path = rules_path()
    if not path.exists():
        logger.error("Rules file %s not found.", path)
        sys.exit(1)
    return load_rules(path)


def get_context(rules: Rules) -> ServiceContext:
    return ServiceContext.create(db_path(rules), rules)


def _print_invite(invite: InviteCode, ctx: ServiceContext) -> None:
    status = invite.status_at(ctx.clock.now_utc())
    print(f"Code:    {invite.code}")
    print(f"Owner:   {invite.owner_display_name} ({invite.owner_identity_id})")
    print(f"Status:  {status}{' (revoked)' if invite.is_revoked() else ''}")
    print(f"Expires: {invite.expires_at.isoformat()}")
    if invite.used_at:
        print(f"Used:    {invite.used_at.isoformat()} by {invite.redeemed_by_account_id}")


def handle_migrate(ctx: ServiceContext, args: argparse.Namespace) -> None:
    m = migrator(db_path(ctx.rules))
    if args.status:
        pending = m.pending()
        print(f"Applied: {len(m.applied())}, pending: {len(pending)}")
        for name in pending:
            print(f"  {name}")
        return
    applied = m.run_migrations()
    print(f"Applied {len(applied)} migrations.")


def handle_issue(ctx: ServiceContext, args: argparse.Namespace) -> None:
    invite = ctx.invite_service.issue(
        args.identity_id, args.display_name, lifetime_hours=args.hours
    )
    _print_invite(invite, ctx)


def handle_validate(ctx: ServiceContext, args: argparse.Namespace) -> None:
    invite = ctx.invite_service.validate(args.code)
    print("Code is valid.")
    _print_invite(invite, ctx)


def handle_revoke(ctx: ServiceContext, args: argparse.Namespace) -> None:
    invite = ctx.invite_service.revoke(args.code)
    print(f"Revoked {invite.code}.")


def handle_stats(ctx: ServiceContext, args: argparse.Namespace) -> None:
    stats = ctx.invite_service.statistics()
    print(f"Pending:  {stats.pending_count}")
    print(f"Used:     {stats.used_count}")
    print(f"Expired:  {stats.expired_count} (revoked: {stats.revoked_count})")
    print(f"Total:    {stats.total}")


def handle_list(ctx: ServiceContext, args: argparse.Namespace) -> None:
    page = ctx.invite_service.page(
        args.page, args.page_size, status_filter=args.status, search_term=args.search
    )
    now = ctx.clock.now_utc()
    for item in page.items:
        print(
            f"{item.code}  {item.status_at(now):<8}  "
            f"{item.owner_identity_id:<20}  {item.owner_display_name}"
        )
    print(f"Page {page.page}/{max(page.total_pages, 1)} ({page.total_count} codes)")


def handle_sweep(ctx: ServiceContext, args: argparse.Namespace) -> None:
    deleted = ctx.invite_service.cleanup(args.days)
    print(f"Deleted {deleted} expired codes.")


def handle_roles(ctx: ServiceContext, args: argparse.Namespace) -> None:
    binding = ctx.authz_service.get_binding(args.identity_id)
    if binding.account_id is None:
        print(f"Identity {args.identity_id} is not linked to an account.")
        return
    roles = ", ".join(sorted(binding.roles)) or "(none)"
    print(f"Account: {binding.account_id}")
    print(f"Roles:   {roles}")


def handle_grant(ctx: ServiceContext, args: argparse.Namespace) -> None:
    account = ctx.account_service.assign_role(UUID(args.account_id), args.role)
    print(f"{account.username}: {', '.join(account.roles)}")


def handle_revoke_role(ctx: ServiceContext, args: argparse.Namespace) -> None:
    account = ctx.account_service.remove_role(UUID(args.account_id), args.role)
    print(f"{account.username}: {', '.join(account.roles) or '(none)'}")


def handle_token(ctx: ServiceContext, args: argparse.Namespace) -> None:
    key = secret_key()
    if key is None:
        raise ValueError("INVITES_SECRET_KEY is not set")
    print(
        create_identity_token(
            args.identity_id,
            key,
            expires_delta=timedelta(minutes=args.minutes),
            now_utc=ctx.clock.now_utc(),
        )
    )


def handle_serve_sweeper(ctx: ServiceContext, args: argparse.Namespace) -> None:
    scheduler = ctx.create_scheduler(args.interval_seconds)
    if args.run_now:
        result = scheduler.trigger_now()
        print(f"Initial sweep deleted {result.deleted} codes.")
    scheduler.start()
    if not scheduler.is_running:
        return
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        scheduler.stop()


HANDLERS: dict[str, Callable[[ServiceContext, argparse.Namespace], None]] = {
    "migrate": handle_migrate,
    "issue": handle_issue,
    "validate": handle_validate,
    "revoke": handle_revoke,
    "stats": handle_stats,
    "list": handle_list,
    "sweep": handle_sweep,
    "roles": handle_roles,
    "grant": handle_grant,
    "revoke-role": handle_revoke_role,
    "token": handle_token,
    "serve-sweeper": handle_serve_sweeper,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Invite Registry CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    migrate_parser = subparsers.add_parser("migrate", help="Apply pending database migrations")
    migrate_parser.add_argument("--status", action="store_true", help="List pending only")

    issue_parser = subparsers.add_parser("issue", help="Issue an invite code for an identity")
    issue_parser.add_argument("identity_id", type=int, help="External identity id")
    issue_parser.add_argument("display_name", help="Identity display name")
    issue_parser.add_argument("--hours", type=int, default=None, help="Override lifetime")

    validate_parser = subparsers.add_parser("validate", help="Check a code without using it")
    validate_parser.add_argument("code")

    revoke_parser = subparsers.add_parser("revoke", help="Revoke a pending code")
    revoke_parser.add_argument("code")

    subparsers.add_parser("stats", help="Show invite code statistics")

    list_parser = subparsers.add_parser("list", help="List invite codes, newest first")
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--page-size", type=int, default=None)
    list_parser.add_argument(
        "--status", default=None, help="pending|active|redeemed|used|expired|revoked"
    )
    list_parser.add_argument("--search", default=None, help="Match code or display name")

    sweep_parser = subparsers.add_parser("sweep", help="Delete long-expired codes now")
    sweep_parser.add_argument("--days", type=int, default=None, help="Retention in days")

    roles_parser = subparsers.add_parser("roles", help="Show roles for an identity")
    roles_parser.add_argument("identity_id", type=int)

    grant_parser = subparsers.add_parser("grant", help="Add a role to an account")
    grant_parser.add_argument("account_id")
    grant_parser.add_argument("role")

    revoke_role_parser = subparsers.add_parser("revoke-role", help="Remove a role from an account")
    revoke_role_parser.add_argument("account_id")
    revoke_role_parser.add_argument("role")

    token_parser = subparsers.add_parser("token", help="Mint a bearer token for an identity")
    token_parser.add_argument("identity_id", type=int)
    token_parser.add_argument("--minutes", type=int, default=ACCESS_TOKEN_EXPIRE_MINUTES)

    serve_parser = subparsers.add_parser("serve-sweeper", help="Run the expiration sweeper")
    serve_parser.add_argument("--interval-seconds", type=float, default=None)
    serve_parser.add_argument("--run-now", action="store_true", help="Sweep once on start")

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)

    rules = load_cli_rules()
    validate_ops_rules(rules)
    ctx = get_context(rules)

    try:
        HANDLERS[args.command](ctx, args)
    except (InviteError, UnavailableError) as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except ValueError as e:
        # Malformed account UUIDs
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
