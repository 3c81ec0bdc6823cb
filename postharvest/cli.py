"""Command line entry point.

Usage:
  postharvest auth [--force]
  postharvest auth-status | auth-clear
  postharvest search "legal counsel" --pages 3 --concurrency 4
  postharvest posts list --from 2024-01-01 --to 2024-01-31 --not-applied
  postharvest posts update --ids 3 7 --set-applied true
  postharvest posts delete --text recruiter

Every command prints one JSON document on stdout; logs go to stderr.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Optional, Sequence

from pydantic import ValidationError

from domain.models import PostFilter, PostUpdate
from services.posts_service import PostsService
from .bootstrap import AppContext, bootstrap
from .core.errors import PostHarvestError
from .core.orchestrator import run_search
from .session import auth_status, authenticate, clear_auth

_EXIT_OK = 0
_EXIT_FAILED = 1
_EXIT_USAGE = 2


def _bool_arg(value: str) -> bool:
    v = value.strip().lower()
    if v in ("1", "true", "yes", "y", "on"):
        return True
    if v in ("0", "false", "no", "n", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected true/false, got {value!r}")


def _add_filter_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--ids", type=int, nargs="+", default=None, help="Post ids")
    p.add_argument("--text", dest="search_text", default=None, help="Substring of keywords or description")
    p.add_argument("--keyword", default=None, help="Substring of the search keywords")
    p.add_argument("--contains", default=None, help="Substring of the description")
    p.add_argument("--from", dest="date_from", default=None, help="First capture date (YYYY-MM-DD, inclusive)")
    p.add_argument("--to", dest="date_to", default=None, help="Last capture date (YYYY-MM-DD, inclusive)")
    g = p.add_mutually_exclusive_group()
    g.add_argument("--applied", dest="applied", action="store_const", const=True, default=None)
    g.add_argument("--not-applied", dest="applied", action="store_const", const=False)
    s = p.add_mutually_exclusive_group()
    s.add_argument("--saved", dest="saved", action="store_const", const=True, default=None)
    s.add_argument("--not-saved", dest="saved", action="store_const", const=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="postharvest", description="Harvest LinkedIn content search results into SQLite")
    sub = parser.add_subparsers(dest="command", required=True)

    p_auth = sub.add_parser("auth", help="Log in through a browser window and store the session")
    p_auth.add_argument("--force", action="store_true", help="Discard the stored session first")
    sub.add_parser("auth-status", help="Show the stored session")
    sub.add_parser("auth-clear", help="Delete the stored session")

    p_search = sub.add_parser("search", help="Search posts and store new ones")
    p_search.add_argument("keywords")
    p_search.add_argument("--pages", type=int, default=None, help="Scroll iterations on the results page")
    p_search.add_argument("--concurrency", type=int, default=None)
    p_search.add_argument("--headless", action="store_true", default=None)
    p_search.add_argument("--screenshots", action="store_true", default=None)
    p_search.add_argument("--no-save", action="store_true", help="Do not persist the results")

    p_posts = sub.add_parser("posts", help="Query and edit stored posts")
    posts_sub = p_posts.add_subparsers(dest="action", required=True)
    p_list = posts_sub.add_parser("list")
    _add_filter_args(p_list)
    p_list.add_argument("--limit", type=int, default=None)
    p_list.add_argument("--offset", type=int, default=0)
    p_update = posts_sub.add_parser("update")
    _add_filter_args(p_update)
    p_update.add_argument("--all", dest="allow_all", action="store_true", help="Allow an empty filter")
    p_update.add_argument("--set-description", default=None)
    p_update.add_argument("--set-keywords", default=None)
    p_update.add_argument("--set-applied", type=_bool_arg, default=None)
    p_update.add_argument("--set-saved", type=_bool_arg, default=None)
    p_delete = posts_sub.add_parser("delete")
    _add_filter_args(p_delete)
    p_delete.add_argument("--all", dest="allow_all", action="store_true", help="Allow an empty filter")
    return parser


def _filter_from_args(args: argparse.Namespace) -> PostFilter:
    data: dict[str, Any] = {
        "ids": args.ids,
        "search_text": args.search_text,
        "keyword": args.keyword,
        "contains": args.contains,
        "date_from": args.date_from,
        "date_to": args.date_to,
        "applied": args.applied,
        "saved": args.saved,
    }
    if getattr(args, "limit", None) is not None:
        data["limit"] = args.limit
    if getattr(args, "offset", None):
        data["offset"] = args.offset
    return PostFilter(**data)


def _update_from_args(args: argparse.Namespace) -> PostUpdate:
    data = {
        "description": args.set_description,
        "search_keywords": args.set_keywords,
        "applied": args.set_applied,
        "saved": args.set_saved,
    }
    return PostUpdate(**{k: v for k, v in data.items() if v is not None})


def _emit(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


async def _dispatch(ctx: AppContext, args: argparse.Namespace) -> int:
    if args.command == "auth":
        res = await authenticate(ctx, force=args.force)
        _emit({"success": res.success, "reason": res.reason, "error": res.error})
        return _EXIT_OK if res.success else _EXIT_FAILED
    if args.command == "auth-status":
        st = auth_status(ctx)
        _emit({"has_auth": st.has_auth, "valid": st.valid, **st.details})
        return _EXIT_OK
    if args.command == "auth-clear":
        _emit({"cleared": clear_auth(ctx)})
        return _EXIT_OK
    if args.command == "search":
        outcome = await run_search(
            ctx,
            args.keywords,
            args.pages,
            persist=not args.no_save,
            concurrency=args.concurrency,
            headless=args.headless,
            capture_screenshots=args.screenshots,
        )
        _emit(outcome.to_dict())
        return _EXIT_OK if outcome.status in ("ok", "empty", "partial") else _EXIT_FAILED

    service = PostsService()
    flt = _filter_from_args(args)
    if args.action == "list":
        _emit(service.read(ctx, flt).to_dict())
    elif args.action == "update":
        _emit(service.update(ctx, flt, _update_from_args(args), allow_all=args.allow_all).to_dict())
    else:
        _emit(service.delete(ctx, flt, allow_all=args.allow_all).to_dict())
    return _EXIT_OK


def main(argv: Optional[Sequence[str]] = None, *, ctx: Optional[AppContext] = None) -> int:
    args = build_parser().parse_args(argv)
    own_ctx = ctx is None
    try:
        ctx = ctx or bootstrap()
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return _EXIT_USAGE
    try:
        return asyncio.run(_dispatch(ctx, args))
    except (ValidationError, PostHarvestError) as exc:
        _emit({"error": str(exc)})
        return _EXIT_USAGE
    finally:
        if own_ctx:
            ctx.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
