#!/usr/bin/env python3
"""
FormDesk CLI - direct access to records, templates and the cache.

Commands:
- list-records <form_key> [--page-size N] [--page-token T] [--fields A,B]
- migrate-template <form_key> [--template-id ID]
- invalidate-cache [--reason TEXT]
- followup <form_key> <record_id> <action>
"""

import argparse
import json
import sys

from formdesk import config
from formdesk.errors import FormDeskError
from formdesk.followup import collect_template_ids, migrate_template
from formdesk.observability import RequestContext, configure_logging
from formdesk.services import Services, get_services


def print_header(text: str):
    """Print a section header."""
    print(f"\n{'═' * 50}")
    print(f"  {text}")
    print(f"{'═' * 50}")


def print_table(headers: list, rows: list, widths: list = None):
    """Print a simple table."""
    if not widths:
        widths = [max(len(str(row[i])) for row in [headers] + rows) for i in range(len(headers))]

    header_str = " │ ".join(str(h).ljust(w) for h, w in zip(headers, widths, strict=False))
    print(header_str)
    print("─" * len(header_str))

    for row in rows:
        print(" │ ".join(str(c)[:w].ljust(w) for c, w in zip(row, widths, strict=False)))


def _fields(raw: str | None) -> list[str] | None:
    if not raw:
        return None
    return [f.strip() for f in raw.split(",") if f.strip()] or None


def cmd_list_records(svc: Services, args) -> int:
    definition = svc.registry.get(args.form_key)
    projection = _fields(args.fields)
    page = svc.store.list_page(definition.schema, projection, args.page_size, args.page_token)

    if args.json:
        print(json.dumps(page.model_dump(), indent=2, ensure_ascii=False, default=str))
        return 0

    print_header(f"RECORDS: {definition.title}")
    if not page.items:
        print("No records.")
        return 0
    columns = ["id", "updated_at", "status", *(projection or [])]
    rows = [[item.get(c) or "" for c in columns] for item in page.items]
    widths = [min(36, max(len(str(r[i])) for r in [columns] + rows)) for i in range(len(columns))]
    print_table(columns, rows, widths)
    print(f"\n{len(page.items)} of {page.total_count}")
    if page.next_page_token:
        print(f"next page: --page-token {page.next_page_token}")
    return 0


def cmd_migrate_template(svc: Services, args) -> int:
    definition = svc.registry.get(args.form_key)
    if args.template_id:
        template_ids = [args.template_id]
    elif definition.followup is not None:
        template_ids = collect_template_ids(definition.followup.pdf_template) + collect_template_ids(
            definition.followup.email_template
        )
        template_ids = list(dict.fromkeys(template_ids))
    else:
        template_ids = []
    if not template_ids:
        print("No templates to migrate.")
        return 1

    failed = 0
    for template_id in template_ids:
        result = migrate_template(definition.schema, template_id, svc.templates)
        mark = "✓" if result.success else "✗"
        print(f"{mark} {template_id}: {result.message}")
        for pattern, count in result.rewrites.items():
            print(f"    {pattern} × {count}")
        for warning in result.warnings:
            print(f"    ⚠ {warning}")
        if not result.success:
            failed += 1
    return 1 if failed else 0


def cmd_invalidate_cache(svc: Services, args) -> int:
    version = svc.store.invalidate_cache(args.reason)
    print(f"OK: cache version {version}")
    return 0


def cmd_followup(svc: Services, args) -> int:
    result = svc.orchestrator.run_action(args.form_key, args.record_id, args.action)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    elif result.success:
        print(f"OK: {args.action} status={result.status or '-'}")
        if result.document_url:
            print(f"document: {result.document_url}")
    else:
        print(f"FAILED: {result.message}")
    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="formdesk", description="FormDesk records, templates and cache")
    p.add_argument("--log-level", default=config.LOG_LEVEL)
    sub = p.add_subparsers(dest="cmd", required=True)

    ls = sub.add_parser("list-records", help="Show one page of records")
    ls.add_argument("form_key")
    ls.add_argument("--page-size", type=int, default=10)
    ls.add_argument("--page-token", default=None)
    ls.add_argument("--fields", default=None, help="Comma-separated field ids")
    ls.add_argument("--json", action="store_true")
    ls.set_defaults(func=cmd_list_records)

    mt = sub.add_parser("migrate-template", help="Rewrite legacy label placeholders to field ids")
    mt.add_argument("form_key")
    mt.add_argument("--template-id", default=None, help="Defaults to every template in the follow-up config")
    mt.set_defaults(func=cmd_migrate_template)

    ic = sub.add_parser("invalidate-cache", help="Abandon every cached page and record")
    ic.add_argument("--reason", default="cli")
    ic.set_defaults(func=cmd_invalidate_cache)

    fu = sub.add_parser("followup", help="Run a follow-up action on a record")
    fu.add_argument("form_key")
    fu.add_argument("record_id")
    fu.add_argument("action", type=str.upper, choices=["CREATE_PDF", "SEND_EMAIL", "CLOSE_RECORD"])
    fu.add_argument("--json", action="store_true")
    fu.set_defaults(func=cmd_followup)
    return p


def main(argv: list[str] | None = None, services: Services | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    if services is None:
        configure_logging(args.log_level)
    try:
        with RequestContext(form_key=getattr(args, "form_key", None), prefix="cli"):
            return args.func(services or get_services(), args)
    except FormDeskError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
