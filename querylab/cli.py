"""Command-line entry point.

Usage:
    querylab ask "Top 10 publishers by revenue last month" --session s1
    querylab ask "now only for zone names" --session s1 --no-execute
    querylab plan "Top 5 products by revenue in 2025 with monthly breakdown"
    querylab execute "SELECT pubname, SUM(rev) FROM ... GROUP BY pubname"
    querylab rules [--candidates]
    querylab promote <error_signature> [--correction rev]
    querylab stats --days 7
"""

import argparse
import json
import sys
from typing import Any, List, Optional

from .learning import LearningStore
from .knowledge import MetadataStore
from .utils import QueryLabError, setup_logger

logger = setup_logger(__name__)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _learning_store(args: argparse.Namespace) -> LearningStore:
    metadata = MetadataStore(data_dir=args.data_dir)
    return LearningStore(data_dir=args.data_dir, seed_rules=metadata.get_seed_learned_rules())


def cmd_ask(args: argparse.Namespace) -> int:
    from .agent import QueryLabAgent

    agent = QueryLabAgent(data_dir=args.data_dir)
    try:
        response = agent.ask(args.question, session_id=args.session, execute=not args.no_execute)
    finally:
        agent.shutdown()
    _print(response)
    return 0 if response.get("success") else 1


def cmd_plan(args: argparse.Namespace) -> int:
    from .agent import QueryLabAgent

    agent = QueryLabAgent(data_dir=args.data_dir)
    try:
        response = agent.generate_plan(args.question, session_id=args.session)
    finally:
        agent.shutdown()
    _print(response)
    return 0 if response.get("success") else 1


def cmd_execute(args: argparse.Namespace) -> int:
    from .agent import QueryLabAgent

    agent = QueryLabAgent(data_dir=args.data_dir)
    try:
        response = agent.execute_sql(args.sql, question=args.question or "")
    finally:
        agent.shutdown()
    _print(response)
    return 0 if response.get("success") else 1


def cmd_rules(args: argparse.Namespace) -> int:
    store = _learning_store(args)
    if args.candidates:
        rules = store.get_rule_candidates()
        patterns = store.get_unresolved_patterns(min_occurrences=store.rule_threshold)
        _print({
            "candidates": [r.model_dump(mode="json") for r in rules],
            "unresolved_patterns": [p.model_dump(mode="json") for p in patterns],
        })
    else:
        _print([r.model_dump(mode="json") for r in store.get_active_rules()])
    return 0


def cmd_promote(args: argparse.Namespace) -> int:
    store = _learning_store(args)
    rule = store.promote(args.signature, correction=args.correction)
    _print(rule.model_dump(mode="json"))
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    store = _learning_store(args)
    _print(store.get_query_stats(days=args.days))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="querylab",
        description="Natural-language analytics over BigQuery with self-healing execution",
    )
    parser.add_argument("--data-dir", default=None, help="Operational data directory")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ask = subparsers.add_parser("ask", help="Generate (and run) SQL for a question")
    ask.add_argument("question")
    ask.add_argument("--session", default=None, help="Conversation session id")
    ask.add_argument("--no-execute", action="store_true", help="Only generate the SQL")
    ask.set_defaults(func=cmd_ask)

    plan = subparsers.add_parser("plan", help="Draft a numbered plan for a question, without SQL")
    plan.add_argument("question")
    plan.add_argument("--session", default=None, help="Conversation session id")
    plan.set_defaults(func=cmd_plan)

    execute = subparsers.add_parser("execute", help="Run a read-only SQL statement")
    execute.add_argument("sql")
    execute.add_argument("--question", default=None, help="Question recorded with the execution")
    execute.set_defaults(func=cmd_execute)

    rules = subparsers.add_parser("rules", help="List learned rules")
    rules.add_argument("--candidates", action="store_true", help="Show rules awaiting review")
    rules.set_defaults(func=cmd_rules)

    promote = subparsers.add_parser("promote", help="Activate the rule for an error signature")
    promote.add_argument("signature")
    promote.add_argument("--correction", default=None, help="Replacement column name")
    promote.set_defaults(func=cmd_promote)

    stats = subparsers.add_parser("stats", help="Per-day execution statistics")
    stats.add_argument("--days", type=int, default=7)
    stats.set_defaults(func=cmd_stats)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except QueryLabError as e:
        logger.error(str(e))
        _print({"success": False, "error": type(e).__name__, "message": str(e)})
        return 1


if __name__ == "__main__":
    sys.exit(main())
