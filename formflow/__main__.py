"""Command-line entry point: ``python -m formflow``.

    python -m formflow actions                 list registered actions
    python -m formflow schema createUser       print schema, UI layout and formJson
    python -m formflow demo                    run a scripted createUser session

``--actions FILE`` loads definitions from a JSON file instead of the samples
(the demo needs handlers, so it always uses the sample actions).
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from formflow.config import FormflowConfig, configure_logging
from formflow.errors import DefinitionError
from formflow.registry import ActionRegistry
from formflow.samples import sample_registry
from formflow.session import SessionHost

DEMO_SCRIPT: List[Dict[str, Any]] = [
    {"type": "OPEN"},
    {"type": "CHANGE", "name": "username", "value": "jsmith"},
    {"type": "CHANGE", "name": "email", "value": "bad-email"},
    {"type": "SUBMIT"},
    {"type": "CHANGE", "name": "email", "value": "jsmith@example.com"},
    {"type": "CHANGE", "name": "role", "value": "admin"},
    {"type": "CHANGE", "name": "age", "value": 30},
    {"type": "SUBMIT"},
]


async def run_demo(registry: ActionRegistry, action_id: str = "createUser") -> List[Dict[str, Any]]:
    """Drive one session through DEMO_SCRIPT and collect the outbound messages."""
    outbox: List[Dict[str, Any]] = []
    host = SessionHost(registry, action_id, send=outbox.append)
    if not host.start():
        return outbox
    for message in DEMO_SCRIPT:
        host.handle_message(message)
    await host.settle()
    host.close()
    return outbox


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="formflow", description="Form workflow engine tools")
    parser.add_argument("--actions", help="JSON file with action definitions")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("actions", help="List registered actions")
    schema = sub.add_parser("schema", help="Print the compiled schema of an action")
    schema.add_argument("action_id")
    sub.add_parser("demo", help="Run a scripted createUser session")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = FormflowConfig.from_env()
    configure_logging(config)

    if args.actions and args.command != "demo":
        registry = ActionRegistry(config)
        registry.load_file(args.actions)
    else:
        registry = sample_registry(config)

    if args.command == "actions":
        print(json.dumps(registry.list_actions(), indent=2))
    elif args.command == "schema":
        try:
            print(json.dumps(registry.describe(args.action_id), indent=2))
        except DefinitionError as exc:
            print(str(exc), file=sys.stderr)
            return 1
    elif args.command == "demo":
        for message in asyncio.run(run_demo(registry)):
            print(json.dumps(message, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
