"""
CLI_MAIN
========

Command-line interface for the npc_loop decision engine.

Commands:
    run                 Run one trigger from a scenario file
    schedule            Run a schedule (agent_cycle, token_reset, ...) against a store
    tools               List registered tools
    config              Show the effective configuration

Scenario file::

    {
      "tables": {"users": [...], "posts": [...]},     # seed data (ignored with --store)
      "event": "chat",                               # or "schedule": "agent_cycle"
      "context": {"agent_id": "agent-1", "user_id": "user-9", "message": "hi"}
    }

Usage:
    python -m npc_loop.cli run scenario.json
    python -m npc_loop.cli run scenario.json --store data/world.json --json
    python -m npc_loop.cli schedule token_reset --store data/world.json
    python -m npc_loop.cli tools --category action
    python -m npc_loop.cli config
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional


def build_runtime(store, config_dir: Optional[str] = None):
    """Wire config, completion client, tools, orchestrator and trigger router around ``store``."""
    from ..config import get_config_manager
    from ..llm_client import create_completion_client
    from ..logging_config import setup_logging_from_config
    from ..orchestrator import WorkflowOrchestrator
    from ..tools import create_default_registry
    from ..triggers import TriggerRouter

    config = get_config_manager(config_dir).global_config
    setup_logging_from_config(config)

    registry = create_default_registry(
        store,
        default_timeout=config.workflow.tool_timeout_seconds,
        max_workers=config.workflow.max_parallel_tools,
    )
    orchestrator = WorkflowOrchestrator(
        store=store,
        registry=registry,
        llm_client=create_completion_client(config.llm),
        config=config,
    )
    return TriggerRouter(orchestrator, store)


def shutdown_runtime(router) -> None:
    """Drain pending side effects, then stop the tool pool."""
    router.orchestrator.shutdown(wait=True)
    router.orchestrator.deps.registry.shutdown()


def open_store(scenario: Dict[str, Any], store_path: Optional[str] = None):
    from ..store import InMemoryStore, JsonFileStore

    if store_path:
        return JsonFileStore(store_path)
    return InMemoryStore(scenario.get("tables") or {}, scenario.get("columns"))


def load_scenario(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


# ============================================================================
# CLI COMMANDS
# ============================================================================

def cli_run(scenario_path: str, store_path: Optional[str] = None,
            config_dir: Optional[str] = None, verbose: bool = False) -> dict:
    """
    Run one trigger described by a scenario file.

    Args:
        scenario_path: JSON file with seed tables and the event or schedule to fire
        store_path: Optional JSON store file to use instead of the seed tables
        config_dir: Optional config directory (defaults to NPC_LOOP_CONFIG_DIR / data dir)
        verbose: Print the scenario before running

    Returns:
        Result dictionary
    """
    try:
        scenario = load_scenario(scenario_path)
    except (OSError, ValueError) as e:
        return {"error": f"Could not read scenario {scenario_path}: {e}"}

    if verbose:
        print(f"Scenario: {scenario_path}")
        print(f"Event: {scenario.get('event') or scenario.get('schedule')}")
        print("-" * 40)

    router = None
    try:
        router = build_runtime(open_store(scenario, store_path), config_dir)
        if scenario.get("schedule"):
            return router.handle_schedule(scenario["schedule"])
        if not scenario.get("event"):
            return {"error": "Scenario needs an 'event' or a 'schedule'"}

        outcome = router.handle_event(scenario["event"], scenario.get("context") or {})
        output = outcome.to_dict()
        if outcome.state is not None:
            output["executed_actions"] = list(outcome.state.executed_actions)
            if outcome.state.reasoning is not None:
                output["last_explanation"] = outcome.state.reasoning.explanation
        return output

    except Exception as e:
        return {"error": str(e)}
    finally:
        if router is not None:
            shutdown_runtime(router)


def cli_schedule(schedule_type: str, store_path: str, config_dir: Optional[str] = None) -> dict:
    """Run a schedule handler against a JSON store file."""
    from ..store import JsonFileStore

    router = None
    try:
        router = build_runtime(JsonFileStore(store_path), config_dir)
        return router.handle_schedule(schedule_type)
    except Exception as e:
        return {"error": str(e)}
    finally:
        if router is not None:
            shutdown_runtime(router)


def cli_tools(category: Optional[str] = None) -> list:
    """List tools in the default catalogue."""
    from ..store import InMemoryStore
    from ..tools import create_default_registry

    registry = create_default_registry(InMemoryStore())
    try:
        tools = []
        for name in registry.list_tools(category):
            tool = registry.get(name)
            tools.append({
                "name": name,
                "category": registry.category(name),
                "description": tool.definition.description,
            })
        return tools
    finally:
        registry.shutdown()


def cli_config(config_dir: Optional[str] = None) -> dict:
    """Show the effective configuration."""
    from ..config import get_config_manager

    try:
        manager = get_config_manager(config_dir)
        data = manager.global_config.to_dict()
        data["config_path"] = str(manager.config_path)
        return data
    except Exception as e:
        return {"error": str(e)}


def _print_outcome(result: dict) -> None:
    if "error" in result:
        print(f"Error: {result['error']}")
        return
    if "agents_processed" in result or "memories_deleted" in result or "agents_reset" in result:
        print("\nSchedule complete:")
        for key, value in result.items():
            if key != "results":
                print(f"  {key}: {value}")
        for item in result.get("results", []):
            status = "+" if item.get("success") else "-"
            print(f"  [{status}] {item['agent_id']}: {item.get('actions', 0)} action(s)")
        return

    print(f"\nSuccess: {result['success']}")
    print(f"Completion: {result.get('completion_reason')}")
    print(f"Iterations: {result.get('iterations', 0)}")
    if result.get("actions"):
        print(f"Actions: {', '.join(result['actions'])}")
    print(f"Duration: {result.get('duration_ms', 0)}ms")
    for error in result.get("errors", []):
        print(f"  error: {error}")
    if result.get("last_explanation"):
        print(f"\n--- Explanation ---\n{result['last_explanation']}")


def main():
    """Main CLI entry point."""
    from .. import __version__

    parser = argparse.ArgumentParser(
        prog="npc-loop",
        description="npc_loop - Observe / Reason / Act decision loop for simulation agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES
========

  %(prog)s run scenarios/dm_decline.json
  %(prog)s run scenarios/dm_decline.json --store data/world.json --json
  %(prog)s schedule agent_cycle --store data/world.json
  %(prog)s tools --category data
  %(prog)s config

For command-specific help:
  %(prog)s <command> --help
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--config-dir",
        help="Directory holding config.json (default: $NPC_LOOP_CONFIG_DIR or data/npcLoop/CONFIG)"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Use '%(prog)s <command> --help' for command-specific help",
        metavar="<command>"
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Run one trigger from a scenario file",
        description="Load seed tables and an event from a JSON scenario and run the decision loop once."
    )
    run_parser.add_argument("scenario", help="Scenario JSON file")
    run_parser.add_argument("--store", help="JSON store file to use instead of the scenario tables")
    run_parser.add_argument("--verbose", "-v", action="store_true",
                            help="Show the scenario before running")
    run_parser.add_argument("--json", "-j", action="store_true",
                            help="Output result as JSON")

    # schedule command
    schedule_parser = subparsers.add_parser(
        "schedule",
        help="Run a schedule against a store",
        description="Run agent_cycle, relationship_sync, memory_cleanup or token_reset."
    )
    schedule_parser.add_argument("schedule_type", help="Schedule type")
    schedule_parser.add_argument("--store", required=True, help="JSON store file")
    schedule_parser.add_argument("--json", "-j", action="store_true",
                                 help="Output result as JSON")

    # tools command
    tools_parser = subparsers.add_parser(
        "tools",
        help="List registered tools",
    )
    tools_parser.add_argument("--category", "-c", choices=["data", "action"],
                              help="Only list one category")

    # config command
    subparsers.add_parser(
        "config",
        help="Show the effective configuration",
    )

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    if args.command == "run":
        if not Path(args.scenario).exists():
            print(f"Error: scenario file not found: {args.scenario}")
            sys.exit(1)
        result = cli_run(args.scenario, args.store, args.config_dir, args.verbose)
        if args.json:
            print(json.dumps(result, indent=2, default=str))
        else:
            _print_outcome(result)
        if "error" in result:
            sys.exit(1)

    elif args.command == "schedule":
        result = cli_schedule(args.schedule_type, args.store, args.config_dir)
        if args.json:
            print(json.dumps(result, indent=2, default=str))
        else:
            _print_outcome(result)
        if "error" in result:
            sys.exit(1)

    elif args.command == "tools":
        tools = cli_tools(args.category)
        print(f"\nTools{f' ({args.category})' if args.category else ''}:")
        for tool in tools:
            print(f"  [{tool['category']}] {tool['name']}: {tool['description'][:60]}")

    elif args.command == "config":
        print(json.dumps(cli_config(args.config_dir), indent=2))


if __name__ == "__main__":
    main()
