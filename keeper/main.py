"""
Keeper - Main Entry Point
=========================

Command-line front end for the task runner. It:
1. Loads configuration
2. Initializes the components (store, memory, tools, gateway, runner)
3. Runs one command and prints the result

Commands:
    keeper run <agent_id> "<task>"      Execute a task (add --background to run it as a job)
    keeper recall <agent_id> "<task>"   Show which lessons a task would be given
    keeper lessons <agent_id>           List an agent's most recent lessons
    keeper actions <agent_id>           List an agent's action log

Run with:
    python -m keeper.main run agent-1 "Count the lines in notes/today.md"

Or after installing:
    keeper run agent-1 "Count the lines in notes/today.md"
"""

import argparse
import asyncio
import json
import sys

from keeper.errors import KeeperError
from keeper.utils.config import Config, get_config
from keeper.utils.logger import Logger

main_logger = Logger("Main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="keeper", description="Run tasks for keeper agents.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Execute a task")
    run_parser.add_argument("agent_id")
    run_parser.add_argument("task")
    run_parser.add_argument("--max-turns", type=int, default=None)
    run_parser.add_argument("--turn-timeout", type=float, default=None)
    run_parser.add_argument("--url", dest="inference_url", default=None, help="Chat completions URL override")
    run_parser.add_argument("--model", dest="inference_model", default=None, help="Model override")
    run_parser.add_argument("--tools", default=None, help="Comma-separated allow-list of tool names")
    run_parser.add_argument("--background", action="store_true", help="Run as a job and poll it")
    run_parser.add_argument("--json", action="store_true", help="Print the full response as JSON")

    recall_parser = subparsers.add_parser("recall", help="Show lessons recalled for a task")
    recall_parser.add_argument("agent_id")
    recall_parser.add_argument("task")
    recall_parser.add_argument("--json", action="store_true")

    lessons_parser = subparsers.add_parser("lessons", help="List recent lessons")
    lessons_parser.add_argument("agent_id")
    lessons_parser.add_argument("--limit", type=int, default=20)
    lessons_parser.add_argument("--json", action="store_true")

    actions_parser = subparsers.add_parser("actions", help="List the action log")
    actions_parser.add_argument("agent_id")
    actions_parser.add_argument("--limit", type=int, default=20)

    return parser


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _build_memory(config: Config):
    from keeper.inference.gateway import OpenAIGateway
    from keeper.memory import LessonStore, MemoryManager

    store = LessonStore(config.storage.database_path)
    gateway = OpenAIGateway(config.inference) if config.inference.embeddings_enabled else None
    return MemoryManager(
        store,
        gateway,
        config.storage,
        embeddings_enabled=config.inference.embeddings_enabled,
    )


async def _run(args: argparse.Namespace, config: Config, memory) -> int:
    from keeper.runner import ExecuteRequest, TaskRunner

    runner = TaskRunner(config, memory)
    request = ExecuteRequest(
        task=args.task,
        max_turns=args.max_turns,
        turn_timeout=args.turn_timeout,
        inference_url=args.inference_url,
        inference_model=args.inference_model,
        allowed_tools=[name.strip() for name in args.tools.split(",")] if args.tools else None,
        background=args.background,
    )

    outcome = await runner.execute(args.agent_id, request)

    if isinstance(outcome, str):
        main_logger.info(f"Job {outcome} running...")
        job = await runner.wait_for_job(outcome)
        if args.json or job.result is None:
            _print_json(job.to_dict())
        else:
            print(job.result.get("final_response") or f"(stopped: {job.result['stop_reason']})")
        return 0 if job.error is None else 1

    if args.json:
        _print_json(outcome.to_dict())
    else:
        print(outcome.final_response or f"(stopped: {outcome.stop_reason.value})")
    return 0


async def _recall(args: argparse.Namespace, memory) -> int:
    context = await memory.recall(args.agent_id, args.task)
    if args.json:
        _print_json({
            "category": context.category,
            "semantic": context.semantic,
            "lessons": [scored.to_dict() for scored in context.lessons],
        })
    else:
        print(f"Category: {context.category}")
        print(context.to_prompt_section() or "No lessons recalled.")
    return 0


async def _lessons(args: argparse.Namespace, memory) -> int:
    lessons = await memory.list_lessons(args.agent_id, args.limit)
    if args.json:
        _print_json([lesson.to_dict() for lesson in lessons])
        return 0

    for lesson in lessons:
        status = "ok" if lesson.success else "fail"
        print(
            f"#{lesson.id} [{lesson.category}] {status} q={lesson.quality_score:.2f} "
            f"used={lesson.times_retrieved} {lesson.goal}"
        )
    if not lessons:
        print("No lessons yet.")
    return 0


async def _actions(args: argparse.Namespace, memory) -> int:
    actions = await memory.get_actions(args.agent_id, args.limit)
    for action in actions:
        print(f"#{action.id} {action.status:<8} {action.first_tool or '-':<12} {action.task}")
    if not actions:
        print("No actions yet.")
    return 0


async def main(argv: list[str] | None = None) -> int:
    """
    Main async entry point.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    config = get_config()
    memory = _build_memory(config)

    try:
        if args.command == "run":
            return await _run(args, config, memory)
        if args.command == "recall":
            return await _recall(args, memory)
        if args.command == "lessons":
            return await _lessons(args, memory)
        return await _actions(args, memory)
    except (KeeperError, ValueError) as e:
        main_logger.error(str(e))
        return 1
    finally:
        memory.close()


def run():
    """
    Synchronous entry point.

    This is called when running with the `keeper` command.
    """
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
