"""
命令行入口

    python -m autopilot run --task '{"type": "analyze_url", "url": "https://example.com"}'
    python -m autopilot run --file tasks.json
    python -m autopilot status
    python -m autopilot memory stats
    python -m autopilot memory export --output memory.json
    python -m autopilot memory import memory.json
    python -m autopilot memory clear --keep-successful
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from autopilot.service import AgentService
from config.settings import settings


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """配置 loguru：控制台 + 可选的按天轮转文件"""
    logger.remove()
    logger.add(sys.stderr, level=(level or settings.log_level).upper(), colorize=True)
    log_file = log_file or settings.log_file
    if log_file:
        logger.add(
            log_file,
            rotation="1 day",
            retention="7 days",
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} - {message}",
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autopilot", description="Task-driven browser automation agent")
    parser.add_argument("--log-level", type=str, help="控制台日志级别")
    parser.add_argument("--log-file", type=str, help="日志文件路径")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="入队任务并执行到队列为空")
    run_parser.add_argument("--task", action="append", default=[], help="JSON 任务规格，可重复")
    run_parser.add_argument("--file", type=str, help="包含任务规格数组的 JSON 文件")

    subparsers.add_parser("status", help="显示调度器状态")
    subparsers.add_parser("history", help="显示已访问 URL、下载和分析结果")

    memory_parser = subparsers.add_parser("memory", help="经验记忆维护")
    memory_sub = memory_parser.add_subparsers(dest="memory_command", required=True)
    memory_sub.add_parser("stats", help="记忆统计")
    export_parser = memory_sub.add_parser("export", help="导出记忆")
    export_parser.add_argument("--output", type=str, help="输出文件，缺省打印到标准输出")
    import_parser = memory_sub.add_parser("import", help="从文件导入记忆")
    import_parser.add_argument("path", type=str)
    clear_parser = memory_sub.add_parser("clear", help="清空记忆")
    clear_parser.add_argument("--keep-successful", action="store_true", help="只删除失败经验")

    return parser


def load_task_specs(task_args: List[str], file_path: Optional[str]) -> List[Dict[str, Any]]:
    specs = [json.loads(raw) for raw in task_args]
    if file_path:
        data = json.loads(Path(file_path).read_text(encoding="utf-8"))
        specs.extend(data if isinstance(data, list) else [data])
    return specs


def _print(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


async def main(argv: Optional[List[str]] = None) -> int:
    """主入口，返回进程退出码"""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    service = AgentService()
    try:
        if args.command == "run":
            specs = load_task_specs(args.task, args.file)
            for spec in specs:
                response = await service.add_task(spec)
                if not response["success"]:
                    _print(response)
                    return 1
            await service.init_agent()
            await service.scheduler.wait_until_idle()
            _print({
                "stats": service.scheduler.get_stats(),
                "tasks": [t.to_dict() for t in service.scheduler.finished],
            })
            return 0

        if args.command == "status":
            response = await service.status()
        elif args.command == "history":
            response = await service.history()
        elif args.memory_command == "stats":
            response = await service.memory_stats()
        elif args.memory_command == "export":
            response = await service.export_memory()
            if response["success"] and args.output:
                Path(args.output).write_text(response["data"], encoding="utf-8")
                response = {"success": True, "output": args.output}
            elif response["success"]:
                print(response["data"])
                return 0
        elif args.memory_command == "import":
            response = await service.import_memory(Path(args.path).read_text(encoding="utf-8"))
        else:
            response = await service.clear_memory(args.keep_successful)

        _print(response)
        return 0 if response.get("success") else 1
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        return 130
    finally:
        await service.shutdown()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
