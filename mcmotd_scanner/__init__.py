import asyncio
import os
import shlex
import sys

from arclet.alconna import Alconna, Args, Arparma, CommandMeta, Option
from loguru import logger

from .config import ScopedConfig, load_config
from .data_source import ProbeState, StatusProbe
from .exceptions import ScanError
from .models import Endpoint, StatusPayload
from .utils import load_targets, resolve_endpoints, scan_all, summarize

__all__ = [
    "Endpoint",
    "ProbeState",
    "ScopedConfig",
    "StatusPayload",
    "StatusProbe",
    "VERSION",
    "main",
    "mcscan",
    "run",
    "setup_logging",
]

VERSION = "0.1.0"

mcscan = Alconna(
    "mcscan",
    Args["targets", str],
    Option("-o|--output", Args["path", str], help_text="结果保存目录"),
    Option("-c|--concurrency", Args["limit", int], help_text="同时进行的探测数量"),
    Option("--config", Args["file", str], help_text="JSON 配置文件"),
    Option("-v|--verbose", help_text="输出调试日志"),
    meta=CommandMeta(
        description="Minecraft服务器状态扫描/Minecraft server status scanner",
        usage="mcscan targets.json -o data -c 256",
        example="mcscan masscan.json\nmcscan servers.txt --config mcscan.json",
    ),
)


def setup_logging(level: str = "INFO") -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def build_config(p: Arparma) -> ScopedConfig:
    """读取配置文件，并用命令行参数覆盖"""
    config = load_config(p.query("config.file"))

    overrides = {}
    if p.find("output"):
        overrides["output_dir"] = p.query("output.path")
    if p.find("concurrency"):
        overrides["concurrency"] = p.query("concurrency.limit")
    if p.find("verbose"):
        overrides["log_level"] = "DEBUG"
    return ScopedConfig.model_validate(config.model_dump() | overrides)


async def run(targets: str, config: ScopedConfig) -> list[StatusProbe]:
    """
    读取目标、解析域名并扫描。

    :params targets: 目标列表文件路径
    :params config: 扫描配置

    :returns: 完成的探测
    """
    endpoints = await load_targets(targets)
    endpoints = await resolve_endpoints(endpoints, config.resolve_srv)
    logger.info(f"Scanning {len(endpoints)} endpoints, concurrency {config.concurrency}")

    os.makedirs(config.output_dir, exist_ok=True)

    probes = await scan_all(endpoints, config)
    summary = ", ".join(f"{k}: {v}" for k, v in summarize(probes).items())
    logger.info(f"Scan finished, {summary}")
    return probes


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    p = mcscan.parse(shlex.join(["mcscan", *argv]))
    if not p.matched:
        if p.error_info:
            print(p.error_info, file=sys.stderr)
        return 2

    try:
        config = build_config(p)
    except ValueError as e:
        setup_logging()
        logger.error(f"Invalid config: {e}")
        return 1

    setup_logging(config.log_level)
    try:
        asyncio.run(run(p.query("targets"), config))
    except ScanError as e:
        logger.error(f"{e.__class__.__name__}: {e}")
        return 1
    except OSError as e:
        logger.error(f"Unable to create output directory: {e}")
        return 1
    return 0
