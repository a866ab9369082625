import asyncio
from collections import Counter
import contextlib
import re
import traceback
from typing import Literal

import dns.asyncresolver
import dns.exception
import dns.resolver
import idna
from loguru import logger
from pydantic import ValidationError
import ujson

from .config import ScopedConfig
from .data_source import ProbeState, StatusProbe
from .exceptions import TargetsError
from .models import DEFAULT_PORT, Endpoint, TargetEntry


def handle_exception(e: BaseException) -> str:
    error_message = str(e)
    logger.error("".join(traceback.format_exception(e)))
    return f"[CrashHandle]{e.__class__.__name__}: {error_message}"


async def parse_host(host_name: str) -> tuple[str, int]:
    """
    解析主机名（可选端口）。

    该函数尝试从主机名中提取IP地址和端口号。如果主机名中未指定端口，
    则默认端口号为0。带端口的 IPv6 地址需要使用方括号包裹，如 ``[::1]:25565``。

    :params host_name: 主机名，可能包含端口。

    :returns: 一个元组，包含两个元素：
    - 第一个元素是主机的地址
    - 第二个元素是主机的端口号，如果主机名中未指定端口，则为0。
    """
    if is_ipv6(host_name):
        return host_name, 0

    pattern = r"(?:\[(.+?)\]|(.+?))(?:[:：](\d+))?$"
    if not (match := re.match(pattern, host_name)):
        return host_name, 0

    address = match[1] or match[2]
    port = int(match[3]) if match[3] else 0

    return address, port


def is_validity_address(address: str) -> bool:
    """
    判断给定的地址是否为有效的域名或IP地址。

    :params address: 需要验证的地址，可以是域名地址或IP地址。

    :returns: 如果地址有效则返回True，否则返回False。
    """

    return (is_domain(address)) or (is_ipv4(address)) or (is_ipv6(address))


def is_domain(address: str) -> bool:
    """
    判断给定的地址是否为域名。

    :params address: 需要验证的地址。

    :returns: 如果地址为域名则返回True，否则返回False。
    """
    try:
        punycode_address = idna.encode(address).decode("utf-8")
    except idna.IDNAError:
        return False

    domain_pattern = re.compile(
        r"^(?!-)(?:[A-Za-z0-9-]{1,63}\.)+(?:[A-Za-z]{2,}|xn--[A-Za-z0-9-]{2,})$|^(localhost)$"
    )
    return bool(domain_pattern.match(punycode_address))


def is_ipv4(address: str) -> bool:
    """
    判断给定的地址是否为IPv4地址。

    :params address: 需要验证的地址。

    :returns: 如果地址为IPv4地址则返回True，否则返回False。
    """
    ipv4_pattern = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
    if not ipv4_pattern.match(address):
        return False

    return all(0 <= int(part) <= 255 for part in address.split("."))


def is_ipv6(address: str) -> bool:
    """
    判断给定的地址是否为IPv6地址。

    :params address: 需要验证的地址。

    :returns: 如果地址为IPv6地址则返回True，否则返回False。
    """
    ipv6_pattern = re.compile(
        r"^\s*((([0-9A-Fa-f]{1,4}:){7}([0-9A-Fa-f]{1,4}|:))|(([0-9A-Fa-f]{1,4}:){6}(:[0-9A-Fa-f]{1,4}|((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3})|:))|(([0-9A-Fa-f]{1,4}:){5}(((:[0-9A-Fa-f]{1,4}){1,2})|:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3})|:))|(([0-9A-Fa-f]{1,4}:){4}(((:[0-9A-Fa-f]{1,4}){1,3})|((:[0-9A-Fa-f]{1,4})?:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:))|(([0-9A-Fa-f]{1,4}:){3}(((:[0-9A-Fa-f]{1,4}){1,4})|((:[0-9A-Fa-f]{1,4}){0,2}:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:))|(([0-9A-Fa-f]{1,4}:){2}(((:[0-9A-Fa-f]{1,4}){1,5})|((:[0-9A-Fa-f]{1,4}){0,3}:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:))|(([0-9A-Fa-f]{1,4}:){1}(((:[0-9A-Fa-f]{1,4}){1,6})|((:[0-9A-Fa-f]{1,4}){0,4}:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:))|(:(((:[0-9A-Fa-f]{1,4}){1,7})|((:[0-9A-Fa-f]{1,4}){0,5}:((25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)(\.(25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)){3}))|:)))(%.+)?\s*$"  # noqa: E501
    )
    return bool(ipv6_pattern.match(address))


def get_ip_type(address: str) -> Literal["IPv4", "IPv6", "Domain"]:
    """获取地址类型"""
    if not is_validity_address(address):
        raise ValueError("Invalid address")
    if is_ipv4(address):
        return "IPv4"
    elif is_ipv6(address):
        return "IPv6"
    else:
        return "Domain"


async def load_targets(file: str) -> list[Endpoint]:
    """
    读取目标列表。

    支持两种格式：
    - masscan ``-oJ`` 输出的 JSON 列表，只使用 tcp 端口
    - 每行一个 ``地址[:端口]`` 的文本，``#`` 之后为注释，未指定端口时为 25565

    无效的地址会被跳过。

    :params file: 目标列表文件路径

    :returns: 目标地址列表
    """
    try:
        with open(file, encoding="utf-8") as f:
            content = f.read().strip()
    except (OSError, UnicodeDecodeError) as e:
        raise TargetsError(f"Unable to read targets from {file}: {e}") from e

    endpoints: list[Endpoint] = []
    if content.startswith("["):
        try:
            entries = [TargetEntry.model_validate(i) for i in ujson.loads(content)]
        except (ujson.JSONDecodeError, ValidationError) as e:
            raise TargetsError(f"Malformed target list {file}: {e}") from e
        endpoints.extend(
            Endpoint(entry.ip, port.port)
            for entry in entries
            for port in entry.ports
            if port.proto == "tcp"
        )
    else:
        for line in content.splitlines():
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            address, port = await parse_host(line)
            endpoints.append(Endpoint(address, port or DEFAULT_PORT))

    valid = []
    for endpoint in endpoints:
        if not is_validity_address(endpoint.host):
            logger.warning(f"Skipping invalid address: {endpoint.host}")
        elif not 0 < endpoint.port <= 65535:
            logger.warning(f"Skipping invalid port: {endpoint}")
        else:
            valid.append(endpoint)
    return valid


async def get_origin_address(
    domain: str, port: int = DEFAULT_PORT, is_resolve_srv=True
) -> list[Endpoint]:
    """
    获取地址所解析的A或AAAA记录，如果传入不是域名直接返回。
    如果地址是域名，同时尝试解析SRV记录。

    :params domain: 需要解析的地址。
    :params port: 适用于A和AAAA记录的端口号。
    :params is_resolve_srv: 是否解析SRV，默认True

    :returns: 解析得到的地址列表，握手时使用原域名
    """
    ip_type = get_ip_type(domain)
    if ip_type != "Domain":
        return [Endpoint(domain, port)]

    try:
        refer_domain = idna.encode(domain).decode("utf-8")
    except idna.IDNAError:
        refer_domain = domain

    data: list[Endpoint] = []

    resolver = dns.asyncresolver.Resolver()
    resolver.timeout = 10

    async def resolve_srv():
        with contextlib.suppress(
            dns.resolver.NoAnswer,
            dns.resolver.NXDOMAIN,
            dns.exception.Timeout,
            dns.resolver.NoNameservers,
            IndexError,
        ):
            srv_response = await resolver.resolve(f"_minecraft._tcp.{domain}", "SRV")
            for rdata in srv_response:
                srv_address = str(rdata.target).rstrip(".")  # type: ignore
                srv_port = rdata.port  # type: ignore
                if not is_validity_address(srv_address):
                    logger.warning(f"Ignoring SRV target {rdata.target!r} of {domain}")
                    break
                data.extend(await get_origin_address(srv_address, srv_port, False))
                break

    async def resolve_record(rdtype: Literal["A", "AAAA"]):
        with contextlib.suppress(
            dns.resolver.NoAnswer,
            dns.resolver.NXDOMAIN,
            dns.exception.Timeout,
            dns.resolver.NoNameservers,
        ):
            response = await resolver.resolve(domain, rdtype)
            for rdata in response:
                data.append(Endpoint(str(rdata.address), port, refer_domain))  # type: ignore
                break

    if is_resolve_srv:
        await asyncio.gather(resolve_record("AAAA"), resolve_record("A"), resolve_srv())
    else:
        await asyncio.gather(resolve_record("AAAA"), resolve_record("A"))

    return data


async def resolve_endpoints(
    endpoints: list[Endpoint], resolve_srv: bool = True
) -> list[Endpoint]:
    """
    将目标中的域名解析为IP地址，IP地址原样保留，重复的地址只保留一个。

    :params endpoints: 目标地址列表
    :params resolve_srv: 是否解析SRV

    :returns: 解析后的地址列表
    """
    groups = await asyncio.gather(
        *(get_origin_address(e.host, e.port, resolve_srv) for e in endpoints)
    )

    resolved: list[Endpoint] = []
    for endpoint, group in zip(endpoints, groups):
        if not group:
            logger.warning(f"Unable to resolve {endpoint.host}, skipped")
        resolved.extend(group)
    return list(dict.fromkeys(resolved))


async def scan_all(
    endpoints: list[Endpoint], config: ScopedConfig
) -> list[StatusProbe]:
    """
    并发探测所有地址，同时进行的探测数量不超过 ``config.concurrency``。

    单个探测的意外错误只会被记录，不会影响其他探测。

    :params endpoints: 目标地址列表
    :params config: 扫描配置

    :returns: 完成的探测
    """
    semaphore = asyncio.Semaphore(config.concurrency)

    async def probe(endpoint: Endpoint) -> StatusProbe:
        async with semaphore:
            status_probe = StatusProbe(endpoint, config)
            await status_probe.run()
            return status_probe

    results = await asyncio.gather(
        *(probe(endpoint) for endpoint in endpoints), return_exceptions=True
    )

    probes = []
    for endpoint, result in zip(endpoints, results):
        if isinstance(result, BaseException):
            logger.error(f"{endpoint} crashed: {handle_exception(result)}")
            continue
        probes.append(result)
    return probes


def summarize(probes: list[StatusProbe]) -> dict[str, int]:
    """按最终状态统计探测数量"""
    counter = Counter(str(p.state) for p in probes)
    return {str(state): counter[str(state)] for state in ProbeState if state.terminal}
