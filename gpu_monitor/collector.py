import asyncio
import logging
import socket
from datetime import datetime, timezone

import psutil

from . import command_utils, config, models, parsers

logger = logging.getLogger(__name__)

SMI_QUERY_ARGS = ["-q", "-x"]
UNKNOWN_OWNER = "unknown"
UNKNOWN_HOST = "unknown-host"


class CollectorError(Exception):
    """Base class for failures that make a telemetry request fail."""


class ToolInvocationError(CollectorError):
    """The diagnostic tool is missing, exited non-zero, or could not be run."""


class ParseFailedError(CollectorError):
    """The diagnostic tool ran but its output could not be parsed."""


def get_node_name(settings: config.CollectorSettings) -> str:
    if settings.node_name:
        return settings.node_name
    try:
        return socket.gethostname() or UNKNOWN_HOST
    except OSError:
        return UNKNOWN_HOST


def lookup_process_owner(pid: int) -> str:
    """Best-effort username owning ``pid``. Never raises; returns UNKNOWN_OWNER instead."""
    try:
        return psutil.Process(pid).username()
    except (psutil.Error, ValueError, OSError):
        logger.debug("Could not resolve owner of pid %d", pid)
        return UNKNOWN_OWNER


def rank_processes(processes: list[models.ProcessTelemetry], top_n: int = 2) -> list[models.ProcessTelemetry]:
    """Heaviest memory consumers first, ties kept in report order, truncated to ``top_n``."""
    # sorted() is stable, including with reverse=True
    return sorted(processes, key=lambda p: p.used, reverse=True)[:top_n]


async def enrich_gpu(gpu: models.GPUTelemetry, top_n: int) -> models.GPUTelemetry:
    """Attach owners to the GPU's processes and keep only the top ``top_n`` by memory."""
    owners = await asyncio.gather(*(asyncio.to_thread(lookup_process_owner, p.pid) for p in gpu.processes))
    processes = [p.model_copy(update={"owner": owner}) for p, owner in zip(gpu.processes, owners, strict=True)]
    return gpu.model_copy(update={"processes": rank_processes(processes, top_n)})


async def get_gpu_info(settings: config.CollectorSettings) -> list[models.GPUTelemetry]:
    """Run the diagnostic tool and parse its output.

    Raises ToolInvocationError or ParseFailedError.
    """
    args = [settings.smi_path, *SMI_QUERY_ARGS]
    rc, stdout, stderr = await command_utils.run_command_async(args, timeout=settings.tool_timeout_sec)
    if rc != 0 or stdout is None:
        msg = f"failed to run {settings.smi_path} (rc={rc}): {(stderr or 'N/A').strip()}"
        raise ToolInvocationError(msg)

    try:
        return parsers.parse_smi_xml(stdout)
    except parsers.TelemetryParseError as e:
        raise ParseFailedError(str(e)) from e


async def get_telemetry(settings: config.CollectorSettings) -> models.HostTelemetry:
    """Collect a fresh telemetry snapshot for this host."""
    gpus = await get_gpu_info(settings)

    if settings.enrich_processes:
        gpus = list(await asyncio.gather(*(enrich_gpu(gpu, settings.top_processes) for gpu in gpus)))

    telemetry = models.HostTelemetry(
        node_name=get_node_name(settings),
        timestamp=datetime.now(timezone.utc),
        gpus=gpus,
    )
    logger.info("Collected telemetry for %d GPU(s) on %s.", len(gpus), telemetry.node_name)
    return telemetry
