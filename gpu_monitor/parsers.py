import logging
import math
import re
import xml.etree.ElementTree as ET

from .models import GPUTelemetry, ProcessTelemetry

logger = logging.getLogger(__name__)

MEMORY_UNITS = {"KiB": 1024, "MiB": 1024**2, "GiB": 1024**3}

# Leading number, optional whitespace, then the unit
_MAGNITUDE_RE = re.compile(r"^\s*([-+]?\d+(?:\.\d+)?)\s*([A-Za-z%]*)\s*$")


class TelemetryParseError(ValueError):
    """Raised when the diagnostic tool output is not structurally valid."""


def _split_magnitude(value: str | None) -> tuple[float, str] | None:
    """Split ``"250.00 W"`` into ``(250.0, "W")``. Returns None when nothing usable is found."""
    if not value:
        return None
    match = _MAGNITUDE_RE.match(value)
    if not match:
        return None
    try:
        number = float(match.group(1))
    except ValueError:
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number, match.group(2)


def parse_memory_value(value: str | None) -> int:
    """Parse a memory string like "1024 MiB" or "1 GiB" into bytes. Malformed input gives 0."""
    parsed = _split_magnitude(value)
    if parsed is None:
        return 0
    number, unit = parsed
    if unit in MEMORY_UNITS:
        return int(number * MEMORY_UNITS[unit])
    if unit == "B":
        return int(number)
    return 0


def parse_power_value(value: str | None) -> int:
    """Parse a power string like "250.00 W" into milliwatts. "N/A", "" and garbage give 0."""
    parsed = _split_magnitude(value)
    if parsed is None:
        return 0
    number, unit = parsed
    # A bare number is taken to be watts
    if unit in ("W", ""):
        return int(number * 1000)
    return 0


def parse_percentage(value: str | None) -> float:
    """Parse a percentage string like "45 %" into a float clamped to [0, 100]."""
    parsed = _split_magnitude(value)
    if parsed is None or parsed[1] != "%":
        return 0.0
    return min(parsed[0], 100.0)


def parse_temperature(value: str | None) -> int:
    """Parse a temperature string like "65 C" into whole degrees."""
    if not value:
        return 0
    match = re.fullmatch(r"\s*(\d+)\s*C\s*", value)
    if not match:
        return 0
    return int(match.group(1))


def _text(element: ET.Element, path: str) -> str:
    """Return the stripped text at ``path`` below ``element``, or "" if it is missing."""
    found = element.find(path)
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def parse_process(process_element: ET.Element) -> ProcessTelemetry:
    pid_text = _text(process_element, "pid")
    try:
        pid = int(pid_text)
    except ValueError:
        logger.warning("Could not parse process pid: %r", pid_text)
        pid = 0
    return ProcessTelemetry(
        pid=max(pid, 0),
        name=_text(process_element, "process_name"),
        used=parse_memory_value(_text(process_element, "used_memory")),
    )


def parse_gpu(gpu_element: ET.Element) -> GPUTelemetry:
    """Convert one ``<gpu>`` element into a GPUTelemetry record."""
    memory_used = parse_memory_value(_text(gpu_element, "fb_memory_usage/used"))
    memory_total = parse_memory_value(_text(gpu_element, "fb_memory_usage/total"))
    if memory_total and memory_used > memory_total:
        logger.warning(
            "GPU %s reports %d bytes used above a total of %d, clamping.",
            gpu_element.get("id", ""),
            memory_used,
            memory_total,
        )
        memory_used = memory_total

    # Drivers before R530 report power under <power_readings> with shorter tag names
    if gpu_element.find("gpu_power_readings") is not None:
        power_usage = parse_power_value(_text(gpu_element, "gpu_power_readings/instant_power_draw"))
        power_limit = parse_power_value(_text(gpu_element, "gpu_power_readings/current_power_limit"))
    else:
        power_usage = parse_power_value(_text(gpu_element, "power_readings/power_draw"))
        power_limit = parse_power_value(_text(gpu_element, "power_readings/power_limit"))

    processes = [parse_process(p) for p in gpu_element.findall("processes/process_info")]

    return GPUTelemetry(
        id=gpu_element.get("id", ""),
        name=_text(gpu_element, "product_name"),
        utilization=parse_percentage(_text(gpu_element, "utilization/gpu_util")),
        memory_used=memory_used,
        memory_total=memory_total,
        temperature=parse_temperature(_text(gpu_element, "temperature/gpu_temp")),
        power_usage=power_usage,
        power_limit=power_limit,
        processes=processes,
    )


def parse_smi_xml(xml_output: bytes | str) -> list[GPUTelemetry]:
    """Parse the output of ``nvidia-smi -q -x`` into GPU records, in the order the tool lists them."""
    try:
        root = ET.fromstring(xml_output)
    except ET.ParseError as e:
        msg = f"failed to parse nvidia-smi XML output: {e}"
        raise TelemetryParseError(msg) from e

    gpus = [parse_gpu(gpu_element) for gpu_element in root.findall("gpu")]
    logger.debug("Parsed %d GPU(s) from nvidia-smi output.", len(gpus))
    return gpus
