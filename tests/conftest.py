"""Shared fixtures for the gpu_monitor tests."""

from datetime import datetime, timezone

import pytest

from gpu_monitor.models import GPUTelemetry, HostConfig, HostTelemetry, ProcessTelemetry

SAMPLE_SMI_XML = """<?xml version="1.0" ?>
<!DOCTYPE nvidia_smi_log SYSTEM "nvsmi_device_v12.dtd">
<nvidia_smi_log>
    <timestamp>Fri Oct 16 10:00:00 2026</timestamp>
    <driver_version>550.54.15</driver_version>
    <attached_gpus>2</attached_gpus>
    <gpu id="00000000:01:00.0">
        <product_name>NVIDIA A100-SXM4-80GB</product_name>
        <fb_memory_usage>
            <total>81920 MiB</total>
            <reserved>512 MiB</reserved>
            <used>1024 MiB</used>
            <free>80384 MiB</free>
        </fb_memory_usage>
        <utilization>
            <gpu_util>87 %</gpu_util>
            <memory_util>40 %</memory_util>
        </utilization>
        <temperature>
            <gpu_temp>65 C</gpu_temp>
        </temperature>
        <gpu_power_readings>
            <power_state>P0</power_state>
            <instant_power_draw>250.00 W</instant_power_draw>
            <current_power_limit>400.00 W</current_power_limit>
        </gpu_power_readings>
        <processes>
            <process_info>
                <pid>1234</pid>
                <type>C</type>
                <process_name>python</process_name>
                <used_memory>500 MiB</used_memory>
            </process_info>
            <process_info>
                <pid>5678</pid>
                <type>C</type>
                <process_name>/usr/bin/torchrun</process_name>
                <used_memory>3000 MiB</used_memory>
            </process_info>
            <process_info>
                <pid>9012</pid>
                <type>C</type>
                <process_name>jupyter</process_name>
                <used_memory>1000 MiB</used_memory>
            </process_info>
        </processes>
    </gpu>
    <gpu id="00000000:02:00.0">
        <product_name>NVIDIA A100-SXM4-80GB</product_name>
        <fb_memory_usage>
            <total>80 GiB</total>
            <used>N/A</used>
        </fb_memory_usage>
        <utilization>
            <gpu_util>0 %</gpu_util>
        </utilization>
        <temperature>
            <gpu_temp>N/A</gpu_temp>
        </temperature>
        <gpu_power_readings>
            <instant_power_draw>N/A</instant_power_draw>
            <current_power_limit>400.00 W</current_power_limit>
        </gpu_power_readings>
        <processes>
        </processes>
    </gpu>
</nvidia_smi_log>
"""

EMPTY_SMI_XML = """<?xml version="1.0" ?>
<nvidia_smi_log>
    <driver_version>550.54.15</driver_version>
    <attached_gpus>0</attached_gpus>
</nvidia_smi_log>
"""


@pytest.fixture
def sample_smi_xml() -> str:
    return SAMPLE_SMI_XML


@pytest.fixture
def empty_smi_xml() -> str:
    return EMPTY_SMI_XML


@pytest.fixture
def nodes() -> list[HostConfig]:
    return [
        HostConfig(name="node-a", host="127.0.0.1", port=9001, alias="Alpha"),
        HostConfig(name="node-b", host="127.0.0.1", port=9002, alias="Beta"),
    ]


@pytest.fixture
def sample_telemetry() -> HostTelemetry:
    return HostTelemetry(
        node_name="node-a",
        timestamp=datetime(2026, 10, 16, 10, 0, tzinfo=timezone.utc),
        gpus=[
            GPUTelemetry(
                id="00000000:01:00.0",
                name="NVIDIA A100-SXM4-80GB",
                utilization=87.0,
                memory_used=1024**3,
                memory_total=80 * 1024**3,
                temperature=65,
                power_usage=250000,
                power_limit=400000,
                processes=[ProcessTelemetry(pid=1234, name="python", used=500 * 1024**2)],
            )
        ],
    )
