"""Agent process launch and supervision."""

from codexline.process.launch import (
    LaunchSpec,
    build_launch_spec,
    serialize_config_overrides,
)
from codexline.process.supervisor import (
    AgentProcess,
    ProcessSupervisor,
    SubprocessAgentProcess,
)

__all__ = [
    "AgentProcess",
    "LaunchSpec",
    "ProcessSupervisor",
    "SubprocessAgentProcess",
    "build_launch_spec",
    "serialize_config_overrides",
]
