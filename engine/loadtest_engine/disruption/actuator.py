"""
Disruption actuation.

DisruptionActuator maps each disruption variant onto the matching
NodeInfrastructure operation. ShellNodeInfrastructure implements those
operations as shell commands on the node's host, run through a RemoteShell.
"""

import asyncio
import random
import shlex

from loadtest_engine.disruption.models import Disruption, Hang, Kill, StrainCpu
from loadtest_engine.domain.node import Node
from loadtest_engine.errors import NodeUnreachableError
from loadtest_engine.interfaces.infrastructure import NodeInfrastructure, RemoteShell
from loadtest_engine.logging import get_logger

logger = get_logger(__name__)


class DisruptionActuator:
    """Applies disruptions to nodes through the infrastructure collaborator."""

    def __init__(self, infrastructure: NodeInfrastructure, rng: random.Random | None = None):
        self._infrastructure = infrastructure
        self._rng = rng if rng is not None else random.Random()

    async def apply(self, disruption: Disruption, node: Node) -> str:
        """
        Apply one disruption to one node.

        Args:
            disruption: Disruption variant
            node: Target node

        Returns:
            Short description of what was applied (for the ledger)
        """
        if isinstance(disruption, Hang):
            duration_ms = disruption.duration_ms.draw(self._rng)
            logger.debug("Hanging %s for %dms", node.identity, duration_ms)
            await self._infrastructure.hang(node, duration_ms / 1000)
            return f"hang {duration_ms}ms"
        elif isinstance(disruption, Kill):
            logger.debug("Killing %s", node.identity)
            await self._infrastructure.kill(node)
            return "kill"
        elif isinstance(disruption, StrainCpu):
            logger.debug(
                "Straining CPU on %s (%d loops, %ds)",
                node.identity,
                disruption.parallelism,
                disruption.duration_seconds,
            )
            await self._infrastructure.strain_cpu(
                node,
                disruption.parallelism,
                disruption.duration_seconds,
            )
            return f"strain_cpu {disruption.parallelism}x{disruption.duration_seconds}s"
        raise TypeError(f"Unsupported disruption: {disruption!r}")


class ShellNodeInfrastructure(NodeInfrastructure):
    """
    Infrastructure operations as shell commands on the node's host.

    The node process is found by matching its command line; it is
    suspended with SIGSTOP/SIGCONT for hangs and SIGKILLed for kills. The
    service manager is expected to restart killed nodes.
    """

    def __init__(
        self,
        shell: RemoteShell,
        process_pattern: str,
        service_name: str,
        node_directory: str,
        sudo: bool = True,
    ):
        """
        Initialize shell infrastructure.

        Args:
            shell: Command channel to node hosts
            process_pattern: Pattern matching the node process command line
            service_name: systemd unit running the node
            node_directory: Node's working directory on its host
            sudo: Prefix privileged commands with sudo
        """
        self._shell = shell
        self._process_pattern = process_pattern
        self._service_name = service_name
        self._node_directory = node_directory.rstrip("/")
        self._sudo = "sudo " if sudo else ""

    async def _pid(self, node: Node) -> str:
        output = await self._shell.run(
            node,
            f"pgrep -f {shlex.quote(self._process_pattern)} | head -n 1",
        )
        pid = output.strip()
        if not pid.isdigit():
            raise NodeUnreachableError(
                node.identity,
                f"no process matching {self._process_pattern!r}",
            )
        return pid

    async def reset_state(self, node: Node) -> None:
        service = shlex.quote(self._service_name)
        directory = shlex.quote(self._node_directory)
        await self._shell.run(
            node,
            f"{self._sudo}systemctl stop {service} && "
            f"rm -f {directory}/persistence.mv.db {directory}/persistence.trace.db && "
            f"{self._sudo}systemctl start {service}",
        )
        logger.info("Cleared persisted state on %s", node.identity)

    async def hang(self, node: Node, duration_s: float) -> None:
        pid = await self._pid(node)
        await self._shell.run(node, f"{self._sudo}kill -STOP {pid}")
        try:
            await asyncio.sleep(duration_s)
        finally:
            await self._shell.run(node, f"{self._sudo}kill -CONT {pid}")

    async def kill(self, node: Node) -> None:
        pid = await self._pid(node)
        await self._shell.run(node, f"{self._sudo}kill -9 {pid}")

    async def strain_cpu(self, node: Node, parallelism: int, duration_s: int) -> None:
        await self._shell.run(
            node,
            f"for i in $(seq {parallelism}); do "
            f"timeout {duration_s} sh -c 'while :; do :; done' & "
            f"done; wait",
        )
