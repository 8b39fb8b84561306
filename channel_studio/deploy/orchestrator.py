"""
Deploy Orchestrator - drives compile → submit → activate against the remote engine.

State machine per deploy-target key:
    idle/success/error/stopped ──► loading ──► success | error | stopped

Run axis (whole channel): offline ◄──► online, advanced only after the engine
confirmed a start or stop. A failed call never moves the run axis.

Concurrent deploys for the same key are not serialized: each runs to completion
and the status written last wins.
"""

import logging
from typing import Optional, Union, TYPE_CHECKING

from channel_studio.compiler.channel import EngineChannel
from channel_studio.compiler.compiler import FlowCompiler
from channel_studio.deploy.state import DeployStatus, RunStatus, TargetStatus
from channel_studio.engine_client.client import EngineClient
from channel_studio.errors import ChannelStudioError, EngineRequestError, FlowCompileError

if TYPE_CHECKING:
    from channel_studio.persistence.gateway import PersistenceGateway
    from channel_studio.workspace import FlowSnapshot, FlowWorkspace

logger = logging.getLogger(__name__)


class DeployOrchestrator:
    """
    Owns the deploy status and run status of a workspace. Every public operation
    except stop_current_channel resolves to a terminal status instead of raising.
    """

    def __init__(
        self,
        workspace: "FlowWorkspace",
        engine: EngineClient,
        compiler: Optional[FlowCompiler] = None,
        gateway: Optional["PersistenceGateway"] = None,
    ):
        self.workspace = workspace
        self.engine = engine
        self.compiler = compiler or FlowCompiler()
        self.gateway = gateway

    @property
    def run_state(self):
        return self.workspace.run_state

    def compile_snapshot(self, snapshot: "FlowSnapshot") -> EngineChannel:
        channel = snapshot.channel
        return self.compiler.compile(
            snapshot.nodes,
            snapshot.edges,
            channel_name=channel.channel_name or "My Channel",
            channel_id=channel.channel_id,
            error_destination_id=channel.error_destination_id,
            max_retries=channel.max_retries,
        )

    def compile_current(self) -> EngineChannel:
        """Compile the workspace as it is now. Raises FlowCompileError."""
        return self.compile_snapshot(self.workspace.snapshot())

    # ── Deploy ────────────────────────────────────────────────────

    async def execute_deploy(self, target_key: str) -> TargetStatus:
        """
        Compile the current graph, submit it with its editor schema, then start the channel.
        Later steps are never attempted after an earlier one fails.
        """
        self.run_state.set_target(target_key, DeployStatus.LOADING)
        snapshot = self.workspace.snapshot()
        channel_id = snapshot.channel.channel_id

        try:
            compiled = self.compile_snapshot(snapshot)
        except FlowCompileError as e:
            logger.warning(f"[DEPLOY] Compile failed for channel {channel_id}: {e}")
            return self.run_state.set_target(target_key, DeployStatus.ERROR, f"Compile failed: {e}")
        except Exception as e:
            logger.exception(f"[DEPLOY] Unexpected error compiling channel {channel_id}")
            return self.run_state.set_target(target_key, DeployStatus.ERROR, f"Compile failed: {e}")

        try:
            await self.engine.deploy_channel(compiled, snapshot.frontend_schema())
            await self.engine.start_channel(channel_id)
        except EngineRequestError as e:
            logger.error(f"[DEPLOY] Deploy of channel {channel_id} failed: {e}")
            return self.run_state.set_target(target_key, DeployStatus.ERROR, str(e))
        except Exception as e:
            logger.exception(f"[DEPLOY] Unexpected error deploying channel {channel_id}")
            return self.run_state.set_target(target_key, DeployStatus.ERROR, str(e))

        self.run_state.set_run_status(RunStatus.ONLINE)
        status = self.run_state.set_target(target_key, DeployStatus.SUCCESS)
        logger.info(f"[DEPLOY] Channel {channel_id} deployed and online")
        self._save()
        return status

    # ── Run control ───────────────────────────────────────────────

    async def toggle_channel_status(
        self, target_key: str, desired: Union[RunStatus, str],
    ) -> TargetStatus:
        """Start or stop the deployed channel."""
        desired = RunStatus(desired)
        channel_id = self.workspace.channel.channel_id
        self.run_state.set_target(target_key, DeployStatus.LOADING)

        try:
            if desired == RunStatus.ONLINE:
                await self.engine.start_channel(channel_id)
            else:
                await self.engine.stop_channel(channel_id)
        except EngineRequestError as e:
            logger.error(f"[DEPLOY] Toggle of channel {channel_id} to {desired.value} failed: {e}")
            return self.run_state.set_target(target_key, DeployStatus.ERROR, str(e))
        except Exception as e:
            logger.exception(f"[DEPLOY] Unexpected error toggling channel {channel_id}")
            return self.run_state.set_target(target_key, DeployStatus.ERROR, str(e))

        self.run_state.set_run_status(desired)
        final = DeployStatus.SUCCESS if desired == RunStatus.ONLINE else DeployStatus.STOPPED
        logger.info(f"[DEPLOY] Channel {channel_id} is now {desired.value}")
        return self.run_state.set_target(target_key, final)

    async def stop_current_channel(self) -> None:
        """Stop the channel; failures propagate to the caller as EngineRequestError."""
        channel_id = self.workspace.channel.channel_id
        try:
            await self.engine.stop_channel(channel_id)
        except EngineRequestError as e:
            logger.error(f"[DEPLOY] Failed to stop channel {channel_id}: {e}")
            raise
        self.run_state.set_run_status(RunStatus.OFFLINE)

    async def test_channel(self, payload_type: str, payload: str):
        """Inject a test message into the deployed channel. Raises EngineRequestError."""
        return await self.engine.test_channel(self.workspace.channel.channel_id, payload_type, payload)

    # ── Internal ──────────────────────────────────────────────────

    def _save(self) -> None:
        if self.gateway is None:
            return
        try:
            self.gateway.save(self.workspace)
        except (ChannelStudioError, OSError) as e:
            logger.warning(f"[DEPLOY] Deployed, but saving the flow locally failed: {e}")
