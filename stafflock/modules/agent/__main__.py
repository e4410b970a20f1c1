"""
Console session agent.

    python -m stafflock.modules.agent --api-url http://localhost:8080 --api-key KEY

Commands on stdin: start, transfer, approve, decline, end, endall, status, quit.
"""

import asyncio
import getpass
import logging
from typing import Optional, Tuple

import click

from . import events
from .agent import AgentSettings, SessionAgent
from .client import SessionClient
from .device import DeviceIdentity

logger = logging.getLogger("stafflock.agent")

COMMANDS = "start, transfer, approve, decline, end, endall, status, quit"


async def _ask_credential(prompt: str) -> str:
    return await asyncio.to_thread(getpass.getpass, prompt)


class TransferApprovals:
    """
    Credential provider for owner-side transfer prompts.

    The agent awaits an answer that the command loop supplies through
    ``answer()``, so only the command loop ever reads the terminal.
    """

    def __init__(self):
        self._pending: Optional[Tuple[str, asyncio.Future]] = None

    @property
    def requester(self) -> Optional[str]:
        return self._pending[0] if self._pending else None

    async def __call__(self, reason: str, context: dict) -> Optional[str]:
        requester = context.get("requestedBy")
        answer = asyncio.get_running_loop().create_future()
        self._pending = (requester, answer)
        click.echo(f"Device {requester} wants this session; type 'approve' or 'decline'")
        try:
            return await answer
        finally:
            if self._pending and self._pending[1] is answer:
                self._pending = None

    def answer(self, credential: Optional[str]) -> bool:
        """Resolve the waiting prompt; an empty credential declines. False when nothing waits."""
        if not self._pending or self._pending[1].done():
            return False
        self._pending[1].set_result(credential or None)
        return True


def _describe(agent: SessionAgent) -> str:
    if agent.is_active:
        return f"{agent.state.value}, {agent.remaining() // 1000}s left"
    if agent.existing_device_id:
        return f"{agent.state.value}, session held by {agent.existing_device_id}"
    return agent.state.value


def _attach_listeners(agent: SessionAgent) -> None:
    agent.on(events.ACTIVE, lambda data: logger.info(f"Session active until {data['endTime']}"))
    agent.on(events.EXPIRED, lambda data: logger.info("Session expired"))
    agent.on(events.REVOKED, lambda data: logger.info(f"Staff access revoked ({data['reason']})"))
    agent.on(
        events.TRANSFER_OFFER,
        lambda data: logger.info(f"Session active on {data['existingDeviceId']}; type 'transfer' to move it here"),
    )
    agent.on(events.TRANSFER_PENDING, lambda data: logger.info("Waiting for the other device to approve"))
    agent.on(events.TRANSFERRED, lambda data: logger.info(f"Session moved to {data['toDeviceId']}"))


async def _run(agent: SessionAgent, approvals: TransferApprovals) -> None:
    async with agent:
        while True:
            command = (await asyncio.to_thread(input, "> ")).strip().lower()
            try:
                if command == "start":
                    await agent.request_start(await _ask_credential("Password: "))
                elif command == "transfer":
                    await agent.accept_transfer(await _ask_credential("Password: "))
                elif command == "approve":
                    if approvals.requester is None:
                        click.echo("No transfer request is waiting")
                    elif not approvals.answer(await _ask_credential("Password: ")):
                        click.echo("Transfer request withdrawn")
                elif command == "decline":
                    if not approvals.answer(None):
                        click.echo("No transfer request is waiting")
                elif command == "end":
                    await agent.request_end(await _ask_credential("Password: "))
                elif command == "endall":
                    await agent.request_end_all(await _ask_credential("Password: "))
                elif command == "status":
                    click.echo(_describe(agent))
                elif command in ("quit", "exit"):
                    return
                elif command:
                    click.echo(f"Commands: {COMMANDS}")
            except Exception as e:
                logger.error(f"{command} failed: {e}")


@click.command()
@click.option("--api-url", envvar="STAFFLOCK_API_URL", default="http://localhost:8080")
@click.option("--api-key", envvar="STAFFLOCK_API_KEY", default=None)
@click.option("--token", envvar="STAFFLOCK_TOKEN", default=None)
@click.option("--device-file", envvar="STAFFLOCK_DEVICE_FILE", default=None)
@click.option("--check-interval", envvar="STAFFLOCK_CHECK_INTERVAL", default=30.0, type=float)
@click.option("--fast-poll-interval", envvar="STAFFLOCK_FAST_POLL_INTERVAL", default=2.0, type=float)
@click.option("--drift-interval", envvar="STAFFLOCK_DRIFT_INTERVAL", default=60.0, type=float)
@click.option("--drift-threshold-ms", envvar="STAFFLOCK_DRIFT_THRESHOLD_MS", default=2000, type=int)
@click.option("--grace-period", envvar="STAFFLOCK_GRACE_PERIOD", default=5.0, type=float)
@click.option("--supports-transfer/--no-transfer", envvar="STAFFLOCK_SUPPORTS_TRANSFER", default=True)
@click.option("--log-level", envvar="LOG_LEVEL", default="INFO")
def main(
    api_url: str,
    api_key: str,
    token: str,
    device_file: str,
    check_interval: float,
    fast_poll_interval: float,
    drift_interval: float,
    drift_threshold_ms: int,
    grace_period: float,
    supports_transfer: bool,
    log_level: str,
):
    logging.basicConfig(
        level=log_level.upper(), format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if not api_key and not token:
        raise click.UsageError("Set STAFFLOCK_API_KEY or STAFFLOCK_TOKEN")

    settings = AgentSettings(
        check_interval=check_interval,
        fast_poll_interval=fast_poll_interval,
        drift_interval=drift_interval,
        drift_threshold_ms=drift_threshold_ms,
        grace_period=grace_period,
        supports_transfer=supports_transfer,
    )
    device_id = DeviceIdentity(device_file).load_or_create()

    async def run():
        async with SessionClient(api_url, api_key=api_key, token=token) as client:
            approvals = TransferApprovals()
            agent = SessionAgent(client, device_id, settings=settings, credential_provider=approvals)
            _attach_listeners(agent)
            await _run(agent, approvals)

    try:
        asyncio.run(run())
    except (KeyboardInterrupt, EOFError):
        logger.info("Agent stopped by user")


if __name__ == "__main__":
    main()
