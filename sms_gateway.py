import logging
import re
import signal
import sys
import time
from typing import Callable, List, Optional

from config import Config, apply_cli_overrides, load_config, setup_logging
from input_sources import InputKind, InputSetupError, InputSource, open_input
from modem import GammuSmsClient, InboundMessage, Nx584Client
from panel.commands import CommandEngine, NotificationSender, PanelController
from panel.escalation import EscalationMonitor, broadcast_escalation
from panel.parser import CommandCandidate, classify_line
from panel.state import AlarmState
from panel.users import UserRegistry

logger = logging.getLogger("nx584_sms")

# Echoes and result codes a modem prints in answer to ATI.
MODEM_CHATTER = re.compile(r"^(AT\S*|OK|ERROR|RING|\+[A-Z]+:.*|Manufacturer:.*|Model:.*|Revision:.*)$")

BANNER = (
    "NX584 SMS gateway running.\n"
    "\n"
    "If you specified stdin on the command line, you can type commands interactively.\n"
)


def graceful_exit(signum, frame) -> None:  # pragma: no cover - signal handler
    logger.info("Shutting down (signal %s)", signum)
    raise KeyboardInterrupt()


def source_identity(source: InputSource) -> Optional[str]:
    """Console input is the local operator; anything else is never authorised.

    Registered numbers always start with "+", so a "source:" identity cannot
    match one.
    """
    if source.is_local:
        return None
    return f"source:{source.label}"


class GatewayRuntime:
    """Owns the alarm model and user list and drives everything from one loop."""

    def __init__(
        self,
        config: Config,
        sources: List[InputSource],
        sms: GammuSmsClient,
        panel: PanelController,
        sender: Optional[NotificationSender] = None,
        registry: Optional[UserRegistry] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.sources = sources
        self.sms = sms
        self.sender = sender or sms
        self.clock = clock
        self.sleep = sleep

        self.state = AlarmState()
        self.registry = registry or UserRegistry(config.users_path)
        self.monitor = EscalationMonitor(config.siren_debounce_seconds, clock=clock)
        self.engine = CommandEngine(self.state, self.registry, panel, self.sender)
        self.last_sms_check: Optional[float] = None

    def handle_line(self, source: InputSource, line: str) -> None:
        logger.debug("Have line of input from '%s': %s", source.label, line)
        event = classify_line(line)
        if not isinstance(event, CommandCandidate):
            source.kind = InputKind.CONTROLLER_LOG
            self.state.apply_event(event)
            self.monitor.observe(event, now=self.clock())
            return

        if not event.raw_line:
            return
        result = self.engine.handle(event.raw_line, origin=source_identity(source))
        if result is not None:
            source.kind = InputKind.TEXT_COMMANDS
            logger.info("Command '%s' from %s", result.verb, source.label)
            source.write_reply(result.reply)
            return
        if MODEM_CHATTER.match(event.raw_line):
            source.kind = InputKind.CELL_MODEM
            logger.debug("Modem output on %s: %s", source.label, event.raw_line)
            return
        logger.info("Unrecognised input string '%s' from %s", event.raw_line, source.label)

    def handle_message(self, message: InboundMessage) -> None:
        logger.info("SMS message #%s from '%s' is '%s'", message.location, message.sender, message.body)
        if not message.sender or not self.registry.is_authorized(message.sender):
            logger.warning("'%s' is not authorised to use this service", message.sender)
            return
        result = self.engine.handle(message.body, origin=message.sender)
        if result is None:
            logger.info("No command in message from %s", message.sender)
            return
        if not self.sender.send(message.sender, result.reply):
            logger.error("Reply to %s for '%s' was not sent", message.sender, result.verb)

    def check_messages(self) -> int:
        messages = self.sms.fetch_messages()
        for message in messages:
            try:
                self.handle_message(message)
            except Exception:
                logger.exception("Failed to handle message #%s", message.location)
            self.sms.delete(message.location)
        return len(messages)

    def poll_sources(self) -> int:
        events = 0
        for source in self.sources:
            got_data, line = source.poll()
            if got_data:
                events += 1
            if line is None:
                continue
            try:
                self.handle_line(source, line)
            except Exception:
                logger.exception("Failed to handle line from %s", source.label)
        return events

    def run_once(self) -> None:
        if not self.poll_sources():
            self.sleep(self.config.idle_sleep_ms / 1000.0)

        now = self.clock()
        self.monitor.tick(now)
        if self.monitor.drain():
            broadcast_escalation(self.state, self.registry, self.sender)

        if self.last_sms_check is None or now - self.last_sms_check >= self.config.sms_check_interval:
            self.check_messages()
            self.last_sms_check = self.clock()

    def run(self) -> None:
        while True:
            self.run_once()

    def close(self) -> None:
        for source in self.sources:
            try:
                source.close()
            except OSError as exc:
                logger.debug("Closing %s failed: %s", source.label, exc)


def open_sources(names: List[str], baudrate: int) -> List[InputSource]:
    sources: List[InputSource] = []
    try:
        for name in names:
            sources.append(open_input(name, baudrate=baudrate))
    except InputSetupError:
        for source in sources:
            source.close()
        raise
    return sources


def main(argv: Optional[List[str]] = None) -> int:
    config = load_config()
    config, inputs = apply_cli_overrides(config, sys.argv[1:] if argv is None else argv)
    setup_logging(config.log_level, config.log_dir)
    logger.info("Starting NX584 SMS gateway")

    try:
        sources = open_sources(inputs, config.serial_baud)
    except InputSetupError as exc:
        logger.error("Could not setup input device: %s", exc)
        return 1
    logger.info("%d input streams setup.", len(sources))

    sms = GammuSmsClient(config.gammu_path, enabled=config.send_sms)
    panel = Nx584Client(config.nx584_client, config.master_pin)
    runtime = GatewayRuntime(config, sources, sms, panel)
    runtime.registry.load()

    signal.signal(signal.SIGINT, graceful_exit)
    sys.stderr.write(BANNER)
    try:
        runtime.run()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        runtime.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
