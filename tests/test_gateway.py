from pathlib import Path

import pytest

from config import Config
from input_sources import InputKind, InputSource
from modem import InboundMessage
from panel.storage import Role
from panel.users import UserRegistry
from sms_gateway import GatewayRuntime


class ScriptedSource(InputSource):
    """Feeds a fixed byte string one byte per poll and records replies."""

    def __init__(self, label: str, data: bytes = b"", is_local: bool = False):
        super().__init__(label)
        self.is_local = is_local
        self.data = bytearray(data)
        self.replies = []

    def push(self, text: str) -> None:
        self.data.extend(text.encode("utf-8"))

    def read_byte(self) -> bytes:
        if not self.data:
            return b""
        byte = bytes(self.data[:1])
        del self.data[:1]
        return byte

    def write_reply(self, text: str) -> None:
        self.replies.append(text)


class FakeSms:
    def __init__(self):
        self.inbox = []
        self.sent = []
        self.deleted = []
        self.fetches = 0

    def send(self, phone: str, body: str) -> bool:
        self.sent.append((phone, body))
        return True

    def fetch_messages(self):
        self.fetches += 1
        messages, self.inbox = self.inbox, []
        return messages

    def delete(self, location: str) -> bool:
        self.deleted.append(location)
        return True


class FakePanel:
    def __init__(self):
        self.calls = []

    def arm(self) -> int:
        self.calls.append("arm")
        return 0

    def disarm(self) -> int:
        self.calls.append("disarm")
        return 0


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


ADMIN = "+61400000001"
STRANGER = "+61400000099"


def make_config(tmp_path: Path) -> Config:
    return Config(
        master_pin="9999",
        nx584_client="nx584_client",
        users_path=tmp_path / "users.conf",
        gammu_path="gammu",
        sms_check_interval=1.0,
        idle_sleep_ms=10,
        siren_debounce_seconds=10.0,
        serial_baud=115200,
        send_sms=True,
        log_level="INFO",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def panel():
    return FakePanel()


@pytest.fixture
def registry(tmp_path):
    reg = UserRegistry(tmp_path / "users.conf")
    reg.add(ADMIN, Role.ADMIN)
    return reg


def make_runtime(tmp_path, sources, sms, panel, registry, clock):
    return GatewayRuntime(
        make_config(tmp_path),
        sources,
        sms,
        panel,
        registry=registry,
        clock=clock,
        sleep=clock.sleep,
    )


def drain_sources(runtime, sources):
    while any(source.data for source in sources):
        runtime.poll_sources()


def test_log_line_then_local_status(tmp_path, sms, panel, registry, clock):
    log = ScriptedSource("/var/log/nx584.log")
    console = ScriptedSource("-", is_local=True)
    runtime = make_runtime(tmp_path, [log, console], sms, panel, registry, clock)

    log.push("2019-05-01 10:00:00,000 controller INFO Zone 3 (Kitchen) state is FAULT\n")
    drain_sources(runtime, [log])
    console.push("status\r\n")
    drain_sources(runtime, [console])

    assert log.kind == InputKind.CONTROLLER_LOG
    assert console.kind == InputKind.TEXT_COMMANDS
    assert len(console.replies) == 1
    assert "zone #3" in console.replies[0]


def test_unauthorised_sms_arm_is_ignored(tmp_path, sms, panel, registry, clock):
    runtime = make_runtime(tmp_path, [], sms, panel, registry, clock)
    sms.inbox = [InboundMessage(location="4", sender=STRANGER, body="arm")]
    runtime.check_messages()
    assert panel.calls == []
    assert sms.sent == []
    assert sms.deleted == ["4"]


def test_authorised_sms_gets_reply(tmp_path, sms, panel, registry, clock):
    runtime = make_runtime(tmp_path, [], sms, panel, registry, clock)
    sms.inbox = [InboundMessage(location="1", sender=ADMIN, body="ARM")]
    runtime.check_messages()
    assert panel.calls == ["arm"]
    assert sms.sent == [(ADMIN, "Commanded alarm to ARM.")]
    assert sms.deleted == ["1"]


def test_sms_text_is_not_treated_as_log_line(tmp_path, sms, panel, registry, clock):
    runtime = make_runtime(tmp_path, [], sms, panel, registry, clock)
    sms.inbox = [InboundMessage(location="2", sender=ADMIN, body="INFO:controller:Zone 3 (x) state is FAULT")]
    runtime.check_messages()
    assert runtime.state.faulted_zones() == []
    assert sms.sent == []


def test_mailbox_checked_at_most_once_per_second(tmp_path, sms, panel, registry, clock):
    runtime = make_runtime(tmp_path, [], sms, panel, registry, clock)
    for _ in range(50):
        runtime.run_once()
    # 50 idle ticks of 10 ms each is half a second
    assert sms.fetches == 1
    for _ in range(60):
        runtime.run_once()
    assert sms.fetches == 2


def test_long_siren_broadcasts_once(tmp_path, sms, panel, registry, clock):
    registry.add("+61400000002")
    log = ScriptedSource("log")
    runtime = make_runtime(tmp_path, [log], sms, panel, registry, clock)
    log.push("INFO:controller:System asserts Global Siren on\n")
    drain_sources(runtime, [log])

    clock.now += 11
    for _ in range(5):
        runtime.run_once()

    broadcasts = [body for _, body in sms.sent if body.startswith("UNEXPECTED ALARM ACTIVITY: ")]
    assert len(broadcasts) == 2
    assert "Siren IS sounding." in broadcasts[0]
    assert "You and 1 other(s)" in broadcasts[0]


def test_modem_chatter_marks_cell_modem(tmp_path, sms, panel, registry, clock):
    device = ScriptedSource("/dev/ttyUSB0", b"ATI\r\nOK\r\n")
    runtime = make_runtime(tmp_path, [device], sms, panel, registry, clock)
    drain_sources(runtime, [device])
    assert device.kind == InputKind.CELL_MODEM
    assert device.replies == []


def test_local_add_persists_and_welcomes(tmp_path, sms, panel, registry, clock):
    console = ScriptedSource("-", b"add +61400000003\n", is_local=True)
    runtime = make_runtime(tmp_path, [console], sms, panel, registry, clock)
    drain_sources(runtime, [console])
    assert console.replies == ["Added +61400000003 to list of authorised users."]
    assert (tmp_path / "users.conf").read_text() == f"admin {ADMIN}\nuser +61400000003\n"
    assert sms.sent[0][0] == "+61400000003"


def test_log_file_commands_have_no_authority(tmp_path, sms, panel, registry, clock):
    log = ScriptedSource("/var/log/nx584.log")
    runtime = make_runtime(tmp_path, [log], sms, panel, registry, clock)
    log.push(f"admin +61400000666\ndel {ADMIN}\nadd +61400000667\nlist\nstatus\ndisarm\narm\n")
    drain_sources(runtime, [log])

    assert not registry.is_authorized("+61400000666")
    assert not registry.is_authorized("+61400000667")
    assert registry.is_admin_or_local(ADMIN)
    assert panel.calls == []
    assert log.replies == []
    assert sms.sent == []


def test_help_answers_any_source(tmp_path, sms, panel, registry, clock):
    device = ScriptedSource("/dev/ttyUSB0", b"help\n")
    runtime = make_runtime(tmp_path, [device], sms, panel, registry, clock)
    drain_sources(runtime, [device])
    assert len(device.replies) == 1
    assert device.replies[0].startswith("Valid commands:")
