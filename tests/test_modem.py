import subprocess

import modem
from modem import LAUNCH_FAILED, GammuSmsClient, InboundMessage, Nx584Client, parse_getallsms

GETALLSMS_REPORT = """\
Location 1, folder "Inbox", SIM memory, Inbox folder
SMS message
SMSC number          : "+61418706700"
Sent                 : Wed 01 May 2019 10:00:00  +1000
Coding               : Default GSM alphabet (no compression)
Remote number        : "+61400000001"
Status               : UnRead

Status

Location 2, folder "Inbox", SIM memory, Inbox folder
SMS message
SMSC number          : "+61418706700"
Sent                 : Wed 01 May 2019 10:05:00  +1000
Coding               : Default GSM alphabet (no compression)
Remote number        : "+61400000002"
Status               : Read

arm
second line ignored

2 SMS parts in 2 SMS sequences
"""


def test_parse_getallsms():
    assert parse_getallsms(GETALLSMS_REPORT) == [
        InboundMessage(location="1", sender="+61400000001", body="Status"),
        InboundMessage(location="2", sender="+61400000002", body="arm"),
    ]


def test_parse_empty_report():
    assert parse_getallsms("") == []


class Recorder:
    def __init__(self, returncode=0, stdout="", raises=None):
        self.returncode = returncode
        self.stdout = stdout
        self.raises = raises
        self.calls = []

    def __call__(self, argv, **kwargs):
        self.calls.append((argv, kwargs))
        if self.raises:
            raise self.raises
        return subprocess.CompletedProcess(argv, self.returncode, stdout=self.stdout, stderr="")


def test_send_uses_gammu_with_c_locale(monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(modem.subprocess, "run", recorder)
    assert GammuSmsClient("gammu").send("+61400000001", 'say "hi"') is True
    argv, kwargs = recorder.calls[0]
    assert argv == ["gammu", "sendsms", "TEXT", "+61400000001", "-text", 'say "hi"']
    assert kwargs["env"]["LANG"] == "C"


def test_send_failure(monkeypatch):
    monkeypatch.setattr(modem.subprocess, "run", Recorder(returncode=2))
    assert GammuSmsClient().send("+1", "x") is False
    monkeypatch.setattr(modem.subprocess, "run", Recorder(raises=FileNotFoundError("gammu")))
    assert GammuSmsClient().send("+1", "x") is False


def test_send_disabled_does_not_run(monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(modem.subprocess, "run", recorder)
    assert GammuSmsClient(enabled=False).send("+1", "x") is True
    assert recorder.calls == []


def test_fetch_and_delete(monkeypatch):
    recorder = Recorder(stdout=GETALLSMS_REPORT)
    monkeypatch.setattr(modem.subprocess, "run", recorder)
    client = GammuSmsClient("/usr/bin/gammu")
    assert len(client.fetch_messages()) == 2
    assert client.delete("2") is True
    assert recorder.calls[0][0] == ["/usr/bin/gammu", "getallsms"]
    assert recorder.calls[1][0] == ["/usr/bin/gammu", "deletesms", "0", "2"]


def test_nx584_client_returns_exit_code(monkeypatch):
    recorder = Recorder(returncode=1)
    monkeypatch.setattr(modem.subprocess, "run", recorder)
    client = Nx584Client("../pynx584/nx584_client", "1234")
    assert client.arm() == 1
    assert recorder.calls[0][0] == ["../pynx584/nx584_client", "--master", "1234", "arm"]


def test_nx584_client_launch_failure(monkeypatch):
    monkeypatch.setattr(modem.subprocess, "run", Recorder(raises=FileNotFoundError("nx584_client")))
    assert Nx584Client("missing", "9999").disarm() == LAUNCH_FAILED
