from fakes import FakeBridge
from onc.exposure import ExposureManager, host_cidr
from onc.weave import EXPOSE, WeaveCommands


class HostBridge(FakeBridge):
    """Keeps the set of addresses exposed on the host bridge."""

    def __init__(self, exposed):
        super().__init__()
        self.exposed = list(exposed)
        self.expose_ok = True
        self.handlers["expose"] = self._expose
        self.handlers["hide"] = self._hide
        self.ps_lines[(EXPOSE,)] = lambda: [" ".join(["weave:expose", "66:77:88:99:aa:bb", *self.exposed])]

    def _expose(self, argv):
        if not self.expose_ok:
            return False
        cidr = argv[2].split(":", 1)[1]
        if cidr not in self.exposed:
            self.exposed.append(cidr)
        return True

    def _hide(self, argv):
        self.exposed.remove(argv[2])
        return True


def test_host_cidr():
    assert host_cidr(5) == "10.81.0.5/16"


def test_ensure_exposed_leaves_exactly_the_target():
    bridge = HostBridge(["10.81.0.1/16", "10.81.0.7/16", "10.81.0.9/19"])
    mgr = ExposureManager(WeaveCommands(bridge))

    mgr.ensure_exposed("10.81.0.5/16")

    assert mgr.exposed_cidrs() == ["10.81.0.5/16"]
    assert bridge.calls[0] == ["--local", "expose", "ip:10.81.0.5/16"]


def test_already_exposed_hides_nothing():
    bridge = HostBridge(["10.81.0.5/16"])
    ExposureManager(WeaveCommands(bridge)).ensure_exposed("10.81.0.5/16")
    assert bridge.find("hide") == []


def test_failed_expose_still_hides_stale_addresses():
    bridge = HostBridge(["10.81.0.5/16", "10.81.0.8/16"])
    bridge.expose_ok = False

    ExposureManager(WeaveCommands(bridge)).ensure_exposed("10.81.0.5/16")

    assert bridge.find("hide") == [["--local", "hide", "10.81.0.8/16"]]
    assert bridge.exposed == ["10.81.0.5/16"]
