import cli


class _Resp:
    def __init__(self, payload, ok=True):
        self._payload = payload
        self.ok = ok

    def json(self):
        return self._payload


def test_node_info_payload(monkeypatch, capsys):
    sent = {}

    def fake_post(url, json=None, auth=None, timeout=None):
        sent.update(url=url, json=json, auth=auth)
        return _Resp({"queued": "node_info"})

    monkeypatch.setattr(cli.requests, "post", fake_post)

    rc = cli.main(
        ["--api", "http://node:8000/", "node-info", "--peer", "10.0.0.2", "--peer", "10.0.0.3",
         "--trusted-subnet", "10.0.0.0/8", "--node-number", "5"]
    )

    assert rc == 0
    assert sent["url"] == "http://node:8000/node-info"
    assert sent["json"] == {"peer_ips": ["10.0.0.2", "10.0.0.3"], "trusted_subnets": ["10.0.0.0/8"], "node_number": 5}
    assert '"queued": "node_info"' in capsys.readouterr().out


def test_migrate_failure_exit_code(monkeypatch):
    monkeypatch.setattr(cli.requests, "post", lambda url, **kw: _Resp({"detail": "weave migrate failed"}, ok=False))
    assert cli.main(["migrate", "abc", "10.81.0.3/16"]) == 1
