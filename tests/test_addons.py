import urllib3

from kubeboot.deploy.addons import AddonInstaller, substitute_env
from kubeboot.errors import AddonApplyFailure

from .testdata import FakeHost, FakeHttp, FakeResponse, Result

INGRESS = "https://example.com/ingress.yaml"
DNS = "https://example.com/external-dns.yaml"
BROKEN = "https://example.com/broken.yaml"

EXTERNAL_DNS = """apiVersion: apps/v1
kind: Deployment
spec:
  template:
    spec:
      containers:
      - args:
        - --domain-filter=${DNS_NAME}
        - --aws-zone-type=$ZONE_TYPE
        - --txt-owner-id=$$OWNER
"""


def test_substitute_env():
    result = substitute_env(EXTERNAL_DNS, {'DNS_NAME': "api.example.com"})
    assert "--domain-filter=api.example.com" in result
    # unknown variables stay untouched
    assert "--aws-zone-type=$ZONE_TYPE" in result
    assert "--txt-owner-id=$OWNER" in result


def apply_recorder():
    applied = []

    def apply(host, path):
        applied.append(host.read_file(path))
    return applied, apply


def test_install_in_order():
    host = FakeHost()
    http = FakeHttp({('GET', INGRESS): FakeResponse(200, "kind: Ingress\n"),
                     ('GET', DNS): FakeResponse(200, EXTERNAL_DNS)})
    applied, apply = apply_recorder()

    results = AddonInstaller(host, [INGRESS, DNS],
                             env={'DNS_NAME': "api.example.com"},
                             http=http, apply_func=apply).run()

    assert [r.url for r in results] == [INGRESS, DNS]
    assert all(r.ok for r in results)
    assert applied[0] == "kind: Ingress\n"
    assert "--domain-filter=api.example.com" in applied[1]
    assert not [p for p in host.files if p.startswith("/tmp/")]


def test_failed_addon_does_not_stop_others():
    host = FakeHost()
    http = FakeHttp({('GET', INGRESS): FakeResponse(200, "kind: Ingress\n"),
                     ('GET', BROKEN): FakeResponse(404, "Not Found"),
                     ('GET', DNS): urllib3.exceptions.HTTPError("reset")})
    applied, apply = apply_recorder()

    results = AddonInstaller(host, [BROKEN, DNS, INGRESS], http=http,
                             apply_func=apply).run()

    assert [r.ok for r in results] == [False, False, True]
    assert isinstance(results[0].error, AddonApplyFailure)
    assert results[0].error.url == BROKEN
    assert "404" in str(results[0].error)
    assert applied == ["kind: Ingress\n"]


def test_addon_not_utf8():
    host = FakeHost()
    http = FakeHttp({('GET', BROKEN): FakeResponse(200, b"\xff\xfekind"),
                     ('GET', INGRESS): FakeResponse(200, "kind: Ingress\n")})
    applied, apply = apply_recorder()

    results = AddonInstaller(host, [BROKEN, INGRESS], http=http,
                             apply_func=apply).run()

    assert [r.ok for r in results] == [False, True]
    assert results[0].error.url == BROKEN
    assert "UTF-8" in str(results[0].error)
    assert applied == ["kind: Ingress\n"]


def test_kubectl_apply():
    host = FakeHost()
    http = FakeHttp({('GET', INGRESS): FakeResponse(200, "kind: Ingress\n"),
                     ('GET', DNS): FakeResponse(200, EXTERNAL_DNS)})
    host.script(["kubectl", "apply", "-f", "/tmp/kubeboot-2.yaml"],
                Result(1, stderr="error validating data"))

    results = AddonInstaller(host, [INGRESS, DNS], http=http).run()

    applies = host.ran("kubectl", "apply", "-f")
    assert len(applies) == 2
    assert results[0].ok
    assert not results[1].ok
    assert results[1].error.stderr == "error validating data"
    assert "/tmp/kubeboot-2.yaml" in host.removed


def test_no_addons():
    assert AddonInstaller(FakeHost(), [], http=FakeHttp({})).run() == []
