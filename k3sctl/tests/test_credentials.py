import stat

import pytest
import yaml
from pydantic import SecretStr

from k3sctl.modules.k3s.credentials import build_credential, rewrite_server
from k3sctl.modules.k3s.models import JoinToken
from k3sctl.modules.k3s.topology import allocate

from .conftest import KUBECONFIG, TOKEN, sizing


def test_rewrite_server_updates_every_cluster():
    document = yaml.safe_load(KUBECONFIG)
    document["clusters"].append({"name": "other", "cluster": {"server": "https://127.0.0.1:6444"}})

    rewritten = yaml.safe_load(rewrite_server(yaml.safe_dump(document), "10.10.0.20"))

    assert [c["cluster"]["server"] for c in rewritten["clusters"]] == [
        "https://10.10.0.20:6443", "https://10.10.0.20:6444",
    ]
    assert rewritten["users"] == document["users"]


def test_rewrite_server_falls_back_to_text_replace():
    assert rewrite_server("server: https://127.0.0.1:6443\n  - [", "10.0.0.5") == \
        "server: https://10.0.0.5:6443\n  - ["


def test_build_credential():
    primary = allocate(sizing())[0]
    credential = build_credential(SecretStr(KUBECONFIG), primary)

    assert credential.server == "https://10.10.0.20:6443"
    assert credential.node_name == "cluster-master"
    assert "client-key-data" not in repr(credential)


def test_build_credential_rejects_empty_kubeconfig():
    with pytest.raises(ValueError, match="Empty kubeconfig"):
        build_credential(SecretStr("  \n"), allocate(sizing())[0])


def test_credential_written_owner_only(tmp_path):
    credential = build_credential(SecretStr(KUBECONFIG), allocate(sizing())[0])
    path = credential.write(tmp_path / "kube" / "config")

    assert path.read_text() == credential.reveal()
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_join_token_never_shows_value():
    token = JoinToken(TOKEN + "\n")

    assert token.reveal() == TOKEN
    assert TOKEN not in repr(token)
    assert TOKEN not in str(token)
    assert TOKEN not in f"{token}"
    assert token == JoinToken(TOKEN)


def test_join_token_is_immutable_and_non_empty():
    token = JoinToken(TOKEN)
    with pytest.raises(AttributeError):
        token._value = SecretStr("other")
    with pytest.raises(ValueError):
        JoinToken("   ")
